"""Shared test data: reference addresses, fake chain clients and raw payload builders."""

from __future__ import annotations

import asyncio

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from chainsentry.chain.address import validate_address
from chainsentry.models.schema import BridgeStatus, BridgeTransfer, CanonicalTransaction, TxStatus
from chainsentry.tokens.constants import SPL_TOKEN_PROGRAM_ID, TRANSFER_TOPIC

# EIP-55 reference vectors
EVM_A = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
EVM_B = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
EVM_C = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"
EVM_D = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"

NOW = 1_700_000_000


def sol_address(seed: int) -> str:
    """A valid (on-curve) Solana address."""
    return str(Keypair.from_seed(bytes([seed] * 32)).pubkey())


def sol_off_curve() -> str:
    """A program-derived address: valid base58, 32 bytes, not on the curve."""
    pda, _ = Pubkey.find_program_address([b"chainsentry"], Pubkey.from_string(SPL_TOKEN_PROGRAM_ID))
    return str(pda)


def sol_case_variant(address: str) -> str:
    """A different valid Solana key that differs from `address` only in letter case."""
    for i, ch in enumerate(address):
        if not ch.isalpha():
            continue
        candidate = address[:i] + ch.swapcase() + address[i + 1:]
        if validate_address(candidate, "solana").is_valid:
            return candidate
    raise AssertionError(f"no case variant of {address} is a valid key")


class FakeChainClient:
    """In-memory stand-in for EvmChainClient / SolanaChainClient."""

    def __init__(
        self,
        config,
        transactions: dict | None = None,
        height: int = 1000,
        fail: bool = False,
        height_delay: float = 0,
        ids_delay: float = 0,
        native: int = 0,
        tokens: list[dict] | None = None,
        tokens_error: Exception | None = None,
    ):
        self.config = config
        self.transactions = dict(transactions or {})  # insertion order = newest first
        self.height = height
        self.fail = fail
        self.height_delay = height_delay
        self.ids_delay = ids_delay
        self.native = native
        self.tokens = list(tokens or [])
        self.tokens_error = tokens_error
        self.closed = False
        self.fetched: list[str] = []

    @property
    def chain(self) -> str:
        return self.config.name

    @property
    def rpc_url(self) -> str:
        return self.config.rpc_url

    def _check(self):
        if self.fail:
            raise ConnectionError(f"connection refused: {self.config.rpc_url}")

    async def get_height(self) -> int:
        if self.height_delay:
            await asyncio.sleep(self.height_delay)
        self._check()
        return self.height

    async def get_native_balance(self, address: str) -> int:
        self._check()
        return self.native

    async def get_token_balances(self, address: str) -> list[dict]:
        self._check()
        if self.tokens_error is not None:
            raise self.tokens_error
        return list(self.tokens)

    async def get_recent_transaction_ids(self, address: str, limit: int, until: str | None = None) -> list[str]:
        if self.ids_delay:
            await asyncio.sleep(self.ids_delay)
        self._check()
        ids = list(self.transactions)
        if until in ids:
            ids = ids[: ids.index(until)]
        return ids[:limit]

    async def get_transaction(self, tx_id: str):
        self._check()
        self.fetched.append(tx_id)
        return self.transactions.get(tx_id)

    async def close(self) -> None:
        self.closed = True


class FakeFactory:
    """Client factory keyed by RPC URL first, then chain name."""

    def __init__(self, behaviors: dict | None = None):
        self.behaviors = behaviors or {}
        self.created: list[FakeChainClient] = []

    def __call__(self, config) -> FakeChainClient:
        kwargs = self.behaviors.get(config.rpc_url, self.behaviors.get(config.name, {}))
        client = FakeChainClient(config, **kwargs)
        self.created.append(client)
        return client



def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def pad_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def transfer_log(token: str, sender: str, receiver: str, amount: int, log_index: int = 0) -> dict:
    return {
        "address": token,
        "topics": [TRANSFER_TOPIC, pad_topic(sender), pad_topic(receiver)],
        "data": "0x" + f"{amount:064x}",
        "logIndex": log_index,
    }


def evm_raw(
    n: int,
    sender: str,
    receiver: str | None,
    value_wei: int = 0,
    timestamp: int = 1_700_000_000,
    status: int = 1,
    logs: list[dict] | None = None,
    block: int = 19_000_000,
    contract_address: str | None = None,
) -> dict:
    return {
        "transaction": {
            "hash": tx_hash(n),
            "from": sender,
            "to": receiver,
            "value": value_wei,
            "blockNumber": block,
        },
        "receipt": {
            "status": status,
            "logs": logs or [],
            "contractAddress": contract_address,
        },
        "block_timestamp": timestamp,
    }


def sol_raw(
    signature: str,
    keys: list[str],
    pre: list[int],
    post: list[int],
    block_time: int | None = 1_700_000_000,
    slot: int = 250_000_000,
    err=None,
    programs: list[str] | None = None,
    inner_programs: list[str] | None = None,
    pre_tokens: list[dict] | None = None,
    post_tokens: list[dict] | None = None,
) -> dict:
    return {
        "slot": slot,
        "blockTime": block_time,
        "transaction": {
            "signatures": [signature],
            "message": {
                "accountKeys": [{"pubkey": k, "signer": i == 0, "writable": True} for i, k in enumerate(keys)],
                "instructions": [{"programId": p, "accounts": []} for p in (programs or [])],
            },
        },
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": pre,
            "postBalances": post,
            "preTokenBalances": pre_tokens or [],
            "postTokenBalances": post_tokens or [],
            "innerInstructions": (
                [{"index": 0, "instructions": [{"programId": p} for p in inner_programs]}]
                if inner_programs else []
            ),
        },
    }


def token_balance(owner: str, mint: str, amount: int, decimals: int = 6, index: int = 0) -> dict:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": decimals},
    }


def canonical(
    chain: str,
    n: int,
    timestamp: int,
    addresses: list[str],
    value: float = 0.1,
    status: TxStatus = TxStatus.SUCCESS,
    is_bridge: bool = False,
    risk_score: int = 0,
) -> CanonicalTransaction:
    return CanonicalTransaction(
        chain=chain,
        hash=tx_hash(n) if chain != "solana" else f"sig{n}",
        block_number=n,
        timestamp=timestamp,
        sender=addresses[0],
        receiver=addresses[-1],
        value=value,
        status=status,
        addresses=addresses,
        is_bridge=is_bridge,
        bridge_protocol="wormhole" if is_bridge else None,
        risk_score=risk_score,
    )


def bridge(
    n: int,
    source: str,
    destination: str | None,
    initiated_at: int,
    user: str,
    amount: float = 1.0,
    status: BridgeStatus = BridgeStatus.INITIATED,
    protocol: str = "wormhole",
) -> BridgeTransfer:
    return BridgeTransfer(
        source_chain=source,
        source_tx_hash=tx_hash(n),
        destination_chain=destination,
        protocol=protocol,
        user_address=user,
        source_address=user,
        token_symbol="ETH",
        amount=amount,
        status=status,
        initiated_at=initiated_at,
    )
