"""Async chain clients: web3.py 7.x for EVM chains, solana-py for Solana.

Every client exposes the same read-only surface so the pool, the balance
aggregator and the ingestor never branch on chain name:

    get_height, get_native_balance, get_token_balances,
    get_recent_transaction_ids, get_transaction, close

Transaction detail is returned as plain JSON-compatible dicts in the chain's
native shape; parsing into canonical records happens in chainsentry.ingest.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod

import httpx
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from web3 import AsyncWeb3, AsyncHTTPProvider, Web3
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from chainsentry.chain.registry import ChainConfig, ChainFamily
from chainsentry.tokens.constants import COMMON_TOKENS, ERC20_ABI, SPL_TOKEN_PROGRAM_ID

logger = logging.getLogger(__name__)

ETHERSCAN_V2_API = "https://api.etherscan.io/v2/api"


class ChainClient(ABC):
    """Read-only client for one chain."""

    def __init__(self, config: ChainConfig):
        self.config = config

    @property
    def chain(self) -> str:
        return self.config.name

    @property
    def rpc_url(self) -> str:
        return self.config.rpc_url

    @abstractmethod
    async def get_height(self) -> int:
        ...

    @abstractmethod
    async def get_native_balance(self, address: str) -> int:
        """Native balance in base units (wei, lamports)."""

    @abstractmethod
    async def get_token_balances(self, address: str) -> list[dict]:
        """Non-zero balances of known tokens: dicts with token, symbol, decimals, balance_raw."""

    @abstractmethod
    async def get_recent_transaction_ids(
        self, address: str, limit: int, until: str | None = None
    ) -> list[str]:
        """Most recent transaction ids for an address, newest first.

        Stops before `until` when given (the newest id already seen).
        """

    @abstractmethod
    async def get_transaction(self, tx_id: str) -> dict | None:
        ...

    async def close(self) -> None:
        return None


class EvmChainClient(ChainClient):
    """Async web3 client for any EVM chain."""

    def __init__(
        self,
        config: ChainConfig,
        etherscan_api_key: str = "",
        scan_blocks: int = 10,
        max_concurrent: int = 10,
    ):
        super().__init__(config)
        self.w3 = AsyncWeb3(AsyncHTTPProvider(config.rpc_url))
        if config.is_poa:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.etherscan_api_key = etherscan_api_key
        self.scan_blocks = scan_blocks
        self.semaphore = asyncio.Semaphore(max_concurrent)

    async def get_height(self) -> int:
        return await self.w3.eth.block_number

    async def get_native_balance(self, address: str) -> int:
        return int(await self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    async def _token_balance(self, owner: str, token: str, symbol: str, decimals: int) -> dict | None:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)
        async with self.semaphore:
            raw = await contract.functions.balanceOf(owner).call()
        if not raw:
            return None
        return {"token": token, "symbol": symbol, "decimals": decimals, "balance_raw": int(raw)}

    async def get_token_balances(self, address: str) -> list[dict]:
        owner = Web3.to_checksum_address(address)
        tokens = COMMON_TOKENS.get(self.chain, {})
        results = await asyncio.gather(
            *(self._token_balance(owner, t, sym, dec) for t, (sym, dec) in tokens.items()),
            return_exceptions=True,
        )
        for r in results:
            if isinstance(r, BaseException):
                raise r
        return [r for r in results if r is not None]

    async def _ids_from_explorer(self, address: str, limit: int) -> list[str]:
        params = {
            "chainid": self.config.chain_id,
            "module": "account",
            "action": "txlist",
            "address": address,
            "page": 1,
            "offset": limit,
            "sort": "desc",
            "apikey": self.etherscan_api_key,
        }
        async with httpx.AsyncClient(timeout=30) as client:
            resp = await client.get(ETHERSCAN_V2_API, params=params)
            resp.raise_for_status()
            data = resp.json()
        result = data.get("result")
        if data.get("status") != "1" or not isinstance(result, list):
            # "No transactions found" is reported as status 0 with an empty list
            if isinstance(result, list):
                return []
            raise RuntimeError(f"explorer error: {data.get('message')}: {result}")
        logger.debug(f"{self.chain}: explorer returned {len(result)} transaction(s) for {address}")
        return [row["hash"] for row in result]

    async def _fetch_block(self, number: int):
        async with self.semaphore:
            return await self.w3.eth.get_block(number, full_transactions=True)

    async def _ids_from_recent_blocks(self, address: str, limit: int) -> list[str]:
        latest = await self.w3.eth.block_number
        start = max(0, latest - self.scan_blocks + 1)
        blocks = await asyncio.gather(*(self._fetch_block(n) for n in range(latest, start - 1, -1)))
        target = address.lower()
        ids: list[str] = []
        for block in blocks:
            for tx in block["transactions"]:
                sender = (tx.get("from") or "").lower()
                receiver = (tx.get("to") or "").lower()
                if target in (sender, receiver):
                    tx_hash = tx["hash"]
                    ids.append(tx_hash.to_0x_hex() if hasattr(tx_hash, "to_0x_hex") else str(tx_hash))
                    if len(ids) >= limit:
                        return ids
        return ids

    async def get_recent_transaction_ids(
        self, address: str, limit: int, until: str | None = None
    ) -> list[str]:
        if self.etherscan_api_key:
            ids = await self._ids_from_explorer(address, limit)
        else:
            ids = await self._ids_from_recent_blocks(address, limit)
        if until:
            cut = [i for i, tx_id in enumerate(ids) if tx_id.lower() == until.lower()]
            if cut:
                ids = ids[: cut[0]]
        return ids[:limit]

    async def get_transaction(self, tx_id: str) -> dict | None:
        try:
            tx = await self.w3.eth.get_transaction(tx_id)
            receipt = await self.w3.eth.get_transaction_receipt(tx_id)
        except TransactionNotFound:
            return None
        block = await self.w3.eth.get_block(tx["blockNumber"])
        return {
            "transaction": json.loads(Web3.to_json(tx)),
            "receipt": json.loads(Web3.to_json(receipt)),
            "block_timestamp": int(block["timestamp"]),
        }


def _result(resp) -> object:
    """Unwrap a solders RPC response into plain JSON data."""
    data = json.loads(resp.to_json())
    return data.get("result", data) if isinstance(data, dict) else data


def _unwrap_value(result):
    if isinstance(result, dict) and "value" in result:
        return result["value"]
    return result


class SolanaChainClient(ChainClient):
    """Async solana-py client."""

    def __init__(self, config: ChainConfig):
        super().__init__(config)
        self.client = AsyncClient(config.rpc_url, commitment=Confirmed)

    async def get_height(self) -> int:
        resp = await self.client.get_slot()
        return int(resp.value)

    async def get_native_balance(self, address: str) -> int:
        resp = await self.client.get_balance(Pubkey.from_string(address))
        return int(resp.value)

    async def get_token_balances(self, address: str) -> list[dict]:
        resp = await self.client.get_token_accounts_by_owner_json_parsed(
            Pubkey.from_string(address),
            TokenAccountOpts(program_id=Pubkey.from_string(SPL_TOKEN_PROGRAM_ID)),
        )
        accounts = _unwrap_value(_result(resp)) or []
        known = COMMON_TOKENS.get(self.chain, {})
        balances: list[dict] = []
        for account in accounts:
            try:
                info = account["account"]["data"]["parsed"]["info"]
                mint = info["mint"]
                amount = info["tokenAmount"]
            except (KeyError, TypeError):
                continue
            raw = int(amount.get("amount", 0))
            if raw == 0:
                continue
            symbol = known[mint][0] if mint in known else mint[:6]
            balances.append({
                "token": mint,
                "symbol": symbol,
                "decimals": int(amount.get("decimals", 0)),
                "balance_raw": raw,
            })
        return balances

    async def get_recent_transaction_ids(
        self, address: str, limit: int, until: str | None = None
    ) -> list[str]:
        resp = await self.client.get_signatures_for_address(
            Pubkey.from_string(address),
            limit=limit,
            until=Signature.from_string(until) if until else None,
        )
        return [str(info.signature) for info in (resp.value or [])]

    async def get_transaction(self, tx_id: str) -> dict | None:
        resp = await self.client.get_transaction(
            Signature.from_string(tx_id),
            encoding="jsonParsed",
            max_supported_transaction_version=0,
        )
        if resp.value is None:
            return None
        return _result(resp)

    async def close(self) -> None:
        await self.client.close()


def make_client(config: ChainConfig, settings=None) -> ChainClient:
    """Default client factory used by the provider pool."""
    if settings is None:
        from chainsentry.config import get_settings

        settings = get_settings()
    if config.family is ChainFamily.ACCOUNT:
        return EvmChainClient(
            config,
            etherscan_api_key=settings.etherscan_api_key,
            scan_blocks=settings.evm_scan_blocks,
            max_concurrent=settings.max_concurrent_requests,
        )
    return SolanaChainClient(config)
