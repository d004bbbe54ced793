"""Parse chain-native transaction detail into CanonicalTransaction.

One parser per chain family. Callers go through parse_transaction, which
branches on ChainConfig.family and nothing else.
"""

from __future__ import annotations

from collections.abc import Callable

from web3 import Web3

from chainsentry.chain.address import try_normalize
from chainsentry.chain.registry import ChainConfig, ChainFamily
from chainsentry.errors import ParseFailure
from chainsentry.models.schema import UNKNOWN_ADDRESS, CanonicalTransaction, TxStatus
from chainsentry.scoring.config import DEFAULT_SCORING, TransactionRiskConfig, clamp
from chainsentry.tokens.transfers import parse_token_balance_diffs, parse_transfer_logs


def _unique(items: list[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item and item != UNKNOWN_ADDRESS and item not in seen:
            seen.append(item)
    return seen


def _as_int(value) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def parse_account_model(
    raw: dict, config: ChainConfig, tracked_address: str | None = None, tx_id: str | None = None
) -> CanonicalTransaction:
    """EVM: explicit sender/receiver/value, status from the receipt, token transfers from logs."""
    tx_hash = tx_id or str((raw.get("transaction") or {}).get("hash", "?"))
    try:
        tx = raw["transaction"]
        receipt = raw["receipt"]
        timestamp = int(raw["block_timestamp"])
        tx_hash = str(tx["hash"])
        sender = Web3.to_checksum_address(tx["from"])
        value_raw = _as_int(tx["value"])
        block_number = _as_int(tx["blockNumber"])
        status_flag = _as_int(receipt["status"])
    except (KeyError, TypeError, ValueError) as e:
        raise ParseFailure(config.name, tx_hash, f"malformed transaction: {e!r}") from e

    to = tx.get("to") or receipt.get("contractAddress")
    receiver = Web3.to_checksum_address(to) if to else UNKNOWN_ADDRESS

    try:
        transfers = parse_transfer_logs(receipt.get("logs") or [], config.name)
    except (KeyError, TypeError, ValueError) as e:
        raise ParseFailure(config.name, tx_hash, f"malformed transfer log: {e!r}") from e

    parties = [sender, receiver]
    for t in transfers:
        parties.extend([t.from_address, t.to_address])
    if tracked_address:
        parties.append(tracked_address)

    return CanonicalTransaction(
        chain=config.name,
        hash=tx_hash,
        block_number=block_number,
        timestamp=timestamp,
        sender=sender,
        receiver=receiver,
        value=value_raw / 10 ** config.native_decimals,
        value_raw=str(value_raw),
        status=TxStatus.SUCCESS if status_flag == 1 else TxStatus.FAILED,
        addresses=_unique(parties),
        token_transfers=transfers,
    )


def _account_keys(message: dict) -> list[str]:
    keys = []
    for key in message.get("accountKeys") or []:
        keys.append(key["pubkey"] if isinstance(key, dict) else str(key))
    return keys


def parse_instruction_model(
    raw: dict, config: ChainConfig, tracked_address: str | None = None, tx_id: str | None = None
) -> CanonicalTransaction:
    """Solana: infer the net native transfer by diffing pre/post balances.

    The account with the largest decrease is the sender and the account with
    the largest increase (other than the sender) the receiver. When the
    tracked address has no balance change the transaction is still recorded,
    with unknown parties and zero value.
    """
    tx_hash = tx_id or "?"
    try:
        transaction = raw["transaction"]
        meta = raw["meta"]
        if raw.get("blockTime") is None:
            raise ValueError("missing blockTime")
        timestamp = int(raw["blockTime"])
        slot = int(raw["slot"])
        if tx_id is None:
            tx_hash = transaction["signatures"][0]
        keys = _account_keys(transaction["message"])
        pre = [int(b) for b in meta["preBalances"]]
        post = [int(b) for b in meta["postBalances"]]
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise ParseFailure(config.name, tx_hash, f"malformed transaction: {e!r}") from e

    n = min(len(keys), len(pre), len(post))
    deltas = [post[i] - pre[i] for i in range(n)]

    tracked_moved = tracked_address is not None and any(
        keys[i] == tracked_address and deltas[i] != 0 for i in range(n)
    )
    sender = receiver = UNKNOWN_ADDRESS
    value_lamports = 0
    if tracked_moved:
        negatives = [i for i in range(n) if deltas[i] < 0]
        from_idx = min(negatives, key=lambda i: (deltas[i], i)) if negatives else None
        positives = [i for i in range(n) if deltas[i] > 0 and i != from_idx]
        to_idx = max(positives, key=lambda i: (deltas[i], -i)) if positives else None
        if from_idx is not None:
            sender = keys[from_idx]
        if to_idx is not None:
            receiver = keys[to_idx]
            value_lamports = deltas[to_idx]

    try:
        transfers = parse_token_balance_diffs(meta, config.name)
    except (KeyError, TypeError, ValueError) as e:
        raise ParseFailure(config.name, tx_hash, f"malformed token balances: {e!r}") from e

    parties = list(keys)
    for t in transfers:
        parties.extend([t.from_address, t.to_address])
    if tracked_address:
        parties.append(tracked_address)

    return CanonicalTransaction(
        chain=config.name,
        hash=tx_hash,
        block_number=slot,
        timestamp=timestamp,
        sender=sender,
        receiver=receiver,
        value=value_lamports / 10 ** config.native_decimals,
        value_raw=str(value_lamports),
        status=TxStatus.FAILED if meta.get("err") else TxStatus.SUCCESS,
        addresses=_unique([try_normalize(p, config.name) for p in parties]),
        token_transfers=transfers,
    )


Parser = Callable[..., CanonicalTransaction]

PARSERS: dict[ChainFamily, Parser] = {
    ChainFamily.ACCOUNT: parse_account_model,
    ChainFamily.INSTRUCTION: parse_instruction_model,
}


def parse_transaction(
    raw: dict, config: ChainConfig, tracked_address: str | None = None, tx_id: str | None = None
) -> CanonicalTransaction:
    if not isinstance(raw, dict):
        raise ParseFailure(config.name, tx_id or "?", f"unexpected payload type {type(raw).__name__}")
    return PARSERS[config.family](raw, config, tracked_address=tracked_address, tx_id=tx_id)


def score_transaction(
    tx: CanonicalTransaction, weights: TransactionRiskConfig | None = None
) -> tuple[int, list[str]]:
    """Local heuristics only: no cross-transaction context."""
    w = weights or DEFAULT_SCORING.transaction
    score = 0
    factors: list[str] = []
    if tx.is_bridge:
        score += w.bridge
        factors.append(f"Bridge transaction ({tx.bridge_protocol})")
    if tx.failed:
        score += w.failed
        factors.append("Failed transaction")
    if tx.value > 1:
        score += w.value_over_1
        if tx.value > 10:
            score += w.value_over_10
            factors.append(f"High value transfer: {tx.value:g}")
        else:
            factors.append(f"Elevated value transfer: {tx.value:g}")
    if len(tx.addresses) > w.many_addresses_threshold:
        score += w.many_addresses
        factors.append(f"Multi-party transaction: {len(tx.addresses)} addresses")
    if len(tx.token_transfers) > w.many_token_transfers_threshold:
        score += w.many_token_transfers
        factors.append(f"Complex token activity: {len(tx.token_transfers)} transfers")
    return int(clamp(score)), factors
