"""Fetch, parse, classify and store recent transactions per (address, chain)."""

from __future__ import annotations

import asyncio
import logging

import duckdb

from chainsentry.bridges.detector import BridgeDetector, classify_raw
from chainsentry.chain.address import normalize_address, validate_address
from chainsentry.chain.pool import ProviderPool
from chainsentry.errors import ChainSentryError, InvalidAddress, ParseFailure
from chainsentry.ingest.parsers import parse_transaction, score_transaction
from chainsentry.models.schema import (
    BridgeTransfer,
    CanonicalTransaction,
    ChainSyncResult,
    SyncError,
    TrackedWallet,
    WalletSyncResult,
)
from chainsentry.scoring.config import DEFAULT_SCORING, RiskScoringConfig
from chainsentry.storage import database as db

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED = "DeadlineExceeded"


def _error_kind(e: Exception) -> str:
    return e.kind if isinstance(e, ChainSentryError) else type(e).__name__


class TransactionIngestor:
    def __init__(
        self,
        pool: ProviderPool,
        conn: duckdb.DuckDBPyConnection,
        detector: BridgeDetector | None = None,
        scoring: RiskScoringConfig | None = None,
        max_concurrent: int = 10,
    ):
        self.pool = pool
        self.conn = conn
        self.scoring = scoring or DEFAULT_SCORING
        self.detector = detector or BridgeDetector(pool, self.scoring.bridge_transfer)
        self.max_concurrent = max_concurrent

    async def _fetch(self, client, tx_id: str, semaphore: asyncio.Semaphore):
        async with semaphore:
            try:
                return await client.get_transaction(tx_id)
            except Exception as e:
                return e

    async def sync_chain(
        self,
        address: str,
        chain: str,
        since_cursor: str | None = None,
        limit: int = 100,
    ) -> ChainSyncResult:
        """Ingest up to `limit` recent transactions for one address on one chain.

        Raises InvalidAddress before any I/O and ProviderUnavailable when no
        endpoint answers. Per-transaction failures are returned, not raised.
        """
        address = normalize_address(address, chain)
        client = await self.pool.get_healthy(chain)
        config = self.pool.config(chain)

        stored = db.get_stored_hashes(self.conn, chain, address)
        ids = await client.get_recent_transaction_ids(address, limit, until=since_cursor)

        new_ids: list[str] = []
        for tx_id in ids:
            if tx_id not in stored and tx_id not in new_ids:
                new_ids.append(tx_id)
        result = ChainSyncResult(chain=chain, address=address, skipped_existing=len(ids) - len(new_ids))

        semaphore = asyncio.Semaphore(self.max_concurrent)
        raws = await asyncio.gather(*(self._fetch(client, tx_id, semaphore) for tx_id in new_ids))

        parsed: list[CanonicalTransaction] = []
        bridges: list[BridgeTransfer] = []
        # Newest first, as returned by the provider
        for tx_id, raw in zip(new_ids, raws):
            if isinstance(raw, Exception):
                logger.warning(f"{chain}: fetching {tx_id} failed: {raw}")
                result.errors.append(SyncError(chain=chain, kind=_error_kind(raw), message=str(raw), tx_hash=tx_id))
                continue
            if raw is None:
                result.errors.append(SyncError(
                    chain=chain, kind="NotFound", message="transaction not returned by provider", tx_hash=tx_id,
                ))
                continue
            try:
                tx = parse_transaction(raw, config, tracked_address=address, tx_id=tx_id)
            except ParseFailure as e:
                logger.warning(str(e))
                result.errors.append(SyncError(chain=chain, kind=e.kind, message=e.reason, tx_hash=tx_id))
                continue

            classification = classify_raw(raw, config)
            tx.is_bridge = classification.is_bridge
            tx.bridge_protocol = classification.protocol
            tx.risk_score, tx.risk_factors = score_transaction(tx, self.scoring.transaction)
            parsed.append(tx)
            if classification.is_bridge:
                bridges.append(self.detector.build_transfer(tx, classification, address))

        inserted = db.insert_transactions(self.conn, parsed)
        db.upsert_bridge_transfers(self.conn, bridges)
        result.inserted = parsed
        result.bridge_transfers = bridges
        logger.info(
            f"{chain}: {address} synced, {inserted} new transaction(s), {len(bridges)} bridge transfer(s), "
            f"{result.skipped_existing} already stored, {len(result.errors)} error(s)"
        )
        return result

    def _targets(self, wallet: TrackedWallet, chains: list[str] | None) -> tuple[list[tuple[str, str]], list[SyncError]]:
        """(chain, address) pairs to sync. A chain whose only address is invalid fails the request."""
        targets: list[tuple[str, str]] = []
        errors: list[SyncError] = []
        for chain in chains or wallet.chains:
            self.pool.config(chain)
            addresses = wallet.addresses.get(chain, [])
            for address in addresses:
                validation = validate_address(address, chain)
                if validation.is_valid:
                    targets.append((chain, address))
                    continue
                if len(addresses) == 1:
                    raise InvalidAddress(address, chain, validation.error or "invalid address")
                errors.append(SyncError(
                    chain=chain, kind=InvalidAddress.kind,
                    message=f"{address}: {validation.error}",
                ))
        return targets, errors

    async def sync_wallet_transactions(
        self,
        wallet: TrackedWallet,
        chains: list[str] | None = None,
        limit: int = 100,
        deadline: float | None = None,
    ) -> WalletSyncResult:
        """Sync every (chain, address) of a wallet concurrently under one deadline.

        Always returns a partial-success result: chains that fail or miss the
        deadline are reported in `errors`, the rest are stored.
        """
        targets, errors = self._targets(wallet, chains)
        result = WalletSyncResult(wallet_id=wallet.wallet_id, errors=errors)
        if not targets:
            return result

        tasks = {
            asyncio.ensure_future(self.sync_chain(address, chain, limit=limit)): (chain, address)
            for chain, address in targets
        }
        done, pending = await asyncio.wait(tasks.keys(), timeout=deadline)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task, (chain, address) in tasks.items():
            if task in pending:
                logger.warning(f"{chain}: sync for {address} did not finish before the deadline")
                result.errors.append(SyncError(
                    chain=chain, kind=DEADLINE_EXCEEDED, message=f"no response within {deadline}s for {address}",
                ))
                continue
            exc = task.exception()
            if exc is not None:
                if not isinstance(exc, Exception):
                    raise exc
                logger.warning(f"{chain}: sync for {address} failed: {exc}")
                result.errors.append(SyncError(chain=chain, kind=_error_kind(exc), message=str(exc)))
                continue
            chain_result = task.result()
            result.chains.append(chain_result)
            result.errors.extend(chain_result.errors)
        return result
