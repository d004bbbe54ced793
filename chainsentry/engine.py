"""Entry point for the API/UI layer: tracking, sync, balances and risk in one object."""

from __future__ import annotations

import logging
import time

import duckdb
import pandas as pd

from chainsentry.balances.aggregator import BalanceAggregator
from chainsentry.bridges.detector import BridgeDetector
from chainsentry.chain.address import AddressValidation, validate_address
from chainsentry.chain.pool import ProviderPool
from chainsentry.config import Settings, get_settings
from chainsentry.ingest.ingestor import TransactionIngestor
from chainsentry.models.schema import (
    BalanceRefreshResult,
    BridgeClassification,
    BridgeTransfer,
    CanonicalTransaction,
    PortfolioDistribution,
    ProviderHealth,
    RiskAssessment,
    TrackedWallet,
    TrackResult,
    WalletSyncResult,
)
from chainsentry.scoring.config import RiskScoringConfig
from chainsentry.scoring.risk import RiskAnalyzer
from chainsentry.storage import database as db
from chainsentry.tokens.pricing import make_price_source
from chainsentry.wallets import tracker

logger = logging.getLogger(__name__)


def _now(now: int | None) -> int:
    return int(time.time()) if now is None else now


class WalletRiskEngine:
    """Wires the provider pool, storage and analyzers for one worker.

    Each worker should build its own engine; nothing here is shared globally.
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection | None = None,
        pool: ProviderPool | None = None,
        price_source=None,
        settings: Settings | None = None,
        scoring: RiskScoringConfig | None = None,
    ):
        self.settings = settings or get_settings()
        self.conn = conn if conn is not None else db.get_connection(self.settings.duckdb_path)
        self.pool = pool or ProviderPool(settings=self.settings)
        self.analyzer = RiskAnalyzer(self.conn, scoring)
        self.detector = BridgeDetector(self.pool, self.analyzer.config.bridge_transfer)
        self.ingestor = TransactionIngestor(
            self.pool,
            self.conn,
            detector=self.detector,
            scoring=self.analyzer.config,
            max_concurrent=self.settings.max_concurrent_requests,
        )
        self.balances = BalanceAggregator(self.pool, self.conn, price_source or make_price_source(self.settings))

    # --- Wallets ---

    def track_wallet(
        self,
        primary_address: str,
        chains: list[str] | None = None,
        label: str = "",
        tags: list[str] | None = None,
        now: int | None = None,
    ) -> TrackResult:
        return tracker.track_wallet(self.conn, primary_address, chains, label, tags, now)

    def add_address(self, wallet_id: str, address: str, chain: str, now: int | None = None) -> TrackedWallet:
        return tracker.add_address(self.conn, wallet_id, address, chain, now)

    def get_wallet(self, wallet_id: str) -> TrackedWallet:
        return tracker.get_wallet(self.conn, wallet_id)

    def list_wallets(self, page: int = 1, limit: int = 50) -> list[TrackedWallet]:
        return tracker.list_wallets(self.conn, page, limit)

    def find_wallets_by_address(self, address: str, chain: str | None = None) -> list[TrackedWallet]:
        return tracker.find_wallets_by_address(self.conn, address, chain)

    def remove_wallet(self, wallet_id: str) -> None:
        tracker.remove_wallet(self.conn, wallet_id)

    def validate_address(self, address: str, chain: str) -> AddressValidation:
        return validate_address(address, chain)

    # --- Sync, balances, risk ---

    async def sync_wallet_transactions(
        self,
        wallet_id: str,
        chains: list[str] | None = None,
        limit: int | None = None,
        deadline: float | None = None,
    ) -> WalletSyncResult:
        wallet = tracker.get_wallet(self.conn, wallet_id)
        return await self.ingestor.sync_wallet_transactions(
            wallet,
            chains=chains,
            limit=limit or self.settings.sync_limit,
            deadline=deadline if deadline is not None else self.settings.sync_deadline,
        )

    async def update_all_balances(self, wallet_id: str, now: int | None = None) -> BalanceRefreshResult:
        wallet = tracker.get_wallet(self.conn, wallet_id)
        return await self.balances.update_all_balances(wallet_id, wallet.addresses, _now(now))

    def assess_wallet_risk(self, wallet_id: str, now: int | None = None) -> RiskAssessment:
        return self.analyzer.assess_wallet_risk(wallet_id, _now(now))

    def get_risk_assessment(self, wallet_id: str) -> RiskAssessment | None:
        return db.get_risk_assessment(self.conn, wallet_id)

    def get_high_risk_wallets(self, min_score: float = 70, limit: int = 100) -> list[RiskAssessment]:
        return db.get_high_risk_wallets(self.conn, min_score, limit)

    def get_portfolio_distribution(self, wallet_id: str) -> PortfolioDistribution | None:
        return self.balances.get_portfolio_distribution(wallet_id)

    # --- Transactions ---

    def get_transaction_history(
        self,
        wallet_id: str,
        chain: str | None = None,
        since: int | None = None,
        until: int | None = None,
        min_risk_score: int | None = None,
        bridge_only: bool = False,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CanonicalTransaction]:
        wallet = tracker.get_wallet(self.conn, wallet_id)
        return db.get_transactions_for_addresses(
            self.conn,
            wallet.all_addresses(),
            chains=[chain] if chain else wallet.chains,
            since=since,
            until=until,
            min_risk_score=min_risk_score,
            bridge_only=bridge_only,
            status=status,
            limit=limit,
            offset=offset,
        )

    def get_transaction_stats(self, wallet_id: str) -> pd.DataFrame:
        wallet = tracker.get_wallet(self.conn, wallet_id)
        return db.transaction_stats(self.conn, wallet.all_addresses())

    def get_activity_summary(self, wallet_id: str) -> dict[str, dict]:
        """Per tracked chain: transaction count, last activity, bridge count, mean risk."""
        wallet = tracker.get_wallet(self.conn, wallet_id)
        stats = db.transaction_stats(self.conn, wallet.all_addresses())
        by_chain = {row["chain"]: row for row in stats.to_dict(orient="records")}
        summary = {}
        for chain in sorted(wallet.chains):
            row = by_chain.get(chain)
            summary[chain] = {
                "transaction_count": int(row["tx_count"]) if row else 0,
                "last_activity": int(row["last_activity"]) if row else None,
                "bridge_count": int(row["bridge_count"]) if row else 0,
                "avg_risk": round(float(row["avg_risk"]), 2) if row else 0.0,
            }
        return summary

    def upgrade_transaction_risk(
        self, chain: str, tx_hash: str, score: int, factors: list[str] | None = None
    ) -> bool:
        upgraded = db.upgrade_transaction_risk(self.conn, chain, tx_hash, score, factors)
        if upgraded:
            logger.info(f"{chain}: raised risk of {tx_hash} to {score}")
        return upgraded

    # --- Bridges ---

    async def classify_transaction(self, tx_hash: str, chain: str) -> BridgeClassification:
        return await self.detector.classify(tx_hash, chain)

    def update_bridge_destination(
        self,
        source_chain: str,
        source_tx_hash: str,
        destination_chain: str,
        destination_tx_hash: str,
        completed_at: int | None = None,
    ) -> bool:
        return db.update_bridge_destination(
            self.conn, source_chain, source_tx_hash, destination_chain, destination_tx_hash, _now(completed_at)
        )

    def mark_bridge_pending(self, source_chain: str, source_tx_hash: str) -> bool:
        return db.mark_bridge_pending(self.conn, source_chain, source_tx_hash)

    def get_pending_bridge_transfers(self, since: int | None = None) -> list[BridgeTransfer]:
        return db.get_pending_bridge_transfers(self.conn, since)

    def get_bridge_stats(self) -> dict:
        return db.bridge_stats(self.conn)

    def get_chain_bridge_activity(self) -> pd.DataFrame:
        return db.bridge_volume_by_chain(self.conn)

    # --- Providers ---

    async def health(self) -> dict[str, ProviderHealth]:
        return await self.pool.all_chain_health()

    async def close(self) -> None:
        await self.pool.close()
