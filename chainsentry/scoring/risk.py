"""Composite wallet risk from per-chain, bridge, address-reuse and timing signals.

assess() is pure: the same wallet, transactions, bridge transfers and `now`
always produce the same assessment. assess_wallet_risk() loads the inputs
from storage and persists the result.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from itertools import combinations

import duckdb

from chainsentry.bridges.protocols import is_common_route
from chainsentry.chain.registry import is_evm_chain
from chainsentry.models.schema import (
    AddressReuseRisk,
    BridgeActivityRisk,
    BridgeStatus,
    BridgeTransfer,
    CanonicalTransaction,
    ChainConnection,
    ChainRisk,
    RiskAssessment,
    RiskLevel,
    TimingRisk,
    TrackedWallet,
)
from chainsentry.scoring import patterns
from chainsentry.scoring.config import DAY, DEFAULT_SCORING, RiskScoringConfig, clamp, tier_points
from chainsentry.storage import database as db
from chainsentry.wallets import tracker

logger = logging.getLogger(__name__)


def risk_level(score: float, config: RiskScoringConfig | None = None) -> RiskLevel:
    levels = (config or DEFAULT_SCORING).levels
    if score >= levels.critical:
        return RiskLevel.CRITICAL
    if score >= levels.high:
        return RiskLevel.HIGH
    if score >= levels.medium:
        return RiskLevel.MEDIUM
    if score >= levels.low:
        return RiskLevel.LOW
    return RiskLevel.VERY_LOW


class RiskAnalyzer:
    def __init__(self, conn: duckdb.DuckDBPyConnection | None = None, config: RiskScoringConfig | None = None):
        self.conn = conn
        self.config = config or DEFAULT_SCORING

    # --- Per-chain ---

    def chain_risk(self, chain: str, txs: list[CanonicalTransaction], now: int) -> ChainRisk:
        c = self.config.chain
        if not txs:
            return ChainRisk(chain=chain, score=0, factors=["No transaction history"], transaction_count=0)

        count = len(txs)
        score = 0
        factors: list[str] = []

        recent = sum(1 for tx in txs if tx.timestamp > now - DAY)
        tier = tier_points(recent, c.daily_count_tiers)
        if tier:
            score += tier.points
            if tier.threshold == max(t.threshold for t in c.daily_count_tiers):
                factors.append(f"Extremely high transaction frequency: {recent} in 24h (possible bot activity)")
            else:
                factors.append(f"High transaction frequency: {recent} in 24h")

        failure_rate = sum(1 for tx in txs if tx.failed) / count
        tier = tier_points(failure_rate, c.failure_ratio_tiers)
        if tier:
            score += tier.points
            label = "High" if tier.threshold == max(t.threshold for t in c.failure_ratio_tiers) else "Moderate"
            factors.append(f"{label} failure rate: {round(failure_rate * 100)}%")

        threshold = c.large_value_thresholds.get(chain, c.default_large_value_threshold)
        large = sum(1 for tx in txs if tx.value > threshold)
        tier = tier_points(large, c.large_value_tiers)
        if tier:
            score += tier.points
            factors.append(f"{large} large value transactions (> {threshold:g} native)")

        bridges = sum(1 for tx in txs if tx.is_bridge)
        if bridges > c.bridge_count_threshold:
            score += c.bridge_count
            factors.append(f"High bridge activity frequency: {bridges} bridge transactions")

        counterparties = {a for tx in txs for a in tx.addresses}
        tier = tier_points(len(counterparties), c.counterparty_tiers)
        if tier:
            score += tier.points
            factors.append(f"Interactions with {len(counterparties)} unique addresses")

        first_seen = min(tx.timestamp for tx in txs)
        age = now - first_seen
        if age < c.young_wallet_age and count > c.young_wallet_tx_threshold:
            score += c.young_wallet
            factors.append("New account with unusually high activity")
        elif age < c.new_wallet_age and count > c.new_wallet_tx_threshold:
            score += c.new_wallet
            factors.append("Young account with very high activity")

        mean_risk = sum(tx.risk_score for tx in txs) / count
        if mean_risk > c.mean_tx_risk_threshold:
            score += c.mean_tx_risk
            factors.append(f"High average transaction risk score: {mean_risk:.1f}")

        return ChainRisk(
            chain=chain,
            score=clamp(score),
            factors=factors,
            transaction_count=count,
            last_activity=max(tx.timestamp for tx in txs),
        )

    # --- Cross-chain ---

    def bridge_risk(self, transfers: list[BridgeTransfer], now: int) -> BridgeActivityRisk:
        b = self.config.bridge
        if not transfers:
            return BridgeActivityRisk()

        score = 0
        factors: list[str] = []

        recent = sum(1 for t in transfers if t.initiated_at > now - DAY)
        tier = tier_points(recent, b.daily_count_tiers)
        if tier:
            score += tier.points
            factors.append(f"High bridging frequency: {recent} transfers in 24h")

        trips = patterns.round_trips(transfers, b.round_trip_window)
        if trips:
            score += b.round_trip
            factors.append(f"{len(trips)} round-trip bridging pattern(s) detected")

        large_uncommon = [
            t for t in transfers
            if t.amount > b.large_uncommon_amount
            and t.destination_chain is not None
            and not is_common_route(t.source_chain, t.destination_chain)
        ]
        if large_uncommon:
            score += b.large_uncommon_route
            factors.append(f"{len(large_uncommon)} large transfer(s) through uncommon bridge routes")

        failed = sum(1 for t in transfers if t.status == BridgeStatus.FAILED)
        if failed > b.failed_threshold:
            score += b.failed
            factors.append(f"{failed} failed bridge attempts")

        rapid = patterns.has_rapid_bridging(transfers, b.rapid_window, b.rapid_count)
        if rapid:
            score += b.rapid
            factors.append("Rapid successive bridging detected")

        unknown = sum(1 for t in transfers if t.destination_chain is None)
        if unknown > b.unknown_destination_threshold:
            score += b.unknown_destination
            factors.append(f"{unknown} bridge transfers with unresolved destination")

        return BridgeActivityRisk(
            score=clamp(score),
            factors=factors,
            transfer_count=len(transfers),
            recent_count=recent,
            round_trips=len(trips),
            rapid_bridging=rapid,
            failed_count=failed,
            unknown_destination_count=unknown,
        )

    def address_reuse_risk(self, wallet: TrackedWallet) -> AddressReuseRisk:
        """Same normalized address on two or more EVM chains links them for any observer."""
        r = self.config.address_reuse
        chains_by_address: dict[str, set[str]] = defaultdict(set)
        display: dict[str, str] = {}
        for chain in sorted(wallet.addresses):
            if not is_evm_chain(chain):
                continue
            for address in wallet.addresses[chain]:
                key = address.lower()
                chains_by_address[key].add(chain)
                display.setdefault(key, address)

        connections: list[ChainConnection] = []
        for key in sorted(chains_by_address):
            chains = sorted(chains_by_address[key])
            for a, b in combinations(chains, 2):
                connections.append(ChainConnection(chain_a=a, chain_b=b, address=display[key], confidence=r.confidence))

        if not connections:
            return AddressReuseRisk()
        reused_chains = sorted({c for conn in connections for c in (conn.chain_a, conn.chain_b)})
        return AddressReuseRisk(
            score=clamp(r.reuse),
            factors=[f"Same address reused on {', '.join(reused_chains)}"],
            connections=connections,
        )

    def timing_risk(self, txs: list[CanonicalTransaction]) -> TimingRisk:
        t = self.config.timing
        if len(txs) < t.min_transactions:
            return TimingRisk()
        ordered = patterns.sort_transactions(txs)

        score = 0
        factors: list[str] = []
        rapid = patterns.rapid_cross_chain_pairs(ordered, t.cross_chain_window)
        if rapid > t.cross_chain_threshold:
            score += t.cross_chain
            factors.append(f"Rapid cross-chain activity: {rapid} chain switches within {t.cross_chain_window // 60} min")
        synced = patterns.synchronized_transactions(ordered, t.synchronized_window, t.synchronized_min_chains)
        if synced > t.synchronized_threshold:
            score += t.synchronized
            factors.append(f"Synchronized activity across multiple chains: {synced} transactions")
        bursts = patterns.burst_windows(ordered, t.burst_window, t.burst_size)
        if bursts > t.burst_threshold:
            score += t.burst
            factors.append(f"Burst activity: {bursts} windows of {t.burst_size}+ transactions")

        return TimingRisk(score=clamp(score), factors=factors, rapid_cross_chain=rapid, synchronized=synced, bursts=bursts)

    # --- Composite ---

    def recommendations(self, assessment: RiskAssessment) -> list[str]:
        recs: list[str] = []
        if assessment.level == RiskLevel.CRITICAL:
            recs.append("CRITICAL RISK - immediate investigation recommended")
            recs.append("Flag this wallet for manual review")
        elif assessment.level == RiskLevel.HIGH:
            recs.append("HIGH RISK - enhanced monitoring required")
            recs.append("Require additional verification for transactions from this wallet")

        if assessment.bridge_risk.score > 50:
            recs.append("Monitor bridge transactions closely for laundering patterns")
            if assessment.bridge_risk.round_trips:
                recs.append("Potential laundering through round-trip bridging detected")

        if assessment.address_reuse_risk.connections:
            recs.append("Cross-chain address reuse detected - track all linked chains")

        for chain_risk in assessment.chain_risks:
            if chain_risk.score < 60:
                continue
            if any("bot activity" in f for f in chain_risk.factors):
                recs.append(f"Potential bot activity detected on {chain_risk.chain}")
            if any("High failure rate" in f for f in chain_risk.factors):
                recs.append(f"High transaction failure rate on {chain_risk.chain} - possible exploit attempts")

        if assessment.overall_score > 30:
            recs.append("Apply transaction limits and enhanced due diligence")
        return recs

    def assess(
        self,
        wallet: TrackedWallet,
        transactions: list[CanonicalTransaction],
        bridges: list[BridgeTransfer],
        now: int,
    ) -> RiskAssessment:
        w = self.config.weights
        weights = {"chain": w.chain, "bridge": w.bridge, "address_reuse": w.address_reuse, "timing": w.timing}
        if not transactions and not bridges:
            return RiskAssessment(wallet_id=wallet.wallet_id, weights=weights, assessed_at=now)

        by_chain: dict[str, list[CanonicalTransaction]] = defaultdict(list)
        for tx in patterns.sort_transactions(transactions):
            by_chain[tx.chain].append(tx)

        chain_risks = [self.chain_risk(chain, by_chain.get(chain, []), now) for chain in sorted(wallet.chains)]
        assessment = RiskAssessment(
            wallet_id=wallet.wallet_id,
            chain_risks=chain_risks,
            bridge_risk=self.bridge_risk(bridges, now),
            address_reuse_risk=self.address_reuse_risk(wallet),
            timing_risk=self.timing_risk(transactions),
            weights=weights,
            assessed_at=now,
        )
        assessment.overall_score = assessment.recompute_overall()
        assessment.level = risk_level(assessment.overall_score, self.config)
        assessment.recommendations = self.recommendations(assessment)
        return assessment

    def assess_wallet_risk(self, wallet_id: str, now: int) -> RiskAssessment:
        """Assess from stored records, persist the assessment and update the wallet's level."""
        if self.conn is None:
            raise RuntimeError("RiskAnalyzer needs a database connection to assess stored wallets")
        wallet = tracker.get_wallet(self.conn, wallet_id)
        addresses = wallet.all_addresses()
        transactions = db.get_transactions_for_addresses(self.conn, addresses, chains=wallet.chains)
        bridges = db.get_bridge_transfers(self.conn, addresses)
        assessment = self.assess(wallet, transactions, bridges, now)
        db.upsert_risk_assessment(self.conn, assessment)
        tracker.update_wallet_risk_level(self.conn, wallet_id, assessment.level, assessment.overall_score, now)
        logger.info(
            f"Wallet {wallet_id}: risk {assessment.overall_score} ({assessment.level.value}) "
            f"from {len(transactions)} transactions, {len(bridges)} bridge transfers"
        )
        return assessment
