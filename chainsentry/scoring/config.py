"""Scoring weights, tiers and windows in one overridable structure."""

from __future__ import annotations

from pydantic import BaseModel, Field

HOUR = 3600
DAY = 24 * HOUR


class Tier(BaseModel):
    """Points awarded once a value exceeds a threshold. Tiers are checked highest first."""

    threshold: float
    points: int


def tier_points(value: float, tiers: list[Tier]) -> Tier | None:
    for tier in sorted(tiers, key=lambda t: t.threshold, reverse=True):
        if value > tier.threshold:
            return tier
    return None


class TransactionRiskConfig(BaseModel):
    """Ingestion-time, single-transaction heuristics."""

    bridge: int = 15
    failed: int = 10
    value_over_1: int = 10
    value_over_10: int = 20  # added on top of value_over_1
    many_addresses_threshold: int = 10
    many_addresses: int = 15
    many_token_transfers_threshold: int = 5
    many_token_transfers: int = 10


class ChainRiskConfig(BaseModel):
    daily_count_tiers: list[Tier] = Field(
        default_factory=lambda: [Tier(threshold=50, points=30), Tier(threshold=20, points=15)]
    )
    failure_ratio_tiers: list[Tier] = Field(
        default_factory=lambda: [Tier(threshold=0.2, points=25), Tier(threshold=0.1, points=15)]
    )
    large_value_tiers: list[Tier] = Field(
        default_factory=lambda: [Tier(threshold=10, points=20), Tier(threshold=5, points=10)]
    )
    # Native units per chain
    large_value_thresholds: dict[str, float] = Field(
        default_factory=lambda: {
            "solana": 1000,
            "ethereum": 5,
            "bsc": 50,
            "polygon": 50000,
            "arbitrum": 5,
            "base": 5,
        }
    )
    default_large_value_threshold: float = 5
    bridge_count_threshold: int = 10
    bridge_count: int = 15
    counterparty_tiers: list[Tier] = Field(
        default_factory=lambda: [Tier(threshold=1000, points=25), Tier(threshold=500, points=15)]
    )
    young_wallet_age: int = 7 * DAY
    young_wallet_tx_threshold: int = 100
    young_wallet: int = 30
    new_wallet_age: int = 30 * DAY
    new_wallet_tx_threshold: int = 500
    new_wallet: int = 20
    mean_tx_risk_threshold: float = 50
    mean_tx_risk: int = 20


class BridgeRiskConfig(BaseModel):
    daily_count_tiers: list[Tier] = Field(
        default_factory=lambda: [Tier(threshold=10, points=30), Tier(threshold=5, points=15)]
    )
    round_trip_window: int = DAY
    round_trip: int = 25
    large_uncommon_amount: float = 50_000
    large_uncommon_route: int = 20
    failed_threshold: int = 3
    failed: int = 15
    rapid_window: int = HOUR
    rapid_count: int = 3
    rapid: int = 20
    unknown_destination_threshold: int = 2
    unknown_destination: int = 5


class BridgeTransferRiskConfig(BaseModel):
    """Score attached to each BridgeTransfer at detection time."""

    base: int = 10
    amount_tiers: list[Tier] = Field(
        default_factory=lambda: [Tier(threshold=100_000, points=30), Tier(threshold=10_000, points=20)]
    )
    uncommon_route: int = 15
    unknown_destination: int = 5
    unknown_protocol: int = 25


class AddressReuseConfig(BaseModel):
    reuse: int = 10
    confidence: int = 95


class TimingRiskConfig(BaseModel):
    min_transactions: int = 10
    cross_chain_window: int = 5 * 60
    cross_chain_threshold: int = 5
    cross_chain: int = 25
    synchronized_window: int = 10 * 60
    synchronized_min_chains: int = 2
    synchronized_threshold: int = 3
    synchronized: int = 30
    burst_window: int = HOUR
    burst_size: int = 10
    burst_threshold: int = 2
    burst: int = 20


class CompositeWeights(BaseModel):
    chain: float = 0.40
    bridge: float = 0.30
    address_reuse: float = 0.15
    timing: float = 0.15


class LevelBreakpoints(BaseModel):
    critical: float = 80
    high: float = 60
    medium: float = 40
    low: float = 20


class RiskScoringConfig(BaseModel):
    transaction: TransactionRiskConfig = Field(default_factory=TransactionRiskConfig)
    chain: ChainRiskConfig = Field(default_factory=ChainRiskConfig)
    bridge: BridgeRiskConfig = Field(default_factory=BridgeRiskConfig)
    bridge_transfer: BridgeTransferRiskConfig = Field(default_factory=BridgeTransferRiskConfig)
    address_reuse: AddressReuseConfig = Field(default_factory=AddressReuseConfig)
    timing: TimingRiskConfig = Field(default_factory=TimingRiskConfig)
    weights: CompositeWeights = Field(default_factory=CompositeWeights)
    levels: LevelBreakpoints = Field(default_factory=LevelBreakpoints)


DEFAULT_SCORING = RiskScoringConfig()


def clamp(score: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, score))
