"""Pydantic v2 data models with multi-chain support."""

from __future__ import annotations

import uuid
from enum import Enum

from pydantic import BaseModel, Field


class TxStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class BridgeStatus(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RiskLevel(str, Enum):
    VERY_LOW = "very-low"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


UNKNOWN_ADDRESS = "unknown"


# --- Wallets ---


class TrackedWallet(BaseModel):
    wallet_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    primary_address: str
    addresses: dict[str, list[str]] = Field(
        default_factory=dict, description="chain -> normalized addresses on that chain"
    )
    label: str = ""
    tags: list[str] = Field(default_factory=list)
    total_balance_usd: float = 0.0
    balance_updated_at: int | None = None
    risk_level: RiskLevel | None = None
    risk_score: float | None = None
    last_analyzed: int | None = None
    created_at: int = 0
    updated_at: int = 0

    @property
    def chains(self) -> list[str]:
        return [c for c, addrs in self.addresses.items() if addrs]

    def all_addresses(self) -> list[str]:
        seen: list[str] = []
        for addrs in self.addresses.values():
            for a in addrs:
                if a not in seen:
                    seen.append(a)
        return seen


class TrackResult(BaseModel):
    wallet: TrackedWallet
    skipped_chains: dict[str, str] = Field(
        default_factory=dict, description="chain -> reason the address was rejected"
    )


# --- Transactions ---


class TokenTransfer(BaseModel):
    token: str = Field(description="Token contract address or SPL mint")
    symbol: str = ""
    from_address: str
    to_address: str
    value_raw: str = Field(description="Raw uint256 as string to avoid overflow")
    decimals: int | None = None
    value_decimal: float | None = None
    log_index: int | None = None


class CanonicalTransaction(BaseModel):
    chain: str
    hash: str
    block_number: int
    timestamp: int
    sender: str
    receiver: str
    value: float = Field(description="Value in native units (ETH, SOL, ...)")
    value_raw: str = "0"
    status: TxStatus = TxStatus.SUCCESS
    addresses: list[str] = Field(default_factory=list, description="Every address the tx touched")
    token_transfers: list[TokenTransfer] = Field(default_factory=list)
    is_bridge: bool = False
    bridge_protocol: str | None = None
    risk_score: int = 0
    risk_factors: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == TxStatus.FAILED


class BridgeClassification(BaseModel):
    is_bridge: bool
    protocol: str | None = None
    source_chain: str
    destination_chain: str | None = None


class BridgeTransfer(BaseModel):
    source_chain: str
    source_tx_hash: str
    destination_chain: str | None = None
    destination_tx_hash: str | None = None
    protocol: str
    user_address: str
    source_address: str
    destination_address: str | None = None
    token_symbol: str
    amount: float = 0.0
    status: BridgeStatus = BridgeStatus.INITIATED
    initiated_at: int
    completed_at: int | None = None
    risk_score: int = 0
    risk_factors: list[str] = Field(default_factory=list)


# --- Balances ---


class TokenBalance(BaseModel):
    token: str
    symbol: str
    decimals: int
    balance_raw: str
    balance: float
    price_usd: float = 0.0
    value_usd: float = 0.0


class ChainBalance(BaseModel):
    chain: str
    address: str
    native_symbol: str
    native_balance_raw: str = "0"
    native_balance: float = 0.0
    native_price_usd: float = 0.0
    native_value_usd: float = 0.0
    tokens: list[TokenBalance] = Field(default_factory=list)
    total_value_usd: float = 0.0


class WalletBalanceSnapshot(BaseModel):
    wallet_id: str
    chains: list[ChainBalance] = Field(default_factory=list)
    total_usd: float = 0.0
    updated_at: int


class PortfolioDistribution(BaseModel):
    wallet_id: str
    total_usd: float
    by_chain: dict[str, float] = Field(default_factory=dict, description="chain -> percent")
    by_token: dict[str, float] = Field(default_factory=dict, description="symbol -> percent")
    updated_at: int | None = None


# --- Risk ---


class ChainRisk(BaseModel):
    chain: str
    score: float
    factors: list[str] = Field(default_factory=list)
    transaction_count: int = 0
    last_activity: int | None = None


class BridgeActivityRisk(BaseModel):
    score: float = 0.0
    factors: list[str] = Field(default_factory=list)
    transfer_count: int = 0
    recent_count: int = 0
    round_trips: int = 0
    rapid_bridging: bool = False
    failed_count: int = 0
    unknown_destination_count: int = 0


class ChainConnection(BaseModel):
    chain_a: str
    chain_b: str
    address: str
    confidence: int


class AddressReuseRisk(BaseModel):
    score: float = 0.0
    factors: list[str] = Field(default_factory=list)
    connections: list[ChainConnection] = Field(default_factory=list)


class TimingRisk(BaseModel):
    score: float = 0.0
    factors: list[str] = Field(default_factory=list)
    rapid_cross_chain: int = 0
    synchronized: int = 0
    bursts: int = 0


class RiskAssessment(BaseModel):
    wallet_id: str
    overall_score: float = 0.0
    level: RiskLevel = RiskLevel.VERY_LOW
    chain_risks: list[ChainRisk] = Field(default_factory=list)
    bridge_risk: BridgeActivityRisk = Field(default_factory=BridgeActivityRisk)
    address_reuse_risk: AddressReuseRisk = Field(default_factory=AddressReuseRisk)
    timing_risk: TimingRisk = Field(default_factory=TimingRisk)
    recommendations: list[str] = Field(default_factory=list)
    weights: dict[str, float] = Field(default_factory=dict)
    assessed_at: int

    def recompute_overall(self) -> float:
        """Composite score from the stored sub-scores alone."""
        total = sum(c.transaction_count for c in self.chain_risks)
        if total > 0:
            chain_score = sum(c.score * c.transaction_count for c in self.chain_risks) / total
        else:
            chain_score = 0.0
        w = self.weights
        score = (
            w.get("chain", 0.0) * chain_score
            + w.get("bridge", 0.0) * self.bridge_risk.score
            + w.get("address_reuse", 0.0) * self.address_reuse_risk.score
            + w.get("timing", 0.0) * self.timing_risk.score
        )
        return round(min(100.0, max(0.0, score)), 2)


# --- Sync / health results ---


class ProviderHealth(BaseModel):
    chain: str
    healthy: bool
    latency_ms: float | None = None
    height: int | None = None
    rpc_url: str = ""
    error: str | None = None


class SyncError(BaseModel):
    chain: str
    kind: str
    message: str
    tx_hash: str | None = None


class ChainSyncResult(BaseModel):
    chain: str
    address: str
    inserted: list[CanonicalTransaction] = Field(default_factory=list)
    bridge_transfers: list[BridgeTransfer] = Field(default_factory=list)
    skipped_existing: int = 0
    errors: list[SyncError] = Field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)


class WalletSyncResult(BaseModel):
    wallet_id: str
    chains: list[ChainSyncResult] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return sum(c.inserted_count for c in self.chains)

    @property
    def successful_chains(self) -> list[str]:
        """Chains where at least one address sync completed."""
        return sorted({c.chain for c in self.chains})

    @property
    def failed_chains(self) -> list[str]:
        """Chains with a chain-level error and no completed address sync."""
        succeeded = set(self.successful_chains)
        return sorted({e.chain for e in self.errors if e.tx_hash is None} - succeeded)


class BalanceRefreshResult(BaseModel):
    snapshot: WalletBalanceSnapshot
    errors: list[SyncError] = Field(default_factory=list)
