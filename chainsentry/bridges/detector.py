"""Classify transactions as bridge traffic against the known-protocol table.

Only exact contract/program matches count. No match, or matches for more
than one protocol at the same level, means "not a bridge".
"""

from __future__ import annotations

import logging

from chainsentry.bridges.protocols import contracts_on, is_common_route, is_known_protocol, programs_on_solana
from chainsentry.chain.pool import ProviderPool
from chainsentry.chain.registry import ChainConfig, ChainFamily
from chainsentry.models.schema import (
    BridgeClassification,
    BridgeStatus,
    BridgeTransfer,
    CanonicalTransaction,
)
from chainsentry.scoring.config import DEFAULT_SCORING, BridgeTransferRiskConfig, clamp, tier_points

logger = logging.getLogger(__name__)


def _single(matches: set[str]) -> str | None:
    return next(iter(matches)) if len(matches) == 1 else None


def _classify_account_model(raw: dict, chain: str) -> str | None:
    contracts = contracts_on(chain)
    if not contracts:
        return None
    tx = raw.get("transaction") or {}
    to = (tx.get("to") or "").lower()
    if to in contracts:
        return contracts[to]
    logs = (raw.get("receipt") or {}).get("logs") or []
    emitters = {contracts[a] for a in ((log.get("address") or "").lower() for log in logs) if a in contracts}
    if len(emitters) > 1:
        logger.debug(f"{chain}: ambiguous bridge logs {sorted(emitters)}, not classifying")
    return _single(emitters)


def _program_ids(instructions: list) -> set[str]:
    ids = set()
    for ix in instructions or []:
        if isinstance(ix, dict) and ix.get("programId"):
            ids.add(str(ix["programId"]))
    return ids


def _classify_instruction_model(raw: dict) -> str | None:
    programs = programs_on_solana()
    message = (raw.get("transaction") or {}).get("message") or {}
    top = {programs[p] for p in _program_ids(message.get("instructions")) if p in programs}
    if top:
        return _single(top)
    inner_ids: set[str] = set()
    for group in (raw.get("meta") or {}).get("innerInstructions") or []:
        inner_ids |= _program_ids(group.get("instructions"))
    return _single({programs[p] for p in inner_ids if p in programs})


def classify_raw(raw: dict, config: ChainConfig) -> BridgeClassification:
    """Classify chain-native transaction detail. Pure, never raises on odd shapes."""
    protocol = None
    if isinstance(raw, dict):
        if config.family is ChainFamily.ACCOUNT:
            protocol = _classify_account_model(raw, config.name)
        else:
            protocol = _classify_instruction_model(raw)
    # Destination chain needs the protocol's payload decoded; left for later correlation
    return BridgeClassification(
        is_bridge=protocol is not None,
        protocol=protocol,
        source_chain=config.name,
        destination_chain=None,
    )


class BridgeDetector:
    def __init__(self, pool: ProviderPool, scoring: BridgeTransferRiskConfig | None = None):
        self.pool = pool
        self.scoring = scoring or DEFAULT_SCORING.bridge_transfer

    async def classify(self, tx_hash: str, chain: str) -> BridgeClassification:
        """Fetch a transaction and classify it. A transaction the node does not know is not a bridge."""
        config = self.pool.config(chain)
        client = await self.pool.get_healthy(chain)
        raw = await client.get_transaction(tx_hash)
        if raw is None:
            return BridgeClassification(is_bridge=False, source_chain=chain)
        return classify_raw(raw, config)

    def classify_raw(self, raw: dict, chain: str) -> BridgeClassification:
        return classify_raw(raw, self.pool.config(chain))

    def build_transfer(
        self, tx: CanonicalTransaction, classification: BridgeClassification, user_address: str
    ) -> BridgeTransfer:
        """BridgeTransfer for a bridge-originating transaction, scored at creation."""
        config = self.pool.config(tx.chain)
        amount = tx.value
        symbol = config.native_symbol
        if amount == 0 and tx.token_transfers:
            first = tx.token_transfers[0]
            amount = first.value_decimal or 0.0
            symbol = first.symbol or first.token
        transfer = BridgeTransfer(
            source_chain=tx.chain,
            source_tx_hash=tx.hash,
            destination_chain=classification.destination_chain,
            protocol=classification.protocol or "unknown",
            user_address=user_address,
            source_address=tx.sender,
            destination_address=None,
            token_symbol=symbol,
            amount=amount,
            status=BridgeStatus.FAILED if tx.failed else BridgeStatus.INITIATED,
            initiated_at=tx.timestamp,
        )
        transfer.risk_score, transfer.risk_factors = score_bridge_transfer(transfer, self.scoring)
        return transfer


def score_bridge_transfer(
    transfer: BridgeTransfer, weights: BridgeTransferRiskConfig | None = None
) -> tuple[int, list[str]]:
    w = weights or DEFAULT_SCORING.bridge_transfer
    score = w.base
    factors = ["Bridge transfer"]
    tier = tier_points(transfer.amount, w.amount_tiers)
    if tier:
        score += tier.points
        factors.append(f"Large bridge amount: {transfer.amount:,.2f} {transfer.token_symbol}")
    if transfer.destination_chain is None:
        score += w.unknown_destination
        factors.append("Destination chain not yet known")
    elif not is_common_route(transfer.source_chain, transfer.destination_chain):
        score += w.uncommon_route
        factors.append(f"Uncommon route {transfer.source_chain} -> {transfer.destination_chain}")
    if not is_known_protocol(transfer.protocol):
        score += w.unknown_protocol
        factors.append(f"Unrecognized bridge protocol: {transfer.protocol}")
    return int(clamp(score)), factors
