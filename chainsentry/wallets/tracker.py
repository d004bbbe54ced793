"""Tracked wallet lifecycle: create, add addresses, look up, remove."""

from __future__ import annotations

import logging
import time

import duckdb

from chainsentry.chain.address import detect_chains, validate_address, try_normalize
from chainsentry.chain.registry import get_chain_config
from chainsentry.errors import InvalidAddress, NotFound
from chainsentry.models.schema import RiskLevel, TrackedWallet, TrackResult
from chainsentry.storage import database as db

logger = logging.getLogger(__name__)


def _now(now: int | None) -> int:
    return int(time.time()) if now is None else now


def track_wallet(
    conn: duckdb.DuckDBPyConnection,
    primary_address: str,
    chains: list[str] | None = None,
    label: str = "",
    tags: list[str] | None = None,
    now: int | None = None,
) -> TrackResult:
    """Start tracking an address on each requested chain (default: every chain that accepts it).

    Chains that reject the address are skipped and reported. If no chain
    accepts it, InvalidAddress is raised and nothing is stored. Tracking an
    address that is already some wallet's primary address extends that wallet.
    """
    now = _now(now)
    if chains is None:
        chains = detect_chains(primary_address)
        if not chains:
            raise InvalidAddress(primary_address, "any", "not a valid address on any supported chain")
    for chain in chains:
        get_chain_config(chain)

    accepted: dict[str, str] = {}
    skipped: dict[str, str] = {}
    for chain in chains:
        result = validate_address(primary_address, chain)
        if result.is_valid and result.normalized:
            accepted[chain] = result.normalized
        else:
            skipped[chain] = result.error or "invalid address"
    if not accepted:
        raise InvalidAddress(primary_address, ",".join(chains), "; ".join(sorted(set(skipped.values()))))

    primary = next(iter(accepted.values()))
    wallet = None
    for existing in db.find_wallets_by_address(conn, primary):
        if existing.primary_address == primary:
            wallet = existing
            break
    if wallet is None:
        wallet = TrackedWallet(
            primary_address=primary, label=label, tags=list(tags or []), created_at=now, updated_at=now,
        )
    else:
        if label:
            wallet.label = label
        for tag in tags or []:
            if tag not in wallet.tags:
                wallet.tags.append(tag)
        wallet.updated_at = now

    for chain, address in accepted.items():
        addrs = wallet.addresses.setdefault(chain, [])
        if address not in addrs:
            addrs.append(address)

    db.upsert_wallet(conn, wallet)
    if skipped:
        logger.warning(f"Wallet {wallet.wallet_id}: skipped chains {sorted(skipped)}")
    logger.info(f"Tracking wallet {wallet.wallet_id} on {sorted(accepted)}")
    return TrackResult(wallet=wallet, skipped_chains=skipped)


def add_address(
    conn: duckdb.DuckDBPyConnection, wallet_id: str, address: str, chain: str, now: int | None = None
) -> TrackedWallet:
    get_chain_config(chain)
    wallet = get_wallet(conn, wallet_id)
    result = validate_address(address, chain)
    if not result.is_valid or not result.normalized:
        raise InvalidAddress(address, chain, result.error or "invalid address")
    addrs = wallet.addresses.setdefault(chain, [])
    if result.normalized not in addrs:
        addrs.append(result.normalized)
        wallet.updated_at = _now(now)
        db.upsert_wallet(conn, wallet)
        logger.info(f"Wallet {wallet_id}: added {chain} address {result.normalized}")
    return wallet


def get_wallet(conn: duckdb.DuckDBPyConnection, wallet_id: str) -> TrackedWallet:
    wallet = db.get_wallet(conn, wallet_id)
    if wallet is None:
        raise NotFound("wallet", wallet_id)
    return wallet


def list_wallets(conn: duckdb.DuckDBPyConnection, page: int = 1, limit: int = 50) -> list[TrackedWallet]:
    page = max(1, page)
    return db.list_wallets(conn, limit=limit, offset=(page - 1) * limit)


def find_wallets_by_address(
    conn: duckdb.DuckDBPyConnection, address: str, chain: str | None = None
) -> list[TrackedWallet]:
    if chain:
        address = try_normalize(address, chain)
    return db.find_wallets_by_address(conn, address, chain)


def remove_wallet(conn: duckdb.DuckDBPyConnection, wallet_id: str) -> None:
    if not db.delete_wallet(conn, wallet_id):
        raise NotFound("wallet", wallet_id)
    logger.info(f"Removed wallet {wallet_id}")


def update_wallet_risk_level(
    conn: duckdb.DuckDBPyConnection,
    wallet_id: str,
    level: RiskLevel,
    score: float | None = None,
    now: int | None = None,
) -> TrackedWallet:
    wallet = get_wallet(conn, wallet_id)
    now = _now(now)
    wallet.risk_level = level
    wallet.risk_score = score
    wallet.last_analyzed = now
    wallet.updated_at = now
    db.upsert_wallet(conn, wallet)
    return wallet
