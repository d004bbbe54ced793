"""DuckDB storage layer for wallets, transactions, bridge transfers, balances and assessments.

Every write is an upsert by key so concurrent syncs of the same wallet are
idempotent. Nested documents are stored as JSON text.
"""

from __future__ import annotations

import json
from pathlib import Path

import duckdb
import pandas as pd

from chainsentry.chain.registry import evm_chains
from chainsentry.config import get_settings
from chainsentry.models.schema import (
    BridgeStatus,
    BridgeTransfer,
    CanonicalTransaction,
    RiskAssessment,
    TrackedWallet,
    WalletBalanceSnapshot,
)

MEMORY = ":memory:"


def get_connection(path: Path | str | None = None) -> duckdb.DuckDBPyConnection:
    """Get a DuckDB connection, creating tables if needed."""
    if path is None:
        path = get_settings().duckdb_path
    if str(path) == MEMORY:
        conn = duckdb.connect(MEMORY)
    else:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(path))
    _create_tables(conn)
    return conn


def _create_tables(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS wallets (
            wallet_id VARCHAR PRIMARY KEY,
            primary_address VARCHAR NOT NULL,
            addresses VARCHAR NOT NULL,
            label VARCHAR DEFAULT '',
            tags VARCHAR[],
            total_balance_usd DOUBLE DEFAULT 0.0,
            balance_updated_at BIGINT,
            risk_level VARCHAR,
            risk_score DOUBLE,
            last_analyzed BIGINT,
            created_at BIGINT NOT NULL,
            updated_at BIGINT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS wallet_addresses (
            wallet_id VARCHAR NOT NULL,
            chain VARCHAR NOT NULL,
            address VARCHAR NOT NULL,
            PRIMARY KEY (wallet_id, chain, address)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            chain VARCHAR NOT NULL,
            hash VARCHAR NOT NULL,
            block_number BIGINT NOT NULL,
            timestamp BIGINT NOT NULL,
            sender VARCHAR NOT NULL,
            receiver VARCHAR NOT NULL,
            value DOUBLE NOT NULL,
            value_raw VARCHAR DEFAULT '0',
            status VARCHAR NOT NULL,
            addresses VARCHAR[],
            token_transfers VARCHAR,
            is_bridge BOOLEAN DEFAULT FALSE,
            bridge_protocol VARCHAR,
            risk_score INTEGER DEFAULT 0,
            risk_factors VARCHAR[],
            PRIMARY KEY (chain, hash)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS bridge_transfers (
            source_chain VARCHAR NOT NULL,
            source_tx_hash VARCHAR NOT NULL,
            destination_chain VARCHAR,
            destination_tx_hash VARCHAR,
            protocol VARCHAR NOT NULL,
            user_address VARCHAR NOT NULL,
            source_address VARCHAR NOT NULL,
            destination_address VARCHAR,
            token_symbol VARCHAR NOT NULL,
            amount DOUBLE DEFAULT 0.0,
            status VARCHAR NOT NULL,
            initiated_at BIGINT NOT NULL,
            completed_at BIGINT,
            risk_score INTEGER DEFAULT 0,
            risk_factors VARCHAR[],
            PRIMARY KEY (source_chain, source_tx_hash)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS balances (
            wallet_id VARCHAR PRIMARY KEY,
            total_usd DOUBLE NOT NULL,
            updated_at BIGINT NOT NULL,
            document VARCHAR NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS risk_assessments (
            wallet_id VARCHAR PRIMARY KEY,
            overall_score DOUBLE NOT NULL,
            level VARCHAR NOT NULL,
            assessed_at BIGINT NOT NULL,
            document VARCHAR NOT NULL
        )
    """)


def _rows(cursor: duckdb.DuckDBPyConnection) -> list[dict]:
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


# --- Wallets ---


def upsert_wallet(conn: duckdb.DuckDBPyConnection, wallet: TrackedWallet) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO wallets VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [
            wallet.wallet_id,
            wallet.primary_address,
            json.dumps(wallet.addresses),
            wallet.label,
            wallet.tags,
            wallet.total_balance_usd,
            wallet.balance_updated_at,
            wallet.risk_level.value if wallet.risk_level else None,
            wallet.risk_score,
            wallet.last_analyzed,
            wallet.created_at,
            wallet.updated_at,
        ],
    )
    conn.execute("DELETE FROM wallet_addresses WHERE wallet_id = ?", [wallet.wallet_id])
    rows = [
        (wallet.wallet_id, chain, address)
        for chain, addrs in wallet.addresses.items()
        for address in addrs
    ]
    if rows:
        conn.executemany("INSERT OR IGNORE INTO wallet_addresses VALUES (?, ?, ?)", rows)


def _wallet_from_row(row: dict) -> TrackedWallet:
    row = dict(row)
    row["addresses"] = json.loads(row["addresses"])
    row["tags"] = list(row["tags"] or [])
    return TrackedWallet.model_validate(row)


def get_wallet(conn: duckdb.DuckDBPyConnection, wallet_id: str) -> TrackedWallet | None:
    rows = _rows(conn.execute("SELECT * FROM wallets WHERE wallet_id = ?", [wallet_id]))
    return _wallet_from_row(rows[0]) if rows else None


def list_wallets(conn: duckdb.DuckDBPyConnection, limit: int = 50, offset: int = 0) -> list[TrackedWallet]:
    rows = _rows(conn.execute(
        "SELECT * FROM wallets ORDER BY created_at DESC, wallet_id LIMIT ? OFFSET ?", [limit, offset]
    ))
    return [_wallet_from_row(r) for r in rows]


def count_wallets(conn: duckdb.DuckDBPyConnection) -> int:
    result = conn.execute("SELECT COUNT(*) FROM wallets").fetchone()
    return result[0] if result else 0


def find_wallets_by_address(
    conn: duckdb.DuckDBPyConnection, address: str, chain: str | None = None
) -> list[TrackedWallet]:
    """Wallets holding an address, optionally on one chain.

    EVM addresses match case-insensitively; base58 keys must match exactly.
    """
    query = """
        SELECT w.* FROM wallets w
        WHERE w.wallet_id IN (
            SELECT wallet_id FROM wallet_addresses
            WHERE (address = ? OR (lower(address) = lower(?) AND list_contains(?, chain)))
    """
    params: list = [address, address, evm_chains()]
    if chain:
        query += " AND chain = ?"
        params.append(chain)
    query += ") ORDER BY w.created_at"
    return [_wallet_from_row(r) for r in _rows(conn.execute(query, params))]


def delete_wallet(conn: duckdb.DuckDBPyConnection, wallet_id: str) -> bool:
    """Delete a wallet and everything keyed by it.

    Transactions and bridge transfers are only removed when no other tracked
    wallet holds one of their addresses.
    """
    wallet = get_wallet(conn, wallet_id)
    if wallet is None:
        return False
    own = wallet.all_addresses()
    others = [
        r[0] for r in conn.execute(
            "SELECT DISTINCT address FROM wallet_addresses WHERE wallet_id != ?", [wallet_id]
        ).fetchall()
    ]
    exclusive = [a for a in own if a not in set(others)]
    if exclusive:
        if others:
            conn.execute(
                """
                DELETE FROM transactions
                WHERE list_has_any(addresses, ?::VARCHAR[])
                  AND NOT list_has_any(addresses, ?::VARCHAR[])
                """,
                [exclusive, others],
            )
        else:
            conn.execute(
                "DELETE FROM transactions WHERE list_has_any(addresses, ?::VARCHAR[])", [exclusive]
            )
        conn.execute(
            "DELETE FROM bridge_transfers WHERE list_contains(?::VARCHAR[], user_address)", [exclusive]
        )
    conn.execute("DELETE FROM balances WHERE wallet_id = ?", [wallet_id])
    conn.execute("DELETE FROM risk_assessments WHERE wallet_id = ?", [wallet_id])
    conn.execute("DELETE FROM wallet_addresses WHERE wallet_id = ?", [wallet_id])
    conn.execute("DELETE FROM wallets WHERE wallet_id = ?", [wallet_id])
    return True


# --- Transactions ---


def _transaction_row(tx: CanonicalTransaction) -> list:
    return [
        tx.chain,
        tx.hash,
        tx.block_number,
        tx.timestamp,
        tx.sender,
        tx.receiver,
        tx.value,
        tx.value_raw,
        tx.status.value,
        tx.addresses,
        json.dumps([t.model_dump() for t in tx.token_transfers]),
        tx.is_bridge,
        tx.bridge_protocol,
        tx.risk_score,
        tx.risk_factors,
    ]


def _transaction_from_row(row: dict) -> CanonicalTransaction:
    row = dict(row)
    row["addresses"] = list(row["addresses"] or [])
    row["risk_factors"] = list(row["risk_factors"] or [])
    row["token_transfers"] = json.loads(row["token_transfers"] or "[]")
    return CanonicalTransaction.model_validate(row)


def get_transaction_count(conn: duckdb.DuckDBPyConnection, chain: str | None = None) -> int:
    if chain is None:
        result = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()
    else:
        result = conn.execute("SELECT COUNT(*) FROM transactions WHERE chain = ?", [chain]).fetchone()
    return result[0] if result else 0


def get_stored_hashes(conn: duckdb.DuckDBPyConnection, chain: str, address: str) -> set[str]:
    """Hashes already stored for (address, chain), the ingestion dedup filter."""
    result = conn.execute(
        "SELECT hash FROM transactions WHERE chain = ? AND list_contains(addresses, ?)",
        [chain, address],
    ).fetchall()
    return {r[0] for r in result}


def get_latest_hash(conn: duckdb.DuckDBPyConnection, chain: str, address: str) -> str | None:
    result = conn.execute(
        """
        SELECT hash FROM transactions
        WHERE chain = ? AND list_contains(addresses, ?)
        ORDER BY timestamp DESC, block_number DESC LIMIT 1
        """,
        [chain, address],
    ).fetchone()
    return result[0] if result else None


def insert_transactions(conn: duckdb.DuckDBPyConnection, txs: list[CanonicalTransaction]) -> int:
    """Batch insert; (chain, hash) already present is ignored. Returns rows inserted."""
    if not txs:
        return 0
    before = get_transaction_count(conn)
    conn.executemany(
        "INSERT OR IGNORE INTO transactions VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [_transaction_row(tx) for tx in txs],
    )
    return get_transaction_count(conn) - before


def get_transaction(conn: duckdb.DuckDBPyConnection, chain: str, tx_hash: str) -> CanonicalTransaction | None:
    rows = _rows(conn.execute("SELECT * FROM transactions WHERE chain = ? AND hash = ?", [chain, tx_hash]))
    return _transaction_from_row(rows[0]) if rows else None


def get_transactions_for_addresses(
    conn: duckdb.DuckDBPyConnection,
    addresses: list[str],
    chains: list[str] | None = None,
    since: int | None = None,
    until: int | None = None,
    min_risk_score: int | None = None,
    bridge_only: bool = False,
    status: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[CanonicalTransaction]:
    """Transactions touching any of the addresses, newest first."""
    if not addresses:
        return []
    query = "SELECT * FROM transactions WHERE list_has_any(addresses, ?::VARCHAR[])"
    params: list = [addresses]
    if chains:
        query += " AND list_contains(?::VARCHAR[], chain)"
        params.append(chains)
    if since is not None:
        query += " AND timestamp >= ?"
        params.append(since)
    if until is not None:
        query += " AND timestamp <= ?"
        params.append(until)
    if min_risk_score is not None:
        query += " AND risk_score >= ?"
        params.append(min_risk_score)
    if bridge_only:
        query += " AND is_bridge"
    if status:
        query += " AND status = ?"
        params.append(status)
    query += " ORDER BY timestamp DESC, chain, hash"
    if limit:
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, offset])
    return [_transaction_from_row(r) for r in _rows(conn.execute(query, params))]


def upgrade_transaction_risk(
    conn: duckdb.DuckDBPyConnection,
    chain: str,
    tx_hash: str,
    score: int,
    factors: list[str] | None = None,
) -> bool:
    """Raise a stored transaction's risk score. Never lowers it."""
    tx = get_transaction(conn, chain, tx_hash)
    if tx is None or score <= tx.risk_score:
        return False
    merged = tx.risk_factors + [f for f in (factors or []) if f not in tx.risk_factors]
    conn.execute(
        "UPDATE transactions SET risk_score = ?, risk_factors = ? WHERE chain = ? AND hash = ?",
        [min(100, int(score)), merged, chain, tx_hash],
    )
    return True


def transaction_stats(conn: duckdb.DuckDBPyConnection, addresses: list[str]) -> pd.DataFrame:
    """Per-chain aggregates over the transactions touching the addresses."""
    return conn.execute(
        """
        SELECT
            chain,
            COUNT(*) AS tx_count,
            SUM(CASE WHEN is_bridge THEN 1 ELSE 0 END) AS bridge_count,
            SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed_count,
            SUM(value) AS volume,
            AVG(risk_score) AS avg_risk,
            MAX(timestamp) AS last_activity
        FROM transactions
        WHERE list_has_any(addresses, ?::VARCHAR[])
        GROUP BY chain
        ORDER BY chain
        """,
        [addresses],
    ).fetchdf()


# --- Bridge transfers ---


def _bridge_row(t: BridgeTransfer) -> list:
    return [
        t.source_chain,
        t.source_tx_hash,
        t.destination_chain,
        t.destination_tx_hash,
        t.protocol,
        t.user_address,
        t.source_address,
        t.destination_address,
        t.token_symbol,
        t.amount,
        t.status.value,
        t.initiated_at,
        t.completed_at,
        t.risk_score,
        t.risk_factors,
    ]


def _bridge_from_row(row: dict) -> BridgeTransfer:
    row = dict(row)
    row["risk_factors"] = list(row["risk_factors"] or [])
    return BridgeTransfer.model_validate(row)


def upsert_bridge_transfers(conn: duckdb.DuckDBPyConnection, transfers: list[BridgeTransfer]) -> int:
    if not transfers:
        return 0
    conn.executemany(
        "INSERT OR REPLACE INTO bridge_transfers VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [_bridge_row(t) for t in transfers],
    )
    return len(transfers)


def get_bridge_transfer(
    conn: duckdb.DuckDBPyConnection, source_chain: str, source_tx_hash: str
) -> BridgeTransfer | None:
    rows = _rows(conn.execute(
        "SELECT * FROM bridge_transfers WHERE source_chain = ? AND source_tx_hash = ?",
        [source_chain, source_tx_hash],
    ))
    return _bridge_from_row(rows[0]) if rows else None


def get_bridge_transfers(
    conn: duckdb.DuckDBPyConnection, addresses: list[str], since: int | None = None
) -> list[BridgeTransfer]:
    """Bridge transfers initiated by any of the addresses, oldest first."""
    if not addresses:
        return []
    query = "SELECT * FROM bridge_transfers WHERE list_contains(?::VARCHAR[], user_address)"
    params: list = [addresses]
    if since is not None:
        query += " AND initiated_at >= ?"
        params.append(since)
    query += " ORDER BY initiated_at, source_chain, source_tx_hash"
    return [_bridge_from_row(r) for r in _rows(conn.execute(query, params))]


def update_bridge_destination(
    conn: duckdb.DuckDBPyConnection,
    source_chain: str,
    source_tx_hash: str,
    destination_chain: str,
    destination_tx_hash: str,
    completed_at: int,
    destination_address: str | None = None,
) -> bool:
    """Record the correlated destination-side transaction and mark the transfer completed."""
    transfer = get_bridge_transfer(conn, source_chain, source_tx_hash)
    if transfer is None or transfer.status == BridgeStatus.FAILED:
        return False
    conn.execute(
        """
        UPDATE bridge_transfers
        SET destination_chain = ?, destination_tx_hash = ?, completed_at = ?, status = ?,
            destination_address = COALESCE(?, destination_address)
        WHERE source_chain = ? AND source_tx_hash = ?
        """,
        [
            destination_chain,
            destination_tx_hash,
            completed_at,
            BridgeStatus.COMPLETED.value,
            destination_address,
            source_chain,
            source_tx_hash,
        ],
    )
    return True


def mark_bridge_pending(conn: duckdb.DuckDBPyConnection, source_chain: str, source_tx_hash: str) -> bool:
    """initiated -> pending. Other states are left alone."""
    transfer = get_bridge_transfer(conn, source_chain, source_tx_hash)
    if transfer is None or transfer.status != BridgeStatus.INITIATED:
        return False
    conn.execute(
        "UPDATE bridge_transfers SET status = ? WHERE source_chain = ? AND source_tx_hash = ?",
        [BridgeStatus.PENDING.value, source_chain, source_tx_hash],
    )
    return True


def get_pending_bridge_transfers(conn: duckdb.DuckDBPyConnection, since: int | None = None) -> list[BridgeTransfer]:
    query = "SELECT * FROM bridge_transfers WHERE status IN ('initiated', 'pending')"
    params: list = []
    if since is not None:
        query += " AND initiated_at >= ?"
        params.append(since)
    query += " ORDER BY initiated_at"
    return [_bridge_from_row(r) for r in _rows(conn.execute(query, params))]


def bridge_stats(conn: duckdb.DuckDBPyConnection) -> dict:
    """Totals, per-protocol and per-route aggregates over all bridge transfers."""
    totals = conn.execute(
        """
        SELECT COUNT(*) AS total,
               COALESCE(SUM(amount), 0) AS volume,
               COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0) AS completed,
               COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS failed,
               COALESCE(SUM(CASE WHEN status IN ('initiated', 'pending') THEN 1 ELSE 0 END), 0) AS pending,
               AVG(risk_score) AS avg_risk
        FROM bridge_transfers
        """
    ).fetchdf()
    by_protocol = conn.execute(
        """
        SELECT protocol, COUNT(*) AS count, SUM(amount) AS volume, AVG(risk_score) AS avg_risk
        FROM bridge_transfers GROUP BY protocol ORDER BY count DESC, protocol
        """
    ).fetchdf()
    by_route = conn.execute(
        """
        SELECT source_chain, COALESCE(destination_chain, 'unknown') AS destination_chain,
               COUNT(*) AS count, SUM(amount) AS volume
        FROM bridge_transfers GROUP BY 1, 2 ORDER BY count DESC, 1, 2
        """
    ).fetchdf()
    row = totals.iloc[0]
    return {
        "total": int(row["total"]),
        "volume": float(row["volume"]),
        "completed": int(row["completed"]),
        "failed": int(row["failed"]),
        "pending": int(row["pending"]),
        "avg_risk": float(row["avg_risk"]) if pd.notna(row["avg_risk"]) else 0.0,
        "by_protocol": by_protocol.to_dict(orient="records"),
        "by_route": by_route.to_dict(orient="records"),
    }


def bridge_volume_by_chain(conn: duckdb.DuckDBPyConnection) -> pd.DataFrame:
    """Outbound (as source) and inbound (as known destination) bridge volume per chain."""
    return conn.execute(
        """
        WITH outbound AS (
            SELECT source_chain AS chain, COUNT(*) AS out_count, SUM(amount) AS out_volume
            FROM bridge_transfers GROUP BY source_chain
        ), inbound AS (
            SELECT destination_chain AS chain, COUNT(*) AS in_count, SUM(amount) AS in_volume
            FROM bridge_transfers WHERE destination_chain IS NOT NULL GROUP BY destination_chain
        )
        SELECT COALESCE(o.chain, i.chain) AS chain,
               COALESCE(o.out_count, 0) AS out_count,
               COALESCE(o.out_volume, 0) AS out_volume,
               COALESCE(i.in_count, 0) AS in_count,
               COALESCE(i.in_volume, 0) AS in_volume
        FROM outbound o FULL OUTER JOIN inbound i ON o.chain = i.chain
        ORDER BY chain
        """
    ).fetchdf()


# --- Balances ---


def upsert_balance_snapshot(conn: duckdb.DuckDBPyConnection, snapshot: WalletBalanceSnapshot) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO balances VALUES (?, ?, ?, ?)",
        [snapshot.wallet_id, snapshot.total_usd, snapshot.updated_at, snapshot.model_dump_json()],
    )


def get_balance_snapshot(conn: duckdb.DuckDBPyConnection, wallet_id: str) -> WalletBalanceSnapshot | None:
    result = conn.execute("SELECT document FROM balances WHERE wallet_id = ?", [wallet_id]).fetchone()
    return WalletBalanceSnapshot.model_validate_json(result[0]) if result else None


# --- Risk assessments ---


def upsert_risk_assessment(conn: duckdb.DuckDBPyConnection, assessment: RiskAssessment) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO risk_assessments VALUES (?, ?, ?, ?, ?)",
        [
            assessment.wallet_id,
            assessment.overall_score,
            assessment.level.value,
            assessment.assessed_at,
            assessment.model_dump_json(),
        ],
    )


def get_risk_assessment(conn: duckdb.DuckDBPyConnection, wallet_id: str) -> RiskAssessment | None:
    result = conn.execute("SELECT document FROM risk_assessments WHERE wallet_id = ?", [wallet_id]).fetchone()
    return RiskAssessment.model_validate_json(result[0]) if result else None


def get_high_risk_wallets(
    conn: duckdb.DuckDBPyConnection, min_score: float = 70, limit: int = 100
) -> list[RiskAssessment]:
    """Assessments at or above min_score, highest first."""
    result = conn.execute(
        """
        SELECT document FROM risk_assessments
        WHERE overall_score >= ?
        ORDER BY overall_score DESC, wallet_id
        LIMIT ?
        """,
        [min_score, limit],
    ).fetchall()
    return [RiskAssessment.model_validate_json(r[0]) for r in result]
