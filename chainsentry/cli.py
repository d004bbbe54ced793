"""Click CLI: track, sync, balances, assess, and reporting commands."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import click

from chainsentry.chain.registry import supported_chains


def _ts(value: int | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _engine():
    from chainsentry.engine import WalletRiskEngine

    return WalletRiskEngine()


@click.group()
@click.version_option(version="0.1.0")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose: bool):
    """ChainSentry - Cross-chain wallet risk analysis."""
    from chainsentry.config import get_settings

    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@cli.command()
@click.argument("address")
@click.option("--chain", "chains", multiple=True, type=click.Choice(supported_chains()),
              help="Chain to track on (repeatable). Default: every chain accepting the address")
@click.option("--label", default="", help="Free-text label")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
def track(address: str, chains: tuple[str, ...], label: str, tags: tuple[str, ...]):
    """Start tracking a wallet."""
    from chainsentry.errors import InvalidAddress

    engine = _engine()
    try:
        result = engine.track_wallet(address, list(chains) or None, label, list(tags))
    except InvalidAddress as e:
        raise click.ClickException(str(e))
    wallet = result.wallet
    click.echo(f"Wallet {wallet.wallet_id} ({wallet.primary_address})")
    for chain, addrs in sorted(wallet.addresses.items()):
        click.echo(f"  {chain}: {', '.join(addrs)}")
    for chain, reason in sorted(result.skipped_chains.items()):
        click.echo(f"  skipped {chain}: {reason}")
    engine.conn.close()


@cli.command("add-address")
@click.argument("wallet_id")
@click.argument("address")
@click.option("--chain", required=True, type=click.Choice(supported_chains()))
def add_address(wallet_id: str, address: str, chain: str):
    """Add an address on a chain to a tracked wallet."""
    from chainsentry.errors import InvalidAddress, NotFound

    engine = _engine()
    try:
        wallet = engine.add_address(wallet_id, address, chain)
    except (InvalidAddress, NotFound) as e:
        raise click.ClickException(str(e))
    click.echo(f"{chain}: {', '.join(wallet.addresses[chain])}")
    engine.conn.close()


@cli.command()
@click.argument("address")
@click.option("--chain", default=None, type=click.Choice(supported_chains()),
              help="Validate for one chain. Default: report every chain")
def validate(address: str, chain: str | None):
    """Validate and normalize an address."""
    from chainsentry.chain.address import validate_address

    for name in [chain] if chain else supported_chains():
        result = validate_address(address, name)
        if result.is_valid:
            click.echo(f"{name:10s} valid    {result.normalized}")
        else:
            click.echo(f"{name:10s} invalid  {result.error}")


@cli.command()
def health():
    """Check every chain's RPC endpoint."""
    engine = _engine()

    async def _health():
        try:
            return await engine.health()
        finally:
            await engine.close()

    for chain, status in asyncio.run(_health()).items():
        if status.healthy:
            click.echo(f"{chain:10s} OK    {status.latency_ms:8.1f} ms  height={status.height}  {status.rpc_url}")
        else:
            click.echo(f"{chain:10s} DOWN  {status.error}  {status.rpc_url}")


@cli.command()
@click.option("--wallet-id", "wallet_ids", multiple=True, help="Wallet to sync (repeatable). Default: all")
@click.option("--chain", "chains", multiple=True, type=click.Choice(supported_chains()))
@click.option("--limit", default=None, type=int, help="Transactions per address and chain")
@click.option("--deadline", default=None, type=float, help="Seconds allowed per wallet")
def sync(wallet_ids: tuple[str, ...], chains: tuple[str, ...], limit: int | None, deadline: float | None):
    """Ingest recent transactions for tracked wallets."""
    from tqdm import tqdm

    engine = _engine()
    ids = list(wallet_ids) or [w.wallet_id for w in engine.list_wallets(limit=10_000)]

    async def _sync():
        results = []
        try:
            for wallet_id in tqdm(ids, desc="Syncing wallets"):
                results.append(await engine.sync_wallet_transactions(
                    wallet_id, chains=list(chains) or None, limit=limit, deadline=deadline,
                ))
        finally:
            await engine.close()
        return results

    for result in asyncio.run(_sync()):
        click.echo(f"{result.wallet_id}: {result.inserted_count} new transaction(s)")
        for error in result.errors:
            where = f" {error.tx_hash}" if error.tx_hash else ""
            click.echo(f"  {error.chain}{where}: {error.kind}: {error.message}")
    engine.conn.close()


@cli.command()
@click.argument("wallet_id")
def balances(wallet_id: str):
    """Refresh and show a wallet's balances."""
    engine = _engine()

    async def _refresh():
        try:
            return await engine.update_all_balances(wallet_id)
        finally:
            await engine.close()

    result = asyncio.run(_refresh())
    for b in result.snapshot.chains:
        click.echo(f"{b.chain:10s} {b.native_balance:.6f} {b.native_symbol}  ${b.total_value_usd:,.2f}")
        for t in b.tokens:
            click.echo(f"{'':10s}   {t.balance:.4f} {t.symbol}  ${t.value_usd:,.2f}")
    click.echo(f"Total: ${result.snapshot.total_usd:,.2f}")
    for error in result.errors:
        click.echo(f"  {error.chain}: {error.kind}: {error.message}")
    engine.conn.close()


@cli.command()
@click.argument("wallet_id")
def assess(wallet_id: str):
    """Compute and store a wallet's risk assessment."""
    from chainsentry.errors import NotFound

    engine = _engine()
    try:
        a = engine.assess_wallet_risk(wallet_id)
    except NotFound as e:
        raise click.ClickException(str(e))
    click.echo(f"Overall: {a.overall_score:.2f} ({a.level.value})")
    for c in a.chain_risks:
        click.echo(f"  {c.chain:10s} {c.score:5.1f}  txs={c.transaction_count}  last={_ts(c.last_activity)}")
        for factor in c.factors:
            click.echo(f"      - {factor}")
    click.echo(f"  bridge        {a.bridge_risk.score:5.1f}  {'; '.join(a.bridge_risk.factors)}")
    click.echo(f"  address reuse {a.address_reuse_risk.score:5.1f}  {'; '.join(a.address_reuse_risk.factors)}")
    click.echo(f"  timing        {a.timing_risk.score:5.1f}  {'; '.join(a.timing_risk.factors)}")
    for rec in a.recommendations:
        click.echo(f"* {rec}")
    engine.conn.close()


@cli.command("high-risk")
@click.option("--min-score", default=70.0)
@click.option("--limit", default=100)
def high_risk(min_score: float, limit: int):
    """List wallets whose latest assessment is at or above a score."""
    engine = _engine()
    for a in engine.get_high_risk_wallets(min_score, limit):
        click.echo(f"{a.wallet_id}  {a.overall_score:6.2f}  {a.level.value:9s}  {_ts(a.assessed_at)}")
    engine.conn.close()


@cli.command()
@click.argument("wallet_id")
@click.option("--chain", default=None, type=click.Choice(supported_chains()))
@click.option("--min-risk", default=None, type=int)
@click.option("--bridges", "bridge_only", is_flag=True, help="Bridge transactions only")
@click.option("--status", default=None, type=click.Choice(["success", "failed"]))
@click.option("--limit", default=50)
@click.option("--offset", default=0)
def history(wallet_id: str, chain: str | None, min_risk: int | None, bridge_only: bool,
            status: str | None, limit: int, offset: int):
    """Show stored transactions for a wallet, newest first."""
    engine = _engine()
    txs = engine.get_transaction_history(
        wallet_id, chain=chain, min_risk_score=min_risk, bridge_only=bridge_only,
        status=status, limit=limit, offset=offset,
    )
    for tx in txs:
        bridge = f" [{tx.bridge_protocol}]" if tx.is_bridge else ""
        click.echo(
            f"{_ts(tx.timestamp)}  {tx.chain:9s} {tx.hash[:18]}..  {tx.value:>14.6f}  "
            f"{tx.status.value:7s} risk={tx.risk_score}{bridge}"
        )
    click.echo(f"{len(txs)} transaction(s)")
    engine.conn.close()


@cli.command("bridge-stats")
def bridge_stats():
    """Aggregate bridge transfer statistics."""
    engine = _engine()
    stats = engine.get_bridge_stats()
    click.echo(
        f"Total: {stats['total']}  volume={stats['volume']:,.2f}  completed={stats['completed']}  "
        f"pending={stats['pending']}  failed={stats['failed']}  avg risk={stats['avg_risk']:.1f}"
    )
    for row in stats["by_protocol"]:
        click.echo(f"  {row['protocol']:12s} {row['count']:6d}")
    for row in stats["by_route"]:
        click.echo(f"  {row['source_chain']} -> {row['destination_chain']}: {row['count']}")
    engine.conn.close()


@cli.command()
@click.argument("wallet_id")
@click.confirmation_option(prompt="Remove this wallet and its stored records?")
def remove(wallet_id: str):
    """Stop tracking a wallet and delete its records."""
    from chainsentry.errors import NotFound

    engine = _engine()
    try:
        engine.remove_wallet(wallet_id)
    except NotFound as e:
        raise click.ClickException(str(e))
    click.echo(f"Removed {wallet_id}")
    engine.conn.close()


if __name__ == "__main__":
    cli()
