"""Per-chain native and token balances, valued in USD and cached per wallet."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

import duckdb

from chainsentry.chain.address import normalize_address
from chainsentry.chain.pool import ProviderPool
from chainsentry.errors import ChainSentryError, InvalidAddress
from chainsentry.models.schema import (
    BalanceRefreshResult,
    ChainBalance,
    PortfolioDistribution,
    SyncError,
    TokenBalance,
    WalletBalanceSnapshot,
)
from chainsentry.storage import database as db
from chainsentry.tokens.pricing import price_or_zero

logger = logging.getLogger(__name__)


def _to_units(raw: int, decimals: int) -> float:
    return raw / (10 ** decimals) if decimals else float(raw)


class BalanceAggregator:
    def __init__(self, pool: ProviderPool, conn: duckdb.DuckDBPyConnection, price_source):
        self.pool = pool
        self.conn = conn
        self.price_source = price_source

    async def _read_raw(self, chain: str, address: str) -> tuple[int, list[dict]]:
        client = await self.pool.get_healthy(chain)
        native, tokens = await asyncio.gather(
            client.get_native_balance(address),
            client.get_token_balances(address),
            return_exceptions=True,
        )
        for result in (native, tokens):
            if isinstance(result, BaseException):
                raise result
        return native, tokens

    def _value(self, chain: str, address: str, native_raw: int, tokens: list[dict], prices: dict) -> ChainBalance:
        config = self.pool.config(chain)
        native = _to_units(native_raw, config.native_decimals)
        native_price = price_or_zero(prices, config.native_symbol)
        token_balances = []
        for t in tokens:
            amount = _to_units(int(t["balance_raw"]), int(t["decimals"]))
            price = price_or_zero(prices, t["symbol"])
            token_balances.append(TokenBalance(
                token=t["token"],
                symbol=t["symbol"],
                decimals=int(t["decimals"]),
                balance_raw=str(t["balance_raw"]),
                balance=amount,
                price_usd=price,
                value_usd=amount * price,
            ))
        native_value = native * native_price
        return ChainBalance(
            chain=chain,
            address=address,
            native_symbol=config.native_symbol,
            native_balance_raw=str(native_raw),
            native_balance=native,
            native_price_usd=native_price,
            native_value_usd=native_value,
            tokens=token_balances,
            total_value_usd=native_value + sum(t.value_usd for t in token_balances),
        )

    async def chain_balance(self, chain: str, address: str) -> ChainBalance:
        """Balance of one address on one chain. Raises on provider failure."""
        address = normalize_address(address, chain)
        native_raw, tokens = await self._read_raw(chain, address)
        symbols = [self.pool.config(chain).native_symbol] + [t["symbol"] for t in tokens]
        prices = await self.price_source.get_prices(sorted(set(symbols)))
        return self._value(chain, address, native_raw, tokens, prices)

    async def update_all_balances(
        self, wallet_id: str, addresses: dict[str, list[str]], now: int
    ) -> BalanceRefreshResult:
        """Refresh every (chain, address) concurrently and overwrite the wallet's snapshot.

        A chain that fails is reported in the result and left out of the
        snapshot; the other chains are still valued and stored.
        """
        errors: list[SyncError] = []
        targets: list[tuple[str, str]] = []
        for chain, addrs in addresses.items():
            for address in addrs:
                try:
                    targets.append((chain, normalize_address(address, chain)))
                except InvalidAddress as e:
                    errors.append(SyncError(chain=chain, kind=e.kind, message=str(e)))

        raw_results = await asyncio.gather(
            *(self._read_raw(chain, address) for chain, address in targets),
            return_exceptions=True,
        )

        fetched: list[tuple[str, str, int, list[dict]]] = []
        symbols: set[str] = set()
        for (chain, address), result in zip(targets, raw_results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                kind = result.kind if isinstance(result, ChainSentryError) else type(result).__name__
                logger.warning(f"{chain}: balance read for {address} failed: {result}")
                errors.append(SyncError(chain=chain, kind=kind, message=str(result)))
                continue
            native_raw, tokens = result
            fetched.append((chain, address, native_raw, tokens))
            symbols.add(self.pool.config(chain).native_symbol)
            symbols.update(t["symbol"] for t in tokens)

        prices = await self.price_source.get_prices(sorted(symbols)) if symbols else {}
        missing = symbols - set(prices)
        if missing:
            logger.info(f"No price for {sorted(missing)}, valuing at 0")

        chain_balances = [self._value(c, a, n, t, prices) for c, a, n, t in fetched]
        snapshot = WalletBalanceSnapshot(
            wallet_id=wallet_id,
            chains=chain_balances,
            total_usd=sum(b.total_value_usd for b in chain_balances),
            updated_at=now,
        )
        db.upsert_balance_snapshot(self.conn, snapshot)

        wallet = db.get_wallet(self.conn, wallet_id)
        if wallet is not None:
            wallet.total_balance_usd = snapshot.total_usd
            wallet.balance_updated_at = now
            wallet.updated_at = now
            db.upsert_wallet(self.conn, wallet)

        logger.info(
            f"Wallet {wallet_id}: balances refreshed on {len(chain_balances)} chain(s), "
            f"total ${snapshot.total_usd:,.2f}, {len(errors)} error(s)"
        )
        return BalanceRefreshResult(snapshot=snapshot, errors=errors)

    def get_portfolio_distribution(self, wallet_id: str) -> PortfolioDistribution | None:
        """Share of the cached total per chain and per token symbol, in percent."""
        snapshot = db.get_balance_snapshot(self.conn, wallet_id)
        if snapshot is None:
            return None
        by_chain: dict[str, float] = defaultdict(float)
        by_token: dict[str, float] = defaultdict(float)
        for b in snapshot.chains:
            by_chain[b.chain] += b.total_value_usd
            by_token[b.native_symbol] += b.native_value_usd
            for t in b.tokens:
                by_token[t.symbol] += t.value_usd
        total = snapshot.total_usd

        def pct(values: dict[str, float]) -> dict[str, float]:
            if total <= 0:
                return {k: 0.0 for k in sorted(values)}
            return {k: round(v / total * 100, 2) for k, v in sorted(values.items())}

        return PortfolioDistribution(
            wallet_id=wallet_id,
            total_usd=total,
            by_chain=pct(by_chain),
            by_token=pct(by_token),
            updated_at=snapshot.updated_at,
        )
