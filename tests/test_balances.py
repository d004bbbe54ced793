from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from builders import EVM_A, NOW, sol_address
from chainsentry.balances.aggregator import BalanceAggregator
from chainsentry.storage import database as db
from chainsentry.tokens.pricing import DefiLlamaPriceSource, StaticPriceSource, price_or_zero
from chainsentry.wallets import tracker

USDC_TOKEN = {
    "token": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
    "symbol": "USDC",
    "decimals": 6,
    "balance_raw": 1_000 * 10**6,
}


def _behaviors():
    return {
        "ethereum": {"native": 2 * 10**18, "tokens": [USDC_TOKEN]},
        "solana": {"native": 3 * 10**9},
    }


class TestUpdateAllBalances:
    async def test_values_and_caches_snapshot(self, conn, make_pool):
        me = sol_address(1)
        wallet = tracker.track_wallet(conn, EVM_A, ["ethereum"], now=NOW).wallet
        wallet = tracker.add_address(conn, wallet.wallet_id, me, "solana", now=NOW)

        aggregator = BalanceAggregator(make_pool(_behaviors()), conn, StaticPriceSource())
        result = await aggregator.update_all_balances(wallet.wallet_id, wallet.addresses, NOW + 60)

        assert result.errors == []
        by_chain = {b.chain: b for b in result.snapshot.chains}
        eth = by_chain["ethereum"]
        assert eth.native_balance == pytest.approx(2.0)
        assert eth.native_value_usd == pytest.approx(4000.0)
        assert eth.tokens[0].balance == pytest.approx(1000.0)
        assert eth.total_value_usd == pytest.approx(5000.0)
        assert by_chain["solana"].total_value_usd == pytest.approx(300.0)
        assert result.snapshot.total_usd == pytest.approx(5300.0)

        assert db.get_balance_snapshot(conn, wallet.wallet_id) == result.snapshot
        stored = tracker.get_wallet(conn, wallet.wallet_id)
        assert stored.total_balance_usd == pytest.approx(5300.0)
        assert stored.balance_updated_at == NOW + 60

    async def test_unknown_price_values_at_zero(self, conn, make_pool):
        aggregator = BalanceAggregator(make_pool(_behaviors()), conn, StaticPriceSource({"ETH": 2000.0}))
        result = await aggregator.update_all_balances("w1", {"ethereum": [EVM_A]}, NOW)
        token = result.snapshot.chains[0].tokens[0]
        assert token.price_usd == 0
        assert token.value_usd == 0
        assert result.snapshot.total_usd == pytest.approx(4000.0)

    async def test_failing_chain_reported_others_kept(self, conn, make_pool):
        behaviors = _behaviors()
        behaviors["polygon"] = {"fail": True}
        aggregator = BalanceAggregator(make_pool(behaviors), conn, StaticPriceSource())
        result = await aggregator.update_all_balances(
            "w1", {"ethereum": [EVM_A], "polygon": [EVM_A], "solana": ["not-valid"]}, NOW,
        )
        assert [b.chain for b in result.snapshot.chains] == ["ethereum"]
        kinds = {e.chain: e.kind for e in result.errors}
        assert kinds == {"polygon": "ProviderUnavailable", "solana": "InvalidAddress"}

    async def test_failed_token_read_is_reported(self, conn, make_pool):
        behaviors = _behaviors()
        behaviors["ethereum"]["tokens_error"] = RuntimeError("execution reverted")
        aggregator = BalanceAggregator(make_pool(behaviors), conn, StaticPriceSource())
        result = await aggregator.update_all_balances(
            "w1", {"ethereum": [EVM_A], "solana": [sol_address(2)]}, NOW,
        )
        assert [b.chain for b in result.snapshot.chains] == ["solana"]
        assert [(e.chain, e.kind) for e in result.errors] == [("ethereum", "RuntimeError")]
        assert "execution reverted" in result.errors[0].message

    async def test_chain_balance(self, conn, make_pool):
        aggregator = BalanceAggregator(make_pool(_behaviors()), conn, StaticPriceSource())
        balance = await aggregator.chain_balance("ethereum", EVM_A.lower())
        assert balance.address == EVM_A
        assert balance.total_value_usd == pytest.approx(5000.0)

    async def test_portfolio_distribution(self, conn, make_pool):
        aggregator = BalanceAggregator(make_pool(_behaviors()), conn, StaticPriceSource())
        await aggregator.update_all_balances("w1", {"ethereum": [EVM_A], "solana": [sol_address(2)]}, NOW)
        dist = aggregator.get_portfolio_distribution("w1")
        assert dist.total_usd == pytest.approx(5300.0)
        assert dist.by_chain == {"ethereum": pytest.approx(94.34), "solana": pytest.approx(5.66)}
        assert dist.by_token["ETH"] == pytest.approx(75.47)
        assert dist.by_token["USDC"] == pytest.approx(18.87)
        assert aggregator.get_portfolio_distribution("missing") is None

    async def test_empty_wallet_distribution(self, conn, make_pool):
        aggregator = BalanceAggregator(make_pool(), conn, StaticPriceSource())
        await aggregator.update_all_balances("w1", {"ethereum": [EVM_A]}, NOW)
        dist = aggregator.get_portfolio_distribution("w1")
        assert dist.total_usd == 0
        assert dist.by_chain == {"ethereum": 0.0}


class TestPricing:
    def test_price_or_zero(self):
        assert price_or_zero({"ETH": 2000.0}, "ETH") == 2000.0
        assert price_or_zero({}, "XYZ") == 0.0

    async def test_static_source_omits_unknown(self):
        prices = await StaticPriceSource().get_prices(["ETH", "XYZ"])
        assert prices == {"ETH": 2000.0}

    async def test_defillama_parses_response(self):
        response = MagicMock()
        response.raise_for_status.return_value = None
        response.json.return_value = {
            "coins": {
                "coingecko:ethereum": {"price": 2500.5, "symbol": "ETH"},
                "coingecko:solana": {"price": 150.0, "symbol": "SOL"},
            }
        }
        with patch("chainsentry.tokens.pricing.httpx.AsyncClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.get = AsyncMock(return_value=response)
            prices = await DefiLlamaPriceSource("https://prices.invalid").get_prices(["ETH", "SOL", "XYZ"])

        assert prices == {"ETH": 2500.5, "SOL": 150.0}
        url = client.get.call_args.args[0]
        assert url == "https://prices.invalid/prices/current/coingecko:ethereum,coingecko:solana"

    async def test_defillama_errors_yield_empty(self):
        with patch("chainsentry.tokens.pricing.httpx.AsyncClient") as client_cls:
            client = client_cls.return_value.__aenter__.return_value
            client.get = AsyncMock(side_effect=httpx.ConnectError("down"))
            assert await DefiLlamaPriceSource().get_prices(["ETH"]) == {}

    async def test_defillama_no_known_symbols(self):
        assert await DefiLlamaPriceSource().get_prices(["XYZ"]) == {}
