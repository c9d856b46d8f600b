"""
Unit tests for dex/opportunity_math.py

Verifies price comparison, direction, profit policies and reserve-derived
trade sizing.
"""

import unittest

from dex import opportunity_math
from dex.opportunity_math import (
    BUY_LEG_GAS,
    SELL_LEG_GAS,
    deviation_pct,
    evaluate_opportunity,
    optimal_trade_amount,
    optimal_trade_amount_for_pools,
    spread_profit_pct,
    usd_price,
)
from dex.types import PoolReserves, PriceSnapshot, Quote, TokenReserve

ETH_WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
ETH_SEED = "0x5eed99d066a8CaF10f3E4327c1b3D8b673485eED"
ARB_WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
ARB_SEED = "0x86f65121804D2Cdbef79F9f072D4e0c2eEbABC08"


def make_quote(network, rate_out, fee=3000):
    return Quote(
        network=network,
        rate_out=rate_out,
        rate_in=1 / rate_out,
        pool_address="0x0000000000000000000000000000000000000001",
        fee=fee,
    )


def make_reserves(base_address, base_reserve, traded_address, traded_reserve):
    base = TokenReserve(base_address, "WETH", 18, base_reserve)
    traded = TokenReserve(traded_address, "SEED", 18, traded_reserve)
    if base_address.lower() < traded_address.lower():
        return PoolReserves(token0=base, token1=traded)
    return PoolReserves(token0=traded, token1=base)


class TestPriceMeasures(unittest.TestCase):
    """Test price and profit helpers."""

    def test_usd_price(self):
        quote = make_quote("ethereum", 0.01)
        self.assertAlmostEqual(usd_price(quote, 2000.0), 20.0)

    def test_deviation_is_symmetric(self):
        self.assertAlmostEqual(deviation_pct(20.0, 19.0), deviation_pct(19.0, 20.0))

    def test_deviation_zero_prices(self):
        self.assertEqual(deviation_pct(0.0, 0.0), 0.0)

    def test_deviation_value(self):
        # |20 - 19| / 19.5 * 100
        self.assertAlmostEqual(deviation_pct(20.0, 19.0), 5.128205, places=5)

    def test_spread_profit(self):
        self.assertAlmostEqual(spread_profit_pct(19.0, 20.0), 5.263158, places=5)
        self.assertEqual(spread_profit_pct(0.0, 20.0), 0.0)


class TestOptimalTradeAmount(unittest.TestCase):
    """Test the reserve-derived sizing formula."""

    def test_positive_size(self):
        # (sqrt(1000 * 10 * 10 * 10) - 10 * 10) / (1000 + 10)
        amount = optimal_trade_amount(1000.0, 10.0, 10.0)
        self.assertAlmostEqual(amount, 900 / 1010)

    def test_negative_size_returns_none(self):
        self.assertIsNone(optimal_trade_amount(1.0, 1.0, 10.0))

    def test_zero_reserves_return_none(self):
        self.assertIsNone(optimal_trade_amount(0.0, 0.0, 0.0))

    def test_non_finite_returns_none(self):
        self.assertIsNone(optimal_trade_amount(float("inf"), 1.0, 1.0))

    def test_size_from_pool_reserves(self):
        buy = make_reserves(ARB_WETH, 10.0, ARB_SEED, 1000.0)
        sell = make_reserves(ETH_WETH, 10.0, ETH_SEED, 900.0)

        amount = optimal_trade_amount_for_pools(
            buy, sell, buy_base_token=ARB_WETH, buy_traded_token=ARB_SEED, sell_base_token=ETH_WETH
        )
        self.assertAlmostEqual(amount, 900 / 1010)

    def test_unknown_token_raises(self):
        buy = make_reserves(ARB_WETH, 10.0, ARB_SEED, 1000.0)
        sell = make_reserves(ETH_WETH, 10.0, ETH_SEED, 900.0)

        with self.assertRaises(KeyError):
            optimal_trade_amount_for_pools(
                buy, sell, buy_base_token=ETH_WETH, buy_traded_token=ARB_SEED, sell_base_token=ETH_WETH
            )


class TestEvaluateOpportunity(unittest.TestCase):
    """Test opportunity evaluation end to end."""

    def setUp(self):
        self.prices = PriceSnapshot(base_usd=2000.0)
        self.quote_a = make_quote("ethereum", 1 / 100, fee=10000)
        self.quote_b = make_quote("arbitrum", 1 / 105, fee=3000)

    def test_direction_and_deviation(self):
        opp = evaluate_opportunity(self.quote_a, self.quote_b, self.prices)

        self.assertIsNotNone(opp)
        self.assertEqual(opp.buy_network, "arbitrum")
        self.assertEqual(opp.sell_network, "ethereum")
        self.assertAlmostEqual(opp.buy_price_usd, 2000 / 105)
        self.assertAlmostEqual(opp.sell_price_usd, 20.0)
        self.assertAlmostEqual(opp.deviation_pct, 4.878049, places=5)
        self.assertAlmostEqual(opp.profit_pct, opp.deviation_pct)
        self.assertAlmostEqual(opp.absolute_difference, 20.0 - 2000 / 105)
        self.assertEqual(opp.gas_estimate, BUY_LEG_GAS + SELL_LEG_GAS)
        self.assertEqual(opp.gas_estimate, 230_000)
        self.assertEqual(opp.buy_fee, 3000)
        self.assertEqual(opp.sell_fee, 10000)
        self.assertIsNone(opp.optimal_trade_amount)

    def test_swapping_networks_gives_same_deviation(self):
        forward = evaluate_opportunity(self.quote_a, self.quote_b, self.prices)
        backward = evaluate_opportunity(self.quote_b, self.quote_a, self.prices)

        self.assertAlmostEqual(forward.deviation_pct, backward.deviation_pct)
        self.assertEqual(forward.buy_network, backward.buy_network)

    def test_spread_policy(self):
        opp = evaluate_opportunity(
            self.quote_a, self.quote_b, self.prices, profit_formula="spread"
        )
        self.assertAlmostEqual(opp.profit_pct, 5.0, places=6)
        self.assertAlmostEqual(opp.deviation_pct, 4.878049, places=5)

    def test_missing_quote_returns_none(self):
        self.assertIsNone(evaluate_opportunity(None, self.quote_b, self.prices))
        self.assertIsNone(evaluate_opportunity(self.quote_a, None, self.prices))

    def test_missing_or_zero_price_returns_none(self):
        self.assertIsNone(evaluate_opportunity(self.quote_a, self.quote_b, None))
        self.assertIsNone(
            evaluate_opportunity(self.quote_a, self.quote_b, PriceSnapshot(base_usd=0.0))
        )

    def test_with_reserves_sets_size(self):
        reserves_eth = make_reserves(ETH_WETH, 10.0, ETH_SEED, 900.0)
        reserves_arb = make_reserves(ARB_WETH, 10.0, ARB_SEED, 1000.0)

        opp = evaluate_opportunity(
            self.quote_a,
            self.quote_b,
            self.prices,
            reserves_a=reserves_eth,
            reserves_b=reserves_arb,
            tokens_a=(ETH_WETH, ETH_SEED),
            tokens_b=(ARB_WETH, ARB_SEED),
        )
        self.assertEqual(opp.buy_network, "arbitrum")
        self.assertAlmostEqual(opp.optimal_trade_amount, 900 / 1010)

    def test_unprofitable_size_returns_none(self):
        reserves_eth = make_reserves(ETH_WETH, 10.0, ETH_SEED, 900.0)
        reserves_arb = make_reserves(ARB_WETH, 1.0, ARB_SEED, 1.0)

        opp = evaluate_opportunity(
            self.quote_a,
            self.quote_b,
            self.prices,
            reserves_a=reserves_eth,
            reserves_b=reserves_arb,
            tokens_a=(ETH_WETH, ETH_SEED),
            tokens_b=(ARB_WETH, ARB_SEED),
        )
        self.assertIsNone(opp)

    def test_reserves_without_tokens_raise(self):
        reserves = make_reserves(ETH_WETH, 10.0, ETH_SEED, 900.0)
        with self.assertRaises(ValueError):
            evaluate_opportunity(
                self.quote_a, self.quote_b, self.prices, reserves_a=reserves, reserves_b=reserves
            )

    def test_to_dict_and_format_log(self):
        opp = evaluate_opportunity(self.quote_a, self.quote_b, self.prices)
        data = opp.to_dict()

        self.assertEqual(data["buy_network"], "arbitrum")
        self.assertEqual(data["gas_estimate"], 230_000)
        self.assertIn("buy arbitrum", opp.format_log())
        self.assertIn("size n/a", opp.format_log())


class TestModuleLogger(unittest.TestCase):
    def test_uses_structured_app_logger(self):
        logger = opportunity_math.logger

        self.assertEqual(logger.name, "dex.opportunity_math")
        self.assertFalse(logger.propagate)
        self.assertEqual(len(logger.handlers), 1)
        self.assertIn("%(lineno)d", logger.handlers[0].formatter._fmt)


if __name__ == "__main__":
    unittest.main()
