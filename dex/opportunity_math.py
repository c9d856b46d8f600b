"""
Single source of truth for cross-chain opportunity math.

Pure functions: no I/O, no logging side effects beyond debug output. The
orchestrator and the tests both go through evaluate_opportunity().

Conventions:
- Prices are USD per traded token
- Percentages are percent values (4.87 means 4.87%)
- Trade sizes are human base-token units
"""

import math
from typing import Optional, Tuple

from crosschain_arbitrage.utils import get_logger

from .types import Opportunity, PoolReserves, PriceSnapshot, Quote

logger = get_logger(__name__)

# Fixed gas units for the buy and sell legs
BUY_LEG_GAS = 150_000
SELL_LEG_GAS = 80_000

PROFIT_FORMULA_DEVIATION = "deviation"
PROFIT_FORMULA_SPREAD = "spread"


# ============================================================================
# Price and profit measures
# ============================================================================


def usd_price(quote: Quote, base_usd: float) -> float:
    """USD price of the traded token implied by a quote."""
    return quote.rate_out * base_usd


def deviation_pct(price_a: float, price_b: float) -> float:
    """Symmetric deviation |a - b| / avg(a, b) * 100. Zero when both are zero."""
    average = (price_a + price_b) / 2
    if average == 0:
        return 0.0
    return abs(price_a - price_b) / average * 100


def spread_profit_pct(buy_price: float, sell_price: float) -> float:
    """Directional spread (sell - buy) / buy * 100."""
    if buy_price == 0:
        return 0.0
    return (sell_price - buy_price) / buy_price * 100


# ============================================================================
# Trade sizing
# ============================================================================


def optimal_trade_amount(
    buy_traded_reserve: float, buy_base_reserve: float, sell_base_reserve: float
) -> Optional[float]:
    """
    Reserve-derived trade size for two constant-product-like pools.

        a = traded reserve of the buy pool
        d = base reserve of the buy pool
        b = c = base reserve of the sell pool
        optimal = (sqrt(a*b*c*d) - b*c) / (a + c)

    Returns:
        Size in base units, or None when no profitable size exists
        (non-positive or non-finite result)
    """
    a = buy_traded_reserve
    d = buy_base_reserve
    b = c = sell_base_reserve

    denominator = a + c
    product = a * b * c * d
    if denominator <= 0 or product < 0:
        return None

    amount = (math.sqrt(product) - b * c) / denominator
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def optimal_trade_amount_for_pools(
    buy_reserves: PoolReserves,
    sell_reserves: PoolReserves,
    buy_base_token: str,
    buy_traded_token: str,
    sell_base_token: str,
) -> Optional[float]:
    """Look up the relevant reserves by token address and size the trade."""
    return optimal_trade_amount(
        buy_traded_reserve=buy_reserves.for_token(buy_traded_token).reserve,
        buy_base_reserve=buy_reserves.for_token(buy_base_token).reserve,
        sell_base_reserve=sell_reserves.for_token(sell_base_token).reserve,
    )


# ============================================================================
# Opportunity evaluation
# ============================================================================


def evaluate_opportunity(
    quote_a: Optional[Quote],
    quote_b: Optional[Quote],
    prices: Optional[PriceSnapshot],
    reserves_a: Optional[PoolReserves] = None,
    reserves_b: Optional[PoolReserves] = None,
    tokens_a: Optional[Tuple[str, str]] = None,
    tokens_b: Optional[Tuple[str, str]] = None,
    profit_formula: str = PROFIT_FORMULA_DEVIATION,
) -> Optional[Opportunity]:
    """
    Compare two networks' quotes and describe the discrepancy.

    Without reserves only prices are compared and optimal_trade_amount is None.
    With reserves (and the (base, traded) token addresses of each network) the
    reserve-derived size is computed, and an unprofitable size means no
    opportunity.

    Args:
        quote_a: Quote on the first network
        quote_b: Quote on the second network
        prices: External USD prices
        reserves_a: Primary pool reserves on the first network
        reserves_b: Primary pool reserves on the second network
        tokens_a: (base, traded) addresses on the first network
        tokens_b: (base, traded) addresses on the second network
        profit_formula: "deviation" (symmetric) or "spread" (directional)

    Returns:
        Opportunity, or None when inputs are missing or no profitable size exists
    """
    if quote_a is None or quote_b is None:
        return None
    if prices is None or not prices.base_usd or prices.base_usd <= 0:
        return None

    price_a = usd_price(quote_a, prices.base_usd)
    price_b = usd_price(quote_b, prices.base_usd)

    deviation = deviation_pct(price_a, price_b)

    if price_a <= price_b:
        buy, sell = quote_a, quote_b
        buy_price, sell_price = price_a, price_b
        buy_reserves, sell_reserves = reserves_a, reserves_b
        buy_tokens, sell_tokens = tokens_a, tokens_b
    else:
        buy, sell = quote_b, quote_a
        buy_price, sell_price = price_b, price_a
        buy_reserves, sell_reserves = reserves_b, reserves_a
        buy_tokens, sell_tokens = tokens_b, tokens_a

    if profit_formula == PROFIT_FORMULA_SPREAD:
        profit = spread_profit_pct(buy_price, sell_price)
    else:
        profit = deviation

    size: Optional[float] = None
    if buy_reserves is not None and sell_reserves is not None:
        if buy_tokens is None or sell_tokens is None:
            raise ValueError("Token addresses are required when reserves are given")
        size = optimal_trade_amount_for_pools(
            buy_reserves,
            sell_reserves,
            buy_base_token=buy_tokens[0],
            buy_traded_token=buy_tokens[1],
            sell_base_token=sell_tokens[0],
        )
        if size is None:
            logger.debug(
                f"No profitable size: buy {buy.network} / sell {sell.network} "
                f"(deviation {deviation:.4f}%)"
            )
            return None

    return Opportunity(
        buy_network=buy.network,
        sell_network=sell.network,
        buy_price_usd=buy_price,
        sell_price_usd=sell_price,
        deviation_pct=deviation,
        profit_pct=profit,
        absolute_difference=abs(price_a - price_b),
        gas_estimate=BUY_LEG_GAS + SELL_LEG_GAS,
        optimal_trade_amount=size,
        buy_fee=buy.fee,
        sell_fee=sell.fee,
    )
