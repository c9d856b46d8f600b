"""
Uniswap V3 style adapter for concentrated-liquidity pools.

Virtual reserves are derived from the pool's active liquidity and current
sqrt price. Swap outputs come from the on-chain Quoter, since concentrated
liquidity cannot be simulated from reserves alone.
"""

from decimal import Decimal, localcontext
from typing import Tuple

from web3.contract import Contract


Q96 = 2**96


def virtual_reserves(liquidity: int, sqrt_price_x96: int) -> Tuple[Decimal, Decimal]:
    """
    Compute the raw virtual reserves of a V3 pool.

    token0 reserve = L * 2^96 / sqrtPriceX96
    token1 reserve = L * sqrtPriceX96 / 2^96

    Their product equals L^2 for any positive price.

    Args:
        liquidity: Active pool liquidity (L)
        sqrt_price_x96: slot0 sqrtPriceX96

    Returns:
        Tuple of (reserve0, reserve1) in token base units

    Raises:
        ValueError: If the sqrt price is not positive
    """
    if sqrt_price_x96 <= 0:
        raise ValueError(f"sqrtPriceX96 must be positive, got {sqrt_price_x96}")

    with localcontext() as ctx:
        ctx.prec = 60
        l_dec = Decimal(int(liquidity))
        sqrt_dec = Decimal(int(sqrt_price_x96))
        reserve0 = l_dec * Q96 / sqrt_dec
        reserve1 = l_dec * sqrt_dec / Q96
    return reserve0, reserve1


def scale_reserve(raw_reserve: Decimal, decimals: int) -> float:
    """Convert a raw reserve into human units."""
    return float(raw_reserve / (Decimal(10) ** decimals))


def price_token1_per_token0(sqrt_price_x96: int, decimals0: int, decimals1: int) -> float:
    """Spot price of token0 denominated in token1, in human units."""
    with localcontext() as ctx:
        ctx.prec = 60
        ratio = Decimal(int(sqrt_price_x96)) / Q96
        raw_price = ratio * ratio
        return float(raw_price * (Decimal(10) ** (decimals0 - decimals1)))


def quote_exact_input_single(
    quoter: Contract, token_in: str, token_out: str, fee: int, amount_in: int
) -> int:
    """
    Quote an exact-input single-pool swap via QuoterV1.

    This is a blocking RPC call; run it through an executor from async code.

    Args:
        quoter: Quoter contract
        token_in: Input token address
        token_out: Output token address
        fee: Pool fee tier
        amount_in: Input amount in base units

    Returns:
        Expected output amount in base units
    """
    return int(
        quoter.functions.quoteExactInputSingle(
            token_in, token_out, fee, int(amount_in), 0
        ).call()
    )
