"""
DEX adapter modules for different AMM types.
"""

from .v3 import (
    price_token1_per_token0,
    quote_exact_input_single,
    scale_reserve,
    virtual_reserves,
)

__all__ = [
    "virtual_reserves",
    "scale_reserve",
    "price_token1_per_token0",
    "quote_exact_input_single",
]
