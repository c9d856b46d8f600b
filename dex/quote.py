"""
Quote service: per-network exchange rates from the on-chain Quoter.
"""

import asyncio
from typing import Dict, Optional

from crosschain_arbitrage.exceptions import ValidationError
from crosschain_arbitrage.utils import from_base_units, get_logger, run_blocking, to_base_units

from .adapters.v3 import quote_exact_input_single
from .pool import PoolService
from .types import NetworkHandle, Quote

logger = get_logger(__name__)


class QuoteService:
    """
    Quotes both swap directions on each network's primary pool.

    rate_out is base received per one traded token, rate_in is traded received
    per one base token. Both are normalized by the probe amount so they do not
    depend on the probe size.
    """

    def __init__(
        self,
        networks: Dict[str, NetworkHandle],
        pool_service: PoolService,
        probe_amount_traded: float = 1.0,
        probe_amount_base: float = 1.0,
    ):
        self.networks = networks
        self.pool_service = pool_service
        self.probe_amount_traded = probe_amount_traded
        self.probe_amount_base = probe_amount_base

    def set_probe_amounts(self, traded: float, base: float) -> None:
        if traded <= 0 or base <= 0:
            raise ValidationError("Probe amounts must be positive")
        self.probe_amount_traded = traded
        self.probe_amount_base = base

    async def get_quote(self, network_key: str) -> Optional[Quote]:
        """
        Quote the primary pool of a network.

        Args:
            network_key: Network to quote

        Returns:
            Quote, or None when the pool is invalid or a quoter call fails
        """
        network = self.networks.get(network_key)
        if network is None:
            logger.error(f"Unknown network for quote: {network_key}")
            return None

        pool_info = await self.pool_service.get_primary_pool_info(network)
        if not pool_info.is_valid:
            logger.warning(f"[{network_key}] No valid pool, skipping quote")
            return None

        base = network.base_token
        traded = network.traded_token
        traded_in = to_base_units(self.probe_amount_traded, traded.decimals)
        base_in = to_base_units(self.probe_amount_base, base.decimals)

        try:
            base_out, traded_out = await asyncio.gather(
                run_blocking(
                    quote_exact_input_single,
                    network.quoter,
                    traded.address,
                    base.address,
                    pool_info.fee,
                    traded_in,
                ),
                run_blocking(
                    quote_exact_input_single,
                    network.quoter,
                    base.address,
                    traded.address,
                    pool_info.fee,
                    base_in,
                ),
            )
        except Exception as e:
            logger.error(f"[{network_key}] Quoter call failed: {e}")
            return None

        rate_out = from_base_units(base_out, base.decimals) / self.probe_amount_traded
        rate_in = from_base_units(traded_out, traded.decimals) / self.probe_amount_base

        logger.debug(
            f"[{network_key}] 1 {traded.symbol} = {rate_out:.8f} {base.symbol}, "
            f"1 {base.symbol} = {rate_in:.4f} {traded.symbol}"
        )

        return Quote(
            network=network_key,
            rate_out=rate_out,
            rate_in=rate_in,
            pool_address=self.pool_service.primary_pool(network_key),
            fee=pool_info.fee,
        )
