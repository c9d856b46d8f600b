"""
24h pair volume from the DexScreener public API.
"""

from typing import Optional

import requests

from .config_loader import VolumeApiSettings
from .exceptions import DataError
from .utils import get_logger, run_blocking

logger = get_logger(__name__)


class DexScreenerVolumeTracker:
    """Reads the reported 24h USD volume of a single pair."""

    def __init__(
        self,
        settings: Optional[VolumeApiSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or VolumeApiSettings()
        self.session = session or requests.Session()

    async def get_pair_volume(self, pair_address: str, chain: str) -> float:
        """
        Fetch the 24h volume of a pair.

        Args:
            pair_address: Pool address
            chain: DexScreener chain slug (e.g., "ethereum", "arbitrum")

        Returns:
            24h volume in USD, 0.0 when the pair is not listed

        Raises:
            DataError: If the request fails or the payload is malformed
        """
        url = f"{self.settings.url}/{chain}/{pair_address}"
        try:
            response = await run_blocking(
                lambda: self.session.get(
                    url,
                    headers={"User-Agent": self.settings.user_agent},
                    timeout=self.settings.timeout_sec,
                )
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise DataError(
                f"DexScreener request failed: {e}", source="dexscreener", symbol=pair_address
            ) from e

        pairs = data.get("pairs") or []
        if not pairs:
            return 0.0

        pair = pairs[0]
        volume_24h = float((pair.get("volume") or {}).get("h24") or 0)
        base_symbol = (pair.get("baseToken") or {}).get("symbol", "?")
        quote_symbol = (pair.get("quoteToken") or {}).get("symbol", "?")
        liquidity = (pair.get("liquidity") or {}).get("usd") or 0
        logger.info(
            f"DexScreener {base_symbol}/{quote_symbol} on {chain}: "
            f"24h volume ${volume_24h:,.2f}, liquidity ${float(liquidity):,.2f}"
        )
        return volume_24h
