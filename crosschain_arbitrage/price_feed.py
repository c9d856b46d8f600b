"""
USD price feed backed by the CoinGecko simple-price API.

Requests are throttled to a minimum interval and API keys are rotated
round-robin, one key per request.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import requests

from dex.types import PriceSnapshot

from .config_loader import PriceFeedSettings
from .exceptions import DataError
from .utils import get_logger, run_blocking

logger = get_logger(__name__)

API_KEY_HEADER = "x-cg-demo-api-key"


class CoinGeckoPriceFeed:
    """Fetches the base asset's (and optionally the traded token's) USD price."""

    def __init__(
        self,
        settings: PriceFeedSettings,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize price feed.

        Args:
            settings: Endpoint, keys and throttle settings
            session: HTTP session (a new one is created if omitted)
            clock: Monotonic clock used for throttling
            sleep: Coroutine used to wait out the throttle
        """
        self.settings = settings
        self.session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._request_lock = asyncio.Lock()
        self._key_index = 0
        self.last_snapshot: Optional[PriceSnapshot] = None

        if not settings.api_keys:
            logger.warning("No CoinGecko API keys configured, using public rate limits")

    def _next_api_key(self) -> Optional[str]:
        """Return the current key and advance the rotation."""
        keys = self.settings.api_keys
        if not keys:
            return None
        key = keys[self._key_index % len(keys)]
        self._key_index = (self._key_index + 1) % len(keys)
        return key

    async def _throttle(self) -> None:
        if self._last_request is None:
            return
        elapsed = self._clock() - self._last_request
        remaining = self.settings.min_interval_sec - elapsed
        if remaining > 0:
            logger.debug(f"Price feed throttled for {remaining:.2f}s")
            await self._sleep(remaining)

    def _asset_ids(self) -> str:
        ids = [self.settings.base_asset_id]
        if self.settings.traded_asset_id:
            ids.append(self.settings.traded_asset_id)
        return ",".join(ids)

    async def _request(self) -> dict:
        """Wait out the throttle, then GET the simple-price endpoint."""
        await self._throttle()

        api_key = self._next_api_key()
        headers = {API_KEY_HEADER: api_key} if api_key else {}
        params = {"ids": self._asset_ids(), "vs_currencies": "usd"}

        try:
            response = await run_blocking(
                lambda: self.session.get(
                    self.settings.url,
                    headers=headers,
                    params=params,
                    timeout=self.settings.timeout_sec,
                )
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"CoinGecko API error: {e}")
            raise DataError("Failed to fetch prices", source="coingecko") from e
        finally:
            self._last_request = self._clock()

    async def fetch_prices(self) -> PriceSnapshot:
        """
        Fetch current USD prices.

        Returns:
            PriceSnapshot with the base USD price and, when configured and
            listed, the traded token's USD price

        Raises:
            DataError: If the request fails or no base price is returned
        """
        async with self._request_lock:
            data = await self._request()

        base_usd = (data.get(self.settings.base_asset_id) or {}).get("usd") or 0
        if base_usd <= 0:
            raise DataError(
                f"No USD price for {self.settings.base_asset_id}",
                source="coingecko",
                symbol=self.settings.base_asset_id,
            )

        traded_usd = None
        if self.settings.traded_asset_id:
            traded_usd = (data.get(self.settings.traded_asset_id) or {}).get("usd")

        snapshot = PriceSnapshot(
            base_usd=float(base_usd),
            traded_usd=float(traded_usd) if traded_usd is not None else None,
            fetched_at=time.time(),
        )
        self.last_snapshot = snapshot
        logger.debug(f"Prices: base=${snapshot.base_usd:.2f} traded={snapshot.traded_usd}")
        return snapshot
