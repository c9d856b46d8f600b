"""
Volume rebalancer: keep each network's daily traded volume at or above a
USD target with small randomized swaps that alternate direction.
"""

import asyncio
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from dex.executor import TradeExecutor
from dex.pool import PoolService
from dex.quote import QuoteService
from dex.types import NetworkHandle, TradeParams

from .config_loader import VolumeSettings
from .dex_volume import DexScreenerVolumeTracker
from .exceptions import DataError, ExecutionError
from .notifications import COLOR_BLUE, WebhookNotifier
from .price_feed import CoinGeckoPriceFeed
from .utils import format_duration, get_logger, run_blocking, to_base_units

logger = get_logger(__name__)

INTER_TRADE_DELAY_SEC = (0.8, 1.1)
FAILED_ATTEMPT_DELAY_SEC = 1.0


def generate_random_trade_amount(
    volume_deficit: float,
    base_price: float,
    attempt: int,
    min_multiplier: float = 0.5,
    max_multiplier: float = 2.0,
    min_trade_usd: float = 150.0,
    max_deficit_fraction: float = 0.8,
    hard_cap: Optional[float] = None,
    rng: random.Random = random,
) -> float:
    """
    Randomized rebalance trade size in base-token units.

    The raw size is deficit / price scaled by a uniform multiplier and by
    1 / sqrt(attempt + 1). It is then capped at hard_cap, floored at
    min_trade_usd worth of base token and finally capped at
    max_deficit_fraction of the deficit.

    Args:
        volume_deficit: Remaining USD volume to generate
        base_price: Base token USD price
        attempt: Zero-based attempt number
        min_multiplier: Lower bound of the random multiplier
        max_multiplier: Upper bound of the random multiplier
        min_trade_usd: Minimum trade value in USD
        max_deficit_fraction: Maximum share of the deficit per trade
        hard_cap: Optional absolute cap in base units
        rng: Random source

    Returns:
        Trade size in base units
    """
    if base_price <= 0:
        raise ValueError("Base price must be positive")

    base_amount = volume_deficit / base_price
    multiplier = rng.uniform(min_multiplier, max_multiplier)
    attempt_scale = 1 / math.sqrt(attempt + 1)
    amount = base_amount * multiplier * attempt_scale

    if hard_cap is not None:
        amount = min(amount, hard_cap)

    min_trade = min_trade_usd / base_price
    max_trade = volume_deficit * max_deficit_fraction / base_price
    amount = max(amount, min_trade)
    amount = min(amount, max_trade)
    return amount


@dataclass
class VolumeState:
    """Per-network volume bookkeeping."""

    accumulated_usd: float = 0.0
    rebalance_in_progress: bool = False
    last_check: float = 0.0


@dataclass(frozen=True)
class RebalanceResult:
    """Outcome of one rebalance run on a network."""

    network: str
    volume_generated_usd: float
    attempts: int
    successful_trades: int
    remaining_deficit_usd: float


class VolumeRebalancer:
    """
    Measures per-network 24h volume and tops it up toward the daily target.

    Volume comes from the pair-analytics API, falling back to summing recent
    on-chain Swap logs when the API fails or reports nothing.
    """

    def __init__(
        self,
        networks: Dict[str, NetworkHandle],
        pool_service: PoolService,
        quote_service: QuoteService,
        executor: TradeExecutor,
        price_feed: CoinGeckoPriceFeed,
        volume_tracker: DexScreenerVolumeTracker,
        settings: Optional[VolumeSettings] = None,
        chains: Optional[Dict[str, str]] = None,
        notifier: Optional[WebhookNotifier] = None,
        trade_lock: Optional[asyncio.Lock] = None,
        rng: random.Random = random,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize rebalancer.

        Args:
            networks: Network handles by key
            pool_service: Pool snapshot resolver
            quote_service: Quoter-backed rates (for traded-token sizing)
            executor: Swap executor
            price_feed: USD price source
            volume_tracker: Pair-analytics API client
            settings: Target, cadence and sizing settings
            chains: Network key -> pair-analytics chain slug
            notifier: Outbound notifications
            trade_lock: Lock shared with the arbitrage orchestrator
            rng: Random source for sizing, delays and reset jitter
            sleep: Coroutine used for delays
            clock: Wall clock in seconds
        """
        self.networks = networks
        self.pool_service = pool_service
        self.quote_service = quote_service
        self.executor = executor
        self.price_feed = price_feed
        self.volume_tracker = volume_tracker
        self.settings = settings or VolumeSettings()
        self.chains = chains or {}
        self.notifier = notifier
        self.trade_lock = trade_lock or asyncio.Lock()
        self._rng = rng
        self._sleep = sleep
        self._clock = clock

        now = clock()
        self.states: Dict[str, VolumeState] = {
            key: VolumeState(last_check=now) for key in networks
        }
        self.last_volume_reset = now
        logger.info(f"Volume tracking initialized for {', '.join(networks)}")

    def generate_trade_amount(self, volume_deficit: float, base_price: float, attempt: int) -> float:
        return generate_random_trade_amount(
            volume_deficit,
            base_price,
            attempt,
            min_multiplier=self.settings.min_multiplier,
            max_multiplier=self.settings.max_multiplier,
            min_trade_usd=self.settings.min_trade_usd,
            max_deficit_fraction=self.settings.max_deficit_fraction,
            hard_cap=self.settings.hard_cap_base,
            rng=self._rng,
        )

    def should_skip(self, network_key: str) -> bool:
        state = self.states.get(network_key)
        return state is None or state.rebalance_in_progress

    async def fetch_network_volume(self, network_key: str) -> float:
        """
        Current 24h USD volume of a network's primary pool.

        Returns:
            Volume in USD, 0.0 when neither source is available
        """
        network = self.networks.get(network_key)
        pool_address = self.pool_service.primary_pool(network_key)
        if network is None or pool_address is None:
            return 0.0

        chain = self.chains.get(network_key, network_key)
        external = 0.0
        try:
            external = await self.volume_tracker.get_pair_volume(pool_address, chain)
        except DataError as e:
            logger.warning(f"[{network_key}] Volume API error, falling back to on-chain: {e}")

        if external > 0:
            return external

        try:
            return await self._fetch_onchain_volume(network, pool_address)
        except Exception as e:
            logger.error(f"[{network_key}] Failed to fetch on-chain volume: {e}")
            return 0.0

    async def _fetch_onchain_volume(self, network: NetworkHandle, pool_address: str) -> float:
        """Sum recent Swap logs, valuing each by its larger side at the base price."""
        web3 = network.web3
        current_block = int(await run_blocking(lambda: web3.eth.block_number))
        from_block = max(current_block - self.settings.onchain_lookback_blocks, 0)

        pool = self.pool_service.get_pool_contract(network, pool_address)
        events = await run_blocking(
            lambda: pool.events.Swap().get_logs(from_block=from_block, to_block=current_block)
        )
        prices = await self.price_feed.fetch_prices()

        # Pool tokens are ordered by address
        base, traded = network.base_token, network.traded_token
        if base.address.lower() < traded.address.lower():
            decimals0, decimals1 = base.decimals, traded.decimals
        else:
            decimals0, decimals1 = traded.decimals, base.decimals

        volume = 0.0
        for event in events:
            args = event["args"]
            amount0 = abs(int(args["amount0"])) / 10**decimals0
            amount1 = abs(int(args["amount1"])) / 10**decimals1
            volume += max(amount0, amount1) * prices.base_usd

        logger.info(
            f"[{network.key}] On-chain volume over {current_block - from_block} blocks: "
            f"${volume:,.2f} ({len(events)} swaps)"
        )
        return volume

    async def check_and_rebalance(self, network_key: str) -> Optional[RebalanceResult]:
        """
        Measure a network's volume and rebalance when below target.

        Never raises.

        Returns:
            RebalanceResult if trades were attempted, else None
        """
        state = self.states.get(network_key)
        if state is None or state.rebalance_in_progress:
            return None

        state.rebalance_in_progress = True
        try:
            current = await self.fetch_network_volume(network_key)
            total = state.accumulated_usd + current
            target = self.settings.target_volume_usd
            logger.info(f"[{network_key}] Volume ${total:,.2f} / ${target:,.2f}")

            if total >= target:
                return None

            deficit = target - total
            logger.info(f"[{network_key}] Volume deficit ${deficit:,.2f}")
            return await self.execute_rebalance_trades(network_key, deficit)
        except Exception as e:
            logger.error(f"[{network_key}] Volume rebalance failed: {e}")
            return None
        finally:
            state.rebalance_in_progress = False

    async def execute_rebalance_trades(self, network_key: str, deficit: float) -> RebalanceResult:
        """
        Run randomized alternating trades until the deficit closes or the
        attempt budget runs out.

        Even attempts trade base -> traded, odd attempts traded -> base.

        Raises:
            ExecutionError: If the network cannot trade or its pool is unusable
            DataError: If prices cannot be fetched
        """
        state = self.states[network_key]
        state.rebalance_in_progress = True
        try:
            network = self.networks[network_key]
            if not network.can_trade:
                raise ExecutionError(f"No signer configured for {network_key}", network=network_key)

            pool_info = await self.pool_service.get_primary_pool_info(network)
            if not pool_info.is_valid:
                raise ExecutionError(f"Invalid pool on {network_key}", network=network_key)

            prices = await self.price_feed.fetch_prices()
            quote = await self.quote_service.get_quote(network_key)
            if quote is None or quote.rate_out <= 0:
                raise ExecutionError(f"No quote available on {network_key}", network=network_key)

            base, traded = network.base_token, network.traded_token
            base_price = prices.base_usd
            max_attempts = self.settings.max_rebalance_attempts

            attempts = 0
            successes = 0
            generated = 0.0
            remaining = deficit

            logger.info(f"[{network_key}] Starting volume rebalancing")
            while remaining > 0 and attempts < max_attempts:
                base_to_traded = attempts % 2 == 0
                try:
                    amount_base = self.generate_trade_amount(remaining, base_price, attempts)
                    if base_to_traded:
                        token_in, token_out = base, traded
                        amount_in = to_base_units(amount_base, base.decimals)
                    else:
                        token_in, token_out = traded, base
                        amount_in = to_base_units(amount_base / quote.rate_out, traded.decimals)

                    logger.info(
                        f"[{network_key}] Rebalance attempt {attempts + 1}: "
                        f"{token_in.symbol} -> {token_out.symbol}, ~{amount_base:.6f} {base.symbol}"
                    )

                    async with self.trade_lock:
                        result = await self.executor.execute_trade(
                            TradeParams(
                                token_in=token_in.address,
                                token_out=token_out.address,
                                fee=pool_info.fee,
                                amount_in=amount_in,
                                network=network_key,
                                min_amount_out=0,
                            )
                        )

                    if result.success:
                        usd_value = amount_base * base_price
                        generated += usd_value
                        remaining = deficit - generated
                        state.accumulated_usd += usd_value
                        successes += 1
                        logger.info(
                            f"[{network_key}] Rebalance trade {attempts + 1}: "
                            f"~${usd_value:,.2f} volume ({result.tx_hash})"
                        )
                    else:
                        logger.warning(
                            f"[{network_key}] Rebalance trade {attempts + 1} failed: {result.error}"
                        )

                    await self._sleep(self._rng.uniform(*INTER_TRADE_DELAY_SEC))
                except Exception as e:
                    logger.error(f"[{network_key}] Trade attempt {attempts + 1} failed: {e}")
                    await self._sleep(FAILED_ATTEMPT_DELAY_SEC)

                attempts += 1

            result = RebalanceResult(
                network=network_key,
                volume_generated_usd=generated,
                attempts=attempts,
                successful_trades=successes,
                remaining_deficit_usd=max(remaining, 0.0),
            )
            logger.info(
                f"[{network_key}] Volume rebalancing complete: +${generated:,.2f} across "
                f"{attempts} trades (${result.remaining_deficit_usd:,.2f} remaining)"
            )
            if self.notifier is not None:
                await self.notifier.send_custom_message(
                    "Volume rebalanced",
                    f"{network_key}: +${generated:,.2f} in {successes}/{attempts} trades",
                    COLOR_BLUE,
                )
            return result
        finally:
            state.rebalance_in_progress = False

    async def run_checks(self) -> None:
        """Check every network whose interval has elapsed."""
        now = self._clock()
        for key, state in self.states.items():
            if state.rebalance_in_progress:
                continue
            if now - state.last_check >= self.settings.check_interval_sec:
                state.last_check = now
                await self.check_and_rebalance(key)

    async def run(self) -> None:
        """Periodic volume check loop."""
        logger.info("Starting volume rebalancer")
        while True:
            await self._sleep(self.settings.check_interval_sec)
            await self.run_checks()

    def reset_volumes(self) -> None:
        logger.info("Resetting daily volume counters")
        for state in self.states.values():
            state.accumulated_usd = 0.0
        self.last_volume_reset = self._clock()

    async def run_daily_reset(self) -> None:
        """Reset accumulated volume every reset interval plus random jitter."""
        while True:
            jitter = self._rng.uniform(0, self.settings.reset_jitter_sec)
            delay = self.settings.volume_reset_interval_sec + jitter
            logger.info(f"Next volume reset in {format_duration(delay)}")
            await self._sleep(delay)
            self.reset_volumes()

    async def manual_volume_check(self) -> Dict[str, Optional[RebalanceResult]]:
        logger.info("Manual volume check triggered")
        results = {}
        for key in self.networks:
            results[key] = await self.check_and_rebalance(key)
        return results

    def get_volume_status(self) -> Dict[str, Any]:
        return {
            "target_volume_usd": self.settings.target_volume_usd,
            "network_volumes": {k: s.accumulated_usd for k, s in self.states.items()},
            "rebalance_in_progress": {
                k: s.rebalance_in_progress for k, s in self.states.items()
            },
            "last_volume_reset": self.last_volume_reset,
        }
