"""
Bot wiring and lifecycle.

Builds every component from a BotConfig, connects swap events to the event
queue, runs the background loops and shuts everything down on signal.
"""

import asyncio
import signal
from typing import List, Optional

from dex.executor import TradeExecutor
from dex.pool import PoolService
from dex.quote import QuoteService
from dex.types import SwapEvent

from .arbitrage import ArbitrageOrchestrator
from .config_loader import BotConfig
from .dex_volume import DexScreenerVolumeTracker
from .event_queue import EventQueue
from .listener import SwapListener
from .networks import NetworkService
from .notifications import WebhookNotifier
from .price_feed import CoinGeckoPriceFeed
from .utils import get_logger, run_blocking
from .volume import VolumeRebalancer

logger = get_logger(__name__)


class ArbitrageBot:
    """Owns all components and background tasks of a running bot."""

    def __init__(self, config: BotConfig, read_only: bool = False, volume_enabled: bool = True):
        """
        Build all components.

        Args:
            config: Bot configuration
            read_only: Run without a signer (scan and log only)
            volume_enabled: Run the volume rebalancer loops
        """
        self.config = config
        self.volume_enabled = volume_enabled and config.volume.enabled and not read_only

        self.network_service = NetworkService(config, read_only=read_only)
        networks = self.network_service.networks

        self.trade_lock = asyncio.Lock()
        self.notifier = WebhookNotifier(config.notifications.webhook_url)
        self.pool_service = PoolService(
            {key: settings.pools for key, settings in config.networks.items()}
        )
        self.quote_service = QuoteService(
            networks,
            self.pool_service,
            probe_amount_traded=config.arbitrage.probe_amount_traded,
            probe_amount_base=config.arbitrage.probe_amount_base,
        )
        self.executor = TradeExecutor(networks, config.execution)
        self.price_feed = CoinGeckoPriceFeed(config.price_feed)

        self.queue = EventQueue(self._process_events, config.queue)
        self.orchestrator = ArbitrageOrchestrator(
            networks,
            self.pool_service,
            self.quote_service,
            self.executor,
            self.price_feed,
            settings=config.arbitrage,
            notifier=self.notifier,
            trade_lock=self.trade_lock,
            on_error=self.queue.track_error,
            on_success=self.queue.reset_errors,
        )
        self.rebalancer = VolumeRebalancer(
            networks,
            self.pool_service,
            self.quote_service,
            self.executor,
            self.price_feed,
            DexScreenerVolumeTracker(config.volume_api),
            settings=config.volume,
            chains={key: s.dexscreener_chain for key, s in config.networks.items()},
            notifier=self.notifier,
            trade_lock=self.trade_lock,
        )
        self.listener = SwapListener(self.network_service, self.pool_service, config.listener)

        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._shut_down = False

    async def _process_events(self) -> None:
        await self.orchestrator.scan()

    def handle_swap_event(self, event: SwapEvent) -> None:
        """Gate and enqueue a swap notification."""
        if self.executor.is_our_transaction(event.tx_hash, event.sender):
            logger.debug(f"[{event.network}] Ignoring our own swap {event.tx_hash}")
            return
        if self.queue.should_skip():
            return
        self.queue.on_event(event)

    async def check_low_balances(self) -> None:
        """Alert when a signer's native balance is below the configured floor."""
        threshold = self.config.notifications.low_balance_native
        for key, network in self.network_service.networks.items():
            if not network.can_trade:
                continue
            try:
                balances = await self.executor.check_balances(key)
            except Exception as e:
                logger.warning(f"[{key}] Balance check failed: {e}")
                continue
            logger.info(
                f"[{key}] Balances: {balances['base']:.6f} {network.base_token.symbol}, "
                f"{balances['traded']:.4f} {network.traded_token.symbol}, "
                f"{balances['native']:.6f} native"
            )
            if balances["native"] < threshold:
                logger.warning(f"[{key}] Native balance below {threshold}")
                await self.notifier.send_low_balance_alert(
                    key,
                    {
                        network.base_token.symbol: balances["base"],
                        network.traded_token.symbol: balances["traded"],
                        "native": balances["native"],
                    },
                )

    async def start(self, initial_volume_check: bool = True) -> None:
        """Notify, start all background loops and run an initial scan."""
        logger.info("Starting cross-chain arbitrage bot")
        for key in self.network_service.networks:
            block = await run_blocking(self.network_service.check_connection, key)
            logger.info(f"[{key}] Connected, latest block {block}")
        await self.notifier.send_startup_notification(self.network_service.wallet_address())
        await self.check_low_balances()

        if self.volume_enabled and initial_volume_check:
            await self.rebalancer.manual_volume_check()

        self._tasks.append(self.queue.start())
        if self.volume_enabled:
            self._tasks.append(asyncio.create_task(self.rebalancer.run(), name="volume"))
            self._tasks.append(
                asyncio.create_task(self.rebalancer.run_daily_reset(), name="volume-reset")
            )
        self.listener.subscribe(self.handle_swap_event)
        self._tasks.append(
            asyncio.create_task(self.listener.run_refresh_loop(), name="listener-refresh")
        )

        await self.orchestrator.scan()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop)

    def request_stop(self) -> None:
        logger.info("Shutdown requested")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self, initial_volume_check: bool = True) -> None:
        """Start the bot and block until a stop is requested."""
        self._stop_event = asyncio.Event()
        self.install_signal_handlers()
        try:
            await self.start(initial_volume_check=initial_volume_check)
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop listeners, the queue and all loops. Safe to call twice."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down")

        await self.notifier.send_shutdown_notification()
        await self.listener.stop()
        self.queue.stop_processing()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self.orchestrator.close()
        logger.info("Shutdown complete")
