"""
Arbitrage orchestrator: detect a cross-network price discrepancy and close it
with a buy leg on the cheap network and a sell leg on the expensive one.

Execution is single-flight. Each attempt is tracked as a PendingArbitrage
that moves pending -> executing -> completed | failed and is dropped from
memory a few minutes after it finishes.
"""

import asyncio
import random
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from dex.executor import TradeExecutor
from dex.opportunity_math import evaluate_opportunity
from dex.pool import PoolService
from dex.quote import QuoteService
from dex.types import NetworkHandle, Opportunity, TradeParams

from .config_loader import ArbitrageSettings
from .exceptions import ExecutionError, InsufficientBalanceError, ValidationError
from .notifications import COLOR_GREEN, COLOR_RED, WebhookNotifier
from .price_feed import CoinGeckoPriceFeed
from .utils import from_base_units, get_current_millis, get_logger, to_base_units

logger = get_logger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


class ArbitrageStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    ArbitrageStatus.PENDING: {ArbitrageStatus.EXECUTING, ArbitrageStatus.FAILED},
    ArbitrageStatus.EXECUTING: {ArbitrageStatus.COMPLETED, ArbitrageStatus.FAILED},
    ArbitrageStatus.COMPLETED: set(),
    ArbitrageStatus.FAILED: set(),
}


def new_arbitrage_id() -> str:
    """Millisecond timestamp plus a random base-36 suffix."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{get_current_millis()}-{suffix}"


@dataclass
class PendingArbitrage:
    """One arbitrage attempt and its lifecycle."""

    id: str
    buy_network: str
    sell_network: str
    opportunity: Opportunity
    created_at: float
    status: ArbitrageStatus = ArbitrageStatus.PENDING
    buy_tx_hash: Optional[str] = None
    sell_tx_hash: Optional[str] = None
    error: Optional[str] = None

    def transition(self, new_status: ArbitrageStatus) -> None:
        """
        Move to a new status.

        Raises:
            ExecutionError: On an illegal transition, or when completing
                without both leg hashes
        """
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise ExecutionError(
                f"Illegal status transition {self.status.value} -> {new_status.value}",
                arbitrage_id=self.id,
            )
        if new_status == ArbitrageStatus.COMPLETED and not (
            self.buy_tx_hash and self.sell_tx_hash
        ):
            raise ExecutionError(
                "Cannot complete arbitrage without both leg transactions",
                arbitrage_id=self.id,
            )
        self.status = new_status

    @property
    def is_terminal(self) -> bool:
        return self.status in (ArbitrageStatus.COMPLETED, ArbitrageStatus.FAILED)


class ArbitrageOrchestrator:
    """
    Runs scans and two-leg executions across exactly two networks.

    State is idle, scanning or executing. A scan evaluates the current
    opportunity and, when it clears both thresholds and a signer is
    configured, executes it.
    """

    def __init__(
        self,
        networks: Dict[str, NetworkHandle],
        pool_service: PoolService,
        quote_service: QuoteService,
        executor: TradeExecutor,
        price_feed: CoinGeckoPriceFeed,
        settings: Optional[ArbitrageSettings] = None,
        notifier: Optional[WebhookNotifier] = None,
        trade_lock: Optional[asyncio.Lock] = None,
        on_error: Optional[Callable[[], None]] = None,
        on_success: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize orchestrator.

        Args:
            networks: Exactly two network handles, in N1, N2 order
            pool_service: Pool snapshot resolver
            quote_service: Quoter-backed rates
            executor: Swap executor
            price_feed: USD price source
            settings: Thresholds and sizing settings
            notifier: Outbound notifications
            trade_lock: Lock shared with every other component that trades
            on_error: Called after each failed execution
            on_success: Called after each completed execution
            sleep: Coroutine used for the settle delay
        """
        if len(networks) != 2:
            raise ValueError(f"Exactly two networks are required, got {len(networks)}")

        self.networks = networks
        self.pool_service = pool_service
        self.quote_service = quote_service
        self.executor = executor
        self.price_feed = price_feed
        self.settings = settings or ArbitrageSettings()
        self.notifier = notifier
        self.trade_lock = trade_lock or asyncio.Lock()
        self._on_error = on_error
        self._on_success = on_success
        self._sleep = sleep

        self.min_profit_threshold = self.settings.min_profit_pct
        self.balance_threshold = self.settings.balance_threshold_pct

        self.pending: Dict[str, PendingArbitrage] = {}
        self._cleanup_handles: Dict[str, asyncio.TimerHandle] = {}
        self._scanning = False
        self._executing = False

        self.consecutive_errors = 0
        self.last_error_time: Optional[float] = None
        self.completed_count = 0
        self.failed_count = 0

    @property
    def network_keys(self) -> Tuple[str, str]:
        keys = list(self.networks.keys())
        return keys[0], keys[1]

    @property
    def state(self) -> str:
        if self._executing:
            return "executing"
        if self._scanning:
            return "scanning"
        return "idle"

    @property
    def is_processing(self) -> bool:
        return self._scanning or self._executing

    def set_min_profit_threshold(self, pct: float) -> None:
        if pct < 0:
            raise ValidationError("Minimum profit threshold must not be negative")
        self.min_profit_threshold = pct
        logger.info(f"Minimum profit threshold set to {pct}%")

    def set_balance_threshold(self, pct: float) -> None:
        if pct < 0:
            raise ValidationError("Balance threshold must not be negative")
        self.balance_threshold = pct
        logger.info(f"Balance threshold set to {pct}%")

    def can_trade(self) -> bool:
        return all(network.can_trade for network in self.networks.values())

    async def evaluate(self) -> Optional[Opportunity]:
        """
        Fetch prices, quotes and reserves and compute the current opportunity.

        Returns:
            Opportunity, or None when any input is unavailable or no
            profitable size exists

        Raises:
            DataError: If the price feed fails
        """
        key_a, key_b = self.network_keys
        prices, quote_a, quote_b = await asyncio.gather(
            self.price_feed.fetch_prices(),
            self.quote_service.get_quote(key_a),
            self.quote_service.get_quote(key_b),
        )
        if quote_a is None or quote_b is None:
            logger.warning("Quotes unavailable, aborting scan")
            return None

        net_a, net_b = self.networks[key_a], self.networks[key_b]
        pool_a, pool_b = await asyncio.gather(
            self.pool_service.get_primary_pool_info(net_a),
            self.pool_service.get_primary_pool_info(net_b),
        )
        if not pool_a.is_valid or not pool_b.is_valid:
            logger.warning("Pool state unavailable, aborting scan")
            return None

        return evaluate_opportunity(
            quote_a,
            quote_b,
            prices,
            reserves_a=pool_a.reserves,
            reserves_b=pool_b.reserves,
            tokens_a=(net_a.base_token.address, net_a.traded_token.address),
            tokens_b=(net_b.base_token.address, net_b.traded_token.address),
            profit_formula=self.settings.profit_formula,
        )

    async def scan(self) -> Optional[Opportunity]:
        """
        Evaluate the market once and execute when the policy allows.

        Never raises. Re-entrant calls return None immediately.

        Returns:
            The evaluated opportunity, or None if none could be computed
        """
        if self.is_processing:
            logger.debug(f"Scan skipped, orchestrator is {self.state}")
            return None

        self._scanning = True
        try:
            opportunity = await self.evaluate()
            if opportunity is None:
                logger.info("No opportunity")
                return None

            logger.info(opportunity.format_log())

            if opportunity.deviation_pct <= self.balance_threshold:
                logger.info(
                    f"Prices balanced ({opportunity.deviation_pct:.3f}% <= "
                    f"{self.balance_threshold}%)"
                )
                return opportunity

            if opportunity.profit_pct < self.min_profit_threshold:
                logger.info(
                    f"Profit {opportunity.profit_pct:.3f}% below minimum "
                    f"{self.min_profit_threshold}%, skipping"
                )
                return opportunity

            if not self.can_trade():
                logger.info("No signer configured, not executing")
                return opportunity

            try:
                await self.execute_arbitrage(opportunity)
            except ExecutionError as e:
                logger.error(f"Arbitrage failed: {e}")
            return opportunity

        except Exception as e:
            logger.error(f"Scan failed: {e}")
            return None
        finally:
            self._scanning = False

    async def manual_scan(self) -> Optional[Opportunity]:
        logger.info("Manual scan requested")
        return await self.scan()

    async def execute_arbitrage(self, opportunity: Opportunity) -> PendingArbitrage:
        """
        Execute both legs of an opportunity.

        Args:
            opportunity: Opportunity with a reserve-derived trade size

        Returns:
            The completed PendingArbitrage

        Raises:
            ExecutionError: If another execution is in flight or either leg fails
        """
        if self._executing:
            raise ExecutionError("An arbitrage is already executing")

        self._executing = True
        pending = PendingArbitrage(
            id=new_arbitrage_id(),
            buy_network=opportunity.buy_network,
            sell_network=opportunity.sell_network,
            opportunity=opportunity,
            created_at=time.time(),
        )
        self.pending[pending.id] = pending
        logger.info(
            f"[{pending.id}] Executing arbitrage: buy {pending.buy_network}, "
            f"sell {pending.sell_network}"
        )

        try:
            try:
                async with self.trade_lock:
                    await self._execute_legs(pending, opportunity)
                pending.transition(ArbitrageStatus.COMPLETED)
            except Exception as e:
                await self._record_failure(pending, e)
                if isinstance(e, ExecutionError):
                    e.arbitrage_id = e.arbitrage_id or pending.id
                    raise
                raise ExecutionError(
                    f"Arbitrage {pending.id} failed: {e}", arbitrage_id=pending.id
                ) from e
        finally:
            self._executing = False
            self._schedule_cleanup(pending.id)

        self.consecutive_errors = 0
        self.completed_count += 1
        if self._on_success is not None:
            self._on_success()
        logger.info(
            f"[{pending.id}] Arbitrage completed: buy {pending.buy_tx_hash}, "
            f"sell {pending.sell_tx_hash}"
        )
        if self.notifier is not None:
            await self.notifier.send_custom_message(
                "Arbitrage completed",
                f"Bought on {pending.buy_network}, sold on {pending.sell_network}\n"
                f"Deviation: {opportunity.deviation_pct:.3f}%\n"
                f"Buy tx: `{pending.buy_tx_hash}`\nSell tx: `{pending.sell_tx_hash}`",
                COLOR_GREEN,
            )
        return pending

    async def _execute_legs(self, pending: PendingArbitrage, opportunity: Opportunity) -> None:
        buy_net = self._network(opportunity.buy_network)
        sell_net = self._network(opportunity.sell_network)
        if not buy_net.can_trade or not sell_net.can_trade:
            raise ExecutionError("No signer configured", arbitrage_id=pending.id)

        if not opportunity.optimal_trade_amount or opportunity.optimal_trade_amount <= 0:
            raise ExecutionError("Opportunity has no trade size", arbitrage_id=pending.id)

        buy_pool = await self.pool_service.get_primary_pool_info(buy_net)
        if not buy_pool.is_valid:
            raise ExecutionError(
                f"Buy pool on {buy_net.key} unavailable",
                network=buy_net.key,
                arbitrage_id=pending.id,
            )

        base, traded = buy_net.base_token, buy_net.traded_token
        amount = opportunity.optimal_trade_amount
        amount_in = to_base_units(amount, base.decimals)

        base_balance = from_base_units(
            await self.executor.get_token_balance(buy_net, base.address), base.decimals
        )
        required = amount + self.settings.gas_buffer_base
        if base_balance < required:
            raise InsufficientBalanceError(
                f"Insufficient {base.symbol} on {buy_net.key}: "
                f"have {base_balance:.6f}, need {required:.6f}",
                required=required,
                available=base_balance,
                network=buy_net.key,
                arbitrage_id=pending.id,
            )

        traded_before = await self.executor.get_token_balance(buy_net, traded.address)

        pending.transition(ArbitrageStatus.EXECUTING)
        logger.info(
            f"[{pending.id}] Buy leg: {amount:.6f} {base.symbol} -> {traded.symbol} "
            f"on {buy_net.key}"
        )
        buy_result = await self.executor.execute_trade(
            TradeParams(
                token_in=base.address,
                token_out=traded.address,
                fee=buy_pool.fee,
                amount_in=amount_in,
                network=buy_net.key,
                min_amount_out=0,
            )
        )
        if not buy_result.success:
            raise ExecutionError(
                f"Buy leg failed: {buy_result.error}",
                network=buy_net.key,
                arbitrage_id=pending.id,
            )
        pending.buy_tx_hash = buy_result.tx_hash

        await self._sleep(self.settings.settle_delay_sec)

        traded_after = await self.executor.get_token_balance(buy_net, traded.address)
        received = traded_after - traded_before
        if received <= 0:
            raise ExecutionError(
                f"No {traded.symbol} received from buy leg",
                network=buy_net.key,
                arbitrage_id=pending.id,
            )

        sell_pool = await self.pool_service.get_primary_pool_info(sell_net)
        if not sell_pool.is_valid:
            raise ExecutionError(
                f"Sell pool on {sell_net.key} unavailable",
                network=sell_net.key,
                arbitrage_id=pending.id,
            )

        received_human = from_base_units(received, traded.decimals)
        sell_amount = to_base_units(received_human, sell_net.traded_token.decimals)
        logger.info(
            f"[{pending.id}] Sell leg: {received_human:.6f} {traded.symbol} -> "
            f"{sell_net.base_token.symbol} on {sell_net.key}"
        )
        sell_result = await self.executor.execute_trade(
            TradeParams(
                token_in=sell_net.traded_token.address,
                token_out=sell_net.base_token.address,
                fee=sell_pool.fee,
                amount_in=sell_amount,
                network=sell_net.key,
                min_amount_out=0,
            )
        )
        if not sell_result.success:
            raise ExecutionError(
                f"Sell leg failed: {sell_result.error}",
                network=sell_net.key,
                arbitrage_id=pending.id,
            )
        pending.sell_tx_hash = sell_result.tx_hash

    async def _record_failure(self, pending: PendingArbitrage, error: Exception) -> None:
        pending.error = str(error)
        if not pending.is_terminal:
            pending.transition(ArbitrageStatus.FAILED)
        self.consecutive_errors += 1
        self.last_error_time = time.time()
        self.failed_count += 1
        if self._on_error is not None:
            self._on_error()

        logger.error(f"[{pending.id}] Arbitrage failed: {error}")
        if self.notifier is not None:
            await self.notifier.send_custom_message(
                "Arbitrage failed",
                f"Buy {pending.buy_network} / sell {pending.sell_network}\n"
                f"Error: {error}\nBuy tx: `{pending.buy_tx_hash or '-'}`",
                COLOR_RED,
            )

    def _network(self, key: str) -> NetworkHandle:
        network = self.networks.get(key)
        if network is None:
            raise ExecutionError(f"Unknown network: {key}", network=key)
        return network

    def _schedule_cleanup(self, arbitrage_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._cleanup_handles[arbitrage_id] = loop.call_later(
            self.settings.pending_ttl_sec, self._forget, arbitrage_id
        )

    def _forget(self, arbitrage_id: str) -> None:
        self.pending.pop(arbitrage_id, None)
        self._cleanup_handles.pop(arbitrage_id, None)

    def get_pending(self) -> List[PendingArbitrage]:
        return list(self.pending.values())

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "min_profit_threshold_pct": self.min_profit_threshold,
            "balance_threshold_pct": self.balance_threshold,
            "consecutive_errors": self.consecutive_errors,
            "last_error_time": self.last_error_time,
            "completed": self.completed_count,
            "failed": self.failed_count,
            "pending": {p.id: p.status.value for p in self.pending.values()},
        }

    def close(self) -> None:
        """Cancel pending cleanup timers."""
        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()
