"""
Event queue and scheduler for swap-triggered scans.

Swap notifications are buffered (bounded, oldest dropped). A periodic tick
drains the whole buffer into a single processing callback, so bursts of
events collapse into one scan. At most one callback runs at a time, and
should_skip() gates new work during processing, cooldown and error backoff.
"""

import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from dex.types import SwapEvent

from .config_loader import QueueSettings
from .exceptions import ValidationError
from .utils import get_logger

logger = get_logger(__name__)


class EventQueue:
    """
    Bounded swap-event buffer with a single-flight processing loop.

    All state is mutated only by this object's own methods.
    """

    def __init__(
        self,
        on_process: Callable[[], Awaitable[None]],
        settings: Optional[QueueSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize queue.

        Args:
            on_process: Coroutine function run once per drained batch
            settings: Size, cadence, cooldown and backoff settings
            clock: Monotonic clock in seconds
        """
        self.settings = settings or QueueSettings()
        self._on_process = on_process
        self._clock = clock

        self._events: Deque[SwapEvent] = deque()
        self._processing = False
        self._enabled = True
        self._last_processed: Optional[float] = None
        self._cooldown = self.settings.cooldown_sec
        self.consecutive_errors = 0
        self.last_error_time: Optional[float] = None
        self.batches_processed = 0
        self.events_dropped = 0

        self._task: Optional[asyncio.Task] = None

    @property
    def queue_size(self) -> int:
        return len(self._events)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def on_event(self, event: SwapEvent) -> None:
        """Buffer an event, dropping the oldest one when full."""
        if len(self._events) >= self.settings.max_queue_size:
            self._events.popleft()
            self.events_dropped += 1
            logger.warning(
                f"Event queue full ({self.settings.max_queue_size}), dropping oldest event"
            )
        self._events.append(event)

    def track_error(self) -> None:
        self.consecutive_errors += 1
        self.last_error_time = self._clock()

    def reset_errors(self) -> None:
        self.consecutive_errors = 0

    def set_processing_cooldown(self, seconds: float) -> None:
        if seconds < 0:
            raise ValidationError("Cooldown must not be negative")
        self._cooldown = seconds

    def should_skip(self) -> bool:
        """
        Decide whether new work should be refused right now.

        Returns:
            True while processing, during error backoff, or inside the
            cooldown after the last processed batch
        """
        now = self._clock()

        if self._processing:
            logger.debug("Already processing, skipping")
            return True

        if self.consecutive_errors >= self.settings.max_consecutive_errors:
            if (
                self.last_error_time is not None
                and now - self.last_error_time < self.settings.error_backoff_sec
            ):
                logger.info(
                    f"In error backoff ({self.consecutive_errors} consecutive errors)"
                )
                return True
            self.consecutive_errors = 0

        if self._last_processed is not None and now - self._last_processed < self._cooldown:
            return True

        return False

    async def tick(self) -> bool:
        """
        Drain the buffer and run the callback once, if allowed.

        Returns:
            True if a batch was processed
        """
        if not self._events or self._processing or not self._enabled:
            return False

        self._processing = True
        try:
            latest = self._events[-1]
            batch_size = len(self._events)
            self._events.clear()
            self._last_processed = self._clock()

            logger.info(
                f"Processing {batch_size} swap event(s), latest on {latest.network} "
                f"pool {latest.pool_address} tx {latest.tx_hash} block {latest.block_number}"
            )
            await self._on_process()
            self.batches_processed += 1
        except Exception as e:
            logger.error(f"Error processing event queue: {e}")
            self.track_error()
        finally:
            self._processing = False
        return True

    async def run(self) -> None:
        """Tick every tick_interval_sec until processing is stopped."""
        while self._enabled:
            await asyncio.sleep(self.settings.tick_interval_sec)
            await self.tick()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="event-queue")
        return self._task

    def stop_processing(self) -> None:
        """Disable draining and clear the buffer. Safe to call repeatedly."""
        if self._enabled:
            logger.info("Stopping queue processor")
        self._enabled = False
        self._events.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def is_processing_stopped(self) -> bool:
        return not self._enabled

    def get_status(self) -> Dict[str, Any]:
        return {
            "processing": self._processing,
            "enabled": self._enabled,
            "queue_size": len(self._events),
            "cooldown_sec": self._cooldown,
            "consecutive_errors": self.consecutive_errors,
            "batches_processed": self.batches_processed,
            "events_dropped": self.events_dropped,
        }
