"""
Supervised Swap-event subscriptions, one polling task per network.

Each subscription is an async generator over eth_getLogs for the Swap topic
on the configured pools. On any RPC failure the network is reconnected and
polling resumes after a fixed delay, indefinitely, until stop() is called.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from web3 import Web3

from dex.abi import SWAP_EVENT_SIGNATURE
from dex.pool import PoolService
from dex.types import NetworkHandle, SwapEvent

from .config_loader import ListenerSettings
from .networks import NetworkService
from .utils import get_logger, run_blocking

logger = get_logger(__name__)

SWAP_TOPIC = Web3.to_hex(Web3.keccak(text=SWAP_EVENT_SIGNATURE))

SwapHandler = Callable[[SwapEvent], None]


class SwapListener:
    """Polls Swap logs on every network and hands decoded events to a handler."""

    def __init__(
        self,
        network_service: NetworkService,
        pool_service: PoolService,
        settings: Optional[ListenerSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.network_service = network_service
        self.pool_service = pool_service
        self.settings = settings or ListenerSettings()
        self._sleep = sleep
        self._handler: Optional[SwapHandler] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def fetch_swap_events(
        self, network: NetworkHandle, from_block: int, to_block: int
    ) -> List[SwapEvent]:
        """Fetch and decode Swap logs from the network's pools in a block range."""
        pools = self.pool_service.get_pool_addresses(network.key)
        if not pools:
            return []

        logs = await run_blocking(
            network.web3.eth.get_logs,
            {
                "address": pools,
                "topics": [SWAP_TOPIC],
                "fromBlock": from_block,
                "toBlock": to_block,
            },
        )
        decoder = self.pool_service.get_pool_contract(network, pools[0]).events.Swap()

        events = []
        for log in logs:
            decoded = decoder.process_log(log)
            args = decoded["args"]
            events.append(
                SwapEvent(
                    network=network.key,
                    pool_address=Web3.to_checksum_address(log["address"]),
                    tx_hash=Web3.to_hex(log["transactionHash"]),
                    block_number=int(log["blockNumber"]),
                    sender=args["sender"],
                    recipient=args["recipient"],
                    amount0=int(args["amount0"]),
                    amount1=int(args["amount1"]),
                    sqrt_price_x96=int(args["sqrtPriceX96"]),
                    liquidity=int(args["liquidity"]),
                    tick=int(args["tick"]),
                )
            )
        return events

    async def events(self, network_key: str) -> AsyncIterator[SwapEvent]:
        """
        Yield Swap events for one network from the current head onwards.

        Restartable: RPC errors trigger a reconnect and a fixed delay, then
        polling resumes from the last processed block.
        """
        next_block: Optional[int] = None
        while self._running:
            try:
                network = self.network_service.get(network_key)
                latest = int(await run_blocking(lambda: network.web3.eth.block_number))

                if next_block is None:
                    next_block = latest + 1
                    logger.info(f"[{network_key}] Listening for swaps from block {next_block}")
                elif latest >= next_block:
                    for event in await self.fetch_swap_events(network, next_block, latest):
                        yield event
                    next_block = latest + 1

                await self._sleep(self.settings.poll_interval_sec)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"[{network_key}] Swap subscription error: {e}. "
                    f"Reconnecting in {self.settings.reconnect_delay_sec}s"
                )
                self.network_service.reconnect(network_key)
                await self._sleep(self.settings.reconnect_delay_sec)

    async def _watch(self, network_key: str) -> None:
        async for event in self.events(network_key):
            if self._handler is None:
                continue
            try:
                self._handler(event)
            except Exception as e:
                logger.error(f"[{network_key}] Swap handler error: {e}")

    def subscribe(self, handler: SwapHandler) -> None:
        """Start one supervised subscription per network."""
        self._handler = handler
        self._running = True
        for key in self.network_service.networks:
            task = self._tasks.get(key)
            if task is None or task.done():
                self._tasks[key] = asyncio.create_task(self._watch(key), name=f"swaps-{key}")

    async def refresh(self) -> None:
        """Restart every subscription on freshly built contracts."""
        if self._handler is None:
            return
        logger.info("Refreshing swap subscriptions")
        handler = self._handler
        await self.stop()
        self.subscribe(handler)

    async def run_refresh_loop(self) -> None:
        while True:
            await self._sleep(self.settings.refresh_interval_sec)
            await self.refresh()

    async def stop(self) -> None:
        """Unsubscribe from every network."""
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
