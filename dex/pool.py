"""
Pool resolution for concentrated-liquidity pools.

Reads a pool's tokens, fee, liquidity and current sqrt price in parallel,
validates that it trades the configured pair and derives virtual reserves.
Failures never propagate: callers receive an invalid PoolInfo instead.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from web3 import Web3

from crosschain_arbitrage.utils import get_logger, run_blocking

from .abi import ERC20_ABI, UNISWAP_V3_POOL_ABI
from .adapters.v3 import price_token1_per_token0, scale_reserve, virtual_reserves
from .types import NetworkHandle, PoolInfo, PoolReserves, TokenInfo, TokenReserve

logger = get_logger(__name__)

FALLBACK_DECIMALS = 18
FALLBACK_SYMBOL = "UNKNOWN"


class PoolService:
    """
    Resolves pool snapshots for the configured pools of each network.

    The first configured pool of a network is its primary (traded) pool.
    """

    def __init__(self, pool_addresses: Dict[str, Iterable[str]]):
        """
        Initialize the pool service.

        Args:
            pool_addresses: Mapping of network key -> pool addresses
        """
        self._pools: Dict[str, List[str]] = {
            key.lower(): [Web3.to_checksum_address(addr) for addr in addrs]
            for key, addrs in pool_addresses.items()
        }

    def get_pool_addresses(self, network_key: str) -> List[str]:
        return list(self._pools.get(network_key.lower(), []))

    def primary_pool(self, network_key: str) -> Optional[str]:
        pools = self._pools.get(network_key.lower())
        return pools[0] if pools else None

    def get_pool_contract(self, network: NetworkHandle, pool_address: str):
        return network.web3.eth.contract(
            address=Web3.to_checksum_address(pool_address), abi=UNISWAP_V3_POOL_ABI
        )

    async def get_pool_info(self, pool_address: str, network: NetworkHandle) -> PoolInfo:
        """
        Resolve a point-in-time snapshot of a pool.

        Args:
            pool_address: Pool contract address
            network: Network the pool lives on

        Returns:
            PoolInfo, with is_valid=False when the pool is unreadable, does not
            contain the configured base/traded pair, or has zero liquidity
        """
        try:
            pool = self.get_pool_contract(network, pool_address)

            token0, token1, fee, liquidity, slot0 = await asyncio.gather(
                run_blocking(pool.functions.token0().call),
                run_blocking(pool.functions.token1().call),
                run_blocking(pool.functions.fee().call),
                run_blocking(pool.functions.liquidity().call),
                run_blocking(pool.functions.slot0().call),
            )
            sqrt_price_x96 = int(slot0[0])
            liquidity = int(liquidity)

            pool_tokens = {token0.lower(), token1.lower()}
            base_addr = network.base_token.address.lower()
            traded_addr = network.traded_token.address.lower()

            if base_addr not in pool_tokens or traded_addr not in pool_tokens:
                logger.warning(
                    f"[{network.key}] Pool {pool_address} does not trade "
                    f"{network.base_token.symbol}/{network.traded_token.symbol}"
                )
                return PoolInfo.invalid()

            if liquidity == 0:
                logger.warning(f"[{network.key}] Pool {pool_address} has zero liquidity")
                return PoolInfo.invalid()

            meta0, meta1 = await asyncio.gather(
                self._fetch_token_metadata(network.web3, token0),
                self._fetch_token_metadata(network.web3, token1),
            )

            raw0, raw1 = virtual_reserves(liquidity, sqrt_price_x96)
            reserves = PoolReserves(
                token0=TokenReserve(
                    address=meta0.address,
                    symbol=meta0.symbol,
                    decimals=meta0.decimals,
                    reserve=scale_reserve(raw0, meta0.decimals),
                ),
                token1=TokenReserve(
                    address=meta1.address,
                    symbol=meta1.symbol,
                    decimals=meta1.decimals,
                    reserve=scale_reserve(raw1, meta1.decimals),
                ),
            )

            logger.debug(
                f"[{network.key}] Pool {pool_address}: fee={fee} L={liquidity} "
                f"price={price_token1_per_token0(sqrt_price_x96, meta0.decimals, meta1.decimals):.8f} "
                f"{meta1.symbol}/{meta0.symbol}"
            )

            return PoolInfo(
                is_valid=True,
                fee=int(fee),
                token0=Web3.to_checksum_address(token0),
                token1=Web3.to_checksum_address(token1),
                token0_is_traded=token0.lower() == traded_addr,
                liquidity=liquidity,
                sqrt_price_x96=sqrt_price_x96,
                reserves=reserves,
            )

        except Exception as e:
            logger.error(f"[{network.key}] Failed to read pool {pool_address}: {e}")
            return PoolInfo.invalid()

    async def get_primary_pool_info(self, network: NetworkHandle) -> PoolInfo:
        """Resolve the primary pool of a network, invalid if none is configured."""
        pool_address = self.primary_pool(network.key)
        if pool_address is None:
            logger.error(f"[{network.key}] No pool configured")
            return PoolInfo.invalid()
        return await self.get_pool_info(pool_address, network)

    async def _fetch_token_metadata(self, web3: Web3, address: str) -> TokenInfo:
        """Read symbol and decimals, falling back to defaults on failure."""
        checksum = Web3.to_checksum_address(address)
        token = web3.eth.contract(address=checksum, abi=ERC20_ABI)
        try:
            decimals, symbol = await asyncio.gather(
                run_blocking(token.functions.decimals().call),
                run_blocking(token.functions.symbol().call),
            )
            return TokenInfo(address=checksum, decimals=int(decimals), symbol=str(symbol))
        except Exception as e:
            logger.warning(f"Token metadata unavailable for {checksum}, using defaults: {e}")
            return TokenInfo(
                address=checksum, decimals=FALLBACK_DECIMALS, symbol=FALLBACK_SYMBOL
            )
