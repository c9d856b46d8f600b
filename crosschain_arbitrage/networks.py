"""
Network bootstrap: RPC connections, signer and contract handles per network.
"""

from typing import Dict, Optional

from eth_account import Account
from web3 import Web3

from dex.abi import UNISWAP_V3_QUOTER_ABI, UNISWAP_V3_SWAP_ROUTER_ABI
from dex.types import NetworkHandle, TokenInfo

from .config_loader import BotConfig, NetworkSettings, TokenSettings
from .exceptions import ConfigurationError, NetworkError
from .utils import get_logger

logger = get_logger(__name__)

RPC_TIMEOUT_SEC = 30


def _token_info(settings: TokenSettings) -> TokenInfo:
    return TokenInfo(
        address=Web3.to_checksum_address(settings.address),
        decimals=settings.decimals,
        symbol=settings.symbol,
        name=settings.name,
    )


def _connect(handle: NetworkHandle, settings: NetworkSettings, private_key: Optional[str]) -> None:
    """(Re)build provider, quoter, signer and router on a handle in place."""
    web3 = Web3(
        Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": RPC_TIMEOUT_SEC})
    )
    handle.web3 = web3
    handle.quoter = web3.eth.contract(
        address=Web3.to_checksum_address(settings.quoter_address),
        abi=UNISWAP_V3_QUOTER_ABI,
    )
    if private_key:
        handle.account = Account.from_key(private_key)
        handle.swap_router = web3.eth.contract(
            address=Web3.to_checksum_address(settings.router_address),
            abi=UNISWAP_V3_SWAP_ROUTER_ABI,
        )
    else:
        handle.account = None
        handle.swap_router = None


def build_network_handle(
    settings: NetworkSettings, private_key: Optional[str] = None
) -> NetworkHandle:
    """
    Build a live handle for one network.

    Args:
        settings: Network settings
        private_key: Signer key; None gives a read-only handle

    Returns:
        NetworkHandle

    Raises:
        ConfigurationError: If an address or the private key is malformed
    """
    try:
        handle = NetworkHandle(
            key=settings.key,
            chain_id=settings.chain_id,
            name=settings.name,
            web3=None,
            quoter=None,
            base_token=_token_info(settings.base_token),
            traded_token=_token_info(settings.traded_token),
            gas_price_gwei=settings.gas_price_gwei,
        )
        _connect(handle, settings, private_key)
    except ValueError as e:
        raise ConfigurationError(f"Invalid settings for network {settings.key}: {e}") from e
    return handle


class NetworkService:
    """Owns the network handles for the lifetime of the bot."""

    def __init__(self, config: BotConfig, read_only: bool = False):
        """
        Initialize all configured networks.

        Args:
            config: Bot configuration
            read_only: Ignore the configured private key
        """
        self.config = config
        self._private_key = None if read_only else config.private_key
        self.networks: Dict[str, NetworkHandle] = {}

        for key, settings in config.networks.items():
            self.networks[key] = build_network_handle(settings, self._private_key)
            logger.info(
                f"Initialized {settings.name} (chain {settings.chain_id})"
                + (" with signer" if self._private_key else " read-only")
            )

    def get(self, key: str) -> Optional[NetworkHandle]:
        """Resolve a network by key, case-insensitively."""
        if key in self.networks:
            return self.networks[key]
        lowered = key.lower()
        for name, handle in self.networks.items():
            if name.lower() == lowered or handle.name.lower() == lowered:
                return handle
        return None

    def wallet_address(self) -> Optional[str]:
        for handle in self.networks.values():
            if handle.address:
                return handle.address
        return None

    def can_trade(self) -> bool:
        return bool(self.networks) and all(h.can_trade for h in self.networks.values())

    def reconnect(self, key: str) -> bool:
        """
        Rebuild a network's provider, quoter, signer and router in place.

        Returns:
            True if the reconnect succeeded
        """
        handle = self.get(key)
        if handle is None:
            logger.error(f"Cannot reconnect unknown network: {key}")
            return False
        try:
            _connect(handle, self.config.networks[handle.key], self._private_key)
            logger.info(f"[{handle.key}] Reconnected to RPC")
            return True
        except Exception as e:
            logger.error(f"[{handle.key}] Reconnect failed: {e}")
            return False

    def check_connection(self, key: str) -> int:
        """
        Probe a network's RPC endpoint.

        Returns:
            Latest block number

        Raises:
            NetworkError: If the network is unknown or the endpoint fails
        """
        handle = self.get(key)
        if handle is None:
            raise NetworkError(f"Unknown network: {key}", network=key)
        settings = self.config.networks[handle.key]
        try:
            return int(handle.web3.eth.block_number)
        except Exception as e:
            raise NetworkError(
                f"RPC endpoint for {handle.key} is unreachable: {e}",
                endpoint=settings.rpc_url,
                network=handle.key,
            ) from e
