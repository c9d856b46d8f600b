"""Shared fixtures: mocked web3 networks for the SEED/WETH pair."""

from unittest.mock import AsyncMock, Mock

import pytest

from dex.types import NetworkHandle, PoolInfo, TokenInfo

ETH_WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
ETH_SEED = "0x5eed99d066a8CaF10f3E4327c1b3D8b673485eED"
ETH_POOL = "0xd36ae827a9b62b8a32f0032cad1251b94fab1dd4"
ARB_WETH = "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"
ARB_SEED = "0x86f65121804D2Cdbef79F9f072D4e0c2eEbABC08"
ARB_POOL = "0xf9f588394ec5c3b05511368ce016de5fd3812446"
QUOTER = "0xb27308f9F90D607463bb33eA1BeBb41C27CE5AB6"
SIGNER = "0x1111111111111111111111111111111111111111"


def make_contract(**calls):
    """Contract mock where contract.functions.<name>(...).call() returns or raises."""
    contract = Mock()
    for name, value in calls.items():
        fn = getattr(contract.functions, name)
        if isinstance(value, Exception):
            fn.return_value.call.side_effect = value
        else:
            fn.return_value.call.return_value = value
    return contract


def make_web3(contracts=None, block_number=1000):
    """web3 mock whose eth.contract() resolves contracts by address."""
    contracts = {addr.lower(): c for addr, c in (contracts or {}).items()}
    web3 = Mock()
    web3.eth.contract.side_effect = lambda address, abi: contracts[address.lower()]
    web3.eth.block_number = block_number
    return web3


def make_network(key, base_address, traded_address, web3=None, signer=False):
    account = None
    router = None
    if signer:
        account = Mock()
        account.address = SIGNER
        router = Mock()
    return NetworkHandle(
        key=key,
        chain_id=1 if key == "ethereum" else 42161,
        name=key.title(),
        web3=web3 or make_web3(),
        quoter=Mock(),
        base_token=TokenInfo(base_address, 18, "WETH", "Wrapped Ether"),
        traded_token=TokenInfo(traded_address, 18, "SEED", "Seed"),
        account=account,
        swap_router=router,
    )


@pytest.fixture
def eth_network():
    return make_network("ethereum", ETH_WETH, ETH_SEED, signer=True)


@pytest.fixture
def arb_network():
    return make_network("arbitrum", ARB_WETH, ARB_SEED, signer=True)


@pytest.fixture
def networks(eth_network, arb_network):
    return {"ethereum": eth_network, "arbitrum": arb_network}


@pytest.fixture
def mock_pool_service():
    """Pool service returning a valid 0.3% pool on every network."""
    service = Mock()
    service.get_primary_pool_info = AsyncMock(return_value=PoolInfo(is_valid=True, fee=3000))
    service.primary_pool = Mock(side_effect=lambda key: ETH_POOL if key == "ethereum" else ARB_POOL)
    service.get_pool_addresses = Mock(
        side_effect=lambda key: [ETH_POOL] if key == "ethereum" else [ARB_POOL]
    )
    return service
