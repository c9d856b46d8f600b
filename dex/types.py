"""
Core data types for cross-chain pool reads, quotes, opportunities and trades.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract


@dataclass(frozen=True)
class TokenInfo:
    """
    An ERC-20 token on one network.

    Attributes:
        address: Checksum address
        decimals: Token decimals
        symbol: Ticker symbol (e.g., "WETH")
        name: Human-readable name
    """

    address: str
    decimals: int
    symbol: str
    name: str = ""


@dataclass
class NetworkHandle:
    """
    Live connection bundle for one configured network.

    Built once at startup. The web3, quoter, account and swap_router fields
    are replaced in place by NetworkService.reconnect().

    Attributes:
        key: Config key (e.g., "ethereum")
        chain_id: EVM chain id
        name: Display name
        web3: Connected Web3 instance
        quoter: QuoterV1 contract
        base_token: Wrapped native token (e.g., WETH)
        traded_token: Token being arbitraged
        gas_price_gwei: Configured gas price hint, informational only
        account: Signer, absent in read-only mode
        swap_router: SwapRouter contract, absent in read-only mode
    """

    key: str
    chain_id: int
    name: str
    web3: Web3
    quoter: Contract
    base_token: TokenInfo
    traded_token: TokenInfo
    gas_price_gwei: Optional[float] = None
    account: Optional[LocalAccount] = None
    swap_router: Optional[Contract] = None

    @property
    def can_trade(self) -> bool:
        return self.account is not None and self.swap_router is not None

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account is not None else None


@dataclass(frozen=True)
class TokenReserve:
    """Virtual reserve of one pool token in human units."""

    address: str
    symbol: str
    decimals: int
    reserve: float


@dataclass(frozen=True)
class PoolReserves:
    """Virtual reserves for both tokens of a pool, in pool token order."""

    token0: TokenReserve
    token1: TokenReserve

    def for_token(self, address: str) -> TokenReserve:
        """
        Get the reserve entry for a token address (case-insensitive).

        Raises:
            KeyError: If the token is not part of the pool
        """
        needle = address.lower()
        if self.token0.address.lower() == needle:
            return self.token0
        if self.token1.address.lower() == needle:
            return self.token1
        raise KeyError(f"Token {address} is not in pool")


@dataclass(frozen=True)
class PoolInfo:
    """
    Point-in-time snapshot of a concentrated-liquidity pool.

    Invalid snapshots carry is_valid=False and no other data.
    """

    is_valid: bool
    fee: Optional[int] = None
    token0: Optional[str] = None
    token1: Optional[str] = None
    token0_is_traded: Optional[bool] = None
    liquidity: int = 0
    sqrt_price_x96: int = 0
    reserves: Optional[PoolReserves] = None

    @classmethod
    def invalid(cls) -> "PoolInfo":
        return cls(is_valid=False)


@dataclass(frozen=True)
class Quote:
    """
    Quoter output for one network's primary pool.

    Attributes:
        network: Network key
        rate_out: Base received per one traded token
        rate_in: Traded received per one base token
        pool_address: Pool that was quoted
        fee: Pool fee tier used for the quote
    """

    network: str
    rate_out: float
    rate_in: float
    pool_address: str
    fee: int


@dataclass(frozen=True)
class PriceSnapshot:
    """USD prices from the external price feed."""

    base_usd: float
    traded_usd: Optional[float] = None
    fetched_at: float = 0.0


@dataclass(frozen=True)
class Opportunity:
    """
    A price discrepancy between the two networks.

    Attributes:
        buy_network: Cheaper network, buy side
        sell_network: Dearer network, sell side
        buy_price_usd: Traded token USD price on the buy network
        sell_price_usd: Traded token USD price on the sell network
        deviation_pct: Symmetric deviation |p1 - p2| / avg * 100
        profit_pct: Profit measure compared against the minimum threshold
        absolute_difference: |p1 - p2| in USD
        gas_estimate: Estimated gas units for both legs
        optimal_trade_amount: Reserve-derived buy size in base units
        buy_fee: Fee tier of the buy pool
        sell_fee: Fee tier of the sell pool
    """

    buy_network: str
    sell_network: str
    buy_price_usd: float
    sell_price_usd: float
    deviation_pct: float
    profit_pct: float
    absolute_difference: float
    gas_estimate: int
    optimal_trade_amount: Optional[float] = None
    buy_fee: Optional[int] = None
    sell_fee: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "buy_network": self.buy_network,
            "sell_network": self.sell_network,
            "buy_price_usd": self.buy_price_usd,
            "sell_price_usd": self.sell_price_usd,
            "deviation_pct": self.deviation_pct,
            "profit_pct": self.profit_pct,
            "absolute_difference": self.absolute_difference,
            "gas_estimate": self.gas_estimate,
            "optimal_trade_amount": self.optimal_trade_amount,
        }

    def format_log(self) -> str:
        size = (
            f"{self.optimal_trade_amount:.6f}"
            if self.optimal_trade_amount is not None
            else "n/a"
        )
        return (
            f"buy {self.buy_network} @ ${self.buy_price_usd:.6f} | "
            f"sell {self.sell_network} @ ${self.sell_price_usd:.6f} | "
            f"deviation {self.deviation_pct:.3f}% | profit {self.profit_pct:.3f}% | "
            f"size {size}"
        )


@dataclass(frozen=True)
class TradeParams:
    """
    A single exact-input swap request.

    Attributes:
        token_in: Input token address
        token_out: Output token address
        fee: Pool fee tier
        amount_in: Input amount in base units
        network: Network key
        min_amount_out: Minimum output in base units (0 disables the check)
    """

    token_in: str
    token_out: str
    fee: int
    amount_in: int
    network: str
    min_amount_out: int = 0


@dataclass(frozen=True)
class TradeResult:
    """Outcome of a single swap."""

    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SwapEvent:
    """A decoded pool Swap log."""

    network: str
    pool_address: str
    tx_hash: str
    block_number: int
    sender: str
    recipient: str
    amount0: int
    amount1: int
    sqrt_price_x96: int
    liquidity: int
    tick: int
