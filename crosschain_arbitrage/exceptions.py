"""
Exception hierarchy for the cross-chain arbitrage bot.

Provides specific exception types for different error categories so callers
can tell configuration problems apart from data, network and execution
failures.
"""

from typing import Any, Dict, Optional


class CrossChainArbitrageError(Exception):
    """Base exception for all cross-chain arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(CrossChainArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(CrossChainArbitrageError):
    """Raised when validation of data or configuration fails."""

    pass


class DataError(CrossChainArbitrageError):
    """Raised when market data (prices, volumes) cannot be obtained."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        symbol: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
        self.symbol = symbol


class NetworkError(CrossChainArbitrageError):
    """Raised when an RPC endpoint or HTTP service is unreachable."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        network: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.endpoint = endpoint
        self.network = network


class ExecutionError(CrossChainArbitrageError):
    """Raised when an arbitrage leg or the arbitrage as a whole fails."""

    def __init__(
        self,
        message: str,
        network: Optional[str] = None,
        arbitrage_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.network = network
        self.arbitrage_id = arbitrage_id


class InsufficientBalanceError(ExecutionError):
    """Raised when the signer cannot cover a trade plus its gas buffer."""

    def __init__(
        self,
        message: str,
        required: Optional[float] = None,
        available: Optional[float] = None,
        network: Optional[str] = None,
        arbitrage_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, network, arbitrage_id, details)
        self.required = required
        self.available = available
