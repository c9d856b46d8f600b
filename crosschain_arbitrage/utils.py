"""
Common utilities and helper functions for the cross-chain arbitrage bot.

Timestamp handling, token unit conversion, small math helpers, the shared
logger factory and the helper that moves blocking web3/HTTP calls off the
event loop.
"""

import asyncio
import functools
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, TypeVar, Union

T = TypeVar("T")


# Timestamp utilities
def get_current_timestamp() -> float:
    """Get current Unix timestamp as float."""
    return time.time()


def get_current_millis() -> int:
    """Get current Unix time in whole milliseconds."""
    return int(time.time() * 1000)


def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = seconds / 60
        return f"{minutes:.1f}m"
    else:
        hours = seconds / 3600
        return f"{hours:.1f}h"


# Token unit utilities
def to_base_units(amount: Union[float, Decimal, str], decimals: int) -> int:
    """
    Convert a human-readable token amount into integer base units.

    Args:
        amount: Token amount (e.g., 1.5 WETH)
        decimals: Token decimals

    Returns:
        Amount in the token's smallest unit, truncated toward zero
    """
    return int(Decimal(str(amount)) * (Decimal(10) ** decimals))


def from_base_units(raw_amount: int, decimals: int) -> float:
    """Convert an integer base-unit amount into a human-readable float."""
    return float(Decimal(int(raw_amount)) / (Decimal(10) ** decimals))


# Async utilities
async def run_blocking(func: Callable[..., T], *args: Any) -> T:
    """
    Run a blocking call (web3 RPC, HTTP request) in the default thread pool.

    Args:
        func: Callable to run
        *args: Positional arguments for the callable

    Returns:
        The callable's return value
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args))


# Logging utilities
def get_logger(
    name: str,
    level: Union[str, int] = logging.INFO,
    extra: Optional[Dict[str, Any]] = None,
    minimal: bool = False,
) -> logging.Logger:
    """
    Get a structured logger with consistent formatting and extra context.

    Args:
        name: Logger name (typically __name__)
        level: Logging level
        extra: Additional context fields to include in all log messages
        minimal: If True, use simplified format (time + message only)

    Returns:
        Configured logger with structured output
    """
    logger = logging.getLogger(name)

    if logger.level == logging.NOTSET:
        logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()

        if minimal:
            format_str = "%(asctime)s | %(message)s"
        else:
            format_str = (
                "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | " "%(message)s"
            )

        if extra:
            extra_fields = " | ".join([f"{k}=%(extra_{k})s" for k in extra.keys()])
            format_str = format_str.replace(
                " | %(message)s", f" | {extra_fields} | %(message)s"
            )

        formatter = logging.Formatter(format_str, datefmt="%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False

        if extra:
            logger = logging.LoggerAdapter(
                logger, {"extra_" + k: v for k, v in extra.items()}
            )

    return logger

