"""
Logging configuration for cleaner output.

Usage:
    from crosschain_arbitrage import logging_config
    logging_config.setup()
"""

import logging
import sys
from typing import Union

APP_LOGGER_PREFIXES = ("crosschain_arbitrage", "dex", "__main__")


def setup(level: Union[str, int] = logging.INFO) -> None:
    """
    Configure logging for cleaner, more readable output.

    - Suppresses verbose HTTP/RPC request logs from web3 and urllib3
    - Uses shorter timestamp format (HH:MM:SS instead of full datetime)
    - Applies the requested level to every application logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    console.setFormatter(formatter)
    root.addHandler(console)

    # Suppress noisy loggers
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Module loggers are created at import time with their own handler
    for name, logger in logging.root.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith(APP_LOGGER_PREFIXES):
            logger.setLevel(level)
            for handler in logger.handlers:
                handler.setLevel(level)
