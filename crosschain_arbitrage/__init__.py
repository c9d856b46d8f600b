"""
Cross-Chain Parity Arbitrage Bot.

Watches one token pair on two EVM networks, buys on the cheaper network and
sells on the dearer one when their prices diverge, and tops up daily traded
volume with small randomized swaps.
"""

from crosschain_arbitrage.version import __version__

PROJECT_NAME = "crosschain-arbitrage"
VERSION = __version__

__all__ = ["PROJECT_NAME", "VERSION", "__version__"]
