"""Version information for the cross-chain arbitrage bot."""

__version__ = "0.1.0"
