"""
Command line entry point for the cross-chain arbitrage bot.

Usage:
  # Run the bot (signer from PRIVATE_KEY)
  crosschain-arbitrage --config configs/seed_weth.yaml

  # Scan and log only, never trade
  crosschain-arbitrage --config configs/seed_weth.yaml --read-only

  # One scan, then exit
  crosschain-arbitrage --config configs/seed_weth.yaml --scan-once

  # One volume check and rebalance, then exit
  crosschain-arbitrage --config configs/seed_weth.yaml --volume-check

Environment Variables (also read from .env):
  PRIVATE_KEY: Signer key (omit for read-only)
  <NETWORK>_RPC: RPC endpoint override, e.g. ETHEREUM_RPC, ARBITRUM_RPC
  GAS_PRICE_<NETWORK>: Gas price hint override in gwei
  TARGET_VOLUME: Daily volume target in USD
  CHECK_INTERVAL: Volume check interval in seconds
  COINGECKO_API_KEYS: Comma-separated CoinGecko API keys
  DISCORD_WEBHOOK_URL: Webhook for notifications
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from dotenv import load_dotenv

from . import logging_config
from .bot import ArbitrageBot
from .config_loader import load_bot_config
from .exceptions import ConfigurationError, NetworkError, ValidationError
from .utils import get_logger
from .version import __version__

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Cross-chain parity arbitrage bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", required=True, help="Path to YAML config file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--scan-once", action="store_true", help="Run a single scan and exit"
    )
    mode_group.add_argument(
        "--volume-check", action="store_true", help="Run a single volume check and exit"
    )

    parser.add_argument(
        "--read-only", action="store_true", help="Ignore PRIVATE_KEY, never submit trades"
    )
    parser.add_argument(
        "--no-volume", action="store_true", help="Disable the volume rebalancer"
    )
    parser.add_argument(
        "--min-profit", type=float, help="Override minimum profit threshold (%%)"
    )
    parser.add_argument(
        "--balance-threshold", type=float, help="Override balance threshold (%%)"
    )
    parser.add_argument(
        "--cooldown", type=float, help="Override event processing cooldown (seconds)"
    )
    return parser.parse_args(argv)


def build_bot(args: argparse.Namespace) -> ArbitrageBot:
    """Load config and build a bot with CLI overrides applied."""
    logger.info(f"Loading config from {args.config}...")
    config = load_bot_config(args.config)

    bot = ArbitrageBot(config, read_only=args.read_only, volume_enabled=not args.no_volume)
    if args.min_profit is not None:
        bot.orchestrator.set_min_profit_threshold(args.min_profit)
    if args.balance_threshold is not None:
        bot.orchestrator.set_balance_threshold(args.balance_threshold)
    if args.cooldown is not None:
        bot.queue.set_processing_cooldown(args.cooldown)

    if config.private_key and not args.read_only:
        logger.info(f"Signer: {bot.network_service.wallet_address()}")
    else:
        logger.info("Running read-only, no trades will be submitted")
    return bot


async def run(args: argparse.Namespace) -> int:
    bot = build_bot(args)

    if args.scan_once:
        opportunity = await bot.orchestrator.manual_scan()
        bot.orchestrator.close()
        if opportunity is not None:
            logger.info(f"Opportunity: {opportunity.to_dict()}")
        return 0

    if args.volume_check:
        results = await bot.rebalancer.manual_volume_check()
        for key, result in results.items():
            logger.info(f"[{key}] {result if result is not None else 'no rebalance needed'}")
        return 0

    await bot.run_forever()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = parse_args(argv)
    logging_config.setup(args.log_level)

    try:
        return asyncio.run(run(args))
    except (ConfigurationError, ValidationError) as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except NetworkError as e:
        logger.error(f"Network error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
