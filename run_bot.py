#!/usr/bin/env python3
"""
Run the cross-chain parity arbitrage bot.

Usage:
  python run_bot.py --config configs/seed_weth.yaml
  python run_bot.py --config configs/seed_weth.yaml --read-only --scan-once

See `python run_bot.py --help` for all options.
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from crosschain_arbitrage.cli import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
