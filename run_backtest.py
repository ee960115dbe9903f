#!/usr/bin/env python3
"""
Run an AlphaGroove backtest from a checkout without installing the package.

Usage:
    python run_backtest.py --ticker SPY --from 2024-01-01 --to 2024-12-31
    python run_backtest.py --entry-pattern quick-fall --direction short --max-concurrent-days 4
"""

import sys

from alphagroove.cli import main

if __name__ == "__main__":
    raise SystemExit(main(["backtest", *sys.argv[1:]]))
