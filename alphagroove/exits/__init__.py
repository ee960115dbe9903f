"""
Exit simulation.

Strategies are a closed set of tagged variants evaluated in configured order;
the first one that fires closes the trade, end of day is the fallback.
"""

from .levels import ExitPriceResult, LevelSource, TradeLevels, calculate_exit_price, resolve_trade_levels
from .slippage import apply_slippage, calculate_return_pct
from .strategies import (
    EndOfDay,
    ExitStrategy,
    MaxHoldTime,
    ProfitTarget,
    StopLoss,
    TrailingStop,
    create_exit_strategies,
    evaluate_exit_strategies,
    evaluate_exit_strategy,
)

__all__ = [
    "EndOfDay",
    "ExitPriceResult",
    "ExitStrategy",
    "LevelSource",
    "MaxHoldTime",
    "ProfitTarget",
    "StopLoss",
    "TradeLevels",
    "TrailingStop",
    "apply_slippage",
    "calculate_exit_price",
    "calculate_return_pct",
    "create_exit_strategies",
    "evaluate_exit_strategies",
    "evaluate_exit_strategy",
    "resolve_trade_levels",
]
