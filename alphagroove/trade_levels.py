"""
Stop, target and trailing levels for a live price, sized from the latest
complete session's ATR.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from alphagroove.config import ExitStrategiesConfig
from alphagroove.data_loader import group_bars_by_day, read_bars_csv
from alphagroove.exits.levels import TradeLevels, resolve_trade_levels, risk_reward
from alphagroove.indicators import calculate_atr_or_default
from alphagroove.models import LONG, SHORT, Bar

logger = logging.getLogger(__name__)

ALL_LEVELS = ("stopLoss", "profitTarget", "trailingStop")


@dataclass(frozen=True)
class DirectionLevels:
    direction: str
    levels: TradeLevels
    risk: Optional[float] = None
    reward: Optional[float] = None
    ratio: Optional[float] = None


@dataclass(frozen=True)
class LevelsReport:
    price: float
    atr: float
    atr_date: Optional[str]
    long: DirectionLevels
    short: DirectionLevels


def atr_from_bars(bars: List[Bar]) -> tuple[float, Optional[str]]:
    """
    ATR of the most recent complete day.

    The last day in the file is treated as in progress, so the one before it
    is used when there are at least two days.
    """
    days = group_bars_by_day(bars)
    if not days:
        logger.warning("No bars available; using default ATR")
        return calculate_atr_or_default([]), None
    dates = sorted(days)
    date = dates[-2] if len(dates) >= 2 else dates[-1]
    return calculate_atr_or_default(days[date]), date


def _direction_levels(price: float, is_long: bool, exits: ExitStrategiesConfig, atr: float) -> DirectionLevels:
    levels = resolve_trade_levels(price, is_long, exits, atr=atr)
    risk = reward = ratio = None
    if levels.stop_loss.price is not None and levels.profit_target.price is not None:
        risk, reward, ratio = risk_reward(price, levels.stop_loss.price, levels.profit_target.price)
    return DirectionLevels(LONG if is_long else SHORT, levels, risk, reward, ratio)


def compute_levels(price: float, atr: float, exits: ExitStrategiesConfig, atr_date: Optional[str] = None) -> LevelsReport:
    # Always show every level here, whatever the backtest has enabled.
    shown = ExitStrategiesConfig(
        enabled=ALL_LEVELS,
        stop_loss=exits.stop_loss,
        profit_target=exits.profit_target,
        trailing_stop=exits.trailing_stop,
        max_hold_time=exits.max_hold_time,
        end_of_day=exits.end_of_day,
        slippage=exits.slippage,
    )
    return LevelsReport(
        price=price,
        atr=atr,
        atr_date=atr_date,
        long=_direction_levels(price, True, shown, atr),
        short=_direction_levels(price, False, shown, atr),
    )


def levels_for_csv(csv_path: str | Path, price: float, exits: ExitStrategiesConfig) -> LevelsReport:
    bars = read_bars_csv(csv_path)
    atr, date = atr_from_bars(bars)
    logger.info("ATR %.4f from %s (%d bars in %s)", atr, date or "default", len(bars), csv_path)
    return compute_levels(price, atr, exits, date)


def _fmt_level(value: Optional[float], price: float) -> str:
    if value is None:
        return "-"
    diff = value - price
    return f"${value:.2f} ({diff:+.2f}, {diff / price * 100:+.2f}%)"


def _source(result) -> str:
    return result.source.value


def print_levels(report: LevelsReport, console: Optional[Console] = None) -> None:
    console = console or Console()
    atr_note = f" from {report.atr_date}" if report.atr_date else " (default)"
    console.print(f"\n[bold]Current price:[/bold] ${report.price:.2f}   [bold]ATR:[/bold] ${report.atr:.4f}{atr_note}")

    for side in (report.long, report.short):
        color = "green" if side.direction == LONG else "red"
        table = Table(title=f"[{color}]{side.direction.upper()}[/{color}]", show_lines=False)
        table.add_column("Level", style="bold")
        table.add_column("Price")
        table.add_column("Basis", style="dim")
        lv = side.levels
        table.add_row("Stop Loss", _fmt_level(lv.stop_loss.price, report.price), _source(lv.stop_loss))
        table.add_row("Profit Target", _fmt_level(lv.profit_target.price, report.price), _source(lv.profit_target))
        if lv.trailing is not None:
            activation = "Immediate" if lv.trailing.immediate else _fmt_level(lv.trailing.activation_level, report.price)
            basis = "atr" if lv.trailing.is_atr_based else "percentage"
            table.add_row("TS Activation", activation, basis)
            table.add_row("TS Trail", f"${lv.trailing.trail_distance(report.price):.2f}", basis)
        if side.ratio is not None:
            table.add_row("Risk / Reward", f"${side.risk:.2f} / ${side.reward:.2f}", f"{side.ratio:.2f}:1")
        console.print(table)
