"""
Price-level resolution for stop loss, profit target and trailing stop.

Stop/target resolution priority: LLM proposal (when the strategy opts in and a
numeric proposal exists) > ATR x multiplier > percent from entry.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from alphagroove.config import ExitStrategiesConfig, ProfitTargetConfig, StopLossConfig, TrailingStopConfig

logger = logging.getLogger(__name__)

DEFAULT_TRAIL_PERCENT = 0.5


class LevelSource(str, Enum):
    LLM = "llm"
    ATR = "atr"
    PERCENT = "percentage"
    NONE = "none"


@dataclass(frozen=True)
class ExitPriceResult:
    price: Optional[float]
    source: LevelSource
    multiplier_used: Optional[float] = None

    @property
    def is_llm_based(self) -> bool:
        return self.source is LevelSource.LLM

    @property
    def is_atr_based(self) -> bool:
        return self.source is LevelSource.ATR


def _usable_atr(atr: Optional[float]) -> bool:
    return atr is not None and math.isfinite(atr) and atr > 0


def _is_number(value: Optional[float]) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def calculate_atr_stop_loss(entry_price: float, atr: float, multiplier: float, is_long: bool) -> float:
    offset = atr * multiplier
    return entry_price - offset if is_long else entry_price + offset


def calculate_exit_price(
    entry_price: float,
    is_long: bool,
    config: Union[StopLossConfig, ProfitTargetConfig],
    *,
    atr: Optional[float] = None,
    llm_proposed_price: Optional[float] = None,
    is_stop_loss: bool = True,
) -> ExitPriceResult:
    if config.use_llm_proposed_price and _is_number(llm_proposed_price):
        return ExitPriceResult(price=float(llm_proposed_price), source=LevelSource.LLM)

    if _usable_atr(atr) and config.atr_multiplier:
        if is_stop_loss:
            price = calculate_atr_stop_loss(entry_price, atr, config.atr_multiplier, is_long)
        else:
            offset = atr * config.atr_multiplier
            price = entry_price + offset if is_long else entry_price - offset
        return ExitPriceResult(price=price, source=LevelSource.ATR, multiplier_used=config.atr_multiplier)

    if config.percent_from_entry:
        pct = config.percent_from_entry / 100
        # Stop loss sits on the adverse side, target on the favorable side.
        adverse = is_long == is_stop_loss
        price = entry_price * (1 - pct) if adverse else entry_price * (1 + pct)
        return ExitPriceResult(price=price, source=LevelSource.PERCENT)

    return ExitPriceResult(price=None, source=LevelSource.NONE)


@dataclass(frozen=True)
class TrailingLevels:
    activation_level: float
    immediate: bool
    trail_amount: Optional[float] = None  # absolute, from ATR
    trail_percent: Optional[float] = None
    is_atr_based: bool = False

    def stop_level(self, best_price: float, is_long: bool) -> float:
        if self.trail_amount is not None:
            return best_price - self.trail_amount if is_long else best_price + self.trail_amount
        pct = (self.trail_percent or 0.0) / 100
        return best_price * (1 - pct) if is_long else best_price * (1 + pct)

    def trail_distance(self, reference_price: float) -> float:
        """Absolute trail distance measured from `reference_price`."""
        if self.trail_amount is not None:
            return self.trail_amount
        return reference_price * (self.trail_percent or 0.0) / 100


def resolve_trailing_stop(
    entry_price: float, is_long: bool, config: TrailingStopConfig, atr: Optional[float] = None
) -> TrailingLevels:
    atr_ok = _usable_atr(atr)
    is_atr_based = False

    if atr_ok and config.activation_atr_multiplier is not None:
        is_atr_based = True
        if config.activation_atr_multiplier == 0:
            activation, immediate = entry_price, True
        else:
            offset = atr * config.activation_atr_multiplier
            activation = entry_price + offset if is_long else entry_price - offset
            immediate = False
    else:
        pct = (config.activation_percent or 0.0) / 100
        immediate = pct == 0
        activation = entry_price * (1 + pct) if is_long else entry_price * (1 - pct)

    trail_amount: Optional[float] = None
    trail_percent = config.trail_percent
    if atr_ok and config.trail_atr_multiplier is not None:
        trail_amount = atr * config.trail_atr_multiplier
        is_atr_based = True
    elif trail_percent is None:
        logger.warning(
            "No usable ATR for trailAtrMultiplier and no trailPercent; trailing at %.2f%%", DEFAULT_TRAIL_PERCENT
        )
        trail_percent = DEFAULT_TRAIL_PERCENT

    return TrailingLevels(
        activation_level=activation,
        immediate=immediate,
        trail_amount=trail_amount,
        trail_percent=trail_percent,
        is_atr_based=is_atr_based,
    )


@dataclass(frozen=True)
class TradeLevels:
    """Every level a trade would use, with how each was derived."""
    stop_loss: ExitPriceResult
    profit_target: ExitPriceResult
    trailing: Optional[TrailingLevels] = None


def resolve_trade_levels(
    entry_price: float,
    is_long: bool,
    exits: ExitStrategiesConfig,
    *,
    atr: Optional[float] = None,
    llm_stop_loss: Optional[float] = None,
    llm_profit_target: Optional[float] = None,
) -> TradeLevels:
    """Resolve levels for the strategies named in `exits.enabled`; others are NONE."""
    none = ExitPriceResult(price=None, source=LevelSource.NONE)
    stop = none
    target = none
    trailing = None
    if "stopLoss" in exits.enabled:
        stop = calculate_exit_price(
            entry_price, is_long, exits.stop_loss, atr=atr, llm_proposed_price=llm_stop_loss, is_stop_loss=True
        )
    if "profitTarget" in exits.enabled:
        target = calculate_exit_price(
            entry_price,
            is_long,
            exits.profit_target,
            atr=atr,
            llm_proposed_price=llm_profit_target,
            is_stop_loss=False,
        )
    if "trailingStop" in exits.enabled:
        trailing = resolve_trailing_stop(entry_price, is_long, exits.trailing_stop, atr)
    return TradeLevels(stop_loss=stop, profit_target=target, trailing=trailing)


def risk_reward(entry_price: float, stop: float, target: float) -> tuple[float, float, Optional[float]]:
    """(risk, reward, reward/risk). Ratio is None for zero risk."""
    risk = abs(entry_price - stop)
    reward = abs(target - entry_price)
    return risk, reward, (reward / risk if risk > 0 else None)
