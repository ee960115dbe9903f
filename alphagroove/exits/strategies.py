from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from functools import reduce
from typing import Callable, ClassVar, Dict, List, NamedTuple, Optional, Sequence, Union

from alphagroove.config import (
    AppConfig,
    ConfigError,
    EndOfDayConfig,
    ExitStrategiesConfig,
    MaxHoldTimeConfig,
    ProfitTargetConfig,
    StopLossConfig,
    TrailingStopConfig,
)
from alphagroove.exits.levels import calculate_exit_price, resolve_trailing_stop
from alphagroove.models import Bar, ExitReason, ExitSignal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StopLoss:
    config: StopLossConfig
    kind: ClassVar[ExitReason] = ExitReason.STOP_LOSS


@dataclass(frozen=True)
class ProfitTarget:
    config: ProfitTargetConfig
    kind: ClassVar[ExitReason] = ExitReason.PROFIT_TARGET


@dataclass(frozen=True)
class TrailingStop:
    config: TrailingStopConfig
    kind: ClassVar[ExitReason] = ExitReason.TRAILING_STOP


@dataclass(frozen=True)
class MaxHoldTime:
    config: MaxHoldTimeConfig
    kind: ClassVar[ExitReason] = ExitReason.MAX_HOLD_TIME


@dataclass(frozen=True)
class EndOfDay:
    config: EndOfDayConfig
    kind: ClassVar[ExitReason] = ExitReason.END_OF_DAY


ExitStrategy = Union[StopLoss, ProfitTarget, TrailingStop, MaxHoldTime, EndOfDay]

REGULAR_OPEN = time(9, 30)
REGULAR_CLOSE = time(16, 0)


def _after_entry(bars: Sequence[Bar], entry_time: datetime) -> List[Bar]:
    return [b for b in bars if b.timestamp > entry_time]


def _regular_hours(bars: Sequence[Bar]) -> List[Bar]:
    # Minute resolution: a 16:00:30 bar still counts as 16:00.
    kept = []
    for bar in bars:
        minute = bar.timestamp.time().replace(second=0, microsecond=0)
        if REGULAR_OPEN <= minute <= REGULAR_CLOSE:
            kept.append(bar)
    return kept


def _first_touch(
    bars: Sequence[Bar], level: float, touches: Callable[[Bar, float], bool], reason: ExitReason
) -> Optional[ExitSignal]:
    # Resting orders fill at their level, not at the bar's extreme.
    for bar in bars:
        if touches(bar, level):
            return ExitSignal(timestamp=bar.timestamp, price=level, reason=reason)
    return None


def _low_at_or_below(bar: Bar, level: float) -> bool:
    return bar.low <= level


def _high_at_or_above(bar: Bar, level: float) -> bool:
    return bar.high >= level


def _eval_stop_loss(
    s: StopLoss,
    entry_price: float,
    entry_time: datetime,
    bars: List[Bar],
    is_long: bool,
    atr: Optional[float],
    override: Optional[float],
) -> Optional[ExitSignal]:
    level = calculate_exit_price(
        entry_price, is_long, s.config, atr=atr, llm_proposed_price=override, is_stop_loss=True
    ).price
    if level is None:
        return None
    return _first_touch(bars, level, _low_at_or_below if is_long else _high_at_or_above, s.kind)


def _eval_profit_target(
    s: ProfitTarget,
    entry_price: float,
    entry_time: datetime,
    bars: List[Bar],
    is_long: bool,
    atr: Optional[float],
    override: Optional[float],
) -> Optional[ExitSignal]:
    level = calculate_exit_price(
        entry_price, is_long, s.config, atr=atr, llm_proposed_price=override, is_stop_loss=False
    ).price
    if level is None:
        return None
    return _first_touch(bars, level, _high_at_or_above if is_long else _low_at_or_below, s.kind)


class _TrailState(NamedTuple):
    activated: bool
    best_price: float
    stop_level: float
    exit: Optional[ExitSignal] = None


def _eval_trailing_stop(
    s: TrailingStop,
    entry_price: float,
    entry_time: datetime,
    bars: List[Bar],
    is_long: bool,
    atr: Optional[float],
    override: Optional[float],
) -> Optional[ExitSignal]:
    levels = resolve_trailing_stop(entry_price, is_long, s.config, atr)

    def better(a: float, b: float) -> float:
        return max(a, b) if is_long else min(a, b)

    def step(state: _TrailState, bar: Bar) -> _TrailState:
        if state.exit is not None:
            return state
        extreme = bar.high if is_long else bar.low
        if not state.activated:
            reached = bar.high >= levels.activation_level if is_long else bar.low <= levels.activation_level
            if not reached:
                return state
            # Activation bar only arms the trail; exits are checked from the next bar.
            best = better(state.best_price, extreme)
            return _TrailState(True, best, levels.stop_level(best, is_long))
        best = better(state.best_price, extreme)
        stop = levels.stop_level(best, is_long)
        crossed = bar.low <= stop if is_long else bar.high >= stop
        if crossed:
            return _TrailState(True, best, stop, ExitSignal(timestamp=bar.timestamp, price=stop, reason=s.kind))
        return _TrailState(True, best, stop)

    initial = _TrailState(levels.immediate, entry_price, levels.stop_level(entry_price, is_long))
    return reduce(step, bars, initial).exit


def _eval_max_hold_time(
    s: MaxHoldTime,
    entry_price: float,
    entry_time: datetime,
    bars: List[Bar],
    is_long: bool,
    atr: Optional[float],
    override: Optional[float],
) -> Optional[ExitSignal]:
    if not bars:
        return None
    deadline = entry_time + timedelta(minutes=s.config.minutes)
    for bar in bars:
        if bar.timestamp >= deadline:
            return ExitSignal(timestamp=bar.timestamp, price=bar.close, reason=s.kind)
    return None


def _eval_end_of_day(
    s: EndOfDay,
    entry_price: float,
    entry_time: datetime,
    bars: List[Bar],
    is_long: bool,
    atr: Optional[float],
    override: Optional[float],
) -> Optional[ExitSignal]:
    if not bars:
        return None
    entry_day = entry_time.date()
    hh, mm = (int(p) for p in s.config.time.split(":"))
    close_at = datetime.combine(entry_day, datetime.min.time()).replace(hour=hh, minute=mm)
    for bar in bars:
        if bar.timestamp >= close_at:
            return ExitSignal(timestamp=bar.timestamp, price=bar.close, reason=s.kind)
    # Early close: last bar of the entry day.
    same_day = [b for b in bars if b.timestamp.date() == entry_day]
    if same_day:
        last = same_day[-1]
        return ExitSignal(timestamp=last.timestamp, price=last.close, reason=s.kind)
    return None


_EVALUATORS: Dict[ExitReason, Callable[..., Optional[ExitSignal]]] = {
    ExitReason.STOP_LOSS: _eval_stop_loss,
    ExitReason.PROFIT_TARGET: _eval_profit_target,
    ExitReason.TRAILING_STOP: _eval_trailing_stop,
    ExitReason.MAX_HOLD_TIME: _eval_max_hold_time,
    ExitReason.END_OF_DAY: _eval_end_of_day,
}


def evaluate_exit_strategy(
    strategy: ExitStrategy,
    entry_price: float,
    entry_time: datetime,
    bars: Sequence[Bar],
    is_long: bool,
    atr: Optional[float] = None,
    level_override: Optional[float] = None,
    *,
    regular_hours_only: bool = False,
) -> Optional[ExitSignal]:
    """
    Evaluate one strategy over the bars strictly after `entry_time`.

    Pure: same inputs, same answer. Returns None when the strategy never fires.
    `level_override` is an absolute LLM-proposed level, used only by stop loss
    and profit target when their config opts in. With `regular_hours_only`,
    every strategy except endOfDay ignores bars outside 09:30-16:00.
    """
    after = _after_entry(bars, entry_time)
    if regular_hours_only and strategy.kind is not ExitReason.END_OF_DAY:
        after = _regular_hours(after)
    return _EVALUATORS[strategy.kind](strategy, entry_price, entry_time, after, is_long, atr, level_override)


def evaluate_exit_strategies(
    strategies: Sequence[ExitStrategy],
    entry_price: float,
    entry_time: datetime,
    bars: Sequence[Bar],
    is_long: bool,
    atr: Optional[float] = None,
    *,
    llm_stop_loss: Optional[float] = None,
    llm_profit_target: Optional[float] = None,
    regular_hours_only: bool = False,
) -> Optional[ExitSignal]:
    """
    First signal in configured order wins; otherwise exit at the close of the
    last bar at or after entry. None only when there is no such bar.
    """
    overrides = {ExitReason.STOP_LOSS: llm_stop_loss, ExitReason.PROFIT_TARGET: llm_profit_target}
    for strategy in strategies:
        signal = evaluate_exit_strategy(
            strategy,
            entry_price,
            entry_time,
            bars,
            is_long,
            atr,
            overrides.get(strategy.kind),
            regular_hours_only=regular_hours_only,
        )
        if signal is not None:
            return signal

    relevant = [b for b in bars if b.timestamp >= entry_time]
    if not relevant:
        return None
    last = relevant[-1]
    return ExitSignal(timestamp=last.timestamp, price=last.close, reason=ExitReason.END_OF_DAY)


def create_exit_strategies(config: Union[AppConfig, ExitStrategiesConfig]) -> List[ExitStrategy]:
    """Build the ordered strategy list from `exitStrategies.enabled`."""
    exits = config.exit_strategies if isinstance(config, AppConfig) else config
    builders: Dict[str, Callable[[], ExitStrategy]] = {
        "stopLoss": lambda: StopLoss(exits.stop_loss),
        "profitTarget": lambda: ProfitTarget(exits.profit_target),
        "trailingStop": lambda: TrailingStop(exits.trailing_stop),
        "maxHoldTime": lambda: MaxHoldTime(exits.max_hold_time),
        "endOfDay": lambda: EndOfDay(exits.end_of_day),
    }
    strategies: List[ExitStrategy] = []
    for name in exits.enabled:
        if name not in builders:
            raise ConfigError(f"Unknown exit strategy: {name}")
        strategies.append(builders[name]())
    if not strategies:
        logger.warning("No exit strategies enabled; every trade will exit at end of day")
    return strategies
