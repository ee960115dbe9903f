"""
Entry pattern detection over a trading day's minute bars.

Each detector returns at most one Signal per day, entering at the close of
the bar that completed the pattern.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import time, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from alphagroove.config import ConfigError, validate_hhmm
from alphagroove.models import LONG, SHORT, Bar, Signal

logger = logging.getLogger(__name__)

MARKET_OPEN = time(9, 30)


@dataclass(frozen=True)
class EntryPattern:
    name: str
    description: str
    direction_hint: Optional[str]
    detect: Callable[[str, Sequence[Bar], Mapping[str, Any]], Optional[Signal]]
    defaults: Mapping[str, Any]

    def describe(self, options: Mapping[str, Any]) -> str:
        merged = {**self.defaults, **options}
        return self.description.format(**{k.replace("-", "_"): v for k, v in merged.items()})


def _opening_bars(bars: Sequence[Bar], within_minutes: int) -> List[Bar]:
    session = [b for b in bars if b.timestamp.time() >= MARKET_OPEN]
    if not session:
        return []
    open_ts = session[0].timestamp
    cutoff = open_ts + timedelta(minutes=within_minutes)
    return [b for b in session if b.timestamp <= cutoff]


def _float_opt(options: Mapping[str, Any], key: str, default: float) -> float:
    try:
        return float(options.get(key, default))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"pattern option {key} must be a number, got {options.get(key)!r}") from exc


def detect_quick_rise(ticker: str, bars: Sequence[Bar], options: Mapping[str, Any]) -> Optional[Signal]:
    rise_pct = _float_opt(options, "rise-pct", 0.3)
    within = int(_float_opt(options, "within-minutes", 5))
    window = _opening_bars(bars, within)
    if not window:
        return None
    market_open = window[0].open
    threshold = market_open * (1 + rise_pct / 100)
    for bar in window:
        if bar.high >= threshold:
            return Signal(
                ticker=ticker,
                timestamp=bar.timestamp,
                price=bar.close,
                direction=LONG,
                rise_pct=(bar.high - market_open) / market_open * 100,
            )
    return None


def detect_quick_fall(ticker: str, bars: Sequence[Bar], options: Mapping[str, Any]) -> Optional[Signal]:
    fall_pct = _float_opt(options, "fall-pct", 0.3)
    within = int(_float_opt(options, "within-minutes", 5))
    window = _opening_bars(bars, within)
    if not window:
        return None
    market_open = window[0].open
    threshold = market_open * (1 - fall_pct / 100)
    for bar in window:
        if bar.low <= threshold:
            return Signal(
                ticker=ticker,
                timestamp=bar.timestamp,
                price=bar.close,
                direction=SHORT,
                rise_pct=(bar.low - market_open) / market_open * 100,
            )
    return None


def detect_fixed_time_entry(ticker: str, bars: Sequence[Bar], options: Mapping[str, Any]) -> Optional[Signal]:
    entry_time = validate_hhmm(options.get("entry-time", "12:00"), "fixed-time-entry.entry-time")
    hh, mm = (int(p) for p in entry_time.split(":"))
    for bar in bars:
        t = bar.timestamp.time()
        if t.hour == hh and t.minute == mm:
            return Signal(ticker=ticker, timestamp=bar.timestamp, price=bar.close, direction=None)
    return None


def _minutes(hhmm: str) -> int:
    hh, mm = (int(p) for p in hhmm.split(":"))
    return hh * 60 + mm


def random_entry_time(date: str, start_time: str, end_time: str) -> str:
    """
    Deterministic pseudo-random HH:MM in [start_time, end_time) for `date`.

    The same date always maps to the same minute, so reruns and concurrent
    runs agree. Seeded by year + month + day through one LCG step.
    """
    date_hash = sum(int(part) for part in date.split("-"))
    fraction = ((date_hash * 9301 + 49297) % 233280) / 233280
    start = _minutes(start_time)
    picked = start + int(fraction * (_minutes(end_time) - start))
    return f"{picked // 60:02d}:{picked % 60:02d}"


def detect_random_time_entry(ticker: str, bars: Sequence[Bar], options: Mapping[str, Any]) -> Optional[Signal]:
    if not bars:
        return None
    start = validate_hhmm(options.get("start-time", "09:30"), "random-time-entry.start-time")
    end = validate_hhmm(options.get("end-time", "15:30"), "random-time-entry.end-time")
    if _minutes(start) >= _minutes(end):
        raise ConfigError(f"random-time-entry start-time {start} must be before end-time {end}")
    entry_time = random_entry_time(bars[0].trade_date, start, end)
    for bar in bars:
        if bar.timestamp.strftime("%H:%M") == entry_time:
            return Signal(ticker=ticker, timestamp=bar.timestamp, price=bar.close, direction=None)
    return None


_PATTERNS: Dict[str, EntryPattern] = {
    "quick-rise": EntryPattern(
        name="Quick Rise",
        description="Price rises {rise_pct}% above the open within {within_minutes} minutes",
        direction_hint=LONG,
        detect=detect_quick_rise,
        defaults={"rise-pct": 0.3, "within-minutes": 5},
    ),
    "quick-fall": EntryPattern(
        name="Quick Fall",
        description="Price falls {fall_pct}% below the open within {within_minutes} minutes",
        direction_hint=SHORT,
        detect=detect_quick_fall,
        defaults={"fall-pct": 0.3, "within-minutes": 5},
    ),
    "fixed-time-entry": EntryPattern(
        name="Fixed Time Entry",
        description="Enter at {entry_time} every trading day",
        direction_hint=None,
        detect=detect_fixed_time_entry,
        defaults={"entry-time": "12:00"},
    ),
    "random-time-entry": EntryPattern(
        name="Random Time Entry",
        description="Enter at a date-seeded random minute between {start_time} and {end_time}",
        direction_hint=None,
        detect=detect_random_time_entry,
        defaults={"start-time": "09:30", "end-time": "15:30"},
    ),
}


def available_patterns() -> List[str]:
    return sorted(_PATTERNS)


def get_entry_pattern(name: str) -> EntryPattern:
    pattern = _PATTERNS.get(name)
    if pattern is None:
        raise ConfigError(f"Entry pattern '{name}' not found. Available patterns: {', '.join(available_patterns())}")
    return pattern


def find_signals(
    pattern_key: str,
    ticker: str,
    days: Iterable[Sequence[Bar]],
    options: Optional[Mapping[str, Any]] = None,
) -> List[Signal]:
    """Run one pattern across days of bars; signals come back in time order."""
    pattern = get_entry_pattern(pattern_key)
    opts = {**pattern.defaults, **(options or {})}
    signals = [s for s in (pattern.detect(ticker, bars, opts) for bars in days) if s is not None]
    signals.sort(key=lambda s: s.timestamp)
    logger.debug("Pattern %s produced %d signals", pattern_key, len(signals))
    return signals
