"""
Minute-bar source backed by per-ticker CSV files.

Layout: <data_dir>/<TICKER>/<timeframe>.csv with columns
timestamp, open, high, low, close[, volume]. A header row is optional; with a
header, separate `date` and `time` columns are also accepted.
"""

from __future__ import annotations

import bisect
import csv
import logging
import threading
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from alphagroove.models import Bar, parse_timestamp

logger = logging.getLogger(__name__)

_POSITIONAL = ("timestamp", "open", "high", "low", "close", "volume")


def _parse_ts(text: str) -> Optional[datetime]:
    try:
        return parse_timestamp(text)
    except ValueError:
        return None


def _row_to_bar(row: Dict[str, str]) -> Optional[Bar]:
    ts_text = row.get("timestamp") or row.get("datetime")
    if not ts_text and row.get("date"):
        ts_text = f"{row['date']} {row.get('time', '00:00:00')}"
    ts = _parse_ts(ts_text or "")
    if ts is None:
        return None
    try:
        volume_text = (row.get("volume") or "").strip()
        return Bar(
            timestamp=ts,
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=int(float(volume_text)) if volume_text else None,
        )
    except (KeyError, TypeError, ValueError):
        return None


def read_bars_csv(path: str | Path) -> List[Bar]:
    """Parse a bar CSV (header optional), skipping malformed rows; sorted ascending."""
    bars: List[Bar] = []
    skipped = 0
    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        header: Optional[Tuple[str, ...]] = None
        for i, raw in enumerate(reader):
            if not raw or not any(cell.strip() for cell in raw):
                continue
            if i == 0 and _parse_ts(raw[0].strip()) is None:
                header = tuple(cell.strip().lower() for cell in raw)
                continue
            names = header or _POSITIONAL
            bar = _row_to_bar({k: v.strip() for k, v in zip(names, raw)})
            if bar is None:
                skipped += 1
                continue
            bars.append(bar)
    if skipped:
        logger.warning("Skipped %d malformed rows in %s", skipped, path)
    bars.sort(key=lambda b: b.timestamp)
    return bars


class _Loaded(NamedTuple):
    bars: List[Bar]
    stamps: List[datetime]
    by_day: Dict[str, List[Bar]]
    days: List[str]


class CsvBarSource:
    """
    Lazily loads one file per (ticker, timeframe) and serves day slices.

    Thread-safe: bar fetches may run from worker threads.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._cache: Dict[Tuple[str, str], _Loaded] = {}

    def path_for(self, ticker: str, timeframe: str) -> Path:
        return self.data_dir / ticker.upper() / f"{timeframe}.csv"

    def _load(self, ticker: str, timeframe: str) -> _Loaded:
        key = (ticker.upper(), timeframe)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            path = self.path_for(ticker, timeframe)
            if not path.exists():
                logger.warning("No bar data file at %s", path)
                bars: List[Bar] = []
            else:
                bars = read_bars_csv(path)
                logger.debug("Loaded %d bars from %s", len(bars), path)
            by_day = group_bars_by_day(bars)
            entry = _Loaded(bars, [b.timestamp for b in bars], by_day, sorted(by_day))
            self._cache[key] = entry
            return entry

    def trading_days(self, ticker: str, timeframe: str, date_from: str, date_to: str) -> List[str]:
        days = self._load(ticker, timeframe).days
        return days[bisect.bisect_left(days, date_from) : bisect.bisect_right(days, date_to)]

    def bars_for_day(self, ticker: str, timeframe: str, date: str) -> List[Bar]:
        return list(self._load(ticker, timeframe).by_day.get(date, []))

    def fetch_bars_for_trading_day(self, ticker: str, timeframe: str, date: str, from_time: str) -> List[Bar]:
        """Bars of `date` stamped at or after `from_time` (HH:MM[:SS])."""
        start = parse_timestamp(f"{date} {from_time}")
        return [b for b in self.bars_for_day(ticker, timeframe, date) if b.timestamp >= start]

    def fetch_bars_for_atr(
        self, ticker: str, timeframe: str, date: str, from_time: str, lookback_periods: int
    ) -> List[Bar]:
        """The `lookback_periods + 1` bars strictly before `date from_time`, possibly spanning days."""
        loaded = self._load(ticker, timeframe)
        idx = bisect.bisect_left(loaded.stamps, parse_timestamp(f"{date} {from_time}"))
        return list(loaded.bars[max(0, idx - (lookback_periods + 1)) : idx])

    def get_prior_day_trading_bars(self, ticker: str, timeframe: str, date: str) -> List[Bar]:
        loaded = self._load(ticker, timeframe)
        idx = bisect.bisect_left(loaded.days, date)
        if idx == 0:
            return []
        return list(loaded.by_day[loaded.days[idx - 1]])


def group_bars_by_day(bars: Sequence[Bar]) -> Dict[str, List[Bar]]:
    grouped: Dict[str, List[Bar]] = defaultdict(list)
    for bar in bars:
        grouped[bar.trade_date].append(bar)
    return dict(grouped)
