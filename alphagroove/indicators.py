"""
Volatility and price indicators over minute bars.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from alphagroove.models import Bar

logger = logging.getLogger(__name__)

DEFAULT_ATR = 2.0


def true_range(bar: Bar, prev_bar: Optional[Bar] = None) -> float:
    """TR = max(H-L, |H-Cprev|, |L-Cprev|); just H-L without a previous bar."""
    if prev_bar is None:
        return bar.high - bar.low
    return max(bar.high - bar.low, abs(bar.high - prev_bar.close), abs(bar.low - prev_bar.close))


def _true_ranges(bars: Sequence[Bar]) -> np.ndarray:
    highs = np.array([b.high for b in bars], dtype=float)
    lows = np.array([b.low for b in bars], dtype=float)
    closes = np.array([b.close for b in bars], dtype=float)
    h = highs[1:]
    lo = lows[1:]
    c_prev = closes[:-1]
    return np.maximum(h - lo, np.maximum(np.abs(h - c_prev), np.abs(lo - c_prev)))


def calculate_atr(bars: Sequence[Bar], periods: int = 14) -> Optional[float]:
    """
    Simple mean of the last `periods` true ranges.

    Needs `periods + 1` bars (each TR uses the previous close); returns None
    otherwise so callers can fall back to percent-based levels.
    """
    if periods < 1 or len(bars) < periods + 1:
        return None
    tr = _true_ranges(bars)
    return float(np.mean(tr[-periods:]))


def calculate_average_true_range_for_day(bars: Sequence[Bar]) -> Optional[float]:
    """Mean TR across a whole day's bars; None under two bars."""
    if len(bars) < 2:
        return None
    return float(np.mean(_true_ranges(bars)))


def calculate_atr_or_default(bars: Sequence[Bar], default: float = DEFAULT_ATR) -> float:
    """Never fails: day ATR, then mean high-low range, then `default`."""
    atr = calculate_average_true_range_for_day(bars)
    if atr is not None and np.isfinite(atr) and atr > 0:
        return atr
    if bars:
        ranges = np.array([b.high - b.low for b in bars], dtype=float)
        mean_range = float(np.mean(ranges))
        if np.isfinite(mean_range) and mean_range > 0:
            return mean_range
    logger.warning("Insufficient data for ATR, using default %.2f", default)
    return default


def calculate_vwap(bars: Sequence[Bar]) -> Optional[float]:
    """Volume-weighted typical price; None without positive volume."""
    if not bars:
        return None
    typical = np.array([(b.high + b.low + b.close) / 3.0 for b in bars], dtype=float)
    volume = np.array([float(b.volume or 0) for b in bars], dtype=float)
    total = float(volume.sum())
    if total <= 0:
        return None
    return float((typical * volume).sum() / total)
