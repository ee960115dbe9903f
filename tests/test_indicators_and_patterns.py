from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from alphagroove.config import ConfigError
from alphagroove.indicators import (
    calculate_atr,
    calculate_atr_or_default,
    calculate_average_true_range_for_day,
    calculate_vwap,
    true_range,
)
from alphagroove.market_metrics import generate_market_metrics
from alphagroove.models import Bar, Signal
from alphagroove.patterns import available_patterns, find_signals, get_entry_pattern, random_entry_time


def _series(day: str, start: str, closes, spread: float = 0.5, volume: int = 100):
    t0 = datetime.strptime(f"{day} {start}", "%Y-%m-%d %H:%M")
    bars = []
    prev = closes[0]
    for i, c in enumerate(closes):
        o = prev
        bars.append(Bar(t0 + timedelta(minutes=i), o, max(o, c) + spread, min(o, c) - spread, c, volume))
        prev = c
    return bars


class TestIndicators(unittest.TestCase):
    def test_true_range_uses_previous_close(self) -> None:
        prev = Bar(datetime(2024, 1, 2, 9, 30), 10, 11, 9, 10)
        gap = Bar(datetime(2024, 1, 2, 9, 31), 13, 14, 12.5, 13.5)
        self.assertEqual(true_range(gap), 1.5)
        self.assertEqual(true_range(gap, prev), 4.0)

    def test_atr_needs_periods_plus_one(self) -> None:
        bars = _series("2024-01-02", "09:30", [100.0] * 15)
        self.assertAlmostEqual(calculate_atr(bars, 14), 1.0)
        self.assertIsNone(calculate_atr(bars[:14], 14))

    def test_atr_uses_last_periods(self) -> None:
        bars = _series("2024-01-02", "09:30", [100.0] * 10, spread=5.0) + _series("2024-01-02", "09:40", [100.0] * 3)
        self.assertAlmostEqual(calculate_atr(bars, 2), 1.0)

    def test_day_atr_and_default(self) -> None:
        self.assertIsNone(calculate_average_true_range_for_day(_series("2024-01-02", "09:30", [1.0])))
        self.assertAlmostEqual(calculate_atr_or_default(_series("2024-01-02", "09:30", [100.0, 100.0])), 1.0)
        self.assertAlmostEqual(calculate_atr_or_default(_series("2024-01-02", "09:30", [100.0])), 1.0)
        with self.assertLogs("alphagroove.indicators", level="WARNING"):
            self.assertEqual(calculate_atr_or_default([]), 2.0)

    def test_vwap(self) -> None:
        bars = [
            Bar(datetime(2024, 1, 2, 9, 30), 10, 12, 9, 9, 100),
            Bar(datetime(2024, 1, 2, 9, 31), 10, 21, 18, 21, 300),
        ]
        self.assertAlmostEqual(calculate_vwap(bars), (10 * 100 + 20 * 300) / 400)
        self.assertIsNone(calculate_vwap([Bar(datetime(2024, 1, 2, 9, 30), 1, 2, 0.5, 1.5)]))


class TestPatterns(unittest.TestCase):
    def test_registry(self) -> None:
        self.assertEqual(available_patterns(), ["fixed-time-entry", "quick-fall", "quick-rise", "random-time-entry"])
        with self.assertRaises(ConfigError):
            get_entry_pattern("moonshot")
        desc = get_entry_pattern("quick-rise").describe({"rise-pct": 0.5})
        self.assertIn("0.5%", desc)

    def test_quick_rise_one_signal_per_day(self) -> None:
        premarket = _series("2024-01-02", "09:25", [100.0] * 3, spread=0.0)
        day1 = premarket + _series("2024-01-02", "09:30", [100.0, 100.1, 100.5, 100.9, 101.0], spread=0.0)
        day2 = _series("2024-01-03", "09:30", [100.0, 100.05, 100.1, 100.1, 100.1, 100.1, 101.0], spread=0.0)

        signals = find_signals("quick-rise", "SPY", [day2, day1], {"rise-pct": 0.3, "within-minutes": 5})

        self.assertEqual(len(signals), 1)
        s = signals[0]
        self.assertEqual(s.timestamp, datetime(2024, 1, 2, 9, 32))
        self.assertEqual(s.price, 100.5)
        self.assertAlmostEqual(s.rise_pct, 0.5)
        self.assertEqual(s.direction, "long")

    def test_quick_fall(self) -> None:
        day = _series("2024-01-02", "09:30", [100.0, 99.9, 99.6, 99.0], spread=0.0)
        signals = find_signals("quick-fall", "SPY", [day], {"fall-pct": 0.3})
        self.assertEqual(signals[0].timestamp, datetime(2024, 1, 2, 9, 32))
        self.assertEqual(signals[0].direction, "short")

    def test_fixed_time_entry(self) -> None:
        day = _series("2024-01-02", "11:58", [100.0, 100.2, 100.4, 100.6])
        signals = find_signals("fixed-time-entry", "SPY", [day], {"entry-time": "12:00"})
        self.assertEqual(signals[0].timestamp, datetime(2024, 1, 2, 12, 0))
        self.assertEqual(signals[0].price, 100.4)
        with self.assertRaises(ConfigError):
            find_signals("fixed-time-entry", "SPY", [day], {"entry-time": "noon"})

    def test_random_entry_time_is_seeded_by_date(self) -> None:
        self.assertEqual(random_entry_time("2024-01-02", "09:30", "15:30"), "09:40")
        self.assertEqual(random_entry_time("2024-01-03", "09:30", "15:30"), "09:54")
        self.assertEqual(random_entry_time("2024-01-02", "09:30", "15:30"), "09:40")
        self.assertEqual(random_entry_time("2024-01-02", "09:30", "10:30"), "09:31")

    def test_random_time_entry(self) -> None:
        day1 = _series("2024-01-02", "09:30", [100.0 + i * 0.01 for i in range(30)])
        day2 = _series("2024-01-03", "09:30", [200.0 + i * 0.01 for i in range(30)])
        short_day = _series("2024-01-04", "09:30", [100.0] * 3)

        signals = find_signals("random-time-entry", "SPY", [day2, short_day, day1])

        self.assertEqual([s.timestamp for s in signals], [datetime(2024, 1, 2, 9, 40), datetime(2024, 1, 3, 9, 54)])
        self.assertAlmostEqual(signals[0].price, 100.10)
        self.assertIsNone(signals[0].direction)
        with self.assertRaises(ConfigError):
            find_signals("random-time-entry", "SPY", [day1], {"start-time": "15:30", "end-time": "09:30"})
        desc = get_entry_pattern("random-time-entry").describe({})
        self.assertEqual(desc, "Enter at a date-seeded random minute between 09:30 and 15:30")


class TestMarketMetrics(unittest.TestCase):
    def test_lines(self) -> None:
        prior = _series("2024-01-02", "15:58", [99.0, 99.5], spread=0.0)
        today = _series("2024-01-03", "09:30", [100.0, 100.4, 100.8, 101.5], spread=0.0)
        signal = Signal("SPY", today[2].timestamp, today[2].close)

        lines = generate_market_metrics(prior, today, signal)

        self.assertEqual(lines[0], "Prev Close: $99.50 | Today Open: $100.00 | GAP UP: +$0.50 (+0.50%)")
        # Bars after the entry bar never leak into the context.
        self.assertIn("Today H/L: $100.80/$100.00", lines[1])
        self.assertIn("Current: $100.80 @ 09:32", lines[1])
        self.assertIn("VWAP", lines[2])

    def test_gap_and_missing_prior_day(self) -> None:
        today = _series("2024-01-03", "09:30", [101.0], spread=0.0, volume=0)
        signal = Signal("SPY", today[0].timestamp, 101.0)
        lines = generate_market_metrics([], today, signal)
        self.assertIn("Prev Close: N/A", lines[0])
        self.assertIn("Gap: N/A", lines[0])
        self.assertEqual(len(lines), 2)


if __name__ == "__main__":
    unittest.main()
