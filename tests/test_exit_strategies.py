from __future__ import annotations

import unittest
from datetime import datetime

from alphagroove.config import (
    ConfigError,
    EndOfDayConfig,
    ExitStrategiesConfig,
    MaxHoldTimeConfig,
    ProfitTargetConfig,
    StopLossConfig,
    TrailingStopConfig,
)
from alphagroove.exits import (
    EndOfDay,
    MaxHoldTime,
    ProfitTarget,
    StopLoss,
    TrailingStop,
    create_exit_strategies,
    evaluate_exit_strategies,
    evaluate_exit_strategy,
)
from alphagroove.models import Bar, ExitReason

ENTRY = datetime(2024, 1, 2, 9, 35)


def _bar(hhmm: str, o: float, h: float, l: float, c: float, day: str = "2024-01-02") -> Bar:
    return Bar(datetime.strptime(f"{day} {hhmm}", "%Y-%m-%d %H:%M"), o, h, l, c, 1000)


class TestStopLoss(unittest.TestCase):
    def test_atr_stop_fills_at_level_not_bar_low(self) -> None:
        bars = [
            _bar("09:35", 637.0, 637.2, 636.9, 637.08),
            _bar("09:36", 637.0, 637.1, 636.00, 636.2),
        ]
        s = StopLoss(StopLossConfig(atr_multiplier=2.0))
        sig = evaluate_exit_strategy(s, 637.08, ENTRY, bars, True, atr=0.26)
        self.assertIsNotNone(sig)
        self.assertEqual(sig.reason, ExitReason.STOP_LOSS)
        self.assertAlmostEqual(sig.price, 636.56, places=6)
        self.assertEqual(sig.timestamp, bars[1].timestamp)

    def test_percent_stop_used_without_atr(self) -> None:
        bars = [_bar("09:36", 100.0, 100.2, 99.5, 99.8), _bar("09:37", 99.8, 99.9, 98.5, 98.7)]
        sig = evaluate_exit_strategy(StopLoss(StopLossConfig(percent_from_entry=1.0)), 100.0, ENTRY, bars, True)
        self.assertAlmostEqual(sig.price, 99.0)
        self.assertEqual(sig.timestamp, bars[1].timestamp)

    def test_entry_bar_is_excluded(self) -> None:
        bars = [_bar("09:35", 100.0, 100.2, 90.0, 100.0), _bar("09:36", 100.0, 100.5, 99.6, 100.1)]
        sig = evaluate_exit_strategy(StopLoss(StopLossConfig(percent_from_entry=1.0)), 100.0, ENTRY, bars, True)
        self.assertIsNone(sig)

    def test_short_stop_triggers_on_high(self) -> None:
        bars = [_bar("09:36", 100.0, 101.5, 99.9, 101.2)]
        sig = evaluate_exit_strategy(StopLoss(StopLossConfig(percent_from_entry=1.0)), 100.0, ENTRY, bars, False)
        self.assertAlmostEqual(sig.price, 101.0)

    def test_llm_level_overrides_percent_when_opted_in(self) -> None:
        bars = [_bar("09:36", 100.0, 100.1, 99.6, 99.9)]
        s = StopLoss(StopLossConfig(percent_from_entry=1.0, use_llm_proposed_price=True))
        sig = evaluate_exit_strategy(s, 100.0, ENTRY, bars, True, level_override=99.7)
        self.assertAlmostEqual(sig.price, 99.7)

        plain = StopLoss(StopLossConfig(percent_from_entry=1.0))
        self.assertIsNone(evaluate_exit_strategy(plain, 100.0, ENTRY, bars, True, level_override=99.7))


class TestProfitTarget(unittest.TestCase):
    def test_atr_target_fills_at_level(self) -> None:
        bars = [_bar("09:36", 637.1, 639.5, 637.0, 639.0)]
        s = ProfitTarget(ProfitTargetConfig(atr_multiplier=5.0))
        sig = evaluate_exit_strategy(s, 637.08, ENTRY, bars, True, atr=0.26)
        self.assertEqual(sig.reason, ExitReason.PROFIT_TARGET)
        self.assertAlmostEqual(sig.price, 638.38, places=6)

    def test_short_target_triggers_on_low(self) -> None:
        bars = [_bar("09:36", 100.0, 100.1, 99.0, 99.2), _bar("09:37", 99.2, 99.3, 97.5, 97.9)]
        sig = evaluate_exit_strategy(ProfitTarget(ProfitTargetConfig(percent_from_entry=2.0)), 100.0, ENTRY, bars, False)
        self.assertAlmostEqual(sig.price, 98.0)
        self.assertEqual(sig.timestamp, bars[1].timestamp)


class TestTrailingStop(unittest.TestCase):
    def test_no_exit_before_activation_and_activation_bar_only_arms(self) -> None:
        cfg = TrailingStopConfig(activation_percent=1.0, trail_percent=0.5)
        bars = [
            _bar("09:36", 100.0, 100.5, 97.0, 97.5),  # deep drop, not yet armed
            _bar("09:37", 100.8, 101.5, 100.8, 101.2),  # arms; low is under the new stop
            _bar("09:38", 101.2, 101.2, 100.9, 101.0),
        ]
        sig = evaluate_exit_strategy(TrailingStop(cfg), 100.0, ENTRY, bars, True)
        self.assertIsNotNone(sig)
        self.assertEqual(sig.reason, ExitReason.TRAILING_STOP)
        self.assertEqual(sig.timestamp, bars[2].timestamp)
        self.assertAlmostEqual(sig.price, 101.5 * 0.995)

    def test_immediate_activation_checks_first_bar(self) -> None:
        cfg = TrailingStopConfig(activation_percent=0.0, trail_percent=0.5)
        bars = [_bar("09:36", 100.0, 100.2, 99.4, 99.5)]
        sig = evaluate_exit_strategy(TrailingStop(cfg), 100.0, ENTRY, bars, True)
        self.assertAlmostEqual(sig.price, 100.2 * 0.995)

    def test_short_trail_follows_lows(self) -> None:
        cfg = TrailingStopConfig(activation_percent=1.0, trail_percent=1.0)
        bars = [
            _bar("09:36", 99.5, 99.6, 98.5, 98.7),
            _bar("09:37", 98.7, 98.8, 98.0, 98.2),
            _bar("09:38", 98.2, 99.5, 98.1, 99.4),
        ]
        sig = evaluate_exit_strategy(TrailingStop(cfg), 100.0, ENTRY, bars, False)
        self.assertEqual(sig.timestamp, bars[2].timestamp)
        self.assertAlmostEqual(sig.price, 98.0 * 1.01)

    def test_atr_trail_amount(self) -> None:
        cfg = TrailingStopConfig(activation_atr_multiplier=0.0, trail_atr_multiplier=2.0, trail_percent=None)
        bars = [_bar("09:36", 100.0, 100.5, 99.4, 99.6)]
        sig = evaluate_exit_strategy(TrailingStop(cfg), 100.0, ENTRY, bars, True, atr=0.5)
        self.assertAlmostEqual(sig.price, 99.5)

    def test_never_activated_returns_none(self) -> None:
        cfg = TrailingStopConfig(activation_percent=1.0, trail_percent=0.5)
        bars = [_bar("09:36", 100.0, 100.5, 95.0, 96.0)]
        self.assertIsNone(evaluate_exit_strategy(TrailingStop(cfg), 100.0, ENTRY, bars, True))


class TestTimeExits(unittest.TestCase):
    def setUp(self) -> None:
        self.bars = [
            _bar("09:35", 100.0, 100.1, 99.9, 100.0),
            _bar("09:36", 100.0, 100.1, 99.9, 100.05),
            _bar("09:37", 100.0, 100.1, 99.9, 100.07),
            _bar("09:38", 100.0, 100.1, 99.9, 100.08),
            _bar("09:40", 100.0, 100.1, 99.9, 100.09),
        ]

    def test_max_hold_time_exits_at_close_of_first_bar_past_horizon(self) -> None:
        sig = evaluate_exit_strategy(MaxHoldTime(MaxHoldTimeConfig(minutes=2)), 100.0, ENTRY, self.bars, True)
        self.assertEqual(sig.reason, ExitReason.MAX_HOLD_TIME)
        self.assertEqual(sig.timestamp, self.bars[2].timestamp)
        self.assertAlmostEqual(sig.price, 100.07)

    def test_max_hold_time_not_reached(self) -> None:
        self.assertIsNone(
            evaluate_exit_strategy(MaxHoldTime(MaxHoldTimeConfig(minutes=60)), 100.0, ENTRY, self.bars, True)
        )

    def test_end_of_day_at_configured_time(self) -> None:
        sig = evaluate_exit_strategy(EndOfDay(EndOfDayConfig(time="09:38")), 100.0, ENTRY, self.bars, True)
        self.assertEqual(sig.reason, ExitReason.END_OF_DAY)
        self.assertEqual(sig.timestamp, self.bars[3].timestamp)

    def test_end_of_day_early_close_uses_last_bar(self) -> None:
        sig = evaluate_exit_strategy(EndOfDay(EndOfDayConfig(time="16:00")), 100.0, ENTRY, self.bars, True)
        self.assertEqual(sig.timestamp, self.bars[-1].timestamp)
        self.assertAlmostEqual(sig.price, 100.09)


class TestRegularHoursOnly(unittest.TestCase):
    def setUp(self) -> None:
        self.entry = datetime(2024, 1, 2, 15, 55)
        self.bars = [
            _bar("15:56", 100.0, 100.2, 99.5, 99.8),
            _bar("16:00", 99.8, 99.9, 99.4, 99.6),
            _bar("16:05", 99.6, 99.7, 98.5, 98.7),
        ]

    def test_extended_hours_bars_count_by_default(self) -> None:
        s = StopLoss(StopLossConfig(percent_from_entry=1.0))
        sig = evaluate_exit_strategy(s, 100.0, self.entry, self.bars, True)
        self.assertEqual(sig.timestamp.strftime("%H:%M"), "16:05")

    def test_extended_hours_bars_ignored_when_opted_in(self) -> None:
        s = StopLoss(StopLossConfig(percent_from_entry=1.0))
        self.assertIsNone(evaluate_exit_strategy(s, 100.0, self.entry, self.bars, True, regular_hours_only=True))
        mht = MaxHoldTime(MaxHoldTimeConfig(minutes=8))
        self.assertIsNone(evaluate_exit_strategy(mht, 100.0, self.entry, self.bars, True, regular_hours_only=True))

    def test_end_of_day_and_fallback_still_see_every_bar(self) -> None:
        eod = EndOfDay(EndOfDayConfig(time="16:05"))
        sig = evaluate_exit_strategy(eod, 100.0, self.entry, self.bars, True, regular_hours_only=True)
        self.assertEqual(sig.timestamp.strftime("%H:%M"), "16:05")

        stop = StopLoss(StopLossConfig(percent_from_entry=1.0))
        sig = evaluate_exit_strategies([stop], 100.0, self.entry, self.bars, True, regular_hours_only=True)
        self.assertEqual(sig.reason, ExitReason.END_OF_DAY)
        self.assertAlmostEqual(sig.price, 98.7)


class TestOrchestrator(unittest.TestCase):
    def test_first_configured_strategy_wins(self) -> None:
        bars = [_bar("09:36", 100.0, 102.5, 98.5, 100.0)]
        pt_first = create_exit_strategies(ExitStrategiesConfig(enabled=("profitTarget", "stopLoss")))
        sl_first = create_exit_strategies(ExitStrategiesConfig(enabled=("stopLoss", "profitTarget")))

        a = evaluate_exit_strategies(pt_first, 100.0, ENTRY, bars, True)
        b = evaluate_exit_strategies(sl_first, 100.0, ENTRY, bars, True)
        self.assertEqual(a.reason, ExitReason.PROFIT_TARGET)
        self.assertAlmostEqual(a.price, 102.0)
        self.assertEqual(b.reason, ExitReason.STOP_LOSS)
        self.assertAlmostEqual(b.price, 99.0)

    def test_fallback_to_last_bar_close(self) -> None:
        bars = [_bar("09:35", 100.0, 100.1, 99.9, 100.0), _bar("09:50", 100.0, 100.4, 99.9, 100.3)]
        strategies = create_exit_strategies(ExitStrategiesConfig(enabled=("stopLoss",)))
        sig = evaluate_exit_strategies(strategies, 100.0, ENTRY, bars, True)
        self.assertEqual(sig.reason, ExitReason.END_OF_DAY)
        self.assertAlmostEqual(sig.price, 100.3)

    def test_fallback_with_only_entry_bar(self) -> None:
        bars = [_bar("09:35", 100.0, 100.1, 99.9, 100.02)]
        with self.assertLogs("alphagroove.exits.strategies", level="WARNING"):
            strategies = create_exit_strategies(ExitStrategiesConfig(enabled=()))
        sig = evaluate_exit_strategies(strategies, 100.0, ENTRY, bars, True)
        self.assertEqual(sig.timestamp, ENTRY)
        self.assertAlmostEqual(sig.price, 100.02)

    def test_no_bars_means_no_signal(self) -> None:
        strategies = create_exit_strategies(ExitStrategiesConfig(enabled=("maxHoldTime",)))
        self.assertIsNone(evaluate_exit_strategies(strategies, 100.0, ENTRY, [], True))

    def test_disabled_strategies_are_skipped(self) -> None:
        # Stop would fire first, but only maxHoldTime is enabled.
        bars = [_bar("09:36", 100.0, 100.1, 90.0, 95.0), _bar("09:40", 95.0, 96.0, 94.0, 95.5)]
        strategies = create_exit_strategies(ExitStrategiesConfig(enabled=("maxHoldTime",), max_hold_time=MaxHoldTimeConfig(5)))
        sig = evaluate_exit_strategies(strategies, 100.0, ENTRY, bars, True)
        self.assertEqual(sig.reason, ExitReason.MAX_HOLD_TIME)

    def test_evaluation_is_deterministic(self) -> None:
        bars = [_bar("09:36", 100.0, 101.5, 99.8, 101.2), _bar("09:37", 101.2, 101.3, 100.0, 100.1)]
        strategies = create_exit_strategies(
            ExitStrategiesConfig(enabled=("trailingStop", "maxHoldTime"), max_hold_time=MaxHoldTimeConfig(30))
        )
        first = evaluate_exit_strategies(strategies, 100.0, ENTRY, bars, True)
        second = evaluate_exit_strategies(strategies, 100.0, ENTRY, bars, True)
        self.assertEqual(first, second)

    def test_unknown_strategy_name(self) -> None:
        with self.assertRaises(ConfigError):
            create_exit_strategies(ExitStrategiesConfig(enabled=("bogus",)))


if __name__ == "__main__":
    unittest.main()
