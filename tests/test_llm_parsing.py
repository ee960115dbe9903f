from __future__ import annotations

import unittest

from alphagroove.llm.parsing import parse_trade_decision


class TestParseTradeDecision(unittest.TestCase):
    def test_plain_json(self) -> None:
        r = parse_trade_decision('{"action": "long", "rationalization": "Breakout.", "proposedStopLoss": 99.5}', cost=0.002)
        self.assertEqual(r.action, "long")
        self.assertEqual(r.rationalization, "Breakout.")
        self.assertEqual(r.stop_loss, 99.5)
        self.assertIsNone(r.profit_target)
        self.assertEqual(r.cost, 0.002)

    def test_code_fence(self) -> None:
        text = 'Here you go:\n```json\n{"action": "short", "proposedProfitTarget": "97.25"}\n```'
        r = parse_trade_decision(text)
        self.assertEqual(r.action, "short")
        self.assertEqual(r.profit_target, 97.25)

    def test_stray_backticks(self) -> None:
        r = parse_trade_decision('`{"action": "do_nothing"}`')
        self.assertEqual(r.action, "do_nothing")

    def test_unknown_action_becomes_do_nothing(self) -> None:
        r = parse_trade_decision('{"action": "buy", "rationalization": "x"}')
        self.assertEqual(r.action, "do_nothing")
        self.assertEqual(r.rationalization, "x")

    def test_bad_numbers_dropped(self) -> None:
        r = parse_trade_decision(
            '{"action": "long", "proposedStopLoss": "nan", "proposedProfitTarget": "soon", "confidence": true}'
        )
        self.assertIsNone(r.stop_loss)
        self.assertIsNone(r.profit_target)
        self.assertIsNone(r.confidence)

    def test_unparseable_keeps_cost(self) -> None:
        with self.assertLogs("alphagroove.llm.parsing", level="WARNING"):
            r = parse_trade_decision("I would go long here.", cost=0.004)
        self.assertEqual(r.action, "do_nothing")
        self.assertEqual(r.cost, 0.004)
        self.assertEqual(r.raw_text, "I would go long here.")

    def test_json_array_is_not_a_decision(self) -> None:
        with self.assertLogs("alphagroove.llm.parsing", level="WARNING"):
            r = parse_trade_decision('["long"]')
        self.assertEqual(r.action, "do_nothing")


if __name__ == "__main__":
    unittest.main()
