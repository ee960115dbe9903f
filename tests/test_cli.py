from __future__ import annotations

import contextlib
import io
import json
import logging
import os
import tempfile
import unittest
from datetime import datetime, timedelta
from unittest import mock

from alphagroove.cli import build_parser, main
from alphagroove.config import write_default_config


def _write_csv(path: str, days) -> None:
    rows = ["timestamp,open,high,low,close,volume"]
    for day, drift in days:
        t0 = datetime.strptime(f"{day} 09:30", "%Y-%m-%d %H:%M")
        price = 100.0
        for i in range(90):
            close = price + drift
            rows.append(
                f"{t0 + timedelta(minutes=i):%Y-%m-%d %H:%M:%S},{price:.2f},{max(price, close) + 0.02:.2f},"
                f"{min(price, close) - 0.02:.2f},{close:.2f},1000"
            )
            price = close
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(rows) + "\n")


class _CliCase(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        env = mock.patch.dict(os.environ, {})
        env.start()
        self.addCleanup(env.stop)
        for key in list(os.environ):
            if key.startswith("ALPHAGROOVE_"):
                os.environ.pop(key)

        root = logging.getLogger()
        saved = list(root.handlers), root.level

        def restore() -> None:
            for h in list(root.handlers):
                root.removeHandler(h)
            for h in saved[0]:
                root.addHandler(h)
            root.setLevel(saved[1])

        self.addCleanup(restore)

    def run_cli(self, *argv: str) -> tuple[int, str]:
        out = io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(io.StringIO()):
            code = main(list(argv))
        return code, out.getvalue()


class TestParser(unittest.TestCase):
    def test_pattern_options_are_collected(self) -> None:
        args = build_parser().parse_args(
            ["backtest", "--pattern-option", "rise-pct=0.5", "--pattern-option", "within-minutes=3"]
        )
        self.assertEqual(args.pattern_option, [("rise-pct", "0.5"), ("within-minutes", "3")])
        self.assertIsNone(args.generate_charts)

    def test_bad_pattern_option(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["backtest", "--pattern-option", "rise-pct"])


class TestCommands(_CliCase):
    def test_init_config(self) -> None:
        path = os.path.join(self._td.name, "alphagroove.config.yaml")
        code, out = self.run_cli("init-config", "--path", path)
        self.assertEqual(code, 0)
        self.assertIn("Created", out)
        code, out = self.run_cli("init-config", "--path", path)
        self.assertEqual(code, 0)
        self.assertIn("already exists", out)

    def test_missing_config_file_exits_2(self) -> None:
        code, _ = self.run_cli("backtest", "--config", os.path.join(self._td.name, "missing.yaml"))
        self.assertEqual(code, 2)

    def test_invalid_flag_exits_2(self) -> None:
        config = os.path.join(self._td.name, "c.yaml")
        write_default_config(config)
        code, _ = self.run_cli("backtest", "--config", config, "--from", "2024-02-01", "--to", "2024-01-01")
        self.assertEqual(code, 2)

    def test_levels(self) -> None:
        csv_path = os.path.join(self._td.name, "spy.csv")
        _write_csv(csv_path, [("2024-01-02", 0.01), ("2024-01-03", -0.01)])
        config = os.path.join(self._td.name, "c.yaml")
        write_default_config(config)

        code, out = self.run_cli("levels", csv_path, "--price", "100", "--config", config)

        self.assertEqual(code, 0)
        self.assertIn("Current price: $100.00", out)
        self.assertIn("from 2024-01-02", out)
        self.assertIn("LONG", out)
        self.assertIn("SHORT", out)

    def test_levels_missing_csv_exits_2(self) -> None:
        code, _ = self.run_cli("levels", os.path.join(self._td.name, "none.csv"), "--price", "100")
        self.assertEqual(code, 2)

    def test_backtest_end_to_end(self) -> None:
        data_dir = os.path.join(self._td.name, "data")
        os.makedirs(os.path.join(data_dir, "SPY"))
        _write_csv(
            os.path.join(data_dir, "SPY", "1min.csv"),
            [("2023-12-29", 0.01), ("2024-01-02", 0.02), ("2024-01-03", -0.01)],
        )
        config = os.path.join(self._td.name, "c.yaml")
        write_default_config(config)

        code, out = self.run_cli(
            "backtest",
            "--config",
            config,
            "--data-dir",
            data_dir,
            "--from",
            "2023-12-01",
            "--to",
            "2024-01-31",
            "--entry-pattern",
            "fixed-time-entry",
            "--pattern-option",
            "entry-time=09:35",
            "--max-concurrent-days",
            "2",
        )

        self.assertEqual(code, 0)
        self.assertIn("SPY Analysis (2023-12-01 to 2024-01-31):", out)
        self.assertIn("Entry Pattern: Enter at 09:35 every trading day", out)
        self.assertLess(out.index("2023 Trades:"), out.index("2024 Trades:"))
        self.assertIn("2024-01-02 ⏰ 09:35:00 → 10:35:00", out)
        self.assertIn("[maxHoldTime]", out)
        self.assertIn("Overall Summary", out)
        self.assertIn("3 (100.0% of signals)", out)

class _FakeGeminiReply:
    def __init__(self, text: str) -> None:
        payload = {
            "candidates": [{"content": {"parts": [{"text": text}]}}],
            "usageMetadata": {"promptTokenCount": 1000, "candidatesTokenCount": 100},
        }
        self._bytes = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._bytes

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


_VOTES = {
    0.2: '{"action": "long", "rationalization": "Higher lows [trend]"}',
    0.5: '```json\n{"action": "long", "rationalization": "Breakout"}\n```',
    0.8: '{"action": "short", "rationalization": "Overextended"}',
}


def _fake_gemini(req, timeout=None):
    body = json.loads(req.data.decode("utf-8"))
    return _FakeGeminiReply(_VOTES[body["generationConfig"]["temperature"]])


class TestLlmAnalyze(_CliCase):
    def setUp(self) -> None:
        super().setUp()
        self.image = os.path.join(self._td.name, "chart.png")
        with open(self.image, "wb") as f:
            f.write(b"\x89PNG fake")
        self.config = os.path.join(self._td.name, "c.yaml")
        with open(self.config, "w", encoding="utf-8") as f:
            f.write(
                "llmConfirmationScreen:\n"
                "  enabled: true\n"
                "  apiKeyEnvVar: ALPHAGROOVE_TEST_GEMINI_KEY\n"
                "  temperatures: [0.2, 0.5, 0.8]\n"
            )
        os.environ["ALPHAGROOVE_TEST_GEMINI_KEY"] = "AIza" + "k" * 35

    def test_parser(self) -> None:
        args = build_parser().parse_args(["llm-analyze", "chart.png", "-d", "short", "-v"])
        self.assertEqual(args.image_path, "chart.png")
        self.assertEqual(args.direction, "short")
        self.assertTrue(args.verbose)
        self.assertEqual(args.price, 100.0)

    def test_consensus_matches_suggested_direction(self) -> None:
        with mock.patch("urllib.request.urlopen", side_effect=_fake_gemini) as urlopen:
            code, out = self.run_cli("llm-analyze", self.image, "--config", self.config, "--date", "2024-01-02")

        self.assertEqual(code, 0)
        self.assertEqual(urlopen.call_count, 3)
        self.assertIn("Analyzing chart: chart.png", out)
        self.assertIn("Direction: LONG", out)
        self.assertIn("Proceed with trade: YES", out)
        self.assertIn("Suggested direction: LONG", out)
        self.assertIn("✓ MATCHES your suggested LONG direction", out)
        self.assertIn("Rationale: Higher lows [trend]", out)
        self.assertIn("Response #3: 🔽 SHORT", out)
        self.assertIn('"Overextended"', out)
        self.assertIn("LLM Cost: $0.009600", out)
        self.assertNotIn("Detailed LLM Response Data", out)

    def test_suggested_short_is_rejected_and_verbose_shows_raw_text(self) -> None:
        with mock.patch("urllib.request.urlopen", side_effect=_fake_gemini):
            code, out = self.run_cli("llm-analyze", self.image, "--config", self.config, "--direction", "short", "-v")

        self.assertEqual(code, 0)
        self.assertIn("Direction: SHORT", out)
        self.assertIn("Proceed with trade: NO", out)
        self.assertNotIn("Suggested direction", out)
        self.assertIn("Detailed LLM Response Data:", out)
        self.assertIn("Response #1 Cost: $0.003200", out)
        self.assertIn('"action": "short"', out)

    def test_missing_image_exits_2(self) -> None:
        with mock.patch("urllib.request.urlopen", side_effect=_fake_gemini) as urlopen:
            code, _ = self.run_cli("llm-analyze", os.path.join(self._td.name, "none.png"), "--config", self.config)
        self.assertEqual(code, 2)
        urlopen.assert_not_called()

    def test_disabled_screen_exits_2(self) -> None:
        config = os.path.join(self._td.name, "plain.yaml")
        write_default_config(config)
        code, _ = self.run_cli("llm-analyze", self.image, "--config", config)
        self.assertEqual(code, 2)

    def test_missing_api_key_exits_2(self) -> None:
        os.environ.pop("ALPHAGROOVE_TEST_GEMINI_KEY")
        with mock.patch("urllib.request.urlopen", side_effect=_fake_gemini) as urlopen:
            code, _ = self.run_cli("llm-analyze", self.image, "--config", self.config)
        self.assertEqual(code, 2)
        urlopen.assert_not_called()



if __name__ == "__main__":
    unittest.main()
