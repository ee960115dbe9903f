from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from typing import Any

from alphagroove.config import (
    ConfigError,
    _load_dotenv_if_present,
    load_config,
    merge_cli_options,
    write_default_config,
)
from alphagroove.data_loader import CsvBarSource
from alphagroove.exits import create_exit_strategies
from alphagroove.logging_setup import configure_logging, parse_level
from alphagroove.models import DATE_FORMAT, LLM_DECIDES, OverallTradeStats, Signal, parse_timestamp
from alphagroove.output import ConsoleReporter
from alphagroove.patterns import available_patterns, find_signals, get_entry_pattern
from alphagroove.screens.llm_confirmation import LlmConfirmationScreen
from alphagroove.trade_levels import levels_for_csv, print_levels
from alphagroove.trade_loop import finalize_analysis, process_trades_loop

logger = logging.getLogger(__name__)


def _pattern_option(text: str) -> tuple[str, str]:
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    key, value = text.split("=", 1)
    return key.strip(), value.strip()


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="Path to alphagroove.config.yaml")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR (default: ALPHAGROOVE_LOG_LEVEL or WARNING)")
    p.add_argument("--log-file", default=None, help="Also write logs to this file")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="alphagroove", description="Intraday pattern backtester with LLM chart screening")
    sub = p.add_subparsers(dest="cmd", required=True)

    bt = sub.add_parser("backtest", help="Detect entry signals and simulate exits")
    _add_common(bt)
    bt.add_argument("--from", dest="date_from", default=None, help="Start date YYYY-MM-DD")
    bt.add_argument("--to", dest="date_to", default=None, help="End date YYYY-MM-DD")
    bt.add_argument("--ticker", default=None)
    bt.add_argument("--timeframe", default=None)
    bt.add_argument("--direction", choices=["long", "short", "llm_decides"], default=None)
    bt.add_argument("--entry-pattern", default=None, help=f"One of: {', '.join(available_patterns())}")
    bt.add_argument(
        "--pattern-option",
        action="append",
        type=_pattern_option,
        default=[],
        metavar="KEY=VALUE",
        help="Entry pattern option, e.g. rise-pct=0.5 (repeatable)",
    )
    bt.add_argument("--generate-charts", action="store_true", default=None, help="Write full-day charts for trades")
    bt.add_argument("--charts-dir", default=None)
    bt.add_argument("--max-concurrent-days", type=int, default=None)
    bt.add_argument("--data-dir", default=None, help="Directory holding <TICKER>/<timeframe>.csv")
    bt.add_argument("--debug", action="store_true", help="Verbose logging and raw LLM responses")

    lv = sub.add_parser("levels", help="Print stop, target and trailing levels for a price")
    _add_common(lv)
    lv.add_argument("csv", help="Minute-bar CSV used for ATR")
    lv.add_argument("--price", type=float, required=True)

    la = sub.add_parser("llm-analyze", help="Screen an existing chart image with the configured LLM")
    _add_common(la)
    la.add_argument("image_path", help="Chart image (PNG or JPEG)")
    la.add_argument("-d", "--direction", choices=["long", "short"], default="long", help="Suggested direction")
    la.add_argument("--ticker", default="TICKER", help="Ticker symbol (display only)")
    la.add_argument("--date", default=None, help="Trade date YYYY-MM-DD (display only)")
    la.add_argument("--price", type=float, default=100.0, help="Current price (display only)")
    la.add_argument("-v", "--verbose", action="store_true", help="Show per-call cost and raw model text")

    ic = sub.add_parser("init-config", help="Write a default alphagroove.config.yaml")
    ic.add_argument("--path", default=None)
    ic.add_argument("--log-level", default=None)
    ic.add_argument("--log-file", default=None)
    return p


def _coerce(value: str) -> Any:
    try:
        return float(value) if "." in value else int(value)
    except ValueError:
        return value


def _run_backtest(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    pattern_options: dict[str, dict[str, Any]] = {}
    if args.pattern_option:
        name = args.entry_pattern or cfg.entry_pattern
        pattern_options[name] = {k: _coerce(v) for k, v in args.pattern_option}
    cfg = merge_cli_options(
        cfg,
        {
            "ticker": args.ticker,
            "timeframe": args.timeframe,
            "direction": args.direction,
            "date_from": args.date_from,
            "date_to": args.date_to,
            "entry_pattern": args.entry_pattern,
            "data_dir": args.data_dir,
            "max_concurrent_days": args.max_concurrent_days,
            "debug": args.debug,
            "generate_charts": args.generate_charts,
            "charts_dir": args.charts_dir,
            "pattern_options": pattern_options,
        },
    )

    pattern = get_entry_pattern(cfg.entry_pattern)
    options = {**pattern.defaults, **cfg.options_for(cfg.entry_pattern)}
    exit_strategies = create_exit_strategies(cfg)

    bar_source = CsvBarSource(cfg.data_dir)
    days = bar_source.trading_days(cfg.ticker, cfg.timeframe, cfg.date_from, cfg.date_to)
    signals = find_signals(
        cfg.entry_pattern,
        cfg.ticker,
        (bar_source.bars_for_day(cfg.ticker, cfg.timeframe, d) for d in days),
        options,
    )
    logger.info("%d trading days, %d signals for %s", len(days), len(signals), cfg.entry_pattern)

    screen = None
    if cfg.llm_screen is not None and cfg.llm_screen.enabled:
        screen = LlmConfirmationScreen(cfg.llm_screen)

    reporter = ConsoleReporter()
    reporter.print_header(cfg, pattern.describe(options))
    stats = OverallTradeStats(total_trading_days=len(days))
    asyncio.run(process_trades_loop(signals, cfg, pattern, exit_strategies, screen, bar_source, stats, reporter))
    finalize_analysis(stats, pattern, cfg, bar_source, reporter)
    return 0


def _run_levels(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    if not os.path.exists(args.csv):
        raise ConfigError(f"CSV file not found: {args.csv}")
    print_levels(levels_for_csv(args.csv, args.price, cfg.exit_strategies))
    return 0


def _run_llm_analyze(args: argparse.Namespace) -> int:
    if not os.path.isfile(args.image_path):
        raise ConfigError(f"Image file not found at {args.image_path}")
    cfg = load_config(args.config)
    llm = cfg.llm_screen
    if llm is None or not llm.enabled:
        raise ConfigError("llmConfirmationScreen is not enabled; set llmConfirmationScreen.enabled: true")
    screen = LlmConfirmationScreen(llm)
    if not screen.service.is_enabled():
        raise ConfigError(f"No LLM API key in environment variable {llm.api_key_env_var}")

    trade_date = args.date or datetime.now().strftime(DATE_FORMAT)
    try:
        stamp = parse_timestamp(f"{trade_date} {datetime.now():%H:%M:%S}")
    except ValueError as exc:
        raise ConfigError(f"--date must be YYYY-MM-DD, got {trade_date!r}") from exc
    signal = Signal(ticker=args.ticker, timestamp=stamp, price=args.price)
    # A config that lets the model pick the side overrides --direction.
    direction = LLM_DECIDES if cfg.direction == LLM_DECIDES else args.direction

    reporter = ConsoleReporter()
    reporter.print_chart_analysis_header(os.path.basename(args.image_path), direction, llm)
    decision = asyncio.run(screen.should_signal_proceed(signal, args.image_path, direction, debug=True))
    reporter.print_chart_analysis(decision, direction, verbose=args.verbose)
    return 0


def _run_init_config(args: argparse.Namespace) -> int:
    if write_default_config(args.path):
        print(f"Created {args.path or 'alphagroove.config.yaml'}")
    else:
        print(f"{args.path or 'alphagroove.config.yaml'} already exists; not overwritten")
    return 0


def main(argv: list[str] | None = None) -> int:
    _load_dotenv_if_present()
    args = build_parser().parse_args(argv)

    default_level = logging.DEBUG if getattr(args, "debug", False) else logging.WARNING
    level = parse_level(args.log_level or os.getenv("ALPHAGROOVE_LOG_LEVEL"), default_level)
    configure_logging(level=level, log_file=args.log_file)

    handlers = {
        "backtest": _run_backtest,
        "levels": _run_levels,
        "llm-analyze": _run_llm_analyze,
        "init-config": _run_init_config,
    }
    try:
        return handlers[args.cmd](args)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    except Exception:
        logger.exception("Unhandled error")
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
