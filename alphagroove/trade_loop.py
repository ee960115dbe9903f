"""
Trade-loop orchestration.

Candidate signals are processed one calendar year at a time. Within a year,
trading days run on a bounded WorkerPool and the signals of one day run
concurrently; every candidate resolves to a local `_Outcome`. Outcomes are
re-sorted chronologically and folded into the shared statistics in a single
step per year, so concurrency never changes totals or print order.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from alphagroove.charts import generate_chart_for_signal, generate_trade_charts
from alphagroove.concurrency import WorkerPool
from alphagroove.config import AppConfig
from alphagroove.exits import (
    ExitStrategy,
    apply_slippage,
    calculate_return_pct,
    evaluate_exit_strategies,
    resolve_trade_levels,
)
from alphagroove.indicators import calculate_atr
from alphagroove.market_metrics import generate_market_metrics
from alphagroove.models import LLM_DECIDES, LONG, SHORT, OverallTradeStats, Signal, Trade
from alphagroove.output import ConsoleReporter
from alphagroove.patterns import EntryPattern
from alphagroove.stats import chronological

logger = logging.getLogger(__name__)

ATR_LOOKBACK_PERIODS = 14


@dataclass(frozen=True)
class LoopResult:
    confirmed_trades_count: int
    total_llm_cost: float = 0.0


@dataclass(frozen=True)
class _Outcome:
    signal: Signal
    trade: Optional[Trade] = None
    llm_cost: float = 0.0


def _by_key(signals: Sequence[Signal], key: Callable[[Signal], Any]) -> "OrderedDict[Any, List[Signal]]":
    grouped: "OrderedDict[Any, List[Signal]]" = OrderedDict()
    for s in sorted(signals, key=lambda s: s.timestamp):
        grouped.setdefault(key(s), []).append(s)
    return grouped


class TradeLoop:
    """Holds the collaborators for one backtest run."""

    def __init__(
        self,
        config: AppConfig,
        pattern: EntryPattern,
        exit_strategies: Sequence[ExitStrategy],
        llm_screen: Any,
        bar_source: Any,
        *,
        chart_fn: Callable[..., str] = generate_chart_for_signal,
    ) -> None:
        self.config = config
        self.pattern = pattern
        self.exit_strategies = list(exit_strategies)
        self.llm_screen = llm_screen
        self.bar_source = bar_source
        self.chart_fn = chart_fn
        self._warned_default_direction = False

    @property
    def _screen_active(self) -> bool:
        return self.llm_screen is not None and bool(getattr(self.llm_screen.config, "enabled", False))

    def _fallback_direction(self) -> str:
        if not self._warned_default_direction:
            logger.warning("Direction is llm_decides but no LLM decision is available; defaulting to long")
            self._warned_default_direction = True
        return LONG

    async def _fetch(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    async def process_signal(self, signal: Signal) -> _Outcome:
        cfg = self.config
        cost = 0.0
        try:
            direction = cfg.direction
            if direction == LLM_DECIDES and self.llm_screen is None:
                direction = self._fallback_direction()

            llm_stop: Optional[float] = None
            llm_target: Optional[float] = None
            chart_path: Optional[str] = None
            if self._screen_active:
                prior = await self._fetch(
                    self.bar_source.get_prior_day_trading_bars, signal.ticker, cfg.timeframe, signal.trade_date
                )
                today = await self._fetch(self.bar_source.bars_for_day, signal.ticker, cfg.timeframe, signal.trade_date)
                to_entry = [b for b in today if b.timestamp <= signal.timestamp]
                chart_path = await self._fetch(
                    self.chart_fn,
                    signal.ticker,
                    self.pattern.name,
                    signal,
                    prior,
                    to_entry,
                    cfg.charts.output_dir,
                )
                metrics = generate_market_metrics(prior, to_entry, signal)
                decision = await self.llm_screen.should_signal_proceed(
                    signal, chart_path, cfg.direction, market_metrics=metrics, debug=cfg.debug
                )
                cost = decision.cost
                if not decision.proceed:
                    return _Outcome(signal, None, cost)
                if decision.direction in (LONG, SHORT):
                    direction = decision.direction
                llm_stop = decision.averaged_proposed_stop_loss
                llm_target = decision.averaged_proposed_profit_target
            if direction == LLM_DECIDES:
                direction = self._fallback_direction()

            bars = await self._fetch(
                self.bar_source.fetch_bars_for_trading_day,
                signal.ticker,
                cfg.timeframe,
                signal.trade_date,
                signal.entry_time,
            )
            if not bars:
                logger.warning("No bars for %s on %s; skipping trade", signal.ticker, signal.trade_date)
                return _Outcome(signal, None, cost)

            exits = cfg.exit_strategies
            atr: Optional[float] = None
            if exits.needs_atr():
                atr_bars = await self._fetch(
                    self.bar_source.fetch_bars_for_atr,
                    signal.ticker,
                    cfg.timeframe,
                    signal.trade_date,
                    signal.entry_time,
                    ATR_LOOKBACK_PERIODS,
                )
                atr = calculate_atr(atr_bars, ATR_LOOKBACK_PERIODS)
                if atr is None:
                    logger.warning(
                        "Not enough bars for ATR(%d) before %s; using percent levels",
                        ATR_LOOKBACK_PERIODS,
                        signal.timestamp,
                    )

            return _Outcome(signal, self._simulate(signal, direction, bars, atr, llm_stop, llm_target, chart_path, cost), cost)
        except Exception:
            logger.exception("Failed to process %s signal at %s", signal.ticker, signal.timestamp)
            return _Outcome(signal, None, cost)

    def _simulate(
        self,
        signal: Signal,
        direction: str,
        bars: Sequence[Any],
        atr: Optional[float],
        llm_stop: Optional[float],
        llm_target: Optional[float],
        chart_path: Optional[str],
        cost: float,
    ) -> Optional[Trade]:
        exits = self.config.exit_strategies
        is_long = direction == LONG
        entry_price = signal.price

        exit_signal = evaluate_exit_strategies(
            self.exit_strategies,
            entry_price,
            signal.timestamp,
            bars,
            is_long,
            atr,
            llm_stop_loss=llm_stop,
            llm_profit_target=llm_target,
            regular_hours_only=exits.regular_hours_only,
        )
        if exit_signal is None:
            logger.error("No exit resolved for %s at %s; skipping trade", signal.ticker, signal.timestamp)
            return None

        exit_price = apply_slippage(exit_signal.price, is_long, exits.slippage)
        levels = resolve_trade_levels(
            entry_price, is_long, exits, atr=atr, llm_stop_loss=llm_stop, llm_profit_target=llm_target
        )
        trailing = levels.trailing
        return Trade(
            ticker=signal.ticker,
            trade_date=signal.trade_date,
            direction=direction,
            entry_time=signal.timestamp,
            exit_time=exit_signal.timestamp,
            signal_price=signal.price,
            entry_price=entry_price,
            exit_price=exit_price,
            return_pct=calculate_return_pct(entry_price, exit_price, is_long),
            exit_reason=exit_signal.reason,
            rise_pct=signal.rise_pct,
            chart_path=chart_path or None,
            entry_atr=atr,
            initial_stop_loss=levels.stop_loss.price,
            initial_profit_target=levels.profit_target.price,
            is_stop_loss_atr_based=levels.stop_loss.is_atr_based,
            is_stop_loss_llm_based=levels.stop_loss.is_llm_based,
            is_profit_target_atr_based=levels.profit_target.is_atr_based,
            is_profit_target_llm_based=levels.profit_target.is_llm_based,
            stop_loss_atr_multiplier=levels.stop_loss.multiplier_used,
            profit_target_atr_multiplier=levels.profit_target.multiplier_used,
            ts_activation_level=trailing.activation_level if trailing else None,
            ts_trail_amount=trailing.trail_distance(entry_price) if trailing else None,
            is_trailing_stop_atr_based=trailing.is_atr_based if trailing else False,
            llm_cost=cost,
        )

    async def process_day(self, signals: Sequence[Signal]) -> List[_Outcome]:
        return list(await asyncio.gather(*(self.process_signal(s) for s in signals)))

    async def process_year(self, signals: Sequence[Signal], pool: WorkerPool) -> List[_Outcome]:
        days = list(_by_key(signals, lambda s: s.trade_date).values())
        per_day = await pool.map(self.process_day, days)
        outcomes = [o for day in per_day for o in day]
        outcomes.sort(key=lambda o: o.signal.timestamp)
        return outcomes


async def process_trades_loop(
    signals: Sequence[Signal],
    config: AppConfig,
    pattern: EntryPattern,
    exit_strategies: Sequence[ExitStrategy],
    llm_screen: Any,
    bar_source: Any,
    stats: OverallTradeStats,
    reporter: Optional[ConsoleReporter] = None,
    *,
    chart_fn: Callable[..., str] = generate_chart_for_signal,
    pool: Optional[WorkerPool] = None,
) -> LoopResult:
    """
    Screen, simulate and record every candidate signal.

    Years run strictly in order; a year's output is printed only after all of
    its days have finished. Returns the number of confirmed trades.
    """
    loop = TradeLoop(config, pattern, exit_strategies, llm_screen, bar_source, chart_fn=chart_fn)
    pool = pool or WorkerPool(config.max_concurrent_days)
    stats.total_raw_matches += len(signals)

    confirmed = 0
    total_cost = 0.0
    for year, year_signals in _by_key(signals, lambda s: s.year).items():
        logger.debug("Processing %d signals for %d", len(year_signals), year)
        outcomes = await loop.process_year(year_signals, pool)

        year_cost = sum(o.llm_cost for o in outcomes)
        trades = chronological([o.trade for o in outcomes if o.trade is not None])
        for trade in trades:
            stats.record(trade)
        stats.grand_total_llm_cost += year_cost
        total_cost += year_cost
        confirmed += len(trades)

        if reporter is not None and (trades or year_cost > 0):
            reporter.print_year_header(year)
            for trade in trades:
                reporter.print_trade_details(trade)
            reporter.print_year_summary(
                year,
                [t for t in trades if t.direction == LONG],
                [t for t in trades if t.direction == SHORT],
                _year_trading_days(bar_source, config, year),
                year_cost,
            )

    logger.info("Confirmed %d of %d signals (LLM cost $%.6f)", confirmed, len(signals), total_cost)
    return LoopResult(confirmed_trades_count=confirmed, total_llm_cost=total_cost)


def _year_trading_days(bar_source: Any, config: AppConfig, year: int) -> int:
    start = max(config.date_from, f"{year}-01-01")
    end = min(config.date_to, f"{year}-12-31")
    return len(bar_source.trading_days(config.ticker, config.timeframe, start, end))


def finalize_analysis(
    stats: OverallTradeStats,
    pattern: EntryPattern,
    config: AppConfig,
    bar_source: Any,
    reporter: Optional[ConsoleReporter] = None,
) -> Dict[str, Any]:
    """Print the overall summary and, when enabled, the full-day trade charts."""
    if reporter is not None:
        reporter.print_overall_summary(stats)
    chart_paths: List[str] = []
    if config.charts.generate and stats.all_trades:
        chart_paths = generate_trade_charts(
            chronological(stats.all_trades), bar_source, config.timeframe, config.charts.output_dir, pattern.name
        )
        if reporter is not None:
            reporter.console.print(f"[dim]Saved {len(chart_paths)} trade charts to {config.charts.output_dir}[/dim]")
    if reporter is not None:
        reporter.print_footer()
    return {"confirmed_trades": stats.total_llm_confirmed_trades, "chart_paths": chart_paths}
