"""
Human-facing backtest output, rendered with rich.
"""

from __future__ import annotations

from typing import Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from alphagroove.config import AppConfig
from alphagroove.llm.config import LLMScreenConfig
from alphagroove.models import LLM_DECIDES, LONG, SHORT, OverallTradeStats, ScreenDecision, Trade
from alphagroove.stats import ReturnSummary, calculate_portfolio_growth, chronological, summarize

_RULE = "═" * 71


def _pct(value: float) -> str:
    return f"{value * 100:.2f}%"


def _signed(value: float) -> str:
    color = "green" if value >= 0 else "red"
    return f"[{color}]{_pct(value)}[/{color}]"


def _money(value: float) -> str:
    return f"${value:.2f}"


def describe_exit_strategies(config: AppConfig) -> str:
    exits = config.exit_strategies
    labels = []
    for name in exits.enabled:
        if name == "stopLoss":
            sl = exits.stop_loss
            src = "LLM" if sl.use_llm_proposed_price else ("ATR" if sl.atr_multiplier else "Percent")
            labels.append(f"Stop Loss ({src})")
        elif name == "profitTarget":
            pt = exits.profit_target
            src = "LLM" if pt.use_llm_proposed_price else ("ATR" if pt.atr_multiplier else "Percent")
            labels.append(f"Profit Target ({src})")
        elif name == "trailingStop":
            labels.append("Trailing Stop")
        elif name == "maxHoldTime":
            labels.append(f"Max Hold Time ({exits.max_hold_time.minutes}m)")
        elif name == "endOfDay":
            labels.append(f"End of Day ({exits.end_of_day.time})")
    return ", ".join(labels) if labels else "End of Day (fallback)"


class ConsoleReporter:
    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def print_header(self, config: AppConfig, pattern_description: str) -> None:
        c = self.console
        c.print(f"\n[bold]{config.ticker} Analysis ({config.date_from} to {config.date_to}):[/bold]")
        c.print(f"[bold]Entry Pattern: {pattern_description}[/bold]")
        c.print(f"[bold]Exit Strategies: {describe_exit_strategies(config)}[/bold]")
        c.print(f"[bold]Direction: {config.direction}[/bold]")
        llm = config.llm_screen
        if llm is not None and llm.enabled:
            temps = ", ".join(str(t) for t in llm.temperatures)
            c.print(f"[dim]LLM Provider: {llm.llm_provider} | Model: {llm.normalized_model()} 🤖[/dim]")
            c.print(
                f"[bold]LLM Analysis: {llm.num_calls} calls, temps [{temps}], "
                f"threshold {llm.agreement_threshold} 🧠[/bold]"
            )
        c.print("")
        c.print(f"[grey50]{_RULE}[/grey50]")
        c.print("")

    def print_year_header(self, year: int) -> None:
        self.console.print(f"\n[cyan]{year} Trades:[/cyan]")

    def print_trade_details(self, trade: Trade) -> None:
        arrow = "↘️" if trade.direction == SHORT else "↗️"
        mark = "✅" if trade.is_winner else "❌"
        parts = [
            f"{arrow} {trade.trade_date} ⏰ {trade.entry_time:%H:%M:%S} → {trade.exit_time:%H:%M:%S}",
            f"Entry: {_money(trade.signal_price)} Adj Entry: {_money(trade.entry_price)} Adj Exit: {_money(trade.exit_price)}",
        ]
        if trade.rise_pct is not None:
            parts.append(f"Change: {trade.rise_pct:.2f}%")
        parts.append(f"{mark} {_signed(trade.return_pct)} " + escape(f"[{trade.exit_reason.value}]"))

        details = []
        if trade.entry_atr is not None:
            details.append(f"ATR: {_money(trade.entry_atr)}")
        if trade.initial_stop_loss is not None:
            label = "LLM SL" if trade.is_stop_loss_llm_based else ("ATR SL" if trade.is_stop_loss_atr_based else "SL")
            if trade.is_stop_loss_atr_based and trade.stop_loss_atr_multiplier is not None:
                label += f" [{trade.stop_loss_atr_multiplier:.1f}x]"
            details.append(f"{label}: {self._level(trade.initial_stop_loss, trade.entry_price)}")
        if trade.initial_profit_target is not None:
            label = (
                "LLM PT"
                if trade.is_profit_target_llm_based
                else ("ATR PT" if trade.is_profit_target_atr_based else "PT")
            )
            if trade.is_profit_target_atr_based and trade.profit_target_atr_multiplier is not None:
                label += f" [{trade.profit_target_atr_multiplier:.1f}x]"
            details.append(f"{label}: {self._level(trade.initial_profit_target, trade.entry_price)}")
        if trade.ts_activation_level is not None:
            if trade.ts_activation_level == trade.entry_price:
                details.append("TS Act: Immediate")
            else:
                details.append(f"TS Act: {self._level(trade.ts_activation_level, trade.entry_price)}")
        if trade.ts_trail_amount is not None:
            details.append(f"TS Trail: {_money(trade.ts_trail_amount)} ({_pct(trade.ts_trail_amount / trade.entry_price)})")
        line = " ".join(parts)
        if details:
            line += " [dim]" + "; ".join(details) + "[/dim]"
        self.console.print(line, highlight=False)

    @staticmethod
    def _level(level: float, entry: float) -> str:
        offset = level - entry
        sign = "-" if offset < 0 else "+"
        return f"{_money(level)} ({sign}{_money(abs(offset))}, {_pct(offset / entry)})"

    def _summary_line(self, title: str, s: ReturnSummary) -> None:
        days = f" ({s.trade_pct_of_days:.1f}% of days)" if s.trade_pct_of_days is not None else ""
        win_color = "green" if s.win_rate >= 50 else "red"
        self.console.print(
            f"[cyan]📊 {title}: {s.count} trades{days} | "
            f"Return Range: {_pct(s.min_return)} to {_pct(s.max_return)} | "
            f"Mean: {_signed(s.mean)} | Median: {_signed(s.median)} | "
            f"StdDev: [grey50]{_pct(s.std_dev)}[/grey50] | "
            f"Win Rate: [{win_color}]{s.win_rate:.1f}%[/{win_color}][/cyan]",
            highlight=False,
        )

    def _growth_line(self, trades: Sequence[Trade]) -> None:
        g = calculate_portfolio_growth([t.return_pct for t in chronological(trades)])
        color = "green" if g.percentage_growth >= 0 else "red"
        self.console.print(
            f"💰 Compounded Growth ($10k Start): [{color}]{_money(g.final_capital)} "
            f"({g.percentage_growth:+.2f}%, {_money(g.total_dollar_return)})[/{color}]",
            highlight=False,
        )

    def print_year_summary(
        self,
        year: int,
        long_trades: Sequence[Trade],
        short_trades: Sequence[Trade],
        trading_days: int = 0,
        llm_cost: float = 0.0,
    ) -> None:
        self.console.print("")
        for title, trades in ((f"{year} Long Trades ↗️", long_trades), (f"{year} Short Trades ↘️", short_trades)):
            s = summarize(trades, trading_days)
            if s is not None:
                self._summary_line(title, s)
        combined = list(long_trades) + list(short_trades)
        if long_trades and short_trades:
            s = summarize(combined, trading_days)
            if s is not None:
                self._summary_line(f"{year} All Trades", s)
        if combined:
            self._growth_line(combined)
        if llm_cost > 0:
            self.console.print(f"[dim]💸 {year} LLM Cost: ${llm_cost:.6f}[/dim]")

    def print_overall_summary(self, stats: OverallTradeStats) -> None:
        c = self.console
        c.print(f"\n[grey50]{_RULE}[/grey50]")
        c.print("[bold]Overall Summary[/bold]")
        table = Table(show_header=False, box=None)
        table.add_column("metric", style="bold")
        table.add_column("value")
        table.add_row("Trading days", str(stats.total_trading_days))
        table.add_row("Initial signals (pre-LLM)", str(stats.total_raw_matches))
        rate = (
            f" ({stats.total_llm_confirmed_trades / stats.total_raw_matches * 100:.1f}% of signals)"
            if stats.total_raw_matches
            else ""
        )
        table.add_row("LLM Confirmed Trades", f"{stats.total_llm_confirmed_trades}{rate}")
        c.print(table)

        for title, bucket in (("Long Trades ↗️", stats.long_stats), ("Short Trades ↘️", stats.short_stats)):
            s = summarize(bucket.trades, stats.total_trading_days)
            if s is not None:
                self._summary_line(title, s)
        all_trades = stats.all_trades
        if stats.long_stats.trades and stats.short_stats.trades:
            s = summarize(all_trades, stats.total_trading_days)
            if s is not None:
                self._summary_line("All Trades", s)
        if all_trades:
            self._growth_line(all_trades)
        else:
            c.print("[yellow]No trades were confirmed.[/yellow]")
        if stats.grand_total_llm_cost > 0:
            c.print(f"[dim]💸 Total LLM Cost: ${stats.grand_total_llm_cost:.6f}[/dim]")

    def print_chart_analysis_header(self, image_name: str, direction: str, llm: LLMScreenConfig) -> None:
        c = self.console
        shown = "LLM Decides" if direction == LLM_DECIDES else direction.upper()
        c.print(f"\n[bold]Analyzing chart: {escape(image_name)}[/bold]")
        c.print(f"[dim]Direction: {shown}[/dim]")
        c.print(f"[dim]Model: {llm.normalized_model()}[/dim]")
        c.print(f"[dim]Calls: {llm.num_calls}[/dim]")
        c.print(f"[dim]Threshold: {llm.agreement_threshold}[/dim]")
        c.print(f"[dim]{'─' * 51}[/dim]")

    def print_chart_analysis(self, decision: ScreenDecision, direction: str, *, verbose: bool = False) -> None:
        """Verdict, per-call votes and cost for a single chart; `verbose` adds raw model text."""
        c = self.console
        c.print("\n[bold]LLM Analysis Results:[/bold]")
        c.print(f"Proceed with trade: {'[green]YES[/green]' if decision.proceed else '[red]NO[/red]'}")
        if decision.direction:
            label = "[green]LONG ↗️[/green]" if decision.direction == LONG else "[red]SHORT ↘️[/red]"
            c.print(f"Suggested direction: {label}")
            if direction != LLM_DECIDES:
                match = "[green]✓ MATCHES[/green]" if decision.direction == direction else "[red]✗ DIFFERS FROM[/red]"
                c.print(f"{match} your suggested {direction.upper()} direction")
        if decision.rationale:
            c.print(f"\nRationale: [italic]{escape(decision.rationale)}[/italic]")

        responses = decision.responses or ()
        if responses:
            c.print("\n[bold]Individual LLM Responses:[/bold]")
        for i, r in enumerate(responses, start=1):
            mark = {LONG: "🔼", SHORT: "🔽"}.get(r.action, "⏸️")
            c.print(f"[cyan]Response #{i}: {mark} {r.action.upper()}[/cyan]")
            if r.rationalization:
                c.print(f'"{escape(r.rationalization)}"')
            if r.error:
                c.print(f"[red]Error: {escape(r.error)}[/red]")
        c.print(f"\n[dim]LLM Cost: ${decision.cost:.6f}[/dim]", highlight=False)

        if verbose and responses:
            c.print("\n[bold]Detailed LLM Response Data:[/bold]")
            for i, r in enumerate(responses, start=1):
                c.print(f"[dim]Response #{i} Cost: ${r.cost:.6f}[/dim]", highlight=False)
                if r.raw_text:
                    c.print(escape(r.raw_text), highlight=False)

    def print_footer(self) -> None:
        self.console.print(f"\n[grey50]{_RULE}[/grey50]\n")
