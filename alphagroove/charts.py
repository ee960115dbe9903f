"""
PNG chart rendering (matplotlib, Agg backend).

Signal charts show the prior session plus today up to the entry bar, which is
what the screening model gets to see. Trade charts show the full day with
entry and exit markers.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Sequence

from matplotlib.backends.backend_agg import FigureCanvasAgg
from matplotlib.figure import Figure

from alphagroove.models import Bar, Signal, Trade

logger = logging.getLogger(__name__)

_UP = "#26a69a"
_DOWN = "#ef5350"


def _draw_candles(ax, bars: Sequence[Bar]) -> None:
    xs = list(range(len(bars)))
    colors = [_UP if b.close >= b.open else _DOWN for b in bars]
    ax.vlines(xs, [b.low for b in bars], [b.high for b in bars], colors=colors, linewidth=0.6)
    bottoms = [min(b.open, b.close) for b in bars]
    heights = [max(abs(b.close - b.open), 1e-6) for b in bars]
    ax.bar(xs, heights, bottom=bottoms, color=colors, width=0.7, linewidth=0)


def _label_axis(ax, bars: Sequence[Bar], max_ticks: int = 10) -> None:
    if not bars:
        return
    step = max(1, len(bars) // max_ticks)
    ticks = list(range(0, len(bars), step))
    ax.set_xticks(ticks)
    ax.set_xticklabels([bars[i].timestamp.strftime("%m-%d %H:%M") for i in ticks], rotation=45, fontsize=7)
    ax.grid(True, alpha=0.3)


def _render(path: Path, title: str, bars: Sequence[Bar], markers: Sequence[tuple[int, float, str, str]]) -> None:
    # Figures stay off the pyplot registry; day workers render from threads.
    fig = Figure(figsize=(12, 6))
    FigureCanvasAgg(fig)
    ax = fig.add_subplot(1, 1, 1)
    _draw_candles(ax, bars)
    for idx, price, color, label in markers:
        ax.scatter([idx], [price], color=color, marker="^" if label.startswith("Entry") else "v", s=80, zorder=5, label=label)
    if markers:
        ax.legend(loc="upper left", fontsize=8)
    ax.set_title(title, fontsize=12, fontweight="bold")
    ax.set_ylabel("Price ($)")
    _label_axis(ax, bars)
    fig.tight_layout()
    fig.savefig(path, dpi=100)


def _safe_name(text: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in text)


def generate_chart_for_signal(
    ticker: str,
    pattern_name: str,
    signal: Signal,
    prior_day_bars: Sequence[Bar],
    day_bars: Sequence[Bar],
    output_dir: str,
) -> str:
    """Render the pre-entry chart; returns its path, or "" on any failure."""
    try:
        bars: List[Bar] = list(prior_day_bars) + [b for b in day_bars if b.timestamp <= signal.timestamp]
        if not bars:
            logger.warning("No bars to chart for %s %s", ticker, signal.trade_date)
            return ""
        out_dir = Path(output_dir) / _safe_name(pattern_name)
        os.makedirs(out_dir, exist_ok=True)
        path = out_dir / f"{ticker}_{_safe_name(pattern_name)}_{signal.trade_date}_masked.png"
        _render(path, f"{ticker} {signal.trade_date}", bars, [])
        return str(path)
    except Exception:
        logger.exception("Chart generation failed for %s %s", ticker, signal.trade_date)
        return ""


def generate_trade_chart(trade: Trade, day_bars: Sequence[Bar], output_dir: str, pattern_name: str) -> str:
    try:
        bars = list(day_bars)
        if not bars:
            return ""
        stamps = [b.timestamp for b in bars]
        entry_idx = _nearest_index(stamps, trade.entry_time)
        exit_idx = _nearest_index(stamps, trade.exit_time)
        out_dir = Path(output_dir) / _safe_name(pattern_name)
        os.makedirs(out_dir, exist_ok=True)
        path = out_dir / f"{trade.ticker}_{_safe_name(pattern_name)}_{trade.trade_date}_complete.png"
        title = (
            f"{trade.ticker} {trade.trade_date} {trade.direction.upper()} "
            f"{trade.return_pct * 100:+.2f}% ({trade.exit_reason.value})"
        )
        markers = [
            (entry_idx, trade.entry_price, "blue", f"Entry ${trade.entry_price:.2f}"),
            (exit_idx, trade.exit_price, "black", f"Exit ${trade.exit_price:.2f}"),
        ]
        _render(path, title, bars, markers)
        return str(path)
    except Exception:
        logger.exception("Trade chart failed for %s %s", trade.ticker, trade.trade_date)
        return ""


def _nearest_index(stamps, ts) -> int:
    for i, s in enumerate(stamps):
        if s >= ts:
            return i
    return len(stamps) - 1


def generate_trade_charts(
    trades: Sequence[Trade], bar_source, timeframe: str, output_dir: str, pattern_name: str
) -> List[str]:
    """Full-day charts for confirmed trades; failures are logged and skipped."""
    paths: List[str] = []
    for trade in trades:
        day_bars = bar_source.bars_for_day(trade.ticker, timeframe, trade.trade_date)
        path = generate_trade_chart(trade, day_bars, output_dir, pattern_name)
        if path:
            paths.append(path)
    logger.info("Generated %d trade charts in %s", len(paths), output_dir)
    return paths
