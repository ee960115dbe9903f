from __future__ import annotations

from typing import List, Optional, Sequence

from alphagroove.indicators import calculate_vwap
from alphagroove.models import Bar, Signal


def _money(value: Optional[float]) -> str:
    return "N/A" if value is None else f"${value:.2f}"


def _gap_text(prev_close: Optional[float], today_open: Optional[float]) -> str:
    if not prev_close or today_open is None:
        return "Gap: N/A"
    gap = today_open - prev_close
    pct = abs(gap) / prev_close * 100
    if gap > 0:
        return f"GAP UP: +${gap:.2f} (+{pct:.2f}%)"
    if gap < 0:
        return f"GAP DOWN: -${abs(gap):.2f} (-{pct:.2f}%)"
    return "NO GAP: $0.00 (0.00%)"


def generate_market_metrics(
    prior_day_bars: Sequence[Bar], day_bars_to_entry: Sequence[Bar], signal: Signal
) -> List[str]:
    """
    Context lines appended to the screening prompt.

    `day_bars_to_entry` must not extend past the entry bar; nothing after the
    signal may leak into the prompt.
    """
    today = [b for b in day_bars_to_entry if b.timestamp <= signal.timestamp]
    prev_close = prior_day_bars[-1].close if prior_day_bars else None
    today_open = today[0].open if today else None
    high = max((b.high for b in today), default=None)
    low = min((b.low for b in today), default=None)
    at = signal.timestamp.strftime("%H:%M")

    lines = [
        f"Prev Close: {_money(prev_close)} | Today Open: {_money(today_open)} | {_gap_text(prev_close, today_open)}",
        f"Today H/L: {_money(high)}/{_money(low)} | Current: ${signal.price:.2f} @ {at}",
    ]
    vwap = calculate_vwap(today)
    if vwap is not None:
        diff = signal.price - vwap
        position = "AT" if abs(diff) < 0.005 else ("ABOVE" if diff > 0 else "BELOW")
        lines.append(
            f"Current price of ${signal.price:.2f} is ${abs(diff):.2f} {position} VWAP of ${vwap:.2f}."
        )
    return lines
