"""
LLM chart confirmation screen.

Fans a chart out to several model calls, then folds the votes into one
ScreenDecision. Two voting modes:

- fixed direction (long/short): proceed when that direction gets at least
  `agreement_threshold` votes; the other direction is never traded.
- llm_decides: proceed with the direction that meets the threshold and
  strictly beats the other one; ties trade nothing.

Cost is the sum of every call, whether or not the signal proceeds.
"""

from __future__ import annotations

import logging
import math
import os
import shutil
import tempfile
import uuid
from typing import Optional, Sequence

from alphagroove.llm.config import LLMScreenConfig
from alphagroove.llm.service import LlmApiService
from alphagroove.models import DO_NOTHING, LLM_DECIDES, LONG, SHORT, LLMResponse, ScreenDecision, Signal

logger = logging.getLogger(__name__)

_ACTION_MARKS = {LONG: "🔼", SHORT: "🔽", DO_NOTHING: "⏸️"}


def _mean(values: list[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _valid(value: Optional[float]) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def calculate_average_proposed_prices(
    responses: Sequence[LLMResponse], action: str
) -> tuple[Optional[float], Optional[float]]:
    """
    Average the proposed stop loss and profit target over responses voting
    `action`. Each field is averaged independently over the responses that
    supplied it; None when nobody did.
    """
    matching = [r for r in responses if r.action == action]
    stops = [float(r.stop_loss) for r in matching if _valid(r.stop_loss)]
    targets = [float(r.profit_target) for r in matching if _valid(r.profit_target)]
    return _mean(stops), _mean(targets)


def _first_rationale(responses: Sequence[LLMResponse], action: str) -> Optional[str]:
    for r in responses:
        if r.action == action and r.rationalization:
            return r.rationalization
    return None


def aggregate_decisions(
    responses: Sequence[LLMResponse],
    direction: str,
    agreement_threshold: int,
    *,
    debug: bool = False,
) -> ScreenDecision:
    long_votes = sum(1 for r in responses if r.action == LONG)
    short_votes = sum(1 for r in responses if r.action == SHORT)
    total_cost = sum(max(0.0, float(r.cost or 0.0)) for r in responses)
    payload = tuple(responses) if debug else None

    chosen: Optional[str] = None
    if direction == LLM_DECIDES:
        if long_votes >= agreement_threshold and long_votes > short_votes:
            chosen = LONG
        elif short_votes >= agreement_threshold and short_votes > long_votes:
            chosen = SHORT
    elif direction == LONG and long_votes >= agreement_threshold:
        chosen = LONG
    elif direction == SHORT and short_votes >= agreement_threshold:
        chosen = SHORT

    if chosen is None:
        if direction == LLM_DECIDES:
            rationale = (
                f"No decisive LLM consensus ({long_votes} long, {short_votes} short, "
                f"threshold {agreement_threshold})"
            )
        else:
            rationale = (
                f"LLM consensus ({long_votes} long, {short_votes} short) does not meet threshold "
                f"{agreement_threshold} for configured direction '{direction}'"
            )
        return ScreenDecision(proceed=False, cost=total_cost, rationale=rationale, responses=payload)

    avg_stop, avg_target = calculate_average_proposed_prices(responses, chosen)
    return ScreenDecision(
        proceed=True,
        cost=total_cost,
        direction=chosen,
        rationale=_first_rationale(responses, chosen),
        averaged_proposed_stop_loss=avg_stop,
        averaged_proposed_profit_target=avg_target,
        responses=payload,
    )


def _temp_chart_copy(chart_path: str) -> Optional[str]:
    """Copy the chart to a random name so the filename reveals nothing (ticker, date)."""
    if not chart_path or not os.path.exists(chart_path):
        return None
    ext = os.path.splitext(chart_path)[1] or ".png"
    tmp_path = os.path.join(tempfile.gettempdir(), f"chart_{uuid.uuid4().hex}{ext}")
    shutil.copyfile(chart_path, tmp_path)
    return tmp_path


class LlmConfirmationScreen:
    id = "llm-confirmation"
    name = "LLM Chart Confirmation Screen"

    def __init__(self, config: LLMScreenConfig, service: Optional[LlmApiService] = None) -> None:
        self.config = config
        self.service = service or LlmApiService(config)

    async def should_signal_proceed(
        self,
        signal: Signal,
        chart_path: str,
        direction: str,
        *,
        market_metrics: Optional[Sequence[str]] = None,
        debug: bool = False,
    ) -> ScreenDecision:
        if not self.config.enabled:
            logger.info("[%s] Screen not enabled; %s %s proceeds unscreened.", self.id, signal.ticker, signal.trade_date)
            return ScreenDecision(proceed=True, cost=0.0, direction=None if direction == LLM_DECIDES else direction)
        if not self.service.is_enabled():
            logger.warning(
                "[%s] LLM service not available (missing API key?); %s %s proceeds unscreened.",
                self.id,
                signal.ticker,
                signal.trade_date,
            )
            return ScreenDecision(proceed=True, cost=0.0, direction=None if direction == LLM_DECIDES else direction)

        tmp_path: Optional[str] = None
        try:
            try:
                tmp_path = _temp_chart_copy(chart_path)
            except OSError as exc:
                logger.warning("Could not copy chart %s for screening: %s", chart_path, exc)
            responses = await self.service.get_trade_decisions(tmp_path or "", market_metrics)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError as exc:
                    logger.warning("Could not remove temp chart %s: %s", tmp_path, exc)

        for i, r in enumerate(responses, start=1):
            rationale = (r.rationalization or "")[:150]
            logger.debug(
                "LLM %d: %s %s%s (cost $%.6f)",
                i,
                _ACTION_MARKS.get(r.action, r.action),
                f"error={r.error} " if r.error else "",
                rationale,
                r.cost,
            )

        decision = aggregate_decisions(responses, direction, self.config.agreement_threshold, debug=debug)
        if decision.proceed:
            logger.info(
                "LLM consensus %s for %s %s (cost $%.6f)",
                decision.direction,
                signal.ticker,
                signal.trade_date,
                decision.cost,
            )
        else:
            logger.info("%s for %s %s; filtered (cost $%.6f)", decision.rationale, signal.ticker, signal.trade_date, decision.cost)
        return decision
