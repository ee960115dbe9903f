from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from alphagroove.models import DO_NOTHING, LLM_ACTIONS, LLMResponse

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_EDGE_BACKTICKS = re.compile(r"^`+|`+$")


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def parse_trade_decision(text: str, *, cost: float = 0.0) -> LLMResponse:
    """
    Turn raw model text into an LLMResponse.

    Accepts a bare JSON object, one wrapped in a ```json fence, or one wrapped in
    stray backticks. Anything unparseable becomes a do_nothing vote that still
    carries `cost`, since the call was billed.
    """
    raw = text or ""
    body = raw
    match = _CODE_FENCE.search(raw)
    if match:
        body = match.group(1).strip()
    body = _EDGE_BACKTICKS.sub("", body.strip())

    try:
        data = json.loads(body)
    except ValueError as exc:
        logger.warning("Could not parse model output as JSON: %s", exc)
        return LLMResponse(action=DO_NOTHING, cost=cost, raw_text=raw)
    if not isinstance(data, dict):
        logger.warning("Model output is JSON but not an object: %r", type(data).__name__)
        return LLMResponse(action=DO_NOTHING, cost=cost, raw_text=raw)

    action = data.get("action")
    if not isinstance(action, str) or action not in LLM_ACTIONS:
        action = DO_NOTHING
    rationale = data.get("rationalization")

    return LLMResponse(
        action=action,
        rationalization=rationale if isinstance(rationale, str) else None,
        stop_loss=_to_number(data.get("proposedStopLoss")),
        profit_target=_to_number(data.get("proposedProfitTarget")),
        confidence=_to_number(data.get("confidence")),
        cost=cost,
        raw_text=raw,
    )
