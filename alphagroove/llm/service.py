from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional, Sequence

from alphagroove.llm.config import LLMScreenConfig
from alphagroove.llm.gemini import GeminiClient, extract_text, usage_tokens
from alphagroove.llm.parsing import parse_trade_decision
from alphagroove.models import DO_NOTHING, LLMResponse

logger = logging.getLogger(__name__)

_MIME_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


class LlmApiService:
    """
    Issues the configured number of chart-screening calls and returns one
    LLMResponse per call. Never raises for a single failed call.
    """

    def __init__(self, config: LLMScreenConfig, client: Optional[GeminiClient] = None) -> None:
        self.config = config
        key = config.api_key()
        if client is None and key:
            timeout_s = (config.timeout_ms / 1000.0) if config.timeout_ms else 30.0
            client = GeminiClient(api_key=key, model=config.normalized_model(), timeout_s=timeout_s)
        if client is None:
            logger.warning(
                "LLM API key not found in environment variable %s; the LLM service cannot make calls.",
                config.api_key_env_var,
            )
        self.client = client

    def is_enabled(self) -> bool:
        return self.client is not None

    def _read_image(self, chart_path: str) -> tuple[bytes | None, str]:
        ext = os.path.splitext(chart_path or "")[1].lower()
        mime = _MIME_TYPES.get(ext, "application/octet-stream")
        if not chart_path:
            return None, mime
        try:
            with open(chart_path, "rb") as f:
                return f.read(), mime
        except FileNotFoundError:
            logger.warning("Chart image not found at %s. Proceeding without image.", chart_path)
            return None, mime

    def _call_once(self, index: int, prompt: str, image: bytes | None, mime: str) -> LLMResponse:
        if self.client is None:
            raise RuntimeError("LLM client is not configured")
        data = self.client.generate_content(
            prompt=prompt,
            image_bytes=image if mime != "application/octet-stream" else None,
            mime_type=mime,
            system=self.config.system_prompt,
            temperature=self.config.temperature_for(index),
            max_output_tokens=self.config.max_output_tokens,
        )
        input_tokens, output_tokens = usage_tokens(data)
        cost = self.config.call_cost(input_tokens, output_tokens)
        return parse_trade_decision(extract_text(data), cost=cost)

    async def _call(self, index: int, prompt: str, image: bytes | None, mime: str) -> LLMResponse:
        timeout = self.config.timeout_ms / 1000.0 if self.config.timeout_ms else None
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._call_once, index, prompt, image, mime), timeout)
        except asyncio.TimeoutError:
            logger.error("LLM call %d to %s timed out", index + 1, self.config.model_name)
            return LLMResponse(action=DO_NOTHING, cost=0.0, error="timeout")
        except Exception as exc:
            logger.error("Error in LLM call %d to %s: %s", index + 1, self.config.model_name, exc)
            return LLMResponse(action=DO_NOTHING, cost=0.0, error=str(exc) or type(exc).__name__)

    async def get_trade_decisions(
        self, chart_path: str, market_metrics: Optional[Sequence[str]] = None
    ) -> list[LLMResponse]:
        n = self.config.num_calls
        if not self.is_enabled():
            logger.warning("LLM API service is not enabled or not configured correctly.")
            return [LLMResponse(action=DO_NOTHING, cost=0.0, error="Service not enabled or not configured.")] * n

        image, mime = await asyncio.to_thread(self._read_image, chart_path)
        if image is None:
            logger.warning("No image data provided for LLM call. Prompting with text only.")

        metrics_text = ""
        if market_metrics:
            metrics_text = "\n\nMarket context:\n" + "\n".join(market_metrics)

        calls = []
        for i, prompt in enumerate(self.config.resolve_prompts()):
            full_prompt = f"{prompt}{metrics_text}{self.config.common_prompt_suffix_for_json or ''}"
            calls.append(self._call(i, full_prompt, image, mime))
        return list(await asyncio.gather(*calls))
