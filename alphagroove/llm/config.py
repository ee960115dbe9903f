from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

from alphagroove.config import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "You are an experienced day trader. Based on this chart, what action would you take: "
    "go long, short, or do nothing? Provide a brief one-sentence rationalization for your decision."
)
DEFAULT_JSON_SUFFIX = (
    " Your response MUST be a valid JSON object and nothing else. For example: "
    '`{"action": "long", "rationalization": "Price broke resistance with volume."}`'
)
FALLBACK_PROMPT = "Analyze this chart for a trade."


@dataclass(frozen=True)
class LLMScreenConfig:
    enabled: bool = False
    llm_provider: str = "gemini"
    # Gemini 3 model IDs are currently preview IDs.
    model_name: str = "gemini-3-pro-preview"
    api_key_env_var: str = "GEMINI_API_KEY"
    num_calls: int = 3
    agreement_threshold: int = 2
    temperatures: tuple[float, ...] = (0.2, 0.5, 0.8)
    prompts: str | tuple[str, ...] = DEFAULT_PROMPT
    common_prompt_suffix_for_json: str = DEFAULT_JSON_SUFFIX
    system_prompt: str | None = None
    max_output_tokens: int = 150
    timeout_ms: int | None = None
    input_cost_per_million_tokens: float = 2.0
    output_cost_per_million_tokens: float = 12.0

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "LLMScreenConfig":
        """Parse the `llmConfirmationScreen` YAML block."""
        d = LLMScreenConfig()
        provider = str(raw.get("llmProvider", d.llm_provider)).strip().lower()
        if provider != "gemini":
            raise ConfigError(f"llmConfirmationScreen.llmProvider must be 'gemini', got {provider!r}")

        prompts_raw = raw.get("prompts", d.prompts)
        if isinstance(prompts_raw, (list, tuple)):
            prompts: str | tuple[str, ...] = tuple(str(p) for p in prompts_raw)
        else:
            prompts = str(prompts_raw)

        temps_raw = raw.get("temperatures", d.temperatures)
        if not isinstance(temps_raw, (list, tuple)):
            temps_raw = [temps_raw]

        try:
            cfg = LLMScreenConfig(
                enabled=bool(raw.get("enabled", d.enabled)),
                llm_provider=provider,
                model_name=str(raw.get("modelName", d.model_name)).strip(),
                api_key_env_var=str(raw.get("apiKeyEnvVar", d.api_key_env_var)).strip(),
                num_calls=int(raw.get("numCalls", d.num_calls)),
                agreement_threshold=int(raw.get("agreementThreshold", d.agreement_threshold)),
                temperatures=tuple(float(t) for t in temps_raw),
                prompts=prompts,
                common_prompt_suffix_for_json=str(
                    raw.get("commonPromptSuffixForJson", d.common_prompt_suffix_for_json)
                ),
                system_prompt=raw.get("systemPrompt") or None,
                max_output_tokens=int(raw.get("maxOutputTokens", d.max_output_tokens)),
                timeout_ms=(int(raw["timeoutMs"]) if raw.get("timeoutMs") is not None else None),
                input_cost_per_million_tokens=float(
                    raw.get("inputCostPerMillionTokens", d.input_cost_per_million_tokens)
                ),
                output_cost_per_million_tokens=float(
                    raw.get("outputCostPerMillionTokens", d.output_cost_per_million_tokens)
                ),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid llmConfirmationScreen value: {exc}") from exc

        if cfg.num_calls < 1:
            raise ConfigError(f"llmConfirmationScreen.numCalls must be >= 1, got {cfg.num_calls}")
        if cfg.agreement_threshold < 1:
            raise ConfigError(
                f"llmConfirmationScreen.agreementThreshold must be >= 1, got {cfg.agreement_threshold}"
            )
        if cfg.max_output_tokens < 1:
            raise ConfigError("llmConfirmationScreen.maxOutputTokens must be >= 1")
        return cfg

    def to_mapping(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "enabled": self.enabled,
            "llmProvider": self.llm_provider,
            "modelName": self.model_name,
            "apiKeyEnvVar": self.api_key_env_var,
            "numCalls": self.num_calls,
            "agreementThreshold": self.agreement_threshold,
            "temperatures": list(self.temperatures),
            "prompts": self.prompts if isinstance(self.prompts, str) else list(self.prompts),
            "commonPromptSuffixForJson": self.common_prompt_suffix_for_json,
            "maxOutputTokens": self.max_output_tokens,
            "inputCostPerMillionTokens": self.input_cost_per_million_tokens,
            "outputCostPerMillionTokens": self.output_cost_per_million_tokens,
        }
        if self.system_prompt:
            out["systemPrompt"] = self.system_prompt
        if self.timeout_ms is not None:
            out["timeoutMs"] = self.timeout_ms
        return out

    def api_key(self) -> str | None:
        value = os.getenv(self.api_key_env_var, "").strip()
        return value or None

    def resolve_prompts(self) -> list[str]:
        """One prompt per call; a list of the wrong length collapses to its first entry."""
        n = self.num_calls
        if isinstance(self.prompts, str):
            return [self.prompts] * n
        prompts = list(self.prompts)
        if len(prompts) != n:
            logger.warning(
                "Number of prompts (%d) does not match numCalls (%d). Using the first prompt for all calls.",
                len(prompts),
                n,
            )
            first = prompts[0] if prompts and prompts[0] else FALLBACK_PROMPT
            return [first] * n
        return prompts

    def temperature_for(self, index: int) -> float:
        temps = self.temperatures
        if index < len(temps) and temps[index]:
            return float(temps[index])
        if temps and temps[0]:
            return float(temps[0])
        return 0.5

    def call_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens / 1_000_000 * self.input_cost_per_million_tokens
            + output_tokens / 1_000_000 * self.output_cost_per_million_tokens
        )

    def normalized_model(self) -> str:
        """
        Normalize common (but invalid) model names to supported Gemini identifiers.

        Users commonly guess suffixes like "-pro" which may not exist on the v1beta endpoint.
        """
        m = str(self.model_name or "").strip()
        aliases = {
            "gemini-3": "gemini-3-pro-preview",
            "gemini-3-pro": "gemini-3-pro-preview",
            "gemini-3-flash": "gemini-3-flash-preview",
        }
        m = aliases.get(m, m)
        return m or "gemini-3-pro-preview"
