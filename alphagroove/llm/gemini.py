from __future__ import annotations

import base64
import json
import urllib.parse
import urllib.request
from dataclasses import dataclass
from urllib.error import HTTPError

_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


@dataclass(frozen=True)
class GeminiClient:
    """
    Gemini REST client over urllib.

    Endpoint pattern (v1beta):
      https://generativelanguage.googleapis.com/v1beta/models/<model>:generateContent

    Used for single-shot chart screening: one user turn with an optional
    inline image and a text prompt.
    """

    api_key: str
    model: str = "gemini-3-pro-preview"
    timeout_s: float = 30.0

    def generate_content(
        self,
        *,
        prompt: str,
        image_bytes: bytes | None = None,
        mime_type: str = "image/png",
        system: str | None = None,
        temperature: float = 1.0,
        max_output_tokens: int | None = None,
    ) -> dict[str, object]:
        """Returns the parsed JSON response."""
        _validate_api_key(self.api_key)
        if not self.model:
            raise RuntimeError("Gemini model name is required")

        parts: list[dict[str, object]] = []
        if image_bytes:
            parts.append(
                {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}}
            )
        parts.append({"text": str(prompt)})

        generation_config: dict[str, object] = {"temperature": float(temperature)}
        if max_output_tokens:
            generation_config["maxOutputTokens"] = int(max_output_tokens)
        payload: dict[str, object] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": str(system)}]}

        url = f"{_BASE_URL}/{urllib.parse.quote(self.model)}:generateContent"
        req = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "x-goog-api-key": self.api_key},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=float(self.timeout_s)) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            raise RuntimeError(_format_http_error(exc)) from exc


def extract_text(data: object) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]  # type: ignore[index]
        return "".join(str(p.get("text", "")) for p in parts)
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""


def usage_tokens(data: object) -> tuple[int, int]:
    """(input_tokens, output_tokens) from usageMetadata; zeros when absent."""
    try:
        meta = data.get("usageMetadata") or {}  # type: ignore[union-attr]
    except AttributeError:
        return 0, 0
    prompt = int(meta.get("promptTokenCount") or 0)
    # Thinking tokens are billed as output.
    output = int(meta.get("candidatesTokenCount") or 0) + int(meta.get("thoughtsTokenCount") or 0)
    return prompt, output


def _error_body(exc: HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="ignore").strip()
    except OSError:
        return ""


def _format_http_error(exc: HTTPError) -> str:
    """'Gemini HTTP <code> <status>: <message>' from Google's JSON error envelope when present."""
    body = _error_body(exc)
    try:
        envelope = json.loads(body)
    except ValueError:
        envelope = None
    err = envelope.get("error") if isinstance(envelope, dict) else None
    if isinstance(err, dict):
        return f"Gemini HTTP {err.get('code') or exc.code} {err.get('status') or ''}: {err.get('message') or body}"
    return f"Gemini HTTP {exc.code}: {body or exc.reason}"


_KEY_PROBLEMS = (
    (lambda k: any(ch.isspace() for ch in k), "contains whitespace; remove spaces/newlines"),
    (lambda k: "," in k, "contains ',' (pasted with a trailing comma?)"),
    (lambda k: k[:1] in "\"'" or k[-1:] in "\"'", "is wrapped in quotes; remove them from .env"),
    (lambda k: not k.startswith("AIza"), "does not look like a Google API key (expected 'AIza...')"),
)


def _validate_api_key(api_key: str) -> None:
    """Reject obviously malformed keys before they turn into an opaque HTTP 400."""
    key = str(api_key or "")
    if not key:
        raise RuntimeError("Gemini API key is required")
    for broken, problem in _KEY_PROBLEMS:
        if broken(key):
            raise RuntimeError(f"Gemini API key {problem}")
