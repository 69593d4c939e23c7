"""Thin wrapper over an OpenAI-compatible chat completions endpoint.

Every AI tier in the package goes through :func:`complete_json`: one request,
no retries, a JSON-object response decoded leniently. Failures surface as
:class:`AIUnavailableError` (no key configured) or :class:`AIRequestError`
(transport, empty content, unparseable JSON). Callers decide how to degrade.

No client is created at import time; one is built per request.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from openai import OpenAI

from .config import AISettings
from .logging_setup import get_logger

# ---- Tunables (private) ------------------------------------------------------

_LOG_RAW_CHARS: int = 500
_DEFAULT_TEMPERATURE: float = 0.1

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

_logger = get_logger("financial_ingest.ai_client")


class AIUnavailableError(RuntimeError):
    """No API key is configured for the AI tier."""


class AIRequestError(RuntimeError):
    """The AI call failed or returned something that is not a JSON object.

    ``raw`` carries the (possibly truncated) model output when there was one.
    """

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


@dataclass(frozen=True, slots=True)
class AIResponse:
    data: Mapping[str, Any]
    raw: str
    model: str | None = None
    tokens_used: int | None = None


def _create_client(settings: AISettings) -> OpenAI:
    kwargs: dict[str, Any] = {"api_key": settings.api_key, "timeout": settings.timeout_sec}
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    if settings.extra_headers:
        kwargs["default_headers"] = settings.extra_headers
    return OpenAI(**kwargs)


def decode_json_object(text: str) -> dict[str, Any]:
    """Decode a JSON object from model output, tolerating common damage.

    Tries, in order: the text as-is, the text without Markdown code fences,
    the slice from the first ``{`` to the last ``}``, and that slice with
    trailing commas removed. Raises ``ValueError`` when nothing decodes to an
    object.
    """

    stripped = text.strip()
    candidates = [stripped, _FENCE_RE.sub("", stripped).strip()]
    first, last = stripped.find("{"), stripped.rfind("}")
    if first != -1 and last > first:
        sliced = stripped[first : last + 1]
        candidates += [sliced, _TRAILING_COMMA_RE.sub(r"\1", sliced)]

    for candidate in candidates:
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(decoded, dict):
            return decoded
    raise ValueError("Model output was not a JSON object")


def _message_text(resp: Any) -> str | None:
    try:
        content = resp.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


def complete_json(
    *,
    system: str,
    user: str,
    settings: AISettings | None = None,
    temperature: float = _DEFAULT_TEMPERATURE,
    max_tokens: int | None = None,
    image_url: str | None = None,
    purpose: str = "completion",
) -> AIResponse:
    """Send one system+user exchange and return the decoded JSON object.

    Parameters
    ----------
    system, user:
        Message contents.
    settings:
        Connection settings; resolved from the environment when omitted.
    temperature, max_tokens:
        Passed through to ``chat.completions.create``.
    image_url:
        Optional image (usually a ``data:`` URL) attached to the user
        message for vision-capable models.
    purpose:
        Short label used in log lines (``csv_parse``, ``categorize`` ...).

    Raises
    ------
    AIUnavailableError
        When no API key is configured.
    AIRequestError
        For SDK/HTTP failures, empty content, or output that does not decode
        to a JSON object.
    """

    settings = settings or AISettings.from_env()
    if not settings.is_available:
        raise AIUnavailableError(f"{settings.key_env_var} environment variable is not set")

    user_content: str | list[dict[str, Any]] = user
    if image_url:
        user_content = [
            {"type": "text", "text": user},
            {"type": "image_url", "image_url": {"url": image_url}},
        ]

    params: dict[str, Any] = {
        "model": settings.model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user_content},
        ],
        "response_format": {"type": "json_object"},
        "temperature": temperature,
    }
    if max_tokens is not None:
        params["max_tokens"] = max_tokens

    _logger.info("ai:%s request model=%s chars=%d", purpose, settings.model, len(user))
    t0 = time.perf_counter()
    try:
        client = _create_client(settings)
        resp = client.chat.completions.create(**params)
    except Exception as e:  # noqa: BLE001
        _logger.warning("ai:%s failed error=%s", purpose, e.__class__.__name__)
        raise AIRequestError(f"AI request failed: {e}") from e

    text = _message_text(resp)
    if not text or not text.strip():
        raise AIRequestError("AI returned empty response")

    try:
        data = decode_json_object(text)
    except ValueError as e:
        _logger.warning("ai:%s unparseable response raw=%r", purpose, text[:_LOG_RAW_CHARS])
        raise AIRequestError(str(e), raw=text[:_LOG_RAW_CHARS]) from e

    usage = getattr(resp, "usage", None)
    tokens = getattr(usage, "total_tokens", None)
    dt_ms = (time.perf_counter() - t0) * 1000.0
    _logger.info("ai:%s done latency_ms=%.2f tokens=%s", purpose, dt_ms, tokens)
    return AIResponse(
        data=data,
        raw=text,
        model=getattr(resp, "model", None) or settings.model,
        tokens_used=tokens if isinstance(tokens, int) else None,
    )


__all__ = [
    "AIRequestError",
    "AIResponse",
    "AIUnavailableError",
    "complete_json",
    "decode_json_object",
]
