"""Environment-driven settings for the AI fallback tier.

Settings are resolved lazily via :meth:`AISettings.from_env` so importing the
package has no side effects. The CLI loads ``.env`` (python-dotenv) before any
settings are read.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# ---- Tunables (private) ------------------------------------------------------

_DEFAULT_OPENROUTER_MODEL: str = "google/gemini-2.0-flash-001"
_DEFAULT_OPENAI_MODEL: str = "gpt-4o-mini"
_DEFAULT_MAX_CONTENT_CHARS: int = 50_000
_DEFAULT_TIMEOUT_SEC: float = 60.0


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class AISettings:
    """Connection settings for an OpenAI-compatible chat completions API.

    ``OPENROUTER_API_KEY`` takes precedence over ``OPENAI_API_KEY``; when it is
    used, the base URL defaults to OpenRouter.
    """

    api_key: str | None
    base_url: str | None
    model: str
    key_env_var: str
    max_content_chars: int = _DEFAULT_MAX_CONTENT_CHARS
    timeout_sec: float = _DEFAULT_TIMEOUT_SEC
    app_url: str | None = None
    app_name: str | None = None

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    @property
    def extra_headers(self) -> dict[str, str]:
        """OpenRouter attribution headers (only those that are configured)."""

        headers: dict[str, str] = {}
        if self.app_url:
            headers["HTTP-Referer"] = self.app_url
        if self.app_name:
            headers["X-Title"] = self.app_name
        return headers

    @classmethod
    def from_env(cls) -> AISettings:
        openrouter_key = (os.getenv("OPENROUTER_API_KEY") or "").strip()
        openai_key = (os.getenv("OPENAI_API_KEY") or "").strip()
        base_url = (os.getenv("FI_AI_BASE_URL") or "").strip() or None

        if openrouter_key:
            api_key: str | None = openrouter_key
            key_env_var = "OPENROUTER_API_KEY"
            base_url = base_url or OPENROUTER_BASE_URL
            default_model = _DEFAULT_OPENROUTER_MODEL
        elif openai_key:
            api_key = openai_key
            key_env_var = "OPENAI_API_KEY"
            default_model = _DEFAULT_OPENAI_MODEL
        else:
            api_key = None
            key_env_var = "OPENROUTER_API_KEY"
            default_model = _DEFAULT_OPENROUTER_MODEL

        return cls(
            api_key=api_key,
            base_url=base_url,
            model=(os.getenv("FI_AI_MODEL") or "").strip() or default_model,
            key_env_var=key_env_var,
            max_content_chars=_env_int("FI_AI_MAX_CONTENT_CHARS", _DEFAULT_MAX_CONTENT_CHARS),
            timeout_sec=_env_float("FI_AI_TIMEOUT_SEC", _DEFAULT_TIMEOUT_SEC),
            app_url=(os.getenv("FI_APP_URL") or "").strip() or None,
            app_name=(os.getenv("FI_APP_NAME") or "").strip() or None,
        )


__all__ = ["OPENROUTER_BASE_URL", "AISettings"]
