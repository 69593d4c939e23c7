"""Pytest configuration for test isolation.

The pipeline reads its AI credentials from the environment
(``OPENROUTER_API_KEY`` / ``OPENAI_API_KEY`` and ``FI_AI_*``). A developer
shell or a local ``.env`` may export real keys, which would let AI tiers run
against the network and make results nondeterministic.

To keep tests hermetic, every test starts with those variables removed; tests
that exercise AI tiers pass explicit settings and stub the client.
"""

from __future__ import annotations

import pytest

_AI_ENV_VARS: tuple[str, ...] = (
    "OPENROUTER_API_KEY",
    "OPENAI_API_KEY",
    "FI_AI_BASE_URL",
    "FI_AI_MODEL",
    "FI_AI_MAX_CONTENT_CHARS",
    "FI_AI_TIMEOUT_SEC",
    "FI_APP_URL",
    "FI_APP_NAME",
)


@pytest.fixture(autouse=True)
def _isolate_ai_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove AI credentials and tuning variables for the duration of a test."""

    for name in _AI_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
