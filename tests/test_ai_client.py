# ruff: noqa: E402, I001
import sys
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.ai_client import AIRequestError, AIUnavailableError, complete_json, decode_json_object
from financial_ingest.config import OPENROUTER_BASE_URL, AISettings
from tests.helpers.openai_stub import STUB_TOKENS, make_openai_stub, stub_settings


# ---- JSON decoding -----------------------------------------------------------


@pytest.mark.parametrize(
    "text",
    [
        '{"a": 1}',
        '```json\n{"a": 1}\n```',
        'Here you go: {"a": 1} hope it helps',
        '{"a": 1,}',
    ],
)
def test_decode_json_object_tolerates_wrapping(text: str) -> None:
    assert decode_json_object(text) == {"a": 1}


@pytest.mark.parametrize("text", ["[1, 2]", "no json", ""])
def test_decode_json_object_rejects_non_objects(text: str) -> None:
    with pytest.raises(ValueError):
        decode_json_object(text)


# ---- complete_json -----------------------------------------------------------


def test_complete_json_requires_key() -> None:
    with pytest.raises(AIUnavailableError):
        complete_json(system="s", user="u", settings=stub_settings(api_key=None))


def test_complete_json_sends_one_json_request(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []
    clients: list[dict] = []
    monkeypatch.setattr(
        "financial_ingest.ai_client.OpenAI", make_openai_stub('{"ok": true}', calls, clients_out=clients)
    )
    settings = stub_settings(base_url=OPENROUTER_BASE_URL, app_url="https://example.test", app_name="ingest")

    resp = complete_json(system="sys", user="usr", settings=settings, max_tokens=100)

    assert resp.data == {"ok": True}
    assert resp.tokens_used == STUB_TOKENS
    assert len(calls) == 1
    assert calls[0]["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "usr"},
    ]
    assert calls[0]["max_tokens"] == 100
    assert clients[0]["base_url"] == OPENROUTER_BASE_URL
    assert clients[0]["default_headers"] == {"HTTP-Referer": "https://example.test", "X-Title": "ingest"}


@pytest.mark.parametrize("reply", ["", "   ", "not json"])
def test_complete_json_bad_content_raises(monkeypatch: pytest.MonkeyPatch, reply: str) -> None:
    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub(reply, []))

    with pytest.raises(AIRequestError):
        complete_json(system="s", user="u", settings=stub_settings())


def test_complete_json_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(_kwargs):
        raise ConnectionError("refused")

    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub(_boom, []))

    with pytest.raises(AIRequestError, match="refused"):
        complete_json(system="s", user="u", settings=stub_settings())


# ---- Settings ----------------------------------------------------------------


def test_settings_without_keys_are_unavailable() -> None:
    settings = AISettings.from_env()

    assert not settings.is_available
    assert settings.key_env_var == "OPENROUTER_API_KEY"
    assert settings.extra_headers == {}


def test_openrouter_key_wins_and_sets_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "or-key")
    monkeypatch.setenv("OPENAI_API_KEY", "oa-key")

    settings = AISettings.from_env()

    assert settings.api_key == "or-key"
    assert settings.key_env_var == "OPENROUTER_API_KEY"
    assert settings.base_url == OPENROUTER_BASE_URL


def test_openai_key_and_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "oa-key")
    monkeypatch.setenv("FI_AI_MODEL", "custom-model")
    monkeypatch.setenv("FI_AI_MAX_CONTENT_CHARS", "1000")

    settings = AISettings.from_env()

    assert settings.key_env_var == "OPENAI_API_KEY"
    assert settings.base_url is None
    assert settings.model == "custom-model"
    assert settings.max_content_chars == 1000


def test_invalid_numeric_setting_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FI_AI_MAX_CONTENT_CHARS", "lots")

    with pytest.raises(ValueError, match="FI_AI_MAX_CONTENT_CHARS"):
        AISettings.from_env()
