# ruff: noqa: E402, I001
import json
import sys
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.categorization import parse_category_map
from financial_ingest.categorize import categorize_rows
from financial_ingest.categories import DEFAULT_CATEGORIES, normalize_category, resolve_taxonomy
from financial_ingest.models import TransactionRow
from financial_ingest.preferences import extract_summary, normalize_description_key
from tests.helpers.openai_stub import make_openai_stub, stub_settings, user_json


def _row(description: str, amount: float) -> TransactionRow:
    return TransactionRow(date="2024-01-05", description=description, amount=amount)


def _categories(rows, **kwargs) -> list[str]:
    return [r.category for r in categorize_rows(rows, **kwargs)]


# ---- Rule tiers --------------------------------------------------------------


def test_highest_priority_pattern_wins() -> None:
    rows = [_row("TRANSFERENCIA NOMINA ENERO", 1800.0)]
    assert _categories(rows, use_ai=False) == ["Income"]


def test_merchant_pattern_beats_keyword_scoring() -> None:
    rows = [
        _row("GLOVO SUPERMERCADO ALIMENTACION", -12.0),
        _row("SUPERMERCADO ALIMENTACION", -12.0),
    ]
    # Without the merchant name the keywords score Groceries.
    assert _categories(rows, use_ai=False) == ["Restaurants", "Groceries"]


def test_pattern_sign_gate_blocks_salary_on_expense() -> None:
    rows = [_row("TRANSFERENCIA NOMINA ENERO", -1800.0)]
    assert _categories(rows, use_ai=False) == ["Transfers"]


def test_preference_beats_pattern() -> None:
    prefs = {normalize_description_key("COMPRA MERCADONA 23,50"): "Restaurants"}
    rows = [_row("COMPRA MERCADONA 23,50", -23.5)]

    assert prefs == {"compra mercadona": "Restaurants"}
    assert _categories(rows, preferences_by_key=prefs, use_ai=False) == ["Restaurants"]


def test_preference_outside_taxonomy_is_ignored() -> None:
    prefs = {"compra mercadona": "Pets"}
    rows = [_row("COMPRA MERCADONA", -23.5)]
    assert _categories(rows, preferences_by_key=prefs, use_ai=False) == ["Groceries"]


def test_ordered_rules_then_keywords_then_fallback() -> None:
    rows = [
        _row("PAGO TELECOM XYZ", -30.0),
        _row("ACME LTD", 250.0),
        _row("FRUTERIA PEPE", -4.0),
        _row("XYZQ", -9.0),
    ]
    assert _categories(rows, use_ai=False) == ["Utilities", "Income", "Groceries", "Other"]


def test_custom_taxonomy_fallback_and_stems() -> None:
    taxonomy = ["Supermarket & Groceries", "Salary income", "Misc"]
    rows = [_row("MERCADONA", -10.0), _row("NOMINA", 900.0), _row("XYZQ", -9.0)]

    assert _categories(rows, categories=taxonomy, use_ai=False) == [
        "Supermarket & Groceries",
        "Salary income",
        "Misc",
    ]


def test_rows_are_not_mutated_and_summaries_are_set() -> None:
    rows = [_row("COMPRA MERCADONA VALENCIA", -23.5)]
    out = categorize_rows(rows, use_ai=False)

    assert rows[0].category is None
    assert out[0].summary == "Mercadona"
    assert out[0].amount == rows[0].amount


def test_no_key_skips_ai_tier(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub("{}", calls))

    assert _categories([_row("XYZQ", -9.0)]) == ["Other"]
    assert calls == []


# ---- AI tier -----------------------------------------------------------------


def test_ai_batch_covers_only_unresolved_rows(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []
    reply = json.dumps({"map": [{"index": 0, "category": "Shopping"}, {"index": 1, "category": "Nonsense"}]})
    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub(reply, calls))

    rows = [_row("MERCADONA", -10.0), _row("ACME SHOP", -20.0), _row("FOO BAR", -5.0)]
    out = categorize_rows(rows, settings=stub_settings())

    assert len(calls) == 1
    sent = user_json(calls[0])
    assert [item["index"] for item in sent] == [0, 1]
    assert [item["description"] for item in sent] == ["Acme Shop", "Foo Bar"]
    assert [item["amount"] for item in sent] == [-20.0, -5.0]
    # Row 2's category was rejected, so the rule tier picks it up.
    assert [r.category for r in out] == ["Groceries", "Shopping", "Restaurants"]


def test_ai_failure_falls_back_to_rules(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(_kwargs):
        raise RuntimeError("network down")

    calls: list[dict] = []
    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub(_boom, calls))

    out = categorize_rows([_row("FRUTERIA PEPE", -4.0)], settings=stub_settings())

    assert len(calls) == 1
    assert [r.category for r in out] == ["Groceries"]


def test_use_ai_false_never_calls_model(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub("{}", calls))

    categorize_rows([_row("XYZQ", -9.0)], settings=stub_settings(), use_ai=False)

    assert calls == []


# ---- Category map / taxonomy -------------------------------------------------


def test_parse_category_map_tolerates_aliases_and_drops_invalid() -> None:
    body = {
        "results": [
            {"i": 0, "cat": "grocery"},
            {"index": 1, "category": "Unknown"},
            {"index": 7, "category": "Income"},
            {"index": 0, "category": "Shopping"},
            "junk",
        ]
    }
    assert parse_category_map(body, taxonomy=DEFAULT_CATEGORIES, num_items=3) == {0: "Groceries"}


def test_resolve_taxonomy_dedupes_and_defaults() -> None:
    assert resolve_taxonomy(["  Food ", "food", "Rent"]) == ("Food", "Rent")
    assert resolve_taxonomy([]) == DEFAULT_CATEGORIES
    assert resolve_taxonomy(None) == DEFAULT_CATEGORIES


def test_normalize_category() -> None:
    assert normalize_category("groceries", DEFAULT_CATEGORIES) == "Groceries"
    assert normalize_category("Bank Fees", DEFAULT_CATEGORIES) == "Taxes & Fees"
    assert normalize_category("Pets", DEFAULT_CATEGORIES) is None
    assert normalize_category(None, DEFAULT_CATEGORIES) is None


def test_extract_summary_strips_bank_noise() -> None:
    assert extract_summary("COMPRA MERCADONA VALENCIA") == "Mercadona"
    assert extract_summary("PAGO www.tiendaonline.com") == "Tiendaonline"
    assert extract_summary("RECIBO FARMACIA LOPEZ REF:12345") == "Farmacia Lopez"
