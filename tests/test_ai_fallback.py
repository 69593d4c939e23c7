# ruff: noqa: E402, I001
import json
import sys
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.ai_client import AIUnavailableError
from financial_ingest.ai_fallback import (
    ai_parse_csv,
    extract_receipt_image_with_ai,
    extract_receipt_with_ai,
    fix_problematic_rows,
    parse_csv_with_ai,
    parse_statement_text_with_ai,
    receipt_from_payload,
    should_use_ai_fallback,
    truncate_content,
)
from financial_ingest.models import TransactionRow
from financial_ingest.prompting import TRUNCATION_NOTE
from tests.helpers.openai_stub import (
    STUB_MODEL,
    STUB_TOKENS,
    make_openai_stub,
    stub_settings,
    user_content,
    user_json,
)


def _row(date: str = "2024-01-05", description: str = "Coffee shop", amount: float = -3.2) -> TransactionRow:
    return TransactionRow(date=date, description=description, amount=amount)


@pytest.fixture
def calls() -> list[dict]:
    return []


def _install(monkeypatch: pytest.MonkeyPatch, reply, calls: list[dict]) -> None:
    monkeypatch.setattr("financial_ingest.ai_client.OpenAI", make_openai_stub(reply, calls))


# ---- Trigger rules -----------------------------------------------------------


@pytest.mark.parametrize(
    ("rows", "original", "invalid", "expected"),
    [
        ([], 5, 0, (True, "Parser returned 0 rows from non-empty file")),
        ([], 0, 0, (False, "Parser output looks valid")),
        ([_row()] * 4, 4, 3, (True, "High invalid date ratio: 75%")),
        ([_row(amount=0)] * 4, 4, 0, (True, "All amounts are 0 or invalid")),
        ([_row(description="ab")] * 4, 4, 0, (True, "Most descriptions are empty or too short")),
        ([_row()] * 2, 20, 0, (True, "Low extraction rate: 2/20 rows")),
        ([_row()] * 4, 5, 1, (False, "Parser output looks valid")),
    ],
)
def test_should_use_ai_fallback(rows, original, invalid, expected) -> None:
    assert tuple(should_use_ai_fallback(rows, original, invalid)) == expected


def test_all_zero_amounts_needs_more_than_three_rows() -> None:
    assert not should_use_ai_fallback([_row(amount=0)] * 3, 3, 0).should_use


def test_truncate_content_prefers_late_newline() -> None:
    assert truncate_content("a" * 10, 20) == ("a" * 10, False)
    assert truncate_content("a" * 13 + "\n" + "b" * 6, 15) == ("a" * 13, True)
    # The only newline sits before 80% of the cap, so the hard cut stands.
    assert truncate_content("a" * 9 + "\n" + "b" * 10, 15) == ("a" * 9 + "\nbbbbb", True)


# ---- Row tiers ---------------------------------------------------------------


def test_parse_csv_with_ai_coerces_rows(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    reply = json.dumps(
        {
            "transactions": [
                {"date": "05/01/2024", "description": "Coffee", "amount": "-3,20", "balance": ""},
                {"date": "", "description": "", "amount": 0},
            ]
        }
    )
    _install(monkeypatch, reply, calls)

    result = parse_csv_with_ai("garbage;csv", file_name="bank.csv", settings=stub_settings())

    assert [(r.date, r.description, r.amount, r.balance) for r in result.rows] == [
        ("2024-01-05", "Coffee", -3.2, None)
    ]
    diag = result.diagnostics
    assert diag.used_ai
    assert diag.reason == "AI parsing successful"
    assert (diag.tokens_used, diag.model_used) == (STUB_TOKENS, STUB_MODEL)
    assert calls[0]["max_tokens"] == 16000
    assert calls[0]["response_format"] == {"type": "json_object"}
    assert 'file "bank.csv"' in user_content(calls[0])


def test_parse_csv_with_ai_marks_truncation(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    _install(monkeypatch, '{"transactions": []}', calls)

    parse_csv_with_ai("x" * 100, settings=stub_settings(max_content_chars=20))

    assert TRUNCATION_NOTE in user_content(calls[0])
    assert "x" * 21 not in user_content(calls[0])


def test_row_tier_without_key(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    _install(monkeypatch, "{}", calls)

    result = parse_csv_with_ai("a,b", settings=stub_settings(api_key=None))

    assert result.rows == ()
    assert result.diagnostics.used_ai is False
    assert result.diagnostics.reason == "No OpenRouter API key configured"
    assert result.diagnostics.error == "OPENAI_API_KEY environment variable is not set"
    assert calls == []


def test_row_tier_invalid_payload(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    _install(monkeypatch, '{"transactions": "nope"}', calls)

    result = parse_statement_text_with_ai("05 ene 2024 ...", settings=stub_settings())

    assert result.rows == ()
    assert result.diagnostics.reason == "AI response format invalid"
    assert result.diagnostics.error == "Response did not contain a transactions array"


def test_row_tier_request_failure(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    def _boom(_kwargs):
        raise RuntimeError("timeout")

    _install(monkeypatch, _boom, calls)

    result = parse_statement_text_with_ai("text", settings=stub_settings())

    assert result.rows == ()
    assert result.diagnostics.used_ai
    assert result.diagnostics.reason == "AI parsing threw an exception"
    assert "timeout" in result.diagnostics.error


def test_statement_tier_accepts_alternate_key(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    reply = json.dumps({"rows": [{"date": "2024-01-06", "merchant": "NOMINA", "amount": 1500, "balance": 2500}]})
    _install(monkeypatch, reply, calls)

    result = parse_statement_text_with_ai("text", settings=stub_settings())

    assert [(r.description, r.amount, r.balance) for r in result.rows] == [("NOMINA", 1500.0, 2500.0)]


# ---- One-shot parse and categorize -------------------------------------------


def test_ai_parse_csv_categorizes_and_drops_incomplete(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    reply = json.dumps(
        {
            "transactions": [
                {"date": "2024-01-05", "description": "Mercadona", "amount": -23.5, "category": "grocery"},
                {"date": "2024-01-06", "description": "Mystery", "amount": -1, "category": "Pets"},
                {"date": "", "description": "no date", "amount": -1},
            ],
            "confidence": 85,
            "suggestions": "Looks fine",
        }
    )
    _install(monkeypatch, reply, calls)

    result = ai_parse_csv("raw", user_context="Spanish bank", settings=stub_settings())

    assert [(r.description, r.category) for r in result.rows] == [("Mercadona", "Groceries"), ("Mystery", "Other")]
    assert result.confidence == 85
    assert result.suggestions == "Looks fine"
    assert result.raw_response == reply
    assert "Spanish bank" in calls[0]["messages"][0]["content"]


def test_ai_parse_csv_defaults_confidence_and_marks_truncation(
    monkeypatch: pytest.MonkeyPatch, calls: list[dict]
) -> None:
    _install(monkeypatch, '{"transactions": []}', calls)

    result = ai_parse_csv("y" * 50, settings=stub_settings(max_content_chars=10))

    assert result.confidence == 50
    assert user_content(calls[0]).endswith("\n... (truncated)")


@pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
def test_ai_parse_csv_non_finite_confidence_uses_default(
    monkeypatch: pytest.MonkeyPatch, calls: list[dict], value: str
) -> None:
    _install(monkeypatch, '{"transactions": [], "confidence": %s}' % value, calls)

    result = ai_parse_csv("raw", settings=stub_settings())

    assert result.confidence == 50


def test_ai_parse_csv_raises_without_key() -> None:
    with pytest.raises(AIUnavailableError):
        ai_parse_csv("raw", settings=stub_settings(api_key=None))


# ---- Row repair --------------------------------------------------------------


def test_fix_problematic_rows_returns_patched_copy(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    _install(monkeypatch, json.dumps({"fixes": [{"index": 1, "date": "2024-01-05", "amount": -2.1}]}), calls)
    rows = [_row(), _row(date="", description="Bakery", amount=0.0)]
    raw_lines = ["2024-01-05;Coffee shop;-3,20", "05/01/2024;Bakery;-2,10"]

    fixed = fix_problematic_rows(rows, [1], raw_lines, settings=stub_settings())

    assert user_json(calls[0]) == [{"index": 1, "rawLine": "05/01/2024;Bakery;-2,10"}]
    assert (fixed[1].date, fixed[1].description, fixed[1].amount) == ("2024-01-05", "Bakery", -2.1)
    assert fixed[0] == rows[0]
    assert rows[1].date == ""


def test_fix_problematic_rows_failure_keeps_rows(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    _install(monkeypatch, "not json at all", calls)
    rows = [_row(date="")]

    assert fix_problematic_rows(rows, [0], ["raw"], settings=stub_settings()) == rows
    assert fix_problematic_rows(rows, [0], ["raw"], settings=stub_settings(api_key=None)) == rows
    assert fix_problematic_rows(rows, [], ["raw"], settings=stub_settings()) == rows
    assert len(calls) == 1


# ---- Receipts ----------------------------------------------------------------


RECEIPT_PAYLOAD = {
    "store_name": " Mercadona ",
    "receipt_date": "2025-11-09",
    "receipt_time": "19:45",
    "currency": "eur",
    "total_amount": "4,00",
    "items": [
        {"description": "LECHE", "quantity": 2, "price_per_unit": 0.95, "category": "Groceries"},
        {"description": "PAN", "total_price": 1.2},
        {"description": ""},
    ],
}


def test_receipt_from_payload_coerces_fields() -> None:
    receipt = receipt_from_payload(RECEIPT_PAYLOAD)

    assert receipt.store_name == "Mercadona"
    assert (receipt.receipt_date, receipt.receipt_date_iso) == ("09-11-2025", "2025-11-09")
    assert receipt.receipt_time == "19:45"
    assert receipt.currency == "EUR"
    assert receipt.total_amount == 4.0
    assert receipt.taxes_total_cuota is None
    assert [(i.description, i.quantity, i.price_per_unit, i.total_price) for i in receipt.items] == [
        ("LECHE", 2.0, 0.95, 1.9),
        ("PAN", 1.0, 1.2, 1.2),
    ]
    assert all(i.category is None for i in receipt.items)


def test_extract_receipt_with_ai(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    reply = json.dumps(RECEIPT_PAYLOAD)
    _install(monkeypatch, reply, calls)

    receipt, raw = extract_receipt_with_ai("MERCADONA ...", file_name="ticket.pdf", settings=stub_settings())

    assert raw == reply
    assert receipt.total_amount == 4.0
    assert calls[0]["temperature"] == 0.2
    assert "Receipt file name: ticket.pdf" in user_content(calls[0])


def test_extract_receipt_image_sends_data_url(monkeypatch: pytest.MonkeyPatch, calls: list[dict]) -> None:
    _install(monkeypatch, json.dumps(RECEIPT_PAYLOAD), calls)

    receipt, _ = extract_receipt_image_with_ai(b"\x00\x01\x02", "image/png", settings=stub_settings())

    content = user_content(calls[0])
    assert content[0]["type"] == "text"
    assert content[1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAEC"}}
    assert len(receipt.items) == 2
