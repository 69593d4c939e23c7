"""AI escalation tiers for CSV, statement, and receipt extraction.

All tiers share one shape: build a task prompt (``prompting``), send the
possibly truncated document through :func:`ai_client.complete_json`, accept
the documented alternate top-level keys, and coerce every field through the
same normalizers the deterministic parsers use. AI output is therefore
indistinguishable from deterministic output downstream.

Failure semantics differ by entry point:

- ``parse_csv_with_ai`` / ``parse_statement_text_with_ai`` never raise; a
  missing key or failed call comes back as :class:`AIParseDiagnostics` with
  an empty row tuple.
- ``fix_problematic_rows`` returns the input rows unchanged on any failure.
- ``ai_parse_csv`` and ``extract_receipt_with_ai`` raise
  :class:`~financial_ingest.ai_client.AIUnavailableError` /
  :class:`~financial_ingest.ai_client.AIRequestError` (or ``ValueError`` for a
  malformed payload) so the caller picks the next tier.
"""

from __future__ import annotations

import base64
import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, replace
from typing import Any, NamedTuple

from . import prompting
from .ai_client import AIRequestError, AIResponse, AIUnavailableError, complete_json
from .categories import fallback_category, normalize_category, resolve_taxonomy
from .config import AISettings
from .logging_setup import get_logger
from .models import ExtractedReceipt, ReceiptItem, TransactionRow
from .normalizers import (
    normalize_date,
    normalize_time,
    parse_amount,
    round2,
    to_display_date,
)

# ---- Tunables (private) ------------------------------------------------------

_INVALID_DATE_RATIO: float = 0.5
_MIN_ROWS_FOR_CONTENT_CHECKS: int = 3
_MIN_DESCRIPTION_CHARS: int = 3
_VALID_DESCRIPTION_RATIO: float = 0.3
_MIN_LINES_FOR_EXTRACTION_RATE: int = 10
_MIN_EXTRACTION_RATE: float = 0.2

_CUT_AT_NEWLINE_AFTER: float = 0.8
_RAW_RESPONSE_CHARS: int = 1000
_INVALID_RAW_CHARS: int = 500
_CSV_MAX_TOKENS: int = 16000

_FIX_MAX_ROWS: int = 20
_FIX_RAW_LINE_CHARS: int = 300

_DEFAULT_CONFIDENCE: int = 50

_ROW_KEYS: tuple[str, ...] = ("transactions", "rows", "data")

_logger = get_logger("financial_ingest.ai_fallback")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AIParseDiagnostics:
    used_ai: bool
    reason: str
    raw_response: str | None = None
    tokens_used: int | None = None
    model_used: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class AIRowsResult:
    rows: tuple[TransactionRow, ...]
    diagnostics: AIParseDiagnostics


@dataclass(frozen=True, slots=True)
class AIParseResult:
    """Result of the one-shot parse-and-categorize tier."""

    rows: tuple[TransactionRow, ...]
    confidence: int = _DEFAULT_CONFIDENCE
    suggestions: str | None = None
    raw_response: str | None = None


class FallbackDecision(NamedTuple):
    should_use: bool
    reason: str


# ---------------------------------------------------------------------------
# Trigger rules
# ---------------------------------------------------------------------------


def should_use_ai_fallback(
    rows: Sequence[TransactionRow],
    original_row_count: int,
    invalid_date_count: int,
) -> FallbackDecision:
    """Decide whether deterministic CSV output looks broken enough for AI.

    Checked in order: no rows from a non-empty file; more than half of the
    rows with invalid dates; more than three rows with every amount zero;
    more than three rows where under 30% have a description longer than
    three characters; fewer than 20% of the original lines extracted (only
    for files with more than ten lines).
    """

    n = len(rows)
    if n == 0 and original_row_count > 0:
        return FallbackDecision(True, "Parser returned 0 rows from non-empty file")

    if n > 0:
        ratio = invalid_date_count / n
        if ratio > _INVALID_DATE_RATIO:
            return FallbackDecision(True, f"High invalid date ratio: {ratio * 100:.0f}%")

    if n > _MIN_ROWS_FOR_CONTENT_CHECKS and not any(r.amount != 0 for r in rows):
        return FallbackDecision(True, "All amounts are 0 or invalid")

    described = sum(1 for r in rows if len((r.description or "").strip()) > _MIN_DESCRIPTION_CHARS)
    if n > _MIN_ROWS_FOR_CONTENT_CHECKS and described < n * _VALID_DESCRIPTION_RATIO:
        return FallbackDecision(True, "Most descriptions are empty or too short")

    if original_row_count > _MIN_LINES_FOR_EXTRACTION_RATE and n < original_row_count * _MIN_EXTRACTION_RATE:
        return FallbackDecision(True, f"Low extraction rate: {n}/{original_row_count} rows")

    return FallbackDecision(False, "Parser output looks valid")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def truncate_content(content: str, max_chars: int) -> tuple[str, bool]:
    """Cap ``content`` at ``max_chars``, preferring to cut at a late newline.

    The cut moves back to the last newline only when that newline lies past
    80% of the cap. Returns ``(text, truncated)``.
    """

    if len(content) <= max_chars:
        return content, False
    head = content[:max_chars]
    last_newline = head.rfind("\n")
    if last_newline > max_chars * _CUT_AT_NEWLINE_AFTER:
        head = head[:last_newline]
    return head, True


def _clip_raw(raw: str, limit: int = _RAW_RESPONSE_CHARS) -> str:
    return raw if len(raw) <= limit else raw[:limit] + "..."


def _row_items(data: Mapping[str, Any]) -> list[Any] | None:
    for key in _ROW_KEYS:
        if key in data:
            value = data[key]
            return value if isinstance(value, list) else None
    return []


def _coerce_balance(value: Any) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_amount(value)


def _confidence(value: Any) -> int:
    # json.loads accepts NaN and Infinity; neither converts to an int.
    if isinstance(value, bool) or not isinstance(value, int | float) or not math.isfinite(value) or not value:
        return _DEFAULT_CONFIDENCE
    return int(value)


def _coerce_row(item: Mapping[str, Any]) -> TransactionRow:
    description = item.get("description") or item.get("merchant") or item.get("name") or ""
    raw_time = item.get("time")
    return TransactionRow(
        date=normalize_date(item.get("date") or ""),
        description=str(description).strip(),
        amount=parse_amount(item.get("amount")),
        balance=_coerce_balance(item.get("balance")),
        time=normalize_time(raw_time) if isinstance(raw_time, str) and raw_time.strip() else None,
    )


def _rows_from_response(data: Mapping[str, Any]) -> tuple[TransactionRow, ...] | None:
    items = _row_items(data)
    if items is None:
        return None
    rows = (_coerce_row(it) for it in items if isinstance(it, Mapping))
    # Keep anything that carries at least one useful field.
    return tuple(r for r in rows if r.date or r.description or r.amount != 0)


def _rows_tier(
    *,
    purpose: str,
    system: str,
    user: str,
    settings: AISettings,
    max_tokens: int | None,
) -> AIRowsResult:
    if not settings.is_available:
        return AIRowsResult(
            rows=(),
            diagnostics=AIParseDiagnostics(
                used_ai=False,
                reason="No OpenRouter API key configured",
                error=f"{settings.key_env_var} environment variable is not set",
            ),
        )
    try:
        resp: AIResponse = complete_json(
            system=system, user=user, settings=settings, max_tokens=max_tokens, purpose=purpose
        )
    except (AIUnavailableError, AIRequestError) as e:
        _logger.warning("%s: AI tier failed: %s", purpose, e)
        return AIRowsResult(
            rows=(),
            diagnostics=AIParseDiagnostics(
                used_ai=True,
                reason="AI parsing threw an exception",
                raw_response=getattr(e, "raw", None),
                error=str(e),
            ),
        )

    rows = _rows_from_response(resp.data)
    if rows is None:
        return AIRowsResult(
            rows=(),
            diagnostics=AIParseDiagnostics(
                used_ai=True,
                reason="AI response format invalid",
                raw_response=resp.raw[:_INVALID_RAW_CHARS],
                error="Response did not contain a transactions array",
                model_used=resp.model,
                tokens_used=resp.tokens_used,
            ),
        )
    _logger.info("%s: AI returned %d rows", purpose, len(rows))
    return AIRowsResult(
        rows=rows,
        diagnostics=AIParseDiagnostics(
            used_ai=True,
            reason="AI parsing successful",
            raw_response=_clip_raw(resp.raw),
            tokens_used=resp.tokens_used,
            model_used=resp.model,
        ),
    )


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


def parse_csv_with_ai(
    content: str,
    *,
    file_name: str | None = None,
    settings: AISettings | None = None,
) -> AIRowsResult:
    """Rescue a CSV the deterministic parser could not handle."""

    settings = settings or AISettings.from_env()
    text, truncated = truncate_content(content, settings.max_content_chars)
    return _rows_tier(
        purpose="csv_parse",
        system=prompting.build_csv_parse_system(),
        user=prompting.build_csv_parse_user(text, file_name=file_name, truncated=truncated),
        settings=settings,
        max_tokens=_CSV_MAX_TOKENS,
    )


def parse_statement_text_with_ai(text: str, *, settings: AISettings | None = None) -> AIRowsResult:
    """Extract statement rows from PDF text after all three text tiers failed."""

    settings = settings or AISettings.from_env()
    body, truncated = truncate_content(text, settings.max_content_chars)
    return _rows_tier(
        purpose="statement_parse",
        system=prompting.build_statement_system(),
        user=prompting.build_statement_user(body, truncated=truncated),
        settings=settings,
        max_tokens=_CSV_MAX_TOKENS,
    )


def ai_parse_csv(
    raw_csv: str,
    *,
    user_context: str | None = None,
    categories: Sequence[str] | None = None,
    settings: AISettings | None = None,
) -> AIParseResult:
    """Parse and categorize a CSV in one AI call.

    Rows without both a date and a description are dropped. Categories
    default to ``Other`` and are resolved against the taxonomy.

    Raises
    ------
    AIUnavailableError, AIRequestError
        Propagated from :func:`complete_json`.
    """

    settings = settings or AISettings.from_env()
    taxonomy = resolve_taxonomy(categories)
    body, truncated = truncate_content(raw_csv, settings.max_content_chars)
    if truncated:
        body += "\n... (truncated)"
    resp = complete_json(
        system=prompting.build_csv_categorized_system(taxonomy, user_context=user_context),
        user=f"Parse this CSV:\n\n{body}",
        settings=settings,
        purpose="csv_parse_categorized",
    )

    rows: list[TransactionRow] = []
    for item in resp.data.get("transactions") or []:
        if not isinstance(item, Mapping):
            continue
        row = _coerce_row(item)
        if not row.date or not row.description:
            continue
        category = normalize_category(str(item.get("category") or "Other"), taxonomy)
        rows.append(replace(row, balance=None, category=category or fallback_category(taxonomy)))

    confidence = resp.data.get("confidence")
    suggestions = resp.data.get("suggestions")
    return AIParseResult(
        rows=tuple(rows),
        confidence=_confidence(confidence),
        suggestions=suggestions if isinstance(suggestions, str) else None,
        raw_response=resp.raw,
    )


def fix_problematic_rows(
    rows: Sequence[TransactionRow],
    problematic_indices: Sequence[int],
    raw_lines: Sequence[str],
    *,
    settings: AISettings | None = None,
) -> list[TransactionRow]:
    """Return a copy of ``rows`` with AI fixes applied to selected indices.

    At most 20 indices are sent, each with its raw line truncated to 300
    characters. Only fields present in a fix replace the row's values. Any
    failure (no key, request error, bad payload) returns the rows unchanged.
    The input sequence is never mutated.
    """

    result = list(rows)
    if not problematic_indices:
        return result
    settings = settings or AISettings.from_env()
    if not settings.is_available:
        return result

    payload = [
        {"index": idx, "rawLine": raw_lines[idx][:_FIX_RAW_LINE_CHARS]}
        for idx in problematic_indices[:_FIX_MAX_ROWS]
        if 0 <= idx < len(raw_lines) and raw_lines[idx]
    ]
    if not payload:
        return result

    try:
        resp = complete_json(
            system=prompting.build_row_fix_system(),
            user=prompting.build_row_fix_user(payload),
            settings=settings,
            purpose="row_fix",
        )
    except (AIUnavailableError, AIRequestError) as e:
        _logger.warning("row_fix: AI tier failed: %s", e)
        return result

    fixes = resp.data.get("fixes")
    if not isinstance(fixes, list):
        return result
    applied = 0
    for fix in fixes:
        if not isinstance(fix, Mapping):
            continue
        idx = fix.get("index")
        if not isinstance(idx, int) or isinstance(idx, bool) or not 0 <= idx < len(result):
            continue
        changes: dict[str, Any] = {}
        if fix.get("date"):
            changes["date"] = normalize_date(fix["date"])
        if isinstance(fix.get("time"), str) and fix["time"].strip():
            changes["time"] = normalize_time(fix["time"])
        if fix.get("description"):
            changes["description"] = str(fix["description"]).strip()
        if isinstance(fix.get("amount"), int | float) and not isinstance(fix.get("amount"), bool):
            changes["amount"] = parse_amount(fix["amount"])
        if "balance" in fix:
            changes["balance"] = _coerce_balance(fix["balance"])
        if changes:
            result[idx] = replace(result[idx], **changes)
            applied += 1
    _logger.info("row_fix: applied %d fixes", applied)
    return result


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


def _number(value: Any) -> float:
    if value is None:
        return 0.0
    return parse_amount(value)


def _coerce_receipt_item(item: Mapping[str, Any]) -> ReceiptItem | None:
    description = str(item.get("description") or "").strip()
    if not description:
        return None
    quantity = max(1.0, _number(item.get("quantity")) or 1.0)
    total = _number(item.get("total_price"))
    unit = _number(item.get("price_per_unit"))
    if unit == 0 and total != 0:
        unit = total / quantity
    if total == 0 and unit != 0:
        total = unit * quantity
    return ReceiptItem(
        description=description,
        quantity=round2(quantity),
        price_per_unit=round2(unit),
        total_price=round2(total),
        category=None,
    )


def receipt_from_payload(data: Mapping[str, Any]) -> ExtractedReceipt:
    """Coerce a model's receipt JSON into an :class:`ExtractedReceipt`.

    Item categories are dropped; categorization happens downstream.
    """

    raw_items = data.get("items")
    items = tuple(
        it
        for it in (_coerce_receipt_item(x) for x in (raw_items if isinstance(raw_items, list) else []))
        if it is not None
    )
    iso = normalize_date(data.get("receipt_date") or "") or None
    raw_time = data.get("receipt_time")
    currency = data.get("currency")
    store = data.get("store_name")
    total = data.get("total_amount")
    cuota = data.get("taxes_total_cuota")
    return ExtractedReceipt(
        store_name=store.strip() if isinstance(store, str) and store.strip() else None,
        receipt_date=to_display_date(iso),
        receipt_date_iso=iso,
        receipt_time=normalize_time(raw_time) if isinstance(raw_time, str) else None,
        currency=currency.strip().upper() if isinstance(currency, str) and currency.strip() else None,
        total_amount=round2(parse_amount(total)) if total is not None else None,
        taxes_total_cuota=round2(parse_amount(cuota)) if cuota is not None else None,
        items=items,
    )


def extract_receipt_with_ai(
    text: str,
    *,
    categories: Sequence[str] | None = None,
    file_name: str | None = None,
    settings: AISettings | None = None,
) -> tuple[ExtractedReceipt, str]:
    """Extract a receipt from OCR/PDF text; returns ``(extracted, raw_response)``.

    Raises
    ------
    AIUnavailableError, AIRequestError
        Propagated from :func:`complete_json`.
    """

    settings = settings or AISettings.from_env()
    body, _ = truncate_content(text, settings.max_content_chars)
    resp = complete_json(
        system=prompting.build_receipt_system(categories),
        user=prompting.build_receipt_user(body, file_name=file_name),
        settings=settings,
        temperature=0.2,
        purpose="receipt_extract",
    )
    return receipt_from_payload(resp.data), resp.raw


def extract_receipt_image_with_ai(
    data: bytes,
    mime_type: str,
    *,
    categories: Sequence[str] | None = None,
    file_name: str | None = None,
    settings: AISettings | None = None,
) -> tuple[ExtractedReceipt, str]:
    """Extract a receipt straight from image bytes when OCR produced nothing.

    Requires a vision-capable model. Raises like :func:`extract_receipt_with_ai`.
    """

    settings = settings or AISettings.from_env()
    encoded = base64.b64encode(data).decode("ascii")
    resp = complete_json(
        system=prompting.build_receipt_system(categories),
        user=prompting.build_receipt_image_user(file_name=file_name),
        settings=settings,
        temperature=0.2,
        image_url=f"data:{mime_type};base64,{encoded}",
        purpose="receipt_vision",
    )
    return receipt_from_payload(resp.data), resp.raw


__all__ = [
    "AIParseDiagnostics",
    "AIParseResult",
    "AIRowsResult",
    "FallbackDecision",
    "ai_parse_csv",
    "extract_receipt_image_with_ai",
    "extract_receipt_with_ai",
    "fix_problematic_rows",
    "parse_csv_with_ai",
    "parse_statement_text_with_ai",
    "receipt_from_payload",
    "should_use_ai_fallback",
    "truncate_content",
]
