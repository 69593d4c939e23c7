"""Quality scoring for parsed statements and extracted receipts.

Everything here is a pure function of already-computed rows, diagnostics or
receipts; nothing is cached and nothing is mutated.
"""

from __future__ import annotations

from collections.abc import Sequence

from .models import (
    ExtractedReceipt,
    ParseDiagnostics,
    ParseMode,
    ParseQualitySummary,
    QualityLevel,
    ReceiptQuality,
    ReceiptValidation,
    TransactionRow,
)
from .normalizers import round2

# ---- Tunables (private) ------------------------------------------------------

# Statement scoring
_MISSING_DATE_WEIGHT: float = 45
_MISSING_DESC_WEIGHT: float = 30
_COVERAGE_TARGET: float = 0.9
_COVERAGE_WEIGHT: float = 60
_CATEGORY_TARGET: float = 0.5
_CATEGORY_WEIGHT: float = 20
_SOFT_CAP: int = 15
_DUPLICATE_CAP: int = 10
_WARNING_WEIGHT: int = 2
_WARNING_CAP: int = 10
_AI_PENALTY: int = 5

_HIGH_SCORE: int = 80
_MEDIUM_SCORE: int = 55
_FORCE_LOW_RATIO: float = 0.4
_FORCE_LOW_COVERAGE: float = 0.5
_CAP_MEDIUM_RATIO: float = 0.2
_CAP_MEDIUM_COVERAGE: float = 0.75

_REASON_MISSING_RATIO: float = 0.1
_REASON_COVERAGE: float = 0.8
_REASON_LOW_CATEGORY: float = 0.4
_REASON_AUTO_CATEGORY: float = 0.6
_MAX_REASONS: int = 4

_UNCATEGORIZED: frozenset[str] = frozenset({"", "other", "uncategorized"})

# Receipt validation
_LINE_TOLERANCE_ABS: float = 0.05
_LINE_TOLERANCE_PCT: float = 0.05
_TOTAL_TOLERANCE_ABS: float = 0.5
_TOTAL_TOLERANCE_PCT: float = 0.05
_MISMATCH_RATE_LIMIT: float = 0.3


# ---------------------------------------------------------------------------
# Statements / CSV
# ---------------------------------------------------------------------------


def _is_categorized(row: TransactionRow) -> bool:
    return (row.category or "").strip().lower() not in _UNCATEGORIZED


def build_statement_parse_quality(
    rows: Sequence[TransactionRow],
    diagnostics: ParseDiagnostics | None = None,
    parse_mode: ParseMode | None = None,
) -> ParseQualitySummary:
    """Score a parsed statement or CSV from its rows and diagnostics.

    Parameters
    ----------
    rows:
        Parsed, optionally categorized rows.
    diagnostics:
        Parse diagnostics; counts default to zero when absent.
    parse_mode:
        Overrides ``diagnostics.parse_mode``; ``"ai"`` costs five points.

    Returns
    -------
    ParseQualitySummary
        ``score`` in ``[0, 100]``, a level with hard downgrades, and at most
        four reasons in a fixed priority order.
    """

    mode: ParseMode = parse_mode or (diagnostics.parse_mode if diagnostics else "auto")
    total = len(rows)
    if total == 0:
        return ParseQualitySummary(level="low", score=0, reasons=("No rows parsed",), parse_mode=mode)

    missing_dates = sum(1 for r in rows if not r.date) / total
    missing_desc = sum(1 for r in rows if not (r.description or "").strip()) / total
    category_coverage = sum(1 for r in rows if _is_categorized(r)) / total

    total_in_file = diagnostics.total_rows_in_file if diagnostics else 0
    kept = diagnostics.rows_after_filtering if diagnostics else total
    coverage = kept / total_in_file if total_in_file > 0 else 1.0
    soft = diagnostics.soft_validated_count if diagnostics else 0
    duplicates = diagnostics.duplicates_detected if diagnostics else 0
    warnings = len(diagnostics.warnings) if diagnostics else 0

    score = 100.0
    score -= missing_dates * _MISSING_DATE_WEIGHT
    score -= missing_desc * _MISSING_DESC_WEIGHT
    if coverage < _COVERAGE_TARGET:
        score -= (_COVERAGE_TARGET - coverage) * _COVERAGE_WEIGHT
    if category_coverage < _CATEGORY_TARGET:
        score -= (_CATEGORY_TARGET - category_coverage) * _CATEGORY_WEIGHT
    score -= min(_SOFT_CAP, soft)
    score -= min(_DUPLICATE_CAP, duplicates)
    score -= min(_WARNING_CAP, _WARNING_WEIGHT * warnings)
    if mode == "ai":
        score -= _AI_PENALTY
    final = round(max(0.0, min(100.0, score)))

    level: QualityLevel = "high" if final >= _HIGH_SCORE else "medium" if final >= _MEDIUM_SCORE else "low"
    if missing_dates > _FORCE_LOW_RATIO or missing_desc > _FORCE_LOW_RATIO or coverage < _FORCE_LOW_COVERAGE:
        level = "low"
    elif level == "high" and (
        missing_dates > _CAP_MEDIUM_RATIO or missing_desc > _CAP_MEDIUM_RATIO or coverage < _CAP_MEDIUM_COVERAGE
    ):
        level = "medium"

    reasons: list[str] = []
    if missing_dates > _REASON_MISSING_RATIO:
        reasons.append("Missing dates in some rows")
    if missing_desc > _REASON_MISSING_RATIO:
        reasons.append("Missing descriptions in some rows")
    if coverage < _REASON_COVERAGE:
        reasons.append("Rows filtered during parsing")
    if soft > 0:
        reasons.append("Rows kept with invalid dates")
    if duplicates > 0:
        reasons.append("Possible duplicates detected")
    if category_coverage < _REASON_LOW_CATEGORY:
        reasons.append("Low auto-categorization coverage")
    if warnings > 0:
        reasons.append("Parser warnings reported")
    if mode == "ai":
        reasons.append("AI parse used")
    if not reasons:
        reasons.append("Complete data")
        if category_coverage >= _REASON_AUTO_CATEGORY:
            reasons.append("Auto-categorized")

    return ParseQualitySummary(level=level, score=final, reasons=tuple(reasons[:_MAX_REASONS]), parse_mode=mode)


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


def validate_receipt(extracted: ExtractedReceipt) -> ReceiptValidation:
    """Cross-check line items against each other and against the total."""

    items = extracted.items
    mismatches = 0
    for it in items:
        if not (it.quantity and it.price_per_unit and it.total_price):
            continue
        expected = it.quantity * it.price_per_unit
        if abs(expected - it.total_price) > max(_LINE_TOLERANCE_ABS, abs(it.total_price) * _LINE_TOLERANCE_PCT):
            mismatches += 1

    items_total = round2(sum(it.total_price for it in items))
    total = extracted.total_amount

    difference: float | None = None
    total_mismatch = False
    if total is not None and items_total > 0:
        difference = round2(abs(items_total - total))
        total_mismatch = difference > max(_TOTAL_TOLERANCE_ABS, abs(total) * _TOTAL_TOLERANCE_PCT)

    missing = total is not None and total > 0 and (not items or items_total <= 0)
    rate = round(mismatches / len(items), 3) if items else 0.0

    return ReceiptValidation(
        item_count=len(items),
        line_item_mismatch_count=mismatches,
        line_item_mismatch_rate=rate,
        total_amount=total,
        line_items_total=items_total,
        total_difference=difference,
        total_mismatch=total_mismatch,
        missing_line_items=missing,
    )


def score_receipt_validation(validation: ReceiptValidation | None) -> int:
    if validation is None:
        return 0
    score = 100
    if validation.missing_line_items:
        score -= 40
    if validation.total_mismatch:
        score -= 30
    score -= min(20, validation.line_item_mismatch_count * 2)
    if validation.line_item_mismatch_rate > _MISMATCH_RATE_LIMIT:
        score -= 10
    if validation.total_amount is None:
        score -= 10
    if validation.item_count == 0:
        score -= 20
    return max(0, score)


def needs_repair(validation: ReceiptValidation | None) -> bool:
    if validation is None:
        return False
    return (
        validation.missing_line_items
        or validation.total_mismatch
        or validation.line_item_mismatch_rate > _MISMATCH_RATE_LIMIT
    )


def build_receipt_quality(
    validation: ReceiptValidation | None,
    *,
    low_text_density: bool = False,
    ocr_used: bool = False,
    warning_count: int = 0,
) -> ReceiptQuality:
    """Summarize a receipt parse as ``high`` / ``medium`` / ``low``.

    ``low`` when line items are missing, totals disagree, or more than 30%
    of lines are internally inconsistent; ``medium`` when any reason or
    warning was recorded.
    """

    reasons: list[str] = []
    if low_text_density:
        reasons.append("Low PDF text density")
    if ocr_used:
        reasons.append("OCR fallback used for PDF")
    if validation is not None:
        if validation.missing_line_items:
            reasons.append("Missing line items detected")
        if validation.total_mismatch:
            reasons.append("Total mismatch vs line items")
        if validation.line_item_mismatch_count > 0:
            reasons.append("Line item totals inconsistent")

    level: QualityLevel = "high"
    if needs_repair(validation):
        level = "low"
    elif reasons or warning_count > 0:
        level = "medium"

    return ReceiptQuality(level=level, score=score_receipt_validation(validation), reasons=tuple(reasons))


__all__ = [
    "build_receipt_quality",
    "build_statement_parse_quality",
    "needs_repair",
    "score_receipt_validation",
    "validate_receipt",
]
