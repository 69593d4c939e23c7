"""Classify extracted text as a bank statement, a retail receipt, or unknown.

Weighted keyword tables (English and Spanish) are scored against
accent-stripped, lower-cased text, then adjusted by two structural signals:
lines that look like receipt items (a label with two or more prices) and
lines that pair a numeric date with an amount (statement movements).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TypeAlias

from .models import DocumentKind
from .normalizers import strip_accents

WeightedPattern: TypeAlias = tuple[re.Pattern[str], int]


def _wp(pattern: str, weight: int) -> WeightedPattern:
    return re.compile(pattern), weight


STATEMENT_PATTERNS: tuple[WeightedPattern, ...] = (
    _wp(r"\baccount\s+statement\b", 4),
    _wp(r"\bopening\s+balance\b", 3),
    _wp(r"\bclosing\s+balance\b", 3),
    _wp(r"\bavailable\s+balance\b", 2),
    _wp(r"\baccount\s+number\b", 2),
    _wp(r"\bvalue\s+date\b|\bbooking\s+date\b", 2),
    _wp(r"\btransactions?\b", 2),
    _wp(r"\bdebit\b|\bcredit\b", 2),
    _wp(r"\biban\b", 4),
    _wp(r"\bbic\b|\bswift\b", 3),
    _wp(r"\bextracto\b|\bextract\b", 2),
    _wp(r"\bsaldo\b", 2),
    _wp(r"\bmovimientos?\b", 2),
    _wp(r"\bbalance\b", 1),
    _wp(r"\bstatement\b", 2),
)

RECEIPT_PATTERNS: tuple[WeightedPattern, ...] = (
    _wp(r"\breceipt\b|\brecibo\b|\bfactura\b", 4),
    _wp(r"\bticket\b", 3),
    _wp(r"\bsubtotal\b", 2),
    _wp(r"\bvat\b|\biva\b", 2),
    _wp(r"\btax\b", 2),
    _wp(r"\bthank\s+you\b|\bthanks\b|\bgracias\b|\bmerci\b", 3),
    _wp(r"\bcashier\b|\bcash\b|\bchange\b", 2),
    _wp(r"\bcard\b|\bvisa\b|\bmastercard\b|\bamex\b", 1),
    _wp(r"\bcaja\b", 2),
    _wp(r"\bnif\b|\bcif\b", 2),
    _wp(r"\bitem\b|\barticulo\b|\bproducto\b", 1),
    _wp(r"\bqty\b|\bcant\b|\bquantity\b", 1),
    _wp(r"\bimporte\b|\bprecio\b", 1),
    _wp(r"\btotal\b", 1),
)

# ---- Tunables (private) ------------------------------------------------------

_MIN_TEXT_CHARS: int = 20
_MIN_KIND_SCORE: int = 4
_STATEMENT_LEAD: int = 2
_RECEIPT_LEAD: int = 1

_PRICE_RE = re.compile(r"\d+[.,]\d{2}")
_NUMERIC_DATE_RE = re.compile(r"\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b")


@dataclass(frozen=True, slots=True)
class DocumentKindResult:
    kind: DocumentKind
    statement_score: int
    receipt_score: int
    line_item_signals: int = 0
    dated_amount_lines: int = 0


def _score(text: str, patterns: tuple[WeightedPattern, ...]) -> int:
    return sum(weight for pattern, weight in patterns if pattern.search(text))


def _lines(text: str) -> list[str]:
    return [ln.strip() for ln in re.split(r"\r?\n", text) if ln.strip()]


def count_line_item_signals(text: str) -> int:
    """Lines with a letter and at least two price-like numbers."""

    return sum(
        1
        for ln in _lines(text)
        if len(_PRICE_RE.findall(ln)) >= 2 and re.search(r"[a-z]", ln, re.IGNORECASE)
    )


def count_dated_amount_lines(text: str) -> int:
    return sum(1 for ln in _lines(text) if _NUMERIC_DATE_RE.search(ln) and _PRICE_RE.search(ln))


def detect_document_kind(text: str | None) -> DocumentKindResult:
    """Score ``text`` and decide between ``statement``, ``receipt`` and ``unknown``.

    ``statement`` needs a score of at least 4 and a two point lead,
    ``receipt`` at least 4 and a one point lead.
    """

    if not text or len(text.strip()) < _MIN_TEXT_CHARS:
        return DocumentKindResult(kind="unknown", statement_score=0, receipt_score=0)

    normalized = strip_accents(text).lower()
    receipt_score = _score(normalized, RECEIPT_PATTERNS)
    statement_score = _score(normalized, STATEMENT_PATTERNS)

    item_signals = count_line_item_signals(text)
    if item_signals >= 3:
        receipt_score += min(3, item_signals // 3)

    dated_lines = count_dated_amount_lines(text)
    if dated_lines >= 6:
        statement_score += 2
    elif dated_lines >= 3:
        statement_score += 1

    kind: DocumentKind = "unknown"
    if statement_score >= _MIN_KIND_SCORE and statement_score >= receipt_score + _STATEMENT_LEAD:
        kind = "statement"
    elif receipt_score >= _MIN_KIND_SCORE and receipt_score >= statement_score + _RECEIPT_LEAD:
        kind = "receipt"

    return DocumentKindResult(
        kind=kind,
        statement_score=statement_score,
        receipt_score=receipt_score,
        line_item_signals=item_signals,
        dated_amount_lines=dated_lines,
    )


__all__ = [
    "RECEIPT_PATTERNS",
    "STATEMENT_PATTERNS",
    "DocumentKindResult",
    "count_dated_amount_lines",
    "count_line_item_signals",
    "detect_document_kind",
]
