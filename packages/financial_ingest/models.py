"""Data models for ``financial_ingest``.

Canonical records (transactions, receipts) are immutable dataclasses. The
diagnostics accumulators are mutable only while a single parse call fills
them in; callers receive them after the call returns and treat them as
read-only.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, TypeAlias

AmountSign: TypeAlias = Literal["positive", "negative", "any"]
QualityLevel: TypeAlias = Literal["high", "medium", "low"]
ParseMode: TypeAlias = Literal["auto", "ai"]
StrategyTier: TypeAlias = Literal[1, 2, 3, "ai"]
DocumentKind: TypeAlias = Literal["statement", "receipt", "unknown"]

# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionRow:
    """A canonical transaction row.

    ``date`` is either ``""`` or ``YYYY-MM-DD``. ``amount`` is always finite;
    negative values are expenses, positive values income/credits.
    """

    date: str
    description: str
    amount: float
    balance: float | None = None
    time: str | None = None
    category: str | None = None
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ParseDiagnostics:
    """Side-channel details about one CSV or statement parse.

    Built fresh per parse call and never persisted with the rows.
    """

    delimiter: str | None = None
    header_row_index: int | None = None
    columns: list[str] = field(default_factory=list)
    total_rows_in_file: int = 0
    rows_after_preprocess: int = 0
    rows_after_filtering: int = 0
    soft_validated_count: int = 0
    invalid_date_count: int = 0
    duplicates_detected: int = 0
    invalid_date_samples: list[dict[str, str]] = field(default_factory=list)
    filtered_out_samples: list[dict[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    strategy_tier: StrategyTier | None = None
    parse_mode: ParseMode = "auto"
    ai: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class ParseQualitySummary:
    level: QualityLevel
    score: int
    reasons: tuple[str, ...]
    parse_mode: ParseMode | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "score": self.score,
            "reasons": list(self.reasons),
            "parse_mode": self.parse_mode,
        }


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CategoryRule:
    """Keyword rule: any of ``patterns`` (substring match) selects ``category``.

    ``category`` is a hint resolved against the active taxonomy at match time.
    """

    category: str
    patterns: tuple[str, ...]
    amount_sign: AmountSign = "any"
    priority: int = 0


@dataclass(frozen=True, slots=True)
class MerchantPattern:
    """Regex merchant rule run against an accent-stripped, lower-cased description."""

    pattern: re.Pattern[str]
    summary: str
    category: str
    priority: int = 0
    amount_sign: AmountSign = "any"


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReceiptItem:
    description: str
    quantity: float
    price_per_unit: float
    total_price: float
    # Categorization of receipt lines happens downstream.
    category: str | None = None


@dataclass(frozen=True, slots=True)
class ExtractedReceipt:
    """Receipt header fields plus line items.

    ``receipt_date`` is the display form ``DD-MM-YYYY``; ``receipt_date_iso``
    is ``YYYY-MM-DD``. ``taxes_total_cuota`` is the summed VAT "cuota" column.
    """

    store_name: str | None
    receipt_date: str | None
    receipt_date_iso: str | None
    receipt_time: str | None
    currency: str | None
    total_amount: float | None
    taxes_total_cuota: float | None
    items: tuple[ReceiptItem, ...] = ()

    @property
    def items_total(self) -> float:
        return round(sum(i.total_price for i in self.items), 2)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["items"] = [asdict(i) for i in self.items]
        return out


@dataclass(frozen=True, slots=True)
class ReceiptParseWarning:
    code: str
    message: str


@dataclass(frozen=True, slots=True)
class ReceiptValidation:
    item_count: int
    line_item_mismatch_count: int
    line_item_mismatch_rate: float
    total_amount: float | None
    line_items_total: float
    total_difference: float | None
    total_mismatch: bool
    missing_line_items: bool


@dataclass(frozen=True, slots=True)
class ReceiptQuality:
    level: QualityLevel
    score: int
    reasons: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ReceiptParseMeta:
    input_kind: Literal["pdf", "image", "text", "unknown"]
    merchant_detected: str | None = None
    extraction_method: str | None = None
    ocr_used: bool = False
    low_text_density: bool = False
    repair_attempted: bool = False
    repair_used: bool = False
    repair_source: Literal["ai", "ocr", "pdf_text"] | None = None
    quality: ReceiptQuality | None = None


@dataclass(frozen=True, slots=True)
class ReceiptParseResult:
    extracted: ExtractedReceipt | None
    raw_text: str
    warnings: tuple[ReceiptParseWarning, ...]
    meta: ReceiptParseMeta
    validation: ReceiptValidation | None = None


# ---------------------------------------------------------------------------
# Entrypoint result
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Result of :func:`financial_ingest.ingest.ingest_document`.

    ``rows`` is populated for CSV and statement documents, ``extracted`` for
    receipts.
    """

    kind: Literal["csv", "statement", "receipt"]
    rows: tuple[TransactionRow, ...] = ()
    extracted: ExtractedReceipt | None = None
    diagnostics: ParseDiagnostics | None = None
    warnings: tuple[str, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)
    quality: ParseQualitySummary | ReceiptQuality | None = None

    def to_dict(self) -> dict[str, Any]:
        quality: Any = None
        if isinstance(self.quality, ParseQualitySummary):
            quality = self.quality.to_dict()
        elif self.quality is not None:
            quality = asdict(self.quality)
        return {
            "kind": self.kind,
            "rows": [r.to_dict() for r in self.rows],
            "extracted": self.extracted.to_dict() if self.extracted else None,
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
            "warnings": list(self.warnings),
            "meta": dict(self.meta),
            "quality": quality,
        }


__all__ = [
    "AmountSign",
    "CategoryRule",
    "DocumentKind",
    "ExtractedReceipt",
    "IngestResult",
    "MerchantPattern",
    "ParseDiagnostics",
    "ParseMode",
    "ParseQualitySummary",
    "QualityLevel",
    "ReceiptItem",
    "ReceiptParseMeta",
    "ReceiptParseResult",
    "ReceiptParseWarning",
    "ReceiptQuality",
    "ReceiptValidation",
    "StrategyTier",
    "TransactionRow",
]
