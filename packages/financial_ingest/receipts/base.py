"""Shared plumbing for merchant receipt parsers.

A parser is any object satisfying :class:`ReceiptParser`. Concrete parsers
subclass :class:`MerchantReceiptParser`, which fixes the parse flow
(optional OCR cleanup, then field extraction, then the minimal-fields gate)
and leaves every extraction step to the merchant. Merchant regexes are not
shared across parsers on purpose: each layout is anchored on its own
fixtures.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal, Protocol, TypeAlias, runtime_checkable

from ..logging_setup import get_logger
from ..models import ExtractedReceipt, ReceiptItem
from ..normalizers import parse_eu_money, round2

TextSource: TypeAlias = Literal["pdf", "ocr"]

MONEY_TOKEN_RE = re.compile(r"\d{1,6}[.,]\d{2}")
QUANTITY_PREFIX_RE = re.compile(r"^(\d+(?:[.,]\d+)?)\s+")

# ---- Tunables (private) ------------------------------------------------------

_LINE_TOLERANCE: float = 0.02
_TOTAL_TOLERANCE_PCT: float = 0.05
_TOTAL_TOLERANCE_ABS: float = 0.50

_logger = get_logger("financial_ingest.receipts")


@dataclass(frozen=True, slots=True)
class MerchantParse:
    """Outcome of :meth:`MerchantReceiptParser.try_parse`.

    ``extracted`` is ``None`` whenever ``ok`` is False so callers can never
    act on a receipt that failed the minimal-fields gate.
    """

    extracted: ExtractedReceipt | None
    raw_text: str
    ok: bool


@runtime_checkable
class ReceiptParser(Protocol):
    name: str
    store_name: str

    def can_parse(self, text: str) -> bool: ...

    def parse(self, text: str) -> ExtractedReceipt: ...

    def try_parse(self, text: str, *, source: TextSource = "pdf") -> MerchantParse: ...


def money_tokens(line: str) -> list[float]:
    return [parse_eu_money(m) for m in MONEY_TOKEN_RE.findall(line)]


def reconcile_prices(
    quantity: float,
    tokens: Sequence[float],
    *,
    allow_swapped: bool = True,
) -> tuple[float, float]:
    """Return ``(price_per_unit, total_price)`` from trailing money tokens.

    With two or more tokens the last two are the candidates: whichever
    ordering satisfies ``quantity * unit ~= total`` (0.02 tolerance) wins. A
    single item (``quantity == 1``) takes the last token for both values;
    otherwise the unit price is synthesized by division.
    """

    if len(tokens) >= 2:
        p1, p2 = tokens[-2], tokens[-1]
        if abs(quantity * p1 - p2) <= _LINE_TOLERANCE:
            return p1, p2
        if allow_swapped and abs(quantity * p2 - p1) <= _LINE_TOLERANCE:
            return p2, p1
        if quantity == 1:
            return p2, p2
        total = p2
    else:
        total = tokens[0]
    unit = total / quantity if quantity > 0 else total
    return unit, total


def make_item(description: str, quantity: float, unit: float, total: float) -> ReceiptItem:
    return ReceiptItem(
        description=description,
        quantity=round2(quantity),
        price_per_unit=round2(unit),
        total_price=round2(total),
        category=None,
    )


def total_within_tolerance(items_total: float, total_amount: float) -> bool:
    """True unless the difference exceeds both 5% of the total and 0.50."""

    difference = abs(items_total - total_amount)
    return not (difference > total_amount * _TOTAL_TOLERANCE_PCT and difference > _TOTAL_TOLERANCE_ABS)


class MerchantReceiptParser:
    """Template for a merchant parser.

    Subclasses set ``name``/``store_name`` and implement the ``extract_*``
    hooks. ``normalize_ocr`` defaults to the identity.
    """

    name: str = ""
    store_name: str = ""

    def can_parse(self, text: str) -> bool:
        raise NotImplementedError

    def normalize_ocr(self, text: str) -> str:
        return text

    def extract_store_name(self, text: str) -> str:
        return self.store_name

    def extract_date_time(self, text: str) -> tuple[str | None, str | None, str | None]:
        """Return ``(display_date, iso_date, time_hhmmss)``."""

        raise NotImplementedError

    def extract_currency(self, text: str) -> str | None:
        raise NotImplementedError

    def extract_total(self, text: str) -> float | None:
        raise NotImplementedError

    def extract_taxes_cuota(self, text: str) -> float | None:
        raise NotImplementedError

    def extract_items(self, text: str) -> list[ReceiptItem]:
        raise NotImplementedError

    def store_matches(self, store_name: str | None) -> bool:
        return store_name == self.store_name

    # ---- Flow ---------------------------------------------------------------

    def parse(self, text: str) -> ExtractedReceipt:
        display, iso, time = self.extract_date_time(text)
        return ExtractedReceipt(
            store_name=self.extract_store_name(text),
            receipt_date=display,
            receipt_date_iso=iso,
            receipt_time=time,
            currency=self.extract_currency(text),
            total_amount=self.extract_total(text),
            taxes_total_cuota=self.extract_taxes_cuota(text),
            items=tuple(self.extract_items(text)),
        )

    def has_minimal_fields(self, extracted: ExtractedReceipt) -> bool:
        """Store, date, positive total, at least one item, and agreeing totals."""

        if not self.store_matches(extracted.store_name):
            return False
        if not extracted.receipt_date_iso and not extracted.receipt_date:
            return False
        if extracted.total_amount is None or extracted.total_amount <= 0:
            return False
        if not extracted.items:
            return False
        if not total_within_tolerance(extracted.items_total, extracted.total_amount):
            _logger.info(
                "%s: total validation failed (total=%.2f items=%.2f)",
                self.name,
                extracted.total_amount,
                extracted.items_total,
            )
            return False
        return True

    def try_parse(self, text: str, *, source: TextSource = "pdf") -> MerchantParse:
        """Parse ``text``; OCR cleanup is applied only when ``source == "ocr"``."""

        normalized = self.normalize_ocr(text) if source == "ocr" else text
        extracted = self.parse(normalized)
        ok = self.has_minimal_fields(extracted)
        return MerchantParse(extracted=extracted if ok else None, raw_text=normalized, ok=ok)

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return f"{type(self).__name__}()"


__all__ = [
    "MONEY_TOKEN_RE",
    "QUANTITY_PREFIX_RE",
    "MerchantParse",
    "MerchantReceiptParser",
    "ReceiptParser",
    "TextSource",
    "make_item",
    "money_tokens",
    "reconcile_prices",
    "total_within_tolerance",
]
