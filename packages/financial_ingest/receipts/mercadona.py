"""Mercadona "factura simplificada" receipts (PDF text layer and OCR).

Layout anchors: a ``Descripción  P. Unit  Importe`` header opens the item
list, ``TOTAL (€)`` closes it, and an ``IVA BASE IMPONIBLE CUOTA`` table
follows with a ``TOTAL <base> <cuota>`` line.
"""

from __future__ import annotations

import re

from ..models import ReceiptItem
from ..normalizers import (
    collapse_spaces,
    normalize_time_hhmmss,
    parse_eu_money,
    to_display_date,
    to_iso_date_from_any,
)
from .base import (
    MONEY_TOKEN_RE,
    QUANTITY_PREFIX_RE,
    MerchantReceiptParser,
    make_item,
    money_tokens,
    reconcile_prices,
)
from .ocr_normalize import normalize_ocr_text

_AMT = r"([0-9]{1,6}[.,][0-9]{2})"

_DATE_TIME_RE = re.compile(
    r"(\d{1,2})\s*[/\-]\s*(\d{1,2})\s*[/\-]\s*(\d{2,4})\s+(\d{1,2})\s*:\s*(\d{2})(?:\s*:\s*(\d{2}))?"
)
_IMPORTE_RE = re.compile(rf"Importe\s*:\s*{_AMT}", re.IGNORECASE)
_TOTAL_EURO_RE = re.compile(rf"TOTAL\s*\([€E]\)\s*{_AMT}", re.IGNORECASE)
_VAT_TOTAL_RE = re.compile(rf"^TOTAL\s+{_AMT}\s+{_AMT}", re.IGNORECASE)
_ITEMS_HEADER_RE = re.compile(r"^Descripci[oó]n", re.IGNORECASE)
_ITEMS_END_RE = re.compile(r"^TOTAL\s*(\([€E]\)|$)", re.IGNORECASE)
_UNIT_HEADER_RE = re.compile(r"P\.?\s*Unit", re.IGNORECASE)
_IMPORTE_HEADER_RE = re.compile(r"^Importe$", re.IGNORECASE)


def _has_vat_header(upper: str) -> bool:
    return "BASE IMPONIBLE" in upper or "BASEIMPONIBLE" in upper


class MercadonaParser(MerchantReceiptParser):
    name = "mercadona"
    store_name = "MERCADONA, S.A"

    def can_parse(self, text: str) -> bool:
        if not text:
            return False
        upper = text.upper()
        has_vat = "IVA BASE IMPONIBLE" in upper or "IVA BASEIMPONIBLE" in upper
        return "MERCADONA" in upper and ("FACTURA SIMPLIFICADA" in upper or has_vat)

    def normalize_ocr(self, text: str) -> str:
        return normalize_ocr_text(text, currency_fixes=True)

    def extract_date_time(self, text: str) -> tuple[str | None, str | None, str | None]:
        m = _DATE_TIME_RE.search(text)
        if m is None:
            return None, None, None
        day, month, year, hour, minute, seconds = m.groups()
        iso = to_iso_date_from_any(f"{day}/{month}/{year}")
        return to_display_date(iso), iso, normalize_time_hhmmss(hour, minute, seconds)

    def extract_currency(self, text: str) -> str | None:
        upper = text.upper()
        if "€" in text or "TOTAL (€)" in upper or "TOTAL (E)" in upper or "EUR" in upper:
            return "EUR"
        return None

    def extract_total(self, text: str) -> float | None:
        m = _IMPORTE_RE.search(text) or _TOTAL_EURO_RE.search(text)
        return parse_eu_money(m.group(1)) if m else None

    def extract_taxes_cuota(self, text: str) -> float | None:
        upper = text.upper()
        if "IVA" not in upper or not _has_vat_header(upper):
            return None
        in_vat = False
        for line in re.split(r"\r?\n", text):
            line_upper = line.upper()
            if "IVA" in line_upper and _has_vat_header(line_upper):
                in_vat = True
                continue
            if not in_vat:
                continue
            if line_upper.startswith("TOTAL"):
                m = _VAT_TOTAL_RE.match(line)
                if m:
                    return parse_eu_money(m.group(2))
            if "IMPORTE:" in line_upper or "FORMA DE PAGO" in line_upper:
                break
        return None

    def extract_items(self, text: str) -> list[ReceiptItem]:
        items: list[ReceiptItem] = []
        in_items = False
        for raw in re.split(r"\r?\n", text):
            line = raw.strip()
            if not line:
                continue
            if _ITEMS_HEADER_RE.match(re.sub(r"\s+", "", line)):
                in_items = True
                continue
            if not in_items:
                continue
            if _ITEMS_END_RE.match(line):
                break
            if _UNIT_HEADER_RE.search(line) or _IMPORTE_HEADER_RE.match(line):
                continue

            tokens = money_tokens(line)
            qty_match = QUANTITY_PREFIX_RE.match(line)
            if not tokens or qty_match is None:
                continue
            quantity = parse_eu_money(qty_match.group(1)) or 1.0
            after_qty = line[qty_match.end() :]
            first_money = MONEY_TOKEN_RE.search(after_qty)
            if first_money is None:
                continue
            description = collapse_spaces(after_qty[: first_money.start()])
            if not description:
                continue
            unit, total = reconcile_prices(quantity, tokens, allow_swapped=True)
            items.append(make_item(description, quantity, unit, total))
        return items


__all__ = ["MercadonaParser"]
