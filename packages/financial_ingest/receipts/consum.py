"""Consum (S.Coop.V.) simplified invoices.

Items sit between the first dashed rule and the ``Total factura`` line; the
VAT table has four numeric columns (base, rate, cuota, total) and the cuota
column is summed.
"""

from __future__ import annotations

import re

from ..models import ReceiptItem
from ..normalizers import (
    collapse_spaces,
    normalize_time_hhmmss,
    parse_eu_money,
    round2,
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

_DATE_TIME_RE = re.compile(r"(\d{1,2})\.(\d{1,2})\.(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?")
_TOTAL_FACTURA_RE = re.compile(rf"Total\s+factura\s*:\s*{_AMT}", re.IGNORECASE)
_IMPORTE_ABONAR_RE = re.compile(rf"IMPORTE\s+A\s+ABONAR\s+{_AMT}", re.IGNORECASE)
_VAT_ROW_RE = re.compile(rf"^\s*{_AMT}\s+([0-9]{{1,3}}[.,][0-9]{{2}})\s+{_AMT}\s+{_AMT}\s*$")
_DASHED_RULE_RE = re.compile(r"^-{5,}$")


class ConsumParser(MerchantReceiptParser):
    name = "consum"
    store_name = "CONSUM, S.COOP.V."

    def can_parse(self, text: str) -> bool:
        if not text:
            return False
        upper = text.upper()
        has_entity = "CONSUM, S.COOP" in upper or "CONSUM S.COOP" in upper
        return "CONSUM" in upper and "FACTURA SIMPLIFICADA" in upper and has_entity

    def normalize_ocr(self, text: str) -> str:
        return normalize_ocr_text(text, currency_fixes=False)

    def extract_date_time(self, text: str) -> tuple[str | None, str | None, str | None]:
        m = _DATE_TIME_RE.search(text)
        if m is None:
            return None, None, None
        day, month, year, hour, minute, seconds = m.groups()
        iso = to_iso_date_from_any(f"{day}/{month}/{year}")
        return to_display_date(iso), iso, normalize_time_hhmmss(hour, minute, seconds)

    def extract_currency(self, text: str) -> str | None:
        return "EUR" if "€" in text or "EUR" in text.upper() else None

    def extract_total(self, text: str) -> float | None:
        m = _TOTAL_FACTURA_RE.search(text) or _IMPORTE_ABONAR_RE.search(text)
        return parse_eu_money(m.group(1)) if m else None

    def extract_taxes_cuota(self, text: str) -> float | None:
        if "FACTURA SIMPLIFICADA" not in text.upper():
            return None
        in_vat = False
        found = False
        total = 0.0
        for line in re.split(r"\r?\n", text):
            upper = line.upper()
            if "BASE" in upper and "IVA" in upper and "CUOTA" in upper:
                in_vat = True
                continue
            if not in_vat:
                continue
            m = _VAT_ROW_RE.match(line)
            if m:
                total += parse_eu_money(m.group(3))
                found = True
            elif found and not re.match(r"^[0-9]", line.strip()):
                break
        return round2(total) if found else None

    def extract_items(self, text: str) -> list[ReceiptItem]:
        items: list[ReceiptItem] = []
        in_items = False
        for raw in re.split(r"\r?\n", text):
            line = raw.strip()
            if not line:
                continue
            if not in_items:
                if "---" in line or _DASHED_RULE_RE.match(line):
                    in_items = True
                continue
            lowered = line.lower()
            if (
                lowered.startswith("total factura")
                or lowered.startswith("importe a abonar")
                or "socio-cliente" in lowered
            ):
                break
            if line.startswith("---") or _DASHED_RULE_RE.match(line):
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
            unit, total = reconcile_prices(quantity, tokens, allow_swapped=False)
            items.append(make_item(description, quantity, unit, total))
        return items


__all__ = ["ConsumParser"]
