"""DIA Retail receipts, both the Spanish invoice and the English ticket.

The Spanish layout ("Fecha factura simplificada", "Desglose de IVA") prints
per-line base and cuota columns; the line total is their sum. The English
layout ("Products sold by DIA") prints ``€`` before each amount and marks
discounts as ``-€``.
"""

from __future__ import annotations

import re
from typing import Literal, TypeAlias

from ..models import ReceiptItem
from ..normalizers import (
    collapse_spaces,
    normalize_time_hhmmss,
    parse_eu_money,
    round2,
    to_display_date,
    to_iso_date_from_any,
)
from .base import MerchantReceiptParser, make_item
from .ocr_normalize import normalize_ocr_text

_AMT = r"([0-9]{1,6}[.,][0-9]{2})"

_ES_DATE_RE = re.compile(r"Fecha\s+factura\s+simplificada\s*:\s*(\d{1,2})/(\d{1,2})/(\d{4})", re.IGNORECASE)
_TICKET_TIME_RE = re.compile(
    r"ticket\s+[úu]nico\s*:\s*\S+-(\d{2})(\d{2})(\d{2})\s*$", re.IGNORECASE | re.MULTILINE
)
_HEADER_DATE_TIME_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{2})(?::(\d{2}))?")
_FECHA_RE = re.compile(r"FECHA\s*:\s*(\d{1,2})/(\d{1,2})/(\d{4})", re.IGNORECASE)
_HORA_RE = re.compile(r"HORA\s*:\s*(\d{1,2}):(\d{2})(?::(\d{2}))?", re.IGNORECASE)

_TOTAL_RES = (
    re.compile(rf"Total\s+base\s+imponible\s+m[áa]s\s+IVA\s+{_AMT}\s*€", re.IGNORECASE),
    re.compile(rf"Total\s+to\s+pay[─\-\s]*€?\s*{_AMT}", re.IGNORECASE),
    re.compile(rf"Total\s+sale\s+Day[─\-\s]*€?\s*{_AMT}", re.IGNORECASE),
    re.compile(rf"IMPORTE\s*:\s*{_AMT}", re.IGNORECASE),
)
_CUOTA_TOTAL_RE = re.compile(rf"Total\s+cuotas\s+de\s+IVA\s+{_AMT}\s*€", re.IGNORECASE)
_VAT_ROW_RE = re.compile(rf"(\d+)%\s+{_AMT}\s*€?\s+{_AMT}\s*€")
_EURO_PREFIXED_RE = re.compile(rf"€{_AMT}")

_ES_EURO_RE = re.compile(r"([0-9]{1,6}[.,][0-9]{2,5})\s*€")
_ES_QTY_RE = re.compile(r"(\d+)\s*unid", re.IGNORECASE)
_ES_CODE_RE = re.compile(r"^(\d{5,6})\s+")
_ES_DISCOUNT_SECTION_RE = re.compile(r"Descuentos aplicados a PVP[\s\S]*?(?=Sociedad inscrita|$)", re.IGNORECASE)
_ES_DISCOUNT_LINE_RE = re.compile(rf"^([A-Z][A-Z\s/]+?)\s+{_AMT}\s*€", re.IGNORECASE)
_ES_SECTION_END = ("Desglose de IVA", "Total base imponible", "Descuentos aplicados", "Sociedad inscrita")

_EN_DISCOUNT_RE = re.compile(rf"^(.+?)\s+-€{_AMT}(?:\s+[A-C])?$", re.IGNORECASE)
_EN_QTY_RE = re.compile(r"(\d+)\s*ud", re.IGNORECASE)
_EN_SECTION_END = ("total sale day", "vat breakdown", "payment method")

_LINE_TOLERANCE = 0.02

_Layout: TypeAlias = Literal["spanish", "english"]


def _layout(text: str) -> _Layout:
    upper = text.upper()
    markers = ("FECHA FACTURA SIMPLIFICADA", "DESGLOSE DE IVA", "TOTAL BASE IMPONIBLE")
    return "spanish" if any(m in upper for m in markers) else "english"


def _date_parts(day: str, month: str, year: str) -> tuple[str | None, str | None]:
    iso = to_iso_date_from_any(f"{day}/{month}/{year}")
    return to_display_date(iso), iso


def _discount_item(description: str, amount: float) -> ReceiptItem:
    return make_item(description, 1, -amount, -amount)


class DiaParser(MerchantReceiptParser):
    name = "dia"
    store_name = "DIA RETAIL ESPAÑA, S.A.U."

    def can_parse(self, text: str) -> bool:
        if not text:
            return False
        upper = text.upper()
        if "DIA RETAIL" not in upper:
            return False
        english = ("SIMPLIFIED INVOICE", "VAT BREAKDOWN", "PRODUCTS SOLD BY DIA")
        spanish = ("FACTURA SIMPLIFICADA", "DESGLOSE DE IVA", "FECHA FACTURA")
        return any(m in upper for m in english + spanish)

    def normalize_ocr(self, text: str) -> str:
        return normalize_ocr_text(text, currency_fixes=False)

    def extract_store_name(self, text: str) -> str:
        return self.store_name if "DIA RETAIL" in text.upper() else "DIA"

    def store_matches(self, store_name: str | None) -> bool:
        return bool(store_name) and "DIA" in store_name.upper()

    def extract_date_time(self, text: str) -> tuple[str | None, str | None, str | None]:
        m = _ES_DATE_RE.search(text)
        if m:
            display, iso = _date_parts(*m.groups())
            ticket = _TICKET_TIME_RE.search(text)
            time = ":".join(ticket.groups()) if ticket else None
            return display, iso, time

        m = _HEADER_DATE_TIME_RE.search(text)
        if m:
            day, month, year, hour, minute, seconds = m.groups()
            display, iso = _date_parts(day, month, year)
            return display, iso, normalize_time_hhmmss(hour, minute, seconds)

        m = _FECHA_RE.search(text)
        if m:
            display, iso = _date_parts(*m.groups())
            hora = _HORA_RE.search(text)
            time = normalize_time_hhmmss(*hora.groups()) if hora else None
            return display, iso, time
        return None, None, None

    def extract_currency(self, text: str) -> str | None:
        return "EUR" if "€" in text or "EUR" in text.upper() else None

    def extract_total(self, text: str) -> float | None:
        for rx in _TOTAL_RES:
            m = rx.search(text)
            if m:
                return parse_eu_money(m.group(1))
        return None

    def extract_taxes_cuota(self, text: str) -> float | None:
        m = _CUOTA_TOTAL_RE.search(text)
        if m:
            return parse_eu_money(m.group(1))
        if "IVA" not in text.upper() and "VAT BREAKDOWN" not in text.upper():
            return None

        in_vat = False
        found = False
        total = 0.0
        for line in re.split(r"\r?\n", text):
            upper = line.upper()
            if "VAT BREAKDOWN" in upper or "DESGLOSE DE IVA" in upper or ("% IVA" in upper and "CUOTA" in upper):
                in_vat = True
                continue
            if not in_vat:
                continue
            row = _VAT_ROW_RE.search(line)
            if row:
                total += parse_eu_money(row.group(3))
                found = True
                continue
            prefixed = _EURO_PREFIXED_RE.findall(line)
            if len(prefixed) >= 2:
                total += parse_eu_money(prefixed[-1])
                found = True
                continue
            if "VAT INCLUDED" in upper or "TOTAL BASE IMPONIBLE" in upper or "DESCUENTOS APLICADOS" in upper:
                break
        return round2(total) if found else None

    def extract_items(self, text: str) -> list[ReceiptItem]:
        if _layout(text) == "spanish":
            return self._items_spanish(text)
        return self._items_english(text)

    # ---- Layouts ------------------------------------------------------------

    def _items_spanish(self, text: str) -> list[ReceiptItem]:
        items: list[ReceiptItem] = []
        in_items = False
        for raw in re.split(r"\r?\n", text):
            line = raw.strip()
            if not line:
                continue
            if ("Código" in line and "Descripción" in line) or ("PVP" in line and "Total sin IVA" in line):
                in_items = True
                continue
            if not in_items:
                continue
            if any(marker in line for marker in _ES_SECTION_END):
                break
            if "Código" in line or "Precio Unit" in line:
                continue

            # Unit price, cuota and base at minimum.
            euros = _ES_EURO_RE.findall(line)
            if len(euros) < 3:
                continue
            qty = _ES_QTY_RE.search(line)
            if qty is None:
                continue
            quantity = int(qty.group(1))
            code = _ES_CODE_RE.match(line)
            head = line[code.end() :] if code else line
            qty_index = head.find(qty.group(0))
            if qty_index <= 0:
                continue
            description = collapse_spaces(head[:qty_index])
            if not description:
                continue
            values = [parse_eu_money(v) for v in euros]
            total = values[-1] + values[-2]
            unit = total / quantity if quantity > 0 else total
            items.append(make_item(description, quantity, unit, total))

        section = _ES_DISCOUNT_SECTION_RE.search(text)
        if section:
            for line in re.split(r"\r?\n", section.group(0)):
                m = _ES_DISCOUNT_LINE_RE.match(line)
                if m is None:
                    continue
                description = collapse_spaces(m.group(1))
                amount = parse_eu_money(m.group(2))
                if description and amount > 0 and "Descuentos" not in description:
                    items.append(_discount_item(description, amount))
        return items

    def _items_english(self, text: str) -> list[ReceiptItem]:
        items: list[ReceiptItem] = []
        in_items = False
        for raw in re.split(r"\r?\n", text):
            line = raw.strip()
            if not line:
                continue
            lower = line.lower()
            is_header = "DESCRIPTION" in line.upper() and "QUANTITY" in line.upper()
            if "products sold by dia" in lower or is_header:
                in_items = True
                continue
            if not in_items:
                continue
            if any(marker in lower for marker in _EN_SECTION_END):
                break

            discount = _EN_DISCOUNT_RE.match(line)
            if discount:
                description = collapse_spaces(discount.group(1))
                amount = parse_eu_money(discount.group(2))
                if description and amount > 0:
                    items.append(_discount_item(description, amount))
                continue

            values = [parse_eu_money(v) for v in _EURO_PREFIXED_RE.findall(line)]
            if not values:
                continue
            qty = _EN_QTY_RE.search(line)
            quantity = int(qty.group(1)) if qty else 1
            qty_index = line.find(qty.group(0)) if qty else -1
            euro_index = line.find("€")
            if qty_index > 0:
                description = collapse_spaces(line[:qty_index])
            elif euro_index > 0:
                description = collapse_spaces(line[:euro_index])
            else:
                description = ""
            if not description:
                continue

            if len(values) >= 2:
                unit, total = values[0], values[1]
                if abs(quantity * unit - total) > _LINE_TOLERANCE and quantity > 1:
                    total = values[-1]
                    unit = total / quantity
            else:
                total = values[0]
                unit = total / quantity if quantity > 0 else total
            items.append(make_item(description, quantity, unit, total))
        return items


__all__ = ["DiaParser"]
