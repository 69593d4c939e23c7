# ruff: noqa: E402, I001
import sys
import textwrap
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.receipts import PARSERS, find_parser, try_parse_receipt_text
from financial_ingest.receipts.base import reconcile_prices, total_within_tolerance
from financial_ingest.receipts.ocr_normalize import normalize_ocr_text


MERCADONA_TEXT = textwrap.dedent(
    """\
    MERCADONA, S.A. A-46103834
    C/ PORTUGAL 37
    FACTURA SIMPLIFICADA
    09/11/2025 19:45 OP: 123456
    Descripción P. Unit Importe
    1 LECHE ENTERA 0,95
    2 PAN BARRA 0,60 1,20
    1 PLATANO 1,85
    TOTAL (€) 4,00
    TARJETA BANCARIA 4,00
    IVA BASE IMPONIBLE (€) CUOTA (€)
    4% 3,85 0,15
    TOTAL 3,85 0,15
    Importe: 4,00 €
    """
)

# Same receipt as OCR tends to read it.
MERCADONA_OCR_TEXT = textwrap.dedent(
    """\
    MERCADONA, S.A. A-46103834
    FACTURA SIMPLIFICADA
    09/11/2025 19:45
    Descripción P. Unit Importe
    1 LECHE ENTERA 0,95
    2 PAN BARRA 0,60 1,20
    l PLATANO 1,85
    TOTAL (E) 4,00
    Importe: 4,00 EUR
    """
)

CONSUM_TEXT = textwrap.dedent(
    """\
    CONSUM, S.COOP.V. F46078986
    FACTURA SIMPLIFICADA
    12.03.2025 10:15
    ----------------------------------------
    1 LECHE SEMI 0,89
    3 YOGUR NATURAL 0,45 1,35
    ----------------------------------------
    Total factura: 2,24
    BASE IVA CUOTA TOTAL
    2,15 4,00 0,09 2,24
    """
)

DIA_TEXT = textwrap.dedent(
    """\
    DIA RETAIL ESPAÑA, S.A.U.
    Simplified invoice
    15/06/2024 18:30
    Products sold by DIA
    LECHE 2 ud €0,90 €1,80
    PAN €1,20
    Discount club -€0,30
    Total sale Day €2,70
    Payment method Card
    Total to pay €2,70
    VAT breakdown
    """
)


def _items(extracted):
    return [(i.description, i.quantity, i.price_per_unit, i.total_price) for i in extracted.items]


@pytest.mark.parametrize(
    ("text", "name"),
    [(MERCADONA_TEXT, "mercadona"), (CONSUM_TEXT, "consum"), (DIA_TEXT, "dia")],
)
def test_each_fixture_is_claimed_by_exactly_one_parser(text: str, name: str) -> None:
    claimed = [p.name for p in PARSERS if p.can_parse(text)]
    assert claimed == [name]
    assert find_parser(text).name == name


def test_unknown_text_has_no_parser() -> None:
    assert find_parser("LIDL SUPERMERCADOS\nTOTAL 3,20") is None
    assert try_parse_receipt_text("") == (None, None)


def test_mercadona_pdf_text() -> None:
    parser, result = try_parse_receipt_text(MERCADONA_TEXT)

    assert parser.name == "mercadona"
    assert result.ok
    receipt = result.extracted
    assert receipt.store_name == "MERCADONA, S.A"
    assert receipt.receipt_date == "09-11-2025"
    assert receipt.receipt_date_iso == "2025-11-09"
    assert receipt.receipt_time == "19:45:00"
    assert receipt.currency == "EUR"
    assert receipt.total_amount == 4.0
    assert receipt.taxes_total_cuota == 0.15
    assert _items(receipt) == [
        ("LECHE ENTERA", 1.0, 0.95, 0.95),
        ("PAN BARRA", 2.0, 0.6, 1.2),
        ("PLATANO", 1.0, 1.85, 1.85),
    ]
    assert all(i.category is None for i in receipt.items)


def test_mercadona_ocr_text_needs_cleanup() -> None:
    _, as_pdf = try_parse_receipt_text(MERCADONA_OCR_TEXT, source="pdf")
    assert as_pdf.ok is False
    assert as_pdf.extracted is None

    _, as_ocr = try_parse_receipt_text(MERCADONA_OCR_TEXT, source="ocr")
    assert as_ocr.ok
    assert as_ocr.extracted.items_total == 4.0
    assert "TOTAL (€) 4,00" in as_ocr.raw_text


def test_consum_receipt() -> None:
    parser, result = try_parse_receipt_text(CONSUM_TEXT)

    assert parser.name == "consum"
    assert result.ok
    receipt = result.extracted
    assert receipt.store_name == "CONSUM, S.COOP.V."
    assert receipt.receipt_date_iso == "2025-03-12"
    assert receipt.receipt_time == "10:15:00"
    assert receipt.total_amount == 2.24
    assert receipt.taxes_total_cuota == 0.09
    assert _items(receipt) == [
        ("LECHE SEMI", 1.0, 0.89, 0.89),
        ("YOGUR NATURAL", 3.0, 0.45, 1.35),
    ]


def test_dia_english_ticket_with_discount() -> None:
    parser, result = try_parse_receipt_text(DIA_TEXT)

    assert parser.name == "dia"
    assert result.ok
    receipt = result.extracted
    assert receipt.store_name == "DIA RETAIL ESPAÑA, S.A.U."
    assert receipt.receipt_date_iso == "2024-06-15"
    assert receipt.receipt_time == "18:30:00"
    assert receipt.total_amount == 2.7
    assert _items(receipt) == [
        ("LECHE", 2.0, 0.9, 1.8),
        ("PAN", 1.0, 1.2, 1.2),
        ("Discount club", 1.0, -0.3, -0.3),
    ]


# ---- Shared helpers ----------------------------------------------------------


def test_reconcile_prices() -> None:
    assert reconcile_prices(2, [0.6, 1.2]) == (0.6, 1.2)
    assert reconcile_prices(2, [1.2, 0.6]) == (0.6, 1.2)
    assert reconcile_prices(2, [1.2, 0.6], allow_swapped=False) == (0.3, 0.6)
    assert reconcile_prices(1, [3.0, 2.5]) == (2.5, 2.5)
    assert reconcile_prices(3, [1.5]) == (0.5, 1.5)


def test_total_tolerance_is_five_percent_or_fifty_cents() -> None:
    assert total_within_tolerance(9.6, 10.0)
    assert not total_within_tolerance(9.0, 10.0)
    assert total_within_tolerance(95.5, 100.0)


def test_normalize_ocr_text_fixes_numeric_misreads() -> None:
    raw = "TOTAL  (E) 1O,O5\nl LECHE 0 , 95\n4,00 EUR"

    assert normalize_ocr_text(raw) == "TOTAL (€) 10,05\n1 LECHE 0,95\n4,00 €"
    assert normalize_ocr_text(raw, currency_fixes=False) == "TOTAL (E) 10,05\n1 LECHE 0,95\n4,00 EUR"
