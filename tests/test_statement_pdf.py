# ruff: noqa: E402, I001
import sys
import textwrap
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.statement_pdf import (
    StatementParseError,
    find_header_index,
    parse_statement_text,
    split_statement_lines,
)


def _triples(parse):
    return [(r.date, r.description, r.amount, r.balance) for r in parse.rows]


def test_piped_table_under_header() -> None:
    text = textwrap.dedent(
        """\
        Fecha | Concepto | Importe | Saldo
        05 ene 2024 | COMPRA MERCADONA | -23,50 € | 1.000,00 €
        06 ene 2024 | NOMINA EMPRESA | 1.500,00 € | 2.500,00 €
        """
    )
    parse = parse_statement_text(text)

    assert parse.strategy_tier == 1
    assert _triples(parse) == [
        ("2024-01-05", "COMPRA MERCADONA", -23.5, 1000.0),
        ("2024-01-06", "NOMINA EMPRESA", 1500.0, 2500.0),
    ]


def test_line_by_line_layout_under_header() -> None:
    text = textwrap.dedent(
        """\
        Movimientos de la cuenta
        Date  Description  Amount  Balance
        05 ene 2024
        COMPRA MERCADONA
        -23,50 €
        1.000,00 €
        06 ene 2024
        NOMINA EMPRESA
        1.500,00 € 2.500,00 €
        """
    )
    parse = parse_statement_text(text)

    assert parse.strategy_tier == 1
    assert _triples(parse) == [
        ("2024-01-05", "COMPRA MERCADONA", -23.5, 1000.0),
        ("2024-01-06", "NOMINA EMPRESA", 1500.0, 2500.0),
    ]


def test_pattern_based_tier_without_header() -> None:
    text = textwrap.dedent(
        """\
        Extracto
        05 ene 2024 COMPRA MERCADONA -23,50 € 1.000,00 €
        06 ene 2024 BIZUM RECIBIDO 15,00 €
        """
    )
    parse = parse_statement_text(text)

    assert parse.strategy_tier == 2
    assert _triples(parse) == [
        ("2024-01-05", "COMPRA MERCADONA", -23.5, 1000.0),
        ("2024-01-06", "BIZUM RECIBIDO", 15.0, None),
    ]


def test_aggressive_scan_handles_numeric_dates() -> None:
    text = "Movimientos\n05/01/2024 Farmacia 12.30\n"
    parse = parse_statement_text(text)

    assert parse.strategy_tier == 3
    assert _triples(parse) == [("2024-01-05", "Farmacia", 12.3, None)]


def test_no_text_suggests_ocr() -> None:
    with pytest.raises(StatementParseError) as excinfo:
        parse_statement_text("")

    assert excinfo.value.has_dates is False
    assert excinfo.value.has_amounts is False
    assert "requires OCR" in str(excinfo.value)
    assert "CSV or Excel" in str(excinfo.value)


def test_dates_without_amounts_are_reported() -> None:
    with pytest.raises(StatementParseError) as excinfo:
        parse_statement_text("05/01/2024 only a date")

    assert excinfo.value.has_dates is True
    assert excinfo.value.has_amounts is False
    assert "Found dates but no recognizable amount patterns." in str(excinfo.value)


def test_amounts_without_dates_are_reported() -> None:
    with pytest.raises(StatementParseError) as excinfo:
        parse_statement_text("Total cargado 12,50 €")

    assert excinfo.value.has_dates is False
    assert excinfo.value.has_amounts is True
    assert "Found amounts but no recognizable date patterns." in str(excinfo.value)


def test_unmatched_dates_and_amounts_are_reported() -> None:
    # Zero amounts are never accepted as transactions.
    with pytest.raises(StatementParseError) as excinfo:
        parse_statement_text("05/01/2024 saldo 0,00 €")

    assert excinfo.value.has_dates is True
    assert excinfo.value.has_amounts is True
    assert "Found dates and amounts but couldn't match them into transactions." in str(excinfo.value)


def test_impossible_calendar_dates_are_skipped() -> None:
    text = textwrap.dedent(
        """\
        Fecha  Concepto  Importe  Saldo
        31 feb 2024 COMPRA TIENDA -10,00 € 100,00 €
        01 mar 2024 COMPRA MERCADONA -5,00 € 95,00 €
        """
    )
    parse = parse_statement_text(text)

    assert parse.strategy_tier == 1
    assert _triples(parse) == [("2024-03-01", "COMPRA MERCADONA", -5.0, 95.0)]


@pytest.mark.parametrize(
    "line",
    [
        "31 feb 2024 COMPRA TIENDA -10,00 € 100,00 €",
        "Movimientos\n45 ene 2024 COMPRA TIENDA -10,00 €",
        "Movimientos\n31/02/2024 Farmacia 12.30",
    ],
)
def test_statement_with_only_impossible_dates_fails(line: str) -> None:
    with pytest.raises(StatementParseError) as excinfo:
        parse_statement_text(line)

    assert excinfo.value.has_dates is True


def test_split_statement_lines_normalizes_breaks() -> None:
    assert split_statement_lines("a\r\n\r\n\r\n  b  \rc") == ["a", "b", "c"]


def test_header_patterns_are_tried_in_priority_order() -> None:
    lines = ["movimientos", "Transaction date  Amount  Balance"]
    assert find_header_index(lines) == 1
    assert find_header_index(["nothing here"]) is None
