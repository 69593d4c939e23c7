# ruff: noqa: E402, I001
import sys
import textwrap
from pathlib import Path

import pytest


# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.categorize import categorize_rows
from financial_ingest.csv_preprocess import detect_delimiter, find_header_row, preprocess_csv
from financial_ingest.csv_rows import (
    map_columns,
    parse_csv_to_rows,
    parse_csv_with_sources,
    rows_to_canonical_csv,
)
from financial_ingest.quality import build_statement_parse_quality


BASIC_CSV = textwrap.dedent(
    """\
    Date,Description,Amount,Balance
    2024-01-05,COMPRA MERCADONA VALENCIA,-23.50,1000.00
    2024-01-06,NOMINA EMPRESA SL,1500.00,2500.00
    """
)


def test_basic_export_maps_columns_and_diagnostics() -> None:
    rows, diag = parse_csv_to_rows(BASIC_CSV)

    assert [(r.date, r.description, r.amount, r.balance) for r in rows] == [
        ("2024-01-05", "COMPRA MERCADONA VALENCIA", -23.5, 1000.0),
        ("2024-01-06", "NOMINA EMPRESA SL", 1500.0, 2500.0),
    ]
    assert diag.delimiter == ","
    assert diag.header_row_index == 0
    assert diag.columns == ["Date", "Description", "Amount", "Balance"]
    assert diag.total_rows_in_file == 2
    assert diag.rows_after_filtering == 2
    assert diag.invalid_date_count == 0


def test_end_to_end_categorized_canonical_csv() -> None:
    rows, _ = parse_csv_to_rows(BASIC_CSV)
    categorized = categorize_rows(rows, use_ai=False)

    assert [r.category for r in categorized] == ["Groceries", "Income"]
    assert [r.summary for r in categorized] == ["Mercadona", "Salary"]
    assert rows_to_canonical_csv(categorized) == (
        "date,description,amount,balance,category\n"
        "2024-01-05,COMPRA MERCADONA VALENCIA,-23.5,1000,Groceries\n"
        "2024-01-06,NOMINA EMPRESA SL,1500,2500,Income\n"
    )


def test_canonical_csv_parses_back_to_the_same_rows() -> None:
    rows, _ = parse_csv_to_rows(BASIC_CSV)
    categorized = categorize_rows(rows, use_ai=False)

    again, diag = parse_csv_to_rows(rows_to_canonical_csv(categorized))

    assert [(r.date, r.description, r.amount, r.balance, r.category) for r in again] == [
        (r.date, r.description, r.amount, r.balance, r.category) for r in categorized
    ]
    assert diag.columns == ["date", "description", "amount", "balance", "category"]


def test_semicolon_european_export() -> None:
    text = textwrap.dedent(
        """\
        Fecha;Concepto;Importe;Saldo
        05/01/2024;COMPRA MERCADONA;-23,50;1.000,00
        06/01/2024;BIZUM RECIBIDO;15,00;1.015,00
        """
    )
    rows, diag = parse_csv_to_rows(text)

    assert diag.delimiter == ";"
    assert [(r.date, r.amount, r.balance) for r in rows] == [
        ("2024-01-05", -23.5, 1000.0),
        ("2024-01-06", 15.0, 1015.0),
    ]


def test_preamble_lines_are_skipped_before_header() -> None:
    text = textwrap.dedent(
        """\
        Account statement
        Account: ES12 3456
        Date,Description,Amount
        2024-01-05,Coffee shop,-3.20
        """
    )
    rows, diag = parse_csv_to_rows(text)

    assert diag.header_row_index == 2
    assert len(rows) == 1
    assert rows[0].description == "Coffee shop"
    assert rows[0].amount == pytest.approx(-3.2)


def test_preamble_lines_do_not_count_as_lost_rows() -> None:
    text = textwrap.dedent(
        """\
        Bank statement export
        Account holder: Jane Doe
        Period: January 2024
        Date,Description,Amount
        2024-01-05,COMPRA MERCADONA,-23.50
        2024-01-06,NOMINA EMPRESA,1800.00
        2024-01-07,PAGO TELECOM XYZ,-30.00
        2024-01-08,FRUTERIA PEPE,-4.00
        """
    )
    rows, diag = parse_csv_to_rows(text)
    quality = build_statement_parse_quality(categorize_rows(rows, use_ai=False), diag)

    assert diag.header_row_index == 3
    assert diag.total_rows_in_file == 4
    assert diag.rows_after_filtering == 4
    assert "Rows filtered during parsing" not in quality.reasons
    assert quality.level == "high"


def test_debit_and_credit_columns_combine_into_signed_amount() -> None:
    text = textwrap.dedent(
        """\
        Date,Description,Debit,Credit
        2024-01-05,Rent,800.00,
        2024-01-06,Refund,,25.00
        """
    )
    rows, _ = parse_csv_to_rows(text)

    assert [r.amount for r in rows] == [-800.0, 25.0]


def test_soft_valid_rows_are_kept_and_counted() -> None:
    text = textwrap.dedent(
        """\
        Date,Description,Amount
        2024-01-05,Coffee shop,-3.20
        pending,Bakery,-2.10
        """
    )
    rows, diag = parse_csv_to_rows(text)

    assert [r.date for r in rows] == ["2024-01-05", ""]
    assert diag.soft_validated_count == 1
    assert diag.invalid_date_count == 1
    assert diag.invalid_date_samples[0]["_reason"] == "invalid date 'pending'"


def test_metadata_and_empty_rows_are_filtered() -> None:
    text = textwrap.dedent(
        """\
        Date,Description,Amount
        2024-01-05,Coffee shop,-3.20
        2024-01-06,Balance,100.00
        2024-01-07,,0
        """
    )
    rows, diag = parse_csv_to_rows(text)

    assert [r.description for r in rows] == ["Coffee shop"]
    reasons = [s["_reason"] for s in diag.filtered_out_samples]
    assert reasons == ["metadata row", "no amount and no description"]


def test_duplicates_are_counted_but_kept() -> None:
    text = textwrap.dedent(
        """\
        Date,Description,Amount
        2024-01-05,Coffee shop,-3.20
        2024-01-05,Coffee shop,-3.20
        """
    )
    rows, diag = parse_csv_to_rows(text)

    assert len(rows) == 2
    assert diag.duplicates_detected == 1


def test_headerless_file_is_sniffed_by_content() -> None:
    text = textwrap.dedent(
        """\
        05/01/2024,MERCADONA VALENCIA,-23.50
        06/01/2024,FARMACIA CENTRAL,-8.10
        """
    )
    rows, diag = parse_csv_to_rows(text)

    assert diag.header_row_index is None
    assert [(r.date, r.description, r.amount) for r in rows] == [
        ("2024-01-05", "MERCADONA VALENCIA", -23.5),
        ("2024-01-06", "FARMACIA CENTRAL", -8.1),
    ]


def test_empty_input_reports_no_columns() -> None:
    rows, diag = parse_csv_to_rows("")

    assert rows == []
    assert "No columns found" in diag.warnings


def test_sources_follow_kept_rows() -> None:
    rows, _, sources = parse_csv_with_sources(BASIC_CSV)

    assert len(sources) == len(rows)
    assert sources[0] == "2024-01-05,COMPRA MERCADONA VALENCIA,-23.50,1000.00"


def test_value_date_header_is_never_taken_as_amount() -> None:
    columns = ["Value Date", "Details", "Amount"]
    records = [{"Value Date": "2024-01-05", "Details": "Shop", "Amount": "-1.00"}]

    mapping = map_columns(columns, records)

    assert mapping.date == "Value Date"
    assert mapping.amount == "Amount"
    assert mapping.description == "Details"


# ---- Preprocessing -----------------------------------------------------------


def test_detect_delimiter() -> None:
    assert detect_delimiter("a\tb\tc\n1\t2\t3") == "\t"
    assert detect_delimiter("a;b;c\n1,5;2;3") == ";"
    assert detect_delimiter("a,b,c") == ","


def test_find_header_row_with_single_date_header() -> None:
    rows = [["Fecha", "x"], ["05/01/2024", "y"]]
    assert find_header_row(rows) == 0
    assert find_header_row([["foo", "bar"], ["1", "2"]]) is None


def test_leading_empty_columns_are_dropped() -> None:
    text = ",,Date,Description,Amount\n,,2024-01-05,Coffee,-3.20\n"
    pre = preprocess_csv(text)

    assert pre.leading_columns_dropped == 2
    assert pre.rows[0] == ["Date", "Description", "Amount"]

    _, diag = parse_csv_to_rows(text)
    assert "Dropped 2 empty leading column(s)" in diag.warnings
