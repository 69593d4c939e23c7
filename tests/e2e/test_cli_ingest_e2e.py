# ruff: noqa: E402, I001
from __future__ import annotations

import json
import sys
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

# Make sure the workspace `packages/` dir is on sys.path so `financial_ingest` is importable
_ROOT = Path(__file__).resolve().parents[2]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from financial_ingest.cli import app, cmd_ingest, cmd_parse_csv, cmd_parse_receipt, cmd_parse_statement  # noqa: E402

from tests.test_receipt_parsers import MERCADONA_TEXT  # noqa: E402


BANK_CSV = textwrap.dedent(
    """\
    Fecha;Concepto;Importe;Saldo
    05/01/2024;COMPRA MERCADONA VALENCIA;-23,50;1.000,00
    06/01/2024;NOMINA EMPRESA SL;1.500,00;2.500,00
    """
)

STATEMENT_TEXT = textwrap.dedent(
    """\
    Fecha | Concepto | Importe | Saldo
    05 ene 2024 | COMPRA MERCADONA | -23,50 € | 1.000,00 €
    06 ene 2024 | NOMINA EMPRESA | 1.500,00 € | 2.500,00 €
    """
)


@pytest.fixture
def files(tmp_path: Path) -> dict[str, Path]:
    paths = {
        "csv": tmp_path / "bank.csv",
        "statement": tmp_path / "statement.txt",
        "receipt": tmp_path / "ticket.txt",
        "zip": tmp_path / "archive.zip",
    }
    paths["csv"].write_text(BANK_CSV, encoding="utf-8")
    paths["statement"].write_text(STATEMENT_TEXT, encoding="utf-8")
    paths["receipt"].write_text(MERCADONA_TEXT, encoding="utf-8")
    paths["zip"].write_bytes(b"PK\x03\x04")
    return paths


def test_e2e_parse_csv_json(files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
    assert cmd_parse_csv(files["csv"], use_ai=False, as_json=True) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["kind"] == "csv"
    assert [(r["date"], r["amount"], r["category"]) for r in out["rows"]] == [
        ("2024-01-05", -23.5, "Groceries"),
        ("2024-01-06", 1500.0, "Income"),
    ]
    assert out["diagnostics"]["delimiter"] == ";"
    assert out["quality"]["level"] == "high"


def test_e2e_parse_csv_custom_categories(files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
    assert cmd_parse_csv(files["csv"], categories="Supermarket, Salary, Misc", use_ai=False, as_json=True) == 0

    out = json.loads(capsys.readouterr().out)
    assert [r["category"] for r in out["rows"]] == ["Supermarket", "Salary"]


def test_e2e_parse_statement_text(files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
    assert cmd_parse_statement(files["statement"], use_ai=False, as_json=True) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["strategy_tier"] == 1
    assert [r["description"] for r in out["rows"]] == ["COMPRA MERCADONA", "NOMINA EMPRESA"]


def test_e2e_parse_statement_failure_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "empty.txt"
    path.write_text("nothing to see here", encoding="utf-8")

    assert cmd_parse_statement(path, use_ai=False) == 2
    assert capsys.readouterr().err.startswith("Error: ")


def test_e2e_parse_receipt_json(files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
    assert cmd_parse_receipt(files["receipt"], use_ocr=False, use_ai=False, as_json=True) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["extracted"]["total_amount"] == 4.0
    assert out["meta"]["extraction_method"] == "mercadona_deterministic"
    assert out["meta"]["quality"]["level"] == "high"
    assert out["warnings"] == []


def test_e2e_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cmd_parse_csv(tmp_path / "nope.csv", use_ai=False) == 1
    assert "File not found" in capsys.readouterr().err


def test_e2e_batch_ingest_reports_failures(files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
    code = cmd_ingest([files["csv"], files["zip"], files["receipt"]], concurrency=2, use_ai=False, as_json=True)

    captured = capsys.readouterr()
    out = json.loads(captured.out)
    assert code == 1
    assert [Path(entry["file"]).name for entry in out] == ["bank.csv", "archive.zip", "ticket.txt"]
    assert out[0]["kind"] == "csv"
    assert out[1]["error"].startswith("Unsupported file type")
    # Plain text goes through the CSV path in batch mode.
    assert out[2]["kind"] == "csv"
    assert "archive.zip" in captured.err


def test_e2e_typer_detect_kind(files: dict[str, Path]) -> None:
    result = CliRunner().invoke(app, ["detect-kind", str(files["receipt"])])

    assert result.exit_code == 0
    assert "receipt statement_score=0" in result.output
