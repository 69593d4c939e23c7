# ruff: noqa: I001
"""CLI for the ``financial_ingest`` package.

Command handlers (``cmd_*``) return process exit codes and print ``Error:``
lines to stderr; the Typer commands below are thin wrappers. The root
callback loads ``.env`` from the current directory (``OPENROUTER_API_KEY`` /
``OPENAI_API_KEY``) and configures logging.
"""

from __future__ import annotations

import json
import mimetypes
import sys
from pathlib import Path
from typing import Annotated, Any
from collections.abc import Sequence

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .logging_setup import configure_logging
from .models import IngestResult, ParseQualitySummary, ReceiptParseResult, TransactionRow

console = Console()

# ---- Tunables (private) ------------------------------------------------------

_DEFAULT_CONCURRENCY: int = 4
_EXTRA_MIME_TYPES: dict[str, str] = {".csv": "text/csv", ".tsv": "text/tab-separated-values"}


# ---- Small module-level helpers ----------------------------------------------


def _guess_mime(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {path}", file=sys.stderr)
    except PermissionError:
        print(f"Error: Permission denied: {path}", file=sys.stderr)
    return None


def _split_categories(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    cats = [c.strip() for c in raw.split(",") if c.strip()]
    return cats or None


def _make_ocr(enabled: bool) -> Any:
    if not enabled:
        return None
    from .ocr import TesseractOcr

    return TesseractOcr()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _rows_table(rows: Sequence[TransactionRow], *, title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Date")
    table.add_column("Description", overflow="fold")
    table.add_column("Amount", justify="right")
    table.add_column("Balance", justify="right")
    table.add_column("Category")
    for r in rows:
        style = "red" if r.amount < 0 else "green"
        table.add_row(
            r.date or "[yellow]?[/yellow]",
            r.summary or r.description,
            f"[{style}]{r.amount:.2f}[/{style}]",
            "" if r.balance is None else f"{r.balance:.2f}",
            r.category or "",
        )
    return table


def _quality_panel(quality: ParseQualitySummary | None) -> Panel:
    if quality is None:
        return Panel("no quality summary", title="Quality")
    color = {"high": "green", "medium": "yellow", "low": "red"}[quality.level]
    body = f"[{color}]{quality.level}[/{color}] score={quality.score}\n" + "\n".join(
        f"- {r}" for r in quality.reasons
    )
    return Panel(body, title=f"Quality ({quality.parse_mode or 'auto'})", border_style=color)


def _render_ingest(result: IngestResult, *, title: str) -> None:
    if result.kind == "receipt":
        _render_receipt_payload(result.extracted.to_dict() if result.extracted else None, result.warnings)
        return
    console.print(_rows_table(result.rows, title=title))
    if isinstance(result.quality, ParseQualitySummary):
        console.print(_quality_panel(result.quality))
    for w in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {w}")


def _render_receipt_payload(extracted: dict[str, Any] | None, warnings: Sequence[str]) -> None:
    if extracted is None:
        console.print("[red]No receipt could be extracted.[/red]")
    else:
        header = (
            f"{extracted.get('store_name') or '?'}  {extracted.get('receipt_date') or '?'} "
            f"{extracted.get('receipt_time') or ''}\n"
            f"total={extracted.get('total_amount')} {extracted.get('currency') or ''}  "
            f"VAT={extracted.get('taxes_total_cuota')}"
        )
        console.print(Panel(header, title="Receipt", border_style="cyan"))
        table = Table()
        table.add_column("Item", overflow="fold")
        table.add_column("Qty", justify="right")
        table.add_column("Unit", justify="right")
        table.add_column("Total", justify="right")
        for it in extracted.get("items") or []:
            table.add_row(
                it["description"],
                f"{it['quantity']:g}",
                f"{it['price_per_unit']:.2f}",
                f"{it['total_price']:.2f}",
            )
        console.print(table)
    for w in warnings:
        console.print(f"[yellow]Warning:[/yellow] {w}")


# ---- Command handlers --------------------------------------------------------


def cmd_parse_csv(path: Path, *, categories: str | None = None, use_ai: bool = True, as_json: bool = False) -> int:
    """Parse, categorize and score one CSV export."""

    from .ingest import ingest_document

    data = _read_bytes(path)
    if data is None:
        return 1
    try:
        result = ingest_document(
            data, "text/csv", path.name, _split_categories(categories), use_ai=use_ai
        )
    except Exception as e:  # noqa: BLE001
        print(f"Error: failed to parse CSV: {e}", file=sys.stderr)
        return 1
    if as_json:
        _print_json(result.to_dict())
    else:
        _render_ingest(result, title=path.name)
    return 0


def cmd_parse_statement(
    path: Path, *, categories: str | None = None, use_ai: bool = True, as_json: bool = False
) -> int:
    """Parse a statement PDF, or a ``.txt`` dump of its text layer."""

    from .categorize import categorize_rows
    from .ingest import decode_text
    from .models import ParseDiagnostics
    from .pdf_text import extract_pdf_text
    from .quality import build_statement_parse_quality
    from .statement_pdf import StatementParseError, parse_statement_text

    data = _read_bytes(path)
    if data is None:
        return 1
    text = extract_pdf_text(data) if path.suffix.lower() == ".pdf" else decode_text(data)
    try:
        parsed = parse_statement_text(text)
    except StatementParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    rows = categorize_rows(parsed.rows, _split_categories(categories), use_ai=use_ai)
    diagnostics = ParseDiagnostics(
        total_rows_in_file=len(rows),
        rows_after_preprocess=len(rows),
        rows_after_filtering=len(rows),
        strategy_tier=parsed.strategy_tier,  # type: ignore[arg-type]
    )
    quality = build_statement_parse_quality(rows, diagnostics)
    if as_json:
        _print_json(
            {
                "rows": [r.to_dict() for r in rows],
                "strategy_tier": parsed.strategy_tier,
                "quality": quality.to_dict(),
            }
        )
    else:
        console.print(_rows_table(rows, title=f"{path.name} (tier {parsed.strategy_tier})"))
        console.print(_quality_panel(quality))
    return 0


def cmd_parse_receipt(path: Path, *, use_ocr: bool = True, use_ai: bool = True, as_json: bool = False) -> int:
    """Extract a receipt from a PDF, an image or a text file."""

    from .ingest import parse_receipt_file

    data = _read_bytes(path)
    if data is None:
        return 1
    try:
        result: ReceiptParseResult = parse_receipt_file(
            data, _guess_mime(path), ocr=_make_ocr(use_ocr), file_name=path.name, use_ai=use_ai
        )
    except Exception as e:  # noqa: BLE001
        print(f"Error: failed to parse receipt: {e}", file=sys.stderr)
        return 1

    if as_json:
        _print_json(
            {
                "extracted": result.extracted.to_dict() if result.extracted else None,
                "warnings": [{"code": w.code, "message": w.message} for w in result.warnings],
                "meta": {
                    "input_kind": result.meta.input_kind,
                    "merchant_detected": result.meta.merchant_detected,
                    "extraction_method": result.meta.extraction_method,
                    "repair_used": result.meta.repair_used,
                    "quality": None
                    if result.meta.quality is None
                    else {
                        "level": result.meta.quality.level,
                        "score": result.meta.quality.score,
                        "reasons": list(result.meta.quality.reasons),
                    },
                },
            }
        )
    else:
        _render_receipt_payload(
            result.extracted.to_dict() if result.extracted else None,
            [w.message for w in result.warnings],
        )
    return 0 if result.extracted is not None else 2


def cmd_ingest(
    paths: Sequence[Path],
    *,
    concurrency: int = _DEFAULT_CONCURRENCY,
    categories: str | None = None,
    use_ocr: bool = False,
    use_ai: bool = True,
    as_json: bool = False,
) -> int:
    """Ingest many files in parallel; one failure does not stop the batch."""

    from .ingest import ingest_document
    from .pmap import p_map

    allowed = _split_categories(categories)
    ocr = _make_ocr(use_ocr)

    def _one(path: Path) -> tuple[Path, IngestResult | None, str | None]:
        try:
            data = path.read_bytes()
            result = ingest_document(data, _guess_mime(path), path.name, allowed, ocr=ocr, use_ai=use_ai)
        except Exception as e:  # noqa: BLE001
            return path, None, str(e)
        return path, result, None

    try:
        outcomes = p_map(paths, _one, concurrency=concurrency)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    failures = 0
    payload: list[dict[str, Any]] = []
    for path, result, error in outcomes:
        if error is not None or result is None:
            failures += 1
            print(f"Error: {path}: {error}", file=sys.stderr)
            payload.append({"file": str(path), "error": error})
            continue
        if as_json:
            payload.append({"file": str(path), **result.to_dict()})
        else:
            _render_ingest(result, title=str(path))
    if as_json:
        _print_json(payload)
    return 1 if failures else 0


def cmd_detect_kind(path: Path) -> int:
    """Print the document kind and scores for a PDF or text file."""

    from .document_kind import detect_document_kind
    from .ingest import decode_text
    from .pdf_text import extract_pdf_text

    data = _read_bytes(path)
    if data is None:
        return 1
    text = extract_pdf_text(data) if path.suffix.lower() == ".pdf" else decode_text(data)
    res = detect_document_kind(text)
    console.print(
        f"[bold]{res.kind}[/bold] statement_score={res.statement_score} "
        f"receipt_score={res.receipt_score} line_items={res.line_item_signals} "
        f"dated_amount_lines={res.dated_amount_lines}"
    )
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Normalize CSV exports, bank statement PDFs and receipts into canonical "
        "transactions. Loads OPENROUTER_API_KEY / OPENAI_API_KEY from a local .env."
    ),
)

JsonOpt = Annotated[bool, typer.Option("--json", help="Emit JSON instead of tables.")]
AiOpt = Annotated[bool, typer.Option("--ai/--no-ai", help="Allow AI fallback tiers.")]
CategoriesOpt = Annotated[
    str | None, typer.Option(help="Comma-separated category list (defaults to the built-in taxonomy).")
]
OcrOpt = Annotated[bool, typer.Option("--ocr/--no-ocr", help="Use Tesseract OCR for images and scans.")]


@app.command("parse-csv")
def parse_csv_cmd(
    path: Annotated[Path, typer.Argument(help="CSV file to parse")],
    categories: CategoriesOpt = None,
    ai: AiOpt = True,
    as_json: JsonOpt = False,
) -> None:
    """Parse, categorize and score a CSV export."""

    raise typer.Exit(cmd_parse_csv(path, categories=categories, use_ai=ai, as_json=as_json))


@app.command("parse-statement")
def parse_statement_cmd(
    path: Annotated[Path, typer.Argument(help="Statement PDF or extracted text file")],
    categories: CategoriesOpt = None,
    ai: AiOpt = True,
    as_json: JsonOpt = False,
) -> None:
    """Parse a bank statement with the three-tier text parser."""

    raise typer.Exit(cmd_parse_statement(path, categories=categories, use_ai=ai, as_json=as_json))


@app.command("parse-receipt")
def parse_receipt_cmd(
    path: Annotated[Path, typer.Argument(help="Receipt PDF, image or text file")],
    ocr: OcrOpt = True,
    ai: AiOpt = True,
    as_json: JsonOpt = False,
) -> None:
    """Extract store, date, totals and line items from a receipt."""

    raise typer.Exit(cmd_parse_receipt(path, use_ocr=ocr, use_ai=ai, as_json=as_json))


@app.command("ingest")
def ingest_cmd(
    paths: Annotated[list[Path], typer.Argument(help="Files to ingest")],
    concurrency: Annotated[int, typer.Option(min=1, help="Documents processed in parallel.")] = (
        _DEFAULT_CONCURRENCY
    ),
    categories: CategoriesOpt = None,
    ocr: OcrOpt = False,
    ai: AiOpt = True,
    as_json: JsonOpt = False,
) -> None:
    """Ingest a batch of CSV, PDF and image files."""

    raise typer.Exit(
        cmd_ingest(
            paths,
            concurrency=concurrency,
            categories=categories,
            use_ocr=ocr,
            use_ai=ai,
            as_json=as_json,
        )
    )


@app.command("detect-kind")
def detect_kind_cmd(path: Annotated[Path, typer.Argument(help="PDF or text file")]) -> None:
    """Classify a document as statement, receipt or unknown."""

    raise typer.Exit(cmd_detect_kind(path))


@app.callback()
def _root() -> None:
    """Load ``.env`` from the current directory and configure logging."""

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
