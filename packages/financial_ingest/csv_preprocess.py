"""Clean up messy CSV exports before column mapping.

Bank exports (and spreadsheets saved as CSV) often carry decorative leading
columns, title/metadata lines above the real header, and a delimiter other
than a comma. :func:`preprocess_csv` normalizes all of that into a list of
cell rows whose first row is the detected header (when one was found).
"""

from __future__ import annotations

import csv
import re
from collections.abc import Sequence
from dataclasses import dataclass
from io import StringIO

from .logging_setup import get_logger

# ---- Tunables (private) ------------------------------------------------------

_DELIMITER_SAMPLE_LINES: int = 20
_LEADING_COLUMN_SCAN_ROWS: int = 10
_HEADER_SCAN_ROWS: int = 20

_HEADER_KEYWORDS: tuple[str, ...] = (
    "date", "description", "desc", "amount", "balance", "transaction",
    "transactions", "debit", "credit", "value", "montant", "solde",
    "libelle", "details", "memo", "note", "category", "categorie",
    "fecha", "concepto", "importe", "saldo",
)  # fmt: skip

_DATE_HEADER_RE = re.compile(r"^date|^fecha|transaction.*date|posted.*date|value.*date")
_AMOUNT_HEADER_RE = re.compile(r"^amount|montant|importe|value|debit|credit")
_DESC_HEADER_RE = re.compile(r"^description|desc|details|libelle|memo|note|concepto|transaction")
_DATE_VALUE_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}|^\d{4}/\d{2}/\d{2}|^\d{2}/\d{2}/\d{4}|^\d{2}-\d{2}-\d{4}|\d{2}/\d{2}/\d{4}"
)

_logger = get_logger("financial_ingest.csv_preprocess")


@dataclass(frozen=True, slots=True)
class PreprocessedCsv:
    """Cell rows after cleanup.

    ``rows[0]`` is the header when ``header_row_index`` is not ``None``;
    ``header_row_index`` refers to the row position *before* cleanup.
    """

    rows: list[list[str]]
    delimiter: str
    header_row_index: int | None
    leading_columns_dropped: int


def detect_delimiter(text: str) -> str:
    """Guess the delimiter from the first non-blank lines (tab, semicolon, comma)."""

    sample = [ln for ln in text.splitlines() if ln.strip()][:_DELIMITER_SAMPLE_LINES]
    tabs = sum(ln.count("\t") for ln in sample)
    semis = sum(ln.count(";") for ln in sample)
    commas = sum(ln.count(",") for ln in sample)
    if tabs and tabs >= commas and tabs >= semis:
        return "\t"
    if semis and semis > commas:
        return ";"
    return ","


def _read_rows(text: str, delimiter: str) -> list[list[str]]:
    reader = csv.reader(StringIO(text), delimiter=delimiter)
    rows: list[list[str]] = []
    for row in reader:
        cells = [str(c).strip() for c in row]
        if any(cells):
            rows.append(cells)
    return rows


def _first_data_column(rows: Sequence[Sequence[str]]) -> int:
    """Index of the first column with data in any of the leading rows, or -1."""

    max_cols = max((len(r) for r in rows), default=0)
    head = rows[:_LEADING_COLUMN_SCAN_ROWS]
    for col in range(max_cols):
        if any(col < len(r) and r[col] for r in head):
            return col
    return -1


def _looks_like_date_value(cell: str) -> bool:
    return bool(_DATE_VALUE_RE.search(cell))


def find_header_row(rows: Sequence[Sequence[str]]) -> int | None:
    """Return the index of the header row within the first rows, or None.

    A row qualifies when at least two cells hold a header keyword, or a date
    header next to an amount/description header, or a bare
    ``transaction(s)`` header plus one keyword, or (for the first row only) a
    date header followed by a row holding a date value.
    """

    for i, row in enumerate(rows[:_HEADER_SCAN_ROWS]):
        if not row:
            continue
        lowered = [c.lower().strip() for c in row]
        # Count cells, not keywords, so "Description" alone never counts twice.
        matches = [c for c in lowered if any(kw in c for kw in _HEADER_KEYWORDS)]
        if len(matches) >= 2:
            return i

        has_date = any(_DATE_HEADER_RE.search(c) for c in lowered)
        has_amount = any(_AMOUNT_HEADER_RE.search(c) for c in lowered)
        has_desc = any(_DESC_HEADER_RE.search(c) for c in lowered)
        if has_date and (has_amount or has_desc):
            return i

        if any(c in ("transactions", "transaction") for c in lowered) and matches:
            return i

        if i == 0 and has_date and len(rows) > 1:
            if any(_looks_like_date_value(c) for c in rows[1]):
                return i
    return None


def preprocess_csv(text: str) -> PreprocessedCsv:
    """Detect the delimiter, drop leading empty columns and pre-header rows."""

    delimiter = detect_delimiter(text)
    rows = _read_rows(text, delimiter)
    if not rows:
        return PreprocessedCsv([], delimiter, None, 0)

    first_col = _first_data_column(rows)
    dropped = 0
    if first_col > 0:
        rows = [r[first_col:] for r in rows]
        dropped = first_col
        rows = [r for r in rows if any(r)]

    header_idx = find_header_row(rows)
    if header_idx:
        rows = rows[header_idx:]

    _logger.debug(
        "preprocess: delimiter=%r header_row=%s leading_cols_dropped=%d rows=%d",
        delimiter,
        header_idx,
        dropped,
        len(rows),
    )
    return PreprocessedCsv(
        rows=rows,
        delimiter=delimiter,
        header_row_index=header_idx,
        leading_columns_dropped=dropped,
    )


__all__ = ["PreprocessedCsv", "detect_delimiter", "find_header_row", "preprocess_csv"]
