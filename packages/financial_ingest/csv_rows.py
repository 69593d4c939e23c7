"""Map cleaned CSV rows to canonical :class:`TransactionRow` records.

Column mapping tries fixed candidate names first, then regex matching on the
header names, then content sniffing (dates) when no header matched. Rows are
validated in two levels:

- strict-valid: ISO date plus at least one of description/amount/balance;
- soft-valid: no usable date but at least one of those fields. The row is
  kept and counted in the diagnostics.

Everything else is dropped and sampled into the diagnostics. Nothing here
raises on a per-row basis.
"""

from __future__ import annotations

import csv
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from io import StringIO

from .csv_preprocess import preprocess_csv
from .logging_setup import get_logger
from .models import ParseDiagnostics, TransactionRow
from .normalizers import format_amount, looks_like_date, normalize_date, normalize_time, parse_amount

CANONICAL_COLUMNS: tuple[str, ...] = ("date", "description", "amount", "balance", "category")

# ---- Tunables (private) ------------------------------------------------------

_MAX_SAMPLES: int = 5
_MIN_DESCRIPTION_CHARS: int = 3

_DATE_NAMES: tuple[str, ...] = (
    "date", "tx_date", "txdate", "transaction_date", "transactiondate",
    "transaction date", "posted_date", "posteddate", "posted date",
    "value_date", "valuedate", "value date", "booking_date", "bookingdate",
    "booking date", "fecha", "fecha operacion", "fecha valor",
)  # fmt: skip
_DESCRIPTION_NAMES: tuple[str, ...] = (
    "description", "desc", "memo", "details", "concepto", "concept",
    "narrative", "payee", "merchant", "libelle",
)  # fmt: skip
_AMOUNT_NAMES: tuple[str, ...] = ("amount", "amt", "importe", "montant", "value")
_BALANCE_NAMES: tuple[str, ...] = ("balance", "saldo", "solde", "running balance")
_CATEGORY_NAMES: tuple[str, ...] = ("category", "categoria", "categorie")
_TIME_NAMES: tuple[str, ...] = ("time", "hora", "heure")

_DATE_COL_RE = re.compile(r"date|fecha|datum", re.IGNORECASE)
_DESCRIPTION_COL_RE = re.compile(
    r"description|desc|memo|note|details|narration|particulars|concepto|libell", re.IGNORECASE
)
_AMOUNT_COL_RE = re.compile(r"amount|amt|value|debit|credit|importe|montant", re.IGNORECASE)
_BALANCE_COL_RE = re.compile(r"balance|\bbal\b|running.*balance|saldo|solde", re.IGNORECASE)
_DEBIT_COL_RE = re.compile(r"debit|debe|cargo", re.IGNORECASE)
_CREDIT_COL_RE = re.compile(r"credit|haber|abono", re.IGNORECASE)
_TIME_IN_CELL_RE = re.compile(r"(?:\s|T)(\d{1,2}:\d{2}(?::\d{2})?)")
_NUMERIC_CELL_RE = re.compile(r"^[\s(+\-−]*[€$£]?\s*\d[\d.,\s]*[€$£]?\s*\)?-?$")

_METADATA_DESCRIPTIONS: frozenset[str] = frozenset(
    {
        "currency", "delete", "other", "category", "amount", "balance",
        "date", "description", "transaction", "transactions",
    }
)  # fmt: skip

_logger = get_logger("financial_ingest.csv_rows")


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    """Header names chosen for each semantic field (``None`` when absent)."""

    date: str | None
    description: str | None
    amount: str | None
    balance: str | None
    category: str | None
    time: str | None = None
    debit: str | None = None
    credit: str | None = None


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------


def _by_name(columns: Sequence[str], names: Sequence[str], taken: set[str]) -> str | None:
    lowered = {c.strip().lower(): c for c in columns if c not in taken}
    for name in names:
        if name in lowered:
            return lowered[name]
    return None


def _by_regex(columns: Sequence[str], pattern: re.Pattern[str], taken: set[str]) -> str | None:
    for col in columns:
        if col not in taken and pattern.search(col):
            return col
    return None


def _sniff_date_column(columns: Sequence[str], records: Sequence[Mapping[str, str]]) -> str | None:
    sample = records[:10]
    best: tuple[int, str] | None = None
    for col in columns:
        hits = sum(1 for r in sample if looks_like_date(r.get(col)))
        if hits and (best is None or hits > best[0]):
            best = (hits, col)
    return best[1] if best else None


def _sniff_amount_column(
    columns: Sequence[str], records: Sequence[Mapping[str, str]], taken: set[str]
) -> str | None:
    sample = records[:10]
    best: tuple[int, str] | None = None
    for col in columns:
        if col in taken:
            continue
        hits = sum(1 for r in sample if _NUMERIC_CELL_RE.match(r.get(col) or "") and r.get(col))
        if hits and (best is None or hits > best[0]):
            best = (hits, col)
    return best[1] if best else None


def _sniff_description_column(
    columns: Sequence[str], records: Sequence[Mapping[str, str]], taken: set[str]
) -> str | None:
    sample = records[:10]
    best: tuple[int, str] | None = None
    for col in columns:
        if col in taken:
            continue
        letters = sum(sum(ch.isalpha() for ch in (r.get(col) or "")) for r in sample)
        if letters and (best is None or letters > best[0]):
            best = (letters, col)
    return best[1] if best else None


def map_columns(columns: Sequence[str], records: Sequence[Mapping[str, str]]) -> ColumnMapping:
    """Pick the header for each semantic field.

    Order per field: fixed candidate names, then header regexes, then content
    sniffing. A column is assigned to at most one field, dates first, so a
    ``"Value Date"`` header is never mistaken for an amount.
    """

    taken: set[str] = set()

    date_col = _by_name(columns, _DATE_NAMES, taken) or _by_regex(columns, _DATE_COL_RE, taken)
    if date_col is None:
        date_col = _sniff_date_column(columns, records)
    if date_col:
        taken.add(date_col)

    time_col = _by_name(columns, _TIME_NAMES, taken)
    if time_col:
        taken.add(time_col)

    balance_col = _by_name(columns, _BALANCE_NAMES, taken) or _by_regex(columns, _BALANCE_COL_RE, taken)
    if balance_col:
        taken.add(balance_col)

    category_col = _by_name(columns, _CATEGORY_NAMES, taken)
    if category_col:
        taken.add(category_col)

    amount_col = _by_name(columns, _AMOUNT_NAMES, taken)
    debit_col = credit_col = None
    if amount_col is None:
        debit_col = _by_regex(columns, _DEBIT_COL_RE, taken)
        credit_col = _by_regex(columns, _CREDIT_COL_RE, taken - ({debit_col} if debit_col else set()))
        if credit_col == debit_col:
            credit_col = None
        if not (debit_col and credit_col):
            debit_col = credit_col = None
            amount_col = _by_regex(columns, _AMOUNT_COL_RE, taken)
    if amount_col:
        taken.add(amount_col)
    for col in (debit_col, credit_col):
        if col:
            taken.add(col)

    desc_col = _by_name(columns, _DESCRIPTION_NAMES, taken) or _by_regex(
        columns, _DESCRIPTION_COL_RE, taken
    )

    # Headerless files: positional names only, so sniff the remaining fields.
    if amount_col is None and not debit_col:
        amount_col = _sniff_amount_column(columns, records, taken)
        if amount_col:
            taken.add(amount_col)
    if desc_col is None:
        desc_col = _sniff_description_column(columns, records, taken)

    return ColumnMapping(
        date=date_col,
        description=desc_col,
        amount=amount_col,
        balance=balance_col,
        category=category_col,
        time=time_col,
        debit=debit_col,
        credit=credit_col,
    )


# ---------------------------------------------------------------------------
# Row building and validation
# ---------------------------------------------------------------------------


def _header_and_records(
    rows: list[list[str]], has_header: bool
) -> tuple[list[str], list[dict[str, str]]]:
    width = max(len(r) for r in rows)
    if has_header:
        header = list(rows[0]) + [""] * (width - len(rows[0]))
        body = rows[1:]
    else:
        header = [""] * width
        body = rows
    columns: list[str] = []
    seen: set[str] = set()
    for i, name in enumerate(header):
        col = name.strip() or f"column_{i + 1}"
        while col in seen:
            col = f"{col}_{i + 1}"
        seen.add(col)
        columns.append(col)
    records = [{col: (r[i] if i < len(r) else "") for i, col in enumerate(columns)} for r in body]
    return columns, records


def _raw_date(record: Mapping[str, str], mapping: ColumnMapping, columns: Sequence[str]) -> str:
    raw = (record.get(mapping.date) or "") if mapping.date else ""
    if raw.strip():
        return raw
    # Per-row sniffing when the mapped column is blank for this row; mapped
    # payload columns are never reinterpreted as dates.
    mapped = {
        mapping.description,
        mapping.amount,
        mapping.balance,
        mapping.category,
        mapping.debit,
        mapping.credit,
    }
    for col in columns:
        if col in mapped:
            continue
        value = record.get(col) or ""
        if value.strip() and looks_like_date(value):
            return value
    return ""


def _time_from(raw_date: str, record: Mapping[str, str], mapping: ColumnMapping) -> str | None:
    if mapping.time:
        t = normalize_time(record.get(mapping.time))
        if t:
            return t
    m = _TIME_IN_CELL_RE.search(raw_date.split("|", 1)[0])
    return normalize_time(m.group(1)) if m else None


def _amount_from(record: Mapping[str, str], mapping: ColumnMapping) -> float:
    if mapping.debit and mapping.credit:
        debit = abs(parse_amount(record.get(mapping.debit)))
        credit = abs(parse_amount(record.get(mapping.credit)))
        return round(credit - debit, 2)
    if mapping.amount:
        return parse_amount(record.get(mapping.amount))
    return 0.0


def _sample(record: Mapping[str, str], reason: str) -> dict[str, str]:
    out = {k: v for k, v in list(record.items())[:6]}
    out["_reason"] = reason
    return out


def parse_csv_to_rows(text: str) -> tuple[list[TransactionRow], ParseDiagnostics]:
    """Parse raw CSV text into canonical rows plus diagnostics.

    Returns an empty row list (never raises) when no columns can be found;
    ``diagnostics.rows_after_filtering == 0`` is the signal to escalate.
    """

    rows, diagnostics, _ = parse_csv_with_sources(text)
    return rows, diagnostics


def parse_csv_with_sources(text: str) -> tuple[list[TransactionRow], ParseDiagnostics, list[str]]:
    """Like :func:`parse_csv_to_rows`, plus the cleaned source line of each kept row.

    ``sources[i]`` is the delimiter-joined record that produced ``rows[i]``;
    row repair sends these lines to the model.
    """

    diagnostics = ParseDiagnostics()
    sources: list[str] = []
    pre = preprocess_csv(text or "")
    diagnostics.delimiter = pre.delimiter
    diagnostics.header_row_index = pre.header_row_index
    if pre.leading_columns_dropped:
        diagnostics.warnings.append(f"Dropped {pre.leading_columns_dropped} empty leading column(s)")

    if not pre.rows:
        diagnostics.warnings.append("No columns found")
        return [], diagnostics, sources

    delimiter = pre.delimiter or ","
    has_header = pre.header_row_index is not None
    columns, records = _header_and_records(pre.rows, has_header)
    diagnostics.columns = columns
    # Data lines only: neither the preamble nor the header is a transaction.
    diagnostics.total_rows_in_file = len(records)
    diagnostics.rows_after_preprocess = len(records)

    mapping = map_columns(columns, records)
    if not any((mapping.date, mapping.description, mapping.amount, mapping.debit, mapping.balance)):
        diagnostics.warnings.append("No columns found")
        diagnostics.rows_after_filtering = 0
        return [], diagnostics, sources
    if mapping.date is None:
        diagnostics.warnings.append("No date column detected")
    if mapping.amount is None and mapping.debit is None:
        diagnostics.warnings.append("No amount column detected")
    _logger.debug("column mapping: %s", mapping)

    rows: list[TransactionRow] = []
    seen: set[tuple[str, str, float]] = set()
    for record in records:
        raw_date = _raw_date(record, mapping, columns)
        iso = normalize_date(raw_date)
        description = (record.get(mapping.description) or "").strip() if mapping.description else ""
        amount = _amount_from(record, mapping)
        raw_balance = (record.get(mapping.balance) or "").strip() if mapping.balance else ""
        balance = parse_amount(raw_balance) if raw_balance else None
        category = (record.get(mapping.category) or "").strip() if mapping.category else ""

        desc_key = description.lower()
        if desc_key in _METADATA_DESCRIPTIONS:
            _append_sample(diagnostics.filtered_out_samples, record, "metadata row")
            continue
        if amount == 0 and len(description) < _MIN_DESCRIPTION_CHARS:
            _append_sample(diagnostics.filtered_out_samples, record, "no amount and no description")
            continue

        has_payload = bool(description) or amount != 0 or balance is not None
        if not has_payload:
            _append_sample(diagnostics.filtered_out_samples, record, "empty row")
            continue
        if not iso:
            diagnostics.soft_validated_count += 1
            diagnostics.invalid_date_count += 1
            _append_sample(diagnostics.invalid_date_samples, record, f"invalid date {raw_date!r}")

        row = TransactionRow(
            date=iso,
            description=description,
            amount=amount,
            balance=balance,
            time=_time_from(raw_date, record, mapping),
            category=category or None,
        )
        key = (row.date, row.description.lower(), row.amount)
        if key in seen:
            diagnostics.duplicates_detected += 1
        seen.add(key)
        rows.append(row)
        sources.append(delimiter.join(record.values()))

    diagnostics.rows_after_filtering = len(rows)
    _logger.debug(
        "csv parse: %d/%d rows kept (%d soft-valid, %d duplicates)",
        len(rows),
        len(records),
        diagnostics.soft_validated_count,
        diagnostics.duplicates_detected,
    )
    return rows, diagnostics, sources


def _append_sample(bucket: list[dict[str, str]], record: Mapping[str, str], reason: str) -> None:
    if len(bucket) < _MAX_SAMPLES:
        bucket.append(_sample(record, reason))


# ---------------------------------------------------------------------------
# Canonical serialization
# ---------------------------------------------------------------------------


def rows_to_canonical_csv(rows: Sequence[TransactionRow]) -> str:
    """Serialize rows with the fixed header ``date,description,amount,balance,category``.

    ``balance`` is empty when unknown and ``category`` defaults to ``""``.
    """

    buf = StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CANONICAL_COLUMNS)
    for r in rows:
        writer.writerow(
            [
                r.date,
                r.description,
                format_amount(r.amount),
                "" if r.balance is None else format_amount(r.balance),
                r.category or "",
            ]
        )
    return buf.getvalue()


__all__ = [
    "CANONICAL_COLUMNS",
    "ColumnMapping",
    "map_columns",
    "parse_csv_to_rows",
    "parse_csv_with_sources",
    "rows_to_canonical_csv",
]
