"""Bank statement parsing over text already extracted from a PDF.

Three strategies are tried in order; each runs only when the previous one
produced no rows:

1. header-anchored: find a column header line, then parse either a
   delimited table (pipes or wide spacing) or a windowed line-by-line
   layout where each date line is followed by description, amount and
   balance lines;
2. pattern-based: every line starting with a date, looking ahead for an
   amount/balance pair regardless of any header;
3. aggressive scan: three date families and seven amount families, taking
   the first plausible number near each date.

The strategy that produced the rows is reported as ``strategy_tier`` so
callers can down-weight tier 3 output.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from .logging_setup import get_logger
from .models import TransactionRow
from .normalizers import MONTHS, parse_statement_amount

# ---- Tunables (private) ------------------------------------------------------

_LOOKAHEAD_LINES: int = 15
_BALANCE_LOOKAHEAD_LINES: int = 4
_MAX_DESCRIPTION_CHARS: int = 200
_MIN_AGGRESSIVE_AMOUNT: float = 0.01
_MAX_AGGRESSIVE_AMOUNT: float = 1_000_000.0

_MONTH_ALT = "|".join(MONTHS)
_DATE_AT_START_RE = re.compile(rf"^(\d{{1,2}})\s+({_MONTH_ALT})\s+(\d{{4}})", re.IGNORECASE)
_BARE_DATE_LINE_RE = re.compile(rf"^\d{{1,2}}\s+(?:{_MONTH_ALT})\s+\d{{4}}$", re.IGNORECASE)
_DATE_LIKE_LINE_RE = re.compile(r"^\d{1,2}\s+\w{3}\s+\d{4}", re.IGNORECASE)
_VALUE_DATE_RE = re.compile(r"^value\s+date:|^fecha\s+valor:", re.IGNORECASE)

_MONEY = r"[-−–]?\d[\d.,]*\s*€"
_AMOUNT_RE = re.compile(rf"({_MONEY})")
_BALANCE_RE = re.compile(r"(\d[\d.,]*\s*€)")
_PAIR_RE = re.compile(rf"({_MONEY})\s*\|?\s*(\d[\d.,]*\s*€)")
_PAIR_SPLIT_RE = re.compile(r"([-−–]?\d[\d.,]*)\s*€\s+(\d[\d.,]*)\s*€")

_HEADER_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"transaction.*date.*amount.*balance"),
    re.compile(r"fecha.*importe.*saldo"),
    re.compile(r"date.*amount.*balance"),
    re.compile(r"transaction.*date"),
    re.compile(r"movimiento"),
)

_AGGRESSIVE_DATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"(\d{{1,2}})\s+({_MONTH_ALT})\s+(\d{{4}})", re.IGNORECASE),
    re.compile(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})"),
    re.compile(r"(\d{4})[/\-.](\d{1,2})[/\-.](\d{1,2})"),
)
_AGGRESSIVE_AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"([-−–]?\d[\d.,]*)\s*€"),
    re.compile(r"€\s*([-−–]?\d[\d.,]*)"),
    re.compile(r"([-−–]?\d+[.,]\d{2})\s*€"),
    re.compile(r"([-−–]?\d+[.,]\d{2})"),
    re.compile(r"([-−–]?\d{3,}[.,]\d{2})"),
    re.compile(r"([-−–]?\d+\.\d{2})"),
    re.compile(r"([-−–]?\d{2,})"),
)

_ANY_DATE_RE = re.compile(r"\d{1,2}\s+\w{3}\s+\d{4}|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}", re.IGNORECASE)
_ANY_AMOUNT_RE = re.compile(r"€|\d+[.,]\d{2}")

_logger = get_logger("financial_ingest.statement_pdf")


class StatementParseError(ValueError):
    """No strategy found any transaction in the statement text.

    The message is user-facing and points at a CSV/Excel re-export.
    """

    def __init__(self, message: str, *, has_dates: bool, has_amounts: bool) -> None:
        super().__init__(message)
        self.has_dates = has_dates
        self.has_amounts = has_amounts


@dataclass(frozen=True, slots=True)
class StatementParse:
    rows: list[TransactionRow]
    strategy_tier: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def split_statement_lines(text: str) -> list[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return [ln.strip() for ln in normalized.split("\n") if ln.strip()]


def _calendar_iso(year: int, month: int, day: int) -> str:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return ""


def _iso_from_month_match(m: re.Match[str]) -> str:
    """ISO date from a day/month-name/year match, or ``""`` when it is not a real date."""

    day, mon, year = m.group(1), m.group(2), m.group(3)
    return _calendar_iso(int(year), MONTHS[mon.lower()], int(day))


def _is_pure_value_date(line: str) -> bool:
    return bool(_VALUE_DATE_RE.match(line)) and not _AMOUNT_RE.search(line)


def _row(date: str, desc_parts: Sequence[str], amount: float, balance: float | None) -> TransactionRow:
    description = " ".join(p for p in desc_parts if p).strip() or "Transaction"
    return TransactionRow(date=date, description=description, amount=amount, balance=balance)


def find_header_index(lines: Sequence[str]) -> int | None:
    for pattern in _HEADER_PATTERNS:
        for idx, line in enumerate(lines):
            if pattern.search(line.lower()):
                return idx
    return None


def _is_table_format(lines: Sequence[str], header_idx: int) -> bool:
    for line in lines[header_idx : header_idx + 3]:
        if "|" in line:
            return True
        if len(re.split(r"\s{2,}", line)) >= 3 and _DATE_LIKE_LINE_RE.match(line):
            return True
    return False


# ---------------------------------------------------------------------------
# Tier 1: header-anchored
# ---------------------------------------------------------------------------


def _split_table_line(line: str) -> list[str]:
    if "|" in line:
        return [p.strip() for p in line.split("|") if p.strip()]
    parts = [p.strip() for p in re.split(r"\s{3,}", line) if p.strip()]
    if len(parts) < 3:
        parts = [p.strip() for p in re.split(r"\s{2,}", line) if p.strip()]
    return parts


def _parse_table(lines: Sequence[str], header_idx: int) -> list[TransactionRow]:
    rows: list[TransactionRow] = []
    for line in lines[header_idx + 1 :]:
        if _is_pure_value_date(line):
            continue
        parts = _split_table_line(line)
        if len(parts) < 2:
            continue
        m = _DATE_AT_START_RE.match(parts[0])
        if m is None:
            m = _DATE_AT_START_RE.match(line)
            if m is None:
                continue
            rest = line[m.end() :].strip()
            parts = [m.group(0)] + [p.strip() for p in re.split(r"\s{2,}|\|", rest) if p.strip()]

        # Trailing money tokens: amount then balance.
        money = [p for p in parts[1:] if _AMOUNT_RE.search(p)]
        amount: float | None = None
        balance: float | None = None
        if len(money) >= 2:
            amount = parse_statement_amount(_AMOUNT_RE.search(money[-2]).group(1))  # type: ignore[union-attr]
            balance = parse_statement_amount(_AMOUNT_RE.search(money[-1]).group(1))  # type: ignore[union-attr]
        elif money:
            amount = parse_statement_amount(_AMOUNT_RE.search(money[0]).group(1))  # type: ignore[union-attr]
        else:
            line_match = _AMOUNT_RE.search(line)
            if line_match:
                amount = parse_statement_amount(line_match.group(1))
        if amount is None:
            continue

        desc_parts = [p for p in parts[1:] if not _AMOUNT_RE.search(p)]
        description = " ".join(desc_parts).strip()
        if len(description) < 3:
            fallback = line.replace(m.group(0), "", 1)
            fallback = _AMOUNT_RE.sub("", fallback)
            fallback = re.sub(r"value\s+date:.*", "", fallback, flags=re.IGNORECASE).strip(" |")
            description = fallback.strip() or description
        iso = _iso_from_month_match(m)
        if not iso:
            _logger.debug("statement: skipping impossible date %r", m.group(0))
            continue
        rows.append(_row(iso, [description], amount, balance))
    return rows


def _balance_ahead(lines: Sequence[str], start: int, stop: int) -> tuple[float | None, int]:
    """Look for a balance line in ``lines[start:stop]``; returns ``(balance, index)``.

    Stops early at the next date line.
    """

    for k in range(start, min(stop, len(lines))):
        candidate = lines[k]
        if _is_pure_value_date(candidate):
            continue
        bm = _BALANCE_RE.search(candidate)
        if bm:
            return parse_statement_amount(bm.group(1)), k
        if _DATE_LIKE_LINE_RE.match(candidate):
            break
    return None, -1


def _parse_line_by_line(lines: Sequence[str], header_idx: int) -> list[TransactionRow]:
    rows: list[TransactionRow] = []
    i = header_idx + 1
    while i < len(lines):
        m = _DATE_AT_START_RE.match(lines[i])
        if m is None:
            i += 1
            continue
        iso = _iso_from_month_match(m)
        if not iso:
            i += 1
            continue
        remainder = lines[i][m.end() :].strip()
        i += 1
        if i < len(lines) and _VALUE_DATE_RE.match(lines[i]):
            i += 1

        desc_parts: list[str] = []
        same_line = _PAIR_RE.search(remainder) or _PAIR_SPLIT_RE.search(remainder)
        if same_line is None:
            same_line = _AMOUNT_RE.search(remainder)
        if same_line is not None:
            # Whole transaction on the date line.
            balance_same = same_line.group(2) if same_line.re is not _AMOUNT_RE else None
            rows.append(
                _row(
                    iso,
                    [remainder[: same_line.start()].strip()],
                    parse_statement_amount(same_line.group(1)),
                    parse_statement_amount(balance_same) if balance_same else None,
                )
            )
            continue

        amount: float | None = None
        balance: float | None = None
        for j in range(i, min(i + _LOOKAHEAD_LINES, len(lines))):
            line = lines[j]
            if _is_pure_value_date(line):
                continue
            pair = _PAIR_RE.search(line) or _PAIR_SPLIT_RE.search(line)
            if pair:
                amount = parse_statement_amount(pair.group(1))
                balance = parse_statement_amount(pair.group(2))
                desc_parts.append(line[: pair.start()].strip())
                i = j + 1
                break
            single = _AMOUNT_RE.search(line)
            if single:
                amount = parse_statement_amount(single.group(1))
                desc_parts.append(line[: single.start()].strip())
                after = _BALANCE_RE.search(line[single.end() :])
                if after:
                    balance = parse_statement_amount(after.group(1))
                    i = j + 1
                    break
                balance, k = _balance_ahead(lines, j + 1, j + _BALANCE_LOOKAHEAD_LINES)
                i = (k + 1) if k >= 0 else (j + 1)
                break
            if _DATE_LIKE_LINE_RE.match(line):
                break
            desc_parts.append(line)

        if amount is not None:
            if remainder and not _VALUE_DATE_RE.match(remainder):
                desc_parts.insert(0, remainder)
            rows.append(_row(iso, desc_parts, amount, balance))
    return rows


def _tier1_header_anchored(lines: Sequence[str]) -> list[TransactionRow]:
    header_idx = find_header_index(lines)
    if header_idx is None:
        return []
    if _is_table_format(lines, header_idx):
        _logger.debug("statement: table layout under header line %d", header_idx)
        return _parse_table(lines, header_idx)
    _logger.debug("statement: line-by-line layout under header line %d", header_idx)
    return _parse_line_by_line(lines, header_idx)


# ---------------------------------------------------------------------------
# Tier 2: pattern-based
# ---------------------------------------------------------------------------


def _tier2_pattern_based(lines: Sequence[str]) -> list[TransactionRow]:
    rows: list[TransactionRow] = []
    for i, line in enumerate(lines):
        m = _DATE_AT_START_RE.match(line)
        if m is None:
            continue
        iso = _iso_from_month_match(m)
        if not iso:
            continue
        desc_parts: list[str] = []
        amount: float | None = None
        balance: float | None = None

        # Same-line layout: "05 ene 2024 SHOP -23,50 € 1.000,00 €".
        candidates = [(i, line[m.end() :].strip())]
        candidates += [(j, lines[j]) for j in range(i + 1, min(i + _LOOKAHEAD_LINES, len(lines)))]
        for j, text in candidates:
            if j != i and _BARE_DATE_LINE_RE.match(text):
                break
            hit = _PAIR_RE.search(text) or _PAIR_SPLIT_RE.search(text) or _AMOUNT_RE.search(text)
            if hit is None:
                if text:
                    desc_parts.append(text)
                continue
            amount = parse_statement_amount(hit.group(1))
            if hit.re is not _AMOUNT_RE and hit.lastindex and hit.lastindex >= 2:
                balance = parse_statement_amount(hit.group(2))
            elif j + 1 < len(lines):
                bm = _BALANCE_RE.search(lines[j + 1])
                if bm and not _DATE_AT_START_RE.match(lines[j + 1]):
                    balance = parse_statement_amount(bm.group(1))
            desc_parts.append(text[: hit.start()].strip())
            break
        if amount is not None:
            rows.append(_row(iso, desc_parts, amount, balance))
    return rows


# ---------------------------------------------------------------------------
# Tier 3: aggressive scan
# ---------------------------------------------------------------------------


def _aggressive_iso(m: re.Match[str], pattern_idx: int) -> str | None:
    a, b, c = m.group(1), m.group(2), m.group(3)
    if pattern_idx == 0:
        return _iso_from_month_match(m)
    if pattern_idx == 2:
        return _calendar_iso(int(a), int(b), int(c))
    year = c if len(c) == 4 else (f"20{c}" if len(c) == 2 else None)
    if year is None:
        return None
    return _calendar_iso(int(year), int(b), int(a))


def _tier3_aggressive(lines: Sequence[str]) -> list[TransactionRow]:
    rows: list[TransactionRow] = []
    for i, line in enumerate(lines):
        for p_idx, date_pattern in enumerate(_AGGRESSIVE_DATE_PATTERNS):
            dm = date_pattern.search(line)
            if dm is None:
                continue
            iso = _aggressive_iso(dm, p_idx)
            if not iso:
                continue
            found = False
            for j in range(i, min(i + _LOOKAHEAD_LINES, len(lines))):
                # Never read the date itself back as an amount.
                search_line = line.replace(dm.group(0), " ", 1) if j == i else lines[j]
                for amount_pattern in _AGGRESSIVE_AMOUNT_PATTERNS:
                    am = amount_pattern.search(search_line)
                    if am is None:
                        continue
                    amount = parse_statement_amount(am.group(1))
                    if not (_MIN_AGGRESSIVE_AMOUNT < abs(amount) < _MAX_AGGRESSIVE_AMOUNT):
                        continue
                    description = line.replace(dm.group(0), "", 1).strip()
                    if j == i:
                        description = description.replace(am.group(0).strip(), "", 1).strip()
                    if len(description) < 3:
                        description = search_line.replace(am.group(0), "", 1).strip()
                    if len(description) < 3:
                        description = "Transaction"
                    rows.append(
                        TransactionRow(
                            date=iso,
                            description=description[:_MAX_DESCRIPTION_CHARS],
                            amount=amount,
                            balance=None,
                        )
                    )
                    found = True
                    break
                if found:
                    break
            if found:
                break
    return rows


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _failure(lines: Sequence[str]) -> StatementParseError:
    has_dates = any(_ANY_DATE_RE.search(ln) for ln in lines)
    has_amounts = any(_ANY_AMOUNT_RE.search(ln) for ln in lines)
    msg = "No transactions found in the PDF file. "
    if not has_dates and not has_amounts:
        msg += "The PDF appears to be image-based (no text found) and requires OCR. "
    elif not has_dates:
        msg += "Found amounts but no recognizable date patterns. "
    elif not has_amounts:
        msg += "Found dates but no recognizable amount patterns. "
    else:
        msg += "Found dates and amounts but couldn't match them into transactions. "
    msg += "Please try exporting your bank statement as CSV or Excel format instead."
    return StatementParseError(msg, has_dates=has_dates, has_amounts=has_amounts)


def parse_statement_text(text: str) -> StatementParse:
    """Parse statement text into rows using the three-strategy cascade.

    Raises
    ------
    StatementParseError
        When no strategy yields a row.
    """

    lines = split_statement_lines(text or "")
    if not lines:
        _logger.warning("statement: no text extracted; the PDF may be image-based")

    tiers = (
        (1, _tier1_header_anchored),
        (2, _tier2_pattern_based),
        (3, _tier3_aggressive),
    )
    for tier, strategy in tiers:
        rows = strategy(lines)
        if rows:
            _logger.debug("statement: tier %d produced %d rows", tier, len(rows))
            return StatementParse(rows=rows, strategy_tier=tier)

    error = _failure(lines)
    _logger.warning(
        "statement: no transactions (has_dates=%s has_amounts=%s)", error.has_dates, error.has_amounts
    )
    raise error


__all__ = [
    "StatementParse",
    "StatementParseError",
    "find_header_index",
    "parse_statement_text",
    "split_statement_lines",
]
