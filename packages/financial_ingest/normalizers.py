"""Locale-tolerant number, date and text normalization primitives.

Every parser in the package (CSV, statement PDF, merchant receipts, AI
responses) funnels raw strings through these helpers so deterministic and
AI-produced rows look identical downstream.

Amount rule
-----------
Currency symbols and whitespace are stripped. When a comma is followed by
exactly one or two digits at the end of the string, the comma is the decimal
separator and dots are thousands separators (``"1.234,56"``). Otherwise commas
are thousands separators (``"1,234.56"``). If several dots remain, only the
last one is kept as the decimal point. Irrecoverable input yields ``0.0``.
"""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from decimal import Decimal

# ---- Tunables (private) ------------------------------------------------------

_EXCEL_EPOCH = date(1899, 12, 30)
_MIN_YEAR: int = 1900
_MAX_YEAR: int = 2100

_MINUS_CHARS_RE = re.compile(r"[−–—]")
_EU_DECIMAL_RE = re.compile(r",\d{1,2}$")

MONTHS: dict[str, int] = {
    "ene": 1, "feb": 2, "mar": 3, "abr": 4, "may": 5, "jun": 6,
    "jul": 7, "ago": 8, "sep": 9, "oct": 10, "nov": 11, "dic": 12,
    "jan": 1, "apr": 4, "aug": 8, "dec": 12,
}  # fmt: skip

_DATE_VALUE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\d{4}-\d{2}-\d{2}"),
    re.compile(r"^\d{4}/\d{2}/\d{2}"),
    re.compile(r"^\d{2}/\d{2}/\d{4}"),
    re.compile(r"^\d{2}-\d{2}-\d{4}"),
    re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}"),
    re.compile(r"\d{1,2}/\d{1,2}/\d{4}"),
)

_FALLBACK_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
    "%a, %d %b %Y",
)

# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def strip_accents(text: str) -> str:
    """NFKD-decompose ``text`` and drop combining marks (``"Menú"`` -> ``"Menu"``)."""

    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def parse_amount(raw: object) -> float:
    """Parse a money string using the EU/US decimal-separator rule.

    Examples
    --------
    >>> parse_amount("1.234,56")
    1234.56
    >>> parse_amount("-45,20€")
    -45.2
    >>> parse_amount("1,234.56")
    1234.56
    """

    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, int | float):
        return _finite_or_zero(float(raw))

    s = _MINUS_CHARS_RE.sub("-", str(raw))
    # Drops currency symbols/codes and whitespace in one pass.
    s = re.sub(r"[^0-9.,+\-()]", "", s)
    if not s:
        return 0.0

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    # Trailing sign as printed by some banks: "45,20-"
    if s.endswith("-") and not s.startswith("-"):
        negative = True
        s = s[:-1]

    if _EU_DECIMAL_RE.search(s):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")

    if s.count(".") > 1:
        head, _, tail = s.rpartition(".")
        s = head.replace(".", "") + "." + tail

    s = re.sub(r"[^0-9.+\-]", "", s)
    try:
        value = float(s)
    except ValueError:
        return 0.0
    value = _finite_or_zero(value)
    return -abs(value) if negative else value


def parse_statement_amount(raw: str) -> float:
    """Parse an amount printed on a bank statement (``"-1.234,56 €"``).

    Same rule as :func:`parse_amount`, except that dots are thousands
    separators when there is no comma and the dots group digits in threes
    (``"1.234 €"`` or ``"1.234.567"``).
    """

    if not raw:
        return 0.0
    s = re.sub(r"\s+", "", _MINUS_CHARS_RE.sub("-", raw)).replace("€", "")
    if "," not in s:
        dots = s.count(".")
        if dots > 1 or (dots == 1 and len(s.split(".")[1]) == 3):
            s = s.replace(".", "")
    return parse_amount(s)


def parse_eu_money(raw: str | None) -> float:
    """Parse a receipt money token (``"1.234,56"``, ``"2,35"``, ``"0.99"``).

    Receipts are European-first: a lone comma is always the decimal separator.
    Non-finite results yield ``0.0``.
    """

    s = (raw or "").strip().replace(" ", "").replace("€", "")
    commas = s.count(",")
    dots = s.count(".")
    if commas == 1 and dots == 0:
        s = s.replace(",", ".")
    elif commas == 1 and dots >= 1:
        s = s.replace(".", "").replace(",", ".")
    elif commas == 0 and dots == 1:
        pass
    elif commas > 1:
        head, _, tail = s.rpartition(",")
        s = head.replace(",", "").replace(".", "") + "." + tail
    else:
        s = re.sub(r"[^0-9.\-]", "", s)
    s = re.sub(r"[^0-9.\-]", "", s)
    try:
        return _finite_or_zero(float(s))
    except ValueError:
        return 0.0


def round2(value: float) -> float:
    return round(value + 0.0, 2)


def format_amount(value: float) -> str:
    """Serialize ``value`` without exponent notation (``1e-05`` -> ``"0.00001"``)."""

    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _iso(year: int, month: int, day: int) -> str:
    """Return ``YYYY-MM-DD`` or ``""`` when the date is invalid or out of range."""

    if not (_MIN_YEAR <= year <= _MAX_YEAR):
        return ""
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return ""


def _expand_year(raw: str) -> int:
    year = int(raw)
    if len(raw) == 2:
        year += 2000
    return year


def _from_excel_serial(serial: float) -> str:
    try:
        d = _EXCEL_EPOCH + timedelta(days=int(serial))
    except OverflowError:
        return ""
    return _iso(d.year, d.month, d.day)


def normalize_date(raw: object) -> str:
    """Normalize a date cell to ``YYYY-MM-DD``, or ``""`` when unrecognized.

    Recognizes Excel serial numbers (> 31, 1899-12-30 epoch), ISO dates with
    an optional time suffix, ``YYYYMMDD``, ``D/M/Y`` with day > 12
    disambiguation (European order otherwise), ``D.M.Y``, ``D-M-Y``,
    ``Y/M/D`` and a handful of textual formats bounded to years 1900-2100.
    """

    if raw is None or isinstance(raw, bool):
        return ""

    s = str(raw).strip()
    if not s:
        return ""
    if "|" in s:
        s = s.split("|", 1)[0].strip()

    m = re.match(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:$|[T\s])", s)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    if re.fullmatch(r"\d{8}", s):
        iso = _iso(int(s[:4]), int(s[4:6]), int(s[6:]))
        if iso:
            return iso

    if re.fullmatch(r"\d+(?:\.\d+)?", s):
        serial = float(s)
        return _from_excel_serial(serial) if serial > 31 else ""

    m = re.match(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})\b", s)
    if m:
        first, second = int(m.group(1)), int(m.group(2))
        year = _expand_year(m.group(3))
        if first > 12:
            return _iso(year, second, first)
        if second > 12:
            return _iso(year, first, second)
        return _iso(year, second, first)

    m = re.match(r"^(\d{1,2})\.(\d{1,2})\.(\d{4}|\d{2})\b", s)
    if m:
        return _iso(_expand_year(m.group(3)), int(m.group(2)), int(m.group(1)))

    m = re.match(r"^(\d{4})[/.](\d{1,2})[/.](\d{1,2})\b", s)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = re.match(r"^(\d{1,2})\s+([A-Za-z]{3})[a-z]*\.?\s+(\d{4})\b", s)
    if m and m.group(2).lower() in MONTHS:
        return _iso(int(m.group(3)), MONTHS[m.group(2).lower()], int(m.group(1)))

    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            parsed = datetime.strptime(s, fmt)
        except ValueError:
            continue
        return _iso(parsed.year, parsed.month, parsed.day)
    return ""


def looks_like_date(value: object) -> bool:
    """Return True when a cell value starts like a date (content sniffing)."""

    if value is None:
        return False
    s = str(value).strip()
    if "|" in s:
        s = s.split("|", 1)[0].strip()
    return bool(s) and any(p.search(s) for p in _DATE_VALUE_PATTERNS)


def to_iso_date_from_any(raw: str | None) -> str | None:
    """Receipt dates: ``Y-M-D``, ``Y/M/D``, ``D/M/YYYY``, ``D-M-YY`` -> ISO or None.

    Two-digit years >= 50 map to the 1900s.
    """

    s = (raw or "").strip()
    if not s:
        return None
    m = re.fullmatch(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})", s)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3))) or None
    m = re.fullmatch(r"(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})", s)
    if m:
        return _iso(int(m.group(3)), int(m.group(2)), int(m.group(1))) or None
    m = re.fullmatch(r"(\d{1,2})[/.-](\d{1,2})[/.-](\d{2})", s)
    if m:
        yy = int(m.group(3))
        year = 1900 + yy if yy >= 50 else 2000 + yy
        return _iso(year, int(m.group(2)), int(m.group(1))) or None
    return None


def to_display_date(iso: str | None) -> str | None:
    """``YYYY-MM-DD`` -> ``DD-MM-YYYY``."""

    if not iso:
        return None
    m = re.fullmatch(r"(\d{4})-(\d{2})-(\d{2})", iso)
    if not m:
        return None
    return f"{m.group(3)}-{m.group(2)}-{m.group(1)}"


def normalize_time_hhmmss(hours: str | int, minutes: str | int, seconds: str | int | None = None) -> str | None:
    """Return ``HH:MM:SS`` or None when out of range."""

    try:
        h, m = int(hours), int(minutes)
        s = int(seconds) if seconds not in (None, "") else 0
    except (TypeError, ValueError):
        return None
    if not (0 <= h < 24 and 0 <= m < 60 and 0 <= s < 60):
        return None
    return f"{h:02d}:{m:02d}:{s:02d}"


def normalize_time(raw: str | None) -> str | None:
    """Normalize ``"8:05"`` / ``"08:05:09"`` / ``"8:05 PM"`` to ``HH:MM[:SS]``."""

    s = (raw or "").strip()
    m = re.fullmatch(r"(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AaPp][Mm])?", s)
    if not m:
        return None
    hour = int(m.group(1))
    suffix = (m.group(4) or "").lower()
    if suffix == "pm" and hour < 12:
        hour += 12
    elif suffix == "am" and hour == 12:
        hour = 0
    if not (0 <= hour < 24 and int(m.group(2)) < 60):
        return None
    out = f"{hour:02d}:{m.group(2)}"
    if m.group(3):
        out += f":{m.group(3)}"
    return out


__all__ = [
    "MONTHS",
    "collapse_spaces",
    "format_amount",
    "looks_like_date",
    "normalize_date",
    "normalize_time",
    "normalize_time_hhmmss",
    "parse_amount",
    "parse_eu_money",
    "parse_statement_amount",
    "round2",
    "strip_accents",
    "to_display_date",
    "to_iso_date_from_any",
]
