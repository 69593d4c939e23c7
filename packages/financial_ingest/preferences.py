"""Description keys for user category preferences, and merchant summaries.

A preference map (``{description_key: category}``) is owned by the caller and
passed per categorization call; this module only computes the keys.
"""

from __future__ import annotations

import re

from .merchant_patterns import MERCHANT_PATTERNS
from .normalizers import strip_accents

# ---- Tunables (private) ------------------------------------------------------

_SUMMARY_MAX_CHARS: int = 30
_SUMMARY_MAX_WORDS: int = 3

_DATE_TOKEN_RE = re.compile(r"\b\d{1,4}[-/]\d{1,2}[-/]\d{1,4}\b")
_NUMBER_TOKEN_RE = re.compile(r"\b\d+(?:[.,]\d+)?\b")
_WS_RE = re.compile(r"\s+")

_PREFIX_RES = (
    re.compile(r"^(COMPRA|PAGO|RECIBO|TRANSFERENCIA|BIZUM|CARGO|ABONO|INGRESO)\s+", re.IGNORECASE),
    re.compile(r"^(EN|DE|A|DESDE|HACIA)\s+", re.IGNORECASE),
    re.compile(r"^WWW\.", re.IGNORECASE),
    re.compile(r"^HTTPS?://", re.IGNORECASE),
)
_SUFFIX_RES = (
    re.compile(r"\s+[A-Z0-9]{6,}$", re.IGNORECASE),
    re.compile(r"\s+REF[:\s]*[\w-]+$", re.IGNORECASE),
    re.compile(r"\s+Nº?\s*RECIBO[\s:\d]+$", re.IGNORECASE),
    re.compile(r"\s+DEL\s+\d{8}\s+AL\s+\d{8}", re.IGNORECASE),
    re.compile(r"\s+NIF[:\s]*[A-Z0-9]+$", re.IGNORECASE),
    re.compile(r"\s+POLIZA[:\s]*\d+$", re.IGNORECASE),
    re.compile(r"\s+\*+\d+$"),
    re.compile(r"\s+\d{2}/\d{2}/\d{2,4}$"),
    re.compile(r"\s+\d+[.,]\d{2}\s*(EUR|€)?$", re.IGNORECASE),
)
_DOMAIN_RE = re.compile(r"([a-zA-Z0-9-]+)\.(com|es|net|org|eu|co)\b", re.IGNORECASE)


def normalize_description_key(description: str) -> str:
    """Return the preference key for ``description``.

    Lower-cased, accent-stripped, with date-like and numeric tokens removed
    and whitespace collapsed, so ``"COMPRA 12/03 MERCADONA 23,50"`` and
    ``"compra mercadona"`` share a key.
    """

    key = strip_accents(description.lower())
    key = _DATE_TOKEN_RE.sub(" ", key)
    key = _NUMBER_TOKEN_RE.sub(" ", key)
    return _WS_RE.sub(" ", key).strip()


def merchant_key(description: str) -> str:
    """Accent-stripped, lower-cased text the merchant patterns run against."""

    return _WS_RE.sub(" ", strip_accents(description).lower()).strip()


def extract_summary(description: str) -> str:
    """Return a short display label for a bank description.

    Known merchants map to their canonical name. Otherwise common bank
    prefixes, trailing reference codes, dates and amounts are stripped, a
    website is reduced to its domain name, and the result is title-cased and
    capped at three words when longer than 30 characters.
    """

    desc = description.strip()
    key = merchant_key(desc)
    for mp in MERCHANT_PATTERNS:
        if mp.pattern.search(key):
            return mp.summary

    cleaned = desc
    for rx in _PREFIX_RES:
        cleaned = rx.sub("", cleaned)
    for rx in _SUFFIX_RES:
        cleaned = rx.sub("", cleaned)

    domain = _DOMAIN_RE.search(cleaned)
    if domain:
        cleaned = domain.group(1).capitalize()

    cleaned = _WS_RE.sub(" ", cleaned.replace("*", " ")).strip()
    if len(cleaned) > _SUMMARY_MAX_CHARS:
        cleaned = " ".join(cleaned.split(" ")[:_SUMMARY_MAX_WORDS])
    if cleaned:
        cleaned = " ".join(w[:1].upper() + w[1:] for w in cleaned.lower().split(" "))
    return cleaned or description[:_SUMMARY_MAX_CHARS]


__all__ = ["extract_summary", "merchant_key", "normalize_description_key"]
