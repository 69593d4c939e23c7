"""Default taxonomy and resolution of category names against a taxonomy.

The default taxonomy is an immutable tuple; callers pass their own category
list per call to override it. Every category the package emits goes through
:func:`normalize_category` so values outside the active taxonomy never leak
out.

Exports
-------
- ``DEFAULT_CATEGORIES``: the fallback taxonomy.
- ``resolve_taxonomy(...)``: clean a caller-supplied list, or fall back.
- ``normalize_category(...)``: case/alias-insensitive lookup in a taxonomy.
- ``fallback_category(...)``: ``Other`` when present, else the last entry.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Groceries",
    "Shopping",
    "Restaurants",
    "Transport",
    "Utilities",
    "Insurance",
    "Transfers",
    "Income",
    "Taxes & Fees",
    "Savings",
    "Other",
)

# Loose names a model (or an older rule table) may produce, keyed lower-case.
_ALIASES: dict[str, str] = {
    "grocery": "Groceries",
    "grocery store": "Groceries",
    "supermarket": "Groceries",
    "food": "Groceries",
    "dining": "Restaurants",
    "restaurant": "Restaurants",
    "cafe": "Restaurants",
    "coffee": "Restaurants",
    "food delivery": "Restaurants",
    "takeaway/delivery": "Restaurants",
    "transfer": "Transfers",
    "bizum": "Transfers",
    "salary": "Income",
    "payroll": "Income",
    "refund": "Income",
    "refunds": "Income",
    "tax": "Taxes & Fees",
    "taxes": "Taxes & Fees",
    "fee": "Taxes & Fees",
    "fees": "Taxes & Fees",
    "bank fee": "Taxes & Fees",
    "bank fees": "Taxes & Fees",
    "subscription": "Utilities",
    "subscriptions": "Utilities",
    "bills": "Utilities",
    "public transport": "Transport",
    "taxi/rideshare": "Transport",
    "travel": "Transport",
    "fuel": "Transport",
    "saving": "Savings",
    "uncategorized": "Other",
}

# Substring stems used when a taxonomy renames a default category
# (e.g. "Taxes" instead of "Taxes & Fees").
_STEMS: dict[str, tuple[str, ...]] = {
    "Groceries": ("grocer", "supermarket"),
    "Shopping": ("shopp",),
    "Restaurants": ("restaurant", "dining"),
    "Transport": ("transport",),
    "Utilities": ("utilit", "bill"),
    "Insurance": ("insur",),
    "Transfers": ("transfer",),
    "Income": ("income", "salary"),
    "Taxes & Fees": ("tax", "fee"),
    "Savings": ("saving",),
    "Other": ("other",),
}

_WS_RE = re.compile(r"\s+")


def _clean(name: str) -> str:
    return _WS_RE.sub(" ", name).strip()


def resolve_taxonomy(categories: Iterable[str] | None) -> tuple[str, ...]:
    """Return a de-duplicated, trimmed taxonomy; ``DEFAULT_CATEGORIES`` if empty.

    De-duplication is case-insensitive and keeps the first spelling seen.
    """

    if categories is None:
        return DEFAULT_CATEGORIES
    seen: dict[str, str] = {}
    for raw in categories:
        if not isinstance(raw, str):
            continue
        name = _clean(raw)
        if name and name.lower() not in seen:
            seen[name.lower()] = name
    return tuple(seen.values()) or DEFAULT_CATEGORIES


def _exact(taxonomy: Sequence[str], name: str) -> str | None:
    lower = name.lower()
    for entry in taxonomy:
        if entry.lower() == lower:
            return entry
    return None


def _by_stem(taxonomy: Sequence[str], canonical: str) -> str | None:
    for stem in _STEMS.get(canonical, ()):
        for entry in taxonomy:
            if stem in entry.lower():
                return entry
    return None


def normalize_category(name: str | None, taxonomy: Sequence[str]) -> str | None:
    """Map ``name`` onto an entry of ``taxonomy``, or ``None`` when impossible.

    Resolution order: case-insensitive exact match, alias table, then the
    stems of the aliased (or given) default category.
    """

    if not name or not isinstance(name, str):
        return None
    cleaned = _clean(name)
    if not cleaned:
        return None
    hit = _exact(taxonomy, cleaned)
    if hit is not None:
        return hit
    canonical = _ALIASES.get(cleaned.lower(), _exact(DEFAULT_CATEGORIES, cleaned))
    if canonical is None:
        return None
    return _exact(taxonomy, canonical) or _by_stem(taxonomy, canonical)


def fallback_category(taxonomy: Sequence[str]) -> str:
    """``Other`` (any casing) when present, else the taxonomy's last entry."""

    if not taxonomy:
        return "Other"
    return _exact(taxonomy, "Other") or taxonomy[-1]


__all__ = [
    "DEFAULT_CATEGORIES",
    "fallback_category",
    "normalize_category",
    "resolve_taxonomy",
]
