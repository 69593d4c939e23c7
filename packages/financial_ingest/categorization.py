"""Parsing of the AI category-map response.

The model is asked for ``{"map": [{"index": 0, "category": "..."}]}``; the
alternate top-level keys ``categories`` and ``results`` (or a bare list) are
tolerated, as are the short field names ``i``/``id`` and ``cat``/``c``.
Entries that do not validate are skipped rather than failing the batch; the
engine falls through to its heuristics for any index left unmapped.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

# Pydantic keeps the per-entry shape checks declarative.
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .categories import normalize_category
from .logging_setup import get_logger

_MAP_KEYS: tuple[str, ...] = ("map", "categories", "results")

_logger = get_logger("financial_ingest.categorization")


class _MapEntry(BaseModel):
    """One ``{index, category}`` pair.

    ``ValidationInfo.context`` supplies:
      - ``taxonomy``: the active category list; categories are normalized
        against it and entries that cannot be mapped fail validation.
      - ``num_items``: optional upper bound for ``index``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    index: int = Field(validation_alias=AliasChoices("index", "i", "id", "idx"))
    category: str = Field(validation_alias=AliasChoices("category", "cat", "c"))

    @field_validator("index")
    @classmethod
    def _index_in_range(cls, v: int, info: ValidationInfo) -> int:
        num_items = info.context.get("num_items") if info.context else None
        if v < 0 or (isinstance(num_items, int) and v >= num_items):
            raise ValueError(f"index out of range: {v}")
        return v

    @field_validator("category")
    @classmethod
    def _category_in_taxonomy(cls, v: str, info: ValidationInfo) -> str:
        taxonomy = info.context.get("taxonomy") if info.context else None
        if not taxonomy:
            return v
        resolved = normalize_category(v, taxonomy)
        if resolved is None:
            raise ValueError(f"category not in taxonomy: {v!r}")
        return resolved


def _entries(body: Mapping[str, Any] | Sequence[Any]) -> list[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, Mapping):
        for key in _MAP_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
    return []


def parse_category_map(
    body: Mapping[str, Any] | Sequence[Any],
    *,
    taxonomy: Sequence[str],
    num_items: int | None = None,
) -> dict[int, str]:
    """Return ``{index: category}`` from a category-map response.

    Categories are normalized against ``taxonomy``; entries with unknown
    categories, out-of-range or non-integer indices are dropped. The first
    entry for a duplicated index wins.
    """

    context = {"taxonomy": tuple(taxonomy), "num_items": num_items}
    out: dict[int, str] = {}
    skipped = 0
    for raw in _entries(body):
        if not isinstance(raw, Mapping):
            skipped += 1
            continue
        try:
            entry = _MapEntry.model_validate(raw, context=context)
        except ValidationError:
            skipped += 1
            continue
        out.setdefault(entry.index, entry.category)
    if skipped:
        _logger.debug("category map: skipped %d invalid entries", skipped)
    return out


__all__ = ["parse_category_map"]
