"""Transaction categorization engine.

Public API:
    - :func:`categorize_rows`

Per row, the first tier that resolves wins:

1. caller-supplied preference override (keyed by
   :func:`~financial_ingest.preferences.normalize_description_key`);
2. merchant pattern (highest priority among sign-compatible matches);
3. one batched AI call covering every row still unresolved;
4. ordered ``CATEGORY_RULES``;
5. keyword scoring over ``CATEGORY_KEYWORDS``;
6. the taxonomy fallback (``Other`` or its last entry).

Every category is resolved against the active taxonomy before it is emitted.
No side effects occur at import time.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import NamedTuple

from . import prompting
from .ai_client import AIRequestError, AIUnavailableError, complete_json
from .categories import fallback_category, normalize_category, resolve_taxonomy
from .categorization import parse_category_map
from .config import AISettings
from .logging_setup import get_logger
from .merchant_patterns import CATEGORY_KEYWORDS, CATEGORY_RULES, MERCHANT_PATTERNS
from .models import AmountSign, MerchantPattern, TransactionRow
from .preferences import extract_summary, merchant_key, normalize_description_key

# ---- Tunables (private) ------------------------------------------------------

_AI_DESCRIPTION_CHARS: int = 100
_LONG_KEYWORD_CHARS: int = 6

_logger = get_logger("financial_ingest.categorize")


class _Resolution(NamedTuple):
    category: str
    source: str


# ---- Internal helpers --------------------------------------------------------


def _sign_ok(sign: AmountSign, amount: float) -> bool:
    if sign == "positive":
        return amount > 0
    if sign == "negative":
        return amount <= 0
    return True


def _best_pattern(key: str, amount: float) -> MerchantPattern | None:
    best: MerchantPattern | None = None
    for mp in MERCHANT_PATTERNS:
        if not _sign_ok(mp.amount_sign, amount) or not mp.pattern.search(key):
            continue
        if best is None or mp.priority > best.priority:
            best = mp
    return best


def _by_rules(key: str, amount: float, taxonomy: Sequence[str]) -> str | None:
    # Padding lets rules like "bar " hit at the end of the text.
    padded = f" {key} "
    for rule in CATEGORY_RULES:
        if not _sign_ok(rule.amount_sign, amount):
            continue
        if rule.patterns and not any(p in padded for p in rule.patterns):
            continue
        resolved = normalize_category(rule.category, taxonomy)
        if resolved:
            return resolved
    return None


def _by_keywords(key: str, amount: float, taxonomy: Sequence[str]) -> str | None:
    best: str | None = None
    best_score = 0
    for rule in CATEGORY_KEYWORDS:
        if not _sign_ok(rule.amount_sign, amount):
            continue
        score = sum(2 if len(kw) >= _LONG_KEYWORD_CHARS else 1 for kw in rule.patterns if kw in key)
        if score <= best_score:
            continue
        resolved = normalize_category(rule.category, taxonomy)
        if resolved:
            best, best_score = resolved, score
    return best


def _classify_with_ai(
    rows: Sequence[TransactionRow],
    pending: Sequence[int],
    summaries: Sequence[str],
    taxonomy: Sequence[str],
    settings: AISettings,
) -> dict[int, str]:
    """Return ``{absolute_index: category}`` for whatever the model resolved."""

    items = [
        {
            "index": n,
            "description": summaries[abs_i] or rows[abs_i].description[:_AI_DESCRIPTION_CHARS],
            "amount": rows[abs_i].amount,
        }
        for n, abs_i in enumerate(pending)
    ]
    _logger.info("categorize_rows:ai_batch num_transactions=%d", len(items))
    try:
        resp = complete_json(
            system=prompting.build_categorize_system(taxonomy, num_items=len(items)),
            user=prompting.build_categorize_user(items),
            settings=settings,
            purpose="categorize",
        )
    except (AIUnavailableError, AIRequestError) as e:
        _logger.warning("categorize_rows:ai_failed error=%s", e)
        return {}
    mapped = parse_category_map(resp.data, taxonomy=taxonomy, num_items=len(items))
    _logger.info("categorize_rows:ai_done mapped=%d of=%d", len(mapped), len(items))
    return {pending[n]: cat for n, cat in mapped.items()}


# ---- Public API --------------------------------------------------------------


def categorize_rows(
    rows: Sequence[TransactionRow],
    categories: Sequence[str] | None = None,
    *,
    preferences_by_key: Mapping[str, str] | None = None,
    settings: AISettings | None = None,
    use_ai: bool = True,
) -> list[TransactionRow]:
    """Return copies of ``rows`` with ``category`` and ``summary`` filled in.

    Parameters
    ----------
    rows:
        Normalized transaction rows. They are not modified.
    categories:
        The workspace taxonomy; the default taxonomy when ``None`` or empty.
    preferences_by_key:
        ``{normalized description key: category}`` user overrides.
    settings:
        AI settings; read from the environment when ``None``.
    use_ai:
        When False, or when no API key is configured, the AI tier is skipped
        and the rule tiers resolve everything.
    """

    taxonomy = resolve_taxonomy(categories)
    prefs = preferences_by_key or {}
    summaries = [extract_summary(r.description) for r in rows]
    keys = [merchant_key(r.description) for r in rows]
    resolved: dict[int, _Resolution] = {}

    for i, row in enumerate(rows):
        pref = prefs.get(normalize_description_key(row.description))
        cat = normalize_category(pref, taxonomy) if pref else None
        if cat:
            resolved[i] = _Resolution(cat, "preference")
            continue
        mp = _best_pattern(keys[i], row.amount)
        cat = normalize_category(mp.category, taxonomy) if mp else None
        if cat:
            resolved[i] = _Resolution(cat, "pattern")

    pending = [i for i in range(len(rows)) if i not in resolved]
    if pending and use_ai:
        settings = settings or AISettings.from_env()
        if settings.is_available:
            for i, cat in _classify_with_ai(rows, pending, summaries, taxonomy, settings).items():
                resolved[i] = _Resolution(cat, "ai")

    fallback = fallback_category(taxonomy)
    out: list[TransactionRow] = []
    for i, row in enumerate(rows):
        res = resolved.get(i)
        if res is None:
            cat = _by_rules(keys[i], row.amount, taxonomy) or _by_keywords(keys[i], row.amount, taxonomy)
            res = _Resolution(cat, "rule") if cat else _Resolution(fallback, "fallback")
        out.append(replace(row, category=res.category, summary=summaries[i]))

    _logger.debug(
        "categorize_rows:done num_transactions=%d sources=%s",
        len(out),
        {s: sum(1 for r in resolved.values() if r.source == s) for s in ("preference", "pattern", "ai")},
    )
    return out


__all__ = ["categorize_rows"]
