"""Cleanup of common OCR misreads in receipt text.

Fixes are conservative and only touch numeric contexts: letter ``O`` read
for the digit ``0``, a leading ``l`` read for a quantity of ``1``, stray
spaces around decimal separators, and ``E``/``EUR`` printed where the euro
sign was. Never apply this to text coming from a PDF text layer.
"""

from __future__ import annotations

import re

_HSPACE_RE = re.compile(r"[ \t]+")
_TOTAL_E_RE = re.compile(r"TOTAL[ \t]*\([ \t]*E[ \t]*\)", re.IGNORECASE)
_EUR_SUFFIX_RE = re.compile(r"(\d[.,]\d{2})[ \t]*EUR\b")
_O_BETWEEN_DIGITS_RE = re.compile(r"(\d)O(\d)")
_O_BEFORE_SEPARATOR_RE = re.compile(r"(\d)O([.,])")
_O_BEFORE_DIGIT_RE = re.compile(r"O(\d)")
_LEADING_L_QTY_RE = re.compile(r"^l[ \t]+", re.MULTILINE)
_SPACED_COMMA_RE = re.compile(r"(\d)[ \t]*,[ \t]*(\d)")
_SPACED_DOT_RE = re.compile(r"(\d)[ \t]*\.[ \t]*(\d)")


def normalize_ocr_text(text: str, *, currency_fixes: bool = True) -> str:
    """Return ``text`` with OCR artifacts corrected.

    Parameters
    ----------
    text:
        Raw OCR output.
    currency_fixes:
        Rewrite ``TOTAL (E)`` to ``TOTAL (€)`` and ``12,34 EUR`` to
        ``12,34 €``. Layouts that never print the euro sign next to totals
        turn this off.
    """

    out = _HSPACE_RE.sub(" ", text)
    out = out.replace("\r\n", "\n").replace("\r", "\n")
    if currency_fixes:
        out = _TOTAL_E_RE.sub("TOTAL (€)", out)
        out = _EUR_SUFFIX_RE.sub(r"\1 €", out)
    out = _O_BETWEEN_DIGITS_RE.sub(r"\g<1>0\2", out)
    out = _O_BEFORE_SEPARATOR_RE.sub(r"\g<1>0\2", out)
    out = _O_BEFORE_DIGIT_RE.sub(r"0\1", out)
    out = _LEADING_L_QTY_RE.sub("1 ", out)
    out = _SPACED_COMMA_RE.sub(r"\1,\2", out)
    out = _SPACED_DOT_RE.sub(r"\1.\2", out)
    return "\n".join(line.strip() for line in out.split("\n"))


__all__ = ["normalize_ocr_text"]
