"""Ordered registry of merchant receipt parsers."""

from __future__ import annotations

from ..logging_setup import get_logger
from .base import MerchantParse, ReceiptParser, TextSource
from .consum import ConsumParser
from .dia import DiaParser
from .mercadona import MercadonaParser

_logger = get_logger("financial_ingest.receipts.registry")

PARSERS: tuple[ReceiptParser, ...] = (MercadonaParser(), ConsumParser(), DiaParser())
"""Parsers in the order they are tried; the first whose ``can_parse`` accepts wins."""


def find_parser(text: str) -> ReceiptParser | None:
    """Return the first parser that recognizes ``text``, else ``None``."""

    for parser in PARSERS:
        if parser.can_parse(text):
            return parser
    return None


def try_parse_receipt_text(
    text: str, *, source: TextSource = "pdf"
) -> tuple[ReceiptParser | None, MerchantParse | None]:
    """Run the matching merchant parser over ``text``.

    Returns ``(None, None)`` when no parser recognizes the layout. Otherwise
    returns the parser and its :class:`MerchantParse`, whose ``ok`` flag
    tells whether the minimal-fields gate passed.
    """

    parser = find_parser(text)
    if parser is None:
        return None, None
    result = parser.try_parse(text, source=source)
    _logger.debug("receipt parser %s (source=%s) ok=%s", parser.name, source, result.ok)
    return parser, result


__all__ = ["PARSERS", "find_parser", "try_parse_receipt_text"]
