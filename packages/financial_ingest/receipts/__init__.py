"""Deterministic, merchant-specific receipt text parsers.

Each parser recognizes one retailer's receipt layout (PDF text layer or OCR
output) and extracts header fields plus line items. The registry tries them
in a fixed order; see :func:`financial_ingest.receipts.registry.find_parser`.
"""

from .base import MerchantParse, MerchantReceiptParser, ReceiptParser, TextSource
from .registry import PARSERS, find_parser, try_parse_receipt_text

__all__ = [
    "PARSERS",
    "MerchantParse",
    "MerchantReceiptParser",
    "ReceiptParser",
    "TextSource",
    "find_parser",
    "try_parse_receipt_text",
]
