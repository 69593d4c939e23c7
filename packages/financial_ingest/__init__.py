"""Public interface for the ``financial_ingest`` package.

Symbol re-exports only; no runtime logic, no client creation and no logging
handler attachment at import time.
"""

from .ai_fallback import (
    ai_parse_csv,
    fix_problematic_rows,
    parse_csv_with_ai,
    should_use_ai_fallback,
)
from .categorize import categorize_rows
from .csv_rows import parse_csv_to_rows, rows_to_canonical_csv
from .document_kind import detect_document_kind
from .ingest import UnsupportedDocumentError, ingest_document, parse_receipt_file
from .models import (
    ExtractedReceipt,
    IngestResult,
    ParseDiagnostics,
    ParseQualitySummary,
    ReceiptItem,
    ReceiptParseResult,
    TransactionRow,
)
from .quality import build_statement_parse_quality
from .statement_pdf import StatementParseError, parse_statement_text

__all__ = [
    # API
    "ai_parse_csv",
    "build_statement_parse_quality",
    "categorize_rows",
    "detect_document_kind",
    "fix_problematic_rows",
    "ingest_document",
    "parse_csv_to_rows",
    "parse_csv_with_ai",
    "parse_receipt_file",
    "parse_statement_text",
    "rows_to_canonical_csv",
    "should_use_ai_fallback",
    # Errors
    "StatementParseError",
    "UnsupportedDocumentError",
    # Models / types
    "ExtractedReceipt",
    "IngestResult",
    "ParseDiagnostics",
    "ParseQualitySummary",
    "ReceiptItem",
    "ReceiptParseResult",
    "TransactionRow",
]
