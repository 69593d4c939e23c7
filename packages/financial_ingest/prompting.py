"""Prompt construction for every AI task in the package.

Each task has a ``build_*_system`` function returning the instructions (the
output JSON schema plus the business rules) and, where the user content is
more than the raw document, a ``build_*_user`` function. Prompts are plain
strings so tests can assert on them directly.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

TRUNCATION_NOTE = "\n\nNOTE: The file was truncated. There are more rows in the original file."

_AMOUNT_RULES = (
    "   - Negative amounts are expenses/debits (money going out)\n"
    "   - Positive amounts are income/credits (money coming in)\n"
    "   - Handle European format (1.234,56) and US format (1,234.56)\n"
    "   - Remove currency symbols (€, $, £, etc.)"
)


def build_csv_parse_system() -> str:
    """Instructions for the CSV rescue tier (``{"transactions": [...]}``)."""

    return f"""You are an expert CSV/bank statement parser. Your job is to extract transaction data from messy, malformed, or unusual CSV files that standard parsers fail to handle.

TASK: Parse the provided CSV content and extract transactions.

EXPECTED OUTPUT FORMAT (JSON only):
{{
  "transactions": [
    {{
      "date": "YYYY-MM-DD",
      "time": "HH:MM" or null,
      "description": "merchant/transaction description",
      "amount": -123.45,
      "balance": 1000.00 or null
    }}
  ],
  "notes": "Optional notes about the parsing"
}}

PARSING RULES:
1. DATE: Convert any date format to ISO YYYY-MM-DD
   - Handle M/D/YYYY, D/M/YYYY, DD.MM.YYYY, YYYY-MM-DD, etc.
   - If you see dates like "8/31/2024 12:57", extract both date AND time
   - Be smart about ambiguous dates (8/5/2024 could be Aug 5 or May 8 - use context)
2. TIME: Extract time if present, otherwise set to null
3. AMOUNT:
{_AMOUNT_RULES}
4. DESCRIPTION: Extract the merchant/transaction description
   - This is typically the longest text field
   - Clean up excessive codes or reference numbers
5. BALANCE: Extract if available, otherwise set to null
6. HANDLE EDGE CASES:
   - Skip header rows and metadata
   - Handle files with multiple date columns (use the first relevant one)
   - Handle semicolon, tab, or other delimiters
   - Ignore rows that are clearly not transactions

RETURN ONLY VALID JSON. Do not include any explanation text outside the JSON."""


def build_csv_parse_user(content: str, *, file_name: str | None = None, truncated: bool = False) -> str:
    label = f'file "{file_name}"' if file_name else "CSV content"
    note = TRUNCATION_NOTE if truncated else ""
    return f"Parse this {label}:{note}\n\n```csv\n{content}\n```"


def build_csv_categorized_system(categories: Sequence[str], *, user_context: str | None = None) -> str:
    """Instructions for the one-shot parse-and-categorize tier.

    Output adds ``confidence`` (0-100) and ``suggestions`` next to the
    ``transactions`` array.
    """

    context_line = f"\nUSER CONTEXT: {user_context}\n" if user_context else ""
    return f"""You are an expert financial data parser. Your job is to extract transaction data from CSV files that may have non-standard formats.

TASK: Parse the provided CSV content and extract transactions with the following fields:
- date: ISO format YYYY-MM-DD (e.g., "2024-12-15")
- description: Clean transaction description
- amount: Numeric value (negative for expenses, positive for income)
- category: One of: {", ".join(categories)}

RULES:
1. Dates can be in ANY format - detect and convert to YYYY-MM-DD
2. Handle European formats (DD/MM/YYYY, DD.MM.YYYY, etc.)
3. Amounts may use comma as decimal separator
4. Negative amounts indicate expenses
5. Skip header rows and any summary/total rows
6. Clean up descriptions (remove reference numbers, extra codes)
7. Use "Other" only if the category is truly ambiguous
{context_line}
RESPONSE FORMAT - Return ONLY valid JSON:
{{
  "transactions": [
    {{"date": "YYYY-MM-DD", "description": "Clean description", "amount": -123.45, "category": "Category"}}
  ],
  "confidence": 85,
  "suggestions": "Any notes or suggestions for the user"
}}"""


def build_row_fix_system() -> str:
    """Instructions for repairing individual rows (``{"fixes": [...]}``)."""

    return """You are fixing malformed transaction data. For each row, extract the correct date, description, amount, and balance.

Return JSON:
{
  "fixes": [
    {
      "index": 0,
      "date": "YYYY-MM-DD",
      "time": "HH:MM" or null,
      "description": "...",
      "amount": -123.45,
      "balance": 1000.00 or null
    }
  ]
}

Focus on:
1. Properly parsing dates with times (e.g., "8/31/2024 12:57")
2. Handling European vs US date formats
3. Extracting amounts correctly (negative for expenses)"""


def build_row_fix_user(items: Sequence[Mapping[str, Any]]) -> str:
    return json.dumps(list(items), ensure_ascii=False)


def build_statement_system() -> str:
    """Instructions for bank statement text whose deterministic tiers failed."""

    return f"""You extract transactions from the text layer of a bank statement PDF. The text may have lost its column layout.

EXPECTED OUTPUT FORMAT (JSON only):
{{
  "transactions": [
    {{"date": "YYYY-MM-DD", "description": "...", "amount": -123.45, "balance": 1000.00 or null}}
  ]
}}

RULES:
1. DATE: ISO YYYY-MM-DD. Spanish month abbreviations (ene, feb, mar, abr, may, jun, jul, ago, sep, oct, nov, dic) are common; day-first is the default.
2. AMOUNT:
{_AMOUNT_RULES}
   - A running balance column is NOT the transaction amount.
3. Skip opening/closing balance lines, page headers and totals.
4. Never invent transactions that are not in the text.

RETURN ONLY VALID JSON."""


def build_statement_user(text: str, *, truncated: bool = False) -> str:
    note = TRUNCATION_NOTE if truncated else ""
    return f"Statement text:{note}\n\n```\n{text}\n```"


def build_receipt_system(categories: Sequence[str] | None = None) -> str:
    """Instructions for receipt extraction from OCR or PDF text."""

    allowed = list(categories) if categories else ["Other"]
    return "\n".join(
        [
            "You extract structured data from the text of a grocery store receipt.",
            "Return ONLY valid JSON (no markdown, no code fences).",
            "",
            "Rules:",
            "- receipt_date must be YYYY-MM-DD.",
            "- receipt_time must be HH:MM or HH:MM:SS (24h).",
            "- All money values must be numbers (use . as decimal separator).",
            "- taxes_total_cuota is the sum of the VAT amount (cuota) column, or null.",
            "- Discounts are items with a negative total_price.",
            f"- For item.category, choose exactly one from this list: {', '.join(allowed)}.",
            '- If you are unsure, choose "Other" instead of guessing.',
            "",
            "JSON schema to return:",
            "{",
            '  "store_name": string | null,',
            '  "receipt_date": "YYYY-MM-DD" | null,',
            '  "receipt_time": "HH:MM:SS" | null,',
            '  "currency": string | null,',
            '  "total_amount": number | null,',
            '  "taxes_total_cuota": number | null,',
            '  "items": [',
            "    {",
            '      "description": string,',
            '      "quantity": number,',
            '      "price_per_unit": number,',
            '      "total_price": number,',
            '      "category": string',
            "    }",
            "  ]",
            "}",
        ]
    )


def build_receipt_user(text: str, *, file_name: str | None = None) -> str:
    header = f"Receipt file name: {file_name}\n\n" if file_name else ""
    return f"{header}Receipt text:\n```\n{text}\n```"


def build_receipt_image_user(*, file_name: str | None = None) -> str:
    header = f"Receipt file name: {file_name}\n\n" if file_name else ""
    return f"{header}Extract the receipt shown in the attached image."


def build_categorize_system(categories: Sequence[str], *, num_items: int) -> str:
    """Instructions for the batch classifier (``{"map": [{index, category}]}``)."""

    return f"""You are an expert financial transaction classifier. Analyze each transaction and assign the most appropriate category.

AVAILABLE CATEGORIES:
{", ".join(categories)}

CLASSIFICATION RULES:
1. Positive amounts are usually Income or Transfers IN
2. Negative amounts are expenses in various categories
3. Look for merchant names, keywords, and spending patterns
4. "Other" should only be used when truly ambiguous
5. Spanish/European merchants are common (Mercadona=Groceries, Mapfre=Insurance, etc.)

RESPONSE FORMAT - Return ONLY valid JSON:
{{
  "map": [
    {{"index": 0, "category": "CategoryName"}},
    {{"index": 1, "category": "CategoryName"}}
  ]
}}

You MUST include ALL {num_items} transactions. Each entry needs:
- "index": exact index from input
- "category": one of the exact categories listed above"""


def build_categorize_user(items: Sequence[Mapping[str, Any]]) -> str:
    return json.dumps(list(items), ensure_ascii=False)


__all__ = [
    "TRUNCATION_NOTE",
    "build_categorize_system",
    "build_categorize_user",
    "build_csv_categorized_system",
    "build_csv_parse_system",
    "build_csv_parse_user",
    "build_receipt_image_user",
    "build_receipt_system",
    "build_receipt_user",
    "build_row_fix_system",
    "build_row_fix_user",
    "build_statement_system",
    "build_statement_user",
]
