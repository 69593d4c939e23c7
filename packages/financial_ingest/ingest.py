"""Upload/parse entrypoint and the receipt pipeline.

Public API:
    - :func:`ingest_document` (CSV, PDF statement, PDF/image receipt)
    - :func:`parse_receipt_file`
    - :class:`UnsupportedDocumentError`

Each document runs through one synchronous pipeline invocation; nothing is
shared between calls except the read-only rule tables, so callers may ingest
documents in parallel (see :mod:`financial_ingest.pmap`).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from pathlib import PurePath
from typing import Any, Literal, TypeAlias

from .ai_client import AIRequestError, AIUnavailableError
from .ai_fallback import (
    extract_receipt_image_with_ai,
    extract_receipt_with_ai,
    fix_problematic_rows,
    parse_csv_with_ai,
    parse_statement_text_with_ai,
    should_use_ai_fallback,
)
from .categorize import categorize_rows
from .config import AISettings
from .csv_rows import parse_csv_with_sources
from .document_kind import detect_document_kind
from .logging_setup import get_logger
from .models import (
    ExtractedReceipt,
    IngestResult,
    ParseDiagnostics,
    ReceiptParseMeta,
    ReceiptParseResult,
    ReceiptParseWarning,
    ReceiptValidation,
    TransactionRow,
)
from .ocr import OcrProvider, ocr_text_metrics, run_ocr_with_retry
from .pdf_text import extract_pdf_pages, measure_text_density
from .quality import (
    build_receipt_quality,
    build_statement_parse_quality,
    needs_repair,
    score_receipt_validation,
    validate_receipt,
)
from .receipts.base import TextSource
from .receipts.registry import try_parse_receipt_text
from .statement_pdf import StatementParseError, parse_statement_text

InputKind: TypeAlias = Literal["csv", "pdf", "image", "text"]

# ---- Tunables (private) ------------------------------------------------------

_CSV_MIME_TYPES: frozenset[str] = frozenset({"text/csv", "application/csv", "text/tab-separated-values"})
_CSV_SUFFIXES: frozenset[str] = frozenset({".csv", ".tsv"})
_IMAGE_SUFFIXES: frozenset[str] = frozenset({".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".tif", ".tiff"})
_AI_ERROR_CHARS: int = 100

_AGGRESSIVE_SCAN_WARNING = "Aggressive pattern scan used; amounts may be unreliable"

_logger = get_logger("financial_ingest.ingest")


class UnsupportedDocumentError(ValueError):
    """The MIME type / file name is neither CSV, PDF nor an image."""


# ---------------------------------------------------------------------------
# Input classification
# ---------------------------------------------------------------------------


def classify_input(mime_type: str | None, filename: str | None = None) -> InputKind | None:
    """Map a MIME type and file name to a pipeline, or ``None`` if unsupported."""

    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    suffix = PurePath(filename).suffix.lower() if filename else ""
    if mime in _CSV_MIME_TYPES or suffix in _CSV_SUFFIXES:
        return "csv"
    if mime == "application/pdf" or suffix == ".pdf":
        return "pdf"
    if mime.startswith("image/") or suffix in _IMAGE_SUFFIXES:
        return "image"
    if mime == "text/plain":
        return "text"
    return None


def decode_text(data: bytes) -> str:
    """UTF-8 (BOM tolerated), falling back to Latin-1."""

    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


# ---------------------------------------------------------------------------
# Receipt pipeline
# ---------------------------------------------------------------------------


class _Warnings:
    """Receipt warnings, de-duplicated by code, in insertion order."""

    def __init__(self) -> None:
        self._by_code: dict[str, ReceiptParseWarning] = {}

    def add(self, code: str, message: str) -> None:
        self._by_code.setdefault(code, ReceiptParseWarning(code=code, message=message))

    def __len__(self) -> int:
        return len(self._by_code)

    def as_tuple(self) -> tuple[ReceiptParseWarning, ...]:
        return tuple(self._by_code.values())


@dataclass(frozen=True, slots=True)
class _Candidate:
    extracted: ExtractedReceipt
    raw_text: str
    validation: ReceiptValidation
    score: int
    is_primary: bool
    deterministic: bool
    method: str
    merchant: str | None
    repair_used: bool = False


@dataclass(slots=True)
class _ReceiptContext:
    settings: AISettings
    categories: Sequence[str] | None
    file_name: str | None
    use_ai: bool
    warnings: _Warnings


def _candidate(
    extracted: ExtractedReceipt,
    raw_text: str,
    *,
    is_primary: bool,
    deterministic: bool,
    method: str,
    merchant: str | None,
    repair_used: bool = False,
) -> _Candidate:
    validation = validate_receipt(extracted)
    return _Candidate(
        extracted=extracted,
        raw_text=raw_text,
        validation=validation,
        score=score_receipt_validation(validation),
        is_primary=is_primary,
        deterministic=deterministic,
        method=method,
        merchant=merchant,
        repair_used=repair_used,
    )


def _ai_extract(ctx: _ReceiptContext, text: str) -> ExtractedReceipt | None:
    try:
        extracted, _ = extract_receipt_with_ai(
            text, categories=ctx.categories, file_name=ctx.file_name, settings=ctx.settings
        )
    except (AIUnavailableError, AIRequestError, ValueError) as e:
        _logger.warning("receipt:ai_failed error=%s", e)
        ctx.warnings.add("AI_FAILED", f"AI extraction failed: {str(e)[:_AI_ERROR_CHARS]}")
        return None
    return extracted


def _build_candidate(
    ctx: _ReceiptContext, text: str, *, source: TextSource, is_primary: bool
) -> _Candidate | None:
    """Deterministic parser first; AI when it fails; AI repair when it is weak."""

    parser, parsed = try_parse_receipt_text(text, source=source)
    merchant = parser.name if parser else None
    if parsed is not None and parsed.ok and parsed.extracted is not None:
        best = _candidate(
            parsed.extracted,
            parsed.raw_text,
            is_primary=is_primary,
            deterministic=True,
            method=f"{merchant}_deterministic",
            merchant=merchant,
        )
        if needs_repair(best.validation) and ctx.use_ai:
            repaired = _ai_extract(ctx, text)
            if repaired is not None:
                alt = _candidate(
                    repaired,
                    text,
                    is_primary=is_primary,
                    deterministic=False,
                    method="ai_fallback",
                    merchant=merchant,
                    repair_used=True,
                )
                if alt.score > best.score:
                    best = alt
        return best

    if parser is not None:
        ctx.warnings.add(
            "DETERMINISTIC_FAILED",
            f"{parser.name} receipt detected but the deterministic parser could not validate it.",
        )
    if not ctx.use_ai:
        return None
    extracted = _ai_extract(ctx, text)
    if extracted is None:
        return None
    return _candidate(
        extracted,
        text,
        is_primary=is_primary,
        deterministic=False,
        method="ai_fallback" if merchant else "ai_only",
        merchant=merchant,
    )


def _pick_best(candidates: Sequence[_Candidate]) -> _Candidate | None:
    if not candidates:
        return None
    return max(candidates, key=lambda c: (c.score, c.is_primary, c.deterministic))


def _add_validation_warnings(warnings: _Warnings, validation: ReceiptValidation) -> None:
    if validation.missing_line_items:
        warnings.add("MISSING_LINE_ITEMS", "Line items look incomplete compared to the receipt total.")
    if validation.total_mismatch:
        warnings.add("TOTAL_MISMATCH", "Line item totals do not match the receipt total.")
    if validation.line_item_mismatch_count > 0:
        warnings.add("LINE_ITEM_MISMATCH", "Some line items have inconsistent quantity or unit pricing.")


def _finish(
    ctx: _ReceiptContext,
    *,
    input_kind: Literal["pdf", "image", "text", "unknown"],
    raw_text: str,
    best: _Candidate | None,
    low_text_density: bool = False,
    ocr_used: bool = False,
    repair_attempted: bool = False,
    secondary_source: Literal["ocr", "pdf_text"] | None = None,
) -> ReceiptParseResult:
    validation = best.validation if best else None
    if validation is not None:
        _add_validation_warnings(ctx.warnings, validation)

    repair_source: Literal["ai", "ocr", "pdf_text"] | None = None
    repair_used = False
    if best is not None and not best.is_primary:
        repair_used, repair_source = True, secondary_source
    elif best is not None and best.repair_used:
        repair_used, repair_source = True, "ai"

    quality = build_receipt_quality(
        validation,
        low_text_density=low_text_density,
        ocr_used=ocr_used,
        warning_count=len(ctx.warnings),
    )
    meta = ReceiptParseMeta(
        input_kind=input_kind,
        merchant_detected=best.merchant if best else None,
        extraction_method=best.method if best else None,
        ocr_used=ocr_used,
        low_text_density=low_text_density,
        repair_attempted=repair_attempted,
        repair_used=repair_used,
        repair_source=repair_source,
        quality=quality,
    )
    _logger.info(
        "receipt:done input=%s method=%s score=%s warnings=%d",
        input_kind,
        meta.extraction_method,
        best.score if best else None,
        len(ctx.warnings),
    )
    return ReceiptParseResult(
        extracted=best.extracted if best else None,
        raw_text=best.raw_text if best else raw_text,
        warnings=ctx.warnings.as_tuple(),
        meta=meta,
        validation=validation,
    )


def _not_a_receipt(ctx: _ReceiptContext, text: str) -> bool:
    if detect_document_kind(text).kind != "statement":
        return False
    ctx.warnings.add(
        "NOT_A_RECEIPT",
        "This file looks like a bank statement, not a receipt. Please upload it to the Analytics page.",
    )
    return True


def _receipt_from_pdf(
    ctx: _ReceiptContext, data: bytes, pages: Sequence[str], ocr: OcrProvider | None
) -> ReceiptParseResult:
    pdf_text = "\n".join(pages).strip()
    density = measure_text_density(pages)
    ocr_text = ""
    ocr_used = False

    if density.low:
        ctx.warnings.add("LOW_TEXT_DENSITY", "PDF text layer is sparse; the document may be a scan.")
        if ocr is not None:
            try:
                text, retried = run_ocr_with_retry(ocr, data, "application/pdf")
            except Exception as e:  # noqa: BLE001
                _logger.warning("receipt:pdf_ocr_failed error=%s", e)
                ctx.warnings.add(
                    "OCR_FAILED", "PDF OCR fallback failed. Please try a clearer scan or upload a photo."
                )
            else:
                ocr_text = text.strip()
                if ocr_text_metrics(ocr_text).usable:
                    ocr_used = True
                    ctx.warnings.add("PDF_OCR_USED", "Used OCR because the PDF text layer was sparse.")
                    if retried:
                        ctx.warnings.add("OCR_RETRY_USED", "OCR needed a second pass to read the document.")

    if ocr_used:
        primary, primary_source = ocr_text, "ocr"
        secondary, secondary_source = pdf_text, "pdf_text"
    else:
        primary, primary_source = pdf_text, "pdf"
        secondary, secondary_source = ocr_text, "ocr"

    finish_kwargs: dict[str, Any] = {
        "input_kind": "pdf",
        "low_text_density": density.low,
        "ocr_used": ocr_used,
    }
    if not primary and not secondary:
        ctx.warnings.add("OCR_FAILED", "PDF appears to be empty or unreadable.")
        return _finish(ctx, raw_text="", best=None, **finish_kwargs)
    if _not_a_receipt(ctx, primary or secondary):
        return _finish(ctx, raw_text=primary or secondary, best=None, **finish_kwargs)

    candidates: list[_Candidate] = []
    first = _build_candidate(ctx, primary, source=primary_source, is_primary=True) if primary else None
    if first is not None:
        candidates.append(first)

    repair_attempted = False
    if secondary and secondary != primary and (first is None or needs_repair(first.validation)):
        repair_attempted = True
        source: TextSource = "ocr" if secondary_source == "ocr" else "pdf"
        second = _build_candidate(ctx, secondary, source=source, is_primary=False)
        if second is not None:
            candidates.append(second)

    return _finish(
        ctx,
        raw_text=primary or secondary,
        best=_pick_best(candidates),
        repair_attempted=repair_attempted,
        secondary_source=secondary_source,
        **finish_kwargs,
    )


def _receipt_from_image(
    ctx: _ReceiptContext, data: bytes, mime_type: str, ocr: OcrProvider | None
) -> ReceiptParseResult:
    text = ""
    if ocr is not None:
        try:
            text, retried = run_ocr_with_retry(ocr, data, mime_type)
        except Exception as e:  # noqa: BLE001
            _logger.warning("receipt:image_ocr_failed error=%s", e)
        else:
            text = text.strip()
            if retried:
                ctx.warnings.add("OCR_RETRY_USED", "OCR needed a second pass to read the image.")
            if text and not ocr_text_metrics(text).usable:
                ctx.warnings.add("LOW_TEXT_DENSITY", "OCR text is sparse; results may be incomplete.")

    if not text:
        ctx.warnings.add(
            "OCR_FAILED", "Could not read the receipt image (OCR failed). Trying AI vision extraction..."
        )
        best: _Candidate | None = None
        if ctx.use_ai:
            try:
                extracted, _ = extract_receipt_image_with_ai(
                    data,
                    mime_type,
                    categories=ctx.categories,
                    file_name=ctx.file_name,
                    settings=ctx.settings,
                )
            except (AIUnavailableError, AIRequestError, ValueError) as e:
                ctx.warnings.add("AI_FAILED", f"AI extraction failed: {str(e)[:_AI_ERROR_CHARS]}")
            else:
                best = _candidate(
                    extracted, "", is_primary=True, deterministic=False, method="ai_only", merchant=None
                )
        return _finish(ctx, input_kind="image", raw_text="", best=best)

    if _not_a_receipt(ctx, text):
        return _finish(ctx, input_kind="image", raw_text=text, best=None, ocr_used=True)
    best = _build_candidate(ctx, text, source="ocr", is_primary=True)
    return _finish(ctx, input_kind="image", raw_text=text, best=best, ocr_used=True)


def parse_receipt_file(
    data: bytes,
    mime_type: str,
    *,
    ocr: OcrProvider | None = None,
    pdf_pages: Sequence[str] | None = None,
    categories: Sequence[str] | None = None,
    file_name: str | None = None,
    settings: AISettings | None = None,
    use_ai: bool = True,
) -> ReceiptParseResult:
    """Extract a receipt from a PDF, an image, or plain text.

    Parameters
    ----------
    data:
        Raw file bytes.
    mime_type:
        ``application/pdf``, ``image/*`` or ``text/plain``; anything else
        yields an ``OCR_FAILED`` warning and no extraction.
    ocr:
        OCR provider for images and sparse PDFs. Without one, images go
        straight to AI vision extraction.
    pdf_pages:
        Pre-extracted page texts; read from ``data`` with pdfplumber when
        omitted.
    categories:
        Category hint list passed to the AI prompt.
    use_ai:
        When False, no AI tier runs.

    Returns
    -------
    ReceiptParseResult
        Never raises for unreadable input; problems surface as warnings.
    """

    ctx = _ReceiptContext(
        settings=settings or AISettings.from_env(),
        categories=categories,
        file_name=file_name,
        use_ai=use_ai,
        warnings=_Warnings(),
    )
    kind = classify_input(mime_type, None)
    if kind == "pdf":
        pages = list(pdf_pages) if pdf_pages is not None else extract_pdf_pages(data)
        return _receipt_from_pdf(ctx, data, pages, ocr)
    if kind == "image":
        return _receipt_from_image(ctx, data, mime_type, ocr)
    if kind == "text":
        text = decode_text(data).strip()
        if not text:
            ctx.warnings.add("OCR_FAILED", "Receipt text is empty.")
            return _finish(ctx, input_kind="text", raw_text="", best=None)
        if _not_a_receipt(ctx, text):
            return _finish(ctx, input_kind="text", raw_text=text, best=None)
        best = _build_candidate(ctx, text, source="pdf", is_primary=True)
        return _finish(ctx, input_kind="text", raw_text=text, best=best)

    ctx.warnings.add("OCR_FAILED", f"Unsupported file type: {mime_type}. Please upload a PDF or image file.")
    return _finish(ctx, input_kind="unknown", raw_text="", best=None)


# ---------------------------------------------------------------------------
# CSV and statements
# ---------------------------------------------------------------------------


def _ingest_csv(
    text: str,
    *,
    filename: str | None,
    settings: AISettings,
    use_ai: bool,
) -> tuple[list[TransactionRow], ParseDiagnostics]:
    rows, diagnostics, sources = parse_csv_with_sources(text)
    diagnostics.strategy_tier = 1
    original_count = diagnostics.total_rows_in_file or sum(1 for ln in text.splitlines() if ln.strip())
    decision = should_use_ai_fallback(rows, original_count, diagnostics.invalid_date_count)

    if decision.should_use:
        _logger.info("csv:ai_escalation reason=%s", decision.reason)
        if not use_ai:
            diagnostics.warnings.append(f"AI fallback skipped: {decision.reason}")
            return rows, diagnostics
        ai = parse_csv_with_ai(text, file_name=filename, settings=settings)
        diagnostics.ai = {"trigger": decision.reason, **ai.diagnostics.to_dict()}
        if ai.rows:
            diagnostics.parse_mode = "ai"
            diagnostics.strategy_tier = "ai"
            diagnostics.rows_after_filtering = len(ai.rows)
            diagnostics.invalid_date_count = sum(1 for r in ai.rows if not r.date)
            return list(ai.rows), diagnostics
        diagnostics.warnings.append(f"AI fallback failed: {ai.diagnostics.reason}")
        return rows, diagnostics

    problematic = [i for i, r in enumerate(rows) if not r.date]
    if problematic and use_ai and settings.is_available:
        rows = fix_problematic_rows(rows, problematic, sources, settings=settings)
    return rows, diagnostics


def _ingest_statement(
    text: str, *, settings: AISettings, use_ai: bool
) -> tuple[list[TransactionRow], ParseDiagnostics]:
    diagnostics = ParseDiagnostics()
    try:
        parsed = parse_statement_text(text)
    except StatementParseError as e:
        if not (use_ai and settings.is_available):
            raise
        ai = parse_statement_text_with_ai(text, settings=settings)
        if not ai.rows:
            raise
        _logger.info("statement:ai_rescue rows=%d after=%s", len(ai.rows), e.__class__.__name__)
        rows = list(ai.rows)
        diagnostics.parse_mode = "ai"
        diagnostics.strategy_tier = "ai"
        diagnostics.ai = ai.diagnostics.to_dict()
    else:
        rows = parsed.rows
        diagnostics.strategy_tier = parsed.strategy_tier  # type: ignore[assignment]
        if parsed.strategy_tier == 3:
            diagnostics.warnings.append(_AGGRESSIVE_SCAN_WARNING)

    diagnostics.total_rows_in_file = len(rows)
    diagnostics.rows_after_preprocess = len(rows)
    diagnostics.rows_after_filtering = len(rows)
    diagnostics.invalid_date_count = sum(1 for r in rows if not r.date)
    return rows, diagnostics


def _receipt_ingest_result(result: ReceiptParseResult) -> IngestResult:
    meta: dict[str, Any] = {k: v for k, v in asdict(result.meta).items() if k != "quality"}
    meta["warning_codes"] = [w.code for w in result.warnings]
    if result.validation is not None:
        meta["validation"] = asdict(result.validation)
    return IngestResult(
        kind="receipt",
        extracted=result.extracted,
        warnings=tuple(w.message for w in result.warnings),
        meta=meta,
        quality=result.meta.quality,
    )


def ingest_document(
    data: bytes,
    mime_type: str,
    filename: str | None = None,
    allowed_categories: Sequence[str] | None = None,
    *,
    preferences_by_key: Mapping[str, str] | None = None,
    ocr: OcrProvider | None = None,
    use_ai: bool = True,
    settings: AISettings | None = None,
) -> IngestResult:
    """Parse an uploaded file into canonical rows or an extracted receipt.

    CSV files are parsed deterministically and escalated to AI when the
    output looks broken. PDFs are classified first: receipts go through
    :func:`parse_receipt_file`, everything else through the statement
    parser. Images are always receipts. Rows are categorized and scored.

    Raises
    ------
    UnsupportedDocumentError
        For inputs that are neither CSV, PDF, image nor plain text.
    StatementParseError
        When a statement PDF yields no rows and no AI tier rescued it.
    """

    settings = settings or AISettings.from_env()
    kind = classify_input(mime_type, filename)
    _logger.info("ingest:start file=%s mime=%s kind=%s", filename, mime_type, kind)
    if kind is None:
        raise UnsupportedDocumentError(f"Unsupported file type: {mime_type}")

    if kind == "image":
        return _receipt_ingest_result(
            parse_receipt_file(
                data,
                mime_type,
                ocr=ocr,
                categories=allowed_categories,
                file_name=filename,
                settings=settings,
                use_ai=use_ai,
            )
        )

    doc: Literal["csv", "statement"]
    if kind == "pdf":
        pages = extract_pdf_pages(data)
        text = "\n".join(pages)
        if detect_document_kind(text).kind == "receipt":
            return _receipt_ingest_result(
                parse_receipt_file(
                    data,
                    "application/pdf",
                    ocr=ocr,
                    pdf_pages=pages,
                    categories=allowed_categories,
                    file_name=filename,
                    settings=settings,
                    use_ai=use_ai,
                )
            )
        doc = "statement"
        rows, diagnostics = _ingest_statement(text, settings=settings, use_ai=use_ai)
    else:
        # Plain text is treated as CSV content.
        doc = "csv"
        rows, diagnostics = _ingest_csv(decode_text(data), filename=filename, settings=settings, use_ai=use_ai)

    if rows:
        rows = categorize_rows(
            rows,
            allowed_categories,
            preferences_by_key=preferences_by_key,
            settings=settings,
            use_ai=use_ai,
        )
    quality = build_statement_parse_quality(rows, diagnostics)
    return IngestResult(
        kind=doc,
        rows=tuple(rows),
        diagnostics=diagnostics,
        warnings=tuple(diagnostics.warnings),
        meta={
            "file_name": filename,
            "mime_type": mime_type,
            "parse_mode": diagnostics.parse_mode,
            "strategy_tier": diagnostics.strategy_tier,
        },
        quality=quality,
    )


__all__ = [
    "UnsupportedDocumentError",
    "classify_input",
    "decode_text",
    "ingest_document",
    "parse_receipt_file",
]
