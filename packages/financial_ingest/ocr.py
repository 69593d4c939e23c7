"""OCR provider protocol and the Tesseract adapter.

The pipeline only talks to :class:`OcrProvider`; tests pass small stubs and
deployments pass :class:`TesseractOcr` (``pip install financial-ingest[ocr]``
plus a system ``tesseract`` binary).
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from .logging_setup import get_logger
from .pdf_text import render_pdf_pages

# ---- Tunables (private) ------------------------------------------------------

_MIN_USABLE_CHARS: int = 80
_MIN_USABLE_LINES: int = 4
_PDF_OCR_PAGES: int = 2

# Tesseract page segmentation per attempt: uniform block first, then columns.
_PSM_BY_ATTEMPT: tuple[str, ...] = ("--psm 6", "--psm 4")

_logger = get_logger("financial_ingest.ocr")


@runtime_checkable
class OcrProvider(Protocol):
    def extract_text(self, data: bytes, mime_type: str, *, attempt: int = 0) -> str:
        """Return the text in ``data``.

        ``attempt`` is 0 for the first pass and 1 for a retry after unusable
        output; providers may change their settings between attempts.
        """
        ...


@dataclass(frozen=True, slots=True)
class OcrTextMetrics:
    char_count: int
    line_count: int

    @property
    def usable(self) -> bool:
        return self.char_count >= _MIN_USABLE_CHARS and self.line_count >= _MIN_USABLE_LINES


def ocr_text_metrics(text: str | None) -> OcrTextMetrics:
    text = text or ""
    return OcrTextMetrics(
        char_count=len(text.strip()),
        line_count=sum(1 for ln in text.splitlines() if ln.strip()),
    )


def run_ocr_with_retry(provider: OcrProvider, data: bytes, mime_type: str) -> tuple[str, bool]:
    """OCR ``data``; retry once when the first pass is not usable.

    Returns ``(text, retry_used)``. The retry result is kept only when it is
    longer than the first pass. Provider exceptions propagate.
    """

    first = provider.extract_text(data, mime_type)
    if ocr_text_metrics(first).usable:
        return first, False
    _logger.info("ocr: first pass unusable chars=%d; retrying", len(first.strip()))
    second = provider.extract_text(data, mime_type, attempt=1)
    if len(second.strip()) > len(first.strip()):
        return second, True
    return first, False


class TesseractOcr:
    """``OcrProvider`` backed by pytesseract.

    PDFs are rendered page by page (first two pages) before recognition.
    The retry pass converts to grayscale, stretches contrast and switches
    the page segmentation mode.
    """

    def __init__(self, lang: str = "spa+eng") -> None:
        self.lang = lang

    def _image_text(self, image_bytes: bytes, attempt: int) -> str:
        import pytesseract
        from PIL import Image, ImageOps

        with Image.open(io.BytesIO(image_bytes)) as img:
            prepared = img.convert("RGB")
            if attempt > 0:
                prepared = ImageOps.autocontrast(ImageOps.grayscale(prepared))
            config = _PSM_BY_ATTEMPT[min(attempt, len(_PSM_BY_ATTEMPT) - 1)]
            return pytesseract.image_to_string(prepared, lang=self.lang, config=config)

    def extract_text(self, data: bytes, mime_type: str, *, attempt: int = 0) -> str:
        if mime_type == "application/pdf":
            pages = render_pdf_pages(data, max_pages=_PDF_OCR_PAGES)
            texts = [self._image_text(p, attempt) for p in pages]
            return "\n".join(t for t in texts if t.strip())
        return self._image_text(data, attempt)


__all__ = ["OcrProvider", "OcrTextMetrics", "TesseractOcr", "ocr_text_metrics", "run_ocr_with_retry"]
