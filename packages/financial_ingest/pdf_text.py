"""PDF text-layer extraction and page rendering (pdfplumber)."""

from __future__ import annotations

import io
from collections.abc import Sequence
from dataclasses import dataclass

import pdfplumber

from .logging_setup import get_logger

# ---- Tunables (private) ------------------------------------------------------

_MIN_TOTAL_CHARS: int = 60
_MIN_CHARS_PER_PAGE: int = 25
_RENDER_RESOLUTION: int = 200

_logger = get_logger("financial_ingest.pdf_text")


@dataclass(frozen=True, slots=True)
class TextDensity:
    total_chars: int
    page_count: int
    chars_per_page: float
    low: bool


def extract_pdf_pages(data: bytes) -> list[str]:
    """Return the text layer of every page (``""`` for pages without one)."""

    with pdfplumber.open(io.BytesIO(data)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    _logger.debug("pdf_text: extracted %d pages chars=%d", len(pages), sum(len(p) for p in pages))
    return pages


def extract_pdf_text(data: bytes) -> str:
    return "\n".join(extract_pdf_pages(data))


def measure_text_density(pages: Sequence[str]) -> TextDensity:
    """Count non-whitespace characters; sparse layers usually mean a scan.

    Density is low below 60 characters overall or 25 per page.
    """

    total = sum(len("".join(p.split())) for p in pages)
    count = max(1, len(pages))
    per_page = total / count
    return TextDensity(
        total_chars=total,
        page_count=len(pages),
        chars_per_page=per_page,
        low=total < _MIN_TOTAL_CHARS or per_page < _MIN_CHARS_PER_PAGE,
    )


def render_pdf_pages(data: bytes, *, max_pages: int = 2, resolution: int = _RENDER_RESOLUTION) -> list[bytes]:
    """Render the first ``max_pages`` pages to PNG bytes for OCR."""

    images: list[bytes] = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages[:max_pages]:
            buf = io.BytesIO()
            page.to_image(resolution=resolution).original.save(buf, format="PNG")
            images.append(buf.getvalue())
    return images


__all__ = [
    "TextDensity",
    "extract_pdf_pages",
    "extract_pdf_text",
    "measure_text_density",
    "render_pdf_pages",
]
