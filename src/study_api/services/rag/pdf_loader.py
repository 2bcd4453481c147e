from __future__ import annotations

import io
import logging
import re

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from study_api.services.rag.types import PageText

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class PdfExtractionError(ValueError):
    pass


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def pages_from_texts(raw_texts: list[str]) -> list[PageText]:
    pages = [
        PageText(page_number=index, text=normalize_whitespace(raw_text))
        for index, raw_text in enumerate(raw_texts, start=1)
    ]
    return [page for page in pages if page.text]


def extract_pdf_pages(data: bytes) -> list[PageText]:
    """Return one normalized ``PageText`` per non-empty PDF page.

    Page numbers are the 1-based physical page positions, so empty pages
    leave gaps rather than shifting later pages.
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        raw_texts = [page.extract_text() or "" for page in reader.pages]
    except (PyPdfError, ValueError, OSError) as exc:
        raise PdfExtractionError(f"Could not read PDF: {exc}") from exc

    pages = pages_from_texts(raw_texts)
    logger.info("Extracted %d non-empty pages out of %d", len(pages), len(raw_texts))
    return pages
