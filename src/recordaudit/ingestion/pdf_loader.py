"""PDF text extraction.

Uses PyMuPDF (fitz) to pull the text of each page in page order. Scanned or
image-only pages yield no text; there is no OCR fallback.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator

import fitz  # PyMuPDF

from recordaudit.errors import ExtractionError
from recordaudit.utils.text import join_page_text

LOGGER = logging.getLogger(__name__)

PDF_SIGNATURE = b"%PDF-"


def looks_like_pdf(data: bytes) -> bool:
    """Trust only the leading file signature, never a declared content type."""
    return data[: len(PDF_SIGNATURE)] == PDF_SIGNATURE


def _open(data: bytes) -> "fitz.Document":
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        LOGGER.error("Failed to open PDF stream (%d bytes): %s", len(data), exc)
        raise ExtractionError(f"Unable to open PDF: {exc}") from exc


def iter_page_texts(data: bytes) -> Iterator[str]:
    """Yield the whitespace-joined text of every page, in order."""
    doc = _open(data)
    try:
        for index in range(len(doc)):
            try:
                page = doc[index]
                text = page.get_text() or ""
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s: %s", index, exc)
                continue
            yield join_page_text(text.split())
    finally:
        doc.close()


def extract_text(data: bytes) -> str:
    """Concatenate page texts, separating pages with a blank line."""
    return "\n\n".join(text for text in iter_page_texts(data) if text)


def get_pdf_metadata(data: bytes) -> Dict[str, str]:
    doc = _open(data)
    try:
        metadata = doc.metadata or {}
        return {
            "title": metadata.get("title") or "",
            "page_count": str(len(doc)),
        }
    finally:
        doc.close()
