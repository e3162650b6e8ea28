"""Text helpers: whitespace normalization and paragraph-aware chunking."""

from __future__ import annotations

import re
from typing import Iterable, List

_CARRIAGE_RE = re.compile(r"\r\n?")
_INLINE_SPACE_RE = re.compile(r"[ \t]+")
_TRAILING_SPACE_RE = re.compile(r"[ \t]+\n")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")

PARAGRAPH_SEPARATOR = "\n\n"


def normalize_text(text: str) -> str:
    """Collapse inline whitespace and blank-line runs, then strip."""
    if not text:
        return ""
    normalized = _CARRIAGE_RE.sub("\n", text).replace("\x00", "")
    normalized = _INLINE_SPACE_RE.sub(" ", normalized)
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    return normalized.strip()


def join_page_text(parts: Iterable[str]) -> str:
    """Whitespace-join the text fragments of a single page."""
    return " ".join(part.strip() for part in parts if part and part.strip())


def split_paragraphs(text: str) -> List[str]:
    return [para.strip() for para in _PARAGRAPH_SPLIT_RE.split(text) if para.strip()]


def chunk_paragraphs(text: str, *, max_chars: int) -> List[str]:
    """Group paragraphs into chunks of at most ``max_chars`` characters.

    Paragraphs are accumulated (joined by a blank line) while the running
    buffer still fits. A paragraph that is longer than ``max_chars`` on its own
    flushes the buffer and is cut into fixed-size slices; its tail keeps
    accumulating with the paragraphs that follow.
    """
    if max_chars < 1:
        raise ValueError("max_chars must be positive")

    chunks: List[str] = []
    buffer = ""
    for para in split_paragraphs(text):
        if not buffer:
            buffer = para
        elif len(buffer) + len(PARAGRAPH_SEPARATOR) + len(para) <= max_chars:
            buffer = buffer + PARAGRAPH_SEPARATOR + para
            continue
        else:
            chunks.append(buffer)
            buffer = para

        while len(buffer) > max_chars:
            chunks.append(buffer[:max_chars])
            buffer = buffer[max_chars:]

    if buffer.strip():
        chunks.append(buffer.strip())
    return chunks
