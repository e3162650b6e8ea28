"""Fetch, extract, chunk and persist a document's text."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional

import requests

from recordaudit.config import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_CHUNK_CHARS,
    DEFAULT_MAX_CHUNKS,
    AppConfig,
)
from recordaudit.errors import NoExtractableText, PersistenceError
from recordaudit.ingestion.fetcher import LocalObjectStorage, PdfFetcher
from recordaudit.ingestion.pdf_loader import extract_text
from recordaudit.ingestion.resolver import DocumentResolver, ResolvedDocument
from recordaudit.models import MaterializationState, Principal, SourceDescriptor
from recordaudit.store.storage import SQLiteStore
from recordaudit.utils.text import chunk_paragraphs, normalize_text

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class MaterializeConfig:
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    max_chunks: int = DEFAULT_MAX_CHUNKS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_bytes: int = DEFAULT_MAX_BYTES
    batch_size: int = 200

    @classmethod
    def from_app_config(cls, config: AppConfig, **overrides: object) -> "MaterializeConfig":
        values = {
            "max_chunk_chars": config.max_chunk_chars,
            "max_chunks": config.max_chunks,
            "fetch_timeout": config.fetch_timeout,
            "max_bytes": config.max_bytes,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]


@dataclass(slots=True)
class MaterializeResult:
    document_id: str
    chunk_count: int
    source: SourceDescriptor
    resolved_from: str


def build_chunks(data: bytes, *, max_chars: int, max_chunks: int) -> list[str]:
    """Extract, normalize and chunk PDF bytes."""
    text = normalize_text(extract_text(data))
    if not text:
        raise NoExtractableText("Parsed PDF but no text was extracted (scanned or image-only?)")
    return chunk_paragraphs(text, max_chars=max_chars)[:max_chunks]


class Materializer:
    """Coordinates fetch, extraction and the atomic chunk replacement."""

    def __init__(
        self,
        store: SQLiteStore,
        storage: LocalObjectStorage,
        *,
        config: Optional[MaterializeConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store = store
        self.config = config or MaterializeConfig()
        self.resolver = DocumentResolver(store)
        self.fetcher = PdfFetcher(
            storage,
            session=session,
            timeout=self.config.fetch_timeout,
            max_bytes=self.config.max_bytes,
        )

    def materialize(self, token: str, *, principal: Optional[Principal] = None) -> MaterializeResult:
        resolved = self.resolver.resolve(token)
        if principal is not None:
            resolved.check_access(principal)
        return self.materialize_resolved(resolved)

    def materialize_resolved(self, resolved: ResolvedDocument) -> MaterializeResult:
        document = resolved.document
        LOGGER.info(
            "Materializing document %s from %s (%s)",
            document.id,
            resolved.source.to_dict(),
            resolved.resolved_from,
        )
        fetched = self.fetcher.fetch(resolved.source)
        chunks = build_chunks(
            fetched.data,
            max_chars=self.config.max_chunk_chars,
            max_chunks=self.config.max_chunks,
        )
        chunk_count = self._replace(document.id, chunks)
        LOGGER.info("Materialized document %s into %d chunks", document.id, chunk_count)
        return MaterializeResult(
            document_id=document.id,
            chunk_count=chunk_count,
            source=resolved.source,
            resolved_from=resolved.resolved_from,
        )

    def _replace(self, document_id: str, chunks: list[str]) -> int:
        try:
            self.store.set_materialization(document_id, MaterializationState.REPLACING)
            return self.store.replace_chunks(
                document_id, chunks, batch_size=self.config.batch_size
            )
        except sqlite3.Error as exc:
            LOGGER.error("Chunk replacement failed for %s: %s", document_id, exc)
            self._mark_failed(document_id, str(exc))
            raise PersistenceError(f"Chunk replacement failed: {exc}") from exc

    def _mark_failed(self, document_id: str, message: str) -> None:
        try:
            self.store.set_materialization(
                document_id, MaterializationState.FAILED, error=message
            )
        except sqlite3.Error:
            # The document stays in "replacing", which readers also refuse.
            LOGGER.exception("Could not record failed materialization for %s", document_id)
