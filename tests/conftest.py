"""Shared fixtures for the RecordAudit test suite."""

from __future__ import annotations

import hashlib
import hmac
import time
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

import fitz
import pytest

from recordaudit.ingestion.fetcher import LocalObjectStorage
from recordaudit.models import ChunkRecord, Document, SourceDescriptor
from recordaudit.store.storage import SQLiteStore


def words(count: int, word: str = "record") -> str:
    """``count`` copies of ``word`` separated by single spaces."""
    return " ".join([word] * count)


def build_pdf(pages: Sequence[str]) -> bytes:
    """Render each string onto its own page; an empty string gives a blank page."""
    doc = fitz.open()
    try:
        for text in pages:
            page = doc.new_page(width=612, height=792)
            if text:
                remaining = page.insert_textbox(
                    fitz.Rect(36, 36, 576, 756), text, fontsize=8, fontname="helv"
                )
                assert remaining >= 0, "test text does not fit on one page"
        return doc.tobytes()
    finally:
        doc.close()


def stripe_signature(payload: bytes, secret: str, *, timestamp: Optional[int] = None) -> str:
    """A ``Stripe-Signature`` header as Stripe would send it for ``payload``."""
    ts = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SQLiteStore]:
    db = SQLiteStore(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def object_storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "objects")


@pytest.fixture
def make_pdf() -> Callable[[Sequence[str]], bytes]:
    return build_pdf


@pytest.fixture
def stored_document(
    store: SQLiteStore, object_storage: LocalObjectStorage
) -> Callable[..., Document]:
    """Register a document whose PDF lives in local object storage."""

    def _create(
        pages: Sequence[str],
        *,
        doc_id: str = "doc-1",
        owner_id: str = "system",
        external_id: str | None = None,
    ) -> Document:
        path = f"{doc_id}/record.pdf"
        object_storage.put_object("records", path, build_pdf(pages))
        document = Document(
            id=doc_id,
            owner_id=owner_id,
            source=SourceDescriptor.for_storage("records", path),
            external_id=external_id,
        )
        store.create_document(document)
        return document

    return _create


@pytest.fixture
def chunked_document(store: SQLiteStore) -> Callable[..., Document]:
    """Register a document and store the given chunk texts directly."""

    def _create(contents: Sequence[str], *, doc_id: str = "doc-1", owner_id: str = "system") -> Document:
        document = Document(
            id=doc_id,
            owner_id=owner_id,
            source=SourceDescriptor.for_url(f"https://records.example/{doc_id}.pdf"),
        )
        store.create_document(document)
        if contents:
            store.replace_chunks(doc_id, list(contents))
        return document

    return _create


def chunks_of(document_id: str, contents: Sequence[str]) -> list[ChunkRecord]:
    return [ChunkRecord(document_id=document_id, index=i, content=c) for i, c in enumerate(contents)]
