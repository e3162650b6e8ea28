"""Map an opaque document token onto a document and a fetchable PDF source."""

from __future__ import annotations

import logging
import posixpath
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from recordaudit.errors import AuthorizationError, BrokenPointer, DocumentNotFound, InputError
from recordaudit.models import Document, Principal, SourceDescriptor, SourceKind
from recordaudit.store.storage import SQLiteStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ResolvedDocument:
    document: Document
    source: SourceDescriptor
    resolved_from: str
    referent: Optional[Document] = None

    def check_access(self, principal: Principal) -> None:
        """Raise ``AuthorizationError`` unless ``principal`` may read the document and its referent."""
        if not principal.can_access(self.document.owner_id):
            raise AuthorizationError("Forbidden")
        if self.referent is not None and not principal.can_access(self.referent.owner_id):
            raise AuthorizationError(f"Pointer target {self.referent.id} belongs to another owner")


class DocumentResolver:
    """Read-only lookup of documents by id or external identifier."""

    def __init__(self, store: SQLiteStore) -> None:
        self.store = store

    def find(self, token: str) -> Document:
        token = (token or "").strip()
        if not token:
            raise InputError("Missing document identifier")
        document = self.store.get_document(token)
        if document is None:
            document = self.store.get_document_by_external_id(token)
        if document is None:
            raise DocumentNotFound(f"Document not found: {token}")
        return document

    def resolve(self, token: str) -> ResolvedDocument:
        document = self.find(token)
        source = document.source

        if source.kind is not SourceKind.POINTER:
            if not source.is_usable:
                raise InputError(
                    f"Document {document.id} has no usable PDF source", code="unusable_source"
                )
            return ResolvedDocument(document, source, resolved_from=f"{source.kind.value}")

        # Follow a pointer exactly once; a pointer to a pointer is not followed.
        referent_id = source.document_id or ""
        referent = self.store.get_document(referent_id) if referent_id else None
        if referent is None:
            raise BrokenPointer(f"PDF pointer document not found: {referent_id or '<empty>'}")
        if not referent.source.is_usable:
            raise BrokenPointer(
                f"PDF pointer {referent_id} resolved, but it has no usable source"
            )
        LOGGER.debug("Document %s resolved through pointer %s", document.id, referent.id)
        return ResolvedDocument(
            document,
            referent.source,
            resolved_from=f"pointer:{referent.id} -> {referent.source.kind.value}",
            referent=referent,
        )


def check_source_access(store: SQLiteStore, principal: Principal, source: SourceDescriptor) -> None:
    """End users may only point at their own documents and their own storage prefix."""
    if principal.is_system:
        return
    if source.kind is SourceKind.POINTER:
        referent = store.get_document(source.document_id or "")
        if referent is not None and not principal.can_access(referent.owner_id):
            raise AuthorizationError(f"Pointer target {referent.id} belongs to another owner")
    elif source.kind is SourceKind.STORAGE:
        prefix = f"{principal.user_id}/"
        if not posixpath.normpath((source.path or "").lstrip("/")).startswith(prefix):
            raise AuthorizationError(f"Storage paths must start with {prefix}")


def register_document(
    store: SQLiteStore,
    *,
    owner_id: str,
    source: SourceDescriptor,
    external_id: Optional[str] = None,
    title: Optional[str] = None,
    provenance: Optional[Dict[str, Any]] = None,
    principal: Optional[Principal] = None,
) -> Tuple[Document, bool]:
    """Create a document, or return the one already registered under ``external_id``.

    An existing document keeps its source; use ``update_document_source`` to
    change it. With a ``principal``, the source is checked with
    ``check_source_access`` first.
    """
    if source.kind is SourceKind.POINTER and not source.document_id:
        raise InputError("Pointer sources need a document id")
    if principal is not None:
        check_source_access(store, principal, source)
    if external_id:
        existing = store.get_document_by_external_id(external_id)
        if existing is not None:
            if existing.source != source:
                LOGGER.warning(
                    "Document %s already registered; keeping its original source", external_id
                )
            return existing, False
    document = Document(
        id=uuid.uuid4().hex,
        owner_id=owner_id,
        source=source,
        external_id=external_id,
        title=title,
        provenance=dict(provenance or {}),
    )
    store.create_document(document)
    LOGGER.info("Registered document %s (%s)", document.id, source.kind.value)
    return document, True
