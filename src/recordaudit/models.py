"""Core RecordAudit data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class SourceKind(str, Enum):
    URL = "url"
    STORAGE = "storage"
    POINTER = "pointer"


class MaterializationState(str, Enum):
    NONE = "none"
    REPLACING = "replacing"
    COMPLETE = "complete"
    FAILED = "failed"


class RunStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class Tier(str, Enum):
    BASIC = "basic"
    PRO = "pro"

    @classmethod
    def normalize(cls, value: Any) -> "Tier":
        """Map any stored or requested tier value onto a tier; unknown means basic."""
        if isinstance(value, Tier):
            return value
        text = str(value or "").strip().lower()
        return cls.PRO if text == cls.PRO.value else cls.BASIC


class CallerMode(str, Enum):
    SYSTEM = "system"
    USER = "user"


@dataclass(slots=True, frozen=True)
class SourceDescriptor:
    """Where a document's PDF lives: a URL, an object in storage, or another document."""

    kind: SourceKind
    url: Optional[str] = None
    bucket: Optional[str] = None
    path: Optional[str] = None
    document_id: Optional[str] = None

    @classmethod
    def for_url(cls, url: str) -> "SourceDescriptor":
        return cls(kind=SourceKind.URL, url=url)

    @classmethod
    def for_storage(cls, bucket: str, path: str) -> "SourceDescriptor":
        return cls(kind=SourceKind.STORAGE, bucket=bucket, path=path)

    @classmethod
    def for_pointer(cls, document_id: str) -> "SourceDescriptor":
        return cls(kind=SourceKind.POINTER, document_id=document_id)

    @property
    def is_usable(self) -> bool:
        """True when the descriptor can be fetched without further resolution."""
        if self.kind is SourceKind.URL:
            url = (self.url or "").lower()
            return url.startswith("http://") or url.startswith("https://")
        if self.kind is SourceKind.STORAGE:
            return bool(self.bucket and self.path)
        return False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value}
        for key in ("url", "bucket", "path", "document_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceDescriptor":
        return cls(
            kind=SourceKind(data["kind"]),
            url=data.get("url"),
            bucket=data.get("bucket"),
            path=data.get("path"),
            document_id=data.get("document_id"),
        )


@dataclass(slots=True)
class Document:
    id: str
    owner_id: str
    source: SourceDescriptor
    external_id: Optional[str] = None
    title: Optional[str] = None
    provenance: Dict[str, Any] = field(default_factory=dict)
    materialization: MaterializationState = MaterializationState.NONE
    materialization_error: Optional[str] = None
    materialized_at: Optional[str] = None


@dataclass(slots=True)
class ChunkRecord:
    """Chunk of document text at a zero-based position."""

    document_id: str
    index: int
    content: str


@dataclass(slots=True)
class Evidence:
    document_id: str
    chunk_index: int
    excerpt: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "chunkIndex": self.chunk_index,
            "excerpt": self.excerpt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Evidence":
        return cls(
            document_id=str(data["documentId"]),
            chunk_index=int(data["chunkIndex"]),
            excerpt=str(data.get("excerpt", "")),
        )


@dataclass(slots=True)
class Finding:
    kind: str
    category: str
    title: str
    severity: str
    confidence: str
    claim: str
    evidence: List[Evidence] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def suppressed(self) -> bool:
        return bool(self.meta.get("suppressed"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "category": self.category,
            "title": self.title,
            "severity": self.severity,
            "confidence": self.confidence,
            "claim": self.claim,
            "evidence": [item.to_dict() for item in self.evidence],
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Finding":
        return cls(
            kind=data["kind"],
            category=data["category"],
            title=data.get("title", data["category"]),
            severity=data["severity"],
            confidence=data["confidence"],
            claim=data["claim"],
            evidence=[Evidence.from_dict(item) for item in data.get("evidence", [])],
            meta=dict(data.get("meta") or {}),
        )


@dataclass(slots=True)
class AnalysisRun:
    id: str
    owner_id: str
    target_document_id: str
    status: RunStatus
    scope: str = "document"
    meta: Dict[str, Any] = field(default_factory=dict)
    summary: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def findings(self) -> List[Finding]:
        return [Finding.from_dict(item) for item in self.meta.get("findings", [])]


@dataclass(slots=True)
class PurchaseToken:
    token: str
    analysis_id: str
    product: str
    expires_at: str
    used_at: Optional[str] = None

    @property
    def tier(self) -> Tier:
        return Tier.PRO if self.product == "audit_pro" else Tier.BASIC


@dataclass(slots=True)
class Profile:
    """Stored entitlement flags for an end user."""

    user_id: str
    is_admin: bool = False
    free_access: bool = False
    free_tier: Optional[Tier] = None


@dataclass(slots=True, frozen=True)
class Principal:
    """The caller of an operation."""

    mode: CallerMode
    user_id: Optional[str] = None

    @classmethod
    def system(cls) -> "Principal":
        return cls(mode=CallerMode.SYSTEM)

    @classmethod
    def user(cls, user_id: str) -> "Principal":
        return cls(mode=CallerMode.USER, user_id=user_id)

    @property
    def is_system(self) -> bool:
        return self.mode is CallerMode.SYSTEM

    def can_access(self, owner_id: Optional[str]) -> bool:
        """System callers see everything; users only what they own."""
        if self.is_system or not owner_id:
            return True
        return owner_id == self.user_id
