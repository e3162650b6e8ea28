"""Request models.

Bodies are validated strictly: unknown fields are rejected and values are not
coerced. The only leniency is the documented camelCase/snake_case aliases.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from recordaudit.audit.registry import DEFAULT_REGISTRY
from recordaudit.models import SourceDescriptor, Tier


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)


def _analysis_id_field() -> Any:
    return Field(
        ..., min_length=1, validation_alias=AliasChoices("analysisId", "analysis_id")
    )


class SourcePayload(StrictModel):
    url: Optional[str] = None
    bucket: Optional[str] = None
    path: Optional[str] = None
    document_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("documentId", "document_id")
    )

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "SourcePayload":
        kinds = [
            self.url is not None,
            self.bucket is not None or self.path is not None,
            self.document_id is not None,
        ]
        if sum(kinds) != 1:
            raise ValueError("Provide exactly one of url, bucket+path, or documentId")
        if (self.bucket is None) != (self.path is None):
            raise ValueError("Storage sources need both bucket and path")
        return self

    def to_source(self) -> SourceDescriptor:
        if self.url is not None:
            return SourceDescriptor.for_url(self.url.strip())
        if self.document_id is not None:
            return SourceDescriptor.for_pointer(self.document_id.strip())
        return SourceDescriptor.for_storage(self.bucket or "", self.path or "")


class CreateDocumentPayload(StrictModel):
    source: SourcePayload
    external_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("externalId", "external_id")
    )
    title: Optional[str] = None
    provenance: Dict[str, Any] = Field(default_factory=dict)


class MaterializePayload(StrictModel):
    max_chunk_chars: Optional[int] = Field(
        None, ge=1, validation_alias=AliasChoices("maxChunkChars", "max_chunk_chars")
    )
    max_chunks: Optional[int] = Field(
        None, ge=1, validation_alias=AliasChoices("maxChunks", "max_chunks")
    )


class CreateAnalysisPayload(StrictModel):
    document: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("documentId", "document_id", "document")
    )
    kind: Optional[str] = None
    tier: Optional[Literal["basic", "pro"]] = None

    @property
    def requested_tier(self) -> Optional[Tier]:
        return Tier(self.tier) if self.tier else None


def _known_categories(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    unknown = [item for item in value if item not in DEFAULT_REGISTRY]
    if unknown:
        raise ValueError(f"Unknown categories: {', '.join(unknown)}")
    return value


class ExecutePayload(StrictModel):
    analysis_id: str = _analysis_id_field()
    tier: Optional[Literal["basic", "pro"]] = None
    exhaustive: bool = False
    categories: Optional[List[str]] = None

    @field_validator("categories")
    @classmethod
    def _check_categories(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _known_categories(value)

    @property
    def requested_tier(self) -> Optional[Tier]:
        return Tier(self.tier) if self.tier else None


class PurchaseTokenPayload(StrictModel):
    analysis_id: str = _analysis_id_field()
    product: Literal["audit_basic", "audit_pro"] = "audit_basic"


class CheckoutPayload(StrictModel):
    analysis_id: str = _analysis_id_field()
    tier: Literal["basic", "pro"] = "basic"


class RunAuditPayload(MaterializePayload):
    """Create, materialize and execute in one request."""

    document: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("documentId", "document_id", "document")
    )
    kind: Optional[str] = None
    tier: Optional[Literal["basic", "pro"]] = None
    exhaustive: bool = False
    categories: Optional[List[str]] = None

    @field_validator("categories")
    @classmethod
    def _check_categories(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _known_categories(value)

    @property
    def requested_tier(self) -> Optional[Tier]:
        return Tier(self.tier) if self.tier else None
