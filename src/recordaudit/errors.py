"""Exception taxonomy shared by every RecordAudit component."""

from __future__ import annotations


class RecordAuditError(Exception):
    """Base class for expected failures.

    ``code`` is a stable machine-readable identifier and ``http_status`` the
    status the web layer answers with.
    """

    code = "internal_error"
    http_status = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InputError(RecordAuditError):
    code = "invalid_input"
    http_status = 400


class AuthenticationError(RecordAuditError):
    code = "unauthorized"
    http_status = 401


class AuthorizationError(RecordAuditError):
    code = "forbidden"
    http_status = 403


class NotFoundError(RecordAuditError):
    code = "not_found"
    http_status = 404


class DocumentNotFound(NotFoundError):
    code = "document_not_found"


class AnalysisNotFound(NotFoundError):
    code = "analysis_not_found"


class BrokenPointer(RecordAuditError):
    """A document's source points at a document that is missing or unusable."""

    code = "broken_pointer"
    http_status = 422


class UpstreamFetchError(RecordAuditError):
    code = "fetch_failed"
    http_status = 502


class NotAPdf(UpstreamFetchError):
    code = "not_a_pdf"
    http_status = 415


class FetchTimeout(UpstreamFetchError):
    code = "fetch_timeout"
    http_status = 504


class TooLarge(UpstreamFetchError):
    code = "too_large"
    http_status = 413


class ExtractionError(RecordAuditError):
    code = "extraction_failed"
    http_status = 422


class NoExtractableText(ExtractionError):
    code = "no_extractable_text"


class MaterializationIncomplete(RecordAuditError):
    """The chunk set is mid-replacement or the last replacement failed."""

    code = "materialization_incomplete"
    http_status = 409


class PersistenceError(RecordAuditError):
    code = "persistence_error"
    http_status = 500


class PaymentError(RecordAuditError):
    code = "payment_provider_error"
    http_status = 502


class SignatureVerificationError(RecordAuditError):
    code = "invalid_signature"
    http_status = 400


class UnsafeClaimError(RecordAuditError):
    """Raised when finding text contains prohibited vocabulary."""

    code = "unsafe_claim"
    http_status = 422

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason
