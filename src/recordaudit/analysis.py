"""Analysis run lifecycle: create, materialize, execute, record payment."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from recordaudit.audit.engine import DEFAULT_KIND, AuditEngine, EngineOptions, is_degenerate
from recordaudit.audit.safety import assert_research_only, enforce_research_only
from recordaudit.entitlements import Entitlement, EntitlementRequest, is_truthy, resolve_entitlement
from recordaudit.errors import (
    AnalysisNotFound,
    AuthorizationError,
    DocumentNotFound,
    MaterializationIncomplete,
    RecordAuditError,
)
from recordaudit.ingestion.materializer import Materializer, MaterializeResult
from recordaudit.ingestion.resolver import DocumentResolver
from recordaudit.models import (
    AnalysisRun,
    ChunkRecord,
    Evidence,
    Finding,
    MaterializationState,
    Principal,
    RunStatus,
    Tier,
)
from recordaudit.store.storage import SQLiteStore, utc_now

LOGGER = logging.getLogger(__name__)

# Audit depth per tier.
TIER_ENGINE_OPTIONS: Dict[Tier, EngineOptions] = {
    Tier.BASIC: EngineOptions(max_findings=10, max_evidence_per_finding=2),
    Tier.PRO: EngineOptions(max_findings=25, max_evidence_per_finding=3),
}

SUMMARY_TEMPLATE = (
    "Audit executed ({tier}). Coverage: {chunk_count} chunks loaded. "
    "Findings generated: {finding_count}."
)
COVERAGE_CATEGORY = "coverage"
NO_SIGNAL_KIND = "no_signal"
DEFAULT_CHUNK_LIMIT = 200


@dataclass(slots=True)
class ExecuteResult:
    status: str
    analysis_id: str
    tier: Optional[Tier] = None
    export_allowed: bool = False
    summary: Optional[str] = None
    findings: List[Finding] = field(default_factory=list)
    error: Optional[str] = None
    chunk_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status, "analysisId": self.analysis_id}
        if self.status == "error":
            data["error"] = self.error
        elif self.status != "payment_required":
            data.update(
                tier=self.tier.value if self.tier else None,
                exportAllowed=self.export_allowed,
                summary=self.summary,
                findings=[finding.to_dict() for finding in self.findings],
            )
        if self.chunk_count is not None:
            data["chunkCount"] = self.chunk_count
        return data


@dataclass(slots=True)
class PaymentOutcome:
    analysis_id: str
    applied: bool
    already_paid: bool
    tier: Tier


def _coverage_finding(
    kind: str, title: str, severity: str, claim: str, evidence: List[Evidence], **meta: Any
) -> Finding:
    verdict = enforce_research_only(claim)
    return Finding(
        kind=kind,
        category=COVERAGE_CATEGORY,
        title=title,
        severity=severity,
        confidence="high",
        claim=verdict.claim,
        evidence=evidence,
        meta={"suppressed": verdict.suppressed, "suppressed_reason": verdict.reason, **meta},
    )


def no_chunks_finding(kind: str, document_id: str) -> Finding:
    return _coverage_finding(
        kind,
        "No chunks found for target",
        "error",
        "No text chunks were available for this document. "
        "Materialization and chunking may not have run yet.",
        [],
        target_document_id=document_id,
    )


def materialization_required_finding(kind: str, chunks: List[ChunkRecord]) -> Finding:
    return _coverage_finding(
        kind,
        "Materialization required",
        "warning",
        "Chunks appear to contain metadata rather than extracted PDF text. "
        "Run the document materialization step to extract full text before auditing.",
        [
            Evidence(document_id=chunk.document_id, chunk_index=chunk.index, excerpt=chunk.content[:800])
            for chunk in chunks[:2]
        ],
        target_document_id=chunks[0].document_id,
        materialization_required=True,
    )


def no_signal_finding(kind: str, category_id: str, title: str) -> Finding:
    verdict = enforce_research_only(
        f"No research signals were detected for {title} in the reviewed chunks."
    )
    return Finding(
        kind=NO_SIGNAL_KIND,
        category=category_id,
        title=f"{title}: none detected",
        severity="info",
        confidence="low",
        claim=verdict.claim,
        meta={
            "score": 0,
            "signals": [],
            "suppressed": verdict.suppressed,
            "suppressed_reason": verdict.reason,
            "audit_kind": kind,
        },
    )


class AnalysisService:
    """Persisted state machine tying documents, the engine and payments together."""

    def __init__(
        self,
        store: SQLiteStore,
        *,
        engine: Optional[AuditEngine] = None,
        admin_user_ids: Iterable[str] = (),
        system_owner_id: str = "system",
        chunk_limit: int = DEFAULT_CHUNK_LIMIT,
    ) -> None:
        self.store = store
        self.engine = engine or AuditEngine()
        self.admin_user_ids = tuple(admin_user_ids)
        self.system_owner_id = system_owner_id
        self.chunk_limit = chunk_limit

    # ----------------------------------------------------------------- lookups

    def get(self, analysis_id: str, principal: Principal) -> AnalysisRun:
        run = self.store.get_analysis(analysis_id)
        if run is None:
            raise AnalysisNotFound(f"Analysis not found: {analysis_id}")
        if not principal.can_access(run.owner_id):
            raise AuthorizationError("Forbidden")
        return run

    def entitlement(self, principal: Principal, meta: Dict[str, Any]) -> Entitlement:
        profile = self.store.get_profile(principal.user_id) if principal.user_id else None
        return resolve_entitlement(
            EntitlementRequest(
                caller_mode=principal.mode,
                caller_id=principal.user_id,
                profile=profile,
                analysis_meta=meta,
            ),
            self.admin_user_ids,
        )

    # ------------------------------------------------------------------ create

    def create(
        self,
        principal: Principal,
        document_token: str,
        *,
        kind: str = DEFAULT_KIND,
        tier: Optional[Tier] = None,
    ) -> AnalysisRun:
        document = DocumentResolver(self.store).find(document_token)
        if not principal.can_access(document.owner_id):
            raise AuthorizationError("Forbidden")

        meta: Dict[str, Any] = {
            "kind": kind,
            "tier": (tier or Tier.BASIC).value,
            "paid": False,
            "exportAllowed": False,
            "document_identifier": document_token,
        }
        entitlement = self.entitlement(principal, meta)
        status = RunStatus.RUNNING if entitlement.allowed else RunStatus.PENDING_PAYMENT
        run = AnalysisRun(
            id=uuid.uuid4().hex,
            owner_id=principal.user_id or self.system_owner_id,
            target_document_id=document.id,
            status=status,
            meta=meta,
        )
        self.store.create_analysis(run)
        LOGGER.info("Created analysis %s for document %s (%s)", run.id, document.id, status.value)
        return run

    # ------------------------------------------------------------- materialize

    def materialize(
        self, analysis_id: str, principal: Principal, materializer: Materializer
    ) -> MaterializeResult:
        """Materialize the run's target; a failure moves the run to ``error``."""
        run = self.get(analysis_id, principal)
        try:
            result = materializer.materialize(run.target_document_id, principal=principal)
        except Exception as exc:
            LOGGER.error("Materialize failed for analysis %s: %s", analysis_id, exc)
            self._fail(analysis_id, str(exc))
            raise
        self._merge_meta(
            analysis_id,
            {"materialized": {"chunkCount": result.chunk_count, "at": utc_now()}},
        )
        return result

    def materialize_and_run(
        self,
        principal: Principal,
        document_token: str,
        materializer: Materializer,
        *,
        kind: str = DEFAULT_KIND,
        tier: Optional[Tier] = None,
        exhaustive: bool = False,
        categories: Optional[List[str]] = None,
    ) -> ExecuteResult:
        """Create a run, materialize its target and execute it in one call.

        Materialization happens even when the run awaits payment. Expected
        materialize failures leave the run in ``error`` and are reported in the
        result; authorization failures are raised.
        """
        run = self.create(principal, document_token, kind=kind, tier=tier)
        self._merge_meta(run.id, {"source": "materialize-and-run"})
        try:
            materialized = self.materialize(run.id, principal, materializer)
        except AuthorizationError:
            raise
        except RecordAuditError as exc:
            return ExecuteResult(status="error", analysis_id=run.id, error=exc.message)

        result = self.execute(
            run.id, principal, tier=tier, exhaustive=exhaustive, categories=categories
        )
        result.chunk_count = materialized.chunk_count
        return result

    # ----------------------------------------------------------------- execute

    def execute(
        self,
        analysis_id: str,
        principal: Principal,
        *,
        tier: Optional[Tier] = None,
        exhaustive: bool = False,
        categories: Optional[List[str]] = None,
    ) -> ExecuteResult:
        run = self.get(analysis_id, principal)
        entitlement = self.entitlement(principal, run.meta)
        if not entitlement.allowed:
            LOGGER.info("Analysis %s requires payment", analysis_id)
            return ExecuteResult(status="payment_required", analysis_id=analysis_id)

        effective = entitlement.tier or Tier.BASIC
        if tier is Tier.BASIC:
            effective = Tier.BASIC
        export_allowed = effective is Tier.PRO

        self.store.update_analysis(analysis_id, status=RunStatus.RUNNING, error=None)
        kind = str(run.meta.get("kind") or DEFAULT_KIND)
        try:
            findings, stats = self._audit(run, effective, kind, exhaustive, categories)
            summary = assert_research_only(
                SUMMARY_TEMPLATE.format(
                    tier=effective.value.upper(),
                    chunk_count=stats["chunkCount"],
                    finding_count=len(findings),
                )
            )
            self._merge_meta(
                analysis_id,
                {
                    "findings": [finding.to_dict() for finding in findings],
                    "stats": stats,
                    "exportAllowed": export_allowed,
                    "executed_tier": effective.value,
                    "executed_at": utc_now(),
                    "error": None,
                },
                status=RunStatus.DONE,
                summary=summary,
                error=None,
            )
        except Exception as exc:
            LOGGER.exception("Execute failed for analysis %s", analysis_id)
            message = str(exc) or exc.__class__.__name__
            self._fail(analysis_id, message)
            return ExecuteResult(status="error", analysis_id=analysis_id, error=message)

        LOGGER.info("Analysis %s done: %s", analysis_id, summary)
        return ExecuteResult(
            status="done",
            analysis_id=analysis_id,
            tier=effective,
            export_allowed=export_allowed,
            summary=summary,
            findings=findings,
        )

    def _audit(
        self,
        run: AnalysisRun,
        tier: Tier,
        kind: str,
        exhaustive: bool,
        categories: Optional[List[str]],
    ) -> tuple[List[Finding], Dict[str, Any]]:
        document = self.store.get_document(run.target_document_id)
        if document is None:
            raise DocumentNotFound(f"Document not found: {run.target_document_id}")
        if document.materialization in (MaterializationState.REPLACING, MaterializationState.FAILED):
            detail = f": {document.materialization_error}" if document.materialization_error else ""
            raise MaterializationIncomplete(
                f"Chunks for document {document.id} are {document.materialization.value}{detail}"
            )

        chunks = self.store.list_chunks(document.id, limit=self.chunk_limit)
        if not chunks:
            findings = [no_chunks_finding(kind, document.id)]
        elif is_degenerate(chunks):
            findings = [materialization_required_finding(kind, chunks)]
        else:
            findings = self.engine.run(
                chunks, TIER_ENGINE_OPTIONS[tier], categories=categories, kind=kind
            )
            if exhaustive:
                covered = {finding.category for finding in findings}
                findings.extend(
                    no_signal_finding(kind, category.id, category.title)
                    for category in self.engine.registry.select(categories)
                    if category.id not in covered
                )

        per_category: Dict[str, int] = {}
        for finding in findings:
            per_category[finding.category] = per_category.get(finding.category, 0) + 1
        stats = {
            "chunkCount": len(chunks),
            "findingCount": len(findings),
            "suppressedCount": sum(1 for finding in findings if finding.suppressed),
            "categories": per_category,
        }
        return findings, stats

    # ----------------------------------------------------------------- payment

    def apply_payment(
        self, analysis_id: str, tier: Tier, *, reference: Optional[Dict[str, Any]] = None
    ) -> PaymentOutcome:
        """Mark a run paid. Re-applying is a no-op unless it upgrades basic to pro."""
        with self.store.transaction(immediate=True):
            run = self.store.get_analysis(analysis_id)
            if run is None:
                raise AnalysisNotFound(f"Analysis not found: {analysis_id}")
            meta = dict(run.meta)
            already_paid = is_truthy(meta.get("paid"))
            current = Tier.normalize(meta.get("tier"))
            if already_paid and not (current is Tier.BASIC and tier is Tier.PRO):
                LOGGER.info("Analysis %s already paid at %s; ignoring", analysis_id, current.value)
                return PaymentOutcome(analysis_id, applied=False, already_paid=True, tier=current)

            meta.update(
                paid=True,
                tier=tier.value,
                exportAllowed=tier is Tier.PRO,
                payment={**(reference or {}), "paid_at": utc_now()},
            )
            self.store.update_analysis(analysis_id, meta=meta)
        LOGGER.info("Analysis %s marked paid (%s)", analysis_id, tier.value)
        return PaymentOutcome(analysis_id, applied=True, already_paid=already_paid, tier=tier)

    def request_tier(self, analysis_id: str, tier: Tier) -> None:
        """Record the tier a checkout was started for; paid state is untouched."""
        with self.store.transaction(immediate=True):
            run = self.store.get_analysis(analysis_id)
            if run is None:
                raise AnalysisNotFound(f"Analysis not found: {analysis_id}")
            if is_truthy(run.meta.get("paid")):
                return
            self.store.update_analysis(analysis_id, meta={**run.meta, "tier": tier.value})

    # ---------------------------------------------------------------- helpers

    def _merge_meta(
        self,
        analysis_id: str,
        updates: Dict[str, Any],
        *,
        status: Optional[RunStatus] = None,
        **fields: Any,
    ) -> None:
        # Re-read inside the write lock so concurrent payment updates survive.
        with self.store.transaction(immediate=True):
            run = self.store.get_analysis(analysis_id)
            if run is None:
                raise AnalysisNotFound(f"Analysis not found: {analysis_id}")
            self.store.update_analysis(
                analysis_id, status=status, meta={**run.meta, **updates}, **fields
            )

    def _fail(self, analysis_id: str, message: str) -> None:
        self._merge_meta(analysis_id, {"error": message}, status=RunStatus.ERROR, error=message)
