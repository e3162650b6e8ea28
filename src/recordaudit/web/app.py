"""FastAPI application exposing ingestion, audits and payments."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterator, Optional

import requests
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from recordaudit import __version__
from recordaudit.analysis import AnalysisService
from recordaudit.config import AppConfig
from recordaudit.errors import AuthorizationError, RecordAuditError
from recordaudit.ingestion.fetcher import LocalObjectStorage
from recordaudit.ingestion.materializer import MaterializeConfig, Materializer
from recordaudit.ingestion.resolver import DocumentResolver, register_document
from recordaudit.models import Principal, Tier
from recordaudit.payments.service import PaymentService
from recordaudit.payments.gateway import StripeGateway
from recordaudit.store.storage import SQLiteStore
from recordaudit.web.auth import resolve_principal
from recordaudit.web.schemas import (
    CheckoutPayload,
    CreateAnalysisPayload,
    CreateDocumentPayload,
    ExecutePayload,
    MaterializePayload,
    PurchaseTokenPayload,
    RunAuditPayload,
)

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="RecordAudit", version=__version__)


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


# ------------------------------------------------------------------ dependencies


def get_config() -> AppConfig:
    return AppConfig.from_env()


def get_store(config: AppConfig = Depends(get_config)) -> Iterator[SQLiteStore]:
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)
    store = SQLiteStore(resolved_db)
    try:
        yield store
    finally:
        store.close()


def get_object_storage(config: AppConfig = Depends(get_config)) -> LocalObjectStorage:
    return LocalObjectStorage(config.resolve_storage_root(Path.cwd()))


def get_http_session() -> Iterator[requests.Session]:
    session = requests.Session()
    try:
        yield session
    finally:
        session.close()


def get_gateway(config: AppConfig = Depends(get_config)) -> StripeGateway:
    return StripeGateway(
        config.stripe_secret_key,
        config.stripe_webhook_secret,
        prices={"basic": config.stripe_price_basic, "pro": config.stripe_price_pro},
    )


def get_principal(
    config: AppConfig = Depends(get_config),
    x_ingest_secret: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
) -> Principal:
    return resolve_principal(
        config, ingest_secret=x_ingest_secret, authorization=authorization
    )


def get_analysis_service(
    config: AppConfig = Depends(get_config), store: SQLiteStore = Depends(get_store)
) -> AnalysisService:
    return AnalysisService(
        store,
        admin_user_ids=config.admin_user_ids,
        system_owner_id=config.system_owner_id,
    )


def get_payment_service(
    config: AppConfig = Depends(get_config),
    store: SQLiteStore = Depends(get_store),
    analyses: AnalysisService = Depends(get_analysis_service),
    gateway: StripeGateway = Depends(get_gateway),
) -> PaymentService:
    return PaymentService(
        store,
        analyses,
        gateway,
        token_ttl=config.token_ttl_seconds,
        site_url=config.site_url,
    )


def _materializer(
    config: AppConfig,
    store: SQLiteStore,
    storage: LocalObjectStorage,
    session: requests.Session,
    payload: Optional[MaterializePayload] = None,
) -> Materializer:
    overrides = payload or MaterializePayload()
    materialize_config = MaterializeConfig.from_app_config(
        config, max_chunk_chars=overrides.max_chunk_chars, max_chunks=overrides.max_chunks
    )
    return Materializer(store, storage, config=materialize_config, session=session)


# -------------------------------------------------------------- error handling


@app.exception_handler(RecordAuditError)
async def record_audit_error_handler(request: Request, exc: RecordAuditError) -> JSONResponse:
    if exc.http_status >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"ok": False, "error": exc.code, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "invalid_input", "details": details},
    )


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


# ---------------------------------------------------------------------- routes


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}


@app.post("/documents")
async def create_document(
    payload: CreateDocumentPayload,
    config: AppConfig = Depends(get_config),
    store: SQLiteStore = Depends(get_store),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    document, created = register_document(
        store,
        owner_id=principal.user_id or config.system_owner_id,
        source=payload.source.to_source(),
        external_id=payload.external_id,
        title=payload.title,
        provenance=payload.provenance,
        principal=principal,
    )
    if not principal.can_access(document.owner_id):
        raise AuthorizationError("Forbidden")
    return {
        "ok": True,
        "documentId": document.id,
        "created": created,
        "source": document.source.to_dict(),
    }


@app.get("/documents/{token}/chunks")
async def list_chunks(
    token: str,
    limit: int = 200,
    store: SQLiteStore = Depends(get_store),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    document = DocumentResolver(store).find(token)
    if not principal.can_access(document.owner_id):
        raise AuthorizationError("Forbidden")
    chunks = store.list_chunks(document.id, limit=max(1, min(limit, 1000)))
    return {
        "documentId": document.id,
        "materialization": document.materialization.value,
        "chunks": [
            {"chunkIndex": chunk.index, "content": chunk.content} for chunk in chunks
        ],
    }


@app.post("/documents/{token}/materialize")
async def materialize_document(
    token: str,
    payload: Optional[MaterializePayload] = None,
    config: AppConfig = Depends(get_config),
    store: SQLiteStore = Depends(get_store),
    storage: LocalObjectStorage = Depends(get_object_storage),
    session: requests.Session = Depends(get_http_session),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    materializer = _materializer(config, store, storage, session, payload)
    result = await asyncio.to_thread(materializer.materialize, token, principal=principal)
    return {
        "ok": True,
        "documentId": result.document_id,
        "chunkCount": result.chunk_count,
        "resolvedFrom": result.resolved_from,
    }


@app.post("/analyses")
async def create_analysis(
    payload: CreateAnalysisPayload,
    analyses: AnalysisService = Depends(get_analysis_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    options: dict[str, Any] = {"tier": payload.requested_tier}
    if payload.kind:
        options["kind"] = payload.kind
    run = analyses.create(principal, payload.document, **options)
    return {"ok": True, "analysisId": run.id, "status": run.status.value}


@app.get("/analyses/{analysis_id}")
async def get_analysis(
    analysis_id: str,
    analyses: AnalysisService = Depends(get_analysis_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    run = analyses.get(analysis_id, principal)
    return {
        "id": run.id,
        "scope": run.scope,
        "targetDocumentId": run.target_document_id,
        "status": run.status.value,
        "summary": run.summary,
        "error": run.error,
        "meta": run.meta,
        "createdAt": run.created_at,
        "updatedAt": run.updated_at,
    }


@app.post("/analyses/{analysis_id}/materialize")
async def materialize_analysis(
    analysis_id: str,
    payload: Optional[MaterializePayload] = None,
    config: AppConfig = Depends(get_config),
    store: SQLiteStore = Depends(get_store),
    storage: LocalObjectStorage = Depends(get_object_storage),
    session: requests.Session = Depends(get_http_session),
    analyses: AnalysisService = Depends(get_analysis_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    materializer = _materializer(config, store, storage, session, payload)
    result = await asyncio.to_thread(analyses.materialize, analysis_id, principal, materializer)
    return {
        "ok": True,
        "analysisId": analysis_id,
        "documentId": result.document_id,
        "chunkCount": result.chunk_count,
    }


@app.post("/audit/execute")
async def execute_audit(
    payload: ExecutePayload,
    analyses: AnalysisService = Depends(get_analysis_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    result = await asyncio.to_thread(
        analyses.execute,
        payload.analysis_id,
        principal,
        tier=payload.requested_tier,
        exhaustive=payload.exhaustive,
        categories=payload.categories,
    )
    return result.to_dict()


@app.post("/audit/run")
async def run_audit(
    payload: RunAuditPayload,
    config: AppConfig = Depends(get_config),
    store: SQLiteStore = Depends(get_store),
    storage: LocalObjectStorage = Depends(get_object_storage),
    session: requests.Session = Depends(get_http_session),
    analyses: AnalysisService = Depends(get_analysis_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    materializer = _materializer(config, store, storage, session, payload)
    options: dict[str, Any] = {
        "tier": payload.requested_tier,
        "exhaustive": payload.exhaustive,
        "categories": payload.categories,
    }
    if payload.kind:
        options["kind"] = payload.kind
    result = await asyncio.to_thread(
        analyses.materialize_and_run, principal, payload.document, materializer, **options
    )
    return result.to_dict()


@app.post("/purchase/token")
async def purchase_token(
    payload: PurchaseTokenPayload,
    payments: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    token = payments.issue_token(payload.analysis_id, principal, payload.product)
    return {
        "ok": True,
        "token": token.token,
        "expiresAt": token.expires_at,
        "product": token.product,
        "mode": principal.mode.value,
    }


@app.post("/checkout")
async def checkout(
    payload: CheckoutPayload,
    payments: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_principal),
) -> dict[str, Any]:
    intent = await asyncio.to_thread(
        payments.create_checkout, payload.analysis_id, principal, Tier(payload.tier)
    )
    return {"ok": True, "redirectUrl": intent.redirect_url}


@app.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    payments: PaymentService = Depends(get_payment_service),
) -> JSONResponse:
    payload = await request.body()
    try:
        ack = payments.handle_webhook(payload, stripe_signature)
    except RecordAuditError:
        raise
    except Exception as exc:
        # A 5xx makes the provider redeliver; the event's writes were rolled back.
        LOGGER.exception("Webhook processing failed")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    return JSONResponse(status_code=200, content=ack.to_dict())
