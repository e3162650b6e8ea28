"""Command line interface for RecordAudit."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from recordaudit.analysis import AnalysisService
from recordaudit.audit.safety import DISCLAIMER
from recordaudit.config import AppConfig
from recordaudit.errors import RecordAuditError
from recordaudit.ingestion.fetcher import LocalObjectStorage
from recordaudit.ingestion.materializer import MaterializeConfig, Materializer
from recordaudit.ingestion.pdf_loader import get_pdf_metadata
from recordaudit.ingestion.resolver import register_document
from recordaudit.models import Finding, Principal, Profile, SourceDescriptor, Tier
from recordaudit.store.storage import SQLiteStore
from recordaudit.web.auth import issue_session_token
from recordaudit.web.app import app as web_app


console = Console()
app = typer.Typer(help="RecordAudit - research-only audits of PDF court records")

DEFAULT_BUCKET = "records"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _load_config(db: Optional[Path], storage_root: Optional[Path] = None) -> AppConfig:
    config = AppConfig.from_env()
    if db is not None:
        config.db_path = db
    if storage_root is not None:
        config.storage_root = storage_root
    return config


def _open_store(config: AppConfig) -> SQLiteStore:
    resolved_db = config.resolve_db_path(Path.cwd())
    _ensure_db_parent(resolved_db)
    return SQLiteStore(resolved_db)


def _fail(exc: RecordAuditError) -> None:
    console.print(f"[red]{exc.code}:[/red] {exc.message}")
    raise typer.Exit(code=1)


def _findings_table(findings: List[Finding]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Confidence")
    table.add_column("Evidence")
    table.add_column("Claim")
    for finding in findings:
        where = ", ".join(str(item.chunk_index) for item in finding.evidence) or "-"
        table.add_row(
            finding.category,
            finding.severity,
            finding.confidence,
            where,
            finding.claim[:180],
        )
    return table


@app.command()
def ingest(
    file: Optional[Path] = typer.Option(
        None, "--file", help="Local PDF to copy into object storage", exists=True, dir_okay=False
    ),
    url: Optional[str] = typer.Option(None, "--url", help="Public PDF URL"),
    pointer: Optional[str] = typer.Option(None, "--pointer", help="Document id holding the PDF"),
    bucket: str = typer.Option(DEFAULT_BUCKET, help="Storage bucket for --file"),
    external_id: Optional[str] = typer.Option(None, "--external-id", help="Stable external identifier"),
    title: Optional[str] = typer.Option(None, help="Document title"),
    materialize: bool = typer.Option(False, "--materialize", help="Extract and chunk right away"),
    replace_source: bool = typer.Option(
        False, "--replace-source", help="Point an already registered document at the new source"
    ),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    storage_root: Path = typer.Option(None, "--storage-root", help="Object storage directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Register a document from a local file, a URL or a pointer."""
    _setup_logging(verbose)
    if sum(value is not None for value in (file, url, pointer)) != 1:
        raise typer.BadParameter("Pass exactly one of --file, --url or --pointer")

    config = _load_config(db, storage_root)
    storage = LocalObjectStorage(config.resolve_storage_root(Path.cwd()))
    store = _open_store(config)
    try:
        provenance = {"ingested_by": "cli"}
        if file is not None:
            data = file.read_bytes()
            metadata = get_pdf_metadata(data)
            title = title or metadata["title"] or file.stem
            provenance["page_count"] = metadata["page_count"]
            object_path = f"{external_id or file.stem}/{file.name}"
            storage.put_object(bucket, object_path, data)
            source = SourceDescriptor.for_storage(bucket, object_path)
        elif url is not None:
            source = SourceDescriptor.for_url(url)
        else:
            source = SourceDescriptor.for_pointer(pointer or "")

        document, created = register_document(
            store,
            owner_id=config.system_owner_id,
            source=source,
            external_id=external_id,
            title=title,
            provenance=provenance,
        )
        state = "Registered" if created else "Already registered"
        console.print(f"{state} document [bold]{document.id}[/bold]")
        if not created and replace_source and document.source != source:
            store.update_document_source(document.id, source)
            console.print(f"Updated source to {source.to_dict()}")

        if materialize:
            materializer = Materializer(
                store, storage, config=MaterializeConfig.from_app_config(config)
            )
            result = materializer.materialize(document.id)
            console.print(f"Materialized {result.chunk_count} chunks ({result.resolved_from})")
    except RecordAuditError as exc:
        _fail(exc)
    finally:
        store.close()


@app.command("materialize")
def materialize_command(
    document: str = typer.Argument(..., help="Document id or external id"),
    max_chunk_chars: Optional[int] = typer.Option(None, help="Maximum characters per chunk"),
    max_chunks: Optional[int] = typer.Option(None, help="Maximum number of chunks kept"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    storage_root: Path = typer.Option(None, "--storage-root", help="Object storage directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Fetch a document's PDF and replace its chunks."""
    _setup_logging(verbose)
    config = _load_config(db, storage_root)
    store = _open_store(config)
    try:
        materializer = Materializer(
            store,
            LocalObjectStorage(config.resolve_storage_root(Path.cwd())),
            config=MaterializeConfig.from_app_config(
                config, max_chunk_chars=max_chunk_chars, max_chunks=max_chunks
            ),
        )
        result = materializer.materialize(document)
        console.print(
            f"Document [bold]{result.document_id}[/bold]: {result.chunk_count} chunks "
            f"({result.resolved_from})"
        )
    except RecordAuditError as exc:
        _fail(exc)
    finally:
        store.close()


@app.command()
def audit(
    document: str = typer.Argument(..., help="Document id or external id"),
    tier: str = typer.Option("pro", help="Audit depth: basic or pro"),
    category: List[str] = typer.Option(None, "--category", "-c", help="Restrict to categories"),
    exhaustive: bool = typer.Option(False, help="Report categories without signals too"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    materialize: bool = typer.Option(False, "--materialize", help="Re-extract the PDF before auditing"),
    storage_root: Path = typer.Option(None, "--storage-root", help="Object storage directory"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Create an analysis run for a document and execute it as the system caller."""
    _setup_logging(verbose)
    if tier not in (Tier.BASIC.value, Tier.PRO.value):
        raise typer.BadParameter("tier must be 'basic' or 'pro'")
    config = _load_config(db, storage_root)
    store = _open_store(config)
    try:
        service = AnalysisService(
            store, admin_user_ids=config.admin_user_ids, system_owner_id=config.system_owner_id
        )
        principal = Principal.system()
        if materialize:
            materializer = Materializer(
                store,
                LocalObjectStorage(config.resolve_storage_root(Path.cwd())),
                config=MaterializeConfig.from_app_config(config),
            )
            result = service.materialize_and_run(
                principal,
                document,
                materializer,
                tier=Tier(tier),
                exhaustive=exhaustive,
                categories=category or None,
            )
        else:
            run = service.create(principal, document, tier=Tier(tier))
            result = service.execute(
                run.id, principal, exhaustive=exhaustive, categories=category or None
            )
        if result.status == "error":
            console.print(f"[red]Analysis {result.analysis_id} failed:[/red] {result.error}")
            raise typer.Exit(code=1)

        if result.chunk_count is not None:
            console.print(f"Materialized {result.chunk_count} chunks")
        console.print(f"Analysis [bold]{result.analysis_id}[/bold]: {result.summary}")
        if result.findings:
            console.print(_findings_table(result.findings))
        else:
            console.print("[yellow]No findings.[/yellow]")
        console.print(f"[dim]{DISCLAIMER}[/dim]")
    except RecordAuditError as exc:
        _fail(exc)
    finally:
        store.close()


@app.command()
def show(
    analysis_id: str = typer.Argument(..., help="Analysis id"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Display an analysis run and its stored findings."""
    config = _load_config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    store = SQLiteStore(resolved_db)
    try:
        run = AnalysisService(store).get(analysis_id, Principal.system())
        console.print(f"Analysis [bold]{run.id}[/bold] ({run.status.value})")
        console.print(f"Document: {run.target_document_id}")
        console.print(
            f"Tier: {run.meta.get('tier', 'basic')}  paid: {bool(run.meta.get('paid'))}  "
            f"export: {bool(run.meta.get('exportAllowed'))}"
        )
        if run.summary:
            console.print(run.summary)
        if run.error:
            console.print(f"[red]Error:[/red] {run.error}")
        findings = run.findings
        if findings:
            console.print(_findings_table(findings))
    except RecordAuditError as exc:
        _fail(exc)
    finally:
        store.close()


@app.command()
def documents(
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List registered documents and their chunk state."""
    config = _load_config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    store = SQLiteStore(resolved_db)
    try:
        rows = store.list_documents()
    finally:
        store.close()
    if not rows:
        console.print("[yellow]No documents registered.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id")
    table.add_column("External id")
    table.add_column("Title")
    table.add_column("State")
    table.add_column("Chunks", justify="right")
    for row in rows:
        table.add_row(
            row["id"],
            row["external_id"] or "-",
            row["title"] or "-",
            row["materialization"],
            str(row["chunk_count"]),
        )
    console.print(table)


@app.command()
def grant(
    user_id: str = typer.Argument(..., help="User id"),
    admin: bool = typer.Option(False, "--admin", help="Grant admin access"),
    free: bool = typer.Option(False, "--free", help="Grant free access"),
    tier: Optional[str] = typer.Option(None, help="Tier for free access: basic or pro"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Set a user's stored entitlement flags."""
    if tier is not None and tier not in (Tier.BASIC.value, Tier.PRO.value):
        raise typer.BadParameter("tier must be 'basic' or 'pro'")
    config = _load_config(db)
    store = _open_store(config)
    try:
        store.upsert_profile(
            Profile(
                user_id=user_id,
                is_admin=admin,
                free_access=free,
                free_tier=Tier(tier) if tier else None,
            )
        )
    finally:
        store.close()
    console.print(f"Updated profile for {user_id} (admin={admin}, free={free}, tier={tier or '-'})")


@app.command("session-token")
def session_token(
    user_id: str = typer.Argument(..., help="User id placed in the token subject"),
    ttl: int = typer.Option(3600, help="Lifetime in seconds"),
) -> None:
    """Print a bearer token for calling the API as an end user."""
    config = AppConfig.from_env()
    try:
        token = issue_session_token(config, user_id, ttl=ttl)
    except RecordAuditError as exc:
        _fail(exc)
        return
    typer.echo(token)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    config = AppConfig.from_env()
    resolved_db = config.resolve_db_path(Path.cwd())
    if not config.ingest_secret and not config.session_secret:
        console.print("[yellow]Warning: no ingest or session secret configured; every call will be rejected.[/yellow]")

    console.print(f"Starting API on http://{host}:{port} (database: {resolved_db})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    app()
