"""SQLite persistence for documents, chunks, analysis runs and payments."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from recordaudit.models import (
    AnalysisRun,
    ChunkRecord,
    Document,
    MaterializationState,
    Profile,
    PurchaseToken,
    RunStatus,
    SourceDescriptor,
    Tier,
)

_UNSET: Any = object()


def to_timestamp(moment: datetime) -> str:
    """Fixed-width UTC timestamp; lexicographic order equals time order."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def utc_now() -> str:
    return to_timestamp(datetime.now(timezone.utc))


class SQLiteStore:
    """Single source of truth for chunk contents, run state and payment state."""

    def __init__(self, db_path: Path, *, timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        # Transactions are opened explicitly so write locks can be taken up front.
        self._conn = sqlite3.connect(
            self.db_path, timeout=timeout, isolation_level=None, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Run a block atomically.

        ``immediate`` takes the database write lock at BEGIN, which serializes
        read-modify-write sequences across connections. Nested calls join the
        enclosing transaction.
        """
        if self._conn.in_transaction:
            yield self._conn
            return
        self._conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield self._conn
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    external_id TEXT UNIQUE,
                    title TEXT,
                    source TEXT NOT NULL,
                    provenance TEXT NOT NULL DEFAULT '{}',
                    materialization TEXT NOT NULL DEFAULT 'none',
                    materialization_error TEXT,
                    materialized_at TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                END;
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(document_id, chunk_index),
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS analyses (
                    id TEXT PRIMARY KEY,
                    scope TEXT NOT NULL DEFAULT 'document',
                    owner_id TEXT NOT NULL,
                    target_document_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    meta TEXT NOT NULL DEFAULT '{}',
                    summary TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(target_document_id) REFERENCES documents(id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS profiles (
                    user_id TEXT PRIMARY KEY,
                    is_admin INTEGER NOT NULL DEFAULT 0,
                    free_access INTEGER NOT NULL DEFAULT 0,
                    free_tier TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS purchase_tokens (
                    token TEXT PRIMARY KEY,
                    analysis_id TEXT NOT NULL,
                    product TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    used_at TEXT,
                    provider_session_id TEXT,
                    provider_payment_intent TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payment_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    analysis_id TEXT,
                    received_at TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------ documents

    def create_document(self, document: Document) -> Document:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents(id, owner_id, external_id, title, source, provenance)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document.id,
                    document.owner_id,
                    document.external_id,
                    document.title,
                    json.dumps(document.source.to_dict(), ensure_ascii=True),
                    json.dumps(document.provenance, ensure_ascii=True),
                ),
            )
        return document

    def get_document(self, document_id: str) -> Optional[Document]:
        row = self._conn.execute(
            "SELECT * FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_document_by_external_id(self, external_id: str) -> Optional[Document]:
        row = self._conn.execute(
            "SELECT * FROM documents WHERE external_id = ?", (external_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def update_document_source(self, document_id: str, source: SourceDescriptor) -> bool:
        """Explicitly replace a document's source descriptor."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE documents SET source = ? WHERE id = ?",
                (json.dumps(source.to_dict(), ensure_ascii=True), document_id),
            )
        return cursor.rowcount > 0

    def set_materialization(
        self,
        document_id: str,
        state: MaterializationState,
        *,
        error: Optional[str] = None,
    ) -> None:
        with self.transaction(immediate=True) as conn:
            conn.execute(
                "UPDATE documents SET materialization = ?, materialization_error = ? WHERE id = ?",
                (state.value, error, document_id),
            )

    def list_documents(self) -> List[Dict[str, Any]]:
        rows = self._conn.execute(
            """
            SELECT d.id, d.owner_id, d.external_id, d.title, d.materialization,
                   COUNT(c.id) AS chunk_count
            FROM documents d
            LEFT JOIN chunks c ON c.document_id = d.id
            GROUP BY d.id
            ORDER BY d.created_at, d.id
            """
        ).fetchall()
        return [dict(row) for row in rows]

    # --------------------------------------------------------------------- chunks

    def replace_chunks(
        self, document_id: str, contents: Sequence[str], *, batch_size: int = 200
    ) -> int:
        """Swap a document's whole chunk set in one write transaction."""
        rows = [(document_id, index, content) for index, content in enumerate(contents)]
        batch_size = max(batch_size, 1)
        with self.transaction(immediate=True) as conn:
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            for start in range(0, len(rows), batch_size):
                conn.executemany(
                    "INSERT INTO chunks(document_id, chunk_index, content) VALUES (?, ?, ?)",
                    rows[start : start + batch_size],
                )
            conn.execute(
                """
                UPDATE documents
                SET materialization = ?, materialization_error = NULL, materialized_at = ?
                WHERE id = ?
                """,
                (MaterializationState.COMPLETE.value, utc_now(), document_id),
            )
        return len(rows)

    def list_chunks(self, document_id: str, *, limit: Optional[int] = None) -> List[ChunkRecord]:
        query = (
            "SELECT document_id, chunk_index, content FROM chunks "
            "WHERE document_id = ? ORDER BY chunk_index"
        )
        params: tuple = (document_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (document_id, limit)
        rows = self._conn.execute(query, params).fetchall()
        return [
            ChunkRecord(document_id=row["document_id"], index=row["chunk_index"], content=row["content"])
            for row in rows
        ]

    def count_chunks(self, document_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchone()
        return int(row[0])

    # ------------------------------------------------------------------- analyses

    def create_analysis(self, run: AnalysisRun) -> AnalysisRun:
        now = utc_now()
        run.created_at = run.created_at or now
        run.updated_at = now
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO analyses(id, scope, owner_id, target_document_id, status,
                                     meta, summary, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.id,
                    run.scope,
                    run.owner_id,
                    run.target_document_id,
                    run.status.value,
                    json.dumps(run.meta, ensure_ascii=True),
                    run.summary,
                    run.error,
                    run.created_at,
                    run.updated_at,
                ),
            )
        return run

    def get_analysis(self, analysis_id: str) -> Optional[AnalysisRun]:
        row = self._conn.execute(
            "SELECT * FROM analyses WHERE id = ?", (analysis_id,)
        ).fetchone()
        return _row_to_analysis(row) if row else None

    def update_analysis(
        self,
        analysis_id: str,
        *,
        status: Optional[RunStatus] = None,
        meta: Optional[Dict[str, Any]] = None,
        summary: Any = _UNSET,
        error: Any = _UNSET,
    ) -> bool:
        assignments = ["updated_at = ?"]
        params: List[Any] = [utc_now()]
        if status is not None:
            assignments.append("status = ?")
            params.append(status.value)
        if meta is not None:
            assignments.append("meta = ?")
            params.append(json.dumps(meta, ensure_ascii=True))
        if summary is not _UNSET:
            assignments.append("summary = ?")
            params.append(summary)
        if error is not _UNSET:
            assignments.append("error = ?")
            params.append(error)
        params.append(analysis_id)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE analyses SET {', '.join(assignments)} WHERE id = ?", params
            )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------- profiles

    def get_profile(self, user_id: str) -> Optional[Profile]:
        row = self._conn.execute(
            "SELECT * FROM profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return Profile(
            user_id=row["user_id"],
            is_admin=bool(row["is_admin"]),
            free_access=bool(row["free_access"]),
            free_tier=Tier.normalize(row["free_tier"]) if row["free_tier"] else None,
        )

    def upsert_profile(self, profile: Profile) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO profiles(user_id, is_admin, free_access, free_tier)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    is_admin = excluded.is_admin,
                    free_access = excluded.free_access,
                    free_tier = excluded.free_tier
                """,
                (
                    profile.user_id,
                    int(profile.is_admin),
                    int(profile.free_access),
                    profile.free_tier.value if profile.free_tier else None,
                ),
            )

    # ------------------------------------------------------------ purchase tokens

    def insert_purchase_token(self, token: PurchaseToken) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO purchase_tokens(token, analysis_id, product, expires_at)
                VALUES (?, ?, ?, ?)
                """,
                (token.token, token.analysis_id, token.product, token.expires_at),
            )

    def get_purchase_token(self, token: str) -> Optional[PurchaseToken]:
        row = self._conn.execute(
            "SELECT * FROM purchase_tokens WHERE token = ?", (token,)
        ).fetchone()
        if row is None:
            return None
        return PurchaseToken(
            token=row["token"],
            analysis_id=row["analysis_id"],
            product=row["product"],
            expires_at=row["expires_at"],
            used_at=row["used_at"],
        )

    def claim_purchase_token(
        self,
        token: str,
        *,
        now: str,
        session_id: Optional[str] = None,
        payment_intent: Optional[str] = None,
    ) -> bool:
        """Burn a token if it is unused and unexpired; False means nothing changed."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE purchase_tokens
                SET used_at = ?, provider_session_id = ?, provider_payment_intent = ?
                WHERE token = ? AND used_at IS NULL AND expires_at > ?
                """,
                (now, session_id, payment_intent, token, now),
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------- payment events

    def record_payment_event(
        self, event_id: str, event_type: str, analysis_id: Optional[str] = None
    ) -> bool:
        """Remember a provider event; False means it was seen before."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO payment_events(event_id, event_type, analysis_id, received_at)
                VALUES (?, ?, ?, ?)
                """,
                (event_id, event_type, analysis_id, utc_now()),
            )
        return cursor.rowcount == 1


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        owner_id=row["owner_id"],
        external_id=row["external_id"],
        title=row["title"],
        source=SourceDescriptor.from_dict(json.loads(row["source"])),
        provenance=json.loads(row["provenance"] or "{}"),
        materialization=MaterializationState(row["materialization"]),
        materialization_error=row["materialization_error"],
        materialized_at=row["materialized_at"],
    )


def _row_to_analysis(row: sqlite3.Row) -> AnalysisRun:
    return AnalysisRun(
        id=row["id"],
        scope=row["scope"],
        owner_id=row["owner_id"],
        target_document_id=row["target_document_id"],
        status=RunStatus(row["status"]),
        meta=json.loads(row["meta"] or "{}"),
        summary=row["summary"],
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
