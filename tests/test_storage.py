"""Tests for SQLiteStore."""

import sqlite3
from pathlib import Path

import pytest

from recordaudit.models import (
    AnalysisRun,
    Document,
    MaterializationState,
    Profile,
    PurchaseToken,
    RunStatus,
    SourceDescriptor,
    Tier,
)
from recordaudit.store.storage import SQLiteStore


def _document(store: SQLiteStore, doc_id: str = "doc-1") -> Document:
    document = Document(
        id=doc_id,
        owner_id="system",
        source=SourceDescriptor.for_url("https://records.example/a.pdf"),
        provenance={"court": "36th District"},
    )
    store.create_document(document)
    return document


def _token(store: SQLiteStore, token: str = "tok_abc", expires_at: str = "2099-01-01T00:00:00.000000Z") -> None:
    store.insert_purchase_token(
        PurchaseToken(token=token, analysis_id="run-1", product="audit_pro", expires_at=expires_at)
    )


class TestSchema:
    """Test SQLiteStore initialization and schema."""

    def test_init_creates_database(self, tmp_path: Path) -> None:
        db_path = tmp_path / "new.db"
        store = SQLiteStore(db_path)
        assert db_path.exists()
        assert store.db_path == db_path
        store.close()

    def test_tables_created(self, store: SQLiteStore) -> None:
        names = {
            row[0]
            for row in store.connection.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"documents", "chunks", "analyses", "profiles", "purchase_tokens", "payment_events"} <= names

    def test_pragma_settings(self, store: SQLiteStore) -> None:
        assert store.connection.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"
        assert store.connection.execute("PRAGMA synchronous").fetchone()[0] == 1
        assert store.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_connection_property(self, store: SQLiteStore) -> None:
        assert isinstance(store.connection, sqlite3.Connection)


class TestTransaction:
    """Tests for the transaction context manager."""

    def test_rollback_on_error(self, store: SQLiteStore) -> None:
        _document(store)
        with pytest.raises(RuntimeError):
            with store.transaction(immediate=True):
                store.replace_chunks("doc-1", ["inside"])
                raise RuntimeError("boom")
        assert store.count_chunks("doc-1") == 0

    def test_nested_calls_join_outer(self, store: SQLiteStore) -> None:
        _document(store)
        with store.transaction():
            store.replace_chunks("doc-1", ["a"])
            assert store.connection.in_transaction
        assert not store.connection.in_transaction
        assert store.count_chunks("doc-1") == 1


class TestDocuments:
    """Tests for document persistence."""

    def test_round_trip(self, store: SQLiteStore) -> None:
        _document(store)
        document = store.get_document("doc-1")
        assert document.source.url == "https://records.example/a.pdf"
        assert document.provenance == {"court": "36th District"}
        assert document.materialization is MaterializationState.NONE

    def test_update_source_is_explicit(self, store: SQLiteStore) -> None:
        _document(store)
        new_source = SourceDescriptor.for_storage("records", "a.pdf")
        assert store.update_document_source("doc-1", new_source)
        assert store.get_document("doc-1").source == new_source

    def test_list_documents_counts_chunks(self, store: SQLiteStore) -> None:
        _document(store)
        store.replace_chunks("doc-1", ["a", "b", "c"])
        listed = store.list_documents()
        assert listed[0]["id"] == "doc-1"
        assert listed[0]["chunk_count"] == 3


class TestChunks:
    """Tests for chunk replacement."""

    def test_replace_is_contiguous(self, store: SQLiteStore) -> None:
        _document(store)
        store.replace_chunks("doc-1", ["a", "b", "c", "d", "e"], batch_size=2)
        assert [c.index for c in store.list_chunks("doc-1")] == [0, 1, 2, 3, 4]

    def test_replace_discards_previous_set(self, store: SQLiteStore) -> None:
        _document(store)
        store.replace_chunks("doc-1", ["a", "b", "c"])
        store.replace_chunks("doc-1", ["z"])
        assert [c.content for c in store.list_chunks("doc-1")] == ["z"]

    def test_list_limit(self, store: SQLiteStore) -> None:
        _document(store)
        store.replace_chunks("doc-1", ["a", "b", "c"])
        assert len(store.list_chunks("doc-1", limit=2)) == 2


class TestAnalyses:
    """Tests for analysis run persistence."""

    def test_create_and_update(self, store: SQLiteStore) -> None:
        _document(store)
        store.create_analysis(
            AnalysisRun(id="run-1", owner_id="system", target_document_id="doc-1", status=RunStatus.RUNNING, meta={"tier": "pro"})
        )

        store.update_analysis("run-1", status=RunStatus.DONE, summary="done", error=None)

        run = store.get_analysis("run-1")
        assert run.status is RunStatus.DONE
        assert run.summary == "done"
        assert run.meta == {"tier": "pro"}

    def test_update_missing_run(self, store: SQLiteStore) -> None:
        assert not store.update_analysis("missing", status=RunStatus.DONE)


class TestProfiles:
    """Tests for profile persistence."""

    def test_upsert(self, store: SQLiteStore) -> None:
        store.upsert_profile(Profile(user_id="u1", free_access=True, free_tier=Tier.PRO))
        store.upsert_profile(Profile(user_id="u1", is_admin=True))
        profile = store.get_profile("u1")
        assert profile.is_admin
        assert not profile.free_access
        assert profile.free_tier is None

    def test_missing(self, store: SQLiteStore) -> None:
        assert store.get_profile("nobody") is None


class TestPurchaseTokens:
    """Tests for the single-use purchase token claim."""

    def test_claim_once(self, store: SQLiteStore) -> None:
        _token(store)
        now = "2030-01-01T00:00:00.000000Z"
        assert store.claim_purchase_token("tok_abc", now=now, session_id="cs_1")
        assert not store.claim_purchase_token("tok_abc", now=now, session_id="cs_2")
        assert store.get_purchase_token("tok_abc").used_at == now

    def test_expired_token_not_claimed(self, store: SQLiteStore) -> None:
        _token(store, expires_at="2020-01-01T00:00:00.000000Z")
        assert not store.claim_purchase_token("tok_abc", now="2030-01-01T00:00:00.000000Z")
        assert store.get_purchase_token("tok_abc").used_at is None

    def test_unknown_token(self, store: SQLiteStore) -> None:
        assert not store.claim_purchase_token("tok_missing", now="2030-01-01T00:00:00.000000Z")

    def test_claim_from_two_connections(self, tmp_path: Path) -> None:
        first = SQLiteStore(tmp_path / "shared.db")
        second = SQLiteStore(tmp_path / "shared.db")
        try:
            _token(first)
            now = "2030-01-01T00:00:00.000000Z"
            results = [first.claim_purchase_token("tok_abc", now=now), second.claim_purchase_token("tok_abc", now=now)]
            assert results.count(True) == 1
        finally:
            first.close()
            second.close()


class TestPaymentEvents:
    """Tests for payment event deduplication."""

    def test_first_delivery_recorded(self, store: SQLiteStore) -> None:
        assert store.record_payment_event("evt_1", "checkout.session.completed", "run-1")

    def test_redelivery_ignored(self, store: SQLiteStore) -> None:
        store.record_payment_event("evt_1", "checkout.session.completed", "run-1")
        assert not store.record_payment_event("evt_1", "checkout.session.completed", "run-1")
