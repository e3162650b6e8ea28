"""Tests for PDF fetching from URLs and object storage."""

from __future__ import annotations

from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import pytest
import requests

from recordaudit.errors import FetchTimeout, NotAPdf, TooLarge, UpstreamFetchError
from recordaudit.ingestion.fetcher import LocalObjectStorage, PdfFetcher
from recordaudit.models import SourceDescriptor

PDF_BYTES = b"%PDF-1.7\n" + b"0" * 100


def _response(status: int = 200, blocks: List[bytes] | None = None, headers: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.iter_content.side_effect = lambda chunk_size=1: iter(list(blocks or []))
    return response


def _fetcher(tmp_path: Path, response: MagicMock | None = None, **kwargs) -> tuple[PdfFetcher, MagicMock]:
    session = MagicMock()
    if response is not None:
        session.get.return_value = response
    fetcher = PdfFetcher(LocalObjectStorage(tmp_path), session=session, **kwargs)
    return fetcher, session


class TestLocalObjectStorage:
    """Tests for LocalObjectStorage."""

    def test_put_and_read(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        storage.put_object("records", "a/b.pdf", PDF_BYTES)
        assert storage.read_object("records", "a/b.pdf", max_bytes=1000) == PDF_BYTES

    def test_missing_object(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        with pytest.raises(UpstreamFetchError, match="not found"):
            storage.read_object("records", "missing.pdf", max_bytes=1000)

    def test_object_over_limit(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        storage.put_object("records", "big.pdf", PDF_BYTES)
        with pytest.raises(TooLarge):
            storage.read_object("records", "big.pdf", max_bytes=10)

    def test_path_traversal_rejected(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path / "root")
        with pytest.raises(UpstreamFetchError, match="escapes"):
            storage.object_path("records", "../../etc/passwd")


class TestFetchUrl:
    """Tests for PdfFetcher.fetch_url with a stubbed HTTP session."""

    def test_streams_pdf(self, tmp_path: Path) -> None:
        response = _response(blocks=[PDF_BYTES[:20], PDF_BYTES[20:]])
        fetcher, session = _fetcher(tmp_path, response)

        assert fetcher.fetch_url("https://court.example/r.pdf") == PDF_BYTES
        kwargs = session.get.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["allow_redirects"] is True
        response.close.assert_called_once()

    def test_declared_content_type_is_ignored(self, tmp_path: Path) -> None:
        response = _response(blocks=[PDF_BYTES], headers={"Content-Type": "text/html"})
        fetcher, _ = _fetcher(tmp_path, response)
        assert fetcher.fetch_url("https://court.example/r") == PDF_BYTES

    def test_html_body_rejected(self, tmp_path: Path) -> None:
        response = _response(blocks=[b"<html><body>login required</body></html>"])
        fetcher, _ = _fetcher(tmp_path, response)
        with pytest.raises(NotAPdf, match="login required"):
            fetcher.fetch_url("https://court.example/r.pdf")

    def test_declared_length_over_limit(self, tmp_path: Path) -> None:
        response = _response(blocks=[PDF_BYTES], headers={"Content-Length": "5000"})
        fetcher, _ = _fetcher(tmp_path, response, max_bytes=1000)
        with pytest.raises(TooLarge):
            fetcher.fetch_url("https://court.example/r.pdf")
        response.close.assert_called_once()

    def test_streamed_body_over_limit(self, tmp_path: Path) -> None:
        response = _response(blocks=[PDF_BYTES, b"1" * 600, b"2" * 600])
        fetcher, _ = _fetcher(tmp_path, response, max_bytes=1000)
        with pytest.raises(TooLarge):
            fetcher.fetch_url("https://court.example/r.pdf")

    def test_error_status(self, tmp_path: Path) -> None:
        response = _response(status=404, blocks=[b"Not Found"])
        fetcher, _ = _fetcher(tmp_path, response)
        with pytest.raises(UpstreamFetchError, match="404"):
            fetcher.fetch_url("https://court.example/r.pdf")

    def test_timeout(self, tmp_path: Path) -> None:
        fetcher, session = _fetcher(tmp_path)
        session.get.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(FetchTimeout):
            fetcher.fetch_url("https://court.example/r.pdf")

    def test_connection_error(self, tmp_path: Path) -> None:
        fetcher, session = _fetcher(tmp_path)
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(UpstreamFetchError):
            fetcher.fetch_url("https://court.example/r.pdf")


class TestFetch:
    """Tests for PdfFetcher.fetch dispatch."""

    def test_storage_source(self, tmp_path: Path) -> None:
        fetcher, session = _fetcher(tmp_path)
        fetcher.storage.put_object("records", "r.pdf", PDF_BYTES)

        fetched = fetcher.fetch(SourceDescriptor.for_storage("records", "r.pdf"))

        assert fetched.data == PDF_BYTES
        assert fetched.origin == "storage://records/r.pdf"
        session.get.assert_not_called()

    def test_storage_object_not_a_pdf(self, tmp_path: Path) -> None:
        fetcher, _ = _fetcher(tmp_path)
        fetcher.storage.put_object("records", "r.pdf", b"PK\x03\x04 zip archive")
        with pytest.raises(NotAPdf):
            fetcher.fetch(SourceDescriptor.for_storage("records", "r.pdf"))

    def test_pointer_is_not_fetchable(self, tmp_path: Path) -> None:
        fetcher, _ = _fetcher(tmp_path)
        with pytest.raises(UpstreamFetchError):
            fetcher.fetch(SourceDescriptor.for_pointer("doc-2"))
