"""Fetch PDF bytes from remote URLs or local object storage."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from recordaudit.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_MAX_BYTES
from recordaudit.errors import FetchTimeout, NotAPdf, TooLarge, UpstreamFetchError
from recordaudit.ingestion.pdf_loader import PDF_SIGNATURE, looks_like_pdf
from recordaudit.models import SourceDescriptor, SourceKind

LOGGER = logging.getLogger(__name__)

USER_AGENT = "recordaudit/0.1 (pdf-materializer)"
_READ_CHUNK = 64 * 1024


def _preview(data: bytes, limit: int = 160) -> str:
    head = data[:limit].decode("utf-8", errors="replace")
    return re.sub(r"\s+", " ", head).strip()


def _check_signature(data: bytes, origin: str) -> None:
    if not looks_like_pdf(data):
        raise NotAPdf(
            f"{origin} is not a PDF (missing {PDF_SIGNATURE.decode()}). "
            f'First bytes: "{_preview(data)}"'
        )


class LocalObjectStorage:
    """Filesystem-backed object storage laid out as ``root/bucket/path``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def object_path(self, bucket: str, path: str) -> Path:
        root = self.root.resolve()
        candidate = (root / bucket / path).resolve()
        if root not in candidate.parents:
            raise UpstreamFetchError(f"Storage path escapes the storage root: {bucket}/{path}")
        return candidate

    def put_object(self, bucket: str, path: str, data: bytes) -> Path:
        target = self.object_path(bucket, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target

    def read_object(self, bucket: str, path: str, *, max_bytes: int) -> bytes:
        target = self.object_path(bucket, path)
        if not target.is_file():
            raise UpstreamFetchError(f"Storage object not found: {bucket}/{path}")
        size = target.stat().st_size
        if size > max_bytes:
            raise TooLarge(f"PDF too large ({size} bytes, limit {max_bytes})")
        with target.open("rb") as handle:
            data = handle.read(max_bytes + 1)
        if len(data) > max_bytes:
            raise TooLarge(f"PDF too large (over {max_bytes} bytes)")
        return data


@dataclass(slots=True)
class FetchedPdf:
    data: bytes
    origin: str


class PdfFetcher:
    """Retrieve and validate PDF bytes for a resolved source descriptor."""

    def __init__(
        self,
        storage: LocalObjectStorage,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.storage = storage
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_bytes = max_bytes

    def fetch(self, source: SourceDescriptor) -> FetchedPdf:
        if source.kind is SourceKind.URL and source.is_usable:
            return FetchedPdf(data=self.fetch_url(source.url or ""), origin=source.url or "")
        if source.kind is SourceKind.STORAGE and source.is_usable:
            data = self.storage.read_object(
                source.bucket or "", source.path or "", max_bytes=self.max_bytes
            )
            origin = f"storage://{source.bucket}/{source.path}"
            _check_signature(data, origin)
            return FetchedPdf(data=data, origin=origin)
        raise UpstreamFetchError(f"Source is not fetchable: {source.to_dict()}")

    def fetch_url(self, url: str) -> bytes:
        """Stream a URL under a hard deadline, refusing oversized or non-PDF bodies."""
        deadline = time.monotonic() + self.timeout
        LOGGER.info("Fetching PDF from %s", url)
        try:
            response = self.session.get(
                url,
                stream=True,
                timeout=self.timeout,
                allow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        except requests.exceptions.Timeout as exc:
            raise FetchTimeout(f"PDF fetch timed out after {self.timeout}s: {url}") from exc
        except requests.exceptions.RequestException as exc:
            raise UpstreamFetchError(f"PDF fetch failed: {exc}") from exc

        try:
            if response.status_code >= 400:
                head = next(response.iter_content(chunk_size=240), b"") or b""
                raise UpstreamFetchError(
                    f"PDF fetch failed ({response.status_code}): {_preview(head, 240)}"
                )

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise TooLarge(f"PDF too large ({declared} bytes declared, limit {self.max_bytes})")

            buffer = bytearray()
            signature_checked = False
            for block in response.iter_content(chunk_size=_READ_CHUNK):
                if not block:
                    continue
                buffer.extend(block)
                if len(buffer) > self.max_bytes:
                    raise TooLarge(f"PDF too large (over {self.max_bytes} bytes)")
                if not signature_checked and len(buffer) >= len(PDF_SIGNATURE):
                    _check_signature(bytes(buffer), url)
                    signature_checked = True
                if time.monotonic() > deadline:
                    raise FetchTimeout(f"PDF fetch exceeded {self.timeout}s deadline: {url}")
            data = bytes(buffer)
            _check_signature(data, url)
            return data
        except requests.exceptions.Timeout as exc:
            raise FetchTimeout(f"PDF fetch timed out after {self.timeout}s: {url}") from exc
        except requests.exceptions.RequestException as exc:
            raise UpstreamFetchError(f"PDF fetch failed: {exc}") from exc
        finally:
            response.close()
