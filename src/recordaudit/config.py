"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

ENV_PREFIX = "RECORDAUDIT_"

DEFAULT_MAX_CHUNK_CHARS = 4000
DEFAULT_MAX_CHUNKS = 250
DEFAULT_FETCH_TIMEOUT = 45.0
DEFAULT_MAX_BYTES = 25 * 1024 * 1024


def _split_ids(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(slots=True)
class AppConfig:
    db_path: Path = Path("data/recordaudit.db")
    storage_root: Path = Path("data/objects")
    ingest_secret: str = ""
    session_secret: str = ""
    admin_user_ids: tuple[str, ...] = field(default_factory=tuple)
    system_owner_id: str = "system"
    max_chunk_chars: int = DEFAULT_MAX_CHUNK_CHARS
    max_chunks: int = DEFAULT_MAX_CHUNKS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_bytes: int = DEFAULT_MAX_BYTES
    token_ttl_seconds: int = 3600
    site_url: str = "http://localhost:8000"
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_price_basic: str = ""
    stripe_price_pro: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build a config from ``RECORDAUDIT_*`` environment variables."""
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return env.get(ENV_PREFIX + name, default).strip()

        defaults = cls()
        return cls(
            db_path=Path(get("DB_PATH") or defaults.db_path),
            storage_root=Path(get("STORAGE_ROOT") or defaults.storage_root),
            ingest_secret=get("INGEST_SECRET"),
            session_secret=get("SESSION_SECRET"),
            admin_user_ids=_split_ids(get("ADMIN_USER_IDS")),
            system_owner_id=get("SYSTEM_OWNER_ID") or defaults.system_owner_id,
            max_chunk_chars=int(get("MAX_CHUNK_CHARS") or defaults.max_chunk_chars),
            max_chunks=int(get("MAX_CHUNKS") or defaults.max_chunks),
            fetch_timeout=float(get("FETCH_TIMEOUT") or defaults.fetch_timeout),
            max_bytes=int(get("MAX_BYTES") or defaults.max_bytes),
            token_ttl_seconds=int(get("TOKEN_TTL_SECONDS") or defaults.token_ttl_seconds),
            site_url=(get("SITE_URL") or defaults.site_url).rstrip("/"),
            stripe_secret_key=get("STRIPE_SECRET_KEY"),
            stripe_webhook_secret=get("STRIPE_WEBHOOK_SECRET"),
            stripe_price_basic=get("STRIPE_PRICE_BASIC"),
            stripe_price_pro=get("STRIPE_PRICE_PRO"),
        )

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def resolve_storage_root(self, base_dir: Path | None = None) -> Path:
        if Path(self.storage_root).is_absolute() or base_dir is None:
            return Path(self.storage_root)
        return base_dir / self.storage_root
