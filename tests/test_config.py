"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from recordaudit.config import DEFAULT_MAX_BYTES, AppConfig


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self) -> None:
        """Should create config with default values."""
        config = AppConfig()

        assert config.db_path == Path("data/recordaudit.db")
        assert config.storage_root == Path("data/objects")
        assert config.max_chunk_chars == 4000
        assert config.max_chunks == 250
        assert config.max_bytes == DEFAULT_MAX_BYTES
        assert config.token_ttl_seconds == 3600
        assert config.admin_user_ids == ()
        assert config.ingest_secret == ""

    def test_from_env(self) -> None:
        """Reads RECORDAUDIT_* variables and ignores everything else."""
        config = AppConfig.from_env(
            {
                "RECORDAUDIT_DB_PATH": "/srv/audit.db",
                "RECORDAUDIT_INGEST_SECRET": " s3cret ",
                "RECORDAUDIT_ADMIN_USER_IDS": "alice, bob,,",
                "RECORDAUDIT_MAX_CHUNK_CHARS": "800",
                "RECORDAUDIT_FETCH_TIMEOUT": "2.5",
                "RECORDAUDIT_SITE_URL": "https://audit.example/",
                "RECORDAUDIT_STRIPE_PRICE_PRO": "price_pro",
                "DOCFINDER_DB_PATH": "/ignored.db",
            }
        )

        assert config.db_path == Path("/srv/audit.db")
        assert config.ingest_secret == "s3cret"
        assert config.admin_user_ids == ("alice", "bob")
        assert config.max_chunk_chars == 800
        assert config.fetch_timeout == 2.5
        assert config.site_url == "https://audit.example"
        assert config.stripe_price_pro == "price_pro"
        assert config.stripe_price_basic == ""

    def test_from_env_empty_uses_defaults(self) -> None:
        assert AppConfig.from_env({}) == AppConfig()

    def test_from_env_invalid_number(self) -> None:
        with pytest.raises(ValueError):
            AppConfig.from_env({"RECORDAUDIT_MAX_CHUNKS": "many"})

    def test_resolve_db_path_absolute(self) -> None:
        """Should return absolute path as-is."""
        config = AppConfig(db_path=Path("/absolute/path/db.db"))
        assert config.resolve_db_path(Path("/base")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_no_base(self) -> None:
        """Should return relative path when no base_dir provided."""
        config = AppConfig(db_path=Path("relative/db.db"))
        assert config.resolve_db_path(base_dir=None) == Path("relative/db.db")

    def test_resolve_paths_relative_with_base(self, tmp_path: Path) -> None:
        """Should join relative paths onto base_dir."""
        config = AppConfig()
        assert config.resolve_db_path(tmp_path) == tmp_path / "data/recordaudit.db"
        assert config.resolve_storage_root(tmp_path) == tmp_path / "data/objects"
