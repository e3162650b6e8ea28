"""Caller identification for the HTTP surface."""

from __future__ import annotations

import hmac
import logging
import time
from typing import Optional

import jwt

from recordaudit.config import AppConfig
from recordaudit.errors import AuthenticationError
from recordaudit.models import Principal

LOGGER = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def _bearer_token(authorization: Optional[str]) -> str:
    value = (authorization or "").strip()
    if value.lower().startswith(BEARER_PREFIX):
        return value[len(BEARER_PREFIX):].strip()
    return ""


def has_valid_ingest_secret(config: AppConfig, presented: Optional[str]) -> bool:
    expected = config.ingest_secret.strip()
    got = (presented or "").strip()
    return bool(expected) and bool(got) and hmac.compare_digest(got, expected)


def issue_session_token(config: AppConfig, user_id: str, *, ttl: int = 3600) -> str:
    """Mint a bearer token for ``user_id``; used by the CLI and tests."""
    if not config.session_secret:
        raise AuthenticationError("Session secret is not configured")
    now = int(time.time())
    return jwt.encode(
        {"sub": user_id, "iat": now, "exp": now + ttl}, config.session_secret, algorithm="HS256"
    )


def resolve_principal(
    config: AppConfig, *, ingest_secret: Optional[str], authorization: Optional[str]
) -> Principal:
    """System callers present the shared secret; end users a signed bearer token."""
    if has_valid_ingest_secret(config, ingest_secret):
        return Principal.system()

    token = _bearer_token(authorization)
    if not token or not config.session_secret:
        raise AuthenticationError("Unauthorized")
    try:
        claims = jwt.decode(
            token, config.session_secret, algorithms=["HS256"], options={"require": ["sub"]}
        )
    except jwt.PyJWTError as exc:
        LOGGER.warning("Rejected bearer token: %s", exc)
        raise AuthenticationError("Unauthorized") from exc

    subject = str(claims.get("sub") or "").strip()
    if not subject:
        raise AuthenticationError("Unauthorized")
    return Principal.user(subject)
