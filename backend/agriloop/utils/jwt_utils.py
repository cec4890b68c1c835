from __future__ import annotations

import logging
import os
import time

import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 7 * 24 * 3600


def _signing_key() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret"


def create_token(user_id: int, ttl_seconds: int | None = None) -> str:
    """Bearer token whose ``sub`` is the user id, as the accounts service issues them."""
    if ttl_seconds is None:
        ttl_seconds = int(os.getenv("JWT_TTL_SECONDS") or DEFAULT_TTL_SECONDS)
    issued = int(time.time())
    claims = {"sub": str(user_id), "iat": issued, "exp": issued + int(ttl_seconds), "type": "access"}
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, _signing_key(), algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        logger.debug("token_rejected reason=%s", type(e).__name__)
        return None


def get_bearer_token(header: str) -> str | None:
    scheme, _, token = (header or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
