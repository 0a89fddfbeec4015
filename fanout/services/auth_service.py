"""Access tokens: the boundary where a request becomes a user id."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def create_access_token(data: dict[str, Any], secret_key: str, expires_minutes: int = 60) -> str:
    """Create a JWT access token; ``data["sub"]`` carries the user id."""
    to_encode = data.copy()
    expire = datetime.now(UTC) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire, "type": "access"})
    return str(jwt.encode(to_encode, secret_key, algorithm=ALGORITHM))


def decode_access_token(token: str, secret_key: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        payload: dict[str, Any] = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        logger.debug("Failed to decode access token", exc_info=True)
        return None


def user_id_from_token(token: str, secret_key: str) -> str | None:
    """Return the ``sub`` claim of a valid access token."""
    payload = decode_access_token(token, secret_key)
    if payload is None:
        return None
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    return subject
