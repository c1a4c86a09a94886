"""
Bearer token helpers.

Tokens are HS256 JWTs whose `sub` claim is the user ID.  A token is only
accepted when it also equals the token stored on the user record, so a
token can be revoked by replacing it in the users file.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt as pyjwt

from gateway.core.config import settings
from gateway.core.logging import get_logger

logger = get_logger(__name__)


def create_access_token(
    user_id: str,
    expires_delta: timedelta | None = None,
    secret: str | None = None,
) -> str:
    """Issue a token for `user_id`.  No expiry unless `expires_delta` is given."""
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {"sub": user_id, "iat": now}
    if expires_delta is not None:
        payload["exp"] = now + expires_delta
    return pyjwt.encode(payload, secret or settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, secret: str | None = None) -> dict[str, Any] | None:
    """Return the token's claims, or None when it is invalid or expired."""
    try:
        return pyjwt.decode(
            token,
            secret or settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except pyjwt.ExpiredSignatureError:
        logger.info("Expired token rejected")
    except pyjwt.InvalidTokenError as exc:
        logger.info("Invalid token rejected", error=str(exc))
    return None
