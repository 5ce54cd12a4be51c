"""JWT token creation and verification.

Learn: One verification path serves both surfaces — the HTTP API's
Authorization header and the WebSocket's first `auth` frame. A token that
works for `GET /api/notifications` works for `/ws`, and vice versa.

The token carries the user id (`sub`) and the marketplace role
(client / provider / admin).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from quickserv.config import settings

ROLES = ("client", "provider", "admin")


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    user_id: int,
    role: str = "client",
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    if role not in ROLES:
        raise TokenError(f"Unknown role: {role}")
    now = datetime.now(timezone.utc)
    expires = now + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        # PyJWT requires `sub` to be a string
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "exp": expires,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict:
    """Verify and decode a JWT access token.

    Returns the payload dict on success.
    Raises TokenError on failure.
    """
    if not token or not isinstance(token, str):
        raise TokenError("Token is missing")
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if payload.get("type") != "access":
        raise TokenError("Invalid token type")
    user_id_from_payload(payload)
    return payload


def user_id_from_payload(payload: dict) -> int:
    """Extract the integer user id from a decoded token."""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenError("Token has no valid subject")
