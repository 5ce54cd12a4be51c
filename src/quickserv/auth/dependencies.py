"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current user identity from the request.

Only one mechanism: a Bearer JWT in the Authorization header. Role is
carried along for the few admin-only routes; transport and persistence
never look at it.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException

from quickserv.auth.jwt import TokenError, user_id_from_payload, verify_token


class CurrentIdentity:
    """Represents the authenticated user making the request."""

    def __init__(self, user_id: int, role: str = "client"):
        self.user_id = user_id
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        return _authenticate_jwt(authorization[7:])
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
) -> CurrentIdentity:
    """Admin-only routes (403 for clients and providers)."""
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def _authenticate_jwt(token: str) -> CurrentIdentity:
    """Authenticate via JWT token."""
    try:
        payload = verify_token(token)
        return CurrentIdentity(
            user_id=user_id_from_payload(payload),
            role=payload.get("role", "client"),
        )
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
