"""Client-side session credential.

Learn: The controller retries forever while the session is valid and
stops the moment it is not. "Valid" means a token is present and its
`exp` has not passed. The client cannot check the signature (it does not
have the secret) and does not need to — the server does that on every
handshake; this check only avoids reconnecting with a token that is
certain to be refused.
"""

import time
from typing import Callable, Optional

import jwt


class SessionStore:
    """Holds the bearer token of the logged-in user."""

    def __init__(self, token: Optional[str] = None, clock: Callable[[], float] = time.time):
        self._token = token
        self._clock = clock

    @property
    def token(self) -> Optional[str]:
        return self._token

    def login(self, token: str) -> None:
        self._token = token

    def logout(self) -> None:
        self._token = None

    def claims(self) -> dict:
        """Token payload without signature verification ({} if unreadable)."""
        if not self._token:
            return {}
        try:
            return jwt.decode(
                self._token,
                options={"verify_signature": False, "verify_exp": False},
            )
        except jwt.DecodeError:
            return {}

    def is_valid(self) -> bool:
        if not self._token:
            return False
        claims = self.claims()
        if not claims:
            return False
        exp = claims.get("exp")
        return exp is None or float(exp) > self._clock()

    @property
    def user_id(self) -> Optional[int]:
        sub = self.claims().get("sub")
        return int(sub) if sub is not None else None

    @property
    def role(self) -> Optional[str]:
        return self.claims().get("role")
