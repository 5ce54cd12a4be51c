"""WebSocket auth handshake — the first frame must carry a bearer token.

Learn: Browsers cannot set an Authorization header on a WebSocket, and a
token in the query string ends up in proxy logs. So the socket is accepted
unauthenticated and the client sends {"type": "auth", "token": ...} as its
first frame. Until that frame arrives:

- other frames (pings, stray JSON, garbage) are ignored, not errors — the
  browser may flush buffered messages before its auth frame;
- nothing is ever pushed to the connection, because it is not in the
  registry yet;
- a deadline runs; if it passes, the socket is closed (4408) so idle
  unauthenticated sockets cannot pile up.

A bad token gets an explicit auth_error frame and close code 4001. The
token is checked with the same verify_token() the HTTP API uses.
"""

import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quickserv.auth.jwt import TokenError, user_id_from_payload, verify_token
from quickserv.realtime import protocol
from quickserv.realtime.connection import Connection, ConnectionState
from quickserv.realtime.registry import ConnectionRegistry
from quickserv.services.notification_service import NotificationService

logger = structlog.get_logger()


class AuthHandshake:
    """Moves a connection from UNAUTHENTICATED to AUTHENTICATED or CLOSED."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        timeout: float = 5.0,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.timeout = timeout

    async def authenticate(self, connection: Connection) -> Optional[int]:
        """Wait for the auth frame. Returns the user id, or None if rejected.

        Transport disconnects (WebSocketDisconnect) propagate to the caller,
        which owns cleanup.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        log = logger.bind(connection_id=connection.id)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return await self._timed_out(connection, log)
            try:
                text = await asyncio.wait_for(connection.receive(), remaining)
            except asyncio.TimeoutError:
                return await self._timed_out(connection, log)

            frame = protocol.parse(text)
            if frame is None or frame["type"] != protocol.AUTH:
                log.debug("ws.pre_auth_frame_ignored")
                continue

            try:
                payload = verify_token(frame.get("token"))
                user_id = user_id_from_payload(payload)
            except TokenError as e:
                return await self._reject(connection, str(e), log)

            await self._accept(connection, user_id)
            log.info("ws.authenticated", user_id=user_id, role=payload.get("role"))
            return user_id

    async def _accept(self, connection: Connection, user_id: int) -> None:
        connection.state = ConnectionState.AUTHENTICATED
        await connection.send(protocol.auth_success())
        await self.registry.register(user_id, connection)
        # Count after registering: anything persisted later is pushed, so the
        # client never misses a notification between the two steps.
        async with self.session_factory() as db:
            count = await NotificationService(db).unread_count(user_id)
        await connection.send(protocol.unread_count(count))

    async def _reject(self, connection: Connection, reason: str, log) -> None:
        log.warning("ws.auth_failed", reason=reason)
        try:
            await connection.send(protocol.auth_error(reason))
        except Exception as e:
            log.debug("ws.auth_error_not_sent", error=str(e))
        await connection.close(protocol.CLOSE_AUTH_FAILED, "Invalid or expired token")
        return None

    async def _timed_out(self, connection: Connection, log) -> None:
        log.warning("ws.auth_timeout", timeout=self.timeout)
        await connection.close(protocol.CLOSE_AUTH_TIMEOUT, "Authentication timeout")
        return None
