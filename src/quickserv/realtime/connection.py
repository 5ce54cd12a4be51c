"""A live socket as seen by the registry, the handshake and the dispatcher."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol

from starlette.websockets import WebSocketDisconnect

from quickserv.realtime import protocol


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Transport(Protocol):
    """The subset of starlette.websockets.WebSocket we rely on."""

    async def receive(self) -> dict[str, Any]: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class Connection:
    """One browser tab's socket.

    Learn: user_id stays None until the handshake succeeds. State only
    moves forward: UNAUTHENTICATED → AUTHENTICATED → CLOSED, or straight
    from UNAUTHENTICATED to CLOSED.
    """

    def __init__(self, transport: Transport, connection_id: Optional[str] = None):
        self.id = connection_id or uuid.uuid4().hex
        self.transport = transport
        self.user_id: Optional[int] = None
        self.state = ConnectionState.UNAUTHENTICATED
        self.created_at = datetime.now(timezone.utc)

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    async def receive(self) -> Optional[str]:
        """Next text frame, or None for a binary one.

        Raises WebSocketDisconnect when the client goes away.
        """
        message = await self.transport.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
        return message.get("text")

    async def send(self, frame: dict[str, Any]) -> None:
        await self.transport.send_text(protocol.encode(frame))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the transport; a transport that is already gone is fine."""
        self.state = ConnectionState.CLOSED
        try:
            await self.transport.close(code=code, reason=reason)
        except RuntimeError:
            # starlette raises RuntimeError when the socket is already closed
            pass

    def __repr__(self) -> str:
        return f"<Connection {self.id[:8]} user={self.user_id} {self.state.value}>"
