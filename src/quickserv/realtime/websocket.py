"""WebSocket endpoint — real-time notification delivery to browser tabs.

Learn: Each tab connects to /ws (one endpoint for clients, providers and
admins; the role comes from the token, not the path). The handler:
1. Accepts the socket and wraps it in a Connection
2. Runs the auth handshake (first frame must be {"type": "auth", ...})
3. Answers pings until the client goes away
4. Unregisters the connection in `finally`, whatever the reason for leaving

Pushes do not flow through this handler: the dispatcher writes to the
Connection directly, from whatever task performed the business action.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from quickserv.realtime import protocol
from quickserv.realtime.connection import Connection, ConnectionState

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def notifications_websocket(websocket: WebSocket):
    """WebSocket endpoint for per-user notification frames."""
    registry = websocket.app.state.registry
    handshake = websocket.app.state.handshake

    await websocket.accept()
    connection = Connection(websocket)
    log = logger.bind(connection_id=connection.id)
    log.debug("ws.opened", client=str(websocket.client))

    try:
        user_id = await handshake.authenticate(connection)
        if user_id is None:
            return

        while True:
            frame = protocol.parse(await connection.receive())
            if frame is None:
                # binary or malformed
                continue
            if frame["type"] == protocol.PING:
                await connection.send(protocol.pong())
            # auth frames after authentication and unknown types are ignored
    except WebSocketDisconnect as e:
        log.debug("ws.client_disconnected", code=e.code)
    finally:
        connection.state = ConnectionState.CLOSED
        removed = await registry.unregister(connection)
        log.info(
            "ws.closed",
            user_id=connection.user_id,
            was_registered=removed,
            live_connections=registry.connection_count(),
        )
