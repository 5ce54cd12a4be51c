"""Client transport — a thin wrapper over a `websockets` client connection.

Learn: The controller only knows three operations (send, recv, close) and
one failure (TransportClosed). Everything the websockets library can throw
while connecting or talking — refused connection, bad handshake, timeout,
close frame — is translated into TransportClosed here, so the retry logic
has exactly one thing to catch and tests can fake the transport with a
pair of queues.
"""

import asyncio
from typing import Optional, Protocol

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI


class TransportClosed(Exception):
    """The socket is gone (or never opened)."""

    def __init__(self, reason: str = "", code: Optional[int] = None):
        super().__init__(reason or "transport closed")
        self.code = code
        self.reason = reason


class ClientTransport(Protocol):
    async def send(self, text: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


class WebSocketTransport:
    """ClientTransport backed by websockets.asyncio.client."""

    def __init__(self, ws: ClientConnection):
        self.ws = ws

    async def send(self, text: str) -> None:
        try:
            await self.ws.send(text)
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def recv(self) -> str:
        try:
            message = await self.ws.recv()
        except ConnectionClosed as e:
            raise _closed(e) from e
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def close(self) -> None:
        await self.ws.close()


async def connect_websocket(url: str, open_timeout: float = 10.0) -> WebSocketTransport:
    """Default transport factory for ReconnectController."""
    try:
        ws = await connect(url, open_timeout=open_timeout)
    except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as e:
        raise TransportClosed(f"connect failed: {e}") from e
    return WebSocketTransport(ws)


def _closed(e: ConnectionClosed) -> TransportClosed:
    code = e.rcvd.code if e.rcvd is not None else None
    reason = e.rcvd.reason if e.rcvd is not None else ""
    return TransportClosed(reason, code=code)
