"""Auth handshake tests — first-frame auth, rejection, timeout.

Learn: These drive AuthHandshake directly with a FakeSocket, so the
timing cases (deadline, frames before auth) run without a server.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import WebSocketDisconnect

from quickserv.auth.jwt import create_access_token
from quickserv.config import settings
from quickserv.realtime.connection import Connection, ConnectionState
from quickserv.realtime.handshake import AuthHandshake
from quickserv.realtime.registry import ConnectionRegistry
from quickserv.schemas.notification import NotificationCreate
from quickserv.services.notification_service import NotificationService


def _expired_token(user_id: int) -> str:
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    return jwt.encode(
        {"sub": str(user_id), "role": "client", "type": "access",
         "exp": past, "iat": past - timedelta(hours=1)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


@pytest.fixture()
def registry():
    return ConnectionRegistry()


@pytest.fixture()
def handshake(registry, session_factory):
    return AuthHandshake(registry, session_factory, timeout=1.0)


# ─── Success ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_valid_token_authenticates(handshake, registry, fake_socket):
    sock = fake_socket()
    conn = Connection(sock)
    sock.feed({"type": "auth", "token": create_access_token(42)})

    user_id = await handshake.authenticate(conn)

    assert user_id == 42
    assert conn.state is ConnectionState.AUTHENTICATED
    assert conn.user_id == 42
    assert await registry.connections_for(42) == (conn,)
    assert sock.closed is None


@pytest.mark.asyncio
async def test_success_then_current_unread_count(handshake, session_factory, fake_socket):
    """auth_success first, then the count already persisted for the user."""
    async with session_factory() as db:
        svc = NotificationService(db)
        for i in range(3):
            await svc.create(42, NotificationCreate(title=f"n{i}", message="m"))
        await svc.create(99, NotificationCreate(title="other", message="m"))

    sock = fake_socket()
    sock.feed({"type": "auth", "token": create_access_token(42)})
    await handshake.authenticate(Connection(sock))

    assert sock.sent == [
        {"type": "auth_success"},
        {"type": "unread_count", "count": 3},
    ]


@pytest.mark.asyncio
async def test_frames_before_auth_are_ignored(handshake, fake_socket):
    sock = fake_socket()
    sock.feed({"type": "ping"})
    sock.feed("not json at all")
    sock.feed({"no": "type"})
    sock.feed({"type": "auth", "token": create_access_token(5)})

    assert await handshake.authenticate(Connection(sock)) == 5
    assert sock.frames("pong") == []
    assert sock.sent[0] == {"type": "auth_success"}


@pytest.mark.asyncio
async def test_binary_frame_before_auth_is_ignored(handshake, registry, fake_socket):
    sock = fake_socket()
    sock.feed_bytes(b"\x00\x01")
    sock.feed({"type": "auth", "token": create_access_token(5)})

    assert await handshake.authenticate(Connection(sock)) == 5
    assert sock.sent[0] == {"type": "auth_success"}
    assert sock.closed is None
    assert registry.connection_count() == 1


@pytest.mark.asyncio
async def test_role_does_not_matter(handshake, fake_socket):
    """Clients, providers and admins all use the same socket."""
    for user_id, role in ((1, "client"), (2, "provider"), (3, "admin")):
        sock = fake_socket()
        sock.feed({"type": "auth", "token": create_access_token(user_id, role=role)})
        assert await handshake.authenticate(Connection(sock)) == user_id


# ─── Rejection ───────────────────────────────────────────


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "token",
    ["garbage", "", None, "eyJhbGciOiJIUzI1NiJ9.e30.bad-signature"],
)
async def test_invalid_token_rejected(handshake, registry, fake_socket, token):
    sock = fake_socket()
    conn = Connection(sock)
    sock.feed({"type": "auth", "token": token})

    assert await handshake.authenticate(conn) is None

    assert [f["type"] for f in sock.sent] == ["auth_error"]
    assert sock.closed[0] == 4001
    assert conn.state is ConnectionState.CLOSED
    assert registry.connection_count() == 0


@pytest.mark.asyncio
async def test_expired_token_rejected(handshake, registry, fake_socket):
    sock = fake_socket()
    sock.feed({"type": "auth", "token": _expired_token(42)})

    assert await handshake.authenticate(Connection(sock)) is None
    assert sock.frames("auth_error")[0]["message"] == "Token has expired"
    assert sock.closed[0] == 4001
    assert registry.connection_count() == 0


@pytest.mark.asyncio
async def test_token_signed_with_other_secret_rejected(handshake, fake_socket):
    forged = jwt.encode(
        {"sub": "42", "role": "admin", "type": "access"}, "not-the-secret", algorithm="HS256"
    )
    sock = fake_socket()
    sock.feed({"type": "auth", "token": forged})

    assert await handshake.authenticate(Connection(sock)) is None
    assert sock.closed[0] == 4001


@pytest.mark.asyncio
async def test_non_access_token_rejected(handshake, fake_socket):
    refresh = jwt.encode(
        {"sub": "42", "type": "refresh"}, settings.jwt_secret, algorithm=settings.jwt_algorithm
    )
    sock = fake_socket()
    sock.feed({"type": "auth", "token": refresh})

    assert await handshake.authenticate(Connection(sock)) is None
    assert sock.frames("auth_error")[0]["message"] == "Invalid token type"


@pytest.mark.asyncio
async def test_rejection_survives_dead_socket(handshake, fake_socket):
    """If auth_error cannot be sent the socket is still closed."""
    sock = fake_socket(fail_send=True)
    sock.feed({"type": "auth", "token": "garbage"})

    assert await handshake.authenticate(Connection(sock)) is None
    assert sock.closed[0] == 4001


# ─── Timeout and disconnect ──────────────────────────────


@pytest.mark.asyncio
async def test_no_auth_frame_times_out(registry, session_factory, fake_socket):
    handshake = AuthHandshake(registry, session_factory, timeout=0.05)
    sock = fake_socket()
    conn = Connection(sock)

    assert await handshake.authenticate(conn) is None
    assert sock.closed[0] == 4408
    assert sock.sent == []
    assert conn.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_chatter_does_not_extend_deadline(registry, session_factory, fake_socket):
    """Frames that are not auth do not reset the timer."""
    handshake = AuthHandshake(registry, session_factory, timeout=0.2)
    sock = fake_socket()

    async def chatter():
        for _ in range(20):
            sock.feed({"type": "ping"})
            await asyncio.sleep(0.02)

    chatter_task = asyncio.create_task(chatter())
    result = await asyncio.wait_for(handshake.authenticate(Connection(sock)), 1.0)
    chatter_task.cancel()

    assert result is None
    assert sock.closed[0] == 4408


@pytest.mark.asyncio
async def test_disconnect_before_auth_propagates(handshake, registry, fake_socket):
    sock = fake_socket()
    sock.disconnect()

    with pytest.raises(WebSocketDisconnect):
        await handshake.authenticate(Connection(sock))
    assert registry.connection_count() == 0
