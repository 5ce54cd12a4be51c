"""Test fixtures — a throwaway SQLite database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI + WebSockets:

1. Each test gets its own SQLite file under tmp_path, opened through
   aiosqlite with NullPool. No connection outlives the operation that
   opened it, so the same engine works from pytest-asyncio's loop and
   from the portal loop Starlette's TestClient runs the app on.
2. The app is built with create_app(engine=...), so the REST routes, the
   handshake and the dispatcher all talk to the test database. Nothing
   is monkeypatched.
3. Redis is disabled before quickserv is imported: lifespan skips
   fan-out, rate limiting is skipped and /api/health reports "disabled".
"""

import asyncio
import json
import os

os.environ["QUICKSERV_REDIS_URL"] = ""
os.environ.setdefault("QUICKSERV_ENVIRONMENT", "development")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import NullPool

from quickserv.auth.jwt import create_access_token
from quickserv.db.engine import build_engine, build_session_factory, init_models
from quickserv.main import create_app

USER_ID = 1


# ─── Database ────────────────────────────────────────────


@pytest.fixture()
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'quickserv.db'}"


@pytest_asyncio.fixture()
async def engine(db_url):
    eng = build_engine(db_url, poolclass=NullPool)
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return build_session_factory(engine)


# ─── Apps and HTTP clients ───────────────────────────────


@pytest.fixture()
def app(engine):
    return create_app(engine=engine)


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client with get_current_user overridden to USER_ID (role client).

    Learn: Same trick as always — routes under test see a fixed identity,
    so most tests do not need to mint tokens.
    """
    from quickserv.auth.dependencies import CurrentIdentity, get_current_user

    def override_get_current_user():
        return CurrentIdentity(user_id=USER_ID, role="client")

    app.dependency_overrides[get_current_user] = override_get_current_user

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def unauthenticated_client(app):
    """HTTP client WITHOUT auth override — send real bearer tokens."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers():
    """Factory: auth_headers(user_id, role="client") → Authorization header."""

    def _make(user_id: int, role: str = "client") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}

    return _make


@pytest.fixture()
def ws_app(db_url):
    """App for Starlette's TestClient (sync tests, app runs on a portal loop)."""
    eng = build_engine(db_url, poolclass=NullPool)
    asyncio.run(init_models(eng))
    return create_app(engine=eng)


# ─── Fake server-side socket ─────────────────────────────


class FakeSocket:
    """Stands in for starlette's WebSocket behind a Connection.

    Frames fed with feed() or feed_bytes() come back from receive() as
    ASGI messages; disconnect() queues a websocket.disconnect message.
    Sent frames are decoded into `sent`.
    """

    def __init__(self, fail_send: bool = False, hang_send: bool = False):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed: tuple[int, str] | None = None
        self.fail_send = fail_send
        self.hang_send = hang_send

    def feed(self, frame) -> None:
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})

    def feed_bytes(self, data: bytes) -> None:
        self.incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self, code: int = 1000) -> None:
        self.incoming.put_nowait({"type": "websocket.disconnect", "code": code})

    async def receive(self) -> dict:
        return await self.incoming.get()

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("socket is gone")
        if self.hang_send:
            await asyncio.sleep(3600)
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)

    def frames(self, frame_type: str) -> list[dict]:
        return [f for f in self.sent if f["type"] == frame_type]


@pytest.fixture()
def fake_socket():
    """Factory for FakeSocket instances."""
    return FakeSocket
