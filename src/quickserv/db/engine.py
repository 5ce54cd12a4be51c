"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

The app keeps its session factory on app.state so the REST routes, the
WebSocket handshake and the dispatcher all share one pool, and tests can
swap in a SQLite factory without monkeypatching module globals.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from quickserv.config import settings


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = url or settings.database_url
    options = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        # Connection pool: min 5, max 20 connections.
        options.update(pool_size=5, max_overflow=15)
    options.update(kwargs)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine()

# Session factory — each request gets its own session.
async_session_factory = build_session_factory(engine)


async def init_models(bind: AsyncEngine) -> None:
    """Create all tables (development and tests; production uses Alembic)."""
    from quickserv.db.models import Base

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request) -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    factory = getattr(request.app.state, "session_factory", async_session_factory)
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()
