"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The realtime services (registry, handshake, dispatcher) are
built here, once per app, and hung on app.state; routes and the socket
handler get them from there instead of importing module globals, so a
test can build an app around its own database.

Lifespan manages what needs a running loop: table creation in
development, the Redis pool and the cross-process fan-out listener.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from quickserv import __version__
from quickserv.api import api_router
from quickserv.config import settings
from quickserv.db.engine import build_session_factory, init_models
from quickserv.realtime.dispatcher import NotificationDispatcher
from quickserv.realtime.handshake import AuthHandshake
from quickserv.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    logger.info(
        "quickserv.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    if settings.auto_create_tables:
        await init_models(app.state.engine)
        logger.info("quickserv.tables_created")

    from quickserv.realtime.pubsub import (
        RedisFanout,
        RedisFramePublisher,
        close_redis,
        init_redis,
    )

    fanout_task: Optional[asyncio.Task] = None
    if settings.redis_url:
        try:
            redis = await init_redis()
            app.state.dispatcher.publisher = RedisFramePublisher(redis)
            fanout_task = asyncio.create_task(
                RedisFanout(redis, app.state.dispatcher).run()
            )
            logger.info("quickserv.redis_connected", url=settings.redis_url)
        except Exception as e:
            # Redis is optional — single-process delivery still works
            logger.warning("quickserv.redis_unavailable", error=str(e))

    yield

    logger.info("quickserv.shutdown")

    if fanout_task is not None:
        fanout_task.cancel()
        try:
            await fanout_task
        except asyncio.CancelledError:
            pass
    app.state.dispatcher.publisher = None
    await close_redis()

    await app.state.engine.dispose()


def create_app(engine: Optional[AsyncEngine] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="QuickServ Realtime",
        description="Notification delivery for the QuickServ services marketplace",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Realtime services (one set per app) ──────────────────
    if engine is None:
        from quickserv.db.engine import engine as default_engine

        engine = default_engine
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.registry = ConnectionRegistry()
    app.state.dispatcher = NotificationDispatcher(
        app.state.registry, app.state.session_factory
    )
    app.state.handshake = AuthHandshake(
        app.state.registry,
        app.state.session_factory,
        timeout=settings.ws_auth_timeout_seconds,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler

    from quickserv.middleware.rate_limit import RateLimitMiddleware
    from quickserv.middleware.request_id import RequestIdMiddleware
    from quickserv.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RateLimitMiddleware, rpm=settings.rate_limit_rpm)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    from quickserv.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: quickserv.main:app)
app = create_app()
