"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running,
the notifications database is reachable, and reports Redis fan-out
status plus how many sockets this worker holds.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from quickserv import __version__
from quickserv.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check the database
    try:
        async with request.app.state.session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis (optional — disabled means single-process delivery)
    if not settings.redis_url:
        checks["redis"] = "disabled"
    else:
        try:
            from quickserv.realtime.pubsub import get_redis

            await get_redis().ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    healthy = checks["database"] == "ok" and checks["redis"] in ("ok", "disabled")
    registry = request.app.state.registry

    return {
        "status": "healthy" if healthy else "degraded",
        **checks,
        "connections": registry.connection_count(),
        "users_online": registry.user_count(),
    }
