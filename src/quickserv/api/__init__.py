"""API route aggregation.

All routers registered here get mounted in main.py under /api.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Health is open.
"""

from fastapi import APIRouter, Depends

from quickserv.api.health import router as health_router
from quickserv.api.notifications import router as notifications_router
from quickserv.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])

# Protected routes — require a valid bearer JWT
api_router.include_router(notifications_router, tags=["notifications"], dependencies=_auth)
