"""Security headers middleware.

Learn: Two header sets. BASE_HEADERS go on every response. API_HEADERS
go on /api/ responses only: notification lists and unread counts are
per-user and change every few seconds, so no proxy or browser may keep
a copy (a stale badge would survive the reconnect refetch), and a JSON
body never needs to load scripts, frames or the camera.

HSTS is sent only when the request itself arrived over HTTPS.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

API_HEADERS = {
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, api_prefix: str = "/api/", hsts_max_age: int = 31536000):
        super().__init__(app)
        self.api_prefix = api_prefix
        self.hsts = f"max-age={hsts_max_age}; includeSubDomains"

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        response.headers.update(BASE_HEADERS)
        if request.url.path.startswith(self.api_prefix):
            response.headers.update(API_HEADERS)
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = self.hsts
        return response
