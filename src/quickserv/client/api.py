"""REST collaborator for the client — the authoritative list and count.

Learn: Thin httpx wrapper over /api/notifications. Every call reads the
token from the SessionStore at call time, so a logout takes effect
immediately. Pass `client=` to reuse a connection pool or to point the
API at an ASGI app in tests.
"""

from typing import Any, Optional

import httpx

from quickserv.client.session import SessionStore


class NotificationsApi:
    """Calls the notification endpoints as the session's user."""

    def __init__(
        self,
        base_url: str,
        session: SessionStore,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.session = session
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    def _headers(self) -> dict[str, str]:
        if not self.session.token:
            return {}
        return {"Authorization": f"Bearer {self.session.token}"}

    async def list_notifications(self, limit: int = 50, unread_only: bool = False) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"limit": limit}
        if unread_only:
            params["unreadOnly"] = "true"
        r = await self._client.get("/api/notifications", params=params, headers=self._headers())
        r.raise_for_status()
        return r.json()

    async def unread_count(self) -> int:
        r = await self._client.get("/api/notifications/unread-count", headers=self._headers())
        r.raise_for_status()
        return int(r.json()["count"])

    async def mark_read(self, notification_id: int) -> dict[str, Any]:
        r = await self._client.put(
            f"/api/notifications/{notification_id}/read", headers=self._headers()
        )
        r.raise_for_status()
        return r.json()

    async def mark_all_read(self) -> int:
        r = await self._client.put("/api/notifications/mark-all-read", headers=self._headers())
        r.raise_for_status()
        return int(r.json()["updated"])

    async def dispatch(
        self,
        user_ids: list[int],
        *,
        title: str,
        message: str,
        type: str = "notice",
        related_id: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Admin only: persist and push a notification to users."""
        body: dict[str, Any] = {
            "userIds": user_ids,
            "type": type,
            "title": title,
            "message": message,
        }
        if related_id is not None:
            body["relatedId"] = related_id
        r = await self._client.post(
            "/api/notifications/dispatch", json=body, headers=self._headers()
        )
        r.raise_for_status()
        return r.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
