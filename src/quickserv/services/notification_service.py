"""Notification persistence — the authoritative side of the notification path.

Learn: Everything the WebSocket pushes is first written here. Counts are
always computed with a COUNT query, never kept in memory, so two
dispatches racing for the same user cannot make the badge drift.

Marking read is scoped to the owner: a user can only flip their own
notifications, and asking for someone else's looks exactly like a
missing row (404), so ids cannot be probed.
"""

from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from quickserv.db.models import Notification
from quickserv.schemas.notification import NotificationCreate


class NotificationNotFoundError(Exception):
    """Raised when a notification does not exist for the given user."""


class NotificationService:
    """Create, list, count and acknowledge notifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Create ───────────────────────────────────────────

    async def create(self, user_id: int, data: NotificationCreate) -> Notification:
        """Persist a notification and commit it.

        Learn: commit (not flush) — the row must be durable before anyone
        is told about it over the socket.
        """
        notification = Notification(
            user_id=user_id,
            type=data.type.value,
            title=data.title,
            message=data.message,
            related_id=data.related_id,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)
        return notification

    # ─── Queries ──────────────────────────────────────────

    async def list_for_user(
        self,
        user_id: int,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """Newest first; id breaks ties between rows with the same timestamp."""
        q = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            q = q.where(Notification.is_read.is_(False))
        q = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    async def unread_count(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def get_for_user(
        self, user_id: int, notification_id: int
    ) -> Optional[Notification]:
        notification = await self.db.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            return None
        return notification

    # ─── Acknowledge ──────────────────────────────────────

    async def mark_read(self, user_id: int, notification_id: int) -> Notification:
        """Mark one notification read. Idempotent."""
        notification = await self.get_for_user(user_id, notification_id)
        if notification is None:
            raise NotificationNotFoundError(
                f"Notification {notification_id} not found"
            )
        if not notification.is_read:
            notification.is_read = True
            await self.db.commit()
        return notification

    async def mark_all_read(self, user_id: int) -> int:
        """Mark every unread notification of the user read. Returns rows changed."""
        result = await self.db.execute(
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
        )
        await self.db.commit()
        return result.rowcount or 0
