"""Notification dispatcher — persist first, then push.

Learn: dispatch() is what business code calls when something happened
that a user should hear about (booking created, booking accepted, chat
message, order paid). The order of steps is the whole design:

1. Write the notification and COMMIT. If this fails, the exception goes
   back to the caller and nothing is pushed — a push for a row that does
   not exist would be a lie the client can never reconcile.
2. Recompute the unread count with a COUNT query. Never +1 in memory;
   two concurrent dispatches for one user would drift.
3. Push {notification} and {unread_count} to every live connection of the
   user. Each connection is isolated: a send that fails or hangs drops that
   connection from the registry and the others still get the frames.
   Push errors never reach the caller.

Dispatches for the same user are serialized around steps 1-2, so rows are
persisted in call order. Delivery order across tabs is not guaranteed;
clients reconcile from the REST list and count, not from push order.

With Redis configured, step 3 publishes the frames instead and every
worker's RedisFanout delivers them to its own connections.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Any, Iterable, Optional, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quickserv.db.models import Notification
from quickserv.realtime import protocol
from quickserv.realtime.connection import Connection
from quickserv.realtime.registry import ConnectionRegistry
from quickserv.schemas.notification import NotificationCreate
from quickserv.services.notification_service import NotificationService

logger = structlog.get_logger()

Frames = list[dict[str, Any]]


class FramePublisher(Protocol):
    """Cross-process delivery (see realtime.pubsub.RedisFramePublisher)."""

    async def publish(self, user_id: int, frames: Frames) -> None: ...


class NotificationDispatcher:
    """Single entry point for telling a user something happened."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Optional[FramePublisher] = None,
        send_timeout: float = 5.0,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.publisher = publisher
        self.send_timeout = send_timeout
        # user_id → [lock, holders]; entries vanish when nobody holds them
        self._user_locks: dict[int, list] = {}

    # ─── Public API ───────────────────────────────────────

    async def dispatch(self, user_id: int, data: NotificationCreate) -> Notification:
        """Persist a notification for user_id and push it to their sockets."""
        async with self._serialized(user_id):
            async with self.session_factory() as db:
                svc = NotificationService(db)
                notification = await svc.create(user_id, data)
                count = await svc.unread_count(user_id)

        logger.info(
            "dispatch.persisted",
            user_id=user_id,
            notification_id=notification.id,
            type=notification.type,
            unread=count,
        )
        await self._deliver(
            user_id,
            [protocol.notification(notification), protocol.unread_count(count)],
        )
        return notification

    async def dispatch_many(
        self, user_ids: Iterable[int], data: NotificationCreate
    ) -> list[Notification]:
        """Same notification to several users (client and provider of a booking)."""
        return [await self.dispatch(user_id, data) for user_id in user_ids]

    async def push_unread_count(self, user_id: int) -> int:
        """Recompute the count and push it alone (after mark-read from another tab)."""
        async with self.session_factory() as db:
            count = await NotificationService(db).unread_count(user_id)
        await self._deliver(user_id, [protocol.unread_count(count)])
        return count

    async def deliver_local(self, user_id: int, frames: Frames) -> int:
        """Send frames to this process's connections for user_id.

        Returns how many connections received every frame.
        """
        targets = [
            conn for conn in await self.registry.connections_for(user_id)
            if conn.is_authenticated
        ]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._push(conn, frames) for conn in targets))
        return sum(results)

    # ─── Internals ────────────────────────────────────────

    async def _deliver(self, user_id: int, frames: Frames) -> None:
        if self.publisher is not None:
            try:
                await self.publisher.publish(user_id, frames)
                return
            except Exception as e:
                logger.warning("dispatch.publish_failed", user_id=user_id, error=str(e))
        await self.deliver_local(user_id, frames)

    async def _push(self, connection: Connection, frames: Frames) -> bool:
        try:
            for frame in frames:
                await asyncio.wait_for(connection.send(frame), self.send_timeout)
            return True
        except Exception as e:
            logger.info(
                "dispatch.push_failed",
                user_id=connection.user_id,
                connection_id=connection.id,
                error=repr(e),
            )
            await self.registry.unregister(connection)
            with suppress(Exception):
                await connection.close()
            return False

    @asynccontextmanager
    async def _serialized(self, user_id: int):
        entry = self._user_locks.get(user_id)
        if entry is None:
            entry = self._user_locks[user_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._user_locks.pop(user_id, None)
