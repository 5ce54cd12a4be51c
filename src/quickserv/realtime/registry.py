"""Connection registry — which sockets belong to which user.

Learn: A user can have several sockets at once (two tabs, phone + laptop),
so the map is user_id → {connection_id: Connection}. A reverse map
connection_id → user_id makes unregister O(1) without knowing the user.

One instance per app (app.state.registry), passed to the handshake and
the dispatcher; tests build their own. All mutations and reads go through
an asyncio.Lock so connections_for() never sees a half-updated set, and it
returns a snapshot tuple so a socket closing mid-dispatch cannot break
the caller's iteration.

"Not found" is never an error here: a socket closing while a notification
is being pushed to it is a normal network race.
"""

import asyncio

import structlog

from quickserv.realtime.connection import Connection

logger = structlog.get_logger()


class ConnectionRegistry:
    """Maps user identities to their live connections."""

    def __init__(self) -> None:
        self._by_user: dict[int, dict[str, Connection]] = {}
        self._owner: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def register(self, user_id: int, connection: Connection) -> None:
        """Bind connection to user_id. Idempotent; rebinding moves it."""
        async with self._lock:
            previous = self._owner.get(connection.id)
            if previous is not None and previous != user_id:
                self._discard(previous, connection.id)
            self._by_user.setdefault(user_id, {})[connection.id] = connection
            self._owner[connection.id] = user_id
            connection.user_id = user_id
        logger.debug("registry.registered", user_id=user_id, connection_id=connection.id)

    async def unregister(self, connection: Connection) -> bool:
        """Remove connection wherever it is bound. Returns False if it was not."""
        async with self._lock:
            user_id = self._owner.pop(connection.id, None)
            if user_id is None:
                return False
            self._discard(user_id, connection.id)
        logger.debug("registry.unregistered", user_id=user_id, connection_id=connection.id)
        return True

    async def connections_for(self, user_id: int) -> tuple[Connection, ...]:
        """Snapshot of the user's live connections (possibly empty)."""
        async with self._lock:
            return tuple(self._by_user.get(user_id, {}).values())

    def connection_count(self) -> int:
        return len(self._owner)

    def user_count(self) -> int:
        return len(self._by_user)

    def _discard(self, user_id: int, connection_id: str) -> None:
        conns = self._by_user.get(user_id)
        if not conns:
            return
        conns.pop(connection_id, None)
        if not conns:
            del self._by_user[user_id]
