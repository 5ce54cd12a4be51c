"""Client reconnect controller — keeps one authenticated socket alive.

Learn: One controller per logged-in session. State machine:

    IDLE → CONNECTING → AUTHENTICATING → LIVE → DISCONNECTED ─┐
      ▲                                                        │
      └──── session invalid ◄──── fixed delay ────► CONNECTING ┘

- CONNECTING: open the socket.
- AUTHENTICATING: socket is open, the auth frame has been sent.
- LIVE: auth_success received. The controller immediately refetches the
  list and the unread count over REST — frames sent while it was offline
  are gone, so the push alone can never be trusted for the badge.
- DISCONNECTED: the socket closed for any reason (network, server
  restart, token refused). After `reconnect_delay` seconds it tries again,
  but only if the session is still valid; otherwise it parks in IDLE.

logout() clears the token, closes the socket and cancels the retry. The
retry loop re-checks the session after every sleep, so a wake-up that
races with logout finds no token and does nothing.

While LIVE a polling task refetches the unread count every
`poll_interval` seconds. That is the correctness backstop for a push
that was lost between server and browser; it is not redundant with the
socket.

Frames are handled one at a time in receipt order on the event loop, so
subscriber callbacks never see them out of order.
"""

import asyncio
import random
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from quickserv.client.api import NotificationsApi
from quickserv.client.session import SessionStore
from quickserv.client.transport import ClientTransport, TransportClosed, connect_websocket
from quickserv.realtime import protocol

logger = structlog.get_logger()

TransportFactory = Callable[[str], Awaitable[ClientTransport]]


class ControllerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    LIVE = "live"
    DISCONNECTED = "disconnected"


class ReconnectController:
    """Connects, authenticates, reconciles, and retries with a fixed delay."""

    def __init__(
        self,
        ws_url: str,
        session: SessionStore,
        api: NotificationsApi,
        *,
        connect: TransportFactory = connect_websocket,
        reconnect_delay: float = 3.0,
        reconnect_jitter: float = 0.0,
        poll_interval: Optional[float] = 30.0,
    ):
        self.ws_url = ws_url
        self.session = session
        self.api = api
        self.reconnect_delay = reconnect_delay
        self.reconnect_jitter = reconnect_jitter
        self.poll_interval = poll_interval
        self._connect = connect

        self.state = ControllerState.IDLE
        self.unread_count = 0
        self.notifications: list[dict[str, Any]] = []

        self._transport: Optional[ClientTransport] = None
        self._task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._listeners: dict[str, list[Callable[[Any], Any]]] = {
            "state": [],
            "unread_count": [],
            "notification": [],
            "notifications": [],
        }

    # ─── Subscriptions ────────────────────────────────────
    # Each returns the callback, so they also work as decorators.

    def on_state(self, callback: Callable[[ControllerState], Any]):
        self._listeners["state"].append(callback)
        return callback

    def on_unread_count(self, callback: Callable[[int], Any]):
        self._listeners["unread_count"].append(callback)
        return callback

    def on_notification(self, callback: Callable[[dict], Any]):
        """Called once per pushed notification (toast)."""
        self._listeners["notification"].append(callback)
        return callback

    def on_notifications(self, callback: Callable[[list], Any]):
        """Called with the full list after every REST refetch."""
        self._listeners["notifications"].append(callback)
        return callback

    # ─── Lifecycle ────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """IDLE → CONNECTING if the session is valid. Returns whether it runs."""
        if self.running:
            return True
        if not self.session.is_valid():
            logger.info("client.start_skipped", reason="no valid session")
            return False
        self._task = asyncio.create_task(self._run())
        return True

    async def stop(self) -> None:
        """Close the socket, cancel any pending retry, go IDLE."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self._stop_polling()
        transport, self._transport = self._transport, None
        if transport is not None:
            with suppress(TransportClosed):
                await transport.close()
        self._set_state(ControllerState.IDLE)

    async def logout(self) -> None:
        self.session.logout()
        await self.stop()

    # ─── REST reconciliation ──────────────────────────────

    async def refresh(self) -> bool:
        """Refetch the list and the authoritative count. False if REST failed."""
        try:
            notifications = await self.api.list_notifications()
            count = await self.api.unread_count()
        except httpx.HTTPError as e:
            logger.warning("client.refresh_failed", error=str(e))
            return False
        self.notifications = notifications
        self._emit("notifications", notifications)
        self._set_unread(count)
        return True

    async def mark_read(self, notification_id: int) -> None:
        await self.api.mark_read(notification_id)
        for item in self.notifications:
            if item.get("id") == notification_id:
                item["isRead"] = True
        self._set_unread(await self.api.unread_count())

    async def mark_all_read(self) -> None:
        await self.api.mark_all_read()
        for item in self.notifications:
            item["isRead"] = True
        self._set_unread(await self.api.unread_count())

    # ─── Connection loop ──────────────────────────────────

    async def _run(self) -> None:
        try:
            while self.session.is_valid():
                await self._connect_once()
                self._set_state(ControllerState.DISCONNECTED)
                if not self.session.is_valid():
                    break
                await asyncio.sleep(self._retry_delay())
        finally:
            if self._task is asyncio.current_task():
                self._task = None
        self._set_state(ControllerState.IDLE)

    async def _connect_once(self) -> None:
        self._set_state(ControllerState.CONNECTING)
        try:
            transport = await self._connect(self.ws_url)
        except TransportClosed as e:
            logger.info("client.connect_failed", error=str(e))
            return
        except Exception:
            logger.exception("client.connect_error")
            return

        self._transport = transport
        try:
            self._set_state(ControllerState.AUTHENTICATING)
            await transport.send(protocol.encode(protocol.auth(self.session.token or "")))
            while True:
                frame = protocol.parse(await transport.recv())
                if frame is not None:
                    await self._handle(frame)
        except TransportClosed as e:
            logger.info("client.disconnected", code=e.code, reason=e.reason)
        except Exception:
            # treated as a disconnect; the retry loop reconnects
            logger.exception("client.loop_error")
        finally:
            await self._stop_polling()
            if self._transport is transport:
                self._transport = None
            with suppress(TransportClosed):
                await transport.close()

    async def _handle(self, frame: dict[str, Any]) -> None:
        kind = frame["type"]
        if kind == protocol.AUTH_SUCCESS:
            if self.state is ControllerState.AUTHENTICATING:
                self._set_state(ControllerState.LIVE)
                await self.refresh()
                self._start_polling()
        elif kind == protocol.AUTH_ERROR:
            # the server closes right after; the retry loop takes it from there
            logger.warning("client.auth_rejected", message=frame.get("message"))
        elif kind == protocol.UNREAD_COUNT:
            count = frame.get("count")
            if isinstance(count, int) and not isinstance(count, bool) and count >= 0:
                self._set_unread(count)
            else:
                logger.warning("client.bad_unread_count", count=count)
        elif kind == protocol.NOTIFICATION:
            data = frame.get("data") or {}
            self._emit("notification", data)
            try:
                self.notifications = await self.api.list_notifications()
            except httpx.HTTPError as e:
                logger.warning("client.list_refetch_failed", error=str(e))
            else:
                self._emit("notifications", self.notifications)

    def _retry_delay(self) -> float:
        if self.reconnect_jitter > 0:
            return self.reconnect_delay + random.uniform(0, self.reconnect_jitter)
        return self.reconnect_delay

    # ─── Polling backstop ─────────────────────────────────

    def _start_polling(self) -> None:
        if self.poll_interval and self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll())

    async def _stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                self._set_unread(await self.api.unread_count())
            except httpx.HTTPError as e:
                logger.debug("client.poll_failed", error=str(e))

    # ─── Notify subscribers ───────────────────────────────

    def _set_state(self, state: ControllerState) -> None:
        if state is self.state:
            return
        logger.debug("client.state", old=self.state.value, new=state.value)
        self.state = state
        self._emit("state", state)

    def _set_unread(self, count: int) -> None:
        self.unread_count = count
        self._emit("unread_count", count)

    def _emit(self, event: str, value: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(value)
            except Exception:
                logger.exception("client.subscriber_failed", event=event)
