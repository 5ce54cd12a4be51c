"""Python client for the notification channel.

Learn: ReconnectController is what a UI (or the `quickserv listen` CLI)
embeds: it owns the socket, the retry loop and the unread badge, and
reconciles against NotificationsApi whenever it (re)connects.
"""

from quickserv.client.api import NotificationsApi
from quickserv.client.controller import ControllerState, ReconnectController
from quickserv.client.session import SessionStore
from quickserv.client.transport import TransportClosed, WebSocketTransport, connect_websocket

__all__ = [
    "ControllerState",
    "NotificationsApi",
    "ReconnectController",
    "SessionStore",
    "TransportClosed",
    "WebSocketTransport",
    "connect_websocket",
]
