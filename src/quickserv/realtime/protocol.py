"""WebSocket wire protocol — JSON text frames on /ws.

Learn: Every frame is a JSON object with a "type" key.

Client → server:
    {"type": "auth", "token": "<jwt>"}         first frame, mandatory
    {"type": "ping"}                           keepalive after auth

Server → client:
    {"type": "auth_success"}
    {"type": "auth_error", "message": "..."}   followed by close 4001
    {"type": "unread_count", "count": 3}
    {"type": "notification", "data": {id, type, title, message,
                                      relatedId, isRead, createdAt}}
    {"type": "pong"}

Both the server and the Python client import these helpers, so the two
sides cannot disagree on a frame name.
"""

import json
from typing import Any, Optional

from quickserv.db.models import Notification
from quickserv.schemas.notification import NotificationRead

AUTH = "auth"
AUTH_SUCCESS = "auth_success"
AUTH_ERROR = "auth_error"
NOTIFICATION = "notification"
UNREAD_COUNT = "unread_count"
PING = "ping"
PONG = "pong"

# Application close codes (4000-4999 are free for applications)
CLOSE_AUTH_FAILED = 4001
CLOSE_AUTH_TIMEOUT = 4408


def encode(frame: dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))


def parse(text: str) -> Optional[dict[str, Any]]:
    """Decode a frame; None for anything that is not a JSON object with a type."""
    try:
        frame = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
        return None
    return frame


def auth(token: str) -> dict[str, Any]:
    return {"type": AUTH, "token": token}


def auth_success() -> dict[str, Any]:
    return {"type": AUTH_SUCCESS}


def auth_error(message: str) -> dict[str, Any]:
    return {"type": AUTH_ERROR, "message": message}


def unread_count(count: int) -> dict[str, Any]:
    return {"type": UNREAD_COUNT, "count": count}


def notification(row: Notification) -> dict[str, Any]:
    data = NotificationRead.model_validate(row).model_dump(mode="json", by_alias=True)
    return {"type": NOTIFICATION, "data": data}


def ping() -> dict[str, Any]:
    return {"type": PING}


def pong() -> dict[str, Any]:
    return {"type": PONG}
