"""Pydantic schemas for notifications.

Learn: The browser code reads camelCase (relatedId, isRead, createdAt),
so every schema here uses a camelCase alias generator. The same
NotificationRead shape is returned by GET /api/notifications and embedded
in the WebSocket `notification` frame — one contract, two transports.

Types:
- 'notice': generic notice (admin announcements, provider approved)
- 'new_booking': a client booked a provider's service
- 'booking_status': a booking was accepted, rejected, completed
- 'chat_message': a new chat message arrived
- 'order_event': a catalog/provider order changed
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class NotificationType(str, Enum):
    NOTICE = "notice"
    NEW_BOOKING = "new_booking"
    BOOKING_STATUS = "booking_status"
    CHAT_MESSAGE = "chat_message"
    ORDER_EVENT = "order_event"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Create (business event → dispatcher) ───────────────


class NotificationCreate(_CamelModel):
    """What a business event wants to tell a user."""
    type: NotificationType = NotificationType.NOTICE
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    related_id: Optional[int] = Field(
        None, description="ID of the related booking/order/conversation"
    )


class DispatchRequest(NotificationCreate):
    """Admin sends one notification to one or more users."""
    user_ids: list[int] = Field(..., min_length=1, max_length=500)


# ─── Read (platform → client) ───────────────────────────


class NotificationRead(_CamelModel):
    """Full notification as seen by its recipient."""
    id: int
    type: str
    title: str
    message: str
    related_id: Optional[int]
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class UnreadCount(BaseModel):
    count: int


class MarkAllReadResult(BaseModel):
    updated: int
