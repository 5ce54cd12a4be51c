"""Notifications API — the authoritative side the client reconciles against.

Learn: Routes for the notification lifecycle:
- GET /notifications → newest-first list for the caller
- GET /notifications/unread-count → {count} computed from the table
- PUT /notifications/:id/read → acknowledge one (idempotent)
- PUT /notifications/mark-all-read → acknowledge all (idempotent)
- POST /notifications/dispatch → admin sends a notice to users

After a mark-read the new count is pushed to the user's sockets, so the
badge in their other tabs drops without waiting for a poll.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from quickserv.auth.dependencies import CurrentIdentity, get_current_user, require_admin
from quickserv.db.engine import get_db
from quickserv.realtime.dispatcher import NotificationDispatcher
from quickserv.schemas.notification import (
    DispatchRequest,
    MarkAllReadResult,
    NotificationCreate,
    NotificationRead,
    UnreadCount,
)
from quickserv.services.notification_service import (
    NotificationNotFoundError,
    NotificationService,
)

router = APIRouter()


def _get_service(db: AsyncSession = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


# ─── List + count ────────────────────────────────────────


@router.get("/notifications", response_model=list[NotificationRead])
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=200),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """The caller's notifications, newest first."""
    return await svc.list_for_user(
        identity.user_id, unread_only=unread_only, limit=limit
    )


@router.get("/notifications/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
):
    """Authoritative unread count (the socket's count is only a cache)."""
    return UnreadCount(count=await svc.unread_count(identity.user_id))


# ─── Acknowledge ─────────────────────────────────────────


@router.put("/notifications/mark-all-read", response_model=MarkAllReadResult)
async def mark_all_read(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Mark every notification of the caller read."""
    updated = await svc.mark_all_read(identity.user_id)
    if updated:
        await dispatcher.push_unread_count(identity.user_id)
    return MarkAllReadResult(updated=updated)


@router.put("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: NotificationService = Depends(_get_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Mark one notification read."""
    try:
        notification = await svc.mark_read(identity.user_id, notification_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=404, detail="Notification not found")
    await dispatcher.push_unread_count(identity.user_id)
    return notification


# ─── Admin dispatch ──────────────────────────────────────


@router.post(
    "/notifications/dispatch",
    response_model=list[NotificationRead],
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def dispatch_notification(
    body: DispatchRequest,
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Persist and push one notification to each listed user."""
    data = NotificationCreate.model_validate(body.model_dump(exclude={"user_ids"}))
    return await dispatcher.dispatch_many(body.user_ids, data)
