"""Notification router - REST endpoints and the live SSE stream"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...auth import get_current_user, get_current_user_for_stream
from ...database import get_db
from ...models import User
from .dispatcher import NotificationDispatcher, SSEChannel, get_dispatcher
from .schemas import (
    MessageResponse,
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from .service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> NotificationService:
    """Dependency injection for NotificationService"""
    return NotificationService(db, dispatcher)


@router.get("/stream")
async def stream_notifications(
    current_user: User = Depends(get_current_user_for_stream),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Server-sent events stream of the user's notifications.

    Each event is `data: <json>\\n\\n`; an idle stream gets a comment line
    every few seconds so proxies keep it open. Opening a second stream for
    the same user closes the first.
    """
    user_id = current_user.id
    channel = SSEChannel()
    await dispatcher.register_connection(user_id, channel)

    async def event_stream():
        try:
            yield ": connected\n\n"
            async for frame in channel.events():
                yield frame
        finally:
            await dispatcher.unregister_connection(user_id, channel)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    items, total = service.get_notifications(current_user, page, page_size)
    return NotificationListResponse(
        items=[NotificationResponse.from_model(n) for n in items],
        total=total,
        page=page,
        pageSize=page_size,
    )


@router.get("/unread", response_model=list[NotificationResponse])
async def get_unread_notifications(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return [NotificationResponse.from_model(n) for n in service.get_unread(current_user)]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return UnreadCountResponse(count=service.get_unread_count(current_user))


@router.put("/read-all", response_model=MessageResponse)
async def mark_all_as_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    updated = service.mark_all_as_read(current_user)
    return MessageResponse(message="All notifications marked as read", affected=updated)


@router.delete("", response_model=MessageResponse)
async def delete_all_notifications(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    deleted = service.delete_all_notifications(current_user)
    return MessageResponse(message="All notifications deleted", affected=deleted)


@router.get("/{notification_id}", response_model=NotificationResponse)
async def get_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return NotificationResponse.from_model(service.get_notification(current_user, notification_id))


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_as_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return NotificationResponse.from_model(service.mark_as_read(current_user, notification_id))


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    service.delete_notification(current_user, notification_id)
    return MessageResponse(message="Notification deleted", affected=1)
