"""Notification domain schemas"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    """Wire shape of a notification: REST responses, SSE frames and pub/sub payloads"""

    id: int
    userId: int
    contractId: Optional[int] = None
    sessionId: Optional[int] = None
    title: str
    message: str
    notificationType: str
    status: str
    createdAt: Optional[datetime] = None
    sentAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            userId=notification.user_id,
            contractId=notification.contract_id,
            sessionId=notification.session_id,
            title=notification.title,
            message=notification.message,
            notificationType=notification.notification_type,
            status=notification.status,
            createdAt=notification.created_at,
            sentAt=notification.sent_at,
        )


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    page: int
    pageSize: int


class UnreadCountResponse(BaseModel):
    count: int


class MessageResponse(BaseModel):
    message: str
    affected: int = 0
