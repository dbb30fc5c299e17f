"""Notification service - Persist notifications and hand them to live delivery"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import NotFoundError, PermissionDeniedError, ValidationError
from ...models import Notification, User
from .dispatcher import NotificationDispatcher
from .repository import NotificationRepository
from .schemas import NotificationResponse

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class NotificationService:
    """
    Service layer for notifications.

    Rows are always persisted first so clients can poll for them; live
    delivery is best-effort. Without a dispatcher, rows stay Pending.
    """

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repo = NotificationRepository()
        self.dispatcher = dispatcher

    async def create_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        notification_type: str,
        contract_id: Optional[int] = None,
        session_id: Optional[int] = None,
    ) -> Notification:
        notification = self.repo.create(
            self.db,
            user_id=user_id,
            title=title,
            message=message,
            notification_type=notification_type,
            contract_id=contract_id,
            session_id=session_id,
            status="Pending",
        )
        logger.info(f"🔔 Notification {notification.id} ({notification_type}) created for user {user_id}")

        if self.dispatcher is None:
            return notification

        try:
            delivered = await self.dispatcher.dispatch(NotificationResponse.from_model(notification))
        except Exception as e:
            logger.warning(f"⚠️ Live delivery of notification {notification.id} failed: {e}")
            return notification

        if delivered:
            notification = self.repo.mark_sent(self.db, notification, datetime.utcnow())
        return notification

    def get_notification(self, user: User, notification_id: int) -> Notification:
        notification = self.repo.get_by_id(self.db, notification_id)
        if not notification or notification.user_id != user.id:
            raise NotFoundError("Notification not found")
        return notification

    def get_notifications(
        self, user: User, page: int = 1, page_size: int = 20
    ) -> tuple[list[Notification], int]:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        return self.repo.get_page_for_user(self.db, user.id, page, page_size)

    def get_unread(self, user: User) -> list[Notification]:
        return self.repo.get_unread_for_user(self.db, user.id)

    def get_unread_count(self, user: User) -> int:
        return self.repo.count_unread_for_user(self.db, user.id)

    def mark_as_read(self, user: User, notification_id: int) -> Notification:
        notification = self.repo.get_by_id(self.db, notification_id)
        if not notification:
            raise NotFoundError("Notification not found")
        if notification.user_id != user.id:
            raise PermissionDeniedError("Cannot modify another user's notification")
        if notification.status == "Read":
            return notification
        return self.repo.mark_read(self.db, notification)

    def mark_all_as_read(self, user: User) -> int:
        updated = self.repo.mark_all_read_for_user(self.db, user.id)
        logger.info(f"📭 Marked {updated} notifications read for user {user.id}")
        return updated

    def delete_notification(self, user: User, notification_id: int) -> None:
        notification = self.repo.get_by_id(self.db, notification_id)
        if not notification:
            raise NotFoundError("Notification not found")
        if notification.user_id != user.id:
            raise PermissionDeniedError("Cannot delete another user's notification")
        self.repo.delete(self.db, notification)

    def delete_all_notifications(self, user: User) -> int:
        return self.repo.delete_all_for_user(self.db, user.id)
