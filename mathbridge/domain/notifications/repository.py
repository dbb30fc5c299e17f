"""Notification repository - Database operations for notifications"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Notification


class NotificationRepository:
    """Repository for notification database operations"""

    @staticmethod
    def create(db: Session, **fields) -> Notification:
        notification = Notification(**fields)
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def get_by_id(db: Session, notification_id: int) -> Optional[Notification]:
        return db.query(Notification).filter(Notification.id == notification_id).first()

    @staticmethod
    def get_page_for_user(
        db: Session, user_id: int, page: int, page_size: int
    ) -> tuple[list[Notification], int]:
        """Newest first; returns (items, total)"""
        query = db.query(Notification).filter(Notification.user_id == user_id)
        total = query.count()
        items = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total

    @staticmethod
    def get_unread_for_user(db: Session, user_id: int) -> list[Notification]:
        return (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.status != "Read")
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .all()
        )

    @staticmethod
    def count_unread_for_user(db: Session, user_id: int) -> int:
        return (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.status != "Read")
            .count()
        )

    @staticmethod
    def mark_sent(db: Session, notification: Notification, sent_at: datetime) -> Notification:
        # A notification read before delivery finished stays Read
        if notification.status == "Pending":
            notification.status = "Sent"
            notification.sent_at = sent_at
            db.commit()
            db.refresh(notification)
        return notification

    @staticmethod
    def mark_read(db: Session, notification: Notification) -> Notification:
        notification.status = "Read"
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def mark_all_read_for_user(db: Session, user_id: int) -> int:
        updated = (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.status != "Read")
            .update({Notification.status: "Read"}, synchronize_session=False)
        )
        db.commit()
        return updated

    @staticmethod
    def delete(db: Session, notification: Notification) -> None:
        db.delete(notification)
        db.commit()

    @staticmethod
    def delete_all_for_user(db: Session, user_id: int) -> int:
        deleted = (
            db.query(Notification)
            .filter(Notification.user_id == user_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        return deleted
