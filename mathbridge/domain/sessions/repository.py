"""Session repository - Database operations for tutoring sessions"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Contract, Notification, TutoringSession, User


class SessionRepository:
    """Repository for session database operations"""

    @staticmethod
    def get_by_id(db: Session, session_id: int) -> Optional[TutoringSession]:
        return db.query(TutoringSession).filter(TutoringSession.id == session_id).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_active_tutors(db: Session, exclude_ids: Optional[set[int]] = None) -> list[User]:
        query = db.query(User).filter(User.role == "tutor", User.status == "active")
        if exclude_ids:
            query = query.filter(User.id.notin_(exclude_ids))
        return query.order_by(User.full_name, User.id).all()

    @staticmethod
    def _date_range(query, start: Optional[date], end: Optional[date]):
        if start:
            query = query.filter(TutoringSession.session_date >= start)
        if end:
            query = query.filter(TutoringSession.session_date <= end)
        return query

    @staticmethod
    def get_for_parent(
        db: Session, parent_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[TutoringSession]:
        query = (
            db.query(TutoringSession)
            .join(Contract, TutoringSession.contract_id == Contract.id)
            .filter(Contract.parent_id == parent_id)
        )
        query = SessionRepository._date_range(query, start, end)
        return query.order_by(TutoringSession.start_time).all()

    @staticmethod
    def get_for_tutor(
        db: Session, tutor_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[TutoringSession]:
        query = db.query(TutoringSession).filter(TutoringSession.tutor_id == tutor_id)
        query = SessionRepository._date_range(query, start, end)
        return query.order_by(TutoringSession.start_time).all()

    @staticmethod
    def get_scheduled_between(
        db: Session, window_start: datetime, window_end: datetime
    ) -> list[TutoringSession]:
        return (
            db.query(TutoringSession)
            .filter(
                TutoringSession.status == "scheduled",
                TutoringSession.start_time >= window_start,
                TutoringSession.start_time <= window_end,
            )
            .order_by(TutoringSession.start_time)
            .all()
        )

    @staticmethod
    def has_overlap(
        db: Session,
        tutor_id: int,
        start: datetime,
        end: datetime,
        exclude_session_id: Optional[int] = None,
    ) -> bool:
        """Any non-cancelled, non-moved session of the tutor intersecting [start, end)"""
        query = db.query(TutoringSession).filter(
            TutoringSession.tutor_id == tutor_id,
            TutoringSession.status.in_(("scheduled", "completed")),
            TutoringSession.start_time < end,
            TutoringSession.end_time > start,
        )
        if exclude_session_id is not None:
            query = query.filter(TutoringSession.id != exclude_session_id)
        return db.query(query.exists()).scalar()

    @staticmethod
    def reminder_exists(db: Session, session_id: int, notification_type: str) -> bool:
        return (
            db.query(Notification.id)
            .filter(
                Notification.session_id == session_id,
                Notification.notification_type == notification_type,
            )
            .first()
            is not None
        )

    @staticmethod
    def transition_status(db: Session, session_id: int, from_status: str, to_status: str) -> bool:
        updated = (
            db.query(TutoringSession)
            .filter(TutoringSession.id == session_id, TutoringSession.status == from_status)
            .update(
                {TutoringSession.status: to_status, TutoringSession.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def change_tutor(db: Session, session_id: int, tutor_id: int) -> bool:
        """Reassign a still-scheduled session"""
        updated = (
            db.query(TutoringSession)
            .filter(TutoringSession.id == session_id, TutoringSession.status == "scheduled")
            .update(
                {TutoringSession.tutor_id: tutor_id, TutoringSession.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1
