"""Session service - Session queries, status updates and reminder runs"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ...models import TutoringSession, User
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.service import NotificationService
from .repository import SessionRepository

logger = logging.getLogger(__name__)

STAFF_ROLES = ("staff", "admin")
SESSION_TRANSITIONS = {"scheduled": {"completed", "cancelled"}}


class SessionService:
    """Service layer for tutoring sessions"""

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repo = SessionRepository()
        self.notifications = NotificationService(db, dispatcher)

    def get_sessions_for_parent(
        self, parent: User, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[TutoringSession]:
        return self.repo.get_for_parent(self.db, parent.id, start, end)

    def get_sessions_for_tutor(
        self, tutor: User, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[TutoringSession]:
        return self.repo.get_for_tutor(self.db, tutor.id, start, end)

    def get_session(self, user: User, session_id: int) -> TutoringSession:
        session = self.repo.get_by_id(self.db, session_id)
        if not session:
            raise NotFoundError("Session not found")
        if user.role not in STAFF_ROLES and user.id not in (
            session.tutor_id,
            session.contract.parent_id,
        ):
            raise NotFoundError("Session not found")
        return session

    def update_status(self, user: User, session_id: int, status: str) -> TutoringSession:
        """scheduled -> completed | cancelled, by the session's tutor or staff"""
        session = self.repo.get_by_id(self.db, session_id)
        if not session:
            raise NotFoundError("Session not found")
        if user.role not in STAFF_ROLES and user.id != session.tutor_id:
            raise PermissionDeniedError("Only the assigned tutor or staff can update this session")

        if status not in SESSION_TRANSITIONS.get(session.status, set()):
            raise ConflictError(f"Cannot move session from {session.status} to {status}")
        if not self.repo.transition_status(self.db, session.id, session.status, status):
            self.db.rollback()
            raise ConflictError("Session status changed concurrently")

        self.db.commit()
        self.db.refresh(session)
        logger.info(f"📅 Session {session.id} marked {status} by user {user.id}")
        return session

    # ------------------------------------------------------------------
    # Tutor replacement
    # ------------------------------------------------------------------

    def _replaceable_session(self, session_id: int) -> TutoringSession:
        session = self.repo.get_by_id(self.db, session_id)
        if not session:
            raise NotFoundError("Session not found")
        if session.status != "scheduled":
            raise ConflictError(f"Cannot change the tutor of a {session.status} session")
        return session

    def _is_free(self, tutor_id: int, session: TutoringSession) -> bool:
        return not self.repo.has_overlap(
            self.db, tutor_id, session.start_time, session.end_time, exclude_session_id=session.id
        )

    def get_replacement_tutors(self, session_id: int) -> list[tuple[User, bool]]:
        """
        Tutors who could take over a session, as (tutor, is_substitute) pairs.

        The contract's free substitutes come first; only when none of them is
        free are other active tutors with no clash offered.
        """
        session = self._replaceable_session(session_id)
        contract = session.contract

        candidates = []
        for tutor_id in (contract.substitute_tutor1_id, contract.substitute_tutor2_id):
            if tutor_id is None or tutor_id == session.tutor_id:
                continue
            tutor = self.repo.get_user_by_id(self.db, tutor_id)
            if tutor and tutor.status == "active" and self._is_free(tutor.id, session):
                candidates.append((tutor, True))
        if candidates:
            return candidates

        others = self.repo.get_active_tutors(self.db, exclude_ids={session.tutor_id})
        return [(tutor, False) for tutor in others if self._is_free(tutor.id, session)]

    async def change_session_tutor(self, staff: User, session_id: int, new_tutor_id: int) -> TutoringSession:
        session = self._replaceable_session(session_id)

        tutor = self.repo.get_user_by_id(self.db, new_tutor_id)
        if not tutor:
            raise NotFoundError("Tutor not found")
        if tutor.role != "tutor" or tutor.status != "active":
            raise ValidationError("Selected user is not an active tutor")
        if tutor.id == session.tutor_id:
            raise ValidationError("Selected tutor already teaches this session")
        if not self._is_free(tutor.id, session):
            raise ConflictError(
                f"Tutor is not available on {session.start_time.strftime('%d/%m/%Y')} "
                f"from {session.start_time.strftime('%H:%M')} to {session.end_time.strftime('%H:%M')}"
            )

        previous_tutor_id = session.tutor_id
        if not self.repo.change_tutor(self.db, session.id, tutor.id):
            self.db.rollback()
            raise ConflictError("Session is no longer scheduled")
        self.db.commit()
        self.db.refresh(session)
        logger.info(
            f"🔁 Session {session.id} moved from tutor {previous_tutor_id} to {tutor.id} by {staff.id}"
        )

        contract = session.contract
        try:
            await self.notifications.create_notification(
                user_id=contract.parent_id,
                title="Tutor changed",
                message=(
                    f"{tutor.full_name or 'A new tutor'} will teach the session on "
                    f"{session.start_time.strftime('%d/%m/%Y at %H:%M')}."
                ),
                notification_type="TutorChanged",
                contract_id=contract.id,
                session_id=session.id,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to notify tutor change for session {session.id}: {e}")
        return session

    async def send_reminders(self, hours_ahead: int = 24, now: Optional[datetime] = None) -> int:
        """
        Remind parents of scheduled sessions starting within the next
        hours_ahead hours. A session gets each reminder type at most once.
        """
        if hours_ahead < 1:
            raise ValidationError("hours_ahead must be at least 1")

        now = now or datetime.now()
        notification_type = "SessionReminder24hr" if hours_ahead >= 24 else "SessionReminder1hr"
        sessions = self.repo.get_scheduled_between(self.db, now, now + timedelta(hours=hours_ahead))

        sent = 0
        for session in sessions:
            if self.repo.reminder_exists(self.db, session.id, notification_type):
                continue
            contract = session.contract
            try:
                await self.notifications.create_notification(
                    user_id=contract.parent_id,
                    title="Upcoming session",
                    message=(
                        f"{contract.child_name or 'Your child'} has a session on "
                        f"{session.start_time.strftime('%d/%m/%Y at %H:%M')}."
                    ),
                    notification_type=notification_type,
                    contract_id=contract.id,
                    session_id=session.id,
                )
                sent += 1
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Failed to create reminder for session {session.id}: {e}")

        logger.info(f"⏰ Sent {sent} {notification_type} reminders ({len(sessions)} sessions in window)")
        return sent
