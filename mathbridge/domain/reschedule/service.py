"""Reschedule service - Parent requests and staff review of session moves"""

import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...email_service import (
    send_reschedule_approved_email,
    send_reschedule_rejected_email,
    send_reschedule_request_created_email,
)
from ...email_templates import format_vnd
from ...exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ...models import RescheduleRequest, TutoringSession, User, WalletTransaction
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.service import NotificationService
from ..sessions.repository import SessionRepository
from ..wallet.repository import WalletRepository
from .repository import RescheduleRepository
from .schemas import RescheduleCreate

logger = logging.getLogger(__name__)

VALID_START_TIMES = (time(16, 0), time(17, 30), time(19, 0), time(20, 30))
SESSION_LENGTH = timedelta(minutes=90)
STAFF_ROLES = ("staff", "admin")


def expected_end_time(start: time) -> time:
    return (datetime.combine(date.min, start) + SESSION_LENGTH).time()


class RescheduleService:
    """Service layer for reschedule requests"""

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repo = RescheduleRepository()
        self.session_repo = SessionRepository()
        self.wallet_repo = WalletRepository()
        self.notifications = NotificationService(db, dispatcher)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, user: User, request_id: int) -> RescheduleRequest:
        request = self.repo.get_by_id(self.db, request_id)
        if not request or (user.role not in STAFF_ROLES and request.parent_id != user.id):
            raise NotFoundError("Reschedule request not found")
        return request

    def get_requests_for_parent(self, parent: User) -> list[RescheduleRequest]:
        return self.repo.get_for_parent(self.db, parent.id)

    def get_pending_requests(self) -> list[RescheduleRequest]:
        return self.repo.get_pending(self.db)

    def get_available_substitute_tutors(self, request_id: int) -> list[User]:
        """Contract substitutes who are free in the requested slot"""
        request = self.repo.get_by_id(self.db, request_id)
        if not request:
            raise NotFoundError("Reschedule request not found")

        start = datetime.combine(request.requested_date, request.start_time)
        end = datetime.combine(request.requested_date, request.end_time)
        contract = request.contract

        available = []
        for tutor_id in (contract.substitute_tutor1_id, contract.substitute_tutor2_id):
            if tutor_id is None:
                continue
            tutor = self.repo.get_user_by_id(self.db, tutor_id)
            if not tutor or tutor.status != "active":
                continue
            if not self.session_repo.has_overlap(self.db, tutor_id, start, end):
                available.append(tutor)
        return available

    # ------------------------------------------------------------------
    # Parent request
    # ------------------------------------------------------------------

    async def create_request(
        self, parent: User, data: RescheduleCreate, today: Optional[date] = None
    ) -> RescheduleRequest:
        today = today or date.today()

        if data.startTime not in VALID_START_TIMES:
            raise ValidationError("Start time must be 16:00, 17:30, 19:00, or 20:30")
        if data.endTime != expected_end_time(data.startTime):
            raise ValidationError(
                f"End time must be {expected_end_time(data.startTime).strftime('%H:%M')} "
                "(90 minutes after start time)"
            )

        session = self.repo.get_session_by_id(self.db, data.sessionId)
        if not session:
            raise NotFoundError("Session not found")
        contract = session.contract
        if contract.parent_id != parent.id:
            raise PermissionDeniedError("You can only reschedule your child's sessions")
        if session.session_date < today:
            raise ConflictError("Cannot reschedule past sessions")
        if session.status != "scheduled":
            raise ConflictError(f"Cannot reschedule a {session.status} session")
        if data.requestedDate < today:
            raise ValidationError("Requested date is in the past")

        if self.repo.has_pending_in_contract(self.db, contract.id):
            raise ConflictError(
                "This contract already has a pending reschedule request; wait for it to be reviewed"
            )
        if contract.status != "active":
            raise ConflictError("Contract is no longer active")
        if data.requestedDate > contract.end_date:
            raise ValidationError("Requested date exceeds contract end date")
        if contract.reschedule_count >= contract.package.max_reschedule:
            raise ConflictError("All reschedules for this contract have been used")

        request = self.repo.create(
            self.db,
            session_id=session.id,
            contract_id=contract.id,
            parent_id=parent.id,
            requested_date=data.requestedDate,
            start_time=data.startTime,
            end_time=data.endTime,
            requested_tutor_id=session.tutor_id,
            reason=data.reason,
            status="pending",
        )
        logger.info(f"🔁 Reschedule request {request.id} created for session {session.id}")

        await self._notify(
            parent.id,
            "Reschedule request submitted",
            f"Your request to move the session on {session.start_time.strftime('%d/%m/%Y %H:%M')} "
            f"to {data.requestedDate.strftime('%d/%m/%Y')} {data.startTime.strftime('%H:%M')} "
            "is awaiting review.",
            contract.id,
            session.id,
        )
        try:
            await send_reschedule_request_created_email(
                to=parent.email,
                parent_name=parent.full_name,
                child_name=contract.child_name,
                old_start=session.start_time,
                old_end=session.end_time,
                new_date=data.requestedDate,
                new_start=data.startTime,
                new_end=data.endTime,
                reason=data.reason,
            )
        except Exception as e:
            logger.error(f"❌ Failed to send reschedule request email for {request.id}: {e}")
        return request

    # ------------------------------------------------------------------
    # Staff review
    # ------------------------------------------------------------------

    def _pending_request(self, request_id: int) -> RescheduleRequest:
        request = self.repo.get_by_id(self.db, request_id)
        if not request:
            raise NotFoundError("Reschedule request not found")
        if request.status != "pending":
            raise ConflictError(f"Only pending requests can be reviewed (current: {request.status})")
        return request

    async def approve_request(
        self,
        staff: User,
        request_id: int,
        new_tutor_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> TutoringSession:
        """Move the session: new scheduled session, old one marked rescheduled"""
        request = self._pending_request(request_id)
        contract = request.contract
        old_session = request.session
        max_reschedule = contract.package.max_reschedule

        if contract.reschedule_count >= max_reschedule:
            raise ConflictError(
                "Reschedule limit reached for this contract",
                {"rescheduleCount": contract.reschedule_count, "maxReschedule": max_reschedule},
            )

        tutor_id = new_tutor_id or request.requested_tutor_id or old_session.tutor_id
        tutor = self.repo.get_user_by_id(self.db, tutor_id)
        if not tutor:
            raise NotFoundError("Tutor not found")
        if tutor.role != "tutor":
            raise ValidationError("Selected user is not a tutor")

        start = datetime.combine(request.requested_date, request.start_time)
        end = datetime.combine(request.requested_date, request.end_time)
        if self.session_repo.has_overlap(self.db, tutor.id, start, end, exclude_session_id=old_session.id):
            raise ConflictError("Selected tutor is not available at the requested time")

        reason = request.reason
        if note:
            reason = f"{reason} | Staff note: {note}" if reason else f"Staff note: {note}"

        try:
            if not self.session_repo.transition_status(self.db, old_session.id, "scheduled", "rescheduled"):
                raise ConflictError("Original session is no longer scheduled")
            if not self.repo.increment_reschedule_count(self.db, contract.id, max_reschedule):
                raise ConflictError("Reschedule limit reached for this contract")
            if not self.repo.close_request(
                self.db, request.id, "approved", staff.id, requested_tutor_id=tutor.id, reason=reason
            ):
                raise ConflictError("Request was already reviewed")

            new_session = TutoringSession(
                contract_id=contract.id,
                tutor_id=tutor.id,
                session_date=request.requested_date,
                start_time=start,
                end_time=end,
                is_online=old_session.is_online,
                offline_address=old_session.offline_address,
                video_call_platform=old_session.video_call_platform,
                status="scheduled",
            )
            self.db.add(new_session)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(new_session)
        logger.info(
            f"✅ Reschedule {request.id} approved by {staff.id}: session {old_session.id} -> {new_session.id}"
        )

        parent = contract.parent
        await self._notify(
            parent.id,
            "Reschedule approved",
            f"The session has been moved to {start.strftime('%d/%m/%Y %H:%M')} with "
            f"{tutor.full_name or 'your tutor'}.",
            contract.id,
            new_session.id,
        )
        try:
            await send_reschedule_approved_email(
                to=parent.email,
                parent_name=parent.full_name,
                child_name=contract.child_name,
                new_start=start,
                new_end=end,
                tutor_name=tutor.full_name,
            )
        except Exception as e:
            logger.error(f"❌ Failed to send reschedule approval email for {request.id}: {e}")
        return new_session

    async def reject_request(self, staff: User, request_id: int, reason: str) -> RescheduleRequest:
        request = self._pending_request(request_id)
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        combined = f"{request.reason} | Rejected: {reason}" if request.reason else f"Rejected: {reason}"
        try:
            if not self.repo.close_request(self.db, request.id, "rejected", staff.id, reason=combined):
                raise ConflictError("Request was already reviewed")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(request)
        logger.info(f"🚫 Reschedule {request.id} rejected by {staff.id}")

        contract = request.contract
        session = request.session
        parent = contract.parent
        await self._notify(
            parent.id,
            "Reschedule rejected",
            f"Your reschedule request was not approved: {reason}. "
            f"The session on {session.start_time.strftime('%d/%m/%Y %H:%M')} is unchanged.",
            contract.id,
            session.id,
        )
        try:
            await send_reschedule_rejected_email(
                to=parent.email,
                parent_name=parent.full_name,
                child_name=contract.child_name,
                session_start=session.start_time,
                session_end=session.end_time,
                reason=reason,
            )
        except Exception as e:
            logger.error(f"❌ Failed to send reschedule rejection email for {request.id}: {e}")
        return request

    async def cancel_session_and_refund(self, staff: User, request_id: int) -> WalletTransaction:
        """
        Settle a pending request by cancelling the session instead of moving it.

        One session's share of the package price goes back to the parent's
        wallet as a Completed Refund, and the request counts against the
        contract's reschedule allowance as an approval would. The counter
        never goes past the package limit.
        """
        request = self._pending_request(request_id)
        session = request.session
        contract = request.contract
        package = contract.package

        if session.status != "scheduled":
            raise ConflictError(f"Session cannot be cancelled while {session.status}")

        refund = (Decimal(package.price) / package.session_count).quantize(Decimal("0.01"))
        reason = f"{request.reason} | Cancelled with refund" if request.reason else "Cancelled with refund"

        try:
            if not self.session_repo.transition_status(self.db, session.id, "scheduled", "cancelled"):
                raise ConflictError("Session is no longer scheduled")
            if not self.repo.close_request(self.db, request.id, "approved", staff.id, reason=reason):
                raise ConflictError("Request was already reviewed")
            self.repo.increment_reschedule_count(self.db, contract.id, package.max_reschedule)
            transaction = self.wallet_repo.create_transaction(
                self.db,
                parent_id=contract.parent_id,
                contract_id=contract.id,
                amount=refund,
                transaction_type="Refund",
                status="Completed",
                description=(
                    f"Refund for cancelled session on {session.start_time.strftime('%d/%m/%Y at %H:%M')}"
                ),
                payment_method="Wallet",
            )
            self.wallet_repo.credit_balance(self.db, contract.parent_id, refund)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(transaction)
        logger.info(
            f"💸 Reschedule {request.id}: session {session.id} cancelled by {staff.id}, "
            f"refunded {refund} to user {contract.parent_id}"
        )

        await self._notify(
            contract.parent_id,
            "Session cancelled",
            f"The session on {session.start_time.strftime('%d/%m/%Y %H:%M')} was cancelled and "
            f"{format_vnd(refund)} was added to your wallet.",
            contract.id,
            session.id,
        )
        return transaction

    async def _notify(
        self, user_id: int, title: str, message: str, contract_id: int, session_id: int
    ) -> None:
        try:
            await self.notifications.create_notification(
                user_id=user_id,
                title=title,
                message=message,
                notification_type="Reschedule",
                contract_id=contract_id,
                session_id=session_id,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to send reschedule notification to user {user_id}: {e}")
