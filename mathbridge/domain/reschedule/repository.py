"""Reschedule repository - Database operations for reschedule requests"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Contract, RescheduleRequest, TutoringSession, User


class RescheduleRepository:
    """Repository for reschedule database operations"""

    @staticmethod
    def get_by_id(db: Session, request_id: int) -> Optional[RescheduleRequest]:
        return db.query(RescheduleRequest).filter(RescheduleRequest.id == request_id).first()

    @staticmethod
    def get_session_by_id(db: Session, session_id: int) -> Optional[TutoringSession]:
        return db.query(TutoringSession).filter(TutoringSession.id == session_id).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def has_pending_in_contract(db: Session, contract_id: int) -> bool:
        return (
            db.query(RescheduleRequest.id)
            .filter(
                RescheduleRequest.contract_id == contract_id,
                RescheduleRequest.status == "pending",
            )
            .first()
            is not None
        )

    @staticmethod
    def get_for_parent(db: Session, parent_id: int) -> list[RescheduleRequest]:
        return (
            db.query(RescheduleRequest)
            .filter(RescheduleRequest.parent_id == parent_id)
            .order_by(RescheduleRequest.created_at.desc(), RescheduleRequest.id.desc())
            .all()
        )

    @staticmethod
    def get_pending(db: Session) -> list[RescheduleRequest]:
        return (
            db.query(RescheduleRequest)
            .filter(RescheduleRequest.status == "pending")
            .order_by(RescheduleRequest.created_at, RescheduleRequest.id)
            .all()
        )

    @staticmethod
    def create(db: Session, **fields) -> RescheduleRequest:
        request = RescheduleRequest(**fields)
        db.add(request)
        db.commit()
        db.refresh(request)
        return request

    @staticmethod
    def close_request(
        db: Session, request_id: int, status: str, staff_id: int, **fields
    ) -> bool:
        """pending -> approved | rejected; False if another reviewer got there first"""
        values = {
            RescheduleRequest.status: status,
            RescheduleRequest.staff_id: staff_id,
            RescheduleRequest.processed_at: datetime.utcnow(),
        }
        values.update({getattr(RescheduleRequest, k): v for k, v in fields.items()})
        updated = (
            db.query(RescheduleRequest)
            .filter(RescheduleRequest.id == request_id, RescheduleRequest.status == "pending")
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def increment_reschedule_count(db: Session, contract_id: int, max_reschedule: int) -> bool:
        """Bounded increment; False once the contract has used every reschedule"""
        updated = (
            db.query(Contract)
            .filter(Contract.id == contract_id, Contract.reschedule_count < max_reschedule)
            .update(
                {
                    Contract.reschedule_count: Contract.reschedule_count + 1,
                    Contract.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1
