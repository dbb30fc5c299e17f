"""Contract repository - Database operations for contracts and their sessions"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Contract, PaymentPackage, TutoringSession, User


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def get_package_by_id(db: Session, package_id: int) -> Optional[PaymentPackage]:
        return db.query(PaymentPackage).filter(PaymentPackage.id == package_id).first()

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_contract_by_id(db: Session, contract_id: int) -> Optional[Contract]:
        return db.query(Contract).filter(Contract.id == contract_id).first()

    @staticmethod
    def get_contracts_for_parent(db: Session, parent_id: int) -> list[Contract]:
        return (
            db.query(Contract)
            .filter(Contract.parent_id == parent_id)
            .order_by(Contract.created_at.desc(), Contract.id.desc())
            .all()
        )

    @staticmethod
    def get_contracts_for_tutor(db: Session, tutor_id: int) -> list[Contract]:
        return (
            db.query(Contract)
            .filter(
                (Contract.main_tutor_id == tutor_id)
                | (Contract.substitute_tutor1_id == tutor_id)
                | (Contract.substitute_tutor2_id == tutor_id)
            )
            .order_by(Contract.start_date.desc(), Contract.id.desc())
            .all()
        )

    @staticmethod
    def create_contract(db: Session, **fields) -> Contract:
        contract = Contract(**fields)
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract

    @staticmethod
    def transition_status(db: Session, contract_id: int, from_status: str, to_status: str) -> bool:
        updated = (
            db.query(Contract)
            .filter(Contract.id == contract_id, Contract.status == from_status)
            .update(
                {Contract.status: to_status, Contract.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1

    @staticmethod
    def get_sessions_for_contract(db: Session, contract_id: int) -> list[TutoringSession]:
        return (
            db.query(TutoringSession)
            .filter(TutoringSession.contract_id == contract_id)
            .order_by(TutoringSession.start_time)
            .all()
        )

    @staticmethod
    def add_sessions(db: Session, sessions: list[TutoringSession]) -> None:
        db.add_all(sessions)

    @staticmethod
    def cancel_scheduled_sessions(db: Session, contract_id: int) -> int:
        return (
            db.query(TutoringSession)
            .filter(
                TutoringSession.contract_id == contract_id,
                TutoringSession.status == "scheduled",
            )
            .update(
                {TutoringSession.status: "cancelled", TutoringSession.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
