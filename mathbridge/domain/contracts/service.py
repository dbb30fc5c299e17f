"""Contract service - Business logic for contract operations"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...email_service import send_contract_approved_email
from ...exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ...models import Contract, TutoringSession, User, WalletTransaction
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.service import NotificationService
from ..payments.repository import PaymentRepository
from ..wallet.repository import WalletRepository
from .repository import ContractRepository
from .schemas import ContractCreate
from .session_generator import generate_sessions, validate_days_of_week

logger = logging.getLogger(__name__)

STAFF_ROLES = ("staff", "admin")

# Allowed contract status transitions
CONTRACT_TRANSITIONS = {
    "unpaid": {"pending", "cancelled"},
    "pending": {"active", "cancelled"},
    "active": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repo = ContractRepository()
        self.wallet_repo = WalletRepository()
        self.payment_repo = PaymentRepository()
        self.notifications = NotificationService(db, dispatcher)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _can_view(self, user: User, contract: Contract) -> bool:
        if user.role in STAFF_ROLES:
            return True
        return user.id in (
            contract.parent_id,
            contract.main_tutor_id,
            contract.substitute_tutor1_id,
            contract.substitute_tutor2_id,
        )

    def get_contract(self, user: User, contract_id: int) -> Contract:
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract or not self._can_view(user, contract):
            raise NotFoundError("Contract not found")
        return contract

    def get_contracts_for_parent(self, parent: User) -> list[Contract]:
        return self.repo.get_contracts_for_parent(self.db, parent.id)

    def get_contracts_for_tutor(self, tutor: User) -> list[Contract]:
        return self.repo.get_contracts_for_tutor(self.db, tutor.id)

    def get_sessions_for_contract(self, user: User, contract_id: int) -> list[TutoringSession]:
        contract = self.get_contract(user, contract_id)
        return self.repo.get_sessions_for_contract(self.db, contract.id)

    # ------------------------------------------------------------------
    # Creation and payment
    # ------------------------------------------------------------------

    def _require_tutor(self, tutor_id: int, label: str) -> User:
        tutor = self.repo.get_user_by_id(self.db, tutor_id)
        if not tutor:
            raise NotFoundError(f"{label} not found")
        if tutor.role != "tutor":
            raise ValidationError(f"{label} must be a tutor")
        return tutor

    def create_contract(self, parent: User, data: ContractCreate) -> Contract:
        """Create an unpaid contract after checking the schedule can hold every session"""
        logger.info(f"📝 Creating contract for parent {parent.id}, package {data.packageId}")

        if parent.role != "parent":
            raise PermissionDeniedError("Only parents can create contracts")

        package = self.repo.get_package_by_id(self.db, data.packageId)
        if not package:
            raise NotFoundError("Package not found")

        self._require_tutor(data.mainTutorId, "Main tutor")
        substitutes = [t for t in (data.substituteTutor1Id, data.substituteTutor2Id) if t is not None]
        for index, tutor_id in enumerate(substitutes, start=1):
            self._require_tutor(tutor_id, f"Substitute tutor {index}")
        if len({data.mainTutorId, *substitutes}) != 1 + len(substitutes):
            raise ValidationError("Main and substitute tutors must be different people")

        if data.startTime >= data.endTime:
            raise ValidationError("Start time must be before end time")
        if data.startDate > data.endDate:
            raise ValidationError("Start date must not be after end date")
        validate_days_of_week(data.daysOfWeek)
        if not data.isOnline and not (data.offlineAddress and data.offlineAddress.strip()):
            raise ValidationError("Offline contracts need an address")

        # Dry run: fail now rather than at approval
        generate_sessions(
            data.startDate,
            data.endDate,
            data.daysOfWeek,
            data.startTime,
            data.endTime,
            package.session_count,
        )

        contract = self.repo.create_contract(
            self.db,
            parent_id=parent.id,
            child_name=data.childName,
            package_id=package.id,
            main_tutor_id=data.mainTutorId,
            substitute_tutor1_id=data.substituteTutor1Id,
            substitute_tutor2_id=data.substituteTutor2Id,
            days_of_week=data.daysOfWeek,
            start_date=data.startDate,
            end_date=data.endDate,
            start_time=data.startTime,
            end_time=data.endTime,
            is_online=data.isOnline,
            offline_address=data.offlineAddress,
            video_call_platform=data.videoCallPlatform,
            reschedule_count=0,
            status="unpaid",
        )
        logger.info(f"✅ Contract {contract.id} created (unpaid)")
        return contract

    async def pay_with_wallet(self, parent: User, contract_id: int) -> WalletTransaction:
        """Pay an unpaid contract from the wallet; the contract then awaits staff approval"""
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract or contract.parent_id != parent.id:
            raise NotFoundError("Contract not found")
        if contract.status != "unpaid":
            raise ConflictError(f"Contract is {contract.status}, only unpaid contracts can be paid")

        price = Decimal(contract.package.price)
        try:
            if not self.wallet_repo.debit_balance(self.db, parent.id, price):
                raise ConflictError("Insufficient wallet balance", {"required": str(price)})

            payment = self.wallet_repo.create_transaction(
                self.db,
                parent_id=parent.id,
                contract_id=contract.id,
                amount=price,
                transaction_type="Payment",
                status="Completed",
                description=f"Payment for contract #{contract.id}",
                payment_method="Wallet",
            )
            if not self.repo.transition_status(self.db, contract.id, "unpaid", "pending"):
                raise ConflictError("Contract status changed during payment")
            self.payment_repo.close_pending_sepay_for_contract(self.db, contract.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payment)
        logger.info(f"💳 Contract {contract.id} paid from wallet of user {parent.id}: {price}")

        await self._notify(
            parent.id,
            "Contract paid",
            f"Your payment for contract #{contract.id} was received and is awaiting approval.",
            "Payment",
            contract.id,
        )
        return payment

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _transition(self, contract: Contract, to_status: str) -> None:
        allowed = CONTRACT_TRANSITIONS.get(contract.status, set())
        if to_status not in allowed:
            raise ConflictError(
                f"Cannot move contract from {contract.status} to {to_status}",
                {"from": contract.status, "to": to_status},
            )
        if not self.repo.transition_status(self.db, contract.id, contract.status, to_status):
            raise ConflictError("Contract status changed concurrently")

    async def approve_contract(self, staff: User, contract_id: int) -> Contract:
        """pending -> active; materialises the generated session calendar"""
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract:
            raise NotFoundError("Contract not found")

        planned = generate_sessions(
            contract.start_date,
            contract.end_date,
            contract.days_of_week,
            contract.start_time,
            contract.end_time,
            contract.package.session_count,
        )

        try:
            self._transition(contract, "active")
            self.repo.add_sessions(
                self.db,
                [
                    TutoringSession(
                        contract_id=contract.id,
                        tutor_id=contract.main_tutor_id,
                        session_date=p.session_date,
                        start_time=p.start_time,
                        end_time=p.end_time,
                        is_online=contract.is_online,
                        offline_address=contract.offline_address,
                        video_call_platform=contract.video_call_platform,
                        status="scheduled",
                    )
                    for p in planned
                ],
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(contract)
        logger.info(
            f"✅ Contract {contract.id} approved by {staff.id}; {len(planned)} sessions scheduled"
        )

        await self._notify(
            contract.parent_id,
            "Contract approved",
            f"Contract #{contract.id} is active. First session: "
            f"{planned[0].start_time.strftime('%d/%m/%Y %H:%M')}.",
            "ContractApproved",
            contract.id,
        )
        try:
            parent = contract.parent
            await send_contract_approved_email(
                to=parent.email,
                parent_name=parent.full_name,
                child_name=contract.child_name,
                package_name=contract.package.package_name,
                first_session=planned[0].start_time,
                session_count=len(planned),
            )
        except Exception as e:
            logger.error(f"❌ Failed to send contract approval email for {contract.id}: {e}")
        return contract

    def complete_contract(self, staff: User, contract_id: int) -> Contract:
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract:
            raise NotFoundError("Contract not found")
        try:
            self._transition(contract, "completed")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(contract)
        logger.info(f"🏁 Contract {contract.id} completed by {staff.id}")
        return contract

    async def cancel_contract(
        self, user: User, contract_id: int, reason: Optional[str] = None
    ) -> Contract:
        """Parent (owner) or staff; remaining scheduled sessions are cancelled"""
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract:
            raise NotFoundError("Contract not found")
        if user.role not in STAFF_ROLES and contract.parent_id != user.id:
            raise PermissionDeniedError("Cannot cancel another parent's contract")

        try:
            self._transition(contract, "cancelled")
            cancelled_sessions = self.repo.cancel_scheduled_sessions(self.db, contract.id)
            self.payment_repo.close_pending_sepay_for_contract(self.db, contract.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(contract)
        logger.info(
            f"🚫 Contract {contract.id} cancelled by {user.id}; {cancelled_sessions} sessions cancelled"
        )

        message = f"Contract #{contract.id} was cancelled."
        if reason:
            message += f" Reason: {reason}"
        await self._notify(contract.parent_id, "Contract cancelled", message, "ContractCancelled", contract.id)
        return contract

    async def _notify(
        self, user_id: int, title: str, message: str, notification_type: str, contract_id: int
    ) -> None:
        try:
            await self.notifications.create_notification(
                user_id=user_id,
                title=title,
                message=message,
                notification_type=notification_type,
                contract_id=contract_id,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to notify user {user_id} ({notification_type}): {e}")
