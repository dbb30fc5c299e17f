"""
Payment reconciler - Applies verified gateway payments to the ledger

Gateway services authenticate the callback, resolve the ledger row and check
the amount; this module performs the state change. Every completion is a
conditional UPDATE on the gateway row's status, so of two concurrent
deliveries for the same payment exactly one credits the wallet (or advances
the contract). The losing delivery sees zero updated rows and reports the
payment as already processed.

A contract transfer that arrives after the contract stopped waiting for it
(paid from the wallet, or cancelled) still reaches the parent: the amount is
credited to their wallet as a Completed Refund in the same commit.

Notification and receipt email run after the commit and never undo it.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...email_service import send_payment_receipt_email
from ...email_templates import format_vnd
from ...exceptions import ConflictError, NotFoundError
from ...models import PayOSTransaction, SePayTransaction

# Statuses a SePay row may be completed from. Contract rows closed out by a
# wallet payment or cancellation can still receive the bank transfer.
SEPAY_OPEN_STATUSES = ("Pending",)
SEPAY_CONTRACT_OPEN_STATUSES = ("Pending", "Cancelled")
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.service import NotificationService
from ..wallet.repository import WalletRepository
from .repository import PaymentRepository

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "Transaction already processed"


class PaymentReconciler:
    """Exactly-once application of gateway payments"""

    def __init__(self, db: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.repo = PaymentRepository()
        self.wallet_repo = WalletRepository()
        self.dispatcher = dispatcher

    def complete_sepay(self, sepay_txn: SePayTransaction, gateway_fields: dict[str, Any]) -> bool:
        """
        Mark a SePay row Completed and apply its economic effect in one commit.
        Returns False if a concurrent delivery already completed it.
        """
        fields = dict(gateway_fields)
        fields["completed_at"] = datetime.utcnow()

        from_statuses = (
            SEPAY_CONTRACT_OPEN_STATUSES if sepay_txn.contract_id is not None else SEPAY_OPEN_STATUSES
        )

        try:
            if not self.repo.complete_sepay_transaction(self.db, sepay_txn.id, fields, from_statuses):
                self.db.rollback()
                logger.info(f"♻️ SePay {sepay_txn.order_reference} completed by a concurrent delivery")
                return False

            if sepay_txn.wallet_transaction_id is not None:
                self._complete_deposit(sepay_txn.wallet_transaction_id)
            elif sepay_txn.contract_id is not None:
                if not self.repo.mark_contract_paid(self.db, sepay_txn.contract_id):
                    self._credit_unapplied_contract_payment(sepay_txn)

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(sepay_txn)
        logger.info(f"✅ SePay payment {sepay_txn.order_reference} reconciled")
        return True

    def complete_payos(self, payos_txn: PayOSTransaction, paid_at: Optional[datetime] = None) -> bool:
        """PENDING -> PAID plus wallet credit, in one commit. False if already applied."""
        try:
            if not self.repo.transition_payos_status(
                self.db, payos_txn.id, "PENDING", "PAID", paid_at=paid_at or datetime.utcnow()
            ):
                self.db.rollback()
                logger.info(f"♻️ PayOS order {payos_txn.order_code} completed by a concurrent delivery")
                return False

            self._complete_deposit(payos_txn.wallet_transaction_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payos_txn)
        logger.info(f"✅ PayOS order {payos_txn.order_code} reconciled")
        return True

    def cancel_payos(self, payos_txn: PayOSTransaction) -> bool:
        """PENDING -> CANCELLED; the wallet transaction is cancelled and no balance changes"""
        try:
            if not self.repo.transition_payos_status(
                self.db, payos_txn.id, "PENDING", "CANCELLED"
            ):
                self.db.rollback()
                return False

            self.wallet_repo.transition_status(
                self.db, payos_txn.wallet_transaction_id, "Pending", "Cancelled"
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payos_txn)
        logger.info(f"🚫 PayOS order {payos_txn.order_code} cancelled")
        return True

    def _complete_deposit(self, wallet_transaction_id: int) -> None:
        wallet_txn = self.repo.get_wallet_transaction(self.db, wallet_transaction_id)
        if not wallet_txn:
            raise NotFoundError("Wallet transaction not found for payment")

        if not self.wallet_repo.transition_status(self.db, wallet_txn.id, "Pending", "Completed"):
            raise ConflictError(
                f"Wallet transaction {wallet_txn.id} is {wallet_txn.status}, expected Pending"
            )
        self.wallet_repo.credit_balance(self.db, wallet_txn.parent_id, Decimal(wallet_txn.amount))
        logger.info(f"💰 Credited {wallet_txn.amount} to wallet of user {wallet_txn.parent_id}")

    def _credit_unapplied_contract_payment(self, sepay_txn: SePayTransaction) -> None:
        contract = self.repo.get_contract_by_id(self.db, sepay_txn.contract_id)
        if not contract:
            raise NotFoundError("Contract not found for payment")

        amount = Decimal(sepay_txn.transfer_amount)
        self.wallet_repo.create_transaction(
            self.db,
            parent_id=contract.parent_id,
            contract_id=contract.id,
            amount=amount,
            transaction_type="Refund",
            status="Completed",
            description=(
                f"Transfer {sepay_txn.order_reference} for contract #{contract.id} "
                f"arrived while the contract was {contract.status}"
            ),
            payment_method="SePay",
            payment_gateway="SePay",
            payment_gateway_reference=sepay_txn.order_reference,
        )
        self.wallet_repo.credit_balance(self.db, contract.parent_id, amount)
        logger.warning(
            f"⚠️ Contract {contract.id} was {contract.status} when payment "
            f"{sepay_txn.order_reference} arrived; {amount} credited to wallet of user {contract.parent_id}"
        )

    async def notify_payment(
        self,
        user_id: int,
        amount: Decimal,
        reference: str,
        purpose: str,
        contract_id: Optional[int] = None,
    ) -> None:
        """Post-commit side effects. Failures are logged only."""
        user = self.repo.get_user_by_id(self.db, user_id)
        if not user:
            logger.warning(f"⚠️ Payment {reference} reconciled for missing user {user_id}")
            return

        try:
            await NotificationService(self.db, self.dispatcher).create_notification(
                user_id=user.id,
                title="Payment received",
                message=f"We received {format_vnd(amount)} for {purpose} (ref {reference}).",
                notification_type="Payment",
                contract_id=contract_id,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create payment notification for {reference}: {e}")

        try:
            await send_payment_receipt_email(
                to=user.email,
                user_name=user.full_name,
                amount=amount,
                order_reference=reference,
                purpose=purpose,
            )
        except Exception as e:
            logger.error(f"❌ Failed to send payment receipt for {reference}: {e}")
