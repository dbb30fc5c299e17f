"""Payment repository - Gateway mirror rows and their conditional status updates"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...models import Contract, PayOSTransaction, SePayTransaction, User, WalletTransaction


class PaymentRepository:
    """Repository for SePay/PayOS database operations"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_contract_by_id(db: Session, contract_id: int) -> Optional[Contract]:
        return db.query(Contract).filter(Contract.id == contract_id).first()

    @staticmethod
    def get_wallet_transaction(db: Session, transaction_id: int) -> Optional[WalletTransaction]:
        return db.query(WalletTransaction).filter(WalletTransaction.id == transaction_id).first()

    # ------------------------------------------------------------------
    # SePay
    # ------------------------------------------------------------------

    @staticmethod
    def create_sepay_transaction(db: Session, **fields) -> SePayTransaction:
        txn = SePayTransaction(**fields)
        db.add(txn)
        db.flush()
        return txn

    @staticmethod
    def get_sepay_by_order_reference(db: Session, order_reference: str) -> Optional[SePayTransaction]:
        return (
            db.query(SePayTransaction)
            .filter(SePayTransaction.order_reference == order_reference)
            .first()
        )

    @staticmethod
    def get_sepay_by_wallet_transaction(
        db: Session, wallet_transaction_id: int
    ) -> Optional[SePayTransaction]:
        return (
            db.query(SePayTransaction)
            .filter(SePayTransaction.wallet_transaction_id == wallet_transaction_id)
            .first()
        )

    @staticmethod
    def get_pending_sepay_for_contract(db: Session, contract_id: int) -> Optional[SePayTransaction]:
        return (
            db.query(SePayTransaction)
            .filter(
                SePayTransaction.contract_id == contract_id,
                SePayTransaction.status == "Pending",
            )
            .first()
        )

    @staticmethod
    def complete_sepay_transaction(
        db: Session,
        sepay_id: int,
        fields: dict[str, Any],
        from_statuses: tuple[str, ...] = ("Pending",),
    ) -> bool:
        """
        Compare-and-swap to Completed from any of from_statuses. Returns False
        when another delivery completed the row first.
        """
        values = {SePayTransaction.status: "Completed"}
        values.update({getattr(SePayTransaction, k): v for k, v in fields.items()})
        updated = (
            db.query(SePayTransaction)
            .filter(SePayTransaction.id == sepay_id, SePayTransaction.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def close_pending_sepay_for_contract(db: Session, contract_id: int) -> int:
        """Pending -> Cancelled for a contract that no longer awaits a transfer"""
        return (
            db.query(SePayTransaction)
            .filter(
                SePayTransaction.contract_id == contract_id,
                SePayTransaction.status == "Pending",
            )
            .update({SePayTransaction.status: "Cancelled"}, synchronize_session=False)
        )

    @staticmethod
    def get_wallet_credit_for_reference(db: Session, order_reference: str) -> Optional[WalletTransaction]:
        """Refund row created when a contract transfer had to go to the wallet"""
        return (
            db.query(WalletTransaction)
            .filter(
                WalletTransaction.payment_gateway_reference == order_reference,
                WalletTransaction.transaction_type == "Refund",
            )
            .first()
        )

    # ------------------------------------------------------------------
    # PayOS
    # ------------------------------------------------------------------

    @staticmethod
    def create_payos_transaction(db: Session, **fields) -> PayOSTransaction:
        txn = PayOSTransaction(**fields)
        db.add(txn)
        db.flush()
        return txn

    @staticmethod
    def get_payos_by_order_code(db: Session, order_code: int) -> Optional[PayOSTransaction]:
        return db.query(PayOSTransaction).filter(PayOSTransaction.order_code == order_code).first()

    @staticmethod
    def get_payos_page_for_user(
        db: Session, user_id: int, page: int, page_size: int
    ) -> tuple[list[PayOSTransaction], int]:
        query = (
            db.query(PayOSTransaction)
            .join(WalletTransaction, PayOSTransaction.wallet_transaction_id == WalletTransaction.id)
            .filter(WalletTransaction.parent_id == user_id)
        )
        total = query.count()
        items = (
            query.order_by(PayOSTransaction.created_at.desc(), PayOSTransaction.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total

    @staticmethod
    def transition_payos_status(
        db: Session,
        payos_id: int,
        from_status: str,
        to_status: str,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        values = {
            PayOSTransaction.payment_status: to_status,
            PayOSTransaction.updated_at: datetime.utcnow(),
        }
        if paid_at is not None:
            values[PayOSTransaction.paid_at] = paid_at
        updated = (
            db.query(PayOSTransaction)
            .filter(PayOSTransaction.id == payos_id, PayOSTransaction.payment_status == from_status)
            .update(values, synchronize_session=False)
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Contract payment path
    # ------------------------------------------------------------------

    @staticmethod
    def mark_contract_paid(db: Session, contract_id: int) -> bool:
        """unpaid -> pending (awaiting staff approval)"""
        updated = (
            db.query(Contract)
            .filter(Contract.id == contract_id, Contract.status == "unpaid")
            .update(
                {Contract.status: "pending", Contract.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1
