"""Wallet repository - Ledger rows and atomic balance updates"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...models import User, WalletTransaction


class WalletRepository:
    """Repository for wallet database operations"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_transaction_by_id(db: Session, transaction_id: int) -> Optional[WalletTransaction]:
        return db.query(WalletTransaction).filter(WalletTransaction.id == transaction_id).first()

    @staticmethod
    def get_transactions_for_user(db: Session, user_id: int) -> list[WalletTransaction]:
        return (
            db.query(WalletTransaction)
            .filter(WalletTransaction.parent_id == user_id)
            .order_by(WalletTransaction.transaction_date.desc(), WalletTransaction.id.desc())
            .all()
        )

    @staticmethod
    def create_transaction(db: Session, **fields) -> WalletTransaction:
        """Add a ledger row and flush so its ids are available; caller commits"""
        transaction = WalletTransaction(**fields)
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def transition_status(
        db: Session, transaction_id: int, from_status: str, to_status: str
    ) -> bool:
        """
        Conditional status update. Returns False when the row was no longer in
        from_status, i.e. another writer already moved it.
        """
        updated = (
            db.query(WalletTransaction)
            .filter(
                WalletTransaction.id == transaction_id,
                WalletTransaction.status == from_status,
            )
            .update({WalletTransaction.status: to_status}, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def credit_balance(db: Session, user_id: int, amount: Decimal) -> None:
        """Increment in SQL so concurrent credits cannot overwrite each other"""
        db.query(User).filter(User.id == user_id).update(
            {User.wallet_balance: User.wallet_balance + amount}, synchronize_session=False
        )

    @staticmethod
    def debit_balance(db: Session, user_id: int, amount: Decimal) -> bool:
        """Decrement only if the balance covers the amount"""
        updated = (
            db.query(User)
            .filter(User.id == user_id, User.wallet_balance >= amount)
            .update(
                {User.wallet_balance: User.wallet_balance - amount}, synchronize_session=False
            )
        )
        return updated == 1
