"""Wallet service - Balance and transaction history for the signed-in user"""

import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from ...exceptions import NotFoundError
from ...models import User, WalletTransaction
from .repository import WalletRepository

logger = logging.getLogger(__name__)


class WalletService:
    """Service layer for wallet queries"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = WalletRepository()

    def get_transactions(self, user: User) -> list[WalletTransaction]:
        return self.repo.get_transactions_for_user(self.db, user.id)

    def get_transaction(self, user: User, transaction_id: int) -> WalletTransaction:
        transaction = self.repo.get_transaction_by_id(self.db, transaction_id)
        # Other users' rows are reported as missing rather than forbidden
        if not transaction or transaction.parent_id != user.id:
            raise NotFoundError("Wallet transaction not found")
        return transaction

    def get_balance(self, user: User) -> Decimal:
        fresh = self.repo.get_user_by_id(self.db, user.id)
        if not fresh:
            raise NotFoundError("User not found")
        self.db.refresh(fresh)
        return Decimal(fresh.wallet_balance or 0)
