"""Wallet router - FastAPI endpoints for balance and ledger history"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .schemas import WalletBalanceResponse, WalletTransactionResponse
from .service import WalletService

router = APIRouter(prefix="/wallet", tags=["Wallet"])


def get_wallet_service(db: Session = Depends(get_db)) -> WalletService:
    """Dependency injection for WalletService"""
    return WalletService(db)


@router.get("/balance", response_model=WalletBalanceResponse)
async def get_balance(
    current_user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    return WalletBalanceResponse(userId=current_user.id, balance=service.get_balance(current_user))


@router.get("/transactions", response_model=list[WalletTransactionResponse])
async def get_transactions(
    current_user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    """Get the current user's wallet ledger, newest first"""
    return [WalletTransactionResponse.from_model(t) for t in service.get_transactions(current_user)]


@router.get("/transactions/{transaction_id}", response_model=WalletTransactionResponse)
async def get_transaction(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    return WalletTransactionResponse.from_model(service.get_transaction(current_user, transaction_id))
