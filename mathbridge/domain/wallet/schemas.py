"""Wallet domain schemas"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class WalletTransactionResponse(BaseModel):
    id: int
    publicId: str
    contractId: Optional[int] = None
    amount: Decimal
    transactionType: str
    status: str
    description: Optional[str] = None
    paymentMethod: Optional[str] = None
    paymentGateway: Optional[str] = None
    paymentGatewayReference: Optional[str] = None
    transactionDate: Optional[datetime] = None

    @classmethod
    def from_model(cls, transaction) -> "WalletTransactionResponse":
        return cls(
            id=transaction.id,
            publicId=transaction.public_id,
            contractId=transaction.contract_id,
            amount=transaction.amount,
            transactionType=transaction.transaction_type,
            status=transaction.status,
            description=transaction.description,
            paymentMethod=transaction.payment_method,
            paymentGateway=transaction.payment_gateway,
            paymentGatewayReference=transaction.payment_gateway_reference,
            transactionDate=transaction.transaction_date,
        )


class WalletBalanceResponse(BaseModel):
    userId: int
    balance: Decimal
