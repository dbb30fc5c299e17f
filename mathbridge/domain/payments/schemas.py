"""Payment domain schemas - Gateway payloads and API responses"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# SePay
# ============================================================================


class SePayWebhookPayload(BaseModel):
    """
    SePay bank-transfer notification. Field names follow the gateway's JSON.
    transactionDate arrives as "YYYY-MM-DD HH:MM:SS".
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    gateway: str = ""
    transactionDate: Optional[datetime] = None
    accountNumber: str = ""
    subAccount: Optional[str] = None
    code: Optional[str] = None
    content: str = ""
    transferType: str = "in"
    transferAmount: Decimal
    accumulated: Optional[Decimal] = None
    referenceCode: Optional[str] = None
    description: Optional[str] = None

    @field_validator("transactionDate", mode="before")
    @classmethod
    def parse_sepay_datetime(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return None
            try:
                return datetime.strptime(v, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return datetime.fromisoformat(v)
        return v


class SePayPaymentRequest(BaseModel):
    amount: Decimal
    description: str = ""


class SePayPaymentResponse(BaseModel):
    success: bool
    message: str
    qrCodeUrl: str
    orderReference: str
    walletTransactionId: Optional[int] = None
    contractId: Optional[int] = None
    amount: Decimal
    bankInfo: str
    transferContent: str


class PaymentStatusResponse(BaseModel):
    status: str  # Paid, Unpaid or the raw ledger status
    message: str
    success: bool
    paidAt: Optional[datetime] = None
    amountPaid: Optional[Decimal] = None


class SePayPaymentDetailsResponse(BaseModel):
    walletTransactionId: int
    orderReference: str
    amount: Decimal
    status: str
    ledgerStatus: str
    qrCodeUrl: str
    bankInfo: str
    createdAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None


class WebhookResult(BaseModel):
    """Body returned to the gateway; always sent with HTTP 200"""

    success: bool
    message: str
    walletTransactionId: Optional[int] = None
    contractId: Optional[int] = None
    orderReference: Optional[str] = None
    orderCode: Optional[int] = None
    paymentStatus: Optional[str] = None


# ============================================================================
# PayOS
# ============================================================================


class PayOSWebhookData(BaseModel):
    """Signed part of a PayOS callback. Unknown fields are kept so the signature can be checked."""

    model_config = ConfigDict(extra="allow")

    orderCode: int
    amount: Decimal
    description: Optional[str] = None
    accountNumber: Optional[str] = None
    reference: Optional[str] = None
    transactionDateTime: Optional[str] = None
    currency: Optional[str] = None
    paymentLinkId: Optional[str] = None
    code: Optional[str] = None
    desc: Optional[str] = None


class PayOSWebhookPayload(BaseModel):
    code: str
    desc: Optional[str] = None
    success: bool = False
    data: Optional[PayOSWebhookData] = None
    signature: Optional[str] = None


class PayOSPaymentRequest(BaseModel):
    amount: Decimal
    description: str = Field("", max_length=255)
    returnUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class PayOSPaymentResponse(BaseModel):
    success: bool
    message: str
    checkoutUrl: Optional[str] = None
    orderCode: int
    paymentLinkId: Optional[str] = None
    walletTransactionId: int
    amount: Decimal
    status: str


class PayOSPaymentStatusResponse(BaseModel):
    success: bool
    message: str
    status: str  # PENDING, PAID, CANCELLED
    orderCode: int
    amount: Decimal
    paidAt: Optional[datetime] = None
    paymentLinkId: Optional[str] = None
    walletTransactionId: Optional[int] = None


class CancelPayOSPaymentRequest(BaseModel):
    reason: Optional[str] = None


class PayOSTransactionResponse(BaseModel):
    id: int
    orderCode: int
    walletTransactionId: int
    paymentLinkId: Optional[str] = None
    checkoutUrl: Optional[str] = None
    paymentStatus: str
    amount: Decimal
    description: Optional[str] = None
    createdAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None

    @classmethod
    def from_model(cls, txn) -> "PayOSTransactionResponse":
        return cls(
            id=txn.id,
            orderCode=txn.order_code,
            walletTransactionId=txn.wallet_transaction_id,
            paymentLinkId=txn.payment_link_id,
            checkoutUrl=txn.checkout_url,
            paymentStatus=txn.payment_status,
            amount=txn.amount,
            description=txn.description,
            createdAt=txn.created_at,
            paidAt=txn.paid_at,
        )
