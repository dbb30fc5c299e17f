"""SePay service - VietQR bank-transfer payments and webhook processing"""

import logging
import re
from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from sqlalchemy.orm import Session

from ...config import (
    SEPAY_ACCOUNT_NAME,
    SEPAY_ACCOUNT_NUMBER,
    SEPAY_BANK_CODE,
    SEPAY_MAX_AMOUNT,
    SEPAY_ORDER_REFERENCE_PREFIX,
    SEPAY_QR_BASE_URL,
    SEPAY_WEBHOOK_API_KEY,
)
from ...exceptions import (
    AmountMismatchError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ...models import SePayTransaction, User, WalletTransaction
from ...webhook_security import verify_sepay_api_key
from ..notifications.dispatcher import NotificationDispatcher
from ..wallet.repository import WalletRepository
from .reconciler import (
    ALREADY_PROCESSED,
    SEPAY_CONTRACT_OPEN_STATUSES,
    SEPAY_OPEN_STATUSES,
    PaymentReconciler,
)
from .repository import PaymentRepository
from .schemas import (
    PaymentStatusResponse,
    SePayPaymentDetailsResponse,
    SePayPaymentResponse,
    SePayWebhookPayload,
    WebhookResult,
)

logger = logging.getLogger(__name__)


def _not_configured(value: Optional[str]) -> bool:
    return value is None


class SePayService:
    """Service layer for SePay payments"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        bank_code: Optional[str] = None,
        account_number: Optional[str] = None,
        account_name: Optional[str] = None,
        qr_base_url: Optional[str] = None,
        order_reference_prefix: Optional[str] = None,
        webhook_api_key: Optional[str] = None,
        max_amount: Optional[int] = None,
    ):
        self.db = db
        self.repo = PaymentRepository()
        self.wallet_repo = WalletRepository()
        self.reconciler = PaymentReconciler(db, dispatcher)

        self.bank_code = SEPAY_BANK_CODE if _not_configured(bank_code) else bank_code
        self.account_number = SEPAY_ACCOUNT_NUMBER if _not_configured(account_number) else account_number
        self.account_name = SEPAY_ACCOUNT_NAME if _not_configured(account_name) else account_name
        self.qr_base_url = qr_base_url or SEPAY_QR_BASE_URL
        self.prefix = order_reference_prefix or SEPAY_ORDER_REFERENCE_PREFIX
        self.webhook_api_key = (
            SEPAY_WEBHOOK_API_KEY if _not_configured(webhook_api_key) else webhook_api_key
        )
        self.max_amount = Decimal(max_amount if max_amount is not None else SEPAY_MAX_AMOUNT)
        self._reference_pattern = re.compile(rf"{re.escape(self.prefix)}[A-Z0-9]+", re.IGNORECASE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def generate_qr_code_url(self, amount: Decimal, description: str) -> str:
        """VietQR image URL that pre-fills the bank app with amount and transfer content"""
        return (
            f"{self.qr_base_url}?bank={self.bank_code}&acc={self.account_number}"
            f"&template=compact&amount={int(Decimal(amount))}&des={quote_plus(description)}"
        )

    def extract_order_reference(self, content: Optional[str]) -> Optional[str]:
        """Find '<prefix>XXXX' in free-text transfer content, e.g. 'MB1A2B3C4D'"""
        if not content:
            return None
        match = self._reference_pattern.search(content)
        return match.group(0).upper() if match else None

    def _order_reference_for(self, public_id: str) -> str:
        return f"{self.prefix}{public_id.replace('-', '')[:8].upper()}"

    def _bank_info(self) -> str:
        return f"{self.bank_code} - {self.account_number} - {self.account_name}"

    def _payment_response(self, sepay_txn: SePayTransaction, message: str) -> SePayPaymentResponse:
        return SePayPaymentResponse(
            success=True,
            message=message,
            qrCodeUrl=self.generate_qr_code_url(sepay_txn.transfer_amount, sepay_txn.order_reference),
            orderReference=sepay_txn.order_reference,
            walletTransactionId=sepay_txn.wallet_transaction_id,
            contractId=sepay_txn.contract_id,
            amount=sepay_txn.transfer_amount,
            bankInfo=self._bank_info(),
            transferContent=sepay_txn.order_reference,
        )

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    def create_payment_request(
        self, user: User, amount: Decimal, description: str = ""
    ) -> SePayPaymentResponse:
        """Wallet top-up: Pending Deposit ledger row plus its SePay mirror"""
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if amount > self.max_amount:
            raise ValidationError(f"Amount must not exceed {int(self.max_amount)}")

        try:
            wallet_txn = self.wallet_repo.create_transaction(
                self.db,
                parent_id=user.id,
                amount=amount,
                transaction_type="Deposit",
                status="Pending",
                description=f"SePay deposit: {description}".strip(),
                payment_method="SePay",
                payment_gateway="SePay",
            )
            order_reference = self._order_reference_for(wallet_txn.public_id)

            sepay_txn = self.repo.create_sepay_transaction(
                self.db,
                order_reference=order_reference,
                wallet_transaction_id=wallet_txn.id,
                status="Pending",
                transfer_amount=amount,
                transfer_type="in",
                code=order_reference,
                content=f"{order_reference}-{description}" if description else order_reference,
                description=description or None,
            )
            wallet_txn.payment_gateway_reference = order_reference
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(sepay_txn)
        logger.info(f"🧾 SePay payment request {order_reference} created for user {user.id}: {amount}")
        return self._payment_response(sepay_txn, "Payment request created successfully")

    def create_contract_payment(self, user: User, contract_id: int) -> SePayPaymentResponse:
        """Direct contract payment: expected amount is the package price"""
        contract = self.repo.get_contract_by_id(self.db, contract_id)
        if not contract:
            raise NotFoundError("Contract not found")
        if contract.parent_id != user.id:
            raise PermissionDeniedError("Contract belongs to another parent")
        if contract.status != "unpaid":
            raise ConflictError(f"Contract is {contract.status}, only unpaid contracts can be paid")

        existing = self.repo.get_pending_sepay_for_contract(self.db, contract.id)
        if existing:
            return self._payment_response(existing, "Payment request already exists")

        amount = Decimal(contract.package.price)
        order_reference = self._order_reference_for(contract.public_id)
        try:
            sepay_txn = self.repo.create_sepay_transaction(
                self.db,
                order_reference=order_reference,
                contract_id=contract.id,
                status="Pending",
                transfer_amount=amount,
                transfer_type="in",
                code=order_reference,
                content=order_reference,
                description=f"Contract payment: {contract.package.package_name}",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(sepay_txn)
        logger.info(f"🧾 SePay contract payment {order_reference} created for contract {contract.id}")
        return self._payment_response(sepay_txn, "Contract payment request created successfully")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _owned_wallet_transaction(self, user: User, wallet_transaction_id: int) -> WalletTransaction:
        wallet_txn = self.repo.get_wallet_transaction(self.db, wallet_transaction_id)
        if not wallet_txn or wallet_txn.parent_id != user.id:
            raise NotFoundError("Transaction not found")
        return wallet_txn

    def check_payment_status(self, user: User, wallet_transaction_id: int) -> PaymentStatusResponse:
        wallet_txn = self._owned_wallet_transaction(user, wallet_transaction_id)
        sepay_txn = self.repo.get_sepay_by_wallet_transaction(self.db, wallet_txn.id)

        paid = wallet_txn.status == "Completed"
        if paid:
            status = "Paid"
        elif wallet_txn.status == "Pending":
            status = "Unpaid"
        else:
            status = wallet_txn.status

        paid_at = None
        if paid and sepay_txn:
            paid_at = sepay_txn.transaction_date or sepay_txn.completed_at

        return PaymentStatusResponse(
            status=status,
            message=f"Transaction status: {wallet_txn.status}",
            success=True,
            paidAt=paid_at,
            amountPaid=wallet_txn.amount if paid else None,
        )

    def get_payment_details(self, user: User, wallet_transaction_id: int) -> SePayPaymentDetailsResponse:
        wallet_txn = self._owned_wallet_transaction(user, wallet_transaction_id)
        sepay_txn = self.repo.get_sepay_by_wallet_transaction(self.db, wallet_txn.id)
        if not sepay_txn:
            raise NotFoundError("SePay transaction not found")

        return SePayPaymentDetailsResponse(
            walletTransactionId=wallet_txn.id,
            orderReference=sepay_txn.order_reference,
            amount=sepay_txn.transfer_amount,
            status=sepay_txn.status,
            ledgerStatus=wallet_txn.status,
            qrCodeUrl=self.generate_qr_code_url(sepay_txn.transfer_amount, sepay_txn.order_reference),
            bankInfo=self._bank_info(),
            createdAt=sepay_txn.created_at,
            completedAt=sepay_txn.completed_at,
        )

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def _authenticate(self, authorization: Optional[str]) -> None:
        if not self.webhook_api_key:
            logger.warning("⚠️ SEPAY_WEBHOOK_API_KEY not set - accepting unauthenticated SePay webhook")
            return
        if not verify_sepay_api_key(authorization, self.webhook_api_key):
            raise AuthenticationError("Invalid SePay webhook credentials")

    def _resolve(self, payload: SePayWebhookPayload) -> SePayTransaction:
        if payload.code and payload.code.strip():
            sepay_txn = self.repo.get_sepay_by_order_reference(self.db, payload.code.strip().upper())
            if sepay_txn:
                return sepay_txn

        order_reference = self.extract_order_reference(payload.content)
        if not order_reference:
            raise NotFoundError("Order reference not found in transaction content")

        sepay_txn = self.repo.get_sepay_by_order_reference(self.db, order_reference)
        if not sepay_txn:
            raise NotFoundError(f"No transaction found for order reference {order_reference}")
        return sepay_txn

    async def process_webhook(
        self, payload: SePayWebhookPayload, authorization: Optional[str] = None
    ) -> WebhookResult:
        """
        Reconcile one SePay callback. Business failures raise MathBridgeError
        subclasses before anything is written; replays return success with
        ALREADY_PROCESSED and change nothing.
        """
        self._authenticate(authorization)
        logger.info(
            f"📥 SePay webhook: id={payload.id} code={payload.code} amount={payload.transferAmount}"
        )

        if payload.transferType and payload.transferType.lower() != "in":
            logger.info(f"↪️ Ignoring outgoing SePay transfer {payload.id}")
            return WebhookResult(success=False, message="Outgoing transfer ignored")

        sepay_txn = self._resolve(payload)
        result = WebhookResult(
            success=True,
            message=ALREADY_PROCESSED,
            walletTransactionId=sepay_txn.wallet_transaction_id,
            contractId=sepay_txn.contract_id,
            orderReference=sepay_txn.order_reference,
        )

        open_statuses = (
            SEPAY_CONTRACT_OPEN_STATUSES if sepay_txn.contract_id is not None else SEPAY_OPEN_STATUSES
        )
        if sepay_txn.status not in open_statuses:
            logger.info(f"♻️ SePay {sepay_txn.order_reference} already processed")
            return result

        expected = Decimal(sepay_txn.transfer_amount)
        received = Decimal(payload.transferAmount)
        if received != expected:
            logger.warning(
                f"🚫 SePay amount mismatch for {sepay_txn.order_reference}: "
                f"expected {expected}, received {received}"
            )
            raise AmountMismatchError(
                "Transaction amount does not match",
                {"expected": str(expected), "received": str(received)},
            )

        applied = self.reconciler.complete_sepay(
            sepay_txn,
            {
                "gateway": payload.gateway or None,
                "transaction_date": payload.transactionDate,
                "account_number": payload.accountNumber or None,
                "sub_account": payload.subAccount,
                "transfer_type": payload.transferType,
                "accumulated": payload.accumulated,
                "content": payload.content,
                "reference_number": payload.referenceCode,
            },
        )
        if not applied:
            return result

        if sepay_txn.wallet_transaction_id is not None:
            wallet_txn = self.repo.get_wallet_transaction(self.db, sepay_txn.wallet_transaction_id)
            user_id, purpose = wallet_txn.parent_id, "your wallet top-up"
        else:
            contract = self.repo.get_contract_by_id(self.db, sepay_txn.contract_id)
            user_id, purpose = contract.parent_id, f"contract #{contract.id}"
            credit = self.repo.get_wallet_credit_for_reference(self.db, sepay_txn.order_reference)
            if credit is not None:
                purpose += ", which no longer awaited payment, so the amount was added to your wallet"
                result.walletTransactionId = credit.id

        await self.reconciler.notify_payment(
            user_id=user_id,
            amount=received,
            reference=sepay_txn.order_reference,
            purpose=purpose,
            contract_id=sepay_txn.contract_id,
        )

        result.message = "Webhook processed successfully"
        return result
