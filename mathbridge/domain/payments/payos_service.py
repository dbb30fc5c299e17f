"""PayOS service - Payment links, status sync and webhook processing"""

import logging
import random
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...config import PAYOS_CANCEL_URL, PAYOS_CHECKSUM_KEY, PAYOS_RETURN_URL
from ...exceptions import (
    AmountMismatchError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from ...models import PayOSTransaction, User
from ...webhook_security import verify_payos_signature
from ..notifications.dispatcher import NotificationDispatcher
from ..wallet.repository import WalletRepository
from .payos_client import PayOSAPIError, PayOSClient
from .reconciler import ALREADY_PROCESSED, PaymentReconciler
from .repository import PaymentRepository
from .schemas import (
    PayOSPaymentResponse,
    PayOSPaymentStatusResponse,
    PayOSWebhookPayload,
    WebhookResult,
)

logger = logging.getLogger(__name__)

# PayOS rejects descriptions longer than this
MAX_DESCRIPTION_LENGTH = 25
ORDER_CODE_ATTEMPTS = 5


def generate_order_code() -> int:
    """Millisecond clock (last 8 digits) followed by 4 random digits"""
    return (int(time.time() * 1000) % 10**8) * 10**4 + random.randint(1000, 9999)


class PayOSService:
    """Service layer for PayOS payments"""

    def __init__(
        self,
        db: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        client: Optional[PayOSClient] = None,
        checksum_key: Optional[str] = None,
    ):
        self.db = db
        self.repo = PaymentRepository()
        self.wallet_repo = WalletRepository()
        self.reconciler = PaymentReconciler(db, dispatcher)
        self.client = client or PayOSClient()
        self.checksum_key = PAYOS_CHECKSUM_KEY if checksum_key is None else checksum_key

    def _new_order_code(self) -> int:
        for _ in range(ORDER_CODE_ATTEMPTS):
            order_code = generate_order_code()
            if not self.repo.get_payos_by_order_code(self.db, order_code):
                return order_code
        raise ConflictError("Could not allocate a unique PayOS order code")

    def _owned(self, user: User, order_code: int) -> PayOSTransaction:
        payos_txn = self.repo.get_payos_by_order_code(self.db, order_code)
        if not payos_txn or payos_txn.wallet_transaction.parent_id != user.id:
            raise NotFoundError("PayOS transaction not found")
        return payos_txn

    @staticmethod
    def _status_response(payos_txn: PayOSTransaction, message: str) -> PayOSPaymentStatusResponse:
        return PayOSPaymentStatusResponse(
            success=True,
            message=message,
            status=payos_txn.payment_status,
            orderCode=payos_txn.order_code,
            amount=payos_txn.amount,
            paidAt=payos_txn.paid_at,
            paymentLinkId=payos_txn.payment_link_id,
            walletTransactionId=payos_txn.wallet_transaction_id,
        )

    async def create_payment_link(
        self,
        user: User,
        amount: Decimal,
        description: str = "",
        return_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> PayOSPaymentResponse:
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        if amount != amount.to_integral_value():
            raise ValidationError("PayOS amounts must be whole VND")

        order_code = self._new_order_code()
        gateway_description = (description or f"MB {order_code}")[:MAX_DESCRIPTION_LENGTH]
        return_url = return_url or PAYOS_RETURN_URL
        cancel_url = cancel_url or PAYOS_CANCEL_URL

        # Persist first so a fast webhook can find the row
        try:
            wallet_txn = self.wallet_repo.create_transaction(
                self.db,
                parent_id=user.id,
                amount=amount,
                transaction_type="Deposit",
                status="Pending",
                description=f"PayOS deposit: {description}".strip(),
                payment_method="PayOS",
                payment_gateway="PayOS",
                payment_gateway_reference=str(order_code),
            )
            payos_txn = self.repo.create_payos_transaction(
                self.db,
                order_code=order_code,
                wallet_transaction_id=wallet_txn.id,
                payment_status="PENDING",
                amount=amount,
                description=gateway_description,
                return_url=return_url,
                cancel_url=cancel_url,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        try:
            link = await self.client.create_payment_link(
                order_code=order_code,
                amount=amount,
                description=gateway_description,
                return_url=return_url,
                cancel_url=cancel_url,
            )
        except PayOSAPIError as e:
            logger.error(f"❌ PayOS link creation failed for order {order_code}: {e}")
            self.wallet_repo.transition_status(self.db, wallet_txn.id, "Pending", "Failed")
            self.repo.transition_payos_status(self.db, payos_txn.id, "PENDING", "CANCELLED")
            self.db.commit()
            raise PaymentGatewayError(f"Could not create PayOS payment link: {e}") from e

        payos_txn.payment_link_id = link.get("paymentLinkId")
        payos_txn.checkout_url = link.get("checkoutUrl")
        self.db.commit()
        self.db.refresh(payos_txn)

        logger.info(f"🔗 PayOS order {order_code} created for user {user.id}: {amount}")
        return PayOSPaymentResponse(
            success=True,
            message="Payment link created successfully",
            checkoutUrl=payos_txn.checkout_url,
            orderCode=order_code,
            paymentLinkId=payos_txn.payment_link_id,
            walletTransactionId=wallet_txn.id,
            amount=amount,
            status=payos_txn.payment_status,
        )

    def check_payment_status(self, user: User, order_code: int) -> PayOSPaymentStatusResponse:
        payos_txn = self._owned(user, order_code)
        return self._status_response(payos_txn, f"Payment status: {payos_txn.payment_status}")

    async def cancel_payment(
        self, user: User, order_code: int, reason: Optional[str] = None
    ) -> PayOSPaymentStatusResponse:
        payos_txn = self._owned(user, order_code)
        if payos_txn.payment_status != "PENDING":
            raise ConflictError(f"Cannot cancel a {payos_txn.payment_status} payment")

        try:
            await self.client.cancel_payment_link(order_code, reason)
        except PayOSAPIError as e:
            raise PaymentGatewayError(f"Could not cancel PayOS payment: {e}") from e

        if not self.reconciler.cancel_payos(payos_txn):
            self.db.refresh(payos_txn)
            raise ConflictError(f"Cannot cancel a {payos_txn.payment_status} payment")
        return self._status_response(payos_txn, "Payment cancelled")

    async def sync_payment_status(self, user: User, order_code: int) -> PayOSPaymentStatusResponse:
        """Pull the gateway's view and apply it through the same path as the webhook"""
        payos_txn = self._owned(user, order_code)
        if payos_txn.payment_status != "PENDING":
            return self._status_response(payos_txn, f"Payment status: {payos_txn.payment_status}")

        try:
            info = await self.client.get_payment_info(order_code)
        except PayOSAPIError as e:
            raise PaymentGatewayError(f"Could not fetch PayOS payment status: {e}") from e

        remote_status = (info.get("status") or "").upper()
        logger.info(f"🔄 PayOS order {order_code} remote status: {remote_status}")

        if remote_status == "PAID":
            paid = Decimal(str(info.get("amountPaid", info.get("amount", 0))))
            if paid != Decimal(payos_txn.amount):
                raise AmountMismatchError(
                    "Paid amount does not match",
                    {"expected": str(payos_txn.amount), "received": str(paid)},
                )
            if self.reconciler.complete_payos(payos_txn):
                await self._notify_paid(payos_txn)
        elif remote_status in ("CANCELLED", "EXPIRED"):
            self.reconciler.cancel_payos(payos_txn)

        self.db.refresh(payos_txn)
        return self._status_response(payos_txn, f"Payment status: {payos_txn.payment_status}")

    def get_user_transactions(
        self, user: User, page: int = 1, page_size: int = 20
    ) -> tuple[list[PayOSTransaction], int]:
        if page < 1 or page_size < 1 or page_size > 100:
            raise ValidationError("Invalid pagination parameters")
        return self.repo.get_payos_page_for_user(self.db, user.id, page, page_size)

    async def _notify_paid(self, payos_txn: PayOSTransaction) -> None:
        await self.reconciler.notify_payment(
            user_id=payos_txn.wallet_transaction.parent_id,
            amount=Decimal(payos_txn.amount),
            reference=str(payos_txn.order_code),
            purpose="your wallet top-up",
        )

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def _authenticate(self, payload: PayOSWebhookPayload, signed_data: dict[str, Any]) -> None:
        if not self.checksum_key:
            logger.warning("⚠️ PAYOS_CHECKSUM_KEY not set - accepting unsigned PayOS webhook")
            return
        if not verify_payos_signature(self.checksum_key, signed_data, payload.signature):
            raise AuthenticationError("Invalid PayOS webhook signature")

    async def process_webhook(
        self, payload: PayOSWebhookPayload, signed_data: Optional[dict[str, Any]] = None
    ) -> WebhookResult:
        """
        Reconcile one PayOS callback.

        signed_data is the callback's raw "data" object as received; the
        parsed model is used when it is not supplied.
        """
        if payload.data is None:
            raise ValidationError("Webhook data is missing")

        data = payload.data
        self._authenticate(payload, signed_data or data.model_dump(exclude_unset=True))
        logger.info(f"📥 PayOS webhook: orderCode={data.orderCode} code={payload.code}")

        payos_txn = self.repo.get_payos_by_order_code(self.db, data.orderCode)
        if not payos_txn:
            raise NotFoundError(f"PayOS transaction {data.orderCode} not found")

        result = WebhookResult(
            success=True,
            message=ALREADY_PROCESSED,
            walletTransactionId=payos_txn.wallet_transaction_id,
            orderCode=payos_txn.order_code,
            paymentStatus=payos_txn.payment_status,
        )
        if payos_txn.payment_status != "PENDING":
            logger.info(f"♻️ PayOS order {data.orderCode} already processed")
            return result

        if payload.code != "00" or not payload.success:
            if self.reconciler.cancel_payos(payos_txn):
                result.message = "Payment cancelled"
            result.paymentStatus = payos_txn.payment_status
            return result

        expected = Decimal(payos_txn.amount)
        received = Decimal(data.amount)
        if received != expected:
            logger.warning(
                f"🚫 PayOS amount mismatch for order {data.orderCode}: "
                f"expected {expected}, received {received}"
            )
            raise AmountMismatchError(
                "Transaction amount does not match",
                {"expected": str(expected), "received": str(received)},
            )

        if not self.reconciler.complete_payos(payos_txn, paid_at=datetime.utcnow()):
            return result

        await self._notify_paid(payos_txn)
        result.message = "Webhook processed successfully"
        result.paymentStatus = payos_txn.payment_status
        return result
