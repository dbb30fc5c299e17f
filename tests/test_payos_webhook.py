"""PayOS payment link, sync and webhook tests against a mocked gateway client"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from mathbridge.domain.payments.payos_client import PayOSAPIError
from mathbridge.domain.payments.payos_service import PayOSService, generate_order_code
from mathbridge.domain.payments.reconciler import ALREADY_PROCESSED
from mathbridge.domain.payments.schemas import PayOSWebhookPayload
from mathbridge.exceptions import (
    AmountMismatchError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from mathbridge.models import PayOSTransaction, User, WalletTransaction
from mathbridge.webhook_security import sign_payos_data

CHECKSUM_KEY = "unit-test-checksum"


@pytest.fixture
def payos_client():
    client = AsyncMock()
    client.create_payment_link.return_value = {
        "paymentLinkId": "plink_123",
        "checkoutUrl": "https://pay.payos.vn/web/plink_123",
    }
    return client


@pytest.fixture
def service(db, payos_client):
    return PayOSService(db, client=payos_client, checksum_key=CHECKSUM_KEY)


def signed_callback(order_code, amount, code="00", success=True, key=CHECKSUM_KEY):
    data = {
        "orderCode": order_code,
        "amount": amount,
        "description": "MB top up",
        "accountNumber": "12345678",
        "reference": "TF230204212323",
        "transactionDateTime": "2024-01-05 10:15:00",
        "currency": "VND",
        "paymentLinkId": "plink_123",
        "code": code,
        "desc": "success" if code == "00" else "failed",
    }
    body = {
        "code": code,
        "desc": "success",
        "success": success,
        "data": data,
        "signature": sign_payos_data(key, data),
    }
    return PayOSWebhookPayload.model_validate(body), data


class TestOrderCode:
    def test_shape(self):
        code = generate_order_code()
        assert 1000 <= code % 10**4 <= 9999
        assert code < 10**12


class TestCreatePaymentLink:
    async def test_persists_pending_rows(self, db, parent, service, payos_client):
        response = await service.create_payment_link(parent, Decimal("20000"), "top up")

        assert response.checkoutUrl == "https://pay.payos.vn/web/plink_123"
        assert response.status == "PENDING"
        payos_client.create_payment_link.assert_awaited_once()
        assert payos_client.create_payment_link.await_args.kwargs["order_code"] == response.orderCode

        payos_txn = db.query(PayOSTransaction).filter_by(order_code=response.orderCode).one()
        assert payos_txn.payment_link_id == "plink_123"
        assert db.get(WalletTransaction, response.walletTransactionId).status == "Pending"

    async def test_description_truncated(self, parent, service, payos_client):
        await service.create_payment_link(parent, Decimal("20000"), "a very long description for payos")
        assert len(payos_client.create_payment_link.await_args.kwargs["description"]) == 25

    async def test_fractional_amount_rejected(self, parent, service):
        with pytest.raises(ValidationError):
            await service.create_payment_link(parent, Decimal("1000.50"))

    async def test_gateway_failure_marks_rows(self, db, parent, service, payos_client):
        payos_client.create_payment_link.side_effect = PayOSAPIError("bad request", code="20")

        with pytest.raises(PaymentGatewayError):
            await service.create_payment_link(parent, Decimal("20000"))

        db.expire_all()
        payos_txn = db.query(PayOSTransaction).one()
        assert payos_txn.payment_status == "CANCELLED"
        assert db.get(WalletTransaction, payos_txn.wallet_transaction_id).status == "Failed"


class TestWebhook:
    async def test_paid_callback_credits_wallet(self, db, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 20000)

        result = await service.process_webhook(payload, data)

        assert result.success
        assert result.message == "Webhook processed successfully"
        assert result.paymentStatus == "PAID"
        db.expire_all()
        assert db.get(User, parent.id).wallet_balance == Decimal("20000")
        payos_txn = db.query(PayOSTransaction).filter_by(order_code=created.orderCode).one()
        assert payos_txn.paid_at is not None

    async def test_replay_is_idempotent(self, db, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 20000)

        await service.process_webhook(payload, data)
        replay = await service.process_webhook(payload, data)

        assert replay.message == ALREADY_PROCESSED
        db.expire_all()
        assert db.get(User, parent.id).wallet_balance == Decimal("20000")

    async def test_bad_signature_rejected(self, db, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 20000, key="someone-else")

        with pytest.raises(AuthenticationError):
            await service.process_webhook(payload, data)

        db.expire_all()
        assert db.get(User, parent.id).wallet_balance == Decimal("0")

    async def test_signature_covers_raw_data(self, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 20000)
        tampered = dict(data, amount=1)

        with pytest.raises(AuthenticationError):
            await service.process_webhook(payload, tampered)

    async def test_failed_callback_cancels(self, db, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 20000, code="01", success=False)

        result = await service.process_webhook(payload, data)

        assert result.message == "Payment cancelled"
        db.expire_all()
        payos_txn = db.query(PayOSTransaction).filter_by(order_code=created.orderCode).one()
        assert payos_txn.payment_status == "CANCELLED"
        assert db.get(WalletTransaction, created.walletTransactionId).status == "Cancelled"
        assert db.get(User, parent.id).wallet_balance == Decimal("0")

    async def test_amount_mismatch(self, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 10000)

        with pytest.raises(AmountMismatchError):
            await service.process_webhook(payload, data)

    async def test_unknown_order(self, service):
        payload, data = signed_callback(999999, 20000)
        with pytest.raises(NotFoundError):
            await service.process_webhook(payload, data)

    async def test_missing_data(self, service):
        payload = PayOSWebhookPayload.model_validate({"code": "00", "success": True})
        with pytest.raises(ValidationError):
            await service.process_webhook(payload)


class TestCancelAndSync:
    async def test_cancel_pending(self, db, parent, service, payos_client):
        created = await service.create_payment_link(parent, Decimal("20000"))

        response = await service.cancel_payment(parent, created.orderCode, "changed my mind")

        assert response.status == "CANCELLED"
        payos_client.cancel_payment_link.assert_awaited_once_with(created.orderCode, "changed my mind")

    async def test_cancel_paid_conflicts(self, parent, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payload, data = signed_callback(created.orderCode, 20000)
        await service.process_webhook(payload, data)

        with pytest.raises(ConflictError):
            await service.cancel_payment(parent, created.orderCode)

    async def test_sync_applies_remote_paid(self, db, parent, service, payos_client):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payos_client.get_payment_info.return_value = {"status": "PAID", "amountPaid": 20000}

        response = await service.sync_payment_status(parent, created.orderCode)

        assert response.status == "PAID"
        db.expire_all()
        assert db.get(User, parent.id).wallet_balance == Decimal("20000")

    async def test_sync_expired(self, parent, service, payos_client):
        created = await service.create_payment_link(parent, Decimal("20000"))
        payos_client.get_payment_info.return_value = {"status": "EXPIRED"}

        response = await service.sync_payment_status(parent, created.orderCode)

        assert response.status == "CANCELLED"

    async def test_other_users_order_hidden(self, parent, make_user, service):
        created = await service.create_payment_link(parent, Decimal("20000"))
        with pytest.raises(NotFoundError):
            service.check_payment_status(make_user("parent"), created.orderCode)
