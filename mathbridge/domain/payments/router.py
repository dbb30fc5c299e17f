"""Payment routers - SePay and PayOS endpoints, including gateway webhooks"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...exceptions import MathBridgeError
from ...models import User
from ..notifications.dispatcher import NotificationDispatcher, get_dispatcher
from .payos_client import PayOSClient
from .payos_service import PayOSService
from .schemas import (
    CancelPayOSPaymentRequest,
    PaymentStatusResponse,
    PayOSPaymentRequest,
    PayOSPaymentResponse,
    PayOSPaymentStatusResponse,
    PayOSTransactionResponse,
    PayOSWebhookPayload,
    SePayPaymentDetailsResponse,
    SePayPaymentRequest,
    SePayPaymentResponse,
    SePayWebhookPayload,
    WebhookResult,
)
from .sepay_service import SePayService

logger = logging.getLogger(__name__)

sepay_router = APIRouter(prefix="/sepay", tags=["SePay"])
payos_router = APIRouter(prefix="/payos", tags=["PayOS"])


def get_sepay_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SePayService:
    """Dependency injection for SePayService"""
    return SePayService(db, dispatcher)


def get_payos_client() -> PayOSClient:
    return PayOSClient()


def get_payos_service(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    client: PayOSClient = Depends(get_payos_client),
) -> PayOSService:
    """Dependency injection for PayOSService"""
    return PayOSService(db, dispatcher, client=client)


async def _read_json(request: Request) -> Optional[dict]:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


# ============================================================================
# SePay
# ============================================================================


@sepay_router.post("/create-payment", response_model=SePayPaymentResponse)
async def create_sepay_payment(
    data: SePayPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: SePayService = Depends(get_sepay_service),
):
    """Create a wallet top-up QR payment"""
    return service.create_payment_request(current_user, data.amount, data.description)


@sepay_router.post("/contracts/{contract_id}/payment", response_model=SePayPaymentResponse)
async def create_sepay_contract_payment(
    contract_id: int,
    current_user: User = Depends(get_current_user),
    service: SePayService = Depends(get_sepay_service),
):
    """Create a QR payment for an unpaid contract"""
    return service.create_contract_payment(current_user, contract_id)


@sepay_router.get("/status/{wallet_transaction_id}", response_model=PaymentStatusResponse)
async def check_sepay_payment_status(
    wallet_transaction_id: int,
    current_user: User = Depends(get_current_user),
    service: SePayService = Depends(get_sepay_service),
):
    return service.check_payment_status(current_user, wallet_transaction_id)


@sepay_router.get("/details/{wallet_transaction_id}", response_model=SePayPaymentDetailsResponse)
async def get_sepay_payment_details(
    wallet_transaction_id: int,
    current_user: User = Depends(get_current_user),
    service: SePayService = Depends(get_sepay_service),
):
    return service.get_payment_details(current_user, wallet_transaction_id)


@sepay_router.post("/webhook", response_model=WebhookResult)
async def sepay_webhook(
    request: Request,
    authorization: Optional[str] = Header(None),
    service: SePayService = Depends(get_sepay_service),
):
    """
    SePay transfer notification. Business outcomes are reported in the body
    with HTTP 200 so SePay stops retrying; unexpected errors surface as 500
    and the ledger stays Pending for the retry.
    """
    body = await _read_json(request)
    if body is None:
        return WebhookResult(success=False, message="Invalid JSON payload")

    try:
        payload = SePayWebhookPayload.model_validate(body)
    except PydanticValidationError as e:
        logger.warning(f"⚠️ Malformed SePay webhook: {e.errors()}")
        return WebhookResult(success=False, message="Invalid webhook payload")

    try:
        return await service.process_webhook(payload, authorization)
    except MathBridgeError as e:
        logger.warning(f"⚠️ SePay webhook rejected: {e.message}")
        return WebhookResult(success=False, message=e.message)


# ============================================================================
# PayOS
# ============================================================================


@payos_router.post("/create", response_model=PayOSPaymentResponse)
async def create_payos_payment(
    data: PayOSPaymentRequest,
    current_user: User = Depends(get_current_user),
    service: PayOSService = Depends(get_payos_service),
):
    """Create a PayOS checkout link for a wallet top-up"""
    return await service.create_payment_link(
        current_user, data.amount, data.description, data.returnUrl, data.cancelUrl
    )


@payos_router.get("/status/{order_code}", response_model=PayOSPaymentStatusResponse)
async def check_payos_payment_status(
    order_code: int,
    current_user: User = Depends(get_current_user),
    service: PayOSService = Depends(get_payos_service),
):
    return service.check_payment_status(current_user, order_code)


@payos_router.post("/cancel/{order_code}", response_model=PayOSPaymentStatusResponse)
async def cancel_payos_payment(
    order_code: int,
    data: Optional[CancelPayOSPaymentRequest] = None,
    current_user: User = Depends(get_current_user),
    service: PayOSService = Depends(get_payos_service),
):
    return await service.cancel_payment(current_user, order_code, data.reason if data else None)


@payos_router.post("/sync/{order_code}", response_model=PayOSPaymentStatusResponse)
async def sync_payos_payment_status(
    order_code: int,
    current_user: User = Depends(get_current_user),
    service: PayOSService = Depends(get_payos_service),
):
    """Pull the latest status from PayOS, e.g. after the return redirect"""
    return await service.sync_payment_status(current_user, order_code)


@payos_router.get("/transactions", response_model=list[PayOSTransactionResponse])
async def get_payos_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    current_user: User = Depends(get_current_user),
    service: PayOSService = Depends(get_payos_service),
):
    items, _total = service.get_user_transactions(current_user, page, page_size)
    return [PayOSTransactionResponse.from_model(t) for t in items]


@payos_router.post("/webhook", response_model=WebhookResult)
async def payos_webhook(
    request: Request,
    service: PayOSService = Depends(get_payos_service),
):
    """PayOS payment callback; same 200-with-body contract as the SePay webhook"""
    body = await _read_json(request)
    if body is None:
        return WebhookResult(success=False, message="Invalid JSON payload")

    try:
        payload = PayOSWebhookPayload.model_validate(body)
    except PydanticValidationError as e:
        logger.warning(f"⚠️ Malformed PayOS webhook: {e.errors()}")
        return WebhookResult(success=False, message="Invalid webhook payload")

    signed_data = body.get("data") if isinstance(body.get("data"), dict) else None
    try:
        return await service.process_webhook(payload, signed_data)
    except MathBridgeError as e:
        logger.warning(f"⚠️ PayOS webhook rejected: {e.message}")
        return WebhookResult(success=False, message=e.message)
