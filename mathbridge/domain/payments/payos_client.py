import logging
from decimal import Decimal
from typing import Any, Optional

import httpx

from ...config import PAYOS_API_KEY, PAYOS_API_URL, PAYOS_CHECKSUM_KEY, PAYOS_CLIENT_ID
from ...webhook_security import sign_payos_data

logger = logging.getLogger(__name__)


class PayOSAPIError(Exception):
    """PayOS answered with a non-success code or could not be reached"""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class PayOSClient:
    """Thin async client for the PayOS merchant API (payment requests)"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        api_key: Optional[str] = None,
        checksum_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
    ):
        self.client_id = client_id or PAYOS_CLIENT_ID
        self.api_key = api_key or PAYOS_API_KEY
        self.checksum_key = checksum_key or PAYOS_CHECKSUM_KEY
        self.base_url = (base_url or PAYOS_API_URL).rstrip("/")
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        if not self.client_id or not self.api_key:
            raise PayOSAPIError("PayOS credentials are not configured")
        return {
            "x-client-id": self.client_id,
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    @staticmethod
    def _unwrap(response: httpx.Response) -> dict[str, Any]:
        response.raise_for_status()
        body = response.json()
        if body.get("code") != "00":
            raise PayOSAPIError(body.get("desc") or "PayOS request failed", code=body.get("code"))
        return body.get("data") or {}

    async def create_payment_link(
        self,
        order_code: int,
        amount: Decimal,
        description: str,
        return_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        """Returns the PayOS data object (checkoutUrl, paymentLinkId, status, ...)"""
        if not self.checksum_key:
            raise PayOSAPIError("PAYOS_CHECKSUM_KEY is not configured")

        body = {
            "orderCode": order_code,
            "amount": int(amount),
            "description": description,
            "cancelUrl": cancel_url,
            "returnUrl": return_url,
        }
        body["signature"] = sign_payos_data(self.checksum_key, body)

        logger.info(f"🔗 Creating PayOS payment link for order {order_code}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/v2/payment-requests", json=body, headers=self._headers()
                )
                return self._unwrap(response)
        except httpx.HTTPError as e:
            logger.error(f"❌ PayOS create payment link failed for order {order_code}: {e}")
            raise PayOSAPIError(f"PayOS request failed: {e}") from e

    async def get_payment_info(self, order_code: int) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/v2/payment-requests/{order_code}", headers=self._headers()
                )
                return self._unwrap(response)
        except httpx.HTTPError as e:
            logger.error(f"❌ PayOS payment info failed for order {order_code}: {e}")
            raise PayOSAPIError(f"PayOS request failed: {e}") from e

    async def cancel_payment_link(self, order_code: int, reason: Optional[str] = None) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/v2/payment-requests/{order_code}/cancel",
                    json={"cancellationReason": reason or "User cancelled"},
                    headers=self._headers(),
                )
                return self._unwrap(response)
        except httpx.HTTPError as e:
            logger.error(f"❌ PayOS cancel failed for order {order_code}: {e}")
            raise PayOSAPIError(f"PayOS request failed: {e}") from e
