"""
Webhook Security Module

Signature and credential verification for the payment gateway callbacks:
- SePay sends a static API key in the Authorization header ("Apikey <key>")
- PayOS signs the callback "data" object with HMAC-SHA256 over its sorted fields
All comparisons are constant-time.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

SEPAY_AUTH_SCHEME = "Apikey"


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA256 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def build_payos_signature_data(data: dict[str, Any]) -> str:
    """
    Canonical string PayOS signs: keys sorted alphabetically, joined as
    key=value pairs with '&'. Null values are rendered as empty strings.
    """
    return "&".join(f"{key}={_stringify(data[key])}" for key in sorted(data))


def sign_payos_data(checksum_key: str, data: dict[str, Any]) -> str:
    return compute_hmac_sha256(checksum_key, build_payos_signature_data(data).encode("utf-8"))


def verify_payos_signature(checksum_key: str, data: dict[str, Any], signature: Optional[str]) -> bool:
    """Verify the signature field of a PayOS callback against its data object"""
    if not signature:
        logger.warning("🚫 PayOS webhook missing signature")
        return False

    expected = sign_payos_data(checksum_key, data)
    if constant_time_compare(expected, signature.lower()):
        return True

    logger.warning(f"🚫 PayOS signature mismatch for orderCode={data.get('orderCode')}")
    return False


def verify_sepay_api_key(authorization: Optional[str], api_key: str) -> bool:
    """Check the SePay 'Authorization: Apikey <key>' header"""
    if not authorization:
        logger.warning("🚫 SePay webhook missing Authorization header")
        return False

    scheme, _, provided = authorization.strip().partition(" ")
    if scheme.lower() != SEPAY_AUTH_SCHEME.lower():
        logger.warning(f"🚫 SePay webhook used unexpected auth scheme: {scheme[:20]}")
        return False

    if constant_time_compare(provided.strip(), api_key):
        return True

    logger.warning("🚫 SePay webhook API key mismatch")
    return False
