"""
Domain error taxonomy

Services raise these; main.py maps them to HTTP status codes. Webhook
routes turn them into a 200 response with a failure body instead.
"""

from typing import Optional


class MathBridgeError(Exception):
    """Base class for domain errors surfaced to the API boundary"""

    status_code = 400

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(MathBridgeError):
    """Malformed or missing request fields"""

    status_code = 400


class AuthenticationError(MathBridgeError):
    """Signature or credential check failed"""

    status_code = 401


class PermissionDeniedError(MathBridgeError):
    """Caller is authenticated but does not own the resource"""

    status_code = 403


class NotFoundError(MathBridgeError):
    """Referenced entity does not exist"""

    status_code = 404


class ConflictError(MathBridgeError):
    """State-machine violation"""

    status_code = 409


class AmountMismatchError(ConflictError):
    """Gateway-reported amount differs from the expected amount"""


class InsufficientScheduleError(MathBridgeError):
    """Date range cannot hold the contracted number of sessions"""

    status_code = 422


class PaymentGatewayError(MathBridgeError):
    """Upstream payment gateway rejected the request or could not be reached"""

    status_code = 502
