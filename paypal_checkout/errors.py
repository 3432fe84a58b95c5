"""
Error taxonomy for the checkout core.

Every failure that crosses the core boundary is a ``CheckoutError`` carrying
a ``kind``, the HTTP status the API layer answers with, and a message that is
safe to show to untrusted callers.
"""
from enum import Enum
from typing import Optional


class AuthErrorKind(str, Enum):
    MISSING_CREDENTIALS = "missing_credentials"
    PROVIDER_REJECTED = "provider_rejected"
    NETWORK = "network"
    TIMEOUT = "timeout"


class OrderErrorKind(str, Enum):
    INVALID_REQUEST = "invalid_request"
    CREATE_REJECTED = "create_rejected"
    RISK_REJECTED = "risk_rejected"
    NOT_APPROVED = "not_approved"
    ALREADY_PROCESSING = "already_processing"
    CAPTURE_REJECTED = "capture_rejected"
    CAPTURE_INCOMPLETE = "capture_incomplete"
    ALREADY_CAPTURED = "already_captured"


class RiskErrorKind(str, Enum):
    UNAVAILABLE = "unavailable"


class VerificationErrorKind(str, Enum):
    MISSING_HEADERS = "missing_headers"
    MISSING_WEBHOOK_ID = "missing_webhook_id"
    PROVIDER_REJECTED = "provider_rejected"


class TransportErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"


class CheckoutError(Exception):
    """Base exception for every structured failure of the checkout core."""

    status_code = 500
    public_messages: dict = {}

    def __init__(
        self,
        kind: Enum,
        message: str,
        *,
        order_id: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.order_id = order_id
        self.http_status = http_status

    @property
    def public_message(self) -> str:
        return self.public_messages.get(self.kind, "payment processing failed")

    @property
    def retryable(self) -> bool:
        return False

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, "
            f"order_id={self.order_id!r}, http_status={self.http_status!r})"
        )


class AuthError(CheckoutError):
    """Raised when an access token cannot be obtained."""

    public_messages = {
        AuthErrorKind.MISSING_CREDENTIALS: "payment provider is not configured",
        AuthErrorKind.PROVIDER_REJECTED: "payment provider authentication failed",
        AuthErrorKind.NETWORK: "payment provider unavailable",
        AuthErrorKind.TIMEOUT: "payment provider timed out",
    }

    @property
    def status_code(self) -> int:
        if self.kind is AuthErrorKind.MISSING_CREDENTIALS:
            return 500
        if self.kind is AuthErrorKind.TIMEOUT:
            return 504
        return 502

    @property
    def retryable(self) -> bool:
        return self.kind in (AuthErrorKind.NETWORK, AuthErrorKind.TIMEOUT)


class OrderError(CheckoutError):
    """Raised when an order cannot move to the requested lifecycle state."""

    public_messages = {
        OrderErrorKind.INVALID_REQUEST: "invalid request",
        OrderErrorKind.CREATE_REJECTED: "order creation failed",
        OrderErrorKind.RISK_REJECTED: "risk rejected",
        OrderErrorKind.NOT_APPROVED: "order is not approved for capture",
        OrderErrorKind.ALREADY_PROCESSING: "already processing",
        OrderErrorKind.CAPTURE_REJECTED: "failed to capture payment",
        OrderErrorKind.CAPTURE_INCOMPLETE: "payment capture was not completed",
        OrderErrorKind.ALREADY_CAPTURED: "order already captured",
    }

    _status_codes = {
        OrderErrorKind.INVALID_REQUEST: 400,
        OrderErrorKind.CREATE_REJECTED: 502,
        OrderErrorKind.RISK_REJECTED: 403,
        OrderErrorKind.NOT_APPROVED: 409,
        OrderErrorKind.ALREADY_PROCESSING: 409,
        OrderErrorKind.CAPTURE_REJECTED: 402,
        OrderErrorKind.CAPTURE_INCOMPLETE: 402,
        OrderErrorKind.ALREADY_CAPTURED: 409,
    }

    @property
    def status_code(self) -> int:
        return self._status_codes[self.kind]

    @property
    def public_message(self) -> str:
        # validation messages describe the caller's own input
        if self.kind is OrderErrorKind.INVALID_REQUEST:
            return self.message
        return super().public_message

    @property
    def retryable(self) -> bool:
        return self.kind is OrderErrorKind.ALREADY_PROCESSING


class RiskError(CheckoutError):
    """Raised by a risk gate that cannot reach a decision."""

    status_code = 503
    public_messages = {RiskErrorKind.UNAVAILABLE: "risk assessment unavailable"}


class VerificationError(CheckoutError):
    """Raised when a webhook cannot be submitted for verification."""

    public_messages = {
        VerificationErrorKind.MISSING_HEADERS: "missing webhook headers",
        VerificationErrorKind.MISSING_WEBHOOK_ID: "webhook verification is not configured",
        VerificationErrorKind.PROVIDER_REJECTED: "invalid webhook signature",
    }

    @property
    def status_code(self) -> int:
        if self.kind is VerificationErrorKind.MISSING_HEADERS:
            return 400
        if self.kind is VerificationErrorKind.MISSING_WEBHOOK_ID:
            return 500
        return 401


class ProcessorUnavailableError(CheckoutError):
    """Raised when a processor call fails at the transport layer."""

    public_messages = {
        TransportErrorKind.NETWORK: "payment provider unavailable",
        TransportErrorKind.TIMEOUT: "payment provider timed out",
    }

    @property
    def status_code(self) -> int:
        return 504 if self.kind is TransportErrorKind.TIMEOUT else 502

    @property
    def retryable(self) -> bool:
        return True
