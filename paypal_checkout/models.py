import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from paypal_checkout.errors import OrderError, OrderErrorKind

ORDER_ID_PATTERN = re.compile(r"^[A-Z0-9]+$")
_TWO_DECIMAL_AMOUNT = re.compile(r"^\d+(\.\d{2})?$")
_ZERO_DECIMAL_AMOUNT = re.compile(r"^\d+$")

CAPTURE_COMPLETED = "COMPLETED"


class Currency(str, Enum):
    AUD = "AUD"
    BRL = "BRL"
    CAD = "CAD"
    CNY = "CNY"
    CZK = "CZK"
    DKK = "DKK"
    EUR = "EUR"
    HKD = "HKD"
    HUF = "HUF"
    ILS = "ILS"
    JPY = "JPY"
    MYR = "MYR"
    MXN = "MXN"
    TWD = "TWD"
    NZD = "NZD"
    NOK = "NOK"
    PHP = "PHP"
    PLN = "PLN"
    GBP = "GBP"
    SGD = "SGD"
    SEK = "SEK"
    CHF = "CHF"
    THB = "THB"
    USD = "USD"

    @property
    def decimals(self) -> int:
        return 0 if self in ZERO_DECIMAL_CURRENCIES else 2


ZERO_DECIMAL_CURRENCIES = frozenset({Currency.HUF, Currency.JPY, Currency.TWD})


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    RISK_CHECKED = "RISK_CHECKED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (OrderStatus.CAPTURED, OrderStatus.CANCELLED, OrderStatus.FAILED)


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: float

    def usable(self, now: float, safety_margin: float = 0.0) -> bool:
        return now < self.expires_at - safety_margin


@dataclass(frozen=True)
class Capture:
    capture_id: str
    order_id: str
    status: str
    amount: str
    currency: str
    payer_email: Optional[str] = None

    def as_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "orderId": self.order_id,
            "captureId": self.capture_id,
            "status": self.status,
            "payerEmail": self.payer_email,
            "amount": self.amount,
            "currency": self.currency,
        }


def parse_currency(value: Any) -> Currency:
    if isinstance(value, Currency):
        return value
    try:
        return Currency(str(value).upper())
    except ValueError:
        raise OrderError(
            OrderErrorKind.INVALID_REQUEST, f"Unsupported currency '{value}'"
        ) from None


def normalize_amount(amount: Any, currency: Currency) -> str:
    """
    Return ``amount`` as a processor-ready string, e.g. ``"10" -> "10.00"``.

    Ordinary currencies accept whole numbers or exactly two decimals;
    zero-decimal currencies accept whole numbers only.
    """
    raw = str(amount).strip()
    pattern = _ZERO_DECIMAL_AMOUNT if currency.decimals == 0 else _TWO_DECIMAL_AMOUNT
    if not pattern.match(raw):
        example = "1000" if currency.decimals == 0 else "10.00"
        raise OrderError(
            OrderErrorKind.INVALID_REQUEST,
            f'Invalid amount format. Use format like "{example}"',
        )
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise OrderError(OrderErrorKind.INVALID_REQUEST, "Invalid amount") from None
    if value <= 0:
        raise OrderError(OrderErrorKind.INVALID_REQUEST, "Amount must be greater than zero")
    return str(value.quantize(Decimal(1).scaleb(-currency.decimals)))


def validate_order_id(order_id: Any) -> str:
    if not order_id or not isinstance(order_id, str):
        raise OrderError(OrderErrorKind.INVALID_REQUEST, "Order ID is required")
    if not ORDER_ID_PATTERN.match(order_id):
        raise OrderError(OrderErrorKind.INVALID_REQUEST, "Invalid order ID format")
    return order_id


def validate_email(email: Optional[str]) -> Optional[str]:
    if email is None or email == "":
        return None
    if "@" not in email:
        raise OrderError(OrderErrorKind.INVALID_REQUEST, "Invalid email format")
    return email


def _as_value_error(func, *args):
    try:
        return func(*args)
    except OrderError as exc:
        raise ValueError(exc.message) from None


class CreateOrderRequest(BaseModel):
    amount: str
    currency: Currency = Currency.USD
    email: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=127)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value):
        if value is None:
            return Currency.USD
        return _as_value_error(parse_currency, value)

    @field_validator("email")
    @classmethod
    def _email(cls, value):
        return _as_value_error(validate_email, value)


class CaptureOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(validation_alias=AliasChoices("orderId", "orderID"))

    @field_validator("order_id")
    @classmethod
    def _order_id(cls, value):
        return _as_value_error(validate_order_id, value)


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    event_type: str
    resource: Dict[str, Any] = Field(default_factory=dict)
    resource_type: Optional[str] = None
