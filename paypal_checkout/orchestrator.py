"""
Order lifecycle orchestration.

Drives a PayPal order through::

    CREATED -> RISK_CHECKED -> APPROVED -> CAPTURED
    CREATED -> RISK_CHECKED -> REJECTED -> CANCELLED
    (any non-terminal state) -> FAILED

The authoritative order lives at PayPal. The orchestrator only keeps an
in-memory view of the orders it created so that a capture can be refused for
anything that did not pass the risk gate in this process.
"""
import hashlib
import json
from collections import OrderedDict
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from paypal_checkout.errors import CheckoutError, OrderError, OrderErrorKind
from paypal_checkout.models import (
    CAPTURE_COMPLETED,
    Capture,
    OrderStatus,
    normalize_amount,
    parse_currency,
    validate_email,
    validate_order_id,
)
from paypal_checkout.paypal_client import PayPalClient, first_capture
from paypal_checkout.risk import RiskGate
from paypal_checkout.single_flight import SingleFlightGuard

logger = structlog.get_logger(__name__)

_TRANSITIONS = {
    OrderStatus.CREATED: {OrderStatus.RISK_CHECKED},
    OrderStatus.RISK_CHECKED: {OrderStatus.APPROVED, OrderStatus.REJECTED},
    OrderStatus.APPROVED: {OrderStatus.CAPTURED},
    OrderStatus.REJECTED: {OrderStatus.CANCELLED},
}


def session_digest(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class OrderView:
    order_id: str
    amount: str
    currency: str
    status: OrderStatus


class InvalidTransition(Exception):
    """Raised when the order view would move against the state machine."""


class OrderLifecycleOrchestrator:
    def __init__(
        self,
        client: PayPalClient,
        risk_gate: RiskGate,
        *,
        guard: Optional[SingleFlightGuard] = None,
        max_tracked_orders: int = 10_000,
    ) -> None:
        self.client = client
        self.risk_gate = risk_gate
        self.guard = guard or SingleFlightGuard()
        self.max_tracked_orders = max_tracked_orders
        self._orders: "OrderedDict[str, OrderView]" = OrderedDict()

    def status(self, order_id: str) -> Optional[OrderStatus]:
        view = self._orders.get(order_id)
        return view.status if view else None

    def _track(self, view: OrderView) -> None:
        self._orders[view.order_id] = view
        self._orders.move_to_end(view.order_id)
        if len(self._orders) <= self.max_tracked_orders:
            return
        # only finished orders are forgotten; in-flight ones must stay resolvable
        for stale_id in [oid for oid, v in self._orders.items() if v.status.terminal]:
            if len(self._orders) <= self.max_tracked_orders:
                break
            del self._orders[stale_id]

    def _transition(self, order_id: str, status: OrderStatus) -> OrderView:
        view = self._orders[order_id]
        allowed = _TRANSITIONS.get(view.status, set())
        if status is not OrderStatus.FAILED and status not in allowed:
            raise InvalidTransition(f"{order_id}: {view.status.value} -> {status.value}")
        if status is OrderStatus.FAILED and view.status.terminal:
            raise InvalidTransition(f"{order_id}: {view.status.value} is terminal")
        view = replace(view, status=status)
        self._orders[order_id] = view
        logger.info("order_status_changed", order_id=order_id, status=status.value)
        return view

    def _fail(self, order_id: str) -> None:
        view = self._orders.get(order_id)
        if view is not None and not view.status.terminal:
            self._transition(order_id, OrderStatus.FAILED)

    async def create_order(
        self,
        amount: Any,
        currency: Any = "USD",
        payer_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        code = parse_currency(currency)
        value = normalize_amount(amount, code)
        payer_email = validate_email(payer_email)

        logger.info("create_order", amount=value, currency=code.value)
        order_id = await self.client.create_order(value, code.value, payer_email, description)
        self._track(OrderView(order_id, value, code.value, OrderStatus.CREATED))
        return order_id

    async def assess_and_finalize_creation(self, order_id: str, amount: Any = None) -> str:
        async with self.guard.claim(("assess", order_id), order_id=order_id):
            view = self._orders.get(order_id)
            if view is None or view.status is not OrderStatus.CREATED:
                raise OrderError(
                    OrderErrorKind.INVALID_REQUEST,
                    "Order is not awaiting risk assessment",
                    order_id=order_id,
                )
            if amount is not None and normalize_amount(
                amount, parse_currency(view.currency)
            ) != view.amount:
                raise OrderError(
                    OrderErrorKind.INVALID_REQUEST,
                    "Amount does not match the order",
                    order_id=order_id,
                )

            try:
                approved = await self.risk_gate.evaluate(order_id, Decimal(view.amount))
            except Exception:
                # unreachable or broken risk engines count as a denial
                logger.exception("risk_assessment_failed", order_id=order_id)
                approved = False
            self._transition(order_id, OrderStatus.RISK_CHECKED)

            if approved:
                self._transition(order_id, OrderStatus.APPROVED)
                return order_id

            self._transition(order_id, OrderStatus.REJECTED)
            await self._cancel(order_id)
            raise OrderError(
                OrderErrorKind.RISK_REJECTED,
                "Transaction not approved due to risk assessment",
                order_id=order_id,
            )

    async def _cancel(self, order_id: str) -> None:
        try:
            cancelled = await self.client.cancel_order(order_id)
        except CheckoutError as exc:
            logger.error("cancel_order_failed", order_id=order_id, error=repr(exc))
            return
        if cancelled:
            self._transition(order_id, OrderStatus.CANCELLED)

    async def checkout(
        self,
        amount: Any,
        currency: Any = "USD",
        payer_email: Optional[str] = None,
        description: Optional[str] = None,
        *,
        session_key: Optional[str] = None,
    ) -> str:
        """
        Create an order and run it through the risk gate in one guarded flow.

        A second call for the same ``session_key`` while the first is still
        running fails with ``ALREADY_PROCESSING``.
        """
        if session_key is None:
            session_key = session_digest(
                {
                    "amount": amount,
                    "currency": currency,
                    "email": payer_email,
                    "description": description,
                }
            )
        async with self.guard.claim(("create", session_key)):
            order_id = await self.create_order(amount, currency, payer_email, description)
            return await self.assess_and_finalize_creation(order_id)

    async def capture_order(self, order_id: str) -> Capture:
        validate_order_id(order_id)
        async with self.guard.claim(("capture", order_id), order_id=order_id):
            status = self.status(order_id)
            if status is OrderStatus.CAPTURED:
                raise OrderError(
                    OrderErrorKind.ALREADY_CAPTURED,
                    f"Order {order_id} was already captured",
                    order_id=order_id,
                )
            if status is not OrderStatus.APPROVED:
                raise OrderError(
                    OrderErrorKind.NOT_APPROVED,
                    f"Order {order_id} has not passed risk assessment",
                    order_id=order_id,
                )

            logger.info("capture_order", order_id=order_id)
            try:
                body = await self.client.capture_order(order_id)
            except OrderError as exc:
                if exc.kind is OrderErrorKind.ALREADY_CAPTURED:
                    self._transition(order_id, OrderStatus.CAPTURED)
                else:
                    self._fail(order_id)
                raise
            except CheckoutError as exc:
                # timeouts may have captured at PayPal; the order stays APPROVED
                # so a retry with the same PayPal-Request-Id can settle it
                if not exc.retryable:
                    self._fail(order_id)
                raise

            capture = self._completed_capture(order_id, body)
            self._transition(order_id, OrderStatus.CAPTURED)
            logger.info(
                "order_captured",
                order_id=order_id,
                capture_id=capture.capture_id,
                amount=capture.amount,
                currency=capture.currency,
            )
            return capture

    def _completed_capture(self, order_id: str, body: Dict[str, Any]) -> Capture:
        record = first_capture(body)
        status = record.get("status") if record else None
        if not record or status != CAPTURE_COMPLETED or not record.get("id"):
            logger.error("capture_incomplete", order_id=order_id, capture_status=status)
            self._fail(order_id)
            raise OrderError(
                OrderErrorKind.CAPTURE_INCOMPLETE,
                f"Payment capture was not completed (status={status})",
                order_id=order_id,
            )

        view = self._orders[order_id]
        amount = record.get("amount") or {}
        return Capture(
            capture_id=record["id"],
            order_id=body.get("id") or order_id,
            status=status,
            amount=amount.get("value") or view.amount,
            currency=amount.get("currency_code") or view.currency,
            payer_email=(body.get("payer") or {}).get("email_address"),
        )
