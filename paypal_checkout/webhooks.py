"""
Webhook signature verification and trusted-event dispatch.

Events are only handed to business handlers after PayPal's
verify-webhook-signature endpoint has answered ``SUCCESS`` for them.
"""
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from paypal_checkout.errors import (
    CheckoutError,
    VerificationError,
    VerificationErrorKind,
)
from paypal_checkout.models import WebhookEvent
from paypal_checkout.paypal_client import PayPalClient

logger = structlog.get_logger(__name__)

VERIFICATION_SUCCESS = "SUCCESS"


@dataclass(frozen=True)
class WebhookTransmission:
    transmission_id: Optional[str]
    transmission_time: Optional[str]
    cert_url: Optional[str]
    auth_algo: Optional[str]
    transmission_sig: Optional[str]

    HEADERS = {
        "transmission_id": "paypal-transmission-id",
        "transmission_time": "paypal-transmission-time",
        "cert_url": "paypal-cert-url",
        "auth_algo": "paypal-auth-algo",
        "transmission_sig": "paypal-transmission-sig",
    }

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "WebhookTransmission":
        # starlette Headers are case-insensitive, plain dicts are not
        lowered = {key.lower(): value for key, value in headers.items()}
        return cls(**{name: lowered.get(header) for name, header in cls.HEADERS.items()})

    def missing(self) -> list:
        return [self.HEADERS[f.name] for f in fields(self) if not getattr(self, f.name)]


class WebhookVerifier:
    def __init__(self, client: PayPalClient) -> None:
        self.client = client

    async def verify(
        self,
        webhook_id: str,
        event: Dict[str, Any],
        *,
        cert_url: Optional[str],
        transmission_id: Optional[str],
        transmission_time: Optional[str],
        transmission_sig: Optional[str],
        auth_algo: Optional[str],
    ) -> bool:
        """
        Ask PayPal whether ``event`` was really sent by it.

        Raises ``VerificationError`` before any network call when metadata is
        missing. Every other failure, including transport errors, is logged
        and reported as ``False``.
        """
        transmission = WebhookTransmission(
            transmission_id=transmission_id,
            transmission_time=transmission_time,
            cert_url=cert_url,
            auth_algo=auth_algo,
            transmission_sig=transmission_sig,
        )
        missing = transmission.missing()
        if missing:
            logger.warning("webhook_headers_missing", missing=missing)
            raise VerificationError(
                VerificationErrorKind.MISSING_HEADERS,
                f"Missing webhook headers: {', '.join(missing)}",
            )
        if not webhook_id:
            raise VerificationError(
                VerificationErrorKind.MISSING_WEBHOOK_ID, "PAYPAL_WEBHOOK_ID is not configured"
            )

        body = {
            "auth_algo": auth_algo,
            "cert_url": cert_url,
            "transmission_id": transmission_id,
            "transmission_sig": transmission_sig,
            "transmission_time": transmission_time,
            "webhook_id": webhook_id,
            "webhook_event": event,
        }
        try:
            result = await self.client.verify_webhook_signature(body)
        except CheckoutError as exc:
            logger.error(
                "webhook_verification_failed",
                transmission_id=transmission_id,
                error=repr(exc),
            )
            return False

        status = result.get("verification_status")
        if status != VERIFICATION_SUCCESS:
            logger.warning(
                "webhook_signature_invalid",
                transmission_id=transmission_id,
                verification_status=status,
            )
            return False
        return True

    async def verify_transmission(
        self,
        webhook_id: str,
        event: Dict[str, Any],
        transmission: WebhookTransmission,
    ) -> bool:
        return await self.verify(
            webhook_id,
            event,
            cert_url=transmission.cert_url,
            transmission_id=transmission.transmission_id,
            transmission_time=transmission.transmission_time,
            transmission_sig=transmission.transmission_sig,
            auth_algo=transmission.auth_algo,
        )


EventHandler = Callable[[WebhookEvent], Awaitable[None]]


async def _log_order_approved(event: WebhookEvent) -> None:
    logger.info("webhook_order_approved", order_id=event.resource.get("id"))


async def _log_capture_completed(event: WebhookEvent) -> None:
    capture = event.resource
    related = (capture.get("supplementary_data") or {}).get("related_ids") or {}
    amount = capture.get("amount") or {}
    logger.info(
        "webhook_payment_captured",
        capture_id=capture.get("id"),
        order_id=related.get("order_id"),
        amount=amount.get("value"),
        currency=amount.get("currency_code"),
        status=capture.get("status"),
    )


async def _log_capture_refunded(event: WebhookEvent) -> None:
    logger.info("webhook_payment_refunded", resource_id=event.resource.get("id"))


async def _log_capture_reversed(event: WebhookEvent) -> None:
    logger.info("webhook_payment_reversed", resource_id=event.resource.get("id"))


class WebhookDispatcher:
    """
    Routes trusted events to handlers registered per ``event_type``.

    The defaults only log; applications replace them with ``register``.
    """

    def __init__(self) -> None:
        self.handlers: Dict[str, EventHandler] = {
            "CHECKOUT.ORDER.APPROVED": _log_order_approved,
            "PAYMENT.CAPTURE.COMPLETED": _log_capture_completed,
            "PAYMENT.CAPTURE.REFUNDED": _log_capture_refunded,
            "PAYMENT.CAPTURE.REVERSED": _log_capture_reversed,
        }

    def register(self, event_type: str, handler: EventHandler) -> None:
        self.handlers[event_type] = handler

    async def dispatch(self, event: WebhookEvent) -> bool:
        handler = self.handlers.get(event.event_type)
        if handler is None:
            logger.info("webhook_unhandled_event", event_type=event.event_type)
            return False
        await handler(event)
        return True
