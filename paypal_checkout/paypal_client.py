"""
Async client for the PayPal REST endpoints used during checkout.

Transport failures are translated here into ``ProcessorUnavailableError`` and
non-success answers into the matching ``OrderError`` / ``VerificationError``
kinds, so raw httpx exceptions never leave this module.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from paypal_checkout.config import Settings
from paypal_checkout.errors import (
    OrderError,
    OrderErrorKind,
    ProcessorUnavailableError,
    TransportErrorKind,
    VerificationError,
    VerificationErrorKind,
)

logger = structlog.get_logger(__name__)

TOKEN_PATH = "/v1/oauth2/token"
ORDERS_PATH = "/v2/checkout/orders"
VERIFY_WEBHOOK_PATH = "/v1/notifications/verify-webhook-signature"

ALREADY_CAPTURED_ISSUE = "ORDER_ALREADY_CAPTURED"


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.api_base,
        timeout=settings.http_timeout_seconds,
        headers={"Accept": "application/json"},
    )


async def send(
    http: httpx.AsyncClient,
    method: str,
    path: str,
    **kwargs: Any,
) -> httpx.Response:
    try:
        return await http.request(method, path, **kwargs)
    except httpx.TimeoutException as exc:
        logger.warning("paypal_request_timeout", method=method, path=path)
        raise ProcessorUnavailableError(
            TransportErrorKind.TIMEOUT, f"{method} {path} timed out"
        ) from exc
    except httpx.TransportError as exc:
        logger.warning(
            "paypal_request_failed", method=method, path=path, error=type(exc).__name__
        )
        raise ProcessorUnavailableError(
            TransportErrorKind.NETWORK, f"{method} {path} failed: {type(exc).__name__}"
        ) from exc


def json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _issues(body: Dict[str, Any]) -> set:
    return {
        detail.get("issue")
        for detail in body.get("details") or []
        if isinstance(detail, dict)
    }


def first_capture(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the first capture record of the first purchase unit, if any."""
    units = body.get("purchase_units") or []
    if not units or not isinstance(units[0], dict):
        return None
    captures = (units[0].get("payments") or {}).get("captures") or []
    if not captures or not isinstance(captures[0], dict):
        return None
    return captures[0]


class PayPalClient:
    """
    Authenticated calls into the Orders v2 and Notifications APIs.

    Tokens come from the shared ``TokenCache``; a 401 answer invalidates the
    token that was used and the call is retried once with a fresh one.
    """

    def __init__(self, http: httpx.AsyncClient, token_cache) -> None:
        self.http = http
        self.token_cache = token_cache

    async def _authorized(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        token = await self.token_cache.get_token()
        headers["Authorization"] = f"Bearer {token.token}"
        response = await send(self.http, method, path, headers=headers, **kwargs)
        if response.status_code != 401:
            return response

        logger.info("paypal_token_rejected", path=path)
        self.token_cache.invalidate(token)
        token = await self.token_cache.get_token()
        headers["Authorization"] = f"Bearer {token.token}"
        return await send(self.http, method, path, headers=headers, **kwargs)

    async def create_order(
        self,
        amount: str,
        currency: str,
        payer_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        body: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {"currency_code": currency, "value": amount},
                    "description": description or f"Payment from {payer_email or 'customer'}",
                }
            ],
        }
        if payer_email:
            body["payer"] = {"email_address": payer_email}

        response = await self._authorized("POST", ORDERS_PATH, json=body)
        payload = json_body(response)
        if not response.is_success or not payload.get("id"):
            logger.error(
                "paypal_create_order_rejected",
                http_status=response.status_code,
                debug_id=payload.get("debug_id"),
            )
            raise OrderError(
                OrderErrorKind.CREATE_REJECTED,
                f"Failed to create order: {response.status_code}",
                http_status=response.status_code,
            )
        return payload["id"]

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        """
        Capture ``order_id`` and return the processor's order body.

        A duplicate-capture answer is returned as-is only when it carries a
        COMPLETED capture record; otherwise it raises ``ALREADY_CAPTURED``.
        """
        response = await self._authorized(
            "POST",
            f"{ORDERS_PATH}/{order_id}/capture",
            headers={
                "Content-Type": "application/json",
                "PayPal-Request-Id": f"capture-{order_id}",
            },
        )
        payload = json_body(response)
        if response.is_success:
            return payload

        if ALREADY_CAPTURED_ISSUE in _issues(payload):
            capture = first_capture(payload)
            if capture and capture.get("status") == "COMPLETED":
                return payload
            raise OrderError(
                OrderErrorKind.ALREADY_CAPTURED,
                f"Order {order_id} was already captured",
                order_id=order_id,
                http_status=response.status_code,
            )

        logger.error(
            "paypal_capture_rejected",
            order_id=order_id,
            http_status=response.status_code,
            debug_id=payload.get("debug_id"),
        )
        raise OrderError(
            OrderErrorKind.CAPTURE_REJECTED,
            f"Failed to capture order: {response.status_code}",
            order_id=order_id,
            http_status=response.status_code,
        )

    async def cancel_order(self, order_id: str) -> bool:
        response = await self._authorized(
            "PATCH",
            f"{ORDERS_PATH}/{order_id}",
            json=[{"op": "replace", "path": "/status", "value": "CANCELLED"}],
        )
        if not response.is_success:
            logger.warning(
                "paypal_cancel_rejected", order_id=order_id, http_status=response.status_code
            )
            return False
        return True

    async def verify_webhook_signature(self, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._authorized("POST", VERIFY_WEBHOOK_PATH, json=body)
        if not response.is_success:
            raise VerificationError(
                VerificationErrorKind.PROVIDER_REJECTED,
                f"Webhook verification failed: {response.status_code}",
                http_status=response.status_code,
            )
        return json_body(response)
