"""
Pytest configuration and fixtures.

``FakePayPal`` stands in for the PayPal REST API behind an
``httpx.MockTransport`` and records every request it receives.
"""
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from paypal_checkout.config import Settings
from paypal_checkout.orchestrator import OrderLifecycleOrchestrator
from paypal_checkout.paypal_client import PayPalClient
from paypal_checkout.risk import ThresholdRiskGate
from paypal_checkout.token_cache import TokenCache
from paypal_checkout.webhooks import WebhookVerifier

ORDER_ID = "5O190127TN364715T"
CAPTURE_ID = "3C679366HH908993F"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePayPal:
    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.issued_tokens = 0
        self.expires_in = 32400
        self.token_http_status = 200
        self.token_delay = 0.0
        self.order_ids: List[str] = []
        self.create_http_status = 201
        self.create_delay = 0.0
        self.capture_http_status = 201
        self.capture_status = "COMPLETED"
        self.capture_body: Optional[Dict[str, Any]] = None
        self.capture_delay = 0.0
        self.cancel_http_status = 204
        self.verify_http_status = 200
        self.verification_status = "SUCCESS"
        self.reject_tokens = set()
        self.failures: Dict[tuple, type] = {}

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def fail(self, method: str, path: str, exc_type: type) -> None:
        self.failures[(method, path)] = exc_type

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        exc_type = self.failures.get((method, path))
        if exc_type is not None:
            raise exc_type("simulated failure", request=request)

        if path == "/v1/oauth2/token":
            await asyncio.sleep(self.token_delay)
            if self.token_http_status != 200:
                return httpx.Response(self.token_http_status, json={"error": "invalid_client"})
            self.issued_tokens += 1
            return httpx.Response(
                200,
                json={
                    "access_token": f"A21AA-token-{self.issued_tokens}",
                    "token_type": "Bearer",
                    "expires_in": self.expires_in,
                },
            )

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token in self.reject_tokens:
            return httpx.Response(401, json={"error": "invalid_token"})

        if method == "POST" and path == "/v2/checkout/orders":
            await asyncio.sleep(self.create_delay)
            if self.create_http_status >= 400:
                return httpx.Response(
                    self.create_http_status,
                    json={"name": "INVALID_REQUEST", "debug_id": "f00"},
                )
            order_id = self.order_ids.pop(0) if self.order_ids else ORDER_ID
            return httpx.Response(
                self.create_http_status, json={"id": order_id, "status": "CREATED"}
            )

        if method == "POST" and path.endswith("/capture"):
            await asyncio.sleep(self.capture_delay)
            order_id = path.split("/")[-2]
            body = self.capture_body or capture_response(order_id, self.capture_status)
            return httpx.Response(self.capture_http_status, json=body)

        if method == "PATCH" and path.startswith("/v2/checkout/orders/"):
            return httpx.Response(self.cancel_http_status)

        if path == "/v1/notifications/verify-webhook-signature":
            if self.verify_http_status != 200:
                return httpx.Response(self.verify_http_status, json={"name": "INTERNAL_ERROR"})
            return httpx.Response(200, json={"verification_status": self.verification_status})

        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})


def capture_response(order_id: str, status: str = "COMPLETED") -> Dict[str, Any]:
    return {
        "id": order_id,
        "status": "COMPLETED",
        "payer": {"email_address": "buyer@example.com"},
        "purchase_units": [
            {
                "payments": {
                    "captures": [
                        {
                            "id": CAPTURE_ID,
                            "status": status,
                            "amount": {"currency_code": "USD", "value": "10.00"},
                        }
                    ]
                }
            }
        ],
    }


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content)


@pytest.fixture
def paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        client_id="client-id",
        client_secret="client-secret",
        webhook_id="WH-1234",
        log_json=False,
    )


@pytest_asyncio.fixture
async def http(paypal, settings):
    async with httpx.AsyncClient(
        base_url=settings.api_base, transport=httpx.MockTransport(paypal.handler)
    ) as client:
        yield client


@pytest.fixture
def token_cache(settings, http, clock) -> TokenCache:
    return TokenCache(settings, http, clock=clock)


@pytest.fixture
def client(http, token_cache) -> PayPalClient:
    return PayPalClient(http, token_cache)


@pytest.fixture
def orchestrator(client) -> OrderLifecycleOrchestrator:
    return OrderLifecycleOrchestrator(client, ThresholdRiskGate())


@pytest.fixture
def verifier(client) -> WebhookVerifier:
    return WebhookVerifier(client)
