import json
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from paypal_checkout.config import Settings
from paypal_checkout.errors import CheckoutError
from paypal_checkout.logging_config import configure_logging
from paypal_checkout.models import WebhookEvent
from paypal_checkout.orchestrator import OrderLifecycleOrchestrator
from paypal_checkout.paypal_client import PayPalClient, build_http_client
from paypal_checkout.risk import RiskGate, ThresholdRiskGate
from paypal_checkout.routes import router
from paypal_checkout.token_cache import TokenCache
from paypal_checkout.webhooks import WebhookDispatcher, WebhookTransmission, WebhookVerifier

logger = structlog.get_logger(__name__)


def _validation_message(exc) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    return f"{field}: {message}" if field else message


def create_app(
    settings: Optional[Settings] = None,
    *,
    http: Optional[httpx.AsyncClient] = None,
    risk_gate: Optional[RiskGate] = None,
    dispatcher: Optional[WebhookDispatcher] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    risk_gate = risk_gate or ThresholdRiskGate(
        settings.risk_auto_approve_threshold, settings.risk_review_ceiling
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        client_http = http or build_http_client(settings)
        client = PayPalClient(client_http, TokenCache(settings, client_http))
        app.state.orchestrator = OrderLifecycleOrchestrator(client, risk_gate)
        app.state.verifier = WebhookVerifier(client)
        logger.info("checkout_service_started", api_base=settings.api_base)
        yield
        await client_http.aclose()

    app = FastAPI(title="PayPal Checkout Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.dispatcher = dispatcher or WebhookDispatcher()

    app.include_router(router)

    @app.exception_handler(CheckoutError)
    async def checkout_error_handler(request: Request, exc: CheckoutError):
        logger.warning(
            "checkout_request_failed",
            path=request.url.path,
            error=type(exc).__name__,
            kind=exc.kind.value,
            order_id=exc.order_id,
            http_status=exc.http_status,
            detail=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": exc.public_message,
                "retryable": exc.retryable,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": _validation_message(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "payment processing failed"},
        )

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/api/paypal/webhook")
    def paypal_webhook_status():
        return {"message": "PayPal webhook endpoint is active"}

    @app.post("/api/paypal/webhook")
    async def paypal_webhook(request: Request):
        transmission = WebhookTransmission.from_headers(request.headers)
        payload = await request.body()

        try:
            raw_event = json.loads(payload)
            event = WebhookEvent.model_validate(raw_event)
        except (ValueError, ValidationError):
            raise HTTPException(status_code=400, detail="Invalid payload")

        logger.info(
            "webhook_received",
            event_type=event.event_type,
            resource_id=event.resource.get("id"),
            transmission_id=transmission.transmission_id,
        )

        trusted = await app.state.verifier.verify_transmission(
            settings.webhook_id, raw_event, transmission
        )
        if not trusted:
            logger.error("webhook_rejected", transmission_id=transmission.transmission_id)
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

        await app.state.dispatcher.dispatch(event)
        return {"success": True}

    return app


app = create_app()
