from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from paypal_checkout.auth import verify_token
from paypal_checkout.models import CaptureOrderRequest, CreateOrderRequest
from paypal_checkout.orchestrator import OrderLifecycleOrchestrator

router = APIRouter(prefix="/api/paypal")


def get_orchestrator(request: Request) -> OrderLifecycleOrchestrator:
    return request.app.state.orchestrator


@router.post("/create-order")
async def create_order_api(
    request: CreateOrderRequest,
    x_checkout_session: Optional[str] = Header(None),
    orchestrator: OrderLifecycleOrchestrator = Depends(get_orchestrator),
    auth=Depends(verify_token),
):
    order_id = await orchestrator.checkout(
        request.amount,
        request.currency,
        request.email,
        request.description,
        session_key=x_checkout_session,
    )
    return {"success": True, "orderId": order_id}


@router.post("/capture-order")
async def capture_order_api(
    request: CaptureOrderRequest,
    orchestrator: OrderLifecycleOrchestrator = Depends(get_orchestrator),
    auth=Depends(verify_token),
):
    capture = await orchestrator.capture_order(request.order_id)
    return capture.as_response()
