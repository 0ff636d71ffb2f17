"""Internal operations, protected by the internal API key.

Provides:
- POST /internal/orders/{id}/shipping-status - advance shipping of a paid order
- POST /internal/outbox/drain - run one outbox relay pass
"""

from fastapi import APIRouter

from app.api.dependencies import SessionDep
from app.api.orders import order_to_response
from app.api.schemas import DrainResponse, ErrorResponse, OrderResponse, ShippingStatusRequest
from app.application.order_service import get_order_service
from app.application.outbox_service import OutboxRelay

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.post(
    "/orders/{order_id}/shipping-status",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Set shipping status",
)
async def set_shipping_status(
    order_id: int,
    body: ShippingStatusRequest,
    session: SessionDep,
) -> OrderResponse:
    order = await get_order_service(session).set_shipping_status(order_id, body.status)
    return order_to_response(order)


@router.post("/outbox/drain", response_model=DrainResponse, summary="Drain outbox")
async def drain(session: SessionDep) -> DrainResponse:
    """Deliver pending outbox events synchronously."""
    result = await OutboxRelay(session).drain_once()
    return DrainResponse(delivered=result.delivered, retried=result.retried, failed=result.failed)
