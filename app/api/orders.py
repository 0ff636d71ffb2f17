"""Order API endpoints.

Provides:
- GET /orders - orders of the caller, or guest orders for the order cookie
- POST /orders/{id}/delivery - schedule delivery of an arrived order
"""

from fastapi import APIRouter, BackgroundTasks, Request

from app.api.dependencies import (
    IdentityDep,
    PrincipalDep,
    SessionDep,
    read_order_token,
    schedule_outbox_drain,
)
from app.api.schemas import (
    DeliveryRequestBody,
    DeliverySchema,
    ErrorResponse,
    OrderLineSchema,
    OrderResponse,
    OrdersListResponse,
)
from app.application.order_service import get_order_service
from app.domain.entities import Order
from app.domain.value_objects import DeliveryRequest

router = APIRouter(prefix="/orders", tags=["Orders"])


# ============================================================================
# Converters
# ============================================================================


def order_to_response(order: Order) -> OrderResponse:
    """Convert an Order record to OrderResponse."""
    delivery = None
    if order.delivery_requested_at is not None:
        delivery = DeliverySchema(
            requested_at=order.delivery_requested_at,
            scheduled_at=order.delivery_scheduled_at,
            address=order.delivery_address,
            recipient_name=order.delivery_recipient_name,
            phone=order.delivery_phone,
        )

    return OrderResponse(
        id=order.id,
        public_number=order.public_number,
        status=order.status,
        shipping_status=order.shipping_status,
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        total=order.total,
        promo_code=order.promo_code,
        full_name=order.full_name,
        email=order.email,
        phone=order.phone,
        address=order.address,
        created_at=order.created_at,
        paid_at=order.paid_at,
        delivery=delivery,
        lines=[
            OrderLineSchema(
                product_id=line.product_id,
                variant_id=line.variant_id,
                size_label=line.size_label,
                quantity=line.quantity,
                price=line.price,
                name=line.name,
                image=line.image,
            )
            for line in order.lines
        ],
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=OrdersListResponse, summary="List orders")
async def list_orders(request: Request, identity: IdentityDep, session: SessionDep) -> OrdersListResponse:
    """List the caller's orders, newest first."""
    orders = await get_order_service(session).list_orders(identity, read_order_token(request))
    return OrdersListResponse(
        orders=[order_to_response(order) for order in orders],
        total=len(orders),
    )


@router.post(
    "/{order_id}/delivery",
    response_model=OrderResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Request delivery",
)
async def request_delivery(
    order_id: int,
    body: DeliveryRequestBody,
    identity: PrincipalDep,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> OrderResponse:
    """Schedule delivery of a paid order whose shipment has arrived."""
    delivery = DeliveryRequest(
        scheduled_at=body.scheduled_at,
        address=body.address,
        recipient_name=body.recipient_name,
        phone=body.phone,
    )
    order = await get_order_service(session).request_delivery(identity, order_id, delivery)
    schedule_outbox_drain(background_tasks)
    return order_to_response(order)
