"""Checkout API endpoints.

Provides:
- POST /checkout - snapshot the cart into a PENDING order
- POST /checkout/confirm - confirm payment, idempotently
"""

from fastapi import APIRouter, BackgroundTasks, Request, Response, status

from app.api.dependencies import (
    IdentityDep,
    SessionDep,
    read_order_token,
    schedule_outbox_drain,
    set_order_cookie,
)
from app.api.schemas import (
    CheckoutRequest,
    CheckoutResponse,
    ConfirmRequest,
    ConfirmResponse,
    ErrorResponse,
)
from app.application.order_service import OrderStateMachine
from app.domain.value_objects import ContactInfo, OrderItemSpec

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Create order",
)
async def create_order(
    body: CheckoutRequest,
    request: Request,
    response: Response,
    identity: IdentityDep,
    session: SessionDep,
) -> CheckoutResponse:
    """Create a PENDING order from the cart or from explicit items.

    Guest callers receive the order bearer as the ``order_token`` cookie
    so the order can be bound to their account after login.
    """
    contact = ContactInfo(
        full_name=body.full_name,
        email=body.email,
        phone=body.phone,
        address=body.address,
        comment=body.comment,
    )
    items = [OrderItemSpec(**item.model_dump()) for item in body.items] if body.items else None

    created = await OrderStateMachine(session).create(
        identity,
        contact,
        items=items,
        promo_code=body.promo_code,
        order_token=read_order_token(request),
    )
    if not identity.is_authenticated:
        set_order_cookie(response, created.token)

    return CheckoutResponse(
        order_id=created.order_id,
        token=created.token,
        subtotal=created.subtotal,
        discount_amount=created.discount_amount,
        total=created.total,
    )


@router.post(
    "/confirm",
    response_model=ConfirmResponse,
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Confirm payment",
)
async def confirm_order(
    request: Request,
    identity: IdentityDep,
    session: SessionDep,
    background_tasks: BackgroundTasks,
    body: ConfirmRequest | None = None,
) -> ConfirmResponse:
    """Confirm payment of the caller's order.

    The order is chosen by bearer token (body, else the ``order_token``
    cookie for guests), then by order id, then by the caller's most recent pending
    order. Repeated confirmations return the same payload.
    """
    body = body or ConfirmRequest()
    token = body.token
    if token is None and not identity.is_authenticated:
        token = read_order_token(request)
    confirmation = await OrderStateMachine(session).confirm(
        identity, order_id=body.order_id, token=token
    )
    schedule_outbox_drain(background_tasks)
    return ConfirmResponse(**confirmation.to_payload())
