"""Cart API endpoints.

Provides:
- GET /cart - current cart, created on first touch
- POST /cart - add a line or increase the matching one
- PATCH /cart - change quantity or postponed flag of a line
- DELETE /cart - remove several lines
- DELETE /cart/lines/{line_id} - remove one line
"""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query

from app.api.dependencies import IdentityDep, SessionDep, schedule_outbox_drain
from app.api.schemas import (
    CartLineAddRequest,
    CartLineSchema,
    CartLineUpdateRequest,
    CartResponse,
    ErrorResponse,
)
from app.application.cart_service import CartLedger
from app.domain.entities import Cart, CartLine
from app.domain.value_objects import LineSpec

router = APIRouter(prefix="/cart", tags=["Cart"])


# ============================================================================
# Converters
# ============================================================================


def cart_to_response(cart: Cart, lines: list[CartLine] | None = None) -> CartResponse:
    """Convert a cart and its lines to CartResponse."""
    lines = cart.lines if lines is None else lines
    billable = [line for line in lines if not line.postponed]
    return CartResponse(
        cart_id=cart.id,
        lines=[
            CartLineSchema(
                id=line.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                size_label=line.size_label,
                quantity=line.quantity,
                price=line.price,
                name=line.name,
                image=line.image,
                postponed=line.postponed,
                line_total=line.line_total,
            )
            for line in lines
        ],
        total=sum(line.line_total for line in billable),
        items_count=sum(line.quantity for line in billable),
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", response_model=CartResponse, summary="Get cart")
async def get_cart(identity: IdentityDep, session: SessionDep) -> CartResponse:
    """Get the caller's cart, creating it on first touch."""
    cart = await CartLedger(session).get_or_create(identity)
    return cart_to_response(cart)


@router.post(
    "",
    response_model=CartResponse,
    responses={422: {"model": ErrorResponse}},
    summary="Add cart line",
)
async def add_line(
    body: CartLineAddRequest,
    identity: IdentityDep,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> CartResponse:
    """Add a line, merging with an existing line of the same identity."""
    spec = LineSpec(
        product_id=body.product_id,
        variant_id=body.variant_id,
        size_label=body.size_label or "",
        quantity=body.quantity,
        name=body.name,
        price=body.price,
        image=body.image,
        postponed=body.postponed,
    )
    ledger = CartLedger(session)
    cart = await ledger.get_or_create(identity)
    lines = await ledger.upsert_line(cart, spec)
    schedule_outbox_drain(background_tasks)
    return cart_to_response(cart, lines)


@router.patch(
    "",
    response_model=CartResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Update cart line",
)
async def update_line(
    body: CartLineUpdateRequest,
    identity: IdentityDep,
    session: SessionDep,
) -> CartResponse:
    """Change the quantity or postponed flag of a line."""
    ledger = CartLedger(session)
    cart = await ledger.get_or_create(identity)
    lines = await ledger.set_quantity_or_postponed(
        cart, body.line_id, quantity=body.quantity, postponed=body.postponed
    )
    return cart_to_response(cart, lines)


@router.delete(
    "",
    response_model=CartResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Remove cart lines",
)
async def remove_lines(
    identity: IdentityDep,
    session: SessionDep,
    line_ids: Annotated[list[int], Query(alias="line_id", min_length=1)],
) -> CartResponse:
    """Remove lines by id; ids of other carts reject the request."""
    ledger = CartLedger(session)
    cart = await ledger.get_or_create(identity)
    lines = await ledger.remove_lines(cart, line_ids)
    return cart_to_response(cart, lines)


@router.delete(
    "/lines/{line_id}",
    response_model=CartResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Remove cart line",
)
async def remove_line(line_id: int, identity: IdentityDep, session: SessionDep) -> CartResponse:
    ledger = CartLedger(session)
    cart = await ledger.get_or_create(identity)
    lines = await ledger.remove_line(cart, line_id)
    return cart_to_response(cart, lines)
