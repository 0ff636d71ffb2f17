"""Order application service.

Orchestrates the order lifecycle:
- Snapshotting a cart (or explicit lines) into a PENDING order
- Idempotent payment confirmation
- Sibling order cancellation and promo redemption after payment
- Purchased line cleanup in the cart
- Shipping status and delivery scheduling on paid orders
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.cart_service import CartLedger
from app.application.identity_service import is_well_formed_token
from app.application.promo_service import PromoService, normalize_code
from app.domain.entities import Order
from app.domain.events import DeliveryRequested, OrderConfirmed, OrderPurchased
from app.domain.exceptions import (
    AuthenticationRequiredError,
    DeliveryNotAllowedError,
    EmptyOrderError,
    InvalidStateTransitionError,
    OrderAccessDeniedError,
    OrderNotFoundError,
    PromoRejectedError,
)
from app.domain.state_machines import (
    OrderStatus,
    ShippingStatus,
    validate_order_transition,
    validate_shipping_transition,
)
from app.domain.value_objects import ContactInfo, DeliveryRequest, Identity, OrderItemSpec
from app.infrastructure.config import settings
from app.infrastructure.models import OrderModel
from app.infrastructure.repositories import OrderRepository, OutboxRepository
from app.infrastructure.repositories.orders import order_from_model
from app.infrastructure.security import new_bearer_token

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class CreatedOrder:
    """Result of a checkout."""

    order_id: int
    token: str
    subtotal: int
    discount_amount: int
    total: int


@dataclass
class Confirmation:
    """Result of confirming payment of an order.

    Repeated confirmations of the same order return equal payloads apart
    from ``already_confirmed``.
    """

    order_id: int
    public_number: str
    status: OrderStatus
    already_confirmed: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "public_number": self.public_number,
            "status": self.status.value,
        }


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStateMachine:
    """Application service for orders.

    Example usage:
        orders = OrderStateMachine(session)
        created = await orders.create(identity, contact)
        confirmation = await orders.confirm(identity, token=created.token)
    """

    def __init__(
        self,
        session: AsyncSession,
        ledger: CartLedger | None = None,
        promos: PromoService | None = None,
        clock: Callable[[], datetime] = utcnow,
        fallback_window: timedelta | None = None,
    ) -> None:
        """Initialize service.

        Args:
            session: Async SQLAlchemy session.
            ledger: Cart ledger used for post-payment cleanup.
            promos: Promo service used for validation and redemption.
            clock: Source of the current time.
            fallback_window: How far back an unhinted confirmation looks.
        """
        self.session = session
        self.ledger = ledger or CartLedger(session)
        self.promos = promos or PromoService(session, clock=clock)
        self.clock = clock
        self.fallback_window = fallback_window or timedelta(
            minutes=settings.confirm_fallback_window_minutes
        )
        self.orders = OrderRepository(session)
        self.outbox = OutboxRepository(session)

    # ========================================================================
    # Checkout
    # ========================================================================

    async def create(
        self,
        identity: Identity,
        contact: ContactInfo,
        items: Sequence[OrderItemSpec] | None = None,
        promo_code: str | None = None,
        order_token: str | None = None,
    ) -> CreatedOrder:
        """Create a PENDING order.

        Lines come from ``items`` when given, else from the caller's
        non-postponed cart lines. The cart itself is not modified. Explicit
        lines keep their cart line reference only when that line is in the
        caller's cart.

        Args:
            identity: Resolved caller identity.
            contact: Recipient contact snapshot.
            items: Explicit lines overriding the cart.
            promo_code: Promo code as entered.
            order_token: Guest order bearer to reuse, if the caller holds one.

        Returns:
            The order id, its bearer token and totals.

        Raises:
            EmptyOrderError: If there is nothing to buy.
            PromoRejectedError: If the promo cannot be applied.
        """
        cart = await self.ledger.find(identity)
        if items:
            own_line_ids = {line.id for line in cart.lines} if cart is not None else set()
            foreign = [
                item.cart_line_id
                for item in items
                if item.cart_line_id is not None and item.cart_line_id not in own_line_ids
            ]
            if foreign:
                logger.warning(
                    "Checkout dropped cart line references outside the caller's cart",
                    cart_id=cart.id if cart is not None else None,
                    cart_line_ids=foreign,
                )
            lines = [
                {
                    "product_id": item.product_id,
                    "variant_id": item.variant_id,
                    "size_label": item.size_label,
                    "quantity": item.quantity,
                    "price": item.price,
                    "name": item.name,
                    "image": item.image,
                    "cart_line_id": item.cart_line_id if item.cart_line_id in own_line_ids else None,
                }
                for item in items
            ]
        else:
            billable = cart.billable_lines if cart is not None else []
            lines = [
                {
                    "product_id": line.product_id,
                    "variant_id": line.variant_id,
                    "size_label": line.size_label,
                    "quantity": line.quantity,
                    "price": line.price,
                    "name": line.name,
                    "image": line.image,
                    "cart_line_id": line.id,
                }
                for line in billable
            ]
        if not lines:
            raise EmptyOrderError()

        subtotal = sum(line["price"] * line["quantity"] for line in lines)

        promo_values: dict[str, Any] = {}
        discount = 0
        code = normalize_code(promo_code)
        if code:
            if not identity.is_authenticated:
                raise PromoRejectedError(code, "sign in to use promo codes")
            quote = await self.promos.validate(code, identity.principal_id, subtotal)
            discount = quote.discount
            promo_values = {
                "promo_code": quote.code,
                "promo_discount_type": quote.kind.value,
                "promo_discount_value": quote.value,
            }

        if not identity.is_authenticated and is_well_formed_token(order_token):
            token = order_token
        else:
            token = new_bearer_token()

        row = await self.orders.add(
            {
                "user_id": identity.principal_id,
                "token": token,
                "cart_id": cart.id if cart is not None else None,
                "status": OrderStatus.PENDING.value,
                "full_name": contact.full_name,
                "email": contact.email,
                "phone": contact.phone,
                "address": contact.address,
                "comment": contact.comment,
                "subtotal": subtotal,
                "discount_amount": discount,
                "total": subtotal - discount,
                "created_at": self.clock(),
                **promo_values,
            },
            lines,
        )
        await self.session.commit()

        logger.info(
            "Order created",
            order_id=row.id,
            user_id=identity.principal_id,
            lines=len(lines),
            subtotal=subtotal,
            discount=discount,
            promo_code=promo_values.get("promo_code"),
        )
        return CreatedOrder(
            order_id=row.id,
            token=token,
            subtotal=subtotal,
            discount_amount=discount,
            total=subtotal - discount,
        )

    # ========================================================================
    # Confirmation
    # ========================================================================

    async def confirm(
        self,
        identity: Identity,
        order_id: int | None = None,
        token: str | None = None,
    ) -> Confirmation:
        """Confirm payment of the caller's order.

        The order is resolved by bearer token, then by id, both scoped to
        the caller, then by falling back to the caller's most recent
        PENDING order inside the fallback window. Confirming an order that
        already SUCCEEDED returns the same result without side effects.

        Args:
            identity: Resolved caller identity.
            order_id: Order id hint.
            token: Order bearer hint.

        Returns:
            The confirmation.

        Raises:
            OrderAccessDeniedError: If a hint refers to another principal's order.
            OrderNotFoundError: If nothing resolves.
            InvalidStateTransitionError: If the order was canceled.
        """
        row = await self._resolve_for_confirmation(identity, order_id, token)
        return await self._confirm(row, identity.cart_token)

    async def confirm_by_reference(self, order_id: int, token: str | None = None) -> Confirmation:
        """Confirm payment reported by a trusted payment provider.

        Args:
            order_id: Order id from the provider's metadata.
            token: Order bearer from the provider's metadata, checked when given.

        Raises:
            OrderNotFoundError: If the order does not exist or the token differs.
        """
        row = await self.orders.get(order_id)
        if row is None or (token and row.token != token):
            raise OrderNotFoundError("Order not found")
        return await self._confirm(row, None)

    async def _resolve_for_confirmation(
        self,
        identity: Identity,
        order_id: int | None,
        token: str | None,
    ) -> OrderModel:
        principal_id = identity.principal_id

        if token:
            row = await self.orders.find_by_token(token, principal_id)
            if row is not None:
                return row
            if await self.orders.exists_with_token(token):
                logger.warning("Confirmation token belongs to another owner", user_id=principal_id)
                raise OrderAccessDeniedError()

        if order_id is not None:
            if principal_id is not None:
                row = await self.orders.find_by_id(order_id, principal_id)
                if row is not None:
                    return row
            if await self.orders.exists_with_id(order_id):
                logger.warning(
                    "Confirmation order id belongs to another owner",
                    order_id=order_id,
                    user_id=principal_id,
                )
                raise OrderAccessDeniedError()

        if principal_id is not None:
            since = self.clock() - self.fallback_window
            row = await self.orders.find_recent_pending(principal_id, since)
            if row is not None:
                logger.warning(
                    "Confirmation resolved by recency fallback",
                    order_id=row.id,
                    user_id=principal_id,
                    had_token=bool(token),
                    had_order_id=order_id is not None,
                )
                return row

        raise OrderNotFoundError()

    async def _confirm(self, row: OrderModel, cart_token: str | None) -> Confirmation:
        order = order_from_model(row)
        should_notify = order.status != OrderStatus.SUCCEEDED

        if should_notify:
            validate_order_transition(str(order.id), order.status, OrderStatus.SUCCEEDED)
            transitioned = await self.orders.mark_succeeded(
                order.id,
                public_number=order.public_number or self._public_number(order.id),
                paid_at=self.clock(),
            )
            if transitioned:
                order = order_from_model(await self.orders.get(order.id))
                await self._stage_confirmation_events(order)
                await self.session.commit()
                logger.info(
                    "Order confirmed",
                    order_id=order.id,
                    public_number=order.public_number,
                    user_id=order.user_id,
                    total=order.total,
                )
            else:
                # A concurrent confirmation won the conditional update
                await self.session.rollback()
                order = order_from_model(await self.orders.get(order.id))
                if order.status != OrderStatus.SUCCEEDED:
                    validate_order_transition(str(order.id), order.status, OrderStatus.SUCCEEDED)
                should_notify = False

        if order.user_id is not None:
            canceled = await self.orders.cancel_pending_siblings(order.user_id, order.id, self.clock())
            await self.session.commit()
            if canceled:
                logger.info("Sibling orders canceled", order_id=order.id, user_id=order.user_id, count=canceled)

        if should_notify and order.status == OrderStatus.SUCCEEDED:
            await self._redeem_promo(order)
            await self._purge_cart(order, cart_token)

        return Confirmation(
            order_id=order.id,
            public_number=order.public_number,
            status=order.status,
            already_confirmed=not should_notify,
        )

    async def _stage_confirmation_events(self, order: Order) -> None:
        await self.outbox.add(
            OrderConfirmed(
                aggregate_id=str(order.id),
                aggregate_type="Order",
                order_id=order.id,
                public_number=order.public_number,
                token=order.token,
                total=order.total,
                full_name=order.full_name,
                phone=order.phone,
                email=order.email,
            )
        )
        await self.outbox.add(
            OrderPurchased(
                aggregate_id=str(order.id),
                aggregate_type="Order",
                order_id=order.id,
                user_id=order.user_id,
                lines=tuple(
                    {
                        "product_id": line.product_id,
                        "variant_id": line.variant_id,
                        "quantity": line.quantity,
                        "price": line.price,
                    }
                    for line in order.lines
                ),
            )
        )

    async def _redeem_promo(self, order: Order) -> None:
        if not order.promo_code:
            return
        try:
            await self.promos.redeem_for_order(order)
        except Exception:
            await self.session.rollback()
            logger.exception("Promo redemption failed after payment", order_id=order.id)

    async def _purge_cart(self, order: Order, cart_token: str | None) -> None:
        try:
            cart = None
            if order.user_id is not None or cart_token:
                cart = await self.ledger.find(
                    Identity(principal_id=order.user_id, cart_token=cart_token or "")
                )
            await self.ledger.purge_purchased(cart, order.lines, origin_cart_id=order.cart_id)
        except Exception:
            await self.session.rollback()
            logger.exception("Cart cleanup failed after payment", order_id=order.id)

    def _public_number(self, order_id: int) -> str:
        return f"{settings.order_number_prefix}-{order_id:06d}"

    # ========================================================================
    # Queries
    # ========================================================================

    async def list_orders(self, identity: Identity, order_token: str | None = None) -> list[Order]:
        """Orders of the caller, or guest orders for a bearer token, newest first."""
        token = None if identity.is_authenticated else order_token
        rows = await self.orders.list_for(identity.principal_id, token)
        return [order_from_model(row) for row in rows]

    # ========================================================================
    # Shipping and delivery
    # ========================================================================

    async def set_shipping_status(self, order_id: int, status: ShippingStatus) -> Order:
        """Advance the shipping status of a paid order.

        Raises:
            OrderNotFoundError: If the order does not exist.
            InvalidStateTransitionError: If the order is unpaid or the step is not allowed.
        """
        row = await self.orders.get(order_id)
        if row is None:
            raise OrderNotFoundError("Order not found")
        order = order_from_model(row)

        if not order.is_succeeded or order.shipping_status is None:
            raise InvalidStateTransitionError(
                entity_type="Shipment",
                entity_id=str(order_id),
                current_state=order.status.value,
                target_state=status.value,
            )
        if order.shipping_status != status:
            validate_shipping_transition(str(order_id), order.shipping_status, status)

        await self.orders.update_fields(
            order_id, {"shipping_status": status.value, "updated_at": self.clock()}
        )
        await self.session.commit()

        logger.info(
            "Shipping status updated",
            order_id=order_id,
            from_status=order.shipping_status.value,
            to_status=status.value,
        )
        return order_from_model(await self.orders.get(order_id))

    async def request_delivery(
        self,
        identity: Identity,
        order_id: int,
        request: DeliveryRequest,
    ) -> Order:
        """Schedule delivery of an arrived order.

        Args:
            identity: Resolved caller identity.
            order_id: The caller's order.
            request: Validated delivery details.

        Returns:
            The updated order.

        Raises:
            AuthenticationRequiredError: If the caller is anonymous.
            OrderAccessDeniedError: If the order belongs to someone else.
            OrderNotFoundError: If the order does not exist.
            DeliveryNotAllowedError: If the order is unpaid, not arrived or already scheduled.
        """
        if not identity.is_authenticated:
            raise AuthenticationRequiredError()

        row = await self.orders.find_by_id(order_id, identity.principal_id)
        if row is None:
            if await self.orders.exists_with_id(order_id):
                raise OrderAccessDeniedError()
            raise OrderNotFoundError("Order not found")
        order = order_from_model(row)

        if not order.is_succeeded:
            raise DeliveryNotAllowedError(order_id, "order is not paid")
        if order.shipping_status is None or not order.shipping_status.accepts_delivery_request():
            raise DeliveryNotAllowedError(order_id, "order has not arrived yet")
        if order.delivery_requested_at is not None:
            raise DeliveryNotAllowedError(order_id, "delivery already requested")

        now = self.clock()
        await self.orders.update_fields(
            order_id,
            {
                "delivery_requested_at": now,
                "delivery_scheduled_at": request.scheduled_at,
                "delivery_address": request.address,
                "delivery_recipient_name": request.recipient_name,
                "delivery_phone": request.phone,
                "updated_at": now,
            },
        )
        await self.outbox.add(
            DeliveryRequested(
                aggregate_id=str(order_id),
                aggregate_type="Order",
                order_id=order_id,
                public_number=order.public_number or "",
                scheduled_at=request.scheduled_at.isoformat(),
                address=request.address,
                recipient_name=request.recipient_name,
                phone=request.phone,
            )
        )
        await self.session.commit()

        logger.info("Delivery requested", order_id=order_id, user_id=identity.principal_id)
        return order_from_model(await self.orders.get(order_id))


# ============================================================================
# Service Factory
# ============================================================================


def get_order_service(session: AsyncSession) -> OrderStateMachine:
    """Get order service instance.

    Args:
        session: Request-scoped database session.

    Returns:
        OrderStateMachine instance.
    """
    return OrderStateMachine(session)
