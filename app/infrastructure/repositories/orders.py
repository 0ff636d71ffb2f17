"""Order repository.

Status changes are expressed as conditional updates so that two
concurrent writers cannot both move an order out of PENDING.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.domain.entities import Order, OrderLine
from app.domain.state_machines import OrderStatus, ShippingStatus
from app.infrastructure.models import OrderLineModel, OrderModel


def order_line_from_model(row: OrderLineModel) -> OrderLine:
    """Build an OrderLine record from an order_lines row."""
    return OrderLine(
        id=row.id,
        order_id=row.order_id,
        product_id=row.product_id,
        quantity=row.quantity,
        price=row.price,
        name=row.name,
        variant_id=row.variant_id,
        size_label=row.size_label,
        image=row.image,
        cart_line_id=row.cart_line_id,
    )


def order_from_model(row: OrderModel) -> Order:
    """Build an Order record from an orders row with loaded lines."""
    return Order(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        status=OrderStatus(row.status),
        subtotal=row.subtotal,
        total=row.total,
        discount_amount=row.discount_amount,
        cart_id=row.cart_id,
        public_number=row.public_number,
        full_name=row.full_name,
        email=row.email,
        phone=row.phone,
        address=row.address,
        comment=row.comment,
        promo_code=row.promo_code,
        promo_discount_type=row.promo_discount_type,
        promo_discount_value=row.promo_discount_value,
        shipping_status=ShippingStatus(row.shipping_status) if row.shipping_status else None,
        delivery_requested_at=row.delivery_requested_at,
        delivery_scheduled_at=row.delivery_scheduled_at,
        delivery_address=row.delivery_address,
        delivery_recipient_name=row.delivery_recipient_name,
        delivery_phone=row.delivery_phone,
        created_at=row.created_at,
        paid_at=row.paid_at,
        lines=[order_line_from_model(line) for line in row.lines],
    )


class OrderRepository:
    """Repository for orders and their line snapshots.

    Example usage:
        repo = OrderRepository(session)
        order = await repo.get(order_id)
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    def _select(self):
        return (
            select(OrderModel)
            .options(selectinload(OrderModel.lines))
            .execution_options(populate_existing=True)
        )

    async def add(self, values: dict[str, Any], lines: list[dict[str, Any]]) -> OrderModel:
        """Insert an order with its lines.

        Args:
            values: Column values for the order row.
            lines: Column values for each order line.

        Returns:
            The persisted order row.
        """
        order = OrderModel(**values)
        order.lines = [OrderLineModel(**line) for line in lines]
        self.session.add(order)
        await self.session.flush()
        return order

    async def get(self, order_id: int) -> OrderModel | None:
        result = await self.session.execute(self._select().where(OrderModel.id == order_id))
        return result.scalar_one_or_none()

    async def find_by_token(self, token: str, user_id: int | None) -> OrderModel | None:
        """Newest order with this token owned by ``user_id`` (None for guest orders)."""
        owner = OrderModel.user_id.is_(None) if user_id is None else OrderModel.user_id == user_id
        result = await self.session.execute(
            self._select()
            .where(OrderModel.token == token, owner)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_by_id(self, order_id: int, user_id: int) -> OrderModel | None:
        result = await self.session.execute(
            self._select().where(OrderModel.id == order_id, OrderModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def exists_with_token(self, token: str) -> bool:
        result = await self.session.execute(
            select(OrderModel.id).where(OrderModel.token == token).limit(1)
        )
        return result.first() is not None

    async def exists_with_id(self, order_id: int) -> bool:
        result = await self.session.execute(
            select(OrderModel.id).where(OrderModel.id == order_id)
        )
        return result.first() is not None

    async def find_recent_pending(self, user_id: int, since: datetime) -> OrderModel | None:
        """Newest PENDING order of a principal created after ``since``."""
        result = await self.session.execute(
            self._select()
            .where(
                OrderModel.user_id == user_id,
                OrderModel.status == OrderStatus.PENDING.value,
                OrderModel.created_at >= since,
            )
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_succeeded(self, order_id: int, public_number: str, paid_at: datetime) -> bool:
        """Move a PENDING order to SUCCEEDED.

        Returns:
            True if this call performed the transition.
        """
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.status == OrderStatus.PENDING.value,
            )
            .values(
                status=OrderStatus.SUCCEEDED.value,
                public_number=public_number,
                paid_at=paid_at,
                shipping_status=ShippingStatus.PROCESSING.value,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel_pending_siblings(self, user_id: int, keep_order_id: int, now: datetime) -> int:
        """Cancel every other PENDING order of a principal.

        Returns:
            Number of canceled orders.
        """
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.user_id == user_id,
                OrderModel.id != keep_order_id,
                OrderModel.status == OrderStatus.PENDING.value,
            )
            .values(status=OrderStatus.CANCELED.value, canceled_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def bind_guest_orders(self, token: str, user_id: int) -> int:
        """Attach unowned orders carrying ``token`` to a principal."""
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.token == token, OrderModel.user_id.is_(None))
            .values(user_id=user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_for(self, user_id: int | None, token: str | None) -> list[OrderModel]:
        """Orders owned by a principal, or unowned orders for a guest token."""
        if user_id is not None:
            condition = OrderModel.user_id == user_id
        elif token:
            condition = (OrderModel.token == token) & OrderModel.user_id.is_(None)
        else:
            return []
        result = await self.session.execute(
            self._select()
            .where(condition)
            .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
        )
        return list(result.scalars().all())

    async def update_fields(self, order_id: int, values: dict[str, Any]) -> None:
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
