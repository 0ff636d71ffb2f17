"""Cart and cart line repository.

All line reads and writes are scoped by cart id so a caller can never
touch a line of another cart through this repository.
"""

from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import Cart, CartLine
from app.infrastructure.models import CartLineModel, CartModel


def line_from_model(row: CartLineModel) -> CartLine:
    """Build a CartLine record from a cart_lines row."""
    return CartLine(
        id=row.id,
        cart_id=row.cart_id,
        product_id=row.product_id,
        quantity=row.quantity,
        price=row.price,
        name=row.name,
        variant_id=row.variant_id,
        size_label=row.size_label,
        image=row.image,
        postponed=row.postponed,
    )


def cart_from_model(row: CartModel, lines: Sequence[CartLineModel] = ()) -> Cart:
    """Build a Cart record from a carts row and its lines."""
    return Cart(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        lines=[line_from_model(line) for line in lines],
    )


class CartRepository:
    """Repository for carts and their lines.

    Example usage:
        repo = CartRepository(session)
        cart = await repo.get_by_token(token)
        lines = await repo.list_lines(cart.id)
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    # ------------------------------------------------------------------
    # Carts
    # ------------------------------------------------------------------

    async def get_by_user(self, user_id: int) -> CartModel | None:
        result = await self.session.execute(
            select(CartModel)
            .where(CartModel.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_token(self, token: str) -> CartModel | None:
        result = await self.session.execute(
            select(CartModel)
            .where(CartModel.token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, user_id: int | None, token: str | None) -> CartModel:
        """Insert a cart.

        Raises:
            IntegrityError: If the owner or token already has a cart.
        """
        cart = CartModel(user_id=user_id, token=token)
        self.session.add(cart)
        await self.session.flush()
        return cart

    async def attach_user(self, cart_id: int, user_id: int) -> bool:
        """Set the owner of an anonymous cart.

        Only carts without an owner are updated. The bearer token is cleared
        so the cart is no longer reachable anonymously.

        Returns:
            True if the cart was attached by this call.
        """
        result = await self.session.execute(
            update(CartModel)
            .where(CartModel.id == cart_id, CartModel.user_id.is_(None))
            .values(user_id=user_id, token=None)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    async def list_lines(self, cart_id: int) -> list[CartLineModel]:
        result = await self.session.execute(
            select(CartLineModel)
            .where(CartLineModel.cart_id == cart_id)
            .order_by(CartLineModel.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_line_by_variant(self, cart_id: int, variant_id: int) -> CartLineModel | None:
        result = await self.session.execute(
            select(CartLineModel)
            .where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.variant_id == variant_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_line_by_product_size(
        self,
        cart_id: int,
        product_id: int,
        size_label: str,
    ) -> CartLineModel | None:
        """Find the non-variant line for a (product, size) pair."""
        result = await self.session.execute(
            select(CartLineModel)
            .where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.variant_id.is_(None),
                CartLineModel.product_id == product_id,
                CartLineModel.size_label == size_label,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_any_line_by_product_size(
        self,
        cart_id: int,
        product_id: int,
        size_label: str,
    ) -> CartLineModel | None:
        """Find the oldest line for a (product, size) pair, variant or not."""
        result = await self.session.execute(
            select(CartLineModel)
            .where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.product_id == product_id,
                CartLineModel.size_label == size_label,
            )
            .order_by(CartLineModel.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def insert_line(self, cart_id: int, values: dict[str, Any]) -> CartLineModel:
        """Insert a line.

        Raises:
            IntegrityError: If a concurrent writer inserted the same identity key.
        """
        line = CartLineModel(cart_id=cart_id, **values)
        self.session.add(line)
        await self.session.flush()
        return line

    async def update_line(self, cart_id: int, line_id: int, values: dict[str, Any]) -> bool:
        """Update a line scoped to its cart.

        Returns:
            True if a row was updated.
        """
        result = await self.session.execute(
            update(CartLineModel)
            .where(CartLineModel.id == line_id, CartLineModel.cart_id == cart_id)
            .values(**values)
        )
        return result.rowcount == 1

    async def increment_quantity(self, cart_id: int, line_id: int, amount: int) -> bool:
        """Atomically add to a line's quantity."""
        result = await self.session.execute(
            update(CartLineModel)
            .where(CartLineModel.id == line_id, CartLineModel.cart_id == cart_id)
            .values(quantity=CartLineModel.quantity + amount)
        )
        return result.rowcount == 1

    async def owners_of_lines(self, line_ids: Sequence[int]) -> dict[int, int]:
        """Map existing line ids to the cart that owns them."""
        if not line_ids:
            return {}
        result = await self.session.execute(
            select(CartLineModel.id, CartLineModel.cart_id).where(
                CartLineModel.id.in_(list(line_ids))
            )
        )
        return {line_id: cart_id for line_id, cart_id in result.all()}

    async def delete_lines(self, cart_id: int, line_ids: Sequence[int]) -> int:
        """Delete lines scoped to their cart.

        Returns:
            Number of deleted rows.
        """
        if not line_ids:
            return 0
        result = await self.session.execute(
            delete(CartLineModel).where(
                CartLineModel.cart_id == cart_id,
                CartLineModel.id.in_(list(line_ids)),
            )
        )
        return result.rowcount
