"""Cart ledger.

Owns cart and cart line lifecycle:
- Creation on first touch, one cart per principal or per bearer token
- Line merge-or-insert keyed by variant id or (product id, size label)
- Quantity and postponed updates
- Scoped deletion
- Removal of purchased lines after payment
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import Cart, CartLine, OrderLine
from app.domain.events import CartLineAdded
from app.domain.exceptions import (
    CartLineNotFoundError,
    InvalidQuantityError,
    MissingCartUpdateError,
)
from app.domain.value_objects import Identity, LineSpec, normalize_size
from app.infrastructure.models import CartLineModel, CartModel
from app.infrastructure.repositories import CartRepository, OutboxRepository
from app.infrastructure.repositories.carts import cart_from_model, line_from_model

logger = structlog.get_logger()

# Attempts for a match-then-write sequence that keeps losing insert races
MAX_UPSERT_ATTEMPTS = 3


@dataclass
class PurgeResult:
    """Outcome of removing purchased lines from a cart.

    Attributes:
        deleted_line_ids: Lines deleted outright.
        decremented_line_ids: Lines whose quantity was reduced.
        unmatched: Order line ids with no matching cart line.
    """

    deleted_line_ids: list[int] = field(default_factory=list)
    decremented_line_ids: list[int] = field(default_factory=list)
    unmatched: list[int] = field(default_factory=list)


class CartLedger:
    """Service for carts and cart lines.

    Example usage:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(identity)
        lines = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M"))
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session
        self.carts = CartRepository(session)
        self.outbox = OutboxRepository(session)

    # ========================================================================
    # Cart resolution
    # ========================================================================

    async def get_or_create(self, identity: Identity) -> Cart:
        """Resolve the caller's cart, creating it on first touch.

        Authenticated callers get their own cart; if they own none, an
        unowned cart for the presented token is attached to them instead
        of creating a new one. Anonymous callers get the unowned cart for
        their token.

        Args:
            identity: Resolved caller identity.

        Returns:
            The cart with its current lines.
        """
        for _ in range(MAX_UPSERT_ATTEMPTS):
            row = await self._find(identity)
            if row is not None:
                return await self._load(row)

            try:
                row = await self._attach_or_create(identity)
                await self.session.commit()
                return await self._load(row)
            except IntegrityError:
                # A concurrent request created or attached the cart first
                await self.session.rollback()
                logger.info("Cart creation raced, retrying", user_id=identity.principal_id)

        raise RuntimeError("Cart could not be resolved")

    async def find(self, identity: Identity) -> Cart | None:
        """Resolve the caller's cart without creating one."""
        row = await self._find(identity)
        return await self._load(row) if row is not None else None

    async def _find(self, identity: Identity) -> CartModel | None:
        if identity.principal_id is not None:
            return await self.carts.get_by_user(identity.principal_id)
        row = await self.carts.get_by_token(identity.cart_token)
        if row is not None and row.user_id is not None:
            # Adopted carts are not reachable by token any more
            return None
        return row

    async def _attach_or_create(self, identity: Identity) -> CartModel:
        if identity.principal_id is not None:
            anonymous = await self.carts.get_by_token(identity.cart_token)
            if anonymous is not None and anonymous.user_id is None:
                if await self.carts.attach_user(anonymous.id, identity.principal_id):
                    logger.info(
                        "Anonymous cart adopted",
                        cart_id=anonymous.id,
                        user_id=identity.principal_id,
                    )
                    return await self.carts.get_by_user(identity.principal_id)
            return await self.carts.create(user_id=identity.principal_id, token=None)
        return await self.carts.create(user_id=None, token=identity.cart_token)

    async def _load(self, row: CartModel) -> Cart:
        lines = await self.carts.list_lines(row.id)
        return cart_from_model(row, lines)

    async def list_lines(self, cart: Cart) -> list[CartLine]:
        """Current lines of a cart, oldest first."""
        return [line_from_model(row) for row in await self.carts.list_lines(cart.id)]

    # ========================================================================
    # Line mutation
    # ========================================================================

    async def upsert_line(self, cart: Cart, spec: LineSpec) -> list[CartLine]:
        """Add a line or increase the matching one.

        A match is found by variant id, else by (product id, size label)
        among lines without a variant. On a match quantities add up; name
        and price are overwritten only when supplied, image only when not
        None, postponed only when supplied. An insert that loses a race on
        the unique indexes is retried as an update.

        Args:
            cart: Target cart.
            spec: Validated line input.

        Returns:
            All lines of the cart after the change.
        """
        for attempt in range(MAX_UPSERT_ATTEMPTS):
            existing = await self._match(cart.id, spec)
            try:
                if existing is not None:
                    line_id = await self._merge(cart.id, existing, spec)
                else:
                    line_id = await self._insert(cart.id, spec)
                await self.outbox.add(
                    CartLineAdded(
                        aggregate_id=str(cart.id),
                        aggregate_type="Cart",
                        cart_id=cart.id,
                        line_id=line_id,
                        product_id=spec.product_id,
                        variant_id=spec.variant_id,
                        quantity=spec.quantity,
                        price=spec.price if spec.price else (existing.price if existing else 0),
                        user_id=cart.user_id,
                        cart_token=cart.token,
                    )
                )
                await self.session.commit()
                break
            except IntegrityError:
                await self.session.rollback()
                logger.info(
                    "Cart line insert raced, retrying as update",
                    cart_id=cart.id,
                    product_id=spec.product_id,
                    attempt=attempt + 1,
                )
        else:
            raise RuntimeError("Cart line upsert did not converge")

        logger.info(
            "Cart line upserted",
            cart_id=cart.id,
            product_id=spec.product_id,
            variant_id=spec.variant_id,
            quantity=spec.quantity,
        )
        return await self.list_lines(cart)

    async def _match(self, cart_id: int, spec: LineSpec) -> CartLineModel | None:
        if spec.variant_id is not None:
            return await self.carts.find_line_by_variant(cart_id, spec.variant_id)
        return await self.carts.find_line_by_product_size(cart_id, spec.product_id, spec.size_label)

    async def _merge(self, cart_id: int, existing: CartLineModel, spec: LineSpec) -> int:
        await self.carts.increment_quantity(cart_id, existing.id, spec.quantity)
        values: dict[str, Any] = {}
        if spec.name:
            values["name"] = spec.name
        if spec.price:
            values["price"] = spec.price
        if spec.image is not None:
            values["image"] = spec.image
        if spec.postponed is not None:
            values["postponed"] = spec.postponed
        if values:
            await self.carts.update_line(cart_id, existing.id, values)
        return existing.id

    async def _insert(self, cart_id: int, spec: LineSpec) -> int:
        row = await self.carts.insert_line(
            cart_id,
            {
                "product_id": spec.product_id,
                "variant_id": spec.variant_id,
                "size_label": spec.size_label,
                "quantity": spec.quantity,
                "price": spec.price or 0,
                "name": spec.name or "",
                "image": spec.image,
                "postponed": bool(spec.postponed),
            },
        )
        return row.id

    async def set_quantity_or_postponed(
        self,
        cart: Cart,
        line_id: int,
        quantity: int | None = None,
        postponed: bool | None = None,
    ) -> list[CartLine]:
        """Partially update a line of the cart.

        Args:
            cart: Owning cart.
            line_id: Line to update.
            quantity: New positive quantity, untouched when None.
            postponed: New saved-for-later flag, untouched when None.

        Returns:
            All lines of the cart after the change.

        Raises:
            MissingCartUpdateError: If neither field is supplied.
            InvalidQuantityError: If quantity is not a positive integer.
            CartLineNotFoundError: If the line is not in this cart.
        """
        if quantity is None and postponed is None:
            raise MissingCartUpdateError(line_id)
        if quantity is not None and (
            isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1
        ):
            raise InvalidQuantityError(quantity)

        values: dict[str, Any] = {}
        if quantity is not None:
            values["quantity"] = quantity
        if postponed is not None:
            values["postponed"] = postponed

        if not await self.carts.update_line(cart.id, line_id, values):
            await self.session.rollback()
            raise CartLineNotFoundError(cart.id, [line_id])
        await self.session.commit()

        logger.info("Cart line updated", cart_id=cart.id, line_id=line_id, **values)
        return await self.list_lines(cart)

    async def remove_lines(self, cart: Cart, line_ids: Sequence[int]) -> list[CartLine]:
        """Delete lines of the cart.

        Ids that no longer exist are ignored. Ids that belong to another
        cart reject the whole request and nothing is deleted.

        Args:
            cart: Owning cart.
            line_ids: Lines to delete.

        Returns:
            All lines of the cart after the change.

        Raises:
            CartLineNotFoundError: If any id belongs to another cart.
        """
        ids = sorted(set(line_ids))
        owners = await self.carts.owners_of_lines(ids)
        foreign = [line_id for line_id, cart_id in owners.items() if cart_id != cart.id]
        if foreign:
            logger.warning("Cross-cart line deletion rejected", cart_id=cart.id, line_ids=foreign)
            raise CartLineNotFoundError(cart.id, sorted(foreign))

        deleted = await self.carts.delete_lines(cart.id, ids)
        await self.session.commit()

        logger.info("Cart lines removed", cart_id=cart.id, requested=len(ids), deleted=deleted)
        return await self.list_lines(cart)

    async def remove_line(self, cart: Cart, line_id: int) -> list[CartLine]:
        """Delete a single line of the cart."""
        return await self.remove_lines(cart, [line_id])

    # ========================================================================
    # Post-payment cleanup
    # ========================================================================

    async def purge_purchased(
        self,
        cart: Cart | None,
        order_lines: Sequence[OrderLine],
        origin_cart_id: int | None = None,
    ) -> PurgeResult:
        """Remove purchased quantities from a cart.

        Order lines with a cart line back-reference delete that line
        outright, but only when it is in the resolved cart or the cart the
        order was checked out from. The rest are matched by (product id,
        size label) in the resolved cart and decremented by the purchased
        quantity, deleting the line when nothing remains. A missing cart
        only skips the fallback.

        Args:
            cart: Cart to clean, None if it could not be resolved.
            order_lines: Snapshot lines of the paid order.
            origin_cart_id: Cart the order was created from, if known.

        Returns:
            What was removed.
        """
        result = PurgeResult()

        scope = {origin_cart_id} if origin_cart_id is not None else set()
        if cart is not None:
            scope.add(cart.id)
        referenced = {line.cart_line_id: line for line in order_lines if line.cart_line_id is not None}
        if referenced:
            owners = await self.carts.owners_of_lines(list(referenced))
            foreign = [line_id for line_id, cart_id in owners.items() if cart_id not in scope]
            if foreign:
                logger.warning(
                    "Purchased line cleanup skipped lines of another cart",
                    cart_id=cart.id if cart else None,
                    origin_cart_id=origin_cart_id,
                    cart_line_ids=sorted(foreign),
                )
                result.unmatched.extend(referenced[line_id].id for line_id in sorted(foreign))
            in_scope = {line_id: cart_id for line_id, cart_id in owners.items() if cart_id in scope}
            for cart_id, ids in _group_by_cart(in_scope).items():
                await self.carts.delete_lines(cart_id, ids)
                result.deleted_line_ids.extend(ids)

        fallback = [line for line in order_lines if line.cart_line_id is None]
        if fallback and cart is None:
            logger.warning(
                "No cart for purchased line cleanup",
                order_line_ids=[line.id for line in fallback],
            )
            result.unmatched.extend(line.id for line in fallback)
        elif fallback:
            for order_line in fallback:
                row = await self.carts.find_any_line_by_product_size(
                    cart.id, order_line.product_id, normalize_size(order_line.size_label)
                )
                if row is None:
                    result.unmatched.append(order_line.id)
                    continue
                remaining = row.quantity - order_line.quantity
                if remaining <= 0:
                    await self.carts.delete_lines(cart.id, [row.id])
                    result.deleted_line_ids.append(row.id)
                else:
                    await self.carts.update_line(cart.id, row.id, {"quantity": remaining})
                    result.decremented_line_ids.append(row.id)

        await self.session.commit()
        logger.info(
            "Purchased lines purged",
            cart_id=cart.id if cart else None,
            deleted=len(result.deleted_line_ids),
            decremented=len(result.decremented_line_ids),
            unmatched=len(result.unmatched),
        )
        return result


def _group_by_cart(owners: dict[int, int]) -> dict[int, list[int]]:
    grouped: dict[int, list[int]] = {}
    for line_id, cart_id in owners.items():
        grouped.setdefault(cart_id, []).append(line_id)
    return grouped
