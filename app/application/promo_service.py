"""Promo code validation and redemption."""

from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import Order, PromoRedemption
from app.domain.exceptions import PromoRejectedError
from app.domain.value_objects import DiscountKind, PromoQuote
from app.infrastructure.repositories import PromoRepository
from app.infrastructure.repositories.promos import redemption_from_model

logger = structlog.get_logger()


def normalize_code(code: str | None) -> str:
    """Promo codes are matched trimmed and uppercased."""
    return (code or "").strip().upper()


class PromoService:
    """Service for promo codes.

    Validation happens at checkout; redemption is recorded only once the
    order has been paid.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """Initialize service.

        Args:
            session: Async SQLAlchemy session.
            clock: Source of the current time.
        """
        self.session = session
        self.clock = clock
        self.promos = PromoRepository(session)

    async def validate(self, code: str, principal_id: int, subtotal: int) -> PromoQuote:
        """Check that a promo applies and compute its discount.

        Args:
            code: Promo code as entered.
            principal_id: Authenticated account id.
            subtotal: Order subtotal in minor units.

        Returns:
            Quote with the discount for this subtotal.

        Raises:
            PromoRejectedError: If the promo cannot be applied.
        """
        code = normalize_code(code)
        promo = await self.promos.get_by_code(code)
        if promo is None or not promo.is_active:
            raise PromoRejectedError(code, "unknown or inactive code")

        now = self.clock()
        if promo.starts_at is not None and now < promo.starts_at:
            raise PromoRejectedError(code, "not active yet")
        if promo.ends_at is not None and now > promo.ends_at:
            raise PromoRejectedError(code, "expired")
        if promo.user_id is not None and promo.user_id != principal_id:
            raise PromoRejectedError(code, "issued to another account")
        if promo.min_subtotal is not None and subtotal < promo.min_subtotal:
            raise PromoRejectedError(code, f"minimum order is {promo.min_subtotal}")

        if promo.max_redemptions is not None:
            used = await self.promos.count_redemptions(promo.id)
            if used >= promo.max_redemptions:
                raise PromoRejectedError(code, "redemption limit reached")
        if await self.promos.get_redemption(promo.id, principal_id) is not None:
            raise PromoRejectedError(code, "already used")

        return PromoQuote.compute(
            code=code,
            kind=DiscountKind(promo.discount_type),
            value=promo.discount_value,
            subtotal=subtotal,
        )

    async def redeem_for_order(self, order: Order) -> PromoRedemption | None:
        """Record the redemption of a paid order's promo.

        Runs at most once per (promo, principal): a repeat call, or one
        losing a concurrent insert, returns the existing redemption.
        Single-use and account-bound promos are deactivated.

        Args:
            order: A SUCCEEDED order.

        Returns:
            The redemption, or None if the order carries no redeemable promo.
        """
        if not order.promo_code or order.user_id is None or not order.is_succeeded:
            return None

        promo = await self.promos.get_by_code(order.promo_code)
        if promo is None:
            logger.warning("Promo of paid order no longer exists", order_id=order.id, code=order.promo_code)
            return None

        promo_id = promo.id
        single_use = promo.max_redemptions == 1 or promo.user_id is not None

        existing = await self.promos.get_redemption(promo_id, order.user_id)
        if existing is not None:
            return redemption_from_model(existing)

        try:
            row = await self.promos.add_redemption(promo_id, order.user_id, order.id)
            if single_use:
                await self.promos.deactivate(promo_id)
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("Promo redemption raced", order_id=order.id, promo_code_id=promo_id)
            existing = await self.promos.get_redemption(promo_id, order.user_id)
            return redemption_from_model(existing) if existing is not None else None

        logger.info(
            "Promo redeemed",
            order_id=order.id,
            user_id=order.user_id,
            code=order.promo_code,
        )
        return redemption_from_model(row)
