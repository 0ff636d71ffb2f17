"""Promo code and redemption repository."""

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import PromoRedemption
from app.infrastructure.models import PromoCodeModel, PromoRedemptionModel


def redemption_from_model(row: PromoRedemptionModel) -> PromoRedemption:
    """Build a PromoRedemption record from a promo_redemptions row."""
    return PromoRedemption(
        id=row.id,
        promo_code_id=row.promo_code_id,
        user_id=row.user_id,
        order_id=row.order_id,
        created_at=row.created_at,
    )


class PromoRepository:
    """Repository for promo codes and their redemptions."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get_by_code(self, code: str) -> PromoCodeModel | None:
        result = await self.session.execute(
            select(PromoCodeModel)
            .where(PromoCodeModel.code == code)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_redemptions(self, promo_code_id: int) -> int:
        result = await self.session.execute(
            select(func.count(PromoRedemptionModel.id)).where(
                PromoRedemptionModel.promo_code_id == promo_code_id
            )
        )
        return int(result.scalar_one())

    async def get_redemption(self, promo_code_id: int, user_id: int) -> PromoRedemptionModel | None:
        result = await self.session.execute(
            select(PromoRedemptionModel).where(
                PromoRedemptionModel.promo_code_id == promo_code_id,
                PromoRedemptionModel.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def add_redemption(
        self,
        promo_code_id: int,
        user_id: int,
        order_id: int,
    ) -> PromoRedemptionModel:
        """Insert a redemption.

        Raises:
            IntegrityError: If the principal already redeemed this promo.
        """
        row = PromoRedemptionModel(
            promo_code_id=promo_code_id,
            user_id=user_id,
            order_id=order_id,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def deactivate(self, promo_code_id: int) -> None:
        await self.session.execute(
            update(PromoCodeModel)
            .where(PromoCodeModel.id == promo_code_id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
