"""Device session repository."""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import DeviceSession
from app.domain.value_objects import Fingerprint, GeoLabel
from app.infrastructure.models import DeviceSessionModel


def device_session_from_model(row: DeviceSessionModel) -> DeviceSession:
    """Build a DeviceSession record from a device_sessions row."""
    return DeviceSession(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        is_primary=row.is_primary,
        created_at=row.created_at,
        last_seen_at=row.last_seen_at,
        fingerprint=Fingerprint(
            device=row.device,
            os=row.os,
            ip=row.ip,
            user_agent=row.user_agent,
        ),
        geo=GeoLabel(city=row.city, country=row.country),
        revoked_at=row.revoked_at,
    )


class DeviceSessionRepository:
    """Repository for device session rows.

    Rows are never deleted; revocation stamps ``revoked_at``.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get(self, session_id: int) -> DeviceSessionModel | None:
        result = await self.session.execute(
            select(DeviceSessionModel)
            .where(DeviceSessionModel.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_token(self, token: str) -> DeviceSessionModel | None:
        result = await self.session.execute(
            select(DeviceSessionModel)
            .where(DeviceSessionModel.token == token)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def has_any(self, user_id: int) -> bool:
        """Whether the principal ever had a session, revoked or not."""
        result = await self.session.execute(
            select(DeviceSessionModel.id).where(DeviceSessionModel.user_id == user_id).limit(1)
        )
        return result.first() is not None

    async def add(
        self,
        user_id: int,
        token: str,
        is_primary: bool,
        fingerprint: Fingerprint,
        geo: GeoLabel,
        now: datetime,
    ) -> DeviceSessionModel:
        row = DeviceSessionModel(
            user_id=user_id,
            token=token,
            is_primary=is_primary,
            ip=fingerprint.ip,
            device=fingerprint.device,
            os=fingerprint.os,
            user_agent=fingerprint.user_agent,
            city=geo.city,
            country=geo.country,
            created_at=now,
            last_seen_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def list_live(self, user_id: int) -> list[DeviceSessionModel]:
        """Non-revoked sessions of a principal, most recently seen first."""
        result = await self.session.execute(
            select(DeviceSessionModel)
            .where(
                DeviceSessionModel.user_id == user_id,
                DeviceSessionModel.revoked_at.is_(None),
            )
            .order_by(DeviceSessionModel.last_seen_at.desc(), DeviceSessionModel.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def revoke(self, session_ids: Sequence[int], now: datetime) -> int:
        """Revoke live sessions by id.

        Returns:
            Number of sessions revoked by this call.
        """
        if not session_ids:
            return 0
        result = await self.session.execute(
            update(DeviceSessionModel)
            .where(
                DeviceSessionModel.id.in_(list(session_ids)),
                DeviceSessionModel.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def revoke_by_token(self, token: str, now: datetime) -> int:
        result = await self.session.execute(
            update(DeviceSessionModel)
            .where(
                DeviceSessionModel.token == token,
                DeviceSessionModel.revoked_at.is_(None),
            )
            .values(revoked_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def touch(self, session_id: int, now: datetime) -> None:
        await self.session.execute(
            update(DeviceSessionModel)
            .where(DeviceSessionModel.id == session_id)
            .values(last_seen_at=now)
            .execution_options(synchronize_session=False)
        )

    async def set_geo(self, session_id: int, geo: GeoLabel) -> None:
        await self.session.execute(
            update(DeviceSessionModel)
            .where(DeviceSessionModel.id == session_id)
            .values(city=geo.city, country=geo.country)
            .execution_options(synchronize_session=False)
        )
