"""Device session registry.

Owns per-device session records for a principal:
- Creation with primary-session designation
- Listing with fingerprint deduplication
- Time-gated revocation of other sessions
- Logout
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import DeviceSession
from app.domain.events import SessionGeoLookupRequested
from app.domain.exceptions import (
    AuthenticationRequiredError,
    RevocationCooldownError,
    SelfRevocationError,
    SessionNotFoundError,
)
from app.domain.value_objects import Fingerprint, GeoLabel
from app.infrastructure.config import settings
from app.infrastructure.models import DeviceSessionModel
from app.infrastructure.repositories import DeviceSessionRepository, OutboxRepository
from app.infrastructure.repositories.sessions import device_session_from_model
from app.infrastructure.security import new_session_token

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionPolicy:
    """Time windows governing sessions.

    Attributes:
        revoke_cooldown: Age a non-primary session must reach before it
            may revoke other sessions.
        touch_interval: Minimum gap between ``last_seen_at`` writes.
    """

    revoke_cooldown: timedelta
    touch_interval: timedelta

    @classmethod
    def from_settings(cls) -> "SessionPolicy":
        return cls(
            revoke_cooldown=timedelta(hours=settings.session_revoke_cooldown_hours),
            touch_interval=timedelta(seconds=settings.session_touch_interval_seconds),
        )

    def cooldown_left(self, session: DeviceSession, now: datetime) -> timedelta:
        """Remaining cooldown for a session, zero when it may revoke others."""
        if session.is_primary:
            return timedelta(0)
        remaining = self.revoke_cooldown - session.age(now)
        return max(remaining, timedelta(0))


@dataclass
class SessionListing:
    """Result of listing a principal's sessions.

    Attributes:
        sessions: Live sessions, current one first.
        current_id: Id of the caller's session.
        issued_token: Set when a session had to be created for the caller.
        can_revoke_others: Whether the current session passes the cooldown.
        cooldown_hours_left: Whole hours left, None when eligible.
    """

    sessions: list[DeviceSession] = field(default_factory=list)
    current_id: int | None = None
    issued_token: str | None = None
    can_revoke_others: bool = False
    cooldown_hours_left: int | None = None


class SessionRegistry:
    """Service for device sessions.

    Example usage:
        registry = SessionRegistry(session)
        created = await registry.create_session(user_id, fingerprint)
    """

    def __init__(
        self,
        session: AsyncSession,
        policy: SessionPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize registry.

        Args:
            session: Async SQLAlchemy session.
            policy: Cooldown and touch windows, defaults to settings.
            clock: Source of the current time.
        """
        self.session = session
        self.policy = policy or SessionPolicy.from_settings()
        self.clock = clock
        self.sessions = DeviceSessionRepository(session)
        self.outbox = OutboxRepository(session)

    # ========================================================================
    # Creation and lookup
    # ========================================================================

    async def create_session(
        self,
        principal_id: int,
        fingerprint: Fingerprint,
        geo: GeoLabel | None = None,
    ) -> DeviceSession:
        """Create a session for a principal.

        The session is primary iff the principal never had one before. Of
        two concurrent first logins only one gets the primary slot.
        When no location labels are known a geo lookup event is staged.

        Args:
            principal_id: Account id.
            fingerprint: Device fingerprint of the request.
            geo: Location labels from edge headers, if any.

        Returns:
            The created session, including its bearer token.
        """
        geo = geo or GeoLabel()
        is_primary = not await self.sessions.has_any(principal_id)
        try:
            row = await self._insert(principal_id, fingerprint, geo, is_primary)
        except IntegrityError:
            if not is_primary:
                raise
            # A concurrent first login already holds the primary slot
            await self.session.rollback()
            logger.info("Primary session raced, creating a secondary one", user_id=principal_id)
            is_primary = False
            row = await self._insert(principal_id, fingerprint, geo, is_primary)

        logger.info(
            "Session created",
            user_id=principal_id,
            session_id=row.id,
            is_primary=is_primary,
        )
        return device_session_from_model(row)

    async def _insert(
        self,
        principal_id: int,
        fingerprint: Fingerprint,
        geo: GeoLabel,
        is_primary: bool,
    ) -> DeviceSessionModel:
        row = await self.sessions.add(
            user_id=principal_id,
            token=new_session_token(),
            is_primary=is_primary,
            fingerprint=fingerprint,
            geo=geo,
            now=self.clock(),
        )
        if geo.is_empty and fingerprint.ip:
            await self.outbox.add(
                SessionGeoLookupRequested(
                    aggregate_id=str(row.id),
                    aggregate_type="DeviceSession",
                    session_id=row.id,
                    ip=fingerprint.ip,
                )
            )
        await self.session.commit()
        return row

    async def authenticate(self, token: str | None) -> DeviceSession | None:
        """Resolve a live session by bearer.

        Refreshes ``last_seen_at`` when it is older than the touch interval.

        Args:
            token: Session bearer from the request.

        Returns:
            The live session, or None for unknown and revoked bearers.
        """
        if not token:
            return None
        row = await self.sessions.get_by_token(token)
        if row is None or row.revoked_at is not None:
            return None

        record = device_session_from_model(row)
        now = self.clock()
        if now - record.last_seen_at >= self.policy.touch_interval:
            await self.sessions.touch(record.id, now)
            await self.session.commit()
            record = replace(record, last_seen_at=now)
        return record

    async def _current(self, principal_id: int, token: str | None) -> DeviceSession | None:
        if not token:
            return None
        row = await self.sessions.get_by_token(token)
        if row is None or row.revoked_at is not None or row.user_id != principal_id:
            return None
        return device_session_from_model(row)

    # ========================================================================
    # Listing
    # ========================================================================

    async def list_sessions(
        self,
        principal_id: int,
        current_token: str | None,
        fingerprint: Fingerprint,
        geo: GeoLabel | None = None,
    ) -> SessionListing:
        """List live sessions, current first.

        Creates a session for the caller when the bearer resolves to no
        live row, then collapses sessions sharing a fingerprint.

        Args:
            principal_id: Account id.
            current_token: Caller's session bearer.
            fingerprint: Caller's device fingerprint, used for lazy creation.
            geo: Caller's location labels, used for lazy creation.

        Returns:
            The listing with cooldown information.
        """
        listing = SessionListing()

        current = await self._current(principal_id, current_token)
        if current is None:
            current = await self.create_session(principal_id, fingerprint, geo)
            listing.issued_token = current.token

        live = [device_session_from_model(row) for row in await self.sessions.list_live(principal_id)]
        live = await self._deduplicate(live, current.id)

        others = [s for s in live if s.id != current.id]
        listing.sessions = [s for s in live if s.id == current.id] + others
        listing.current_id = current.id

        remaining = self.policy.cooldown_left(current, self.clock())
        listing.can_revoke_others = remaining <= timedelta(0)
        if not listing.can_revoke_others:
            listing.cooldown_hours_left = max(1, math.ceil(remaining / timedelta(hours=1)))
        return listing

    async def _deduplicate(self, live: list[DeviceSession], current_id: int) -> list[DeviceSession]:
        """Revoke all but one live session per fingerprint.

        The survivor of a group is the current session if it belongs to the
        group, else the most recently seen one. ``live`` must be ordered by
        last-seen descending. Failures are logged and the list is returned
        unchanged.
        """
        survivors: dict[str, DeviceSession] = {}
        for device_session in live:
            key = device_session.fingerprint.key
            if key not in survivors or device_session.id == current_id:
                survivors[key] = device_session

        keep_ids = {s.id for s in survivors.values()}
        duplicate_ids = [s.id for s in live if s.id not in keep_ids]
        if not duplicate_ids:
            return live

        try:
            await self.sessions.revoke(duplicate_ids, self.clock())
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.warning(
                "Session deduplication failed",
                session_ids=duplicate_ids,
                error=str(e),
            )
            return live

        logger.info("Duplicate sessions revoked", session_ids=duplicate_ids)
        return [s for s in live if s.id in keep_ids]

    # ========================================================================
    # Revocation
    # ========================================================================

    async def revoke_other(
        self,
        principal_id: int,
        current_token: str | None,
        target_session_id: int,
    ) -> DeviceSession:
        """Revoke another session of the same principal.

        Args:
            principal_id: Account id.
            current_token: Caller's session bearer.
            target_session_id: Session to revoke.

        Returns:
            The revoked session.

        Raises:
            AuthenticationRequiredError: If the caller's session is not live.
            SelfRevocationError: If the target is the caller's session.
            RevocationCooldownError: If the caller's session is too young.
            SessionNotFoundError: If the target is foreign, missing or revoked.
        """
        current = await self._current(principal_id, current_token)
        if current is None:
            raise AuthenticationRequiredError("Session expired")

        if target_session_id == current.id:
            raise SelfRevocationError(target_session_id)

        now = self.clock()
        remaining = self.policy.cooldown_left(current, now)
        if remaining > timedelta(0):
            hours_left = max(1, math.ceil(remaining / timedelta(hours=1)))
            logger.info(
                "Session revocation refused by cooldown",
                user_id=principal_id,
                session_id=current.id,
                hours_left=hours_left,
            )
            raise RevocationCooldownError(hours_left)

        target = await self.sessions.get(target_session_id)
        if target is None or target.user_id != principal_id or target.revoked_at is not None:
            raise SessionNotFoundError(target_session_id)

        await self.sessions.revoke([target.id], now)
        await self.session.commit()

        logger.info(
            "Session revoked",
            user_id=principal_id,
            session_id=target.id,
            revoked_by=current.id,
        )
        return replace(device_session_from_model(target), revoked_at=now)

    async def revoke(self, token: str | None) -> bool:
        """Log out a session by bearer.

        Args:
            token: Session bearer, possibly absent.

        Returns:
            True if a live session was revoked.
        """
        if not token:
            return False
        revoked = await self.sessions.revoke_by_token(token, self.clock())
        await self.session.commit()
        if revoked:
            logger.info("Session logged out")
        return revoked > 0
