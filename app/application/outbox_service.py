"""Outbox relay.

Delivers staged domain events to external collaborators off the request
path. A delivery failure never touches the core record that produced the
event; the row is retried until it runs out of attempts.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.events import (
    CartLineAdded,
    DeliveryRequested,
    OrderConfirmed,
    OrderPurchased,
    PasswordResetCodeIssued,
    SessionGeoLookupRequested,
    VerificationCodeIssued,
)
from app.infrastructure.config import settings
from app.infrastructure.database import async_session_factory
from app.infrastructure.geo import GeoLocator
from app.infrastructure.notifier import AnalyticsClient, NotificationDispatcher
from app.infrastructure.repositories import DeviceSessionRepository, OutboxRepository

logger = structlog.get_logger()

Handler = Callable[[dict[str, Any], datetime], Awaitable[Any]]


@dataclass
class DrainResult:
    """Counts from one relay pass."""

    delivered: int = 0
    retried: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.delivered + self.retried + self.failed


class OutboxRelay:
    """Claims pending outbox rows and dispatches them by event type.

    Example usage:
        relay = OutboxRelay(session)
        result = await relay.drain_once()
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        analytics: AnalyticsClient | None = None,
        geo: GeoLocator | None = None,
        max_attempts: int | None = None,
    ) -> None:
        """Initialize relay.

        Args:
            session: Async SQLAlchemy session.
            dispatcher: Notification client.
            analytics: Analytics client.
            geo: Geo lookup client.
            max_attempts: Attempts before a row is marked failed.
        """
        self.session = session
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.analytics = analytics or AnalyticsClient()
        self.geo = geo or GeoLocator()
        self.max_attempts = max_attempts or settings.outbox_max_attempts
        self.outbox = OutboxRepository(session)
        self.sessions = DeviceSessionRepository(session)
        self.handlers: dict[str, Handler] = {
            OrderConfirmed.event_type: self._order_confirmed,
            DeliveryRequested.event_type: self._delivery_requested,
            VerificationCodeIssued.event_type: self._verification_code,
            PasswordResetCodeIssued.event_type: self._password_reset_code,
            CartLineAdded.event_type: self._cart_line_added,
            OrderPurchased.event_type: self._order_purchased,
            SessionGeoLookupRequested.event_type: self._session_geo_lookup,
        }

    async def drain_once(self, limit: int | None = None) -> DrainResult:
        """Deliver up to ``limit`` pending events.

        Args:
            limit: Batch size, defaults to settings.

        Returns:
            Counts of delivered, retried and failed rows.
        """
        result = DrainResult()
        rows = await self.outbox.list_pending(limit or settings.outbox_batch_size)
        # Detach the values before commits and rollbacks expire the rows
        batch = [(row.id, row.event_type, row.payload, row.attempts, row.created_at) for row in rows]

        for row_id, event_type, payload, attempts, created_at in batch:
            if not await self.outbox.claim(row_id):
                continue
            await self.session.commit()

            handler = self.handlers.get(event_type)
            try:
                if handler is None:
                    logger.warning("No outbox handler for event type", event_type=event_type)
                else:
                    await handler(payload, created_at)
            except Exception as e:
                await self.session.rollback()
                status = "failed" if attempts + 1 >= self.max_attempts else "pending"
                logger.warning(
                    "Outbox delivery failed",
                    outbox_id=row_id,
                    event_type=event_type,
                    attempt=attempts + 1,
                    status=status,
                    error=str(e),
                )
                await self.outbox.finish(row_id, status, _utcnow(), error=str(e)[:1000])
                if status == "failed":
                    result.failed += 1
                else:
                    result.retried += 1
            else:
                await self.outbox.finish(row_id, "delivered", _utcnow())
                result.delivered += 1
            await self.session.commit()

        if result.processed:
            logger.info(
                "Outbox drained",
                delivered=result.delivered,
                retried=result.retried,
                failed=result.failed,
            )
        return result

    # ========================================================================
    # Handlers
    # ========================================================================

    async def _order_confirmed(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        await self.dispatcher.order_confirmed(payload)

    async def _delivery_requested(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        await self.dispatcher.delivery_requested(payload)

    async def _verification_code(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        await self.dispatcher.verification_code(payload)

    async def _password_reset_code(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        await self.dispatcher.password_reset_code(payload)

    async def _cart_line_added(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        await self.analytics.track(
            [
                {
                    "type": "add_to_cart",
                    "product_id": payload.get("product_id"),
                    "variant_id": payload.get("variant_id"),
                    "quantity": payload.get("quantity"),
                    "price": payload.get("price"),
                    "user_id": payload.get("user_id"),
                    "anonymous_id": payload.get("cart_token"),
                    "occurred_at": occurred_at.isoformat(),
                }
            ]
        )

    async def _order_purchased(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        events = [
            {
                "type": "purchase",
                "order_id": payload.get("order_id"),
                "user_id": payload.get("user_id"),
                "product_id": line.get("product_id"),
                "variant_id": line.get("variant_id"),
                "quantity": line.get("quantity"),
                "price": line.get("price"),
                "occurred_at": occurred_at.isoformat(),
            }
            for line in payload.get("lines", [])
        ]
        if events:
            await self.analytics.track(events)

    async def _session_geo_lookup(self, payload: dict[str, Any], occurred_at: datetime) -> None:
        geo = await self.geo.lookup(payload.get("ip"))
        if geo.is_empty:
            return
        await self.sessions.set_geo(payload["session_id"], geo)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def drain_outbox() -> DrainResult:
    """Run one relay pass in its own session.

    Used as a background task after responses that staged events.
    """
    async with async_session_factory() as session:
        try:
            return await OutboxRelay(session).drain_once()
        except Exception:
            await session.rollback()
            logger.exception("Outbox drain failed")
            return DrainResult()
