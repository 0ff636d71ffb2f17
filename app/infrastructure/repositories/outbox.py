"""Outbox and webhook event log repositories."""

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base import DomainEvent
from app.infrastructure.models import OutboxEventModel, WebhookEventModel


class OutboxRepository:
    """Repository for pending domain events.

    Events are added inside the transaction that produced them, so they
    become visible to the relay only if that transaction commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def add(self, event: DomainEvent) -> OutboxEventModel:
        """Stage a domain event for delivery.

        Args:
            event: Event to record.

        Returns:
            The staged outbox row.
        """
        data = event.to_dict()
        row = OutboxEventModel(
            event_id=data["event_id"],
            event_type=data["event_type"],
            aggregate_type=data["aggregate_type"],
            aggregate_id=data["aggregate_id"],
            payload=data["payload"],
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def list_pending(self, limit: int) -> list[OutboxEventModel]:
        result = await self.session.execute(
            select(OutboxEventModel)
            .where(OutboxEventModel.status == "pending")
            .order_by(OutboxEventModel.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def claim(self, row_id: int) -> bool:
        """Move a pending row to ``processing``.

        Returns:
            True if this caller owns the row now.
        """
        result = await self.session.execute(
            update(OutboxEventModel)
            .where(OutboxEventModel.id == row_id, OutboxEventModel.status == "pending")
            .values(status="processing", attempts=OutboxEventModel.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def finish(
        self,
        row_id: int,
        status: str,
        now: datetime,
        error: str | None = None,
    ) -> None:
        values: dict[str, Any] = {"status": status, "last_error": error}
        if status == "delivered":
            values["processed_at"] = now
        await self.session.execute(
            update(OutboxEventModel)
            .where(OutboxEventModel.id == row_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )


class WebhookEventRepository:
    """Repository for the payment webhook event log."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get(self, event_id: str) -> WebhookEventModel | None:
        return await self.session.get(WebhookEventModel, event_id, populate_existing=True)

    async def add(
        self,
        event_id: str,
        event_type: str,
        payload_hash: str,
        payload: dict[str, Any],
    ) -> WebhookEventModel:
        """Record a received event.

        Raises:
            IntegrityError: If the event id was already recorded.
        """
        row = WebhookEventModel(
            event_id=event_id,
            event_type=event_type,
            payload_hash=payload_hash,
            payload=payload,
            status="processing",
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def finish(
        self,
        event_id: str,
        status: str,
        now: datetime,
        error: str | None = None,
    ) -> None:
        await self.session.execute(
            update(WebhookEventModel)
            .where(WebhookEventModel.event_id == event_id)
            .values(status=status, processed_at=now, error_message=error)
            .execution_options(synchronize_session=False)
        )
