"""Payment webhook processing service.

Handles payment provider callbacks with:
- HMAC signature verification
- Event deduplication through the webhook event log
- Idempotent order confirmation on successful payment
"""

import hashlib
import hmac
import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.order_service import OrderStateMachine
from app.domain.exceptions import DomainError, ValidationError
from app.infrastructure.config import settings
from app.infrastructure.repositories import WebhookEventRepository

logger = structlog.get_logger()


class WebhookEventType(str, Enum):
    """Types of payment provider events."""

    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_CANCELED = "payment.canceled"


class EventStatus(str, Enum):
    """Status of a webhook event in the event log."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class WebhookEvent:
    """A payment provider event.

    Attributes:
        event_id: Provider's unique event identifier.
        event_type: Type of event.
        data: Event data, carrying ``order_id`` and optionally ``order_token``.
    """

    event_id: str
    event_type: WebhookEventType
    data: dict[str, Any]

    def compute_payload_hash(self) -> str:
        """SHA-256 of the canonical event payload."""
        payload = json.dumps(
            {
                "event_id": self.event_id,
                "event_type": self.event_type.value,
                "data": self.data,
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(payload.encode()).hexdigest()


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether processing succeeded.
        event_id: The event ID.
        status: Final event status.
        message: Status message.
        duplicate: Whether this was a duplicate event.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    duplicate: bool = False


class WebhookSignatureVerifier:
    """Verifies HMAC-SHA256 signatures on webhook payloads."""

    def __init__(self, secret: str | None = None) -> None:
        """Initialize verifier.

        Args:
            secret: HMAC secret for signature verification.
        """
        self.secret = settings.webhook_secret if secret is None else secret

    def sign(self, payload: bytes) -> str:
        """Signature header value for a payload."""
        digest = hmac.new(self.secret.encode(), payload, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def verify(self, payload: bytes, signature: str | None) -> bool:
        """Verify the HMAC signature of a webhook payload.

        Args:
            payload: Raw request body.
            signature: Signature header value (format: sha256=<hex>).

        Returns:
            True if signature is valid.
        """
        if not self.secret:
            logger.error("Webhook secret not configured, rejecting webhook")
            return False
        if not signature:
            logger.warning("Missing webhook signature")
            return False

        # Parse signature format: sha256=<hex_digest>
        parts = signature.split("=", 1)
        if len(parts) != 2 or parts[0] != "sha256":
            logger.warning("Invalid signature format", signature_prefix=signature[:20])
            return False

        computed = hmac.new(self.secret.encode(), payload, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(computed, parts[1]):
            logger.warning("Webhook signature mismatch")
            return False

        logger.debug("Webhook signature verified")
        return True


class WebhookService:
    """Service for processing payment webhooks.

    Events are recorded in the webhook event log before processing. An
    event already processed, or being processed, is reported as a
    duplicate. Failed events may be delivered again.
    """

    def __init__(
        self,
        session: AsyncSession,
        signature_verifier: WebhookSignatureVerifier | None = None,
        orders: OrderStateMachine | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """Initialize webhook service.

        Args:
            session: Async SQLAlchemy session.
            signature_verifier: Signature verifier.
            orders: Order service driven by payment events.
            clock: Source of the current time.
        """
        self.session = session
        self.signature_verifier = signature_verifier or WebhookSignatureVerifier()
        self.orders = orders or OrderStateMachine(session)
        self.clock = clock
        self.event_log = WebhookEventRepository(session)

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        return self.signature_verifier.verify(payload, signature)

    async def process_event(
        self,
        event: WebhookEvent,
        correlation_id: str | None = None,
    ) -> WebhookResult:
        """Process a webhook event.

        Args:
            event: The webhook event to process.
            correlation_id: Request correlation ID.

        Returns:
            Processing result.
        """
        logger.info(
            "Processing webhook event",
            event_id=event.event_id,
            event_type=event.event_type.value,
            correlation_id=correlation_id,
        )

        if not await self._record(event):
            logger.info("Duplicate webhook event ignored", event_id=event.event_id)
            return WebhookResult(
                success=True,
                event_id=event.event_id,
                status=EventStatus.DUPLICATE,
                message="Event already processed",
                duplicate=True,
            )

        try:
            message = await self._handle_event(event)
        except DomainError as e:
            await self.session.rollback()
            logger.warning(
                "Webhook event rejected",
                event_id=event.event_id,
                event_type=event.event_type.value,
                error_code=e.error_code,
                error=e.message,
            )
            await self.event_log.finish(event.event_id, EventStatus.FAILED.value, self.clock(), e.message)
            await self.session.commit()
            return WebhookResult(
                success=False,
                event_id=event.event_id,
                status=EventStatus.FAILED,
                message=e.message,
            )
        except Exception as e:
            await self.session.rollback()
            logger.exception("Failed to process webhook event", event_id=event.event_id)
            await self.event_log.finish(event.event_id, EventStatus.FAILED.value, self.clock(), str(e))
            await self.session.commit()
            raise

        await self.event_log.finish(event.event_id, EventStatus.PROCESSED.value, self.clock())
        await self.session.commit()

        logger.info(
            "Webhook event processed successfully",
            event_id=event.event_id,
            event_type=event.event_type.value,
        )
        return WebhookResult(
            success=True,
            event_id=event.event_id,
            status=EventStatus.PROCESSED,
            message=message,
        )

    async def _record(self, event: WebhookEvent) -> bool:
        """Claim an event for processing.

        Returns:
            False if the event was already processed or is in flight.
        """
        existing = await self.event_log.get(event.event_id)
        if existing is not None:
            if existing.status != EventStatus.FAILED.value:
                return False
            await self.event_log.finish(event.event_id, EventStatus.PROCESSING.value, self.clock())
            await self.session.commit()
            logger.info("Retrying failed webhook event", event_id=event.event_id)
            return True

        try:
            await self.event_log.add(
                event_id=event.event_id,
                event_type=event.event_type.value,
                payload_hash=event.compute_payload_hash(),
                payload=event.data,
            )
            await self.session.commit()
        except IntegrityError:
            # Concurrent delivery of the same event
            await self.session.rollback()
            return False
        return True

    async def _handle_event(self, event: WebhookEvent) -> str:
        handlers = {
            WebhookEventType.PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
            WebhookEventType.PAYMENT_FAILED: self._handle_payment_unsuccessful,
            WebhookEventType.PAYMENT_CANCELED: self._handle_payment_unsuccessful,
        }
        return await handlers[event.event_type](event)

    async def _handle_payment_succeeded(self, event: WebhookEvent) -> str:
        order_id = _order_id(event.data)
        confirmation = await self.orders.confirm_by_reference(
            order_id, token=event.data.get("order_token")
        )
        if confirmation.already_confirmed:
            return f"Order {confirmation.public_number} was already confirmed"
        return f"Order {confirmation.public_number} confirmed"

    async def _handle_payment_unsuccessful(self, event: WebhookEvent) -> str:
        """Orders stay PENDING until a later payment succeeds."""
        logger.info(
            "Payment not completed",
            event_type=event.event_type.value,
            order_id=event.data.get("order_id"),
            reason=event.data.get("reason"),
        )
        return "Payment outcome recorded"


def _order_id(data: dict[str, Any]) -> int:
    try:
        return int(data["order_id"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Payment event has no order_id", details={"data": data}) from None


def get_webhook_service(session: AsyncSession) -> WebhookService:
    """Build a webhook service bound to a request session."""
    return WebhookService(session)
