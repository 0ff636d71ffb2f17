"""Domain events for the storefront core.

Events are written to the outbox by the transaction that caused them and
delivered later by the relay. They drive:
- Customer and staff notifications
- Analytics tracking
- Best-effort geo annotation of sessions
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from app.domain.base import DomainEvent


# ============================================================================
# Cart Events
# ============================================================================


@dataclass(frozen=True)
class CartLineAdded(DomainEvent):
    """Event raised when a line is inserted or its quantity increased."""

    event_type: ClassVar[str] = "cart.line_added"

    cart_id: int = 0
    line_id: int = 0
    product_id: int = 0
    variant_id: int | None = None
    quantity: int = 0
    price: int = 0
    user_id: int | None = None
    cart_token: str | None = None


# ============================================================================
# Order Events
# ============================================================================


@dataclass(frozen=True)
class OrderConfirmed(DomainEvent):
    """Event raised once, when an order first reaches SUCCEEDED."""

    event_type: ClassVar[str] = "order.confirmed"

    order_id: int = 0
    public_number: str = ""
    token: str = ""
    total: int = 0
    full_name: str = ""
    phone: str = ""
    email: str = ""


@dataclass(frozen=True)
class OrderPurchased(DomainEvent):
    """Analytics event for each purchased line of a confirmed order."""

    event_type: ClassVar[str] = "order.purchased"

    order_id: int = 0
    user_id: int | None = None
    lines: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class DeliveryRequested(DomainEvent):
    """Event raised when a customer schedules delivery of an arrived order."""

    event_type: ClassVar[str] = "order.delivery_requested"

    order_id: int = 0
    public_number: str = ""
    scheduled_at: str = ""
    address: str = ""
    recipient_name: str = ""
    phone: str = ""


# ============================================================================
# Identity Events
# ============================================================================


@dataclass(frozen=True)
class SessionGeoLookupRequested(DomainEvent):
    """Event raised when a new session has an IP but no location labels."""

    event_type: ClassVar[str] = "session.geo_lookup_requested"

    session_id: int = 0
    ip: str = ""


@dataclass(frozen=True)
class VerificationCodeIssued(DomainEvent):
    """Event raised when an email verification code must be delivered."""

    event_type: ClassVar[str] = "auth.verification_code_issued"

    email: str = ""
    code: str = ""


@dataclass(frozen=True)
class PasswordResetCodeIssued(DomainEvent):
    """Event raised when a password reset code must be delivered."""

    event_type: ClassVar[str] = "auth.password_reset_code_issued"

    email: str = ""
    code: str = ""


# ============================================================================
# Event Registry
# ============================================================================


EVENT_REGISTRY: dict[str, type[DomainEvent]] = {
    CartLineAdded.event_type: CartLineAdded,
    OrderConfirmed.event_type: OrderConfirmed,
    OrderPurchased.event_type: OrderPurchased,
    DeliveryRequested.event_type: DeliveryRequested,
    SessionGeoLookupRequested.event_type: SessionGeoLookupRequested,
    VerificationCodeIssued.event_type: VerificationCodeIssued,
    PasswordResetCodeIssued.event_type: PasswordResetCodeIssued,
}


def get_event_class(event_type: str) -> type[DomainEvent] | None:
    """Get event class by type string.

    Args:
        event_type: Event type identifier (e.g., "order.confirmed").

    Returns:
        Event class if found, None otherwise.
    """
    return EVENT_REGISTRY.get(event_type)
