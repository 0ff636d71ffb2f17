"""Domain layer - Records, value objects, state machines, domain events.

This module exports the core building blocks of the storefront core:

- **Records**: Typed snapshots of store rows (Cart, CartLine, Order, OrderLine, DeviceSession)
- **Value Objects**: Immutable inputs compared by value (Identity, Fingerprint, LineSpec)
- **State Machines**: Order payment lifecycle and shipping lifecycle
- **Domain Events**: Side effects recorded in the outbox
- **Exceptions**: Domain-specific errors grouped by category

Example usage:
    from app.domain import LineSpec, OrderStatus

    spec = LineSpec(product_id=10, size_label="M", quantity=2)
    assert OrderStatus.PENDING.can_transition_to(OrderStatus.SUCCEEDED)
"""

# Base classes
from app.domain.base import DomainEvent, Entity, ValueObject

# Records
from app.domain.entities import (
    Cart,
    CartLine,
    DeviceSession,
    Order,
    OrderLine,
    Principal,
    PromoRedemption,
    Role,
)

# Domain Events
from app.domain.events import (
    EVENT_REGISTRY,
    CartLineAdded,
    DeliveryRequested,
    OrderConfirmed,
    OrderPurchased,
    PasswordResetCodeIssued,
    SessionGeoLookupRequested,
    VerificationCodeIssued,
    get_event_class,
)

# Exceptions
from app.domain.exceptions import (
    AuthorizationError,
    DomainError,
    InvalidStateTransitionError,
    NotFoundError,
    PolicyError,
    ValidationError,
)

# State Machines
from app.domain.state_machines import (
    OrderStatus,
    ShippingStatus,
    StateTransition,
    validate_order_transition,
    validate_shipping_transition,
)

# Value Objects
from app.domain.value_objects import (
    ContactInfo,
    DeliveryRequest,
    DiscountKind,
    Fingerprint,
    GeoLabel,
    Identity,
    LineSpec,
    OrderItemSpec,
    PromoQuote,
)

__all__ = [
    # Base classes
    "DomainEvent",
    "Entity",
    "ValueObject",
    # Records
    "Cart",
    "CartLine",
    "DeviceSession",
    "Order",
    "OrderLine",
    "Principal",
    "PromoRedemption",
    "Role",
    # Value Objects
    "ContactInfo",
    "DeliveryRequest",
    "DiscountKind",
    "Fingerprint",
    "GeoLabel",
    "Identity",
    "LineSpec",
    "OrderItemSpec",
    "PromoQuote",
    # State Machines
    "OrderStatus",
    "ShippingStatus",
    "StateTransition",
    "validate_order_transition",
    "validate_shipping_transition",
    # Domain Events
    "CartLineAdded",
    "DeliveryRequested",
    "OrderConfirmed",
    "OrderPurchased",
    "PasswordResetCodeIssued",
    "SessionGeoLookupRequested",
    "VerificationCodeIssued",
    "EVENT_REGISTRY",
    "get_event_class",
    # Exceptions
    "AuthorizationError",
    "DomainError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "PolicyError",
    "ValidationError",
]
