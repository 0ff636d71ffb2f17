"""Typed records for the reconciliation core.

Records are snapshots of store rows handed between services and the API.
Constructors enforce the invariants each record must satisfy, so a row
that violates them is rejected instead of flowing further.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from app.domain.base import Entity
from app.domain.exceptions import InvalidLineError, InvalidQuantityError, ValidationError
from app.domain.state_machines import OrderStatus, ShippingStatus
from app.domain.value_objects import Fingerprint, GeoLabel


class Role(str, Enum):
    """Account role flag."""

    USER = "USER"
    ADMIN = "ADMIN"


# ============================================================================
# Principal
# ============================================================================


@dataclass(eq=False)
class Principal(Entity):
    """An account.

    Attributes:
        id: Account id.
        email: Unique, lowercased login key.
        role: Standard or elevated.
        full_name: Display name.
        verified_at: When the email was verified, None until then.
        deleted_at: Soft-deletion timestamp.
    """

    email: str
    role: Role = Role.USER
    full_name: str = ""
    verified_at: datetime | None = None
    deleted_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.email or "@" not in self.email:
            raise ValidationError("Principal needs an email", details={"email": self.email})

    @property
    def is_verified(self) -> bool:
        return self.verified_at is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


# ============================================================================
# Cart
# ============================================================================


@dataclass(eq=False)
class CartLine(Entity):
    """A line in a cart.

    Identified by variant id, or by (product id, size label) when the
    variant is unknown.
    """

    cart_id: int
    product_id: int
    quantity: int
    price: int = 0
    name: str = ""
    variant_id: int | None = None
    size_label: str = ""
    image: str | None = None
    postponed: bool = False

    def __post_init__(self) -> None:
        """Validate line identity and quantity."""
        if self.quantity <= 0:
            raise InvalidQuantityError(self.quantity)
        if not self.product_id and self.variant_id is None:
            raise InvalidLineError(
                "Cart line has neither variant nor product id",
                details={"line_id": self.id},
            )

    @property
    def line_total(self) -> int:
        return self.price * self.quantity


@dataclass(eq=False)
class Cart(Entity):
    """A cart owned by a principal or reachable by its bearer token."""

    user_id: int | None
    token: str | None
    lines: list[CartLine] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.user_id is None and not self.token:
            raise ValidationError(
                "Cart must belong to a principal or carry a token",
                details={"cart_id": self.id},
            )

    @property
    def billable_lines(self) -> list[CartLine]:
        """Lines that count towards checkout, postponed ones excluded."""
        return [line for line in self.lines if not line.postponed]

    @property
    def total(self) -> int:
        return sum(line.line_total for line in self.billable_lines)


# ============================================================================
# Order
# ============================================================================


@dataclass(eq=False)
class OrderLine(Entity):
    """Snapshot of a purchased line, with an optional cart back-reference."""

    order_id: int
    product_id: int
    quantity: int
    price: int
    name: str = ""
    variant_id: int | None = None
    size_label: str = ""
    image: str | None = None
    cart_line_id: int | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise InvalidQuantityError(self.quantity)


@dataclass(eq=False)
class Order(Entity):
    """A checkout attempt and, once paid, a purchase.

    Attributes:
        user_id: Owning principal, None for an unbound guest order.
        token: Bearer token that lets a guest later bind the order.
        status: Payment lifecycle state.
        public_number: Human-facing number, assigned on confirmation.
        cart_id: Cart the order was checked out from, if any.
    """

    user_id: int | None
    token: str
    status: OrderStatus
    subtotal: int
    total: int
    discount_amount: int = 0
    cart_id: int | None = None
    public_number: str | None = None
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    comment: str = ""
    promo_code: str | None = None
    promo_discount_type: str | None = None
    promo_discount_value: int | None = None
    shipping_status: ShippingStatus | None = None
    delivery_requested_at: datetime | None = None
    delivery_scheduled_at: datetime | None = None
    delivery_address: str | None = None
    delivery_recipient_name: str | None = None
    delivery_phone: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    paid_at: datetime | None = None
    lines: list[OrderLine] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.total < 0 or self.subtotal < 0:
            raise ValidationError(
                "Order totals cannot be negative",
                details={"order_id": self.id, "total": self.total},
            )

    @property
    def is_succeeded(self) -> bool:
        return self.status == OrderStatus.SUCCEEDED


# ============================================================================
# Device Session
# ============================================================================


@dataclass(eq=False)
class DeviceSession(Entity):
    """One authenticated device session of a principal."""

    user_id: int
    token: str
    is_primary: bool
    created_at: datetime
    last_seen_at: datetime
    fingerprint: Fingerprint = field(default_factory=Fingerprint)
    geo: GeoLabel = field(default_factory=GeoLabel)
    revoked_at: datetime | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def age(self, now: datetime) -> timedelta:
        """Time elapsed since the session was created."""
        return now - self.created_at


# ============================================================================
# Promo Redemption
# ============================================================================


@dataclass(eq=False)
class PromoRedemption(Entity):
    """A promo code redeemed by a principal for a successful order."""

    promo_code_id: int
    user_id: int
    order_id: int | None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
