"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Self

from app.domain.base import ValueObject
from app.domain.exceptions import InvalidLineError, InvalidQuantityError, ValidationError

FINGERPRINT_UA_PREFIX = 120
USER_AGENT_MAX_LENGTH = 500
DELIVERY_PHONE_PATTERN = re.compile(r"^[78]\d{10}$")


def _clean(value: object, limit: int) -> str:
    """Trim a free-form string and cap its length."""
    if value is None:
        return ""
    return str(value).strip()[:limit]


# ============================================================================
# Identity
# ============================================================================


@dataclass(frozen=True)
class Identity(ValueObject):
    """Who is acting, and which anonymous cart they carry.

    Attributes:
        principal_id: Authenticated account id, None for anonymous callers.
        cart_token: Cart bearer token presented or freshly minted.
        cart_token_minted: True when the caller must persist a new cart token.
        session_token: Session bearer that resolved the principal, if any.
        session_id: Device session row behind the session bearer, if any.
    """

    principal_id: int | None
    cart_token: str
    cart_token_minted: bool = False
    session_token: str | None = None
    session_id: int | None = None

    @property
    def is_authenticated(self) -> bool:
        """Whether a principal was resolved."""
        return self.principal_id is not None


# ============================================================================
# Device Fingerprint
# ============================================================================


@dataclass(frozen=True)
class Fingerprint(ValueObject):
    """Coarse device fingerprint used to deduplicate sessions.

    Attributes:
        device: Device class (Mobile, Tablet, Desktop).
        os: Operating system family.
        ip: Client IP address as seen by the edge.
        user_agent: Raw user agent, capped at 500 characters.
    """

    device: str = "Desktop"
    os: str = "Unknown"
    ip: str = ""
    user_agent: str = ""

    def __post_init__(self) -> None:
        """Cap the stored user agent."""
        if len(self.user_agent) > USER_AGENT_MAX_LENGTH:
            object.__setattr__(self, "user_agent", self.user_agent[:USER_AGENT_MAX_LENGTH])

    @property
    def key(self) -> str:
        """Deduplication key: device, OS, IP and the user agent prefix."""
        return "|".join(
            [self.device, self.os, self.ip, self.user_agent[:FINGERPRINT_UA_PREFIX]]
        )


@dataclass(frozen=True)
class GeoLabel(ValueObject):
    """Best-effort location labels for a session."""

    city: str | None = None
    country: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.city and not self.country


# ============================================================================
# Cart Line Input
# ============================================================================


@dataclass(frozen=True)
class LineSpec(ValueObject):
    """A request to add a purchasable unit to a cart.

    A line is identified by its variant id when present, else by the
    (product id, size label) pair. Size label is normalised to an empty
    string when absent.

    Attributes:
        product_id: Catalog product id.
        variant_id: Concrete variant id, if the caller knows it.
        size_label: Size label for non-variant lines.
        quantity: Units to add, at least 1.
        name: Display name snapshot, kept from the existing line when empty.
        price: Unit price snapshot, kept from the existing line when empty.
        image: Image URL snapshot, kept from the existing line when None.
        postponed: Saved-for-later flag, untouched when None.
    """

    product_id: int
    variant_id: int | None = None
    size_label: str = ""
    quantity: int = 1
    name: str | None = None
    price: int | None = None
    image: str | None = None
    postponed: bool | None = None

    def __post_init__(self) -> None:
        """Validate the line identity and quantity."""
        if not isinstance(self.product_id, int) or self.product_id <= 0:
            raise InvalidLineError(
                "A cart line needs a positive product id",
                details={"product_id": self.product_id},
            )
        if self.variant_id is not None and self.variant_id <= 0:
            raise InvalidLineError(
                "Variant id must be positive",
                details={"variant_id": self.variant_id},
            )
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise InvalidQuantityError(self.quantity)
        if self.price is not None and self.price < 0:
            raise InvalidLineError("Price cannot be negative", details={"price": self.price})
        object.__setattr__(self, "size_label", normalize_size(self.size_label))

    @property
    def is_variant(self) -> bool:
        return self.variant_id is not None


def normalize_size(value: str | None) -> str:
    """Normalise a size label for matching."""
    return (value or "").strip()


# ============================================================================
# Checkout Input
# ============================================================================


@dataclass(frozen=True)
class ContactInfo(ValueObject):
    """Recipient contact snapshot stored on an order.

    Every field is trimmed and truncated on construction.
    """

    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    comment: str = ""

    def __post_init__(self) -> None:
        for name, limit in _CONTACT_LIMITS.items():
            object.__setattr__(self, name, _clean(getattr(self, name), limit))


_CONTACT_LIMITS = {
    "full_name": 160,
    "email": 190,
    "phone": 64,
    "address": 255,
    "comment": 1000,
}


@dataclass(frozen=True)
class OrderItemSpec(ValueObject):
    """An explicit checkout line supplied by the caller instead of the cart."""

    product_id: int
    quantity: int
    price: int
    name: str = ""
    variant_id: int | None = None
    size_label: str = ""
    image: str | None = None
    cart_line_id: int | None = None

    def __post_init__(self) -> None:
        if self.product_id <= 0:
            raise InvalidLineError(
                "An order line needs a positive product id",
                details={"product_id": self.product_id},
            )
        if self.quantity < 1:
            raise InvalidQuantityError(self.quantity)
        if self.price < 0:
            raise InvalidLineError("Price cannot be negative", details={"price": self.price})
        object.__setattr__(self, "size_label", normalize_size(self.size_label))


# ============================================================================
# Promo
# ============================================================================


class DiscountKind(str, Enum):
    """How a promo discount is computed."""

    PERCENT = "PERCENT"
    AMOUNT = "AMOUNT"


@dataclass(frozen=True)
class PromoQuote(ValueObject):
    """A validated promo code and the discount it yields for a subtotal."""

    code: str
    kind: DiscountKind
    value: int
    discount: int

    @classmethod
    def compute(cls, code: str, kind: DiscountKind, value: int, subtotal: int) -> Self:
        """Compute the discount, clamped to ``[0, subtotal]``.

        Args:
            code: Normalised promo code.
            kind: Percent or fixed amount.
            value: Percentage points or amount in minor units.
            subtotal: Eligible subtotal in minor units.

        Returns:
            Quote with the clamped discount.
        """
        if kind == DiscountKind.PERCENT:
            discount = (subtotal * value) // 100
        else:
            discount = value
        return cls(code=code, kind=kind, value=value, discount=max(0, min(subtotal, discount)))


# ============================================================================
# Delivery
# ============================================================================


@dataclass(frozen=True)
class DeliveryRequest(ValueObject):
    """Customer request to schedule delivery of an arrived order."""

    scheduled_at: datetime
    address: str
    recipient_name: str
    phone: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", _clean(self.address, 255))
        object.__setattr__(self, "recipient_name", _clean(self.recipient_name, 160))
        phone = re.sub(r"\D", "", self.phone or "")
        if not DELIVERY_PHONE_PATTERN.match(phone):
            raise ValidationError(
                "Phone must be 11 digits starting with 7 or 8",
                details={"phone": self.phone},
            )
        object.__setattr__(self, "phone", phone)
        if not self.address:
            raise ValidationError("Delivery address is required")
        if not self.recipient_name:
            raise ValidationError("Recipient name is required")
