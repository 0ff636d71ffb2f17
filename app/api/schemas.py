"""API schemas for the storefront core.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.domain.state_machines import OrderStatus, ShippingStatus


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional error context")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class SuccessResponse(BaseModel):
    """Plain acknowledgement."""

    success: bool = True


# ============================================================================
# Auth Schemas
# ============================================================================


class RegisterRequest(BaseModel):
    """Request to create an account."""

    email: str = Field(..., max_length=190, description="Login email")
    password: str = Field(..., description="Password, at least 8 characters")
    full_name: str = Field(default="", max_length=160, description="Display name")


class EmailRequest(BaseModel):
    """Request carrying only an email."""

    email: str = Field(..., max_length=190)


class VerifyEmailRequest(BaseModel):
    """Request to verify an email with its code."""

    email: str = Field(..., max_length=190)
    code: str = Field(..., description="Six-digit code from the email")


class LoginRequest(BaseModel):
    """Request to log in."""

    email: str = Field(..., max_length=190)
    password: str


class ChangePasswordRequest(BaseModel):
    """Request to change the password of the signed-in account."""

    current_password: str
    new_password: str = Field(..., description="New password, at least 8 characters")


class PasswordResetCodeRequest(BaseModel):
    """Request carrying a password reset code."""

    code: str = Field(..., description="Six-digit code from the email")


class PasswordResetConfirmRequest(BaseModel):
    """Request to set a new password with a reset code."""

    code: str = Field(..., description="Six-digit code from the email")
    new_password: str = Field(..., description="New password, at least 8 characters")


class PrincipalSchema(BaseModel):
    """Authenticated account."""

    id: int
    email: str
    full_name: str
    role: str
    verified: bool


class RegisterResponse(BaseModel):
    """Response to registration."""

    user: PrincipalSchema
    verification_sent: bool = True


class CodeSentResponse(BaseModel):
    """Response to a verification code request."""

    sent: bool


class AuthResponse(BaseModel):
    """Response to login and email verification."""

    user: PrincipalSchema
    cart_id: int | None = Field(None, description="The account's cart after adoption")
    bound_orders: int = Field(0, description="Guest orders attached to the account")


# ============================================================================
# Cart Schemas
# ============================================================================


class CartLineSchema(BaseModel):
    """A cart line."""

    id: int
    product_id: int
    variant_id: int | None = None
    size_label: str = ""
    quantity: int
    price: int = Field(..., description="Unit price in minor units")
    name: str = ""
    image: str | None = None
    postponed: bool = False
    line_total: int


class CartResponse(BaseModel):
    """A cart with its lines."""

    cart_id: int
    lines: list[CartLineSchema]
    total: int = Field(..., description="Total of non-postponed lines in minor units")
    items_count: int


class CartLineAddRequest(BaseModel):
    """Request to add a purchasable unit to the cart."""

    product_id: int
    variant_id: int | None = None
    size_label: str | None = Field(None, max_length=64)
    quantity: int = 1
    name: str | None = Field(None, max_length=255)
    price: int | None = None
    image: str | None = Field(None, max_length=1000)
    postponed: bool | None = None


class CartLineUpdateRequest(BaseModel):
    """Partial update of a cart line."""

    line_id: int
    quantity: int | None = None
    postponed: bool | None = None


# ============================================================================
# Checkout Schemas
# ============================================================================


class CheckoutItemRequest(BaseModel):
    """Explicit checkout line replacing the cart contents."""

    product_id: int
    quantity: int
    price: int
    name: str = ""
    variant_id: int | None = None
    size_label: str = ""
    image: str | None = None
    cart_line_id: int | None = None


class CheckoutRequest(BaseModel):
    """Request to create an order."""

    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    comment: str = ""
    promo_code: str | None = None
    items: list[CheckoutItemRequest] | None = None


class CheckoutResponse(BaseModel):
    """Created order."""

    order_id: int
    token: str
    subtotal: int
    discount_amount: int
    total: int


class ConfirmRequest(BaseModel):
    """Payment confirmation hints; both optional."""

    order_id: int | None = None
    token: str | None = None


class ConfirmResponse(BaseModel):
    """Payment confirmation result.

    Identical for repeated confirmations of the same order.
    """

    success: bool = True
    order_id: int
    public_number: str
    status: OrderStatus


# ============================================================================
# Order Schemas
# ============================================================================


class OrderLineSchema(BaseModel):
    """Snapshot line of an order."""

    product_id: int
    variant_id: int | None = None
    size_label: str = ""
    quantity: int
    price: int
    name: str = ""
    image: str | None = None


class DeliverySchema(BaseModel):
    """Delivery scheduling metadata."""

    requested_at: datetime
    scheduled_at: datetime | None = None
    address: str | None = None
    recipient_name: str | None = None
    phone: str | None = None


class OrderResponse(BaseModel):
    """Order details."""

    id: int
    public_number: str | None = None
    status: OrderStatus
    shipping_status: ShippingStatus | None = None
    subtotal: int
    discount_amount: int
    total: int
    promo_code: str | None = None
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    created_at: datetime
    paid_at: datetime | None = None
    delivery: DeliverySchema | None = None
    lines: list[OrderLineSchema] = Field(default_factory=list)


class OrdersListResponse(BaseModel):
    """Orders of the caller."""

    orders: list[OrderResponse]
    total: int


class DeliveryRequestBody(BaseModel):
    """Request to schedule delivery of an arrived order."""

    scheduled_at: datetime
    address: str = Field(..., max_length=255)
    recipient_name: str = Field(..., max_length=160)
    phone: str = Field(..., max_length=32)


class ShippingStatusRequest(BaseModel):
    """Internal request to advance shipping."""

    status: ShippingStatus


# ============================================================================
# Session Schemas
# ============================================================================


class SessionSchema(BaseModel):
    """A live device session."""

    id: int
    created_at: datetime
    last_seen_at: datetime
    device: str
    os: str
    ip: str
    city: str | None = None
    country: str | None = None
    is_primary: bool
    is_current: bool


class SessionsListResponse(BaseModel):
    """Live sessions, current first."""

    sessions: list[SessionSchema]
    can_revoke_others: bool
    cooldown_hours_left: int | None = None


class SessionRevokeResponse(BaseModel):
    """Revoked session."""

    session_id: int
    revoked_at: datetime


# ============================================================================
# Webhook and Internal Schemas
# ============================================================================


class WebhookPayload(BaseModel):
    """Incoming payment provider event."""

    event_id: str = Field(..., max_length=100, description="Unique event identifier")
    event_type: str = Field(..., description="Event type (e.g., payment.succeeded)")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")


class WebhookResponse(BaseModel):
    """Response to webhook delivery."""

    success: bool = Field(..., description="Whether event was accepted")
    event_id: str = Field(..., description="Event ID")
    status: str = Field(..., description="Event status (processed, duplicate, failed, ignored)")
    message: str = Field(..., description="Status message")


class DrainResponse(BaseModel):
    """Counts from one relay pass."""

    delivered: int
    retried: int
    failed: int
