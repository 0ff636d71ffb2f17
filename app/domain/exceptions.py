"""Domain exceptions.

All domain-level errors that represent business rule violations.
Each error carries a machine-readable ``error_code``; the API layer maps
error classes to HTTP status codes.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Error Categories
# ============================================================================


class NotFoundError(DomainError):
    """No resolvable record for the given identity."""

    error_code = "NOT_FOUND"


class AuthorizationError(DomainError):
    """Caller may not act on the record, or is not authenticated."""

    error_code = "FORBIDDEN"


class ValidationError(DomainError):
    """Malformed input rejected before touching the store."""

    error_code = "VALIDATION_ERROR"


class PolicyError(DomainError):
    """A business policy forbids the operation right now."""

    error_code = "POLICY_VIOLATION"


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(PolicyError):
    """Raised when an invalid state transition is attempted."""

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Order").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


# ============================================================================
# Cart Errors
# ============================================================================


class CartLineNotFoundError(NotFoundError):
    """Raised when a cart line is not found in the caller's cart."""

    error_code = "CART_LINE_NOT_FOUND"

    def __init__(self, cart_id: int, line_ids: list[int]) -> None:
        """Initialize cart line not found error.

        Args:
            cart_id: ID of the cart.
            line_ids: IDs that could not be resolved in that cart.
        """
        super().__init__(
            f"Cart line(s) {line_ids} not found in cart {cart_id}",
            details={"cart_id": cart_id, "line_ids": line_ids},
        )


class InvalidQuantityError(ValidationError):
    """Raised when an invalid quantity is provided."""

    error_code = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, reason: str = "Quantity must be a positive integer") -> None:
        """Initialize invalid quantity error.

        Args:
            quantity: The invalid quantity value.
            reason: Explanation of why the quantity is invalid.
        """
        super().__init__(
            f"Invalid quantity {quantity}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


class InvalidLineError(ValidationError):
    """Raised when a cart line spec does not identify a purchasable unit."""

    error_code = "INVALID_LINE"


class MissingCartUpdateError(ValidationError):
    """Raised when a line update carries neither quantity nor postponed."""

    error_code = "NOTHING_TO_UPDATE"

    def __init__(self, line_id: int) -> None:
        super().__init__(
            "Either quantity or postponed must be provided",
            details={"line_id": line_id},
        )


# ============================================================================
# Order Errors
# ============================================================================


class EmptyOrderError(ValidationError):
    """Raised when checkout has no purchasable lines."""

    error_code = "EMPTY_ORDER"

    def __init__(self) -> None:
        super().__init__("Cart is empty")


class OrderNotFoundError(NotFoundError):
    """Raised when no order resolves for a confirmation or lookup."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, message: str = "No order to confirm") -> None:
        """Initialize order not found error.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message)


class OrderAccessDeniedError(AuthorizationError):
    """Raised when an order belongs to a different principal.

    The message is deliberately the same as for a missing order.
    """

    error_code = "ORDER_ACCESS_DENIED"

    def __init__(self) -> None:
        super().__init__("Order not found")


class DeliveryNotAllowedError(PolicyError):
    """Raised when delivery cannot be scheduled for an order yet."""

    error_code = "DELIVERY_NOT_ALLOWED"

    def __init__(self, order_id: int, reason: str) -> None:
        """Initialize delivery not allowed error.

        Args:
            order_id: ID of the order.
            reason: Why scheduling is refused.
        """
        super().__init__(
            f"Delivery cannot be requested for order {order_id}: {reason}",
            details={"order_id": order_id, "reason": reason},
        )


# ============================================================================
# Promo Errors
# ============================================================================


class PromoRejectedError(PolicyError):
    """Raised when a promo code cannot be applied."""

    error_code = "PROMO_REJECTED"

    def __init__(self, code: str, reason: str) -> None:
        """Initialize promo rejected error.

        Args:
            code: The promo code.
            reason: Why the code was rejected.
        """
        super().__init__(
            f"Promo code {code} cannot be applied: {reason}",
            details={"code": code, "reason": reason},
        )


# ============================================================================
# Session Errors
# ============================================================================


class SessionNotFoundError(NotFoundError):
    """Raised when a target session does not exist for the principal."""

    error_code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: int) -> None:
        super().__init__(
            f"Session {session_id} not found",
            details={"session_id": session_id},
        )


class SelfRevocationError(PolicyError):
    """Raised when a session tries to revoke itself through revoke-other."""

    error_code = "SELF_REVOCATION"

    def __init__(self, session_id: int) -> None:
        super().__init__(
            "The current session cannot be revoked here, log out instead",
            details={"session_id": session_id},
        )


class RevocationCooldownError(PolicyError):
    """Raised when a fresh non-primary session tries to revoke others."""

    error_code = "REVOCATION_COOLDOWN"

    def __init__(self, hours_left: int) -> None:
        """Initialize cooldown error.

        Args:
            hours_left: Whole hours until the session may revoke others.
        """
        super().__init__(
            f"Other sessions can be revoked in {hours_left} hour(s)",
            details={"cooldown_hours_left": hours_left},
        )
        self.hours_left = hours_left


# ============================================================================
# Authentication Errors
# ============================================================================


class AuthenticationRequiredError(AuthorizationError):
    """Raised when an operation needs an authenticated principal."""

    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class InvalidCredentialsError(AuthorizationError):
    """Raised when email and password do not match."""

    error_code = "INVALID_CREDENTIALS"

    def __init__(self) -> None:
        super().__init__("Invalid email or password")


class AccountDisabledError(AuthorizationError):
    """Raised when a deleted account tries to authenticate."""

    error_code = "ACCOUNT_DISABLED"

    def __init__(self) -> None:
        super().__init__("Account is disabled")


class EmailNotVerifiedError(PolicyError):
    """Raised when login is attempted before the email is verified."""

    error_code = "EMAIL_NOT_VERIFIED"

    def __init__(self, email: str) -> None:
        super().__init__("Email is not verified", details={"email": email})


class AccountExistsError(PolicyError):
    """Raised when registering an email that already has a verified account."""

    error_code = "ACCOUNT_EXISTS"

    def __init__(self, email: str) -> None:
        super().__init__(
            "An account with this email already exists",
            details={"email": email},
        )


class PrincipalNotFoundError(NotFoundError):
    """Raised when no account exists for an email."""

    error_code = "USER_NOT_FOUND"

    def __init__(self, email: str) -> None:
        super().__init__("User not found", details={"email": email})


class InvalidVerificationCodeError(ValidationError):
    """Raised when a verification code is wrong or expired."""

    error_code = "INVALID_VERIFICATION_CODE"


class IncorrectPasswordError(ValidationError):
    """Raised when the current password given for a change does not match."""

    error_code = "INCORRECT_PASSWORD"

    def __init__(self) -> None:
        super().__init__("Current password is incorrect")
