"""State machines for order lifecycle.

Orders move through a small payment lifecycle; successful orders then
carry an independent shipping lifecycle used for delivery scheduling.
"""

from dataclasses import dataclass
from enum import Enum

from app.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Order Status
# ============================================================================


class OrderStatus(str, Enum):
    """Order payment lifecycle states.

    State diagram:
        PENDING ──confirm──► SUCCEEDED
           │
           └──sibling succeeded──► CANCELED

    Both SUCCEEDED and CANCELED are terminal.
    """

    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    CANCELED = "CANCELED"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states.

        Returns:
            List of states that can be transitioned to.
        """
        return sorted(_ORDER_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state.

        Returns:
            True if no transitions are possible.
        """
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0


_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.SUCCEEDED, OrderStatus.CANCELED},
    OrderStatus.SUCCEEDED: set(),
    OrderStatus.CANCELED: set(),
}


# ============================================================================
# Shipping Status
# ============================================================================


class ShippingStatus(str, Enum):
    """Shipping lifecycle layered on top of a SUCCEEDED order.

    State diagram:
        PROCESSING ─► IN_TRANSIT ─► ARRIVED ─► DELIVERED
    """

    PROCESSING = "PROCESSING"
    IN_TRANSIT = "IN_TRANSIT"
    ARRIVED = "ARRIVED"
    DELIVERED = "DELIVERED"

    def can_transition_to(self, target: "ShippingStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _SHIPPING_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["ShippingStatus"]:
        """Get list of valid target states."""
        return sorted(_SHIPPING_TRANSITIONS.get(self, set()), key=lambda s: s.value)

    def accepts_delivery_request(self) -> bool:
        """Whether the customer can schedule a delivery in this state."""
        return self == ShippingStatus.ARRIVED


_SHIPPING_TRANSITIONS: dict[ShippingStatus, set[ShippingStatus]] = {
    ShippingStatus.PROCESSING: {ShippingStatus.IN_TRANSIT},
    ShippingStatus.IN_TRANSIT: {ShippingStatus.ARRIVED},
    ShippingStatus.ARRIVED: {ShippingStatus.DELIVERED},
    ShippingStatus.DELIVERED: set(),
}


# ============================================================================
# State Transition Record
# ============================================================================


@dataclass(frozen=True)
class StateTransition:
    """Record of a state transition.

    Attributes:
        entity_type: Type of entity that transitioned.
        entity_id: ID of the entity.
        from_state: Previous state.
        to_state: New state.
    """

    entity_type: str
    entity_id: str
    from_state: str
    to_state: str


# ============================================================================
# Validation Helpers
# ============================================================================


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> StateTransition:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Returns:
        The validated transition.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
    return StateTransition(
        entity_type="Order",
        entity_id=order_id,
        from_state=current_status.value,
        to_state=target_status.value,
    )


def validate_shipping_transition(
    order_id: str,
    current_status: ShippingStatus,
    target_status: ShippingStatus,
) -> StateTransition:
    """Validate and raise if shipping state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current shipping status.
        target_status: Target shipping status.

    Returns:
        The validated transition.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Shipment",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
    return StateTransition(
        entity_type="Shipment",
        entity_id=order_id,
        from_state=current_status.value,
        to_state=target_status.value,
    )
