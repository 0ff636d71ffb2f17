"""Tests for domain state machines."""

import pytest

from app.domain import OrderStatus, ShippingStatus
from app.domain.exceptions import InvalidStateTransitionError
from app.domain.state_machines import (
    validate_order_transition,
    validate_shipping_transition,
)


class TestOrderStatus:
    """Tests for OrderStatus state machine."""

    def test_pending_can_succeed(self) -> None:
        """PENDING can transition to SUCCEEDED."""
        assert OrderStatus.PENDING.can_transition_to(OrderStatus.SUCCEEDED)

    def test_pending_can_be_canceled(self) -> None:
        """PENDING can transition to CANCELED."""
        assert OrderStatus.PENDING.can_transition_to(OrderStatus.CANCELED)

    def test_succeeded_is_terminal(self) -> None:
        """SUCCEEDED is a terminal state."""
        assert OrderStatus.SUCCEEDED.is_terminal()
        assert OrderStatus.SUCCEEDED.allowed_transitions() == []

    def test_canceled_is_terminal(self) -> None:
        """CANCELED never becomes SUCCEEDED."""
        assert OrderStatus.CANCELED.is_terminal()
        assert not OrderStatus.CANCELED.can_transition_to(OrderStatus.SUCCEEDED)

    def test_allowed_transitions_from_pending(self) -> None:
        assert OrderStatus.PENDING.allowed_transitions() == [
            OrderStatus.CANCELED,
            OrderStatus.SUCCEEDED,
        ]


class TestShippingStatus:
    """Tests for ShippingStatus state machine."""

    def test_forward_path(self) -> None:
        assert ShippingStatus.PROCESSING.can_transition_to(ShippingStatus.IN_TRANSIT)
        assert ShippingStatus.IN_TRANSIT.can_transition_to(ShippingStatus.ARRIVED)
        assert ShippingStatus.ARRIVED.can_transition_to(ShippingStatus.DELIVERED)

    def test_cannot_skip_steps(self) -> None:
        assert not ShippingStatus.PROCESSING.can_transition_to(ShippingStatus.ARRIVED)

    def test_cannot_go_back(self) -> None:
        assert not ShippingStatus.ARRIVED.can_transition_to(ShippingStatus.IN_TRANSIT)

    def test_only_arrived_accepts_delivery_request(self) -> None:
        assert ShippingStatus.ARRIVED.accepts_delivery_request()
        assert not ShippingStatus.IN_TRANSIT.accepts_delivery_request()
        assert not ShippingStatus.DELIVERED.accepts_delivery_request()


class TestValidationHelpers:
    """Tests for transition validation helpers."""

    def test_valid_order_transition_returns_record(self) -> None:
        transition = validate_order_transition("7", OrderStatus.PENDING, OrderStatus.SUCCEEDED)

        assert transition.entity_type == "Order"
        assert transition.from_state == "PENDING"
        assert transition.to_state == "SUCCEEDED"

    def test_invalid_order_transition_raises(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_order_transition("7", OrderStatus.CANCELED, OrderStatus.SUCCEEDED)

        assert exc_info.value.details["current_state"] == "CANCELED"
        assert exc_info.value.details["allowed_transitions"] == []

    def test_invalid_shipping_transition_raises(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_shipping_transition("7", ShippingStatus.DELIVERED, ShippingStatus.ARRIVED)

        assert exc_info.value.details["entity_type"] == "Shipment"
