"""Tests for domain records and events."""

from datetime import datetime, timedelta, timezone

import pytest

from app.domain import (
    Cart,
    CartLine,
    CartLineAdded,
    DeviceSession,
    Order,
    OrderConfirmed,
    OrderStatus,
    Principal,
    get_event_class,
)
from app.domain.exceptions import InvalidQuantityError, ValidationError


class TestPrincipal:
    def test_requires_email(self) -> None:
        with pytest.raises(ValidationError):
            Principal(id=1, email="not-an-email")

    def test_verification_flag(self) -> None:
        principal = Principal(id=1, email="a@example.com")
        assert not principal.is_verified
        principal.verified_at = datetime.now(timezone.utc)
        assert principal.is_verified


class TestCart:
    """Tests for Cart and CartLine records."""

    def test_cart_needs_owner_or_token(self) -> None:
        with pytest.raises(ValidationError):
            Cart(id=1, user_id=None, token=None)

    def test_line_quantity_must_be_positive(self) -> None:
        with pytest.raises(InvalidQuantityError):
            CartLine(id=1, cart_id=1, product_id=10, quantity=0)

    def test_total_excludes_postponed_lines(self) -> None:
        cart = Cart(
            id=1,
            user_id=None,
            token="cart-token-1",
            lines=[
                CartLine(id=1, cart_id=1, product_id=10, quantity=2, price=500),
                CartLine(id=2, cart_id=1, product_id=11, quantity=1, price=900, postponed=True),
            ],
        )
        assert cart.total == 1000
        assert [line.id for line in cart.billable_lines] == [1]

    def test_records_compare_by_id(self) -> None:
        first = CartLine(id=5, cart_id=1, product_id=10, quantity=1)
        second = CartLine(id=5, cart_id=1, product_id=99, quantity=3)
        assert first == second


class TestOrder:
    def test_rejects_negative_total(self) -> None:
        with pytest.raises(ValidationError):
            Order(
                id=1,
                user_id=None,
                token="t",
                status=OrderStatus.PENDING,
                subtotal=100,
                total=-1,
            )

    def test_is_succeeded(self) -> None:
        order = Order(
            id=1, user_id=None, token="t", status=OrderStatus.SUCCEEDED, subtotal=1, total=1
        )
        assert order.is_succeeded


class TestDeviceSession:
    def test_age(self) -> None:
        created = datetime(2026, 1, 1, tzinfo=timezone.utc)
        device_session = DeviceSession(
            id=1,
            user_id=1,
            token="tok",
            is_primary=False,
            created_at=created,
            last_seen_at=created,
        )
        assert device_session.age(created + timedelta(hours=3)) == timedelta(hours=3)
        assert not device_session.is_revoked


class TestEvents:
    """Tests for domain event serialization."""

    def test_event_to_dict(self) -> None:
        event = OrderConfirmed(
            aggregate_id="12",
            aggregate_type="Order",
            order_id=12,
            public_number="STG-000012",
            total=4200,
        )
        data = event.to_dict()

        assert data["event_type"] == "order.confirmed"
        assert data["aggregate_id"] == "12"
        assert data["payload"]["public_number"] == "STG-000012"
        assert data["payload"]["total"] == 4200

    def test_registry_lookup(self) -> None:
        assert get_event_class("cart.line_added") is CartLineAdded
        assert get_event_class("unknown.event") is None
