"""End-to-end storefront scenarios.

Covers the identity reconciliation flows across several requests:
1. Anonymous cart adopted on login
2. Anonymous cart adopted on email verification
3. Guest order bound on login
4. Paid order through shipping to delivery
5. Webhook and browser confirmation racing
"""

import json

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.dependencies import CART_COOKIE, ORDER_COOKIE
from app.application.webhook_service import WebhookSignatureVerifier
from app.infrastructure.config import settings
from app.infrastructure.models import UserModel, VerificationCodeModel


# ============================================================================
# Scenario 1: Anonymous cart adopted on login
# ============================================================================


class TestScenario1CartAdoptionOnLogin:
    """Lines added before login end up in the account's cart."""

    def test_adopted_cart_is_not_reachable_by_old_token(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        cart = client.post("/cart", json={"product_id": 10, "size_label": "L", "price": 1900}).json()
        old_token = client.cookies[CART_COOKIE]

        auth = login(client)
        assert auth.json()["cart_id"] == cart["cart_id"]

        # Another browser presenting the stale token gets a fresh, empty cart
        stranger = other_client.get("/cart", headers={"X-Cart-Token": old_token}).json()
        assert stranger["cart_id"] != cart["cart_id"]
        assert stranger["lines"] == []

        # The account keeps the adopted lines in later requests
        account_cart = client.get("/cart").json()
        assert account_cart["cart_id"] == cart["cart_id"]
        assert account_cart["lines"][0]["size_label"] == "L"

    def test_logout_starts_a_new_anonymous_cart(self, client: TestClient, seed_user, login) -> None:
        seed_user()
        cart_id = client.post("/cart", json={"product_id": 10, "price": 1900}).json()["cart_id"]
        login(client)

        client.post("/auth/logout")
        after = client.get("/cart").json()

        assert after["cart_id"] != cart_id
        assert after["lines"] == []

    def test_account_cart_wins_over_later_anonymous_cart(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        login(client)
        account_cart = client.post("/cart", json={"product_id": 10, "price": 500}).json()

        other_client.post("/cart", json={"product_id": 20, "price": 700})
        auth = login(other_client)

        assert auth.json()["cart_id"] == account_cart["cart_id"]
        lines = other_client.get("/cart").json()["lines"]
        assert [line["product_id"] for line in lines] == [10]


# ============================================================================
# Scenario 2: Anonymous cart adopted on email verification
# ============================================================================


class TestScenario2CartAdoptionOnVerification:
    """Registration keeps the shopper's anonymous cart."""

    def test_register_verify_keeps_cart(self, client: TestClient, db: Session) -> None:
        cart_id = client.post("/cart", json={"product_id": 30, "quantity": 2, "price": 450}).json()["cart_id"]

        client.post(
            "/auth/register",
            json={"email": "fresh@example.com", "password": "fresh-password", "full_name": "Fresh"},
        )
        user = db.scalar(select(UserModel).where(UserModel.email == "fresh@example.com"))
        code = db.scalar(select(VerificationCodeModel.code).where(VerificationCodeModel.user_id == user.id))
        verified = client.post("/auth/verify-email", json={"email": "fresh@example.com", "code": code})

        assert verified.status_code == 200
        assert verified.json()["cart_id"] == cart_id
        assert client.get("/cart").json()["total"] == 900


# ============================================================================
# Scenario 3: Guest order bound on login
# ============================================================================


class TestScenario3GuestOrderBinding:
    """Orders placed as a guest appear in the account after login."""

    def test_guest_order_visible_after_login(self, client: TestClient, seed_user, login) -> None:
        seed_user()
        client.post("/cart", json={"product_id": 10, "price": 2100})
        order_id = client.post("/checkout", json={"full_name": "Guest Ann"}).json()["order_id"]
        client.post("/checkout/confirm")

        auth = login(client)
        assert auth.json()["bound_orders"] == 1

        orders = client.get("/orders").json()
        assert orders["total"] == 1
        assert orders["orders"][0]["id"] == order_id
        assert orders["orders"][0]["status"] == "SUCCEEDED"

    def test_binding_happens_once(
        self, client: TestClient, other_client: TestClient, seed_user, login
    ) -> None:
        seed_user()
        seed_user(email="second@example.com")
        client.post("/cart", json={"product_id": 10, "price": 2100})
        token = client.post("/checkout", json={"full_name": "Guest Ann"}).json()["token"]
        login(client)

        # A second account presenting the same token claims nothing
        auth = login(other_client, email="second@example.com", headers={"Cookie": f"{ORDER_COOKIE}={token}"})

        assert auth.json()["bound_orders"] == 0
        assert other_client.get("/orders").json()["total"] == 0


# ============================================================================
# Scenario 4: Paid order through shipping to delivery
# ============================================================================


class TestScenario4Delivery:
    """A paid order is shipped, arrives and gets a delivery slot."""

    def test_full_delivery_flow(self, client: TestClient, seed_user, login, internal_headers) -> None:
        seed_user()
        login(client)
        client.post("/cart", json={"product_id": 10, "price": 4000})
        order_id = client.post("/checkout", json={"full_name": "Ann"}).json()["order_id"]
        client.post("/checkout/confirm", json={"order_id": order_id})

        for step in ("IN_TRANSIT", "ARRIVED"):
            response = client.post(
                f"/internal/orders/{order_id}/shipping-status",
                json={"status": step},
                headers=internal_headers,
            )
            assert response.json()["shipping_status"] == step

        delivery = client.post(
            f"/orders/{order_id}/delivery",
            json={
                "scheduled_at": "2030-01-15T09:00:00+00:00",
                "address": "Harbour rd. 5",
                "recipient_name": "Ann",
                "phone": "8 999 765 43 21",
            },
        )
        assert delivery.status_code == 200

        done = client.post(
            f"/internal/orders/{order_id}/shipping-status",
            json={"status": "DELIVERED"},
            headers=internal_headers,
        )
        assert done.json()["shipping_status"] == "DELIVERED"
        assert done.json()["delivery"]["address"] == "Harbour rd. 5"


# ============================================================================
# Scenario 5: Webhook and browser confirmation racing
# ============================================================================


class TestScenario5ConfirmationRace:
    """The provider webhook and the browser redirect confirm the same order."""

    def test_both_paths_converge(self, client: TestClient, internal_headers) -> None:
        client.post("/cart", json={"product_id": 10, "quantity": 3, "price": 1000})
        order = client.post("/checkout", json={"full_name": "Ann"}).json()

        browser = client.post("/checkout/confirm")
        body = json.dumps(
            {
                "event_id": "evt_race",
                "event_type": "payment.succeeded",
                "data": {"order_id": order["order_id"], "order_token": order["token"]},
            }
        ).encode()
        webhook = client.post(
            "/webhooks/payments",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Webhook-Signature": WebhookSignatureVerifier(settings.webhook_secret).sign(body),
            },
        )
        replay = client.post("/checkout/confirm")

        assert webhook.json()["success"] is True
        assert replay.json() == browser.json()
        assert client.get("/cart").json()["lines"] == []

        drained = client.post("/internal/outbox/drain", headers=internal_headers).json()
        assert drained["failed"] == 0
