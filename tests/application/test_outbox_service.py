"""Tests for the outbox relay and its external clients."""

import json

import httpx
import pytest
from sqlalchemy import select

from app.application.cart_service import CartLedger
from app.application.outbox_service import OutboxRelay
from app.application.session_service import SessionRegistry
from app.domain import Fingerprint, GeoLabel, Identity, LineSpec
from app.infrastructure.geo import GeoLocator, is_public_ip
from app.infrastructure.models import DeviceSessionModel, OutboxEventModel
from app.infrastructure.notifier import AnalyticsClient, DeliveryError, NotificationDispatcher


class Recorder:
    """httpx mock handler that records requests and replies with a fixed status."""

    def __init__(self, status_code: int = 200, body: dict | None = None) -> None:
        self.status_code = status_code
        self.body = body or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def silent_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher(bot_token="", chat_id="", mailer_url="")


async def outbox_rows(session) -> list[OutboxEventModel]:
    result = await session.execute(
        select(OutboxEventModel).order_by(OutboxEventModel.id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def stage_cart_event(session) -> None:
    ledger = CartLedger(session)
    cart = await ledger.get_or_create(Identity(principal_id=None, cart_token="anon-cart-token-1"))
    await ledger.upsert_line(cart, LineSpec(product_id=10, quantity=2, price=300))


# ============================================================================
# Relay
# ============================================================================


class TestOutboxRelay:
    """Tests for draining staged events."""

    @pytest.mark.asyncio
    async def test_delivers_analytics_event(self, session) -> None:
        await stage_cart_event(session)
        analytics = Recorder()
        relay = OutboxRelay(
            session,
            dispatcher=silent_dispatcher(),
            analytics=AnalyticsClient(base_url="http://analytics.test", api_key="k", transport=analytics.transport),
        )

        result = await relay.drain_once()

        assert result.delivered == 1
        [request] = analytics.requests
        assert request.url.path == "/api/v1/events/batch"
        assert request.headers["X-Events-Api-Key"] == "k"
        [event] = json.loads(request.content)["events"]
        assert event["type"] == "add_to_cart"
        assert event["anonymous_id"] == "anon-cart-token-1"
        [row] = await outbox_rows(session)
        assert row.status == "delivered"
        assert row.attempts == 1

    @pytest.mark.asyncio
    async def test_failure_is_retried_then_failed(self, session) -> None:
        await stage_cart_event(session)
        analytics = Recorder(status_code=503)
        relay = OutboxRelay(
            session,
            dispatcher=silent_dispatcher(),
            analytics=AnalyticsClient(base_url="http://analytics.test", api_key="k", transport=analytics.transport),
            max_attempts=2,
        )

        first = await relay.drain_once()
        [row] = await outbox_rows(session)
        assert first.retried == 1
        assert row.status == "pending"
        assert "HTTP 503" in row.last_error

        second = await relay.drain_once()
        [row] = await outbox_rows(session)
        assert second.failed == 1
        assert row.status == "failed"
        assert row.attempts == 2

        assert (await relay.drain_once()).processed == 0

    @pytest.mark.asyncio
    async def test_unconfigured_targets_still_deliver(self, session) -> None:
        await stage_cart_event(session)
        relay = OutboxRelay(
            session,
            dispatcher=silent_dispatcher(),
            analytics=AnalyticsClient(base_url="", api_key=""),
        )

        result = await relay.drain_once()

        assert result.delivered == 1

    @pytest.mark.asyncio
    async def test_geo_lookup_updates_session(self, session, clock, make_user) -> None:
        user = await make_user(session)
        created = await SessionRegistry(session, clock=clock).create_session(
            user.id, Fingerprint(ip="8.8.8.8", user_agent="Mozilla/5.0")
        )
        geo = Recorder(body={"city": "Mountain View", "country_name": "United States"})
        relay = OutboxRelay(
            session,
            dispatcher=silent_dispatcher(),
            analytics=AnalyticsClient(base_url="", api_key=""),
            geo=GeoLocator(base_url="http://geo.test", api_key="", transport=geo.transport),
        )

        result = await relay.drain_once()

        assert result.delivered == 1
        assert geo.requests[0].url.path == "/8.8.8.8/json/"
        row = await session.get(DeviceSessionModel, created.id, populate_existing=True)
        assert row.city == "Mountain View"
        assert row.country == "United States"


# ============================================================================
# External clients
# ============================================================================


class TestNotificationDispatcher:
    """Tests for staff notifications and verification mail."""

    @pytest.mark.asyncio
    async def test_order_confirmed_posts_escaped_message(self) -> None:
        telegram = Recorder()
        dispatcher = NotificationDispatcher(
            bot_token="123abc", chat_id="42", mailer_url="", transport=telegram.transport
        )

        sent = await dispatcher.order_confirmed(
            {"order_id": 7, "public_number": "STG-000007", "total": 4200, "full_name": "Ann <b>"}
        )

        assert sent
        [request] = telegram.requests
        assert request.url.path == "/bot123abc/sendMessage"
        body = json.loads(request.content)
        assert body["chat_id"] == "42"
        assert "STG-000007" in body["text"]
        assert "Ann &lt;b&gt;" in body["text"]

    @pytest.mark.asyncio
    async def test_unconfigured_telegram_is_skipped(self) -> None:
        assert not await silent_dispatcher().order_confirmed({"order_id": 7})

    @pytest.mark.asyncio
    async def test_password_reset_code_uses_its_template(self) -> None:
        mailer = Recorder()
        dispatcher = NotificationDispatcher(
            bot_token="", chat_id="", mailer_url="http://mailer.test/send", transport=mailer.transport
        )

        assert await dispatcher.password_reset_code({"email": "ann@example.com", "code": "654321"})

        [request] = mailer.requests
        assert json.loads(request.content) == {
            "to": "ann@example.com",
            "template": "password_reset_code",
            "variables": {"code": "654321"},
        }

    @pytest.mark.asyncio
    async def test_upstream_error_raises(self) -> None:
        mailer = Recorder(status_code=500)
        dispatcher = NotificationDispatcher(
            bot_token="", chat_id="", mailer_url="http://mailer.test/send", transport=mailer.transport
        )

        with pytest.raises(DeliveryError) as exc_info:
            await dispatcher.verification_code({"email": "ann@example.com", "code": "123456"})
        assert exc_info.value.target == "mailer"


class TestGeoLocator:
    """Tests for best-effort geolocation."""

    @pytest.mark.parametrize(
        ("ip", "expected"),
        [("8.8.8.8", True), ("10.0.0.1", False), ("127.0.0.1", False), ("not-an-ip", False), (None, False)],
    )
    def test_is_public_ip(self, ip, expected) -> None:
        assert is_public_ip(ip) is expected

    @pytest.mark.asyncio
    async def test_private_address_is_not_looked_up(self) -> None:
        geo = Recorder()
        locator = GeoLocator(base_url="http://geo.test", transport=geo.transport)

        assert await locator.lookup("192.168.1.10") == GeoLabel()
        assert geo.requests == []

    @pytest.mark.asyncio
    async def test_transport_error_degrades_to_empty(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        locator = GeoLocator(base_url="http://geo.test", transport=httpx.MockTransport(refuse))

        assert (await locator.lookup("8.8.8.8")).is_empty
