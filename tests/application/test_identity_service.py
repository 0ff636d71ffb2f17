"""Tests for IdentityResolver."""

import pytest

from app.application.cart_service import CartLedger
from app.application.identity_service import IdentityResolver, is_well_formed_token
from app.application.order_service import OrderStateMachine
from app.application.session_service import SessionRegistry
from app.domain import ContactInfo, Fingerprint, Identity, LineSpec, OrderItemSpec

DEVICE = Fingerprint(device="Desktop", os="Linux", ip="203.0.113.7", user_agent="Mozilla/5.0")
CART_TOKEN = "3f2b8c1e-anon-cart"


@pytest.fixture
def resolver(session, clock) -> IdentityResolver:
    return IdentityResolver(session, registry=SessionRegistry(session, clock=clock))


class TestTokenFormat:
    @pytest.mark.parametrize("token", ["3f2b8c1e-anon-cart", "a" * 64, "0b5a2c1d-9e8f-4a7b-8c6d-5e4f3a2b1c0d"])
    def test_accepts_issued_shapes(self, token) -> None:
        assert is_well_formed_token(token)

    @pytest.mark.parametrize("token", [None, "", "short", "has spaces in it", "x" * 129])
    def test_rejects_malformed(self, token) -> None:
        assert not is_well_formed_token(token)


# ============================================================================
# Resolution
# ============================================================================


class TestResolve:
    """Tests for request credential resolution."""

    @pytest.mark.asyncio
    async def test_anonymous_without_credentials(self, resolver) -> None:
        identity = await resolver.resolve(None, None)

        assert identity.principal_id is None
        assert identity.cart_token_minted
        assert is_well_formed_token(identity.cart_token)

    @pytest.mark.asyncio
    async def test_presented_cart_token_is_kept(self, resolver) -> None:
        identity = await resolver.resolve(None, CART_TOKEN)

        assert identity.cart_token == CART_TOKEN
        assert not identity.cart_token_minted

    @pytest.mark.asyncio
    async def test_malformed_cart_token_is_replaced(self, resolver) -> None:
        identity = await resolver.resolve(None, "bad token")

        assert identity.cart_token != "bad token"
        assert identity.cart_token_minted

    @pytest.mark.asyncio
    async def test_session_resolves_principal(self, session, resolver, make_user) -> None:
        user = await make_user(session)
        device_session = await resolver.registry.create_session(user.id, DEVICE)

        identity = await resolver.resolve(device_session.token, CART_TOKEN)

        assert identity.principal_id == user.id
        assert identity.session_id == device_session.id
        assert identity.session_token == device_session.token

    @pytest.mark.asyncio
    async def test_revoked_session_is_anonymous(self, session, resolver, make_user) -> None:
        user = await make_user(session)
        device_session = await resolver.registry.create_session(user.id, DEVICE)
        await resolver.registry.revoke(device_session.token)

        identity = await resolver.resolve(device_session.token, CART_TOKEN)

        assert identity.principal_id is None
        assert identity.session_token is None

    @pytest.mark.asyncio
    async def test_deleted_principal_is_anonymous(self, session, resolver, clock, make_user) -> None:
        user = await make_user(session)
        device_session = await resolver.registry.create_session(user.id, DEVICE)
        user.deleted_at = clock()
        await session.commit()

        identity = await resolver.resolve(device_session.token, CART_TOKEN)

        assert identity.principal_id is None


# ============================================================================
# Adoption
# ============================================================================


class TestAdoption:
    """Tests for attaching anonymous state after authentication."""

    @pytest.mark.asyncio
    async def test_anonymous_cart_is_adopted(self, session, resolver, make_user) -> None:
        user = await make_user(session)
        ledger = CartLedger(session)
        anon_cart = await ledger.get_or_create(Identity(principal_id=None, cart_token=CART_TOKEN))
        await ledger.upsert_line(anon_cart, LineSpec(product_id=10, quantity=2))

        cart = await resolver.adopt_cart(user.id, CART_TOKEN)

        assert cart.id == anon_cart.id
        assert cart.user_id == user.id
        assert [line.quantity for line in cart.lines] == [2]

    @pytest.mark.asyncio
    async def test_adopted_cart_leaves_token_scope(self, session, resolver, make_user) -> None:
        user = await make_user(session)
        ledger = CartLedger(session)
        anon_cart = await ledger.get_or_create(Identity(principal_id=None, cart_token=CART_TOKEN))

        await resolver.adopt_cart(user.id, CART_TOKEN)
        fresh = await ledger.get_or_create(Identity(principal_id=None, cart_token=CART_TOKEN))

        assert fresh.id != anon_cart.id
        assert fresh.lines == []

    @pytest.mark.asyncio
    async def test_owned_cart_is_never_merged(self, session, resolver, make_user) -> None:
        user = await make_user(session)
        ledger = CartLedger(session)
        own = await resolver.adopt_cart(user.id, None)
        anon_cart = await ledger.get_or_create(Identity(principal_id=None, cart_token=CART_TOKEN))
        await ledger.upsert_line(anon_cart, LineSpec(product_id=10))

        cart = await resolver.adopt_cart(user.id, CART_TOKEN)

        assert cart.id == own.id
        assert cart.lines == []
        assert len(await ledger.list_lines(anon_cart)) == 1

    @pytest.mark.asyncio
    async def test_guest_orders_are_bound(self, session, resolver, clock, make_user) -> None:
        user = await make_user(session)
        orders = OrderStateMachine(session, clock=clock)
        guest = Identity(principal_id=None, cart_token=CART_TOKEN)
        created = await orders.create(
            guest, ContactInfo(full_name="Ann"), items=[OrderItemSpec(product_id=1, quantity=1, price=100)]
        )

        bound = await resolver.bind_guest_orders(user.id, created.token)

        assert bound == 1
        owned = await orders.list_orders(Identity(principal_id=user.id, cart_token=CART_TOKEN))
        assert [order.id for order in owned] == [created.order_id]
        assert await orders.list_orders(guest, order_token=created.token) == []

    @pytest.mark.asyncio
    async def test_malformed_order_token_binds_nothing(self, session, resolver, make_user) -> None:
        user = await make_user(session)

        assert await resolver.bind_guest_orders(user.id, "nope") == 0

    @pytest.mark.asyncio
    async def test_on_authenticated_runs_both_steps(self, session, resolver, clock, make_user) -> None:
        user = await make_user(session)
        ledger = CartLedger(session)
        anon_cart = await ledger.get_or_create(Identity(principal_id=None, cart_token=CART_TOKEN))
        created = await OrderStateMachine(session, clock=clock).create(
            Identity(principal_id=None, cart_token=CART_TOKEN),
            ContactInfo(full_name="Ann"),
            items=[OrderItemSpec(product_id=1, quantity=1, price=100)],
        )

        result = await resolver.on_authenticated(user.id, CART_TOKEN, created.token)

        assert result.cart.id == anon_cart.id
        assert result.bound_orders == 1
