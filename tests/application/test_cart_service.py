"""Tests for CartLedger."""

import pytest
from sqlalchemy import func, select

from app.application.cart_service import CartLedger
from app.domain import Identity, LineSpec, OrderLine
from app.domain.exceptions import (
    CartLineNotFoundError,
    InvalidQuantityError,
    MissingCartUpdateError,
)
from app.infrastructure.models import CartLineModel, CartModel, OutboxEventModel


def anonymous(token: str = "anon-cart-token-1") -> Identity:
    return Identity(principal_id=None, cart_token=token)


def order_line(product_id: int, quantity: int, size_label: str = "", cart_line_id: int | None = None, line_id: int = 1) -> OrderLine:
    return OrderLine(
        id=line_id,
        order_id=1,
        product_id=product_id,
        quantity=quantity,
        price=100,
        size_label=size_label,
        cart_line_id=cart_line_id,
    )


# ============================================================================
# Cart resolution
# ============================================================================


class TestGetOrCreate:
    """Tests for cart resolution."""

    @pytest.mark.asyncio
    async def test_creates_anonymous_cart_once(self, session) -> None:
        ledger = CartLedger(session)

        first = await ledger.get_or_create(anonymous())
        second = await ledger.get_or_create(anonymous())

        assert first.id == second.id
        assert first.user_id is None
        assert first.token == "anon-cart-token-1"

    @pytest.mark.asyncio
    async def test_different_tokens_get_different_carts(self, session) -> None:
        ledger = CartLedger(session)

        first = await ledger.get_or_create(anonymous("token-aaaaaaaa"))
        second = await ledger.get_or_create(anonymous("token-bbbbbbbb"))

        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_principal_adopts_unowned_token_cart(self, session, make_user) -> None:
        user = await make_user(session)
        ledger = CartLedger(session)
        anon_cart = await ledger.get_or_create(anonymous())

        owned = await ledger.get_or_create(Identity(principal_id=user.id, cart_token="anon-cart-token-1"))

        assert owned.id == anon_cart.id
        assert owned.user_id == user.id
        assert owned.token is None

    @pytest.mark.asyncio
    async def test_principal_with_cart_keeps_it(self, session, make_user) -> None:
        user = await make_user(session)
        ledger = CartLedger(session)
        own = await ledger.get_or_create(Identity(principal_id=user.id, cart_token="other-token-1"))
        anon_cart = await ledger.get_or_create(anonymous())

        resolved = await ledger.get_or_create(Identity(principal_id=user.id, cart_token="anon-cart-token-1"))

        assert resolved.id == own.id
        assert resolved.id != anon_cart.id

    @pytest.mark.asyncio
    async def test_find_does_not_create(self, session) -> None:
        assert await CartLedger(session).find(anonymous()) is None


# ============================================================================
# Line upsert
# ============================================================================


class TestUpsertLine:
    """Tests for merge-or-insert of cart lines."""

    @pytest.mark.asyncio
    async def test_same_product_and_size_merges(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        for quantity in (1, 2, 4):
            lines = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M", quantity=quantity))

        assert len(lines) == 1
        assert lines[0].quantity == 7

    @pytest.mark.asyncio
    async def test_size_label_is_trimmed_before_matching(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M"))
        lines = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label=" M "))

        assert len(lines) == 1
        assert lines[0].quantity == 2

    @pytest.mark.asyncio
    async def test_same_variant_merges(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        await ledger.upsert_line(cart, LineSpec(product_id=10, variant_id=501, quantity=2))
        lines = await ledger.upsert_line(cart, LineSpec(product_id=10, variant_id=501, quantity=3))

        assert len(lines) == 1
        assert lines[0].quantity == 5

    @pytest.mark.asyncio
    async def test_different_sizes_are_separate_lines(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M"))
        lines = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="L"))

        assert sorted(line.size_label for line in lines) == ["L", "M"]

    @pytest.mark.asyncio
    async def test_merge_keeps_snapshot_fields_when_not_supplied(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        await ledger.upsert_line(
            cart,
            LineSpec(product_id=10, size_label="M", name="Linen shirt", price=4900, image="/a.jpg"),
        )
        lines = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M"))

        assert lines[0].name == "Linen shirt"
        assert lines[0].price == 4900
        assert lines[0].image == "/a.jpg"

    @pytest.mark.asyncio
    async def test_merge_overwrites_supplied_fields(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        await ledger.upsert_line(cart, LineSpec(product_id=10, name="Old", price=100))
        lines = await ledger.upsert_line(
            cart, LineSpec(product_id=10, name="New", price=250, postponed=True)
        )

        assert lines[0].name == "New"
        assert lines[0].price == 250
        assert lines[0].postponed is True

    @pytest.mark.asyncio
    async def test_upsert_stages_analytics_event(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        await ledger.upsert_line(cart, LineSpec(product_id=10, quantity=2, price=300))

        result = await session.execute(select(OutboxEventModel))
        events = result.scalars().all()
        assert [event.event_type for event in events] == ["cart.line_added"]
        assert events[0].payload["quantity"] == 2
        assert events[0].payload["cart_token"] == "anon-cart-token-1"


# ============================================================================
# Line updates and removal
# ============================================================================


class TestUpdateAndRemove:
    """Tests for partial updates and scoped deletion."""

    @pytest.mark.asyncio
    async def test_set_quantity(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10))

        lines = await ledger.set_quantity_or_postponed(cart, line.id, quantity=4)

        assert lines[0].quantity == 4

    @pytest.mark.asyncio
    async def test_set_postponed(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10))

        lines = await ledger.set_quantity_or_postponed(cart, line.id, postponed=True)

        assert lines[0].postponed is True

    @pytest.mark.asyncio
    async def test_update_requires_a_field(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10))

        with pytest.raises(MissingCartUpdateError):
            await ledger.set_quantity_or_postponed(cart, line.id)

    @pytest.mark.asyncio
    async def test_update_rejects_zero_quantity(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10))

        with pytest.raises(InvalidQuantityError):
            await ledger.set_quantity_or_postponed(cart, line.id, quantity=0)

    @pytest.mark.asyncio
    async def test_update_of_foreign_line_is_not_found(self, session) -> None:
        ledger = CartLedger(session)
        mine = await ledger.get_or_create(anonymous("token-aaaaaaaa"))
        theirs = await ledger.get_or_create(anonymous("token-bbbbbbbb"))
        [foreign] = await ledger.upsert_line(theirs, LineSpec(product_id=10))

        with pytest.raises(CartLineNotFoundError):
            await ledger.set_quantity_or_postponed(mine, foreign.id, quantity=3)

    @pytest.mark.asyncio
    async def test_remove_lines(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        await ledger.upsert_line(cart, LineSpec(product_id=10))
        lines = await ledger.upsert_line(cart, LineSpec(product_id=11))

        remaining = await ledger.remove_lines(cart, [lines[0].id])

        assert [line.product_id for line in remaining] == [11]

    @pytest.mark.asyncio
    async def test_remove_ignores_missing_ids(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        lines = await ledger.upsert_line(cart, LineSpec(product_id=10))

        remaining = await ledger.remove_lines(cart, [lines[0].id, 9999])

        assert remaining == []

    @pytest.mark.asyncio
    async def test_remove_rejects_foreign_lines(self, session) -> None:
        ledger = CartLedger(session)
        mine = await ledger.get_or_create(anonymous("token-aaaaaaaa"))
        theirs = await ledger.get_or_create(anonymous("token-bbbbbbbb"))
        [own] = await ledger.upsert_line(mine, LineSpec(product_id=10))
        [foreign] = await ledger.upsert_line(theirs, LineSpec(product_id=10))

        with pytest.raises(CartLineNotFoundError):
            await ledger.remove_lines(mine, [own.id, foreign.id])

        count = await session.scalar(select(func.count()).select_from(CartLineModel))
        assert count == 2


# ============================================================================
# Post-payment cleanup
# ============================================================================


class TestPurgePurchased:
    """Tests for removing purchased quantities."""

    @pytest.mark.asyncio
    async def test_fallback_decrements_remaining_quantity(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M", quantity=5))

        result = await ledger.purge_purchased(cart, [order_line(10, 2, size_label="M")])

        lines = await ledger.list_lines(cart)
        assert lines[0].quantity == 3
        assert result.decremented_line_ids == [lines[0].id]

    @pytest.mark.asyncio
    async def test_fallback_deletes_fully_purchased_line(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M", quantity=2))

        result = await ledger.purge_purchased(cart, [order_line(10, 2, size_label="M")])

        assert await ledger.list_lines(cart) == []
        assert result.deleted_line_ids == [line.id]

    @pytest.mark.asyncio
    async def test_back_reference_deletes_line_outright(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10, quantity=5))

        await ledger.purge_purchased(cart, [order_line(10, 1, cart_line_id=line.id)])

        assert await ledger.list_lines(cart) == []

    @pytest.mark.asyncio
    async def test_back_reference_uses_origin_cart_when_unresolved(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10))

        await ledger.purge_purchased(None, [order_line(10, 1, cart_line_id=line.id)], origin_cart_id=cart.id)

        assert await ledger.list_lines(cart) == []

    @pytest.mark.asyncio
    async def test_back_reference_to_another_cart_is_left_alone(self, session) -> None:
        ledger = CartLedger(session)
        victim = await ledger.get_or_create(anonymous("token-victim-1"))
        [victim_line] = await ledger.upsert_line(victim, LineSpec(product_id=10))
        buyer = await ledger.get_or_create(anonymous("token-buyer-1"))

        result = await ledger.purge_purchased(
            buyer, [order_line(99, 1, cart_line_id=victim_line.id, line_id=5)], origin_cart_id=buyer.id
        )

        assert [line.id for line in await ledger.list_lines(victim)] == [victim_line.id]
        assert result.deleted_line_ids == []
        assert result.unmatched == [5]

    @pytest.mark.asyncio
    async def test_back_reference_without_any_cart_deletes_nothing(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        [line] = await ledger.upsert_line(cart, LineSpec(product_id=10))

        await ledger.purge_purchased(None, [order_line(10, 1, cart_line_id=line.id)])

        assert [row.id for row in await ledger.list_lines(cart)] == [line.id]

    @pytest.mark.asyncio
    async def test_unmatched_lines_are_reported(self, session) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())

        result = await ledger.purge_purchased(cart, [order_line(42, 1, line_id=7)])

        assert result.unmatched == [7]


# ============================================================================
# Concurrent writers
# ============================================================================


class TestConcurrentWriters:
    """A second session wins the write between our read and our insert."""

    @pytest.mark.asyncio
    async def test_lost_cart_creation_resolves_winner(self, session, session_factory, monkeypatch) -> None:
        ledger = CartLedger(session)
        real_find = ledger._find
        winners = []

        async def find_then_lose_race(identity):
            found = await real_find(identity)
            if not winners:
                async with session_factory() as other:
                    winners.append(await CartLedger(other).get_or_create(identity))
            return found

        monkeypatch.setattr(ledger, "_find", find_then_lose_race)

        cart = await ledger.get_or_create(anonymous())

        assert cart.id == winners[0].id
        assert await session.scalar(select(func.count()).select_from(CartModel)) == 1

    @pytest.mark.asyncio
    async def test_lost_line_insert_is_retried_as_merge(self, session, session_factory, monkeypatch) -> None:
        ledger = CartLedger(session)
        cart = await ledger.get_or_create(anonymous())
        real_match = ledger._match
        raced = []

        async def match_then_lose_race(cart_id, spec):
            found = await real_match(cart_id, spec)
            if not raced:
                raced.append(cart_id)
                async with session_factory() as other:
                    await CartLedger(other).upsert_line(cart, LineSpec(product_id=10, size_label="M", quantity=2))
            return found

        monkeypatch.setattr(ledger, "_match", match_then_lose_race)

        lines = await ledger.upsert_line(cart, LineSpec(product_id=10, size_label="M", quantity=3))

        assert raced == [cart.id]
        assert [(line.product_id, line.size_label, line.quantity) for line in lines] == [(10, "M", 5)]
