"""Tests for the cart and checkout session stores."""

from datetime import timedelta

from tests.fakes import US_ADDRESS, WIDGET, FakeShipping
from ucp_checkout.domain import (
    AppliedCoupon,
    Cart,
    CartItem,
    CartStatus,
    CheckoutSession,
    SessionId,
    SessionStatus,
)
from ucp_checkout.domain.base import utcnow
from ucp_checkout.infrastructure.repositories import CartStore, CheckoutSessionStore


async def add_cart(session_factory, ttl: timedelta = timedelta(days=7), with_item: bool = True) -> Cart:
    cart = Cart.create(ttl=ttl, metadata={"channel": "agent"})
    if with_item:
        cart.add_item(WIDGET, 2, max_items=100)
    async with session_factory() as db:
        async with db.begin():
            await CartStore(db).add(cart)
    return cart


async def add_session(session_factory, ttl: timedelta = timedelta(hours=1)) -> CheckoutSession:
    checkout = CheckoutSession.create(
        order_ref="order-1",
        items=[CartItem.from_product(WIDGET, 1)],
        currency="USD",
        ttl=ttl,
        shipping_address=US_ADDRESS,
    )
    checkout.set_shipping_options(FakeShipping.DOMESTIC)
    async with session_factory() as db:
        async with db.begin():
            await CheckoutSessionStore(db).add(checkout)
    return checkout


async def load_cart(session_factory, cart_id) -> Cart | None:
    async with session_factory() as db:
        return await CartStore(db).get(str(cart_id))


class TestCartStore:
    """Tests for CartStore."""

    async def test_round_trip(self, session_factory) -> None:
        cart = await add_cart(session_factory)

        loaded = await load_cart(session_factory, cart.id)

        assert loaded.id == cart.id
        assert loaded.version == 1
        assert loaded.items == cart.items
        assert loaded.metadata == {"channel": "agent"}
        assert loaded.expires_at == cart.expires_at

    async def test_unknown_cart(self, session_factory) -> None:
        assert await load_cart(session_factory, "cart_" + "0" * 32) is None

    async def test_save_with_current_version(self, session_factory) -> None:
        cart = await add_cart(session_factory)
        cart.clear()

        async with session_factory() as db:
            async with db.begin():
                assert await CartStore(db).save(cart, expected_version=1)

        loaded = await load_cart(session_factory, cart.id)
        assert loaded.version == 2
        assert loaded.items == []

    async def test_stale_save_is_rejected(self, session_factory) -> None:
        cart = await add_cart(session_factory)
        first = await load_cart(session_factory, cart.id)
        second = await load_cart(session_factory, cart.id)

        first.clear()
        async with session_factory() as db:
            async with db.begin():
                assert await CartStore(db).save(first, expected_version=1)

        second.add_item(WIDGET, 1, max_items=100)
        async with session_factory() as db:
            async with db.begin():
                assert not await CartStore(db).save(second, expected_version=1)

        assert (await load_cart(session_factory, cart.id)).items == []

    async def test_only_one_conversion_wins(self, session_factory) -> None:
        """Two converters that read the same version cannot both claim the cart."""
        cart = await add_cart(session_factory)
        first = await load_cart(session_factory, cart.id)
        second = await load_cart(session_factory, cart.id)
        first.mark_converted(str(SessionId.generate()))
        second.mark_converted(str(SessionId.generate()))

        async with session_factory() as db:
            async with db.begin():
                won = await CartStore(db).save(first, expected_version=1)
        async with session_factory() as db:
            async with db.begin():
                lost = await CartStore(db).save(second, expected_version=1)

        assert won and not lost
        stored = await load_cart(session_factory, cart.id)
        assert stored.status == CartStatus.CONVERTED
        assert stored.checkout_session_id == first.checkout_session_id

    async def test_delete_checks_version(self, session_factory) -> None:
        cart = await add_cart(session_factory)

        async with session_factory() as db:
            async with db.begin():
                assert not await CartStore(db).delete(str(cart.id), expected_version=7)
                assert await CartStore(db).delete(str(cart.id), expected_version=1)

        assert await load_cart(session_factory, cart.id) is None

    async def test_delete_expired_keeps_converted(self, session_factory) -> None:
        expired = await add_cart(session_factory, ttl=timedelta(seconds=-1), with_item=False)
        converted = await add_cart(session_factory, ttl=timedelta(seconds=-1))
        live = await add_cart(session_factory)
        converted.mark_converted(str(SessionId.generate()))
        async with session_factory() as db:
            async with db.begin():
                await CartStore(db).save(converted, expected_version=1)

        async with session_factory() as db:
            async with db.begin():
                assert await CartStore(db).delete_expired(utcnow()) == 1

        assert await load_cart(session_factory, expired.id) is None
        assert await load_cart(session_factory, converted.id) is not None
        assert await load_cart(session_factory, live.id) is not None


class TestCheckoutSessionStore:
    """Tests for CheckoutSessionStore."""

    async def test_round_trip(self, session_factory) -> None:
        checkout = await add_session(session_factory)

        async with session_factory() as db:
            loaded = await CheckoutSessionStore(db).get(str(checkout.id))

        assert loaded.status == SessionStatus.PENDING
        assert loaded.order_ref == "order-1"
        assert loaded.shipping_address == US_ADDRESS
        assert loaded.billing_address == US_ADDRESS
        assert loaded.shipping_options == FakeShipping.DOMESTIC
        assert loaded.next_action == checkout.next_action
        assert loaded.version == 1

    async def test_stale_save_is_rejected(self, session_factory) -> None:
        checkout = await add_session(session_factory)
        async with session_factory() as db:
            async with db.begin():
                store = CheckoutSessionStore(db)
                first = await store.get(str(checkout.id))
                first.select_shipping_method("express")
                assert await store.save(first, expected_version=1)

        checkout.apply_coupon(AppliedCoupon(code="SAVE10", discount="10"))
        async with session_factory() as db:
            async with db.begin():
                assert not await CheckoutSessionStore(db).save(checkout, expected_version=1)

        async with session_factory() as db:
            stored = await CheckoutSessionStore(db).get(str(checkout.id))
        assert stored.selected_shipping_method == "express"
        assert stored.applied_coupon is None
        assert stored.version == 2

    async def test_expire_pending(self, session_factory) -> None:
        stale = await add_session(session_factory, ttl=timedelta(seconds=-1))
        fresh = await add_session(session_factory)

        async with session_factory() as db:
            async with db.begin():
                assert await CheckoutSessionStore(db).expire_pending(utcnow()) == 1

        async with session_factory() as db:
            store = CheckoutSessionStore(db)
            expired = await store.get(str(stale.id))
            pending = await store.get(str(fresh.id))
        assert expired.status == SessionStatus.EXPIRED
        assert expired.version == 2
        assert pending.status == SessionStatus.PENDING
