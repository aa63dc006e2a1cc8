"""Tests for the cart application service.

Runs against a file-backed SQLite database with in-memory collaborators.
"""

from dataclasses import replace
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from tests.fakes import TSHIRT_RED, US_ADDRESS, WIDGET
from ucp_checkout.application.cart_service import CartService
from ucp_checkout.domain import CartStatus, CatalogProduct, LineRequest, NextAction, ProductRef, SessionStatus
from ucp_checkout.domain.exceptions import (
    CartConvertedError,
    CartEmptyError,
    CartExpiredError,
    CartFullError,
    CartItemNotFoundError,
    CartNotFoundError,
    ConcurrentModificationError,
    InsufficientStockError,
    InvalidQuantityError,
    ProductNotFoundError,
    UpstreamError,
)
from ucp_checkout.infrastructure.models import CheckoutSessionModel


def line(quantity: int = 1, **ref) -> LineRequest:
    return LineRequest(ref=ProductRef(**(ref or {"sku": "WID-1"})), quantity=quantity)


# ============================================================================
# Cart Lifecycle
# ============================================================================


class TestCartLifecycle:
    """Tests for create, get and delete."""

    async def test_create_and_get(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart(metadata={"agent": "a-1"})

        loaded = await cart_service.get_cart(str(cart.id))

        assert loaded.id == cart.id
        assert loaded.metadata == {"agent": "a-1"}
        assert loaded.status == CartStatus.ACTIVE
        assert loaded.version == 1

    async def test_unknown_cart(self, cart_service: CartService) -> None:
        with pytest.raises(CartNotFoundError):
            await cart_service.get_cart("cart_" + "0" * 32)

    async def test_delete_then_get(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()

        result = await cart_service.delete_cart(str(cart.id))

        assert result.deleted is True
        with pytest.raises(CartNotFoundError):
            await cart_service.get_cart(str(cart.id))

    async def test_delete_is_idempotent(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        await cart_service.delete_cart(str(cart.id))

        result = await cart_service.delete_cart(str(cart.id))

        assert result.deleted is False

    async def test_expired_cart(self, cart_service: CartService, clock) -> None:
        """A cart read after its TTL reports expired, even before any sweep."""
        cart = await cart_service.create_cart()
        clock.advance(days=7, seconds=1)

        with pytest.raises(CartExpiredError):
            await cart_service.get_cart(str(cart.id))
        with pytest.raises(CartExpiredError):
            await cart_service.add_item(str(cart.id), line())

    async def test_cleanup_expired_carts(self, cart_service: CartService, clock) -> None:
        await cart_service.create_cart()
        await cart_service.create_cart()
        clock.advance(days=3)
        fresh = await cart_service.create_cart()
        clock.advance(days=5)

        assert await cart_service.cleanup_expired_carts() == 2
        assert (await cart_service.get_cart(str(fresh.id))).id == fresh.id


# ============================================================================
# Line Operations
# ============================================================================


class TestCartItems:
    """Tests for add, update, remove and clear."""

    async def test_add_item(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()

        updated, item = await cart_service.add_item(str(cart.id), line(2))

        assert item.product_id == WIDGET.product_id
        assert item.unit_price == Decimal("19.99")
        assert updated.subtotal == Decimal("39.98")
        assert updated.version == 2

        stored = await cart_service.get_cart(str(cart.id))
        assert stored.items == updated.items

    async def test_add_same_product_merges(self, cart_service: CartService) -> None:
        """Adding quantity a then b leaves one line with a + b."""
        cart = await cart_service.create_cart()
        _, first = await cart_service.add_item(str(cart.id), line(2))
        updated, second = await cart_service.add_item(str(cart.id), line(3, product_id="101"))

        assert first.item_key == second.item_key
        assert len(updated.items) == 1
        assert updated.items[0].quantity == 5

    async def test_merge_checks_combined_stock(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        await cart_service.add_item(str(cart.id), line(8, variant_id="201"))

        with pytest.raises(InsufficientStockError):
            await cart_service.add_item(str(cart.id), line(3, sku="TEE-RED"))

        stored = await cart_service.get_cart(str(cart.id))
        assert stored.items[0].quantity == 8

    async def test_unknown_product(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        with pytest.raises(ProductNotFoundError):
            await cart_service.add_item(str(cart.id), line(sku="NOPE"))

    async def test_cart_full(self, cart_service: CartService, catalog) -> None:
        """An add past the cap fails and leaves the stored cart unchanged."""
        cart_service.max_items = 3
        cart = await cart_service.create_cart()
        for i in range(4):
            catalog.put(CatalogProduct(product_id=f"9{i}", name=f"P{i}", unit_price=Decimal("1.00")))
        for i in range(3):
            await cart_service.add_item(str(cart.id), line(product_id=f"9{i}"))

        with pytest.raises(CartFullError):
            await cart_service.add_item(str(cart.id), line(product_id="93"))

        stored = await cart_service.get_cart(str(cart.id))
        assert len(stored.items) == 3
        assert stored.version == 4

    async def test_update_item(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        _, item = await cart_service.add_item(str(cart.id), line(1))

        updated = await cart_service.update_item(str(cart.id), item.item_key, 3)

        assert updated.items[0].quantity == 3
        assert updated.subtotal == Decimal("59.97")

    async def test_update_to_zero_removes(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        _, item = await cart_service.add_item(str(cart.id), line(1))

        updated = await cart_service.update_item(str(cart.id), item.item_key, 0)

        assert updated.items == []
        assert updated.subtotal == Decimal("0.00")

    async def test_update_negative(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        _, item = await cart_service.add_item(str(cart.id), line(1))

        with pytest.raises(InvalidQuantityError):
            await cart_service.update_item(str(cart.id), item.item_key, -2)

    async def test_update_checks_live_stock(self, cart_service: CartService, catalog) -> None:
        cart = await cart_service.create_cart()
        _, item = await cart_service.add_item(str(cart.id), line(2, sku="TEE-RED"))
        catalog.put(replace(TSHIRT_RED, stock=2))

        with pytest.raises(InsufficientStockError):
            await cart_service.update_item(str(cart.id), item.item_key, 3)

    async def test_update_vanished_product(self, cart_service: CartService, catalog) -> None:
        cart = await cart_service.create_cart()
        _, item = await cart_service.add_item(str(cart.id), line(1))
        catalog.remove(WIDGET.product_id)

        with pytest.raises(ProductNotFoundError):
            await cart_service.update_item(str(cart.id), item.item_key, 2)

    async def test_unknown_item(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        with pytest.raises(CartItemNotFoundError):
            await cart_service.remove_item(str(cart.id), "item_0000000000000000")
        with pytest.raises(CartItemNotFoundError):
            await cart_service.update_item(str(cart.id), "item_0000000000000000", 1)

    async def test_remove_and_clear(self, cart_service: CartService) -> None:
        cart = await cart_service.create_cart()
        _, widget = await cart_service.add_item(str(cart.id), line(1))
        await cart_service.add_item(str(cart.id), line(1, sku="GAD-1"))
        await cart_service.add_item(str(cart.id), line(1, sku="EBOOK-1"))

        after_remove = await cart_service.remove_item(str(cart.id), widget.item_key)
        after_clear = await cart_service.clear_cart(str(cart.id))

        assert [i.sku for i in after_remove.items] == ["GAD-1", "EBOOK-1"]
        assert after_clear.items == []
        assert after_clear.status == CartStatus.ACTIVE

    async def test_subtotal_through_add_update_and_merge(self, cart_service: CartService, catalog) -> None:
        catalog.put(CatalogProduct(product_id="A", name="Product A", unit_price=Decimal("25.00"), stock=20))
        catalog.put(CatalogProduct(product_id="B", name="Product B", unit_price=Decimal("50.00"), stock=20))
        cart = await cart_service.create_cart()

        _, a = await cart_service.add_item(str(cart.id), line(2, product_id="A"))
        both, _ = await cart_service.add_item(str(cart.id), line(1, product_id="B"))
        assert both.subtotal == Decimal("100.00")

        only_b = await cart_service.update_item(str(cart.id), a.item_key, 0)
        assert [i.product_id for i in only_b.items] == ["B"]
        assert only_b.subtotal == Decimal("50.00")

        await cart_service.add_item(str(cart.id), line(2, product_id="A"))
        merged, a_line = await cart_service.add_item(str(cart.id), line(3, product_id="A"))
        assert [i.product_id for i in merged.items] == ["B", "A"]
        assert a_line.quantity == 5
        assert a_line.line_total == Decimal("125.00")
        assert merged.subtotal == Decimal("175.00")


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrentWrites:
    """Tests for optimistic retries."""

    async def test_interleaved_adds_are_both_kept(self, cart_service: CartService, catalog) -> None:
        """A write that loses the version race retries and keeps both changes."""
        cart = await cart_service.create_cart()
        cart_id = str(cart.id)

        async def competing_add() -> None:
            await cart_service.add_item(cart_id, line(1, sku="GAD-1"))

        catalog.interleave.append(competing_add)

        updated, _ = await cart_service.add_item(cart_id, line(2))

        assert sorted(i.sku for i in updated.items) == ["GAD-1", "WID-1"]
        assert updated.version == 3
        stored = await cart_service.get_cart(cart_id)
        assert stored.items == updated.items

    async def test_gives_up_after_max_attempts(self, cart_service: CartService, catalog) -> None:
        cart = await cart_service.create_cart()
        cart_id = str(cart.id)

        async def competing_clear() -> None:
            await cart_service.clear_cart(cart_id)

        catalog.interleave.extend([competing_clear] * cart_service.max_write_attempts)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await cart_service.add_item(cart_id, line(1))

        assert exc_info.value.retryable
        assert exc_info.value.details["attempts"] == cart_service.max_write_attempts


# ============================================================================
# Conversion
# ============================================================================


async def count_sessions(session_factory) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(CheckoutSessionModel))


class TestConversion:
    """Tests for convert_to_checkout."""

    async def test_convert(self, cart_service: CartService, ledger) -> None:
        cart = await cart_service.create_cart()
        await cart_service.add_item(str(cart.id), line(2))
        await cart_service.add_item(str(cart.id), line(1, variant_id="201"))

        result = await cart_service.convert_to_checkout(str(cart.id), shipping_address=US_ADDRESS, note="Leave at door")

        checkout = result.checkout_session
        assert result.converted is True
        assert result.cart_id == str(cart.id)
        assert checkout.status == SessionStatus.PENDING
        assert checkout.source_cart_id == str(cart.id)
        assert checkout.note == "Leave at door"
        assert checkout.subtotal == Decimal("54.98")
        assert checkout.offered_methods() == ["flat_rate", "express"]
        assert checkout.next_action == NextAction.SELECT_SHIPPING_METHOD
        assert ledger.orders[checkout.order_ref] == "draft"

    async def test_converted_cart_is_closed(self, cart_service: CartService) -> None:
        """After conversion every read and write reports cart_converted with the session."""
        cart = await cart_service.create_cart()
        _, item = await cart_service.add_item(str(cart.id), line(1))
        result = await cart_service.convert_to_checkout(str(cart.id))
        session_id = str(result.checkout_session.id)

        for attempt in (
            cart_service.get_cart(str(cart.id)),
            cart_service.add_item(str(cart.id), line(1)),
            cart_service.update_item(str(cart.id), item.item_key, 2),
            cart_service.remove_item(str(cart.id), item.item_key),
            cart_service.clear_cart(str(cart.id)),
            cart_service.delete_cart(str(cart.id)),
            cart_service.convert_to_checkout(str(cart.id)),
        ):
            with pytest.raises(CartConvertedError) as exc_info:
                await attempt
            assert exc_info.value.details["session_id"] == session_id

    async def test_second_conversion_creates_nothing(self, cart_service: CartService, session_factory) -> None:
        cart = await cart_service.create_cart()
        await cart_service.add_item(str(cart.id), line(1))
        await cart_service.convert_to_checkout(str(cart.id))

        with pytest.raises(CartConvertedError):
            await cart_service.convert_to_checkout(str(cart.id))

        assert await count_sessions(session_factory) == 1

    async def test_empty_cart(self, cart_service: CartService, session_factory) -> None:
        cart = await cart_service.create_cart()

        with pytest.raises(CartEmptyError):
            await cart_service.convert_to_checkout(str(cart.id))

        stored = await cart_service.get_cart(str(cart.id))
        assert stored.status == CartStatus.ACTIVE
        assert stored.version == 1
        assert await count_sessions(session_factory) == 0

    async def test_failed_session_creation_rolls_back_claim(
        self, cart_service: CartService, session_factory, ledger
    ) -> None:
        """A rejected coupon leaves the cart active and cancels the draft."""
        cart = await cart_service.create_cart()
        await cart_service.add_item(str(cart.id), line(1))

        with pytest.raises(UpstreamError) as exc_info:
            await cart_service.convert_to_checkout(str(cart.id), coupon_code="BOGUS")

        assert exc_info.value.code == "invalid_coupon"
        stored = await cart_service.get_cart(str(cart.id))
        assert stored.status == CartStatus.ACTIVE
        assert len(stored.items) == 1
        assert list(ledger.orders.values()) == ["cancelled"]
        assert await count_sessions(session_factory) == 0

    async def test_expired_cart_cannot_convert(self, cart_service: CartService, clock) -> None:
        cart = await cart_service.create_cart()
        await cart_service.add_item(str(cart.id), line(1))
        clock.advance(days=8)

        with pytest.raises(CartExpiredError):
            await cart_service.convert_to_checkout(str(cart.id))
