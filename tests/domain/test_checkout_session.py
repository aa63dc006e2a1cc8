"""Tests for the CheckoutSession aggregate."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tests.fakes import CA_ADDRESS, EBOOK, GIFT, US_ADDRESS, WIDGET, FakeShipping
from ucp_checkout.domain import (
    Address,
    AppliedCoupon,
    CartItem,
    CatalogProduct,
    CheckoutSession,
    NextAction,
    SessionStatus,
)
from ucp_checkout.domain.exceptions import (
    InvalidShippingMethodError,
    PaymentMethodRequiredError,
    SessionAlreadyConfirmedError,
    SessionCancelledError,
    SessionExpiredError,
    ShippingMethodRequiredError,
)


# ============================================================================
# Test Fixtures
# ============================================================================


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_session(*products: tuple[CatalogProduct, int], **kwargs) -> CheckoutSession:
    """Create a pending session for the given (product, quantity) pairs."""
    items = [CartItem.from_product(product, quantity) for product, quantity in products or [(WIDGET, 2)]]
    return CheckoutSession.create(
        order_ref="order-1",
        items=items,
        currency="USD",
        ttl=timedelta(hours=1),
        now=NOW,
        **kwargs,
    )


def make_quoted_session(**kwargs) -> CheckoutSession:
    """Physical session with a US address and domestic options quoted."""
    session = make_session(shipping_address=US_ADDRESS, **kwargs)
    session.set_shipping_options(FakeShipping.DOMESTIC)
    return session


# ============================================================================
# Creation and Next Action
# ============================================================================


class TestSessionCreation:
    """Tests for session creation."""

    def test_create_session(self) -> None:
        session = make_session()

        assert str(session.id).startswith("ucp_")
        assert len(str(session.id)) == 36
        assert session.status == SessionStatus.PENDING
        assert session.expires_at == NOW + timedelta(hours=1)
        assert session.totals().subtotal == Decimal("39.98")

    def test_billing_defaults_to_shipping(self) -> None:
        session = make_session(shipping_address=US_ADDRESS)
        assert session.billing_address == US_ADDRESS

    def test_explicit_billing_is_kept(self) -> None:
        billing = Address(first_name="Grace", country="GB")
        session = make_session(shipping_address=US_ADDRESS, billing_address=billing)

        session.set_addresses(shipping_address=CA_ADDRESS)

        assert session.billing_address == billing
        assert session.shipping_address == CA_ADDRESS

    def test_billing_follows_shipping_changes(self) -> None:
        session = make_session(shipping_address=US_ADDRESS)
        session.set_addresses(shipping_address=CA_ADDRESS)
        assert session.billing_address == CA_ADDRESS


class TestNextAction:
    """Tests for next_action derivation."""

    def test_physical_without_address(self) -> None:
        assert make_session().next_action == NextAction.PROVIDE_SHIPPING_ADDRESS

    def test_address_without_country_is_not_provided(self) -> None:
        session = make_session(shipping_address=Address(city="Austin"))
        assert session.next_action == NextAction.PROVIDE_SHIPPING_ADDRESS

    def test_physical_without_method(self) -> None:
        assert make_quoted_session().next_action == NextAction.SELECT_SHIPPING_METHOD

    def test_method_selected_without_payment(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("flat_rate")
        assert session.next_action == NextAction.PROVIDE_PAYMENT_METHOD

    def test_virtual_only_skips_shipping(self) -> None:
        session = make_session((EBOOK, 1))
        assert not session.requires_shipping
        assert session.next_action == NextAction.PROVIDE_PAYMENT_METHOD

    def test_free_virtual_needs_nothing(self) -> None:
        session = make_session((GIFT, 1))
        assert session.next_action == NextAction.NONE

    def test_payment_method_completes(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("flat_rate")
        session.set_payment_method("card_tok_1")
        assert session.next_action == NextAction.NONE


# ============================================================================
# Totals
# ============================================================================


class TestSessionTotals:
    """Tests for derived totals."""

    def test_totals_with_shipping_and_tax(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("express")

        totals = session.totals()

        assert totals.subtotal == Decimal("39.98")
        assert totals.shipping == Decimal("15.00")
        assert totals.tax == Decimal("1.50")
        assert totals.total == Decimal("56.48")
        assert totals.currency == "USD"

    def test_discount_applied(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("flat_rate")
        session.apply_coupon(AppliedCoupon(code="SAVE10", discount=Decimal("10")))

        totals = session.totals()

        assert totals.discount == Decimal("10.00")
        assert totals.total == Decimal("36.48")

    def test_discount_capped_at_subtotal(self) -> None:
        """A coupon larger than the subtotal never makes the total negative."""
        session = make_session((EBOOK, 1))
        session.apply_coupon(AppliedCoupon(code="HUGE", discount=Decimal("500")))

        totals = session.totals()

        assert totals.discount == Decimal("9.99")
        assert totals.total == Decimal("0.00")
        assert session.next_action == NextAction.NONE

    def test_removing_coupon(self) -> None:
        session = make_session((EBOOK, 1))
        session.apply_coupon(AppliedCoupon(code="SAVE10", discount=Decimal("5")))
        session.apply_coupon(None)
        assert session.totals().discount == Decimal("0.00")


# ============================================================================
# Shipping Selection
# ============================================================================


class TestShippingSelection:
    """Tests for shipping options and method selection."""

    def test_unknown_method_rejected(self) -> None:
        session = make_quoted_session()

        with pytest.raises(InvalidShippingMethodError) as exc_info:
            session.select_shipping_method("teleport")

        assert exc_info.value.details["available_methods"] == ["flat_rate", "express"]
        assert session.selected_shipping_method is None

    def test_new_quote_drops_stale_selection(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("express")

        session.set_shipping_options(FakeShipping.INTERNATIONAL)

        assert session.selected_shipping_method is None
        assert session.next_action == NextAction.SELECT_SHIPPING_METHOD

    def test_new_quote_keeps_offered_selection(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("flat_rate")

        session.set_shipping_options(FakeShipping.DOMESTIC)

        assert session.selected_shipping_method == "flat_rate"


# ============================================================================
# Lifecycle
# ============================================================================


class TestSessionLifecycle:
    """Tests for confirmation, cancellation and expiry."""

    def test_confirm(self) -> None:
        session = make_quoted_session()

        session.confirm(shipping_method="flat_rate", payment_method="card_tok_1", now=NOW)

        assert session.status == SessionStatus.CONFIRMED
        assert session.confirmed_at == NOW
        assert session.next_action == NextAction.NONE

    def test_confirm_uses_previous_selection(self) -> None:
        session = make_quoted_session()
        session.select_shipping_method("express")

        session.confirm(payment_method="card_tok_1", now=NOW)

        assert session.selected_shipping_method == "express"

    def test_confirm_requires_shipping_method(self) -> None:
        session = make_quoted_session()
        with pytest.raises(ShippingMethodRequiredError):
            session.confirm(payment_method="card_tok_1", now=NOW)
        assert session.status == SessionStatus.PENDING

    def test_confirm_rejects_unoffered_method(self) -> None:
        session = make_quoted_session()
        with pytest.raises(InvalidShippingMethodError):
            session.confirm(shipping_method="teleport", payment_method="card_tok_1", now=NOW)
        assert session.status == SessionStatus.PENDING

    def test_virtual_session_rejects_unoffered_method(self) -> None:
        session = make_session((EBOOK, 1))
        with pytest.raises(InvalidShippingMethodError):
            session.confirm(shipping_method="teleport", payment_method="card_tok_1", now=NOW)
        assert session.status == SessionStatus.PENDING
        assert session.selected_shipping_method is None

    def test_confirm_requires_payment_for_positive_total(self) -> None:
        session = make_session((EBOOK, 1))
        with pytest.raises(PaymentMethodRequiredError):
            session.confirm(now=NOW)

    def test_free_order_confirms_without_payment(self) -> None:
        session = make_session((GIFT, 2))
        session.confirm(now=NOW)
        assert session.status == SessionStatus.CONFIRMED

    def test_confirmed_session_is_immutable(self) -> None:
        session = make_session((GIFT, 1))
        session.confirm(now=NOW)

        with pytest.raises(SessionAlreadyConfirmedError):
            session.confirm(now=NOW)
        with pytest.raises(SessionAlreadyConfirmedError):
            session.cancel(now=NOW)
        session.ensure_readable(NOW + timedelta(days=30))

    def test_cancel(self) -> None:
        session = make_session()
        session.cancel(now=NOW)

        assert session.status == SessionStatus.CANCELLED
        with pytest.raises(SessionCancelledError):
            session.ensure_mutable(NOW)

    def test_pending_past_expiry(self) -> None:
        session = make_session()

        session.ensure_readable(NOW + timedelta(hours=1))
        with pytest.raises(SessionExpiredError):
            session.ensure_readable(NOW + timedelta(hours=1, seconds=1))
        with pytest.raises(SessionExpiredError):
            session.confirm(payment_method="card_tok_1", now=NOW + timedelta(hours=2))

    def test_expire(self) -> None:
        session = make_session()
        session.expire()

        assert session.status == SessionStatus.EXPIRED
        assert session.next_action == NextAction.NONE
        with pytest.raises(SessionExpiredError):
            session.ensure_readable(NOW)
