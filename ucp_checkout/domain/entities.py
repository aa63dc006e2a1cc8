"""Domain entities for the UCP checkout service.

Entities are domain objects with identity that persists across state changes.
This module contains the two aggregates: Cart and CheckoutSession.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Self

from ucp_checkout.domain.base import AggregateRoot, utcnow
from ucp_checkout.domain.exceptions import (
    CartConvertedError,
    CartEmptyError,
    CartExpiredError,
    CartFullError,
    CartItemNotFoundError,
    InvalidQuantityError,
    InvalidShippingMethodError,
    PaymentMethodRequiredError,
    SessionAlreadyConfirmedError,
    SessionCancelledError,
    SessionExpiredError,
    ShippingMethodRequiredError,
)
from ucp_checkout.domain.state_machines import (
    CartStatus,
    NextAction,
    SessionStatus,
    validate_cart_transition,
    validate_session_transition,
)
from ucp_checkout.domain.value_objects import (
    Address,
    AppliedCoupon,
    CartId,
    CartTotals,
    CatalogProduct,
    ItemKey,
    SessionId,
    SessionTotals,
    ShippingOption,
    to_amount,
)


# ============================================================================
# Cart Item
# ============================================================================


@dataclass
class CartItem:
    """A line in a cart or checkout session.

    The unit price is a snapshot taken from the catalog when the line was
    added; it is refreshed only when the same product is added again.

    Attributes:
        item_key: Opaque key, unique within the owning cart or session.
        product_id: Catalog product identifier.
        name: Product name at add time.
        unit_price: Price per unit at add time.
        quantity: Number of units, always at least 1.
        variant_id: Variant identifier, if the product is variable.
        sku: Stock keeping unit, if any.
        is_virtual: True when the line never needs shipping.
        added_at: When the line was first added.
    """

    item_key: str
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    variant_id: str | None = None
    sku: str | None = None
    is_virtual: bool = False
    added_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise InvalidQuantityError(self.quantity)
        self.unit_price = to_amount(self.unit_price)

    @classmethod
    def from_product(cls, product: CatalogProduct, quantity: int) -> Self:
        """Create a new line from a resolved catalog product."""
        return cls(
            item_key=str(ItemKey.generate()),
            product_id=product.product_id,
            variant_id=product.variant_id,
            sku=product.sku,
            name=product.name,
            unit_price=product.unit_price,
            quantity=quantity,
            is_virtual=product.is_virtual,
        )

    @property
    def line_total(self) -> Decimal:
        """Unit price multiplied by quantity."""
        return to_amount(self.unit_price * self.quantity)

    def matches(self, product: CatalogProduct) -> bool:
        """Check whether this line holds the given product and variant."""
        return self.product_id == product.product_id and self.variant_id == product.variant_id

    def refresh_from(self, product: CatalogProduct) -> None:
        """Refresh the snapshot fields from the catalog."""
        self.unit_price = product.unit_price
        self.name = product.name
        self.sku = product.sku
        self.is_virtual = product.is_virtual

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_key": self.item_key,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "sku": self.sku,
            "name": self.name,
            "unit_price": str(self.unit_price),
            "quantity": self.quantity,
            "is_virtual": self.is_virtual,
            "added_at": self.added_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            item_key=data["item_key"],
            product_id=str(data["product_id"]),
            variant_id=data.get("variant_id"),
            sku=data.get("sku"),
            name=data["name"],
            unit_price=Decimal(str(data["unit_price"])),
            quantity=int(data["quantity"]),
            is_virtual=bool(data.get("is_virtual", False)),
            added_at=datetime.fromisoformat(data["added_at"]) if data.get("added_at") else utcnow(),
        )


def _subtotal(items: list[CartItem]) -> Decimal:
    return to_amount(sum((item.line_total for item in items), Decimal("0")))


# ============================================================================
# Cart Aggregate Root
# ============================================================================


@dataclass(kw_only=True)
class Cart(AggregateRoot[CartId]):
    """Ephemeral cart aggregate root.

    A cart is mutable while active and unexpired. It becomes read-only
    forever once converted into a checkout session. ``expires_at`` is
    fixed at creation and never extended by activity.

    Attributes:
        id: Unique cart identifier.
        expires_at: Absolute expiry time.
        status: Current cart status (state machine).
        items: Lines in insertion order.
        metadata: Caller-supplied data echoed back unchanged.
        checkout_session_id: Session created from this cart, once converted.
    """

    id: CartId
    expires_at: datetime
    status: CartStatus = CartStatus.ACTIVE
    items: list[CartItem] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    checkout_session_id: str | None = None

    @classmethod
    def create(
        cls,
        ttl: timedelta,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> "Cart":
        """Create a new empty active cart.

        Args:
            ttl: Lifetime of the cart from now.
            metadata: Optional opaque caller data.
            now: Creation time, defaults to the current UTC time.

        Returns:
            New Cart instance.
        """
        created = now or utcnow()
        return cls(
            id=CartId.generate(),
            metadata=dict(metadata or {}),
            created_at=created,
            updated_at=created,
            expires_at=created + ttl,
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def subtotal(self) -> Decimal:
        return _subtotal(self.items)

    @property
    def item_count(self) -> int:
        """Total quantity across all lines."""
        return sum(item.quantity for item in self.items)

    @property
    def is_empty(self) -> bool:
        return len(self.items) == 0

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < (now or utcnow())

    def totals(self, currency: str, currency_symbol: str) -> CartTotals:
        return CartTotals(
            subtotal=self.subtotal,
            currency=currency,
            currency_symbol=currency_symbol,
            item_count=self.item_count,
        )

    def get_item(self, item_key: str) -> CartItem:
        """Find a line by key.

        Raises:
            CartItemNotFoundError: If no line has this key.
        """
        for item in self.items:
            if item.item_key == item_key:
                return item
        raise CartItemNotFoundError(str(self.id), item_key)

    def find_line(self, product: CatalogProduct) -> CartItem | None:
        """Find the line holding a product and variant, if any."""
        return next((item for item in self.items if item.matches(product)), None)

    def ensure_readable(self, now: datetime | None = None) -> None:
        """Check that the cart may be read.

        Expiry is checked before conversion.

        Raises:
            CartExpiredError: If the cart is past its expiry.
            CartConvertedError: If the cart became a checkout session.
        """
        if self.is_expired(now):
            raise CartExpiredError(str(self.id))
        if self.status == CartStatus.CONVERTED:
            raise CartConvertedError(str(self.id), self.checkout_session_id)

    # -------------------------------------------------------------------------
    # Cart Item Operations
    # -------------------------------------------------------------------------

    def add_item(self, product: CatalogProduct, quantity: int, max_items: int) -> CartItem:
        """Add a product, merging into an existing line for the same variant.

        Merging sums the quantities and refreshes the price snapshot.
        Nothing changes when a check fails.

        Args:
            product: Product freshly resolved from the catalog.
            quantity: Units to add.
            max_items: Maximum number of distinct lines.

        Returns:
            The new or merged CartItem.

        Raises:
            InvalidQuantityError: If quantity is below 1.
            ProductNotPurchasableError: If the product cannot be bought.
            ProductOutOfStockError: If managed stock is zero.
            InsufficientStockError: If existing plus requested exceeds stock.
            CartFullError: If a new line would exceed max_items.
        """
        if quantity < 1:
            raise InvalidQuantityError(quantity)

        existing = self.find_line(product)
        prospective = quantity + (existing.quantity if existing else 0)
        product.ensure_can_supply(prospective)

        if existing:
            existing.quantity = prospective
            existing.refresh_from(product)
            self._touch()
            return existing

        if len(self.items) >= max_items:
            raise CartFullError(str(self.id), max_items)

        item = CartItem.from_product(product, quantity)
        self.items.append(item)
        self._touch()
        return item

    def set_item_quantity(
        self,
        item_key: str,
        quantity: int,
        product: CatalogProduct | None = None,
    ) -> CartItem | None:
        """Replace a line's quantity; zero removes the line.

        Args:
            item_key: Line to change.
            quantity: New quantity.
            product: Live catalog product for the stock check; required
                unless quantity is zero.

        Returns:
            The updated line, or None if it was removed.

        Raises:
            CartItemNotFoundError: If no line has this key.
            InvalidQuantityError: If quantity is negative.
            InsufficientStockError: If stock cannot cover the new quantity.
        """
        if quantity < 0:
            raise InvalidQuantityError(quantity, "Quantity cannot be negative")

        item = self.get_item(item_key)
        if quantity == 0:
            self.items.remove(item)
            self._touch()
            return None

        if product is not None:
            product.ensure_can_supply(quantity)
        item.quantity = quantity
        self._touch()
        return item

    def remove_item(self, item_key: str) -> CartItem:
        """Remove a line.

        Raises:
            CartItemNotFoundError: If no line has this key.
        """
        item = self.get_item(item_key)
        self.items.remove(item)
        self._touch()
        return item

    def clear(self) -> int:
        """Remove all lines; the cart stays active.

        Returns:
            Number of lines removed.
        """
        count = len(self.items)
        self.items.clear()
        self._touch()
        return count

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def mark_converted(self, session_id: str) -> None:
        """Claim the cart for a checkout session.

        Raises:
            CartEmptyError: If the cart has no lines.
            InvalidStateTransitionError: If the cart is not active.
        """
        if self.is_empty:
            raise CartEmptyError(str(self.id))
        validate_cart_transition(str(self.id), self.status, CartStatus.CONVERTED)
        self.status = CartStatus.CONVERTED
        self.checkout_session_id = session_id
        self._touch()

    def mark_deleted(self) -> None:
        """Transition to deleted before the row is removed."""
        if self.status == CartStatus.CONVERTED:
            raise CartConvertedError(str(self.id), self.checkout_session_id)
        validate_cart_transition(str(self.id), self.status, CartStatus.DELETED)
        self.status = CartStatus.DELETED
        self._touch()


# ============================================================================
# Checkout Session Aggregate Root
# ============================================================================


@dataclass(kw_only=True)
class CheckoutSession(AggregateRoot[SessionId]):
    """Checkout session aggregate root.

    Holds a snapshot of the purchased lines and resolves addresses,
    coupon and shipping until it is confirmed, cancelled or expires.
    Totals and ``next_action`` are always derived from the current state.

    Attributes:
        id: Unique session identifier.
        order_ref: Draft order held by the order ledger.
        items: Line snapshots taken at creation.
        currency: ISO 4217 code of every amount.
        expires_at: Absolute expiry time of a pending session.
        status: Current session status (state machine).
        next_action: What the caller must supply next.
        shipping_address: Destination, once provided.
        billing_address: Billing address, defaults to the shipping address.
        applied_coupon: Coupon accepted by the coupon engine.
        shipping_options: Last quote for the current destination.
        selected_shipping_method: Chosen option's method_id.
        payment_method: Payment method token chosen by the caller.
        note: Free-form customer note.
        web_checkout_url: Hosted checkout page for this session.
        source_cart_id: Cart this session was converted from.
        confirmed_at: When the session was confirmed.
    """

    id: SessionId
    order_ref: str
    items: list[CartItem]
    currency: str
    expires_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    next_action: NextAction = NextAction.PROVIDE_SHIPPING_ADDRESS
    shipping_address: Address | None = None
    billing_address: Address | None = None
    applied_coupon: AppliedCoupon | None = None
    shipping_options: list[ShippingOption] = field(default_factory=list)
    selected_shipping_method: str | None = None
    payment_method: str | None = None
    note: str | None = None
    web_checkout_url: str | None = None
    source_cart_id: str | None = None
    confirmed_at: datetime | None = None

    @classmethod
    def create(
        cls,
        order_ref: str,
        items: list[CartItem],
        currency: str,
        ttl: timedelta,
        session_id: SessionId | None = None,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        note: str | None = None,
        source_cart_id: str | None = None,
        now: datetime | None = None,
    ) -> "CheckoutSession":
        """Create a new pending session.

        Args:
            order_ref: Draft order reference from the ledger.
            items: Line snapshots.
            currency: Currency of all amounts.
            ttl: Lifetime of the pending session.
            session_id: Pre-generated session ID.
            shipping_address: Optional destination.
            billing_address: Optional billing address.
            note: Optional customer note.
            source_cart_id: Cart being converted, if any.
            now: Creation time, defaults to the current UTC time.

        Returns:
            New CheckoutSession with next_action derived.
        """
        created = now or utcnow()
        session = cls(
            id=session_id or SessionId.generate(),
            order_ref=order_ref,
            items=items,
            currency=currency,
            note=note,
            source_cart_id=source_cart_id,
            created_at=created,
            updated_at=created,
            expires_at=created + ttl,
        )
        session.set_addresses(shipping_address, billing_address)
        session.next_action = session.derive_next_action()
        return session

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def requires_shipping(self) -> bool:
        """True when at least one line is physical."""
        return any(not item.is_virtual for item in self.items)

    @property
    def has_shipping_address(self) -> bool:
        return self.shipping_address is not None and self.shipping_address.is_provided

    @property
    def subtotal(self) -> Decimal:
        return _subtotal(self.items)

    @property
    def selected_option(self) -> ShippingOption | None:
        if not self.selected_shipping_method:
            return None
        return next(
            (o for o in self.shipping_options if o.method_id == self.selected_shipping_method),
            None,
        )

    def offered_methods(self) -> list[str]:
        return [o.method_id for o in self.shipping_options]

    def totals(self) -> SessionTotals:
        """Derive totals from lines, coupon and the selected shipping option.

        Returns:
            SessionTotals with discount capped at the subtotal and
            total floored at zero.
        """
        subtotal = self.subtotal
        discount = min(self.applied_coupon.discount, subtotal) if self.applied_coupon else Decimal("0")
        option = self.selected_option if self.requires_shipping else None
        shipping = option.cost if option else Decimal("0")
        tax = option.tax if option else Decimal("0")
        total = max(subtotal - discount + shipping + tax, Decimal("0"))
        return SessionTotals(
            subtotal=to_amount(subtotal),
            discount=to_amount(discount),
            shipping=to_amount(shipping),
            tax=to_amount(tax),
            total=to_amount(total),
            currency=self.currency,
        )

    def derive_next_action(self) -> NextAction:
        """Work out what the caller must supply next."""
        if self.status != SessionStatus.PENDING:
            return NextAction.NONE
        if self.requires_shipping:
            if not self.has_shipping_address:
                return NextAction.PROVIDE_SHIPPING_ADDRESS
            if self.selected_option is None:
                return NextAction.SELECT_SHIPPING_METHOD
        if self.totals().total > 0 and not self.payment_method:
            return NextAction.PROVIDE_PAYMENT_METHOD
        return NextAction.NONE

    def is_past_expiry(self, now: datetime | None = None) -> bool:
        return self.expires_at < (now or utcnow())

    def ensure_readable(self, now: datetime | None = None) -> None:
        """Check that the session may be read.

        Confirmed and cancelled sessions stay readable forever.

        Raises:
            SessionExpiredError: If the session expired or is pending
                past its expiry.
        """
        if self.status == SessionStatus.EXPIRED:
            raise SessionExpiredError(str(self.id))
        if self.status == SessionStatus.PENDING and self.is_past_expiry(now):
            raise SessionExpiredError(str(self.id))

    def ensure_mutable(self, now: datetime | None = None) -> None:
        """Check that the session still accepts changes.

        Raises:
            SessionAlreadyConfirmedError: If the session is confirmed.
            SessionCancelledError: If the session is cancelled.
            SessionExpiredError: If the session expired.
        """
        if self.status == SessionStatus.CONFIRMED:
            raise SessionAlreadyConfirmedError(str(self.id))
        if self.status == SessionStatus.CANCELLED:
            raise SessionCancelledError(str(self.id))
        self.ensure_readable(now)

    # -------------------------------------------------------------------------
    # Resolution Steps
    # -------------------------------------------------------------------------

    def set_addresses(
        self,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
    ) -> None:
        """Apply whichever addresses are given.

        The billing address follows the shipping address until one is
        given explicitly.
        """
        if shipping_address is not None:
            follows_shipping = self.billing_address is None or self.billing_address == self.shipping_address
            self.shipping_address = shipping_address
            if billing_address is None and follows_shipping:
                self.billing_address = shipping_address
        if billing_address is not None:
            self.billing_address = billing_address
        self._refresh()

    def set_shipping_options(self, options: list[ShippingOption]) -> None:
        """Replace the quoted options, dropping a selection no longer offered."""
        self.shipping_options = list(options)
        if self.selected_shipping_method and self.selected_option is None:
            self.selected_shipping_method = None
        self._refresh()

    def select_shipping_method(self, method_id: str) -> None:
        """Select one of the quoted options.

        Raises:
            InvalidShippingMethodError: If method_id was not offered.
        """
        if method_id not in self.offered_methods():
            raise InvalidShippingMethodError(str(self.id), method_id, self.offered_methods())
        self.selected_shipping_method = method_id
        self._refresh()

    def apply_coupon(self, coupon: AppliedCoupon | None) -> None:
        """Attach a priced coupon, or remove it with None."""
        self.applied_coupon = coupon
        self._refresh()

    def set_payment_method(self, payment_method: str) -> None:
        self.payment_method = payment_method
        self._refresh()

    def _refresh(self) -> None:
        self.next_action = self.derive_next_action()
        self._touch()

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def confirm(
        self,
        shipping_method: str | None = None,
        payment_method: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Finalize the session.

        Args:
            shipping_method: Method to select before confirming, if any.
            payment_method: Payment method to record, if any.
            now: Confirmation time.

        Raises:
            SessionAlreadyConfirmedError: If already confirmed.
            SessionCancelledError: If cancelled.
            SessionExpiredError: If expired.
            InvalidShippingMethodError: If the method was not offered.
            ShippingMethodRequiredError: If physical lines have no method.
            PaymentMethodRequiredError: If a positive total has no payment method.
        """
        self.ensure_mutable(now)
        if shipping_method:
            self.select_shipping_method(shipping_method)
        if self.requires_shipping and not self.selected_shipping_method:
            raise ShippingMethodRequiredError(str(self.id))
        if payment_method:
            self.payment_method = payment_method
        if self.totals().total > 0 and not self.payment_method:
            raise PaymentMethodRequiredError(str(self.id))

        validate_session_transition(str(self.id), self.status, SessionStatus.CONFIRMED)
        self.status = SessionStatus.CONFIRMED
        self.confirmed_at = now or utcnow()
        self._refresh()

    def cancel(self, now: datetime | None = None) -> None:
        """Cancel a pending session."""
        self.ensure_mutable(now)
        validate_session_transition(str(self.id), self.status, SessionStatus.CANCELLED)
        self.status = SessionStatus.CANCELLED
        self._refresh()

    def expire(self) -> None:
        """Mark a pending session as expired."""
        validate_session_transition(str(self.id), self.status, SessionStatus.EXPIRED)
        self.status = SessionStatus.EXPIRED
        self._refresh()
