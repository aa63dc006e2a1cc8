"""Domain layer - Entities, value objects, state machines, exceptions.

This module exports the core domain building blocks:

- **Entities**: Cart and CheckoutSession aggregates, CartItem lines
- **Value Objects**: Typed IDs, Address, CatalogProduct, ShippingOption
- **State Machines**: CartStatus, SessionStatus, NextAction
- **Exceptions**: Domain errors with stable codes and kinds

Example usage:
    from datetime import timedelta
    from decimal import Decimal

    from ucp_checkout.domain import Cart, CatalogProduct

    cart = Cart.create(ttl=timedelta(days=7))
    widget = CatalogProduct(product_id="42", name="Widget", unit_price=Decimal("19.99"))
    cart.add_item(widget, quantity=2, max_items=100)

    print(cart.subtotal)  # 39.98
"""

from ucp_checkout.domain.base import AggregateRoot, Entity, ValueObject, utcnow
from ucp_checkout.domain.entities import Cart, CartItem, CheckoutSession
from ucp_checkout.domain.exceptions import (
    CartConvertedError,
    CartEmptyError,
    CartExpiredError,
    CartFullError,
    CartItemNotFoundError,
    CartNotFoundError,
    ConcurrentModificationError,
    ConflictError,
    DomainError,
    GoneError,
    InsufficientStockError,
    InvalidItemsError,
    InvalidQuantityError,
    InvalidShippingMethodError,
    InvalidStateTransitionError,
    NotFoundError,
    PaymentMethodRequiredError,
    ProductNotFoundError,
    ProductNotPurchasableError,
    ProductOutOfStockError,
    SessionAlreadyConfirmedError,
    SessionCancelledError,
    SessionExpiredError,
    SessionNotFoundError,
    ShippingMethodRequiredError,
    UpstreamError,
    ValidationError,
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
    LineRequest,
    ProductRef,
    SessionId,
    SessionTotals,
    ShippingOption,
    to_amount,
)

__all__ = [
    # Base
    "AggregateRoot",
    "Entity",
    "ValueObject",
    "utcnow",
    # Entities
    "Cart",
    "CartItem",
    "CheckoutSession",
    # Value Objects
    "Address",
    "AppliedCoupon",
    "CartId",
    "CartTotals",
    "CatalogProduct",
    "ItemKey",
    "LineRequest",
    "ProductRef",
    "SessionId",
    "SessionTotals",
    "ShippingOption",
    "to_amount",
    # State Machines
    "CartStatus",
    "NextAction",
    "SessionStatus",
    "validate_cart_transition",
    "validate_session_transition",
    # Exceptions
    "CartConvertedError",
    "CartEmptyError",
    "CartExpiredError",
    "CartFullError",
    "CartItemNotFoundError",
    "CartNotFoundError",
    "ConcurrentModificationError",
    "ConflictError",
    "DomainError",
    "GoneError",
    "InsufficientStockError",
    "InvalidItemsError",
    "InvalidQuantityError",
    "InvalidShippingMethodError",
    "InvalidStateTransitionError",
    "NotFoundError",
    "PaymentMethodRequiredError",
    "ProductNotFoundError",
    "ProductNotPurchasableError",
    "ProductOutOfStockError",
    "SessionAlreadyConfirmedError",
    "SessionCancelledError",
    "SessionExpiredError",
    "SessionNotFoundError",
    "ShippingMethodRequiredError",
    "UpstreamError",
    "ValidationError",
]
