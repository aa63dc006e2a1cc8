"""API schemas for the UCP checkout API.

Pydantic models for request/response validation and serialization.
Money is serialized as decimal strings so amounts stay exact.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from ucp_checkout.domain.entities import Cart, CartItem, CheckoutSession
from ucp_checkout.domain.value_objects import Address, CartTotals


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional error context")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


class AddressSchema(BaseModel):
    """Postal address; only counts as provided once country is set."""

    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    address_1: str | None = None
    address_2: str | None = None
    city: str | None = None
    state: str | None = None
    postcode: str | None = None
    country: str | None = Field(default=None, min_length=2, max_length=2, description="ISO 3166-1 alpha-2")
    phone: str | None = None
    email: str | None = None

    def to_domain(self) -> Address:
        return Address(**self.model_dump())

    @classmethod
    def from_domain(cls, address: Address | None) -> "AddressSchema | None":
        if address is None:
            return None
        return cls(**address.to_dict())


class ItemReferenceSchema(BaseModel):
    """Product reference: sku wins over variant_id, which wins over product_id."""

    sku: str | None = Field(default=None, description="Stock keeping unit")
    product_id: str | None = Field(default=None, description="Catalog product identifier")
    variant_id: str | None = Field(default=None, description="Variant identifier")
    quantity: int = Field(default=1, description="Units requested")


class LineItemSchema(BaseModel):
    """A line in a cart or checkout session."""

    item_key: str
    product_id: str
    variant_id: str | None = None
    sku: str | None = None
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    is_virtual: bool = False
    added_at: datetime

    @classmethod
    def from_domain(cls, item: CartItem) -> "LineItemSchema":
        return cls(
            item_key=item.item_key,
            product_id=item.product_id,
            variant_id=item.variant_id,
            sku=item.sku,
            name=item.name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            line_total=item.line_total,
            is_virtual=item.is_virtual,
            added_at=item.added_at,
        )


# ============================================================================
# Cart Schemas
# ============================================================================


class CartCreateRequest(BaseModel):
    """Request to create a cart."""

    metadata: dict[str, Any] | None = Field(default=None, description="Opaque data echoed back")


class CartItemAddRequest(ItemReferenceSchema):
    """Request to add a product to a cart."""


class CartItemUpdateRequest(BaseModel):
    """Request to change a line's quantity; 0 removes the line."""

    quantity: int = Field(..., description="New quantity")


class CartTotalsSchema(BaseModel):
    """Cart totals derived from the lines."""

    subtotal: Decimal
    currency: str
    currency_symbol: str
    item_count: int


class CartResponse(BaseModel):
    """Response for a cart."""

    cart_id: str
    status: str
    items: list[LineItemSchema]
    totals: CartTotalsSchema
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @classmethod
    def from_domain(cls, cart: Cart, totals: CartTotals) -> "CartResponse":
        return cls(
            cart_id=str(cart.id),
            status=cart.status.value,
            items=[LineItemSchema.from_domain(item) for item in cart.items],
            totals=CartTotalsSchema(
                subtotal=totals.subtotal,
                currency=totals.currency,
                currency_symbol=totals.currency_symbol,
                item_count=totals.item_count,
            ),
            metadata=cart.metadata,
            created_at=cart.created_at,
            updated_at=cart.updated_at,
            expires_at=cart.expires_at,
        )


class CartItemAddResponse(CartResponse):
    """Cart after an add, with the key of the new or merged line."""

    item_key: str


class CartDeleteResponse(BaseModel):
    """Response for a cart deletion."""

    cart_id: str
    deleted: bool


class CartCheckoutRequest(BaseModel):
    """Request to convert a cart into a checkout session."""

    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    coupon_code: str | None = None
    note: str | None = Field(default=None, max_length=2000)


# ============================================================================
# Checkout Session Schemas
# ============================================================================


class CheckoutSessionCreateRequest(BaseModel):
    """Request to create a checkout session directly from item references."""

    items: list[ItemReferenceSchema] = Field(default_factory=list)
    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    coupon_code: str | None = None
    note: str | None = Field(default=None, max_length=2000)


class CheckoutSessionUpdateRequest(BaseModel):
    """Request to update a pending session.

    An empty coupon_code removes the current coupon.
    """

    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    shipping_method: str | None = None
    coupon_code: str | None = None


class CheckoutConfirmRequest(BaseModel):
    """Request to confirm a session."""

    shipping_method: str | None = None
    payment_method: str | None = None


class ShippingOptionSchema(BaseModel):
    method_id: str
    label: str
    cost: Decimal
    tax: Decimal


class AppliedCouponSchema(BaseModel):
    code: str
    discount: Decimal


class SessionTotalsSchema(BaseModel):
    """Checkout totals: total = subtotal - discount + shipping + tax, floored at 0."""

    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    currency: str


class CheckoutSessionResponse(BaseModel):
    """Response for a checkout session."""

    session_id: str
    order_ref: str
    status: str
    next_action: str
    items: list[LineItemSchema]
    totals: SessionTotalsSchema
    shipping_address: AddressSchema | None = None
    billing_address: AddressSchema | None = None
    applied_coupon: AppliedCouponSchema | None = None
    shipping_options: list[ShippingOptionSchema] = Field(default_factory=list)
    selected_shipping_method: str | None = None
    payment_method: str | None = None
    note: str | None = None
    web_checkout_url: str | None = None
    source_cart_id: str | None = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    confirmed_at: datetime | None = None

    @classmethod
    def from_domain(cls, checkout: CheckoutSession) -> "CheckoutSessionResponse":
        totals = checkout.totals()
        coupon = checkout.applied_coupon
        return cls(
            session_id=str(checkout.id),
            order_ref=checkout.order_ref,
            status=checkout.status.value,
            next_action=checkout.next_action.value,
            items=[LineItemSchema.from_domain(item) for item in checkout.items],
            totals=SessionTotalsSchema(
                subtotal=totals.subtotal,
                discount=totals.discount,
                shipping=totals.shipping,
                tax=totals.tax,
                total=totals.total,
                currency=totals.currency,
            ),
            shipping_address=AddressSchema.from_domain(checkout.shipping_address),
            billing_address=AddressSchema.from_domain(checkout.billing_address),
            applied_coupon=AppliedCouponSchema(code=coupon.code, discount=coupon.discount) if coupon else None,
            shipping_options=[
                ShippingOptionSchema(method_id=o.method_id, label=o.label, cost=o.cost, tax=o.tax)
                for o in checkout.shipping_options
            ],
            selected_shipping_method=checkout.selected_shipping_method,
            payment_method=checkout.payment_method,
            note=checkout.note,
            web_checkout_url=checkout.web_checkout_url,
            source_cart_id=checkout.source_cart_id,
            created_at=checkout.created_at,
            updated_at=checkout.updated_at,
            expires_at=checkout.expires_at,
            confirmed_at=checkout.confirmed_at,
        )


class CartConversionResponse(BaseModel):
    """Response for a cart converted into a checkout session."""

    cart_id: str
    converted: bool
    checkout_session: CheckoutSessionResponse
