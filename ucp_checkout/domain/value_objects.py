"""Value Objects for the domain layer.

Value objects are immutable objects that are defined by their attributes
rather than identity. They are interchangeable when their values are equal.
"""

import re
import secrets
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Self

from ucp_checkout.domain.base import ValueObject
from ucp_checkout.domain.exceptions import (
    InsufficientStockError,
    InvalidItemsError,
    InvalidQuantityError,
    ProductNotPurchasableError,
    ProductOutOfStockError,
)

MINOR_UNIT = Decimal("0.01")


def to_amount(value: Any) -> Decimal:
    """Quantize a monetary value to the currency minor unit.

    Floats go through ``str`` so 19.99 stays 19.99.

    Args:
        value: Decimal, int, float or numeric string.

    Returns:
        Decimal rounded half-up to two places.
    """
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


# ============================================================================
# Typed Identifiers
# ============================================================================


@dataclass(frozen=True)
class _PrefixedId(ValueObject):
    """Opaque identifier made of a fixed prefix and random lowercase hex."""

    prefix = ""
    hex_bytes = 16
    pattern = re.compile(r"")

    value: str

    @classmethod
    def generate(cls) -> Self:
        """Generate a new random identifier."""
        return cls(value=f"{cls.prefix}{secrets.token_hex(cls.hex_bytes)}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CartId(_PrefixedId):
    """Cart identifier: ``cart_`` followed by 32 lowercase hex digits."""

    prefix = "cart_"
    pattern = re.compile(r"cart_[0-9a-f]{32}")


@dataclass(frozen=True)
class SessionId(_PrefixedId):
    """Checkout session identifier: ``ucp_`` followed by 32 lowercase hex digits."""

    prefix = "ucp_"
    pattern = re.compile(r"ucp_[0-9a-f]{32}")


@dataclass(frozen=True)
class ItemKey(_PrefixedId):
    """Cart line identifier, unique within its cart."""

    prefix = "item_"
    hex_bytes = 8
    pattern = re.compile(r"item_[A-Za-z0-9_]+")


# ============================================================================
# Product Reference
# ============================================================================


@dataclass(frozen=True)
class ProductRef(ValueObject):
    """How a caller points at a catalog product.

    At least one reference is required. When several are given the
    catalog resolves by ``sku`` first, then ``variant_id``, then
    ``product_id``.
    """

    sku: str | None = None
    product_id: str | None = None
    variant_id: str | None = None

    def __post_init__(self) -> None:
        if not (self.sku or self.product_id or self.variant_id):
            raise InvalidItemsError("Each item needs a sku, product_id or variant_id.")

    def describe(self) -> str:
        """Human-readable form of the strongest reference."""
        if self.sku:
            return f"sku={self.sku}"
        if self.variant_id:
            return f"variant_id={self.variant_id}"
        return f"product_id={self.product_id}"

    def query_params(self) -> dict[str, str]:
        """The single lookup parameter the catalog should resolve."""
        if self.sku:
            return {"sku": self.sku}
        if self.variant_id:
            return {"variant_id": self.variant_id}
        return {"product_id": str(self.product_id)}


@dataclass(frozen=True)
class CatalogProduct(ValueObject):
    """A product as resolved by the catalog at a point in time.

    Attributes:
        product_id: Catalog product identifier.
        name: Display name.
        unit_price: Current price in major units.
        sku: Stock keeping unit, if any.
        variant_id: Variant identifier for variable products.
        stock: Units available; None means stock is not managed.
        purchasable: False for drafts, hidden or otherwise unsellable products.
        is_virtual: True for products that never ship.
    """

    product_id: str
    name: str
    unit_price: Decimal
    sku: str | None = None
    variant_id: str | None = None
    stock: int | None = None
    purchasable: bool = True
    is_virtual: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_price", to_amount(self.unit_price))

    def ensure_can_supply(self, quantity: int) -> None:
        """Check that ``quantity`` units can be sold right now.

        Args:
            quantity: Total units the cart line would hold.

        Raises:
            ProductNotPurchasableError: If the product cannot be bought.
            ProductOutOfStockError: If managed stock is zero.
            InsufficientStockError: If managed stock is below quantity.
        """
        if not self.purchasable:
            raise ProductNotPurchasableError(self.name)
        if self.stock is None:
            return
        if self.stock <= 0:
            raise ProductOutOfStockError(self.name)
        if quantity > self.stock:
            raise InsufficientStockError(self.name, quantity, self.stock)


@dataclass(frozen=True)
class LineRequest(ValueObject):
    """A requested product reference with a quantity."""

    ref: ProductRef
    quantity: int = 1

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise InvalidQuantityError(self.quantity)


# ============================================================================
# Address Value Object
# ============================================================================


ADDRESS_FIELDS = (
    "first_name",
    "last_name",
    "company",
    "address_1",
    "address_2",
    "city",
    "state",
    "postcode",
    "country",
    "phone",
    "email",
)


@dataclass(frozen=True)
class Address(ValueObject):
    """Shipping or billing address.

    Every field is optional; an address only counts as provided once
    ``country`` (ISO 3166-1 alpha-2) is set.
    """

    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    address_1: str | None = None
    address_2: str | None = None
    city: str | None = None
    state: str | None = None
    postcode: str | None = None
    country: str | None = None
    phone: str | None = None
    email: str | None = None

    def __post_init__(self) -> None:
        if self.country:
            object.__setattr__(self, "country", self.country.strip().upper())

    @property
    def is_provided(self) -> bool:
        return bool(self.country)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Self | None:
        """Build an address from a mapping, ignoring unknown keys."""
        if not data:
            return None
        return cls(**{k: data[k] for k in ADDRESS_FIELDS if data.get(k) is not None})

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ============================================================================
# Pricing Value Objects
# ============================================================================


@dataclass(frozen=True)
class ShippingOption(ValueObject):
    """One shipping rate offered for a destination.

    Attributes:
        method_id: Stable identifier the caller selects.
        label: Display name.
        cost: Shipping charge.
        tax: Tax charged on the order when this option is selected.
    """

    method_id: str
    label: str
    cost: Decimal
    tax: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        object.__setattr__(self, "cost", to_amount(self.cost))
        object.__setattr__(self, "tax", to_amount(self.tax))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            method_id=str(data["method_id"]),
            label=str(data.get("label") or data["method_id"]),
            cost=data.get("cost", "0"),
            tax=data.get("tax", "0"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "method_id": self.method_id,
            "label": self.label,
            "cost": str(self.cost),
            "tax": str(self.tax),
        }


@dataclass(frozen=True)
class AppliedCoupon(ValueObject):
    """A coupon code accepted by the coupon engine and its discount."""

    code: str
    discount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "discount", to_amount(self.discount))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Self | None:
        if not data:
            return None
        return cls(code=str(data["code"]), discount=data.get("discount", "0"))

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "discount": str(self.discount)}


@dataclass(frozen=True)
class CartTotals(ValueObject):
    """Derived cart totals."""

    subtotal: Decimal
    currency: str
    currency_symbol: str
    item_count: int


@dataclass(frozen=True)
class SessionTotals(ValueObject):
    """Derived checkout session totals.

    ``total`` is never negative; the discount is capped at the subtotal.
    """

    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    currency: str
