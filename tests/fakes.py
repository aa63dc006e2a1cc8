"""In-memory collaborators and catalog data shared by the tests."""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from ucp_checkout.domain.entities import CartItem
from ucp_checkout.domain.exceptions import UpstreamError
from ucp_checkout.domain.value_objects import (
    Address,
    AppliedCoupon,
    CatalogProduct,
    ProductRef,
    ShippingOption,
)

WIDGET = CatalogProduct(product_id="101", name="Widget", unit_price=Decimal("19.99"), sku="WID-1", stock=50)
GADGET = CatalogProduct(product_id="102", name="Gadget", unit_price=Decimal("5.00"), sku="GAD-1")
TSHIRT_RED = CatalogProduct(
    product_id="200", variant_id="201", name="T-Shirt - Red", unit_price=Decimal("15.00"), sku="TEE-RED", stock=10
)
TSHIRT_BLUE = CatalogProduct(
    product_id="200", variant_id="202", name="T-Shirt - Blue", unit_price=Decimal("15.00"), sku="TEE-BLUE", stock=10
)
EBOOK = CatalogProduct(product_id="300", name="E-Book", unit_price=Decimal("9.99"), sku="EBOOK-1", is_virtual=True)
GIFT = CatalogProduct(product_id="400", name="Free Sticker", unit_price=Decimal("0.00"), sku="STICKER", is_virtual=True)
DRAFT = CatalogProduct(product_id="500", name="Unreleased", unit_price=Decimal("10.00"), purchasable=False)
SOLD_OUT = CatalogProduct(product_id="600", name="Sold Out", unit_price=Decimal("10.00"), stock=0)

US_ADDRESS = Address(
    first_name="Ada",
    last_name="Lovelace",
    address_1="1 Main St",
    city="Austin",
    state="TX",
    postcode="78701",
    country="US",
)
CA_ADDRESS = Address(first_name="Ada", city="Toronto", postcode="M5V 2T6", country="CA")


class FakeCatalog:
    """Catalog keyed by whichever reference the caller passes.

    ``interleave`` holds callbacks run (one per lookup) before a lookup
    answers, to simulate a concurrent writer.
    """

    def __init__(self, products: list[CatalogProduct]) -> None:
        self.products = list(products)
        self.lookups: list[ProductRef] = []
        self.interleave: list[Callable[[], Awaitable[None]]] = []

    def put(self, product: CatalogProduct) -> None:
        self.products = [
            p for p in self.products if (p.product_id, p.variant_id) != (product.product_id, product.variant_id)
        ]
        self.products.append(product)

    def remove(self, product_id: str) -> None:
        self.products = [p for p in self.products if p.product_id != product_id]

    async def resolve(self, ref: ProductRef) -> CatalogProduct | None:
        self.lookups.append(ref)
        if self.interleave:
            await self.interleave.pop(0)()
        ((field, value),) = ref.query_params().items()
        return next((p for p in self.products if getattr(p, field) == value), None)


class FakeCoupons:
    """Fixed-amount coupons; unknown codes are rejected like the real engine."""

    def __init__(self, discounts: dict[str, Decimal]) -> None:
        self.discounts = discounts

    async def validate_and_price(self, code: str, items: list[CartItem]) -> AppliedCoupon:
        if code not in self.discounts:
            raise UpstreamError("coupon", "invalid_coupon", f"Coupon '{code}' does not exist.", status_code=400)
        return AppliedCoupon(code=code, discount=self.discounts[code])


class FakeShipping:
    """Domestic and international rates by destination country."""

    DOMESTIC = [
        ShippingOption(method_id="flat_rate", label="Flat rate", cost=Decimal("5.00"), tax=Decimal("1.50")),
        ShippingOption(method_id="express", label="Express", cost=Decimal("15.00"), tax=Decimal("1.50")),
    ]
    INTERNATIONAL = [
        ShippingOption(method_id="international", label="International", cost=Decimal("25.00")),
    ]

    def __init__(self) -> None:
        self.quotes: list[Address] = []

    async def quote(self, destination: Address, items: list[CartItem]) -> list[ShippingOption]:
        self.quotes.append(destination)
        return list(self.DOMESTIC if destination.country == "US" else self.INTERNATIONAL)


class FakeLedger:
    """Order ledger recording each draft's status."""

    def __init__(self) -> None:
        self.orders: dict[str, str] = {}
        self.fail_advance = False

    async def create_draft(
        self,
        items: list[CartItem],
        shipping_address: Address | None,
        billing_address: Address | None,
    ) -> str:
        order_ref = f"order-{len(self.orders) + 1}"
        self.orders[order_ref] = "draft"
        return order_ref

    async def advance(self, order_ref: str, shipping_method: str | None, payment_method: str | None) -> None:
        if self.fail_advance:
            raise UpstreamError("ledger", "ledger_unavailable", "Ledger is down.", status_code=503)
        self.orders[order_ref] = "pending_payment"

    async def cancel(self, order_ref: str) -> None:
        self.orders[order_ref] = "cancelled"


class FakeClock:
    """Settable clock so expiry can be tested without sleeping."""

    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)

