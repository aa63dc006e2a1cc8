"""Cart application service.

Orchestrates the cart lifecycle including:
- Creating, reading, clearing and deleting carts
- Adding, updating and removing lines against the live catalog
- Converting a cart into a checkout session exactly once
- Deleting expired carts
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ucp_checkout.application.checkout_service import (
    CheckoutService,
    get_checkout_service,
    line_requests_for,
)
from ucp_checkout.domain.base import utcnow
from ucp_checkout.domain.entities import Cart, CartItem, CheckoutSession
from ucp_checkout.domain.exceptions import (
    CartEmptyError,
    CartNotFoundError,
    ConcurrentModificationError,
    ProductNotFoundError,
)
from ucp_checkout.domain.value_objects import (
    Address,
    CartTotals,
    CatalogProduct,
    LineRequest,
    ProductRef,
    SessionId,
)
from ucp_checkout.infrastructure.collaborators import CatalogProvider, get_collaborators
from ucp_checkout.infrastructure.config import settings
from ucp_checkout.infrastructure.database import async_session_factory
from ucp_checkout.infrastructure.repositories import CartStore

logger = structlog.get_logger()

T = TypeVar("T")


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class DeleteCartResult:
    """Result of deleting a cart."""

    cart_id: str
    deleted: bool


@dataclass
class ConversionResult:
    """Result of converting a cart into a checkout session."""

    cart_id: str
    checkout_session: CheckoutSession
    converted: bool = True


# ============================================================================
# Cart Service
# ============================================================================


class CartService:
    """Application service for carts.

    Line mutations are optimistic: the cart is read, changed in memory
    (including any catalog lookups) and written back only if its version
    is unchanged. A lost race re-runs the whole operation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        catalog: CatalogProvider | None = None,
        checkout_service: CheckoutService | None = None,
        cart_ttl: timedelta | None = None,
        max_items: int | None = None,
        currency: str | None = None,
        currency_symbol: str | None = None,
        max_write_attempts: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize service.

        Args:
            session_factory: Factory for database sessions.
            catalog: Catalog provider for product lookups.
            checkout_service: Service that creates sessions on conversion.
            cart_ttl: Lifetime of a new cart.
            max_items: Maximum distinct lines per cart.
            currency: Currency code reported in totals.
            currency_symbol: Currency symbol reported in totals.
            max_write_attempts: Optimistic write attempts per operation.
            clock: Source of the current time.
        """
        self.session_factory = session_factory or async_session_factory
        self.catalog = catalog or get_collaborators().catalog
        self.checkout_service = checkout_service or get_checkout_service()
        self.cart_ttl = cart_ttl or settings.cart_ttl
        self.max_items = max_items or settings.cart_max_items
        self.currency = currency or settings.currency
        self.currency_symbol = currency_symbol or settings.currency_symbol
        self.max_write_attempts = max_write_attempts or settings.max_write_attempts
        self.clock = clock

    def totals(self, cart: Cart) -> CartTotals:
        return cart.totals(self.currency, self.currency_symbol)

    # -------------------------------------------------------------------------
    # Cart Lifecycle
    # -------------------------------------------------------------------------

    async def create_cart(self, metadata: dict[str, Any] | None = None) -> Cart:
        """Create an empty active cart.

        Args:
            metadata: Optional caller data echoed back unchanged.

        Returns:
            The new cart.
        """
        cart = Cart.create(ttl=self.cart_ttl, metadata=metadata, now=self.clock())
        async with self.session_factory() as db:
            async with db.begin():
                await CartStore(db).add(cart)
        logger.info("Cart created", cart_id=str(cart.id), expires_at=cart.expires_at.isoformat())
        return cart

    async def get_cart(self, cart_id: str) -> Cart:
        """Get a readable cart.

        Raises:
            CartNotFoundError: If the ID is unknown.
            CartExpiredError: If the cart expired.
            CartConvertedError: If the cart was converted.
        """
        async with self.session_factory() as db:
            return await self._load(CartStore(db), cart_id)

    async def delete_cart(self, cart_id: str) -> DeleteCartResult:
        """Hard-delete a cart; unknown IDs succeed with deleted=False.

        Raises:
            CartConvertedError: If the cart was converted.
        """
        for attempt in range(1, self.max_write_attempts + 1):
            async with self.session_factory() as db:
                async with db.begin():
                    store = CartStore(db)
                    cart = await store.get(cart_id)
                    if cart is None:
                        return DeleteCartResult(cart_id=cart_id, deleted=False)
                    expected = cart.version
                    cart.mark_deleted()
                    if await store.delete(cart_id, expected_version=expected):
                        logger.info("Cart deleted", cart_id=cart_id)
                        return DeleteCartResult(cart_id=cart_id, deleted=True)
            logger.info("Retrying cart delete", cart_id=cart_id, attempt=attempt)
        raise ConcurrentModificationError("Cart", cart_id, self.max_write_attempts)

    async def cleanup_expired_carts(self) -> int:
        """Delete active carts past their expiry.

        Returns:
            Number of carts deleted.
        """
        async with self.session_factory() as db:
            async with db.begin():
                count = await CartStore(db).delete_expired(self.clock())
        if count:
            logger.info("Expired carts deleted", count=count)
        return count

    # -------------------------------------------------------------------------
    # Line Operations
    # -------------------------------------------------------------------------

    async def add_item(self, cart_id: str, request: LineRequest) -> tuple[Cart, CartItem]:
        """Add a product, merging into an existing line for the same variant.

        Args:
            cart_id: Cart to change.
            request: Product reference and quantity.

        Returns:
            The updated cart and the new or merged line.

        Raises:
            CartNotFoundError: If the ID is unknown.
            CartExpiredError: If the cart expired.
            CartConvertedError: If the cart was converted.
            ProductNotFoundError: If the reference does not resolve.
            ProductNotPurchasableError: If the product cannot be bought.
            ProductOutOfStockError: If the product has no stock.
            InsufficientStockError: If stock cannot cover the merged quantity.
            CartFullError: If the cart already holds the maximum lines.
        """

        async def apply(cart: Cart) -> CartItem:
            product = await self._resolve(request.ref)
            return cart.add_item(product, request.quantity, self.max_items)

        cart, item = await self._write(cart_id, apply)
        logger.info(
            "Cart item added",
            cart_id=cart_id,
            item_key=item.item_key,
            product_id=item.product_id,
            quantity=item.quantity,
        )
        return cart, item

    async def update_item(self, cart_id: str, item_key: str, quantity: int) -> Cart:
        """Set a line's quantity; zero removes the line.

        The new quantity is checked against live stock.

        Raises:
            CartItemNotFoundError: If no line has this key.
            InvalidQuantityError: If quantity is negative.
            ProductNotFoundError: If the product left the catalog.
            InsufficientStockError: If stock cannot cover the quantity.
        """

        async def apply(cart: Cart) -> None:
            item = cart.get_item(item_key)
            product = None
            if quantity > 0:
                product = await self._resolve(
                    ProductRef(product_id=item.product_id, variant_id=item.variant_id, sku=item.sku)
                )
            cart.set_item_quantity(item_key, quantity, product)

        cart, _ = await self._write(cart_id, apply)
        logger.info("Cart item updated", cart_id=cart_id, item_key=item_key, quantity=quantity)
        return cart

    async def remove_item(self, cart_id: str, item_key: str) -> Cart:
        """Remove a line.

        Raises:
            CartItemNotFoundError: If no line has this key.
        """

        async def apply(cart: Cart) -> None:
            cart.remove_item(item_key)

        cart, _ = await self._write(cart_id, apply)
        logger.info("Cart item removed", cart_id=cart_id, item_key=item_key)
        return cart

    async def clear_cart(self, cart_id: str) -> Cart:
        """Remove every line; the cart stays active."""

        async def apply(cart: Cart) -> None:
            cart.clear()

        cart, _ = await self._write(cart_id, apply)
        logger.info("Cart cleared", cart_id=cart_id)
        return cart

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    async def convert_to_checkout(
        self,
        cart_id: str,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        coupon_code: str | None = None,
        note: str | None = None,
    ) -> ConversionResult:
        """Turn a cart into a checkout session exactly once.

        The cart claim and the session insert commit in one transaction;
        if session creation fails the cart stays active and unchanged.

        Raises:
            CartNotFoundError: If the ID is unknown.
            CartExpiredError: If the cart expired.
            CartConvertedError: If the cart was already converted.
            CartEmptyError: If the cart has no lines.
            UpstreamError: If a collaborator rejects session creation.
        """
        for attempt in range(1, self.max_write_attempts + 1):
            async with self.session_factory() as db:
                async with db.begin():
                    cart = await self._load(CartStore(db), cart_id)
                if cart.is_empty:
                    raise CartEmptyError(cart_id)
                expected = cart.version

                lines = await self.checkout_service.resolve_lines(line_requests_for(cart.items))

                session_id = SessionId.generate()
                checkout = None
                try:
                    async with db.begin():
                        cart.mark_converted(str(session_id))
                        if await CartStore(db).save(cart, expected):
                            checkout = await self.checkout_service.create_session_within(
                                db,
                                lines,
                                shipping_address=shipping_address,
                                billing_address=billing_address,
                                coupon_code=coupon_code,
                                note=note,
                                session_id=session_id,
                                source_cart_id=cart_id,
                            )
                except Exception:
                    # Commit failed after the draft was created.
                    if checkout is not None:
                        await self.checkout_service.cancel_draft(checkout.order_ref)
                    raise

                if checkout is not None:
                    logger.info(
                        "Cart converted",
                        cart_id=cart_id,
                        session_id=str(session_id),
                        order_ref=checkout.order_ref,
                    )
                    return ConversionResult(cart_id=cart_id, checkout_session=checkout)

            logger.info("Retrying cart conversion", cart_id=cart_id, attempt=attempt)

        raise ConcurrentModificationError("Cart", cart_id, self.max_write_attempts)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load(self, store: CartStore, cart_id: str) -> Cart:
        cart = await store.get(cart_id)
        if cart is None:
            raise CartNotFoundError(cart_id)
        cart.ensure_readable(self.clock())
        return cart

    async def _resolve(self, ref: ProductRef) -> CatalogProduct:
        product = await self.catalog.resolve(ref)
        if product is None:
            raise ProductNotFoundError(ref.describe())
        return product

    async def _write(self, cart_id: str, apply: Callable[[Cart], Awaitable[T]]) -> tuple[Cart, T]:
        """Run a read-modify-write on one cart with retries.

        ``apply`` runs outside any transaction so catalog calls never hold
        a row lock.
        """
        for attempt in range(1, self.max_write_attempts + 1):
            async with self.session_factory() as db:
                async with db.begin():
                    cart = await self._load(CartStore(db), cart_id)
                expected = cart.version

                result = await apply(cart)

                async with db.begin():
                    if await CartStore(db).save(cart, expected):
                        return cart, result

            logger.info("Retrying cart write", cart_id=cart_id, attempt=attempt)

        raise ConcurrentModificationError("Cart", cart_id, self.max_write_attempts)


# Global service instance
_cart_service: CartService | None = None


def get_cart_service() -> CartService:
    """Get cart service singleton."""
    global _cart_service
    if _cart_service is None:
        _cart_service = CartService()
    return _cart_service
