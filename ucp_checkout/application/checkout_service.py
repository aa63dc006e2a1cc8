"""Checkout application service.

Orchestrates the checkout session lifecycle:
- Creating sessions from item references or converted carts
- Resolving addresses, coupon and shipping method
- Confirming sessions into the order ledger
- Cancelling and expiring pending sessions
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ucp_checkout.domain.base import utcnow
from ucp_checkout.domain.entities import CartItem, CheckoutSession
from ucp_checkout.domain.exceptions import (
    ConcurrentModificationError,
    InvalidItemsError,
    ProductNotFoundError,
    SessionNotFoundError,
    UpstreamError,
)
from ucp_checkout.domain.value_objects import (
    Address,
    CatalogProduct,
    LineRequest,
    ProductRef,
    SessionId,
)
from ucp_checkout.infrastructure.collaborators import Collaborators, get_collaborators
from ucp_checkout.infrastructure.config import settings
from ucp_checkout.infrastructure.database import async_session_factory
from ucp_checkout.infrastructure.repositories import CheckoutSessionStore

logger = structlog.get_logger()


class CheckoutService:
    """Application service for checkout sessions.

    Every mutation is an optimistic read-modify-write on the session row;
    a lost race re-runs the whole operation up to ``max_write_attempts``
    times before giving up with a retryable error.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        collaborators: Collaborators | None = None,
        session_ttl: timedelta | None = None,
        currency: str | None = None,
        web_checkout_url_template: str | None = None,
        max_write_attempts: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize service.

        Args:
            session_factory: Factory for database sessions.
            collaborators: Catalog, coupon, shipping and ledger clients.
            session_ttl: Lifetime of a pending session.
            currency: Currency of every amount.
            web_checkout_url_template: Format string with ``order_ref``
                and ``session_id`` placeholders.
            max_write_attempts: Optimistic write attempts per operation.
            clock: Source of the current time.
        """
        self.session_factory = session_factory or async_session_factory
        self.collaborators = collaborators or get_collaborators()
        self.session_ttl = session_ttl or settings.session_ttl
        self.currency = currency or settings.currency
        self.web_checkout_url_template = web_checkout_url_template or settings.web_checkout_url_template
        self.max_write_attempts = max_write_attempts or settings.max_write_attempts
        self.clock = clock

    # -------------------------------------------------------------------------
    # Session Creation
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        items: list[LineRequest],
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        coupon_code: str | None = None,
        note: str | None = None,
    ) -> CheckoutSession:
        """Create a pending checkout session.

        Args:
            items: Product references with quantities.
            shipping_address: Optional destination.
            billing_address: Optional billing address.
            coupon_code: Optional coupon to apply.
            note: Optional customer note.

        Returns:
            The new pending session.

        Raises:
            InvalidItemsError: If items is empty.
            ProductNotFoundError: If a reference does not resolve.
            ProductNotPurchasableError: If a product cannot be bought.
            InsufficientStockError: If stock cannot cover a line.
            UpstreamError: If the coupon is rejected or a collaborator fails.
        """
        lines = await self.resolve_lines(items)
        checkout = None
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    checkout = await self.create_session_within(
                        db,
                        lines,
                        shipping_address=shipping_address,
                        billing_address=billing_address,
                        coupon_code=coupon_code,
                        note=note,
                    )
        except Exception:
            # Commit failed after the draft was created.
            if checkout is not None:
                await self.cancel_draft(checkout.order_ref)
            raise
        logger.info(
            "Checkout session created",
            session_id=str(checkout.id),
            order_ref=checkout.order_ref,
            item_count=len(checkout.items),
            next_action=checkout.next_action.value,
        )
        return checkout

    async def resolve_lines(self, items: list[LineRequest]) -> list[CartItem]:
        """Resolve references against the catalog into line snapshots.

        Repeated references to the same product and variant fold into
        one line, and stock is checked against the folded quantity.
        """
        if not items:
            raise InvalidItemsError()

        resolved: dict[tuple[str, str | None], tuple[CatalogProduct, int]] = {}
        for request in items:
            product = await self.collaborators.catalog.resolve(request.ref)
            if product is None:
                raise ProductNotFoundError(request.ref.describe())
            key = (product.product_id, product.variant_id)
            quantity = request.quantity + (resolved[key][1] if key in resolved else 0)
            product.ensure_can_supply(quantity)
            resolved[key] = (product, quantity)

        return [CartItem.from_product(product, quantity) for product, quantity in resolved.values()]

    async def create_session_within(
        self,
        db: AsyncSession,
        lines: list[CartItem],
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        coupon_code: str | None = None,
        note: str | None = None,
        session_id: SessionId | None = None,
        source_cart_id: str | None = None,
    ) -> CheckoutSession:
        """Create a session inside the caller's transaction.

        The ledger draft is cancelled if anything after it fails, so a
        rolled-back transaction never leaves an orphan order behind.

        Args:
            db: Session whose transaction the insert joins.
            lines: Resolved line snapshots.
            shipping_address: Optional destination.
            billing_address: Optional billing address.
            coupon_code: Optional coupon to apply.
            note: Optional customer note.
            session_id: Pre-generated session ID.
            source_cart_id: Cart being converted, if any.

        Returns:
            The inserted session (not yet committed).
        """
        order_ref = await self.collaborators.ledger.create_draft(
            lines, shipping_address, billing_address or shipping_address
        )
        try:
            checkout = CheckoutSession.create(
                order_ref=order_ref,
                items=lines,
                currency=self.currency,
                ttl=self.session_ttl,
                session_id=session_id,
                shipping_address=shipping_address,
                billing_address=billing_address,
                note=note,
                source_cart_id=source_cart_id,
                now=self.clock(),
            )
            if coupon_code:
                checkout.apply_coupon(await self.collaborators.coupons.validate_and_price(coupon_code, lines))
            if checkout.requires_shipping and checkout.has_shipping_address:
                checkout.set_shipping_options(
                    await self.collaborators.shipping.quote(checkout.shipping_address, lines)
                )
            checkout.web_checkout_url = self.web_checkout_url_template.format(
                order_ref=order_ref, session_id=str(checkout.id)
            )
            await CheckoutSessionStore(db).add(checkout)
        except Exception:
            await self.cancel_draft(order_ref)
            raise
        return checkout

    async def cancel_draft(self, order_ref: str) -> None:
        """Best-effort cancellation of a ledger draft after a failed create."""
        try:
            await self.collaborators.ledger.cancel(order_ref)
        except UpstreamError as e:
            logger.error(
                "Failed to cancel ledger draft",
                order_ref=order_ref,
                error_code=e.code,
                error=e.message,
            )
        else:
            logger.info("Ledger draft cancelled", order_ref=order_ref)

    # -------------------------------------------------------------------------
    # Session Queries
    # -------------------------------------------------------------------------

    async def get_session(self, session_id: str) -> CheckoutSession:
        """Get a session by ID.

        Raises:
            SessionNotFoundError: If the ID is unknown.
            SessionExpiredError: If the session expired.
        """
        async with self.session_factory() as db:
            checkout = await CheckoutSessionStore(db).get(session_id)
        if checkout is None:
            raise SessionNotFoundError(session_id)
        checkout.ensure_readable(self.clock())
        return checkout

    # -------------------------------------------------------------------------
    # Session Updates
    # -------------------------------------------------------------------------

    async def update_session(
        self,
        session_id: str,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        shipping_method: str | None = None,
        coupon_code: str | None = None,
    ) -> CheckoutSession:
        """Apply address, coupon and shipping method changes.

        A new shipping address triggers a fresh quote; a selected method
        no longer offered is dropped. An empty coupon code removes the
        coupon.

        Raises:
            SessionNotFoundError: If the ID is unknown.
            SessionAlreadyConfirmedError: If the session is confirmed.
            SessionCancelledError: If the session is cancelled.
            SessionExpiredError: If the session expired.
            InvalidShippingMethodError: If the method is not offered.
            UpstreamError: If the coupon is rejected or a collaborator fails.
        """

        async def apply(checkout: CheckoutSession) -> None:
            checkout.ensure_mutable(self.clock())
            if shipping_address is not None or billing_address is not None:
                checkout.set_addresses(shipping_address, billing_address)
            if shipping_address is not None and checkout.requires_shipping:
                options = []
                if checkout.has_shipping_address:
                    options = await self.collaborators.shipping.quote(checkout.shipping_address, checkout.items)
                checkout.set_shipping_options(options)
            if coupon_code is not None:
                coupon = None
                if coupon_code:
                    coupon = await self.collaborators.coupons.validate_and_price(coupon_code, checkout.items)
                checkout.apply_coupon(coupon)
            if shipping_method:
                checkout.select_shipping_method(shipping_method)

        checkout = await self._write(session_id, apply)
        logger.info(
            "Checkout session updated",
            session_id=session_id,
            next_action=checkout.next_action.value,
            selected_shipping_method=checkout.selected_shipping_method,
        )
        return checkout

    async def confirm_session(
        self,
        session_id: str,
        shipping_method: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutSession:
        """Confirm a session and advance its ledger order out of draft.

        The status change and the ledger call commit together: if the
        ledger fails the session stays pending.

        Raises:
            SessionNotFoundError: If the ID is unknown.
            SessionAlreadyConfirmedError: If already confirmed.
            SessionCancelledError: If cancelled.
            SessionExpiredError: If expired.
            InvalidShippingMethodError: If the method is not offered.
            ShippingMethodRequiredError: If physical lines have no method.
            PaymentMethodRequiredError: If a positive total has no payment method.
            UpstreamError: If the ledger fails.
        """

        async def apply(checkout: CheckoutSession) -> None:
            checkout.confirm(shipping_method, payment_method, now=self.clock())

        async def after_write(checkout: CheckoutSession) -> None:
            await self.collaborators.ledger.advance(
                checkout.order_ref,
                checkout.selected_shipping_method,
                checkout.payment_method,
            )

        checkout = await self._write(session_id, apply, after_write)
        logger.info(
            "Checkout session confirmed",
            session_id=session_id,
            order_ref=checkout.order_ref,
            total=str(checkout.totals().total),
        )
        return checkout

    async def cancel_session(self, session_id: str) -> CheckoutSession:
        """Cancel a pending session and its ledger draft.

        Raises:
            SessionNotFoundError: If the ID is unknown.
            SessionAlreadyConfirmedError: If already confirmed.
            SessionCancelledError: If already cancelled.
            SessionExpiredError: If expired.
            UpstreamError: If the ledger fails.
        """

        async def apply(checkout: CheckoutSession) -> None:
            checkout.cancel(now=self.clock())

        async def after_write(checkout: CheckoutSession) -> None:
            await self.collaborators.ledger.cancel(checkout.order_ref)

        checkout = await self._write(session_id, apply, after_write)
        logger.info("Checkout session cancelled", session_id=session_id, order_ref=checkout.order_ref)
        return checkout

    async def expire_sessions(self) -> int:
        """Mark pending sessions past their expiry as expired.

        Returns:
            Number of sessions expired.
        """
        async with self.session_factory() as db:
            async with db.begin():
                count = await CheckoutSessionStore(db).expire_pending(self.clock())
        if count:
            logger.info("Expired checkout sessions", count=count)
        return count

    # -------------------------------------------------------------------------
    # Optimistic Writes
    # -------------------------------------------------------------------------

    async def _write(
        self,
        session_id: str,
        apply: Callable[[CheckoutSession], Awaitable[None]],
        after_write: Callable[[CheckoutSession], Awaitable[None]] | None = None,
    ) -> CheckoutSession:
        """Run a read-modify-write on one session with retries.

        ``apply`` runs outside any transaction; ``after_write`` runs after
        the version-checked update but before commit, so its failure
        rolls the update back. A commit that fails after ``after_write``
        succeeded is logged as out of sync with the ledger and re-raised.
        """
        for attempt in range(1, self.max_write_attempts + 1):
            async with self.session_factory() as db:
                async with db.begin():
                    checkout = await CheckoutSessionStore(db).get(session_id)
                if checkout is None:
                    raise SessionNotFoundError(session_id)
                expected = checkout.version

                await apply(checkout)

                wrote_through = False
                try:
                    async with db.begin():
                        if await CheckoutSessionStore(db).save(checkout, expected):
                            if after_write is not None:
                                await after_write(checkout)
                                wrote_through = True
                            return checkout
                except SQLAlchemyError as e:
                    if wrote_through:
                        logger.error(
                            "Session commit failed after ledger call; ledger is ahead",
                            session_id=session_id,
                            order_ref=checkout.order_ref,
                            status=checkout.status.value,
                            error=str(e),
                        )
                    raise

            logger.info("Retrying checkout session write", session_id=session_id, attempt=attempt)

        raise ConcurrentModificationError("CheckoutSession", session_id, self.max_write_attempts)


def line_requests_for(items: list[CartItem]) -> list[LineRequest]:
    """Turn cart lines back into catalog references.

    Variant IDs are the most specific reference, then SKU, then product ID.
    """
    requests = []
    for item in items:
        if item.variant_id:
            ref = ProductRef(variant_id=item.variant_id)
        elif item.sku:
            ref = ProductRef(sku=item.sku)
        else:
            ref = ProductRef(product_id=item.product_id)
        requests.append(LineRequest(ref=ref, quantity=item.quantity))
    return requests


# Global service instance
_checkout_service: CheckoutService | None = None


def get_checkout_service() -> CheckoutService:
    """Get checkout service singleton."""
    global _checkout_service
    if _checkout_service is None:
        _checkout_service = CheckoutService()
    return _checkout_service
