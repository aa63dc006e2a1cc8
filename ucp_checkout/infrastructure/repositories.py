"""Cart and checkout session stores.

Both stores work inside a caller-owned AsyncSession so a cart claim and
the session it produces can commit in one transaction. Writes are
optimistic: ``save`` only succeeds when the row still has the version
the caller read.

Example usage:
    async with session_factory() as db, db.begin():
        store = CartStore(db)
        cart = await store.get(cart_id)
        expected = cart.version
        cart.clear()
        if not await store.save(cart, expected):
            ...  # someone else wrote first
"""

from datetime import datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ucp_checkout.domain.base import utcnow
from ucp_checkout.domain.entities import Cart, CartItem, CheckoutSession
from ucp_checkout.domain.exceptions import ConcurrentModificationError
from ucp_checkout.domain.state_machines import CartStatus, NextAction, SessionStatus
from ucp_checkout.domain.value_objects import (
    Address,
    AppliedCoupon,
    CartId,
    SessionId,
    ShippingOption,
)
from ucp_checkout.infrastructure.models import CartModel, CheckoutSessionModel

logger = structlog.get_logger()

LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_timeout(exc: DBAPIError) -> bool:
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


# ============================================================================
# Cart Store
# ============================================================================


class CartStore:
    """Persistence for Cart aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session.

        Args:
            session: Async SQLAlchemy session owning the transaction.
        """
        self.session = session

    async def add(self, cart: Cart) -> Cart:
        """Insert a new cart at version 1."""
        cart.version = 1
        self.session.add(
            CartModel(
                cart_id=str(cart.id),
                status=cart.status.value,
                items=[item.to_dict() for item in cart.items],
                cart_metadata=cart.metadata,
                checkout_session_id=cart.checkout_session_id,
                version=cart.version,
                created_at=cart.created_at,
                updated_at=cart.updated_at,
                expires_at=cart.expires_at,
            )
        )
        await self.session.flush()
        return cart

    async def get(self, cart_id: str) -> Cart | None:
        """Load a cart by ID.

        Args:
            cart_id: Cart identifier.

        Returns:
            Cart if found, None otherwise.
        """
        result = await self.session.execute(
            select(CartModel)
            .where(CartModel.cart_id == cart_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return self._to_entity(model)

    async def save(self, cart: Cart, expected_version: int) -> bool:
        """Write a cart if nobody else wrote it since ``expected_version``.

        Args:
            cart: Mutated cart.
            expected_version: Version the cart had when it was read.

        Returns:
            True if the row was updated, False if the version moved on.

        Raises:
            ConcurrentModificationError: If the row lock could not be
                taken within the lock timeout.
        """
        new_version = expected_version + 1
        stmt = (
            update(CartModel)
            .where(CartModel.cart_id == str(cart.id), CartModel.version == expected_version)
            .values(
                status=cart.status.value,
                items=[item.to_dict() for item in cart.items],
                cart_metadata=cart.metadata,
                checkout_session_id=cart.checkout_session_id,
                version=new_version,
                updated_at=cart.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except DBAPIError as e:
            if _is_lock_timeout(e):
                raise ConcurrentModificationError("Cart", str(cart.id), 1) from e
            raise
        if result.rowcount != 1:
            logger.info(
                "Cart version conflict",
                cart_id=str(cart.id),
                expected_version=expected_version,
            )
            return False
        cart.version = new_version
        return True

    async def delete(self, cart_id: str, expected_version: int | None = None) -> bool:
        """Hard-delete a cart.

        Args:
            cart_id: Cart identifier.
            expected_version: Only delete if the row still has this version.

        Returns:
            True if a row was removed.
        """
        stmt = delete(CartModel).where(CartModel.cart_id == cart_id)
        if expected_version is not None:
            stmt = stmt.where(CartModel.version == expected_version)
        result = await self.session.execute(stmt)
        return result.rowcount > 0

    async def delete_expired(self, now: datetime | None = None) -> int:
        """Delete active carts whose expiry has passed.

        Converted carts are kept so later reads still report the session.

        Returns:
            Number of carts deleted.
        """
        result = await self.session.execute(
            delete(CartModel).where(
                CartModel.status == CartStatus.ACTIVE.value,
                CartModel.expires_at < (now or utcnow()),
            )
        )
        return result.rowcount

    @staticmethod
    def _to_entity(model: CartModel) -> Cart:
        return Cart(
            id=CartId(model.cart_id),
            status=CartStatus(model.status),
            items=[CartItem.from_dict(data) for data in model.items or []],
            metadata=dict(model.cart_metadata or {}),
            checkout_session_id=model.checkout_session_id,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
            expires_at=model.expires_at,
        )


# ============================================================================
# Checkout Session Store
# ============================================================================


class CheckoutSessionStore:
    """Persistence for CheckoutSession aggregates."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session.

        Args:
            session: Async SQLAlchemy session owning the transaction.
        """
        self.session = session

    async def add(self, checkout: CheckoutSession) -> CheckoutSession:
        """Insert a new session at version 1."""
        checkout.version = 1
        self.session.add(
            CheckoutSessionModel(
                session_id=str(checkout.id),
                order_ref=checkout.order_ref,
                source_cart_id=checkout.source_cart_id,
                created_at=checkout.created_at,
                expires_at=checkout.expires_at,
                version=checkout.version,
                **self._mutable_columns(checkout),
            )
        )
        await self.session.flush()
        return checkout

    async def get(self, session_id: str) -> CheckoutSession | None:
        """Load a session by ID.

        Args:
            session_id: Session identifier.

        Returns:
            CheckoutSession if found, None otherwise.
        """
        result = await self.session.execute(
            select(CheckoutSessionModel)
            .where(CheckoutSessionModel.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return self._to_entity(model)

    async def save(self, checkout: CheckoutSession, expected_version: int) -> bool:
        """Write a session if nobody else wrote it since ``expected_version``.

        Returns:
            True if the row was updated, False if the version moved on.

        Raises:
            ConcurrentModificationError: If the row lock could not be
                taken within the lock timeout.
        """
        new_version = expected_version + 1
        stmt = (
            update(CheckoutSessionModel)
            .where(
                CheckoutSessionModel.session_id == str(checkout.id),
                CheckoutSessionModel.version == expected_version,
            )
            .values(version=new_version, **self._mutable_columns(checkout))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except DBAPIError as e:
            if _is_lock_timeout(e):
                raise ConcurrentModificationError("CheckoutSession", str(checkout.id), 1) from e
            raise
        if result.rowcount != 1:
            logger.info(
                "Checkout session version conflict",
                session_id=str(checkout.id),
                expected_version=expected_version,
            )
            return False
        checkout.version = new_version
        return True

    async def expire_pending(self, now: datetime | None = None) -> int:
        """Mark pending sessions past their expiry as expired.

        Returns:
            Number of sessions expired.
        """
        result = await self.session.execute(
            update(CheckoutSessionModel)
            .where(
                CheckoutSessionModel.status == SessionStatus.PENDING.value,
                CheckoutSessionModel.expires_at < (now or utcnow()),
            )
            .values(
                status=SessionStatus.EXPIRED.value,
                next_action=NextAction.NONE.value,
                version=CheckoutSessionModel.version + 1,
                updated_at=now or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    def _mutable_columns(checkout: CheckoutSession) -> dict:
        totals = checkout.totals()
        return {
            "status": checkout.status.value,
            "next_action": checkout.next_action.value,
            "items": [item.to_dict() for item in checkout.items],
            "shipping_address": checkout.shipping_address.to_dict() if checkout.shipping_address else None,
            "billing_address": checkout.billing_address.to_dict() if checkout.billing_address else None,
            "applied_coupon": checkout.applied_coupon.to_dict() if checkout.applied_coupon else None,
            "shipping_options": [option.to_dict() for option in checkout.shipping_options],
            "selected_shipping_method": checkout.selected_shipping_method,
            "payment_method": checkout.payment_method,
            "note": checkout.note,
            "web_checkout_url": checkout.web_checkout_url,
            "subtotal": totals.subtotal,
            "discount": totals.discount,
            "shipping": totals.shipping,
            "tax": totals.tax,
            "total": totals.total,
            "currency": totals.currency,
            "updated_at": checkout.updated_at,
            "confirmed_at": checkout.confirmed_at,
        }

    @staticmethod
    def _to_entity(model: CheckoutSessionModel) -> CheckoutSession:
        return CheckoutSession(
            id=SessionId(model.session_id),
            order_ref=model.order_ref,
            items=[CartItem.from_dict(data) for data in model.items or []],
            currency=model.currency,
            status=SessionStatus(model.status),
            next_action=NextAction(model.next_action),
            shipping_address=Address.from_dict(model.shipping_address),
            billing_address=Address.from_dict(model.billing_address),
            applied_coupon=AppliedCoupon.from_dict(model.applied_coupon),
            shipping_options=[ShippingOption.from_dict(o) for o in model.shipping_options or []],
            selected_shipping_method=model.selected_shipping_method,
            payment_method=model.payment_method,
            note=model.note,
            web_checkout_url=model.web_checkout_url,
            source_cart_id=model.source_cart_id,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
            expires_at=model.expires_at,
            confirmed_at=model.confirmed_at,
        )

