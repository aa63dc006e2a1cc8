"""Expiration sweeper.

Periodically deletes expired carts and expires stale pending checkout
sessions. Reads check expiry on their own, so a late sweep only delays
cleanup and never exposes an expired record.
"""

import asyncio
from dataclasses import dataclass

import structlog

from ucp_checkout.application.cart_service import CartService, get_cart_service
from ucp_checkout.application.checkout_service import CheckoutService, get_checkout_service

logger = structlog.get_logger()


@dataclass
class SweepResult:
    """Counts from one sweep."""

    carts_deleted: int = 0
    sessions_expired: int = 0


class ExpirationSweeper:
    """Runs the cart and session expiry jobs."""

    def __init__(
        self,
        cart_service: CartService | None = None,
        checkout_service: CheckoutService | None = None,
    ) -> None:
        self.cart_service = cart_service or get_cart_service()
        self.checkout_service = checkout_service or get_checkout_service()

    async def sweep_once(self) -> SweepResult:
        """Run both expiry jobs once.

        Returns:
            SweepResult with the number of carts deleted and sessions expired.
        """
        result = SweepResult(
            carts_deleted=await self.cart_service.cleanup_expired_carts(),
            sessions_expired=await self.checkout_service.expire_sessions(),
        )
        logger.info(
            "Expiration sweep complete",
            carts_deleted=result.carts_deleted,
            sessions_expired=result.sessions_expired,
        )
        return result

    async def run_forever(self, interval: float) -> None:
        """Sweep every ``interval`` seconds until cancelled.

        A failed sweep is logged and the loop carries on.

        Args:
            interval: Seconds between sweeps.
        """
        logger.info("Expiration sweeper started", interval_seconds=interval)
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Expiration sweep failed")
            await asyncio.sleep(interval)
