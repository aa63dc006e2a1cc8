"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from ucp_checkout.application.cart_service import (
    CartService,
    ConversionResult,
    DeleteCartResult,
    get_cart_service,
)
from ucp_checkout.application.checkout_service import (
    CheckoutService,
    get_checkout_service,
)
from ucp_checkout.application.sweeper import ExpirationSweeper, SweepResult

__all__ = [
    "CartService",
    "ConversionResult",
    "DeleteCartResult",
    "get_cart_service",
    "CheckoutService",
    "get_checkout_service",
    "ExpirationSweeper",
    "SweepResult",
]
