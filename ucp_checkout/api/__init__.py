"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from ucp_checkout.api.carts import router as carts_router
from ucp_checkout.api.checkouts import router as checkouts_router
from ucp_checkout.api.health import router as health_router

__all__ = [
    "carts_router",
    "checkouts_router",
    "health_router",
]
