"""HTTP clients for the external collaborators.

The services depend on the Protocols defined here; the Http* classes are
the production implementations, talking JSON to the catalog, coupon
engine, shipping rate engine and order ledger.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from ucp_checkout.domain.entities import CartItem
from ucp_checkout.domain.exceptions import UpstreamError
from ucp_checkout.domain.value_objects import (
    Address,
    AppliedCoupon,
    CatalogProduct,
    ProductRef,
    ShippingOption,
)
from ucp_checkout.infrastructure.config import settings

logger = structlog.get_logger()


# ============================================================================
# Collaborator Interfaces
# ============================================================================


class CatalogProvider(Protocol):
    async def resolve(self, ref: ProductRef) -> CatalogProduct | None:
        """Resolve a product reference; None when the product does not exist."""
        ...


class CouponEngine(Protocol):
    async def validate_and_price(self, code: str, items: list[CartItem]) -> AppliedCoupon:
        """Price a coupon for the given lines or raise UpstreamError."""
        ...


class ShippingRateEngine(Protocol):
    async def quote(self, destination: Address, items: list[CartItem]) -> list[ShippingOption]:
        ...


class OrderLedger(Protocol):
    async def create_draft(
        self,
        items: list[CartItem],
        shipping_address: Address | None,
        billing_address: Address | None,
    ) -> str:
        """Create a draft order and return its reference."""
        ...

    async def advance(self, order_ref: str, shipping_method: str | None, payment_method: str | None) -> None:
        """Move a draft order to the awaiting-payment stage.

        Must be idempotent: a confirm whose commit fails after this call
        leaves the session pending, and confirming again calls it again.
        """
        ...

    async def cancel(self, order_ref: str) -> None:
        ...


def _line_payload(items: list[CartItem]) -> list[dict[str, Any]]:
    return [
        {
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "sku": item.sku,
            "name": item.name,
            "quantity": item.quantity,
            "unit_price": str(item.unit_price),
            "line_total": str(item.line_total),
            "is_virtual": item.is_virtual,
        }
        for item in items
    ]


# ============================================================================
# HTTP Base Client
# ============================================================================


class ServiceClient:
    """Lazy httpx client for one collaborator.

    Transport failures become ``upstream_unavailable``; non-2xx answers
    become an UpstreamError carrying the collaborator's own error code
    and message.
    """

    service = "upstream"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Collaborator base URL.
            timeout: Request timeout in seconds.
            transport: Optional transport override (used in tests).
        """
        self.base_url = base_url
        self.timeout = timeout if timeout is not None else settings.upstream_timeout_seconds
        self.transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        allow_404: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """Send a request and decode the JSON answer.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            allow_404: Return None instead of raising on 404.
            **kwargs: Passed to httpx (json, params).

        Returns:
            Decoded JSON body, or None for an allowed 404 or empty body.

        Raises:
            UpstreamError: On transport failure or non-2xx answer.
        """
        try:
            client = await self._get_client()
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(
                "Upstream request failed",
                service=self.service,
                path=path,
                error=str(e),
            )
            raise UpstreamError(
                self.service,
                "upstream_unavailable",
                f"{self.service} service is unavailable: {e}",
            ) from e

        if response.status_code == 404 and allow_404:
            return None

        if response.status_code >= 400:
            raise self._error_from(response)

        if not response.content:
            return None
        return response.json()

    def _error_from(self, response: httpx.Response) -> UpstreamError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("error_code") or body.get("code") or f"{self.service}_error"
        message = body.get("message") or response.text or f"{self.service} request failed"
        logger.warning(
            "Upstream rejected request",
            service=self.service,
            status_code=response.status_code,
            error_code=code,
        )
        return UpstreamError(
            self.service,
            code,
            message,
            status_code=response.status_code,
            details=body.get("details") or {},
        )

    def _require(
        self,
        data: dict[str, Any] | None,
        *fields: str,
        nullable: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        """Return ``data`` if every field is set, else raise invalid_response.

        Fields named in ``nullable`` must be present but may be null.
        """
        if not isinstance(data, dict):
            data = {}
        missing = [
            field
            for field in fields
            if field not in data or (data[field] is None and field not in nullable)
        ]
        if missing:
            logger.warning("Upstream answer is incomplete", service=self.service, missing=missing)
            raise UpstreamError(
                self.service,
                "invalid_response",
                f"{self.service} response is missing: {', '.join(missing)}.",
                details={"missing": missing},
            )
        return data


# ============================================================================
# Catalog
# ============================================================================


class HttpCatalogProvider(ServiceClient):
    """Catalog lookups by sku, variant_id or product_id."""

    service = "catalog"

    async def resolve(self, ref: ProductRef) -> CatalogProduct | None:
        data = await self._request("GET", "/products/resolve", allow_404=True, params=ref.query_params())
        if data is None:
            return None
        data = self._require(
            data,
            "id",
            "name",
            "unit_price",
            "stock_available",
            "purchasable",
            "is_virtual",
            nullable=("stock_available",),
        )
        return CatalogProduct(
            product_id=str(data["id"]),
            variant_id=str(data["variant_id"]) if data.get("variant_id") else None,
            sku=data.get("sku"),
            name=data["name"],
            unit_price=data["unit_price"],
            stock=data["stock_available"],
            purchasable=bool(data["purchasable"]),
            is_virtual=bool(data["is_virtual"]),
        )


# ============================================================================
# Coupon Engine
# ============================================================================


class HttpCouponEngine(ServiceClient):
    """Coupon validation and pricing."""

    service = "coupon"

    async def validate_and_price(self, code: str, items: list[CartItem]) -> AppliedCoupon:
        data = await self._request(
            "POST",
            "/coupons/validate",
            json={"code": code, "items": _line_payload(items)},
        )
        data = self._require(data, "discount_amount")
        return AppliedCoupon(code=code, discount=data["discount_amount"])


# ============================================================================
# Shipping Rate Engine
# ============================================================================


class HttpShippingRateEngine(ServiceClient):
    """Shipping quotes for a destination."""

    service = "shipping"

    async def quote(self, destination: Address, items: list[CartItem]) -> list[ShippingOption]:
        data = await self._request(
            "POST",
            "/rates/quote",
            json={"destination": destination.to_dict(), "items": _line_payload(items)},
        )
        return [ShippingOption.from_dict(option) for option in (data or {}).get("options", [])]


# ============================================================================
# Order Ledger
# ============================================================================


class HttpOrderLedger(ServiceClient):
    """Durable orders: drafts, advancement and cancellation."""

    service = "ledger"

    async def create_draft(
        self,
        items: list[CartItem],
        shipping_address: Address | None,
        billing_address: Address | None,
    ) -> str:
        data = await self._request(
            "POST",
            "/orders",
            json={
                "items": _line_payload(items),
                "shipping_address": shipping_address.to_dict() if shipping_address else None,
                "billing_address": billing_address.to_dict() if billing_address else None,
            },
        )
        if not data or not data.get("order_ref"):
            raise UpstreamError(self.service, "invalid_response", "Ledger returned no order_ref.")
        return str(data["order_ref"])

    async def advance(self, order_ref: str, shipping_method: str | None, payment_method: str | None) -> None:
        await self._request(
            "POST",
            f"/orders/{order_ref}/advance",
            json={"shipping_method": shipping_method, "payment_method": payment_method},
        )

    async def cancel(self, order_ref: str) -> None:
        await self._request("POST", f"/orders/{order_ref}/cancel")


# ============================================================================
# Collaborator Registry
# ============================================================================


@dataclass
class Collaborators:
    """The four collaborators the services talk to."""

    catalog: CatalogProvider
    coupons: CouponEngine
    shipping: ShippingRateEngine
    ledger: OrderLedger

    async def close(self) -> None:
        """Close every HTTP client."""
        for client in (self.catalog, self.coupons, self.shipping, self.ledger):
            if isinstance(client, ServiceClient):
                await client.close()


# Global collaborators instance
_collaborators: Collaborators | None = None


def get_collaborators() -> Collaborators:
    """Get the collaborators singleton.

    Returns:
        Collaborators built from settings.
    """
    global _collaborators
    if _collaborators is None:
        _collaborators = Collaborators(
            catalog=HttpCatalogProvider(settings.catalog_url),
            coupons=HttpCouponEngine(settings.coupon_url),
            shipping=HttpShippingRateEngine(settings.shipping_url),
            ledger=HttpOrderLedger(settings.ledger_url),
        )
    return _collaborators


async def close_collaborators() -> None:
    """Close and forget the collaborators singleton."""
    global _collaborators
    if _collaborators is not None:
        await _collaborators.close()
        _collaborators = None
