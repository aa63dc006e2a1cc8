"""Cart API endpoints.

Provides endpoints for the cart lifecycle:
- POST /carts - create cart
- GET /carts/{cart_id} - get cart
- DELETE /carts/{cart_id} - delete cart
- POST /carts/{cart_id}/items - add item
- PATCH /carts/{cart_id}/items/{item_key} - update item quantity
- DELETE /carts/{cart_id}/items/{item_key} - remove item
- DELETE /carts/{cart_id}/items - clear cart
- POST /carts/{cart_id}/checkout - convert to checkout session
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ucp_checkout.api.schemas import (
    CartCheckoutRequest,
    CartConversionResponse,
    CartCreateRequest,
    CartDeleteResponse,
    CartItemAddRequest,
    CartItemAddResponse,
    CartItemUpdateRequest,
    CartResponse,
    CheckoutSessionResponse,
    ErrorResponse,
)
from ucp_checkout.application.cart_service import CartService, get_cart_service
from ucp_checkout.domain.entities import Cart
from ucp_checkout.domain.exceptions import CartItemNotFoundError, CartNotFoundError
from ucp_checkout.domain.value_objects import CartId, ItemKey, LineRequest, ProductRef

router = APIRouter(prefix="/carts", tags=["Carts"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def valid_cart_id(cart_id: str) -> str:
    """Reject malformed cart IDs as unknown carts."""
    if not CartId.pattern.fullmatch(cart_id):
        raise CartNotFoundError(cart_id)
    return cart_id


def valid_item_key(cart_id: Annotated[str, Depends(valid_cart_id)], item_key: str) -> str:
    """Reject malformed item keys as unknown lines."""
    if not ItemKey.pattern.fullmatch(item_key):
        raise CartItemNotFoundError(cart_id, item_key)
    return item_key


CartIdParam = Annotated[str, Depends(valid_cart_id)]
ItemKeyParam = Annotated[str, Depends(valid_item_key)]
Service = Annotated[CartService, Depends(get_cart_service)]


def cart_to_response(cart: Cart, service: CartService) -> CartResponse:
    """Convert Cart entity to response schema."""
    return CartResponse.from_domain(cart, service.totals(cart))


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=CartResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create cart",
    description="Create an empty cart that expires after the configured TTL.",
)
async def create_cart(service: Service, request: CartCreateRequest | None = None) -> CartResponse:
    cart = await service.create_cart(metadata=request.metadata if request else None)
    return cart_to_response(cart, service)


@router.get(
    "/{cart_id}",
    response_model=CartResponse,
    responses=ERROR_RESPONSES,
    summary="Get cart",
)
async def get_cart(cart_id: CartIdParam, service: Service) -> CartResponse:
    """Get a cart by ID.

    Expired carts answer 410 and converted carts answer 409 with the
    checkout session ID in the error details.
    """
    cart = await service.get_cart(cart_id)
    return cart_to_response(cart, service)


@router.delete(
    "/{cart_id}",
    response_model=CartDeleteResponse,
    responses=ERROR_RESPONSES,
    summary="Delete cart",
)
async def delete_cart(cart_id: CartIdParam, service: Service) -> CartDeleteResponse:
    result = await service.delete_cart(cart_id)
    return CartDeleteResponse(cart_id=result.cart_id, deleted=result.deleted)


@router.post(
    "/{cart_id}/items",
    response_model=CartItemAddResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="Add item to cart",
    description="Add a product by sku, variant_id or product_id. Adding a product already "
    "in the cart increases its quantity.",
)
async def add_item(
    cart_id: CartIdParam,
    request: CartItemAddRequest,
    service: Service,
) -> CartItemAddResponse:
    """Add a product to a cart.

    Args:
        cart_id: Cart identifier.
        request: Product reference and quantity.
        service: Cart service.

    Returns:
        Updated cart with the key of the affected line.
    """
    line = LineRequest(
        ref=ProductRef(sku=request.sku, product_id=request.product_id, variant_id=request.variant_id),
        quantity=request.quantity,
    )
    cart, item = await service.add_item(cart_id, line)
    body = cart_to_response(cart, service)
    return CartItemAddResponse(**body.model_dump(), item_key=item.item_key)


@router.patch(
    "/{cart_id}/items/{item_key}",
    response_model=CartResponse,
    responses=ERROR_RESPONSES,
    summary="Update item quantity",
    description="Set a line's quantity. A quantity of 0 removes the line.",
)
async def update_item(
    cart_id: CartIdParam,
    item_key: ItemKeyParam,
    request: CartItemUpdateRequest,
    service: Service,
) -> CartResponse:
    cart = await service.update_item(cart_id, item_key, request.quantity)
    return cart_to_response(cart, service)


@router.delete(
    "/{cart_id}/items/{item_key}",
    response_model=CartResponse,
    responses=ERROR_RESPONSES,
    summary="Remove item",
)
async def remove_item(cart_id: CartIdParam, item_key: ItemKeyParam, service: Service) -> CartResponse:
    cart = await service.remove_item(cart_id, item_key)
    return cart_to_response(cart, service)


@router.delete(
    "/{cart_id}/items",
    response_model=CartResponse,
    responses=ERROR_RESPONSES,
    summary="Clear cart",
)
async def clear_cart(cart_id: CartIdParam, service: Service) -> CartResponse:
    cart = await service.clear_cart(cart_id)
    return cart_to_response(cart, service)


@router.post(
    "/{cart_id}/checkout",
    response_model=CartConversionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse}},
    summary="Convert cart to checkout session",
    description="Create a checkout session from the cart. A cart can be converted once.",
)
async def convert_to_checkout(
    cart_id: CartIdParam,
    service: Service,
    request: CartCheckoutRequest | None = None,
) -> CartConversionResponse:
    """Convert a cart into a checkout session.

    Args:
        cart_id: Cart identifier.
        service: Cart service.
        request: Optional addresses, coupon and note.

    Returns:
        The cart ID and the new checkout session.
    """
    request = request or CartCheckoutRequest()
    result = await service.convert_to_checkout(
        cart_id,
        shipping_address=request.shipping_address.to_domain() if request.shipping_address else None,
        billing_address=request.billing_address.to_domain() if request.billing_address else None,
        coupon_code=request.coupon_code,
        note=request.note,
    )
    return CartConversionResponse(
        cart_id=result.cart_id,
        converted=result.converted,
        checkout_session=CheckoutSessionResponse.from_domain(result.checkout_session),
    )
