"""Checkout session API endpoints.

Provides endpoints for the checkout session lifecycle:
- POST /checkout/sessions - create session from item references
- GET /checkout/sessions/{session_id} - get session
- PATCH /checkout/sessions/{session_id} - update addresses, coupon, shipping method
- POST /checkout/sessions/{session_id}/confirm - confirm session
- POST /checkout/sessions/{session_id}/cancel - cancel session
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ucp_checkout.api.schemas import (
    CheckoutConfirmRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionResponse,
    CheckoutSessionUpdateRequest,
    ErrorResponse,
    ItemReferenceSchema,
)
from ucp_checkout.application.checkout_service import CheckoutService, get_checkout_service
from ucp_checkout.domain.exceptions import InvalidItemsError, InvalidQuantityError, SessionNotFoundError
from ucp_checkout.domain.value_objects import LineRequest, ProductRef, SessionId

router = APIRouter(prefix="/checkout/sessions", tags=["Checkout Sessions"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def valid_session_id(session_id: str) -> str:
    """Reject malformed session IDs as unknown sessions."""
    if not SessionId.pattern.fullmatch(session_id):
        raise SessionNotFoundError(session_id)
    return session_id


SessionIdParam = Annotated[str, Depends(valid_session_id)]
Service = Annotated[CheckoutService, Depends(get_checkout_service)]


def to_line_requests(items: list[ItemReferenceSchema]) -> list[LineRequest]:
    """Build line requests, reporting any malformed entry as invalid items."""
    try:
        return [
            LineRequest(
                ref=ProductRef(sku=item.sku, product_id=item.product_id, variant_id=item.variant_id),
                quantity=item.quantity,
            )
            for item in items
        ]
    except InvalidQuantityError as e:
        raise InvalidItemsError("Each item needs a quantity of at least 1.") from e


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=CheckoutSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="Create checkout session",
    description="Resolve the items against the catalog, open a draft order and "
    "return a pending session with totals and the next required action.",
)
async def create_session(
    request: CheckoutSessionCreateRequest,
    service: Service,
) -> CheckoutSessionResponse:
    """Create a checkout session.

    Args:
        request: Items plus optional addresses, coupon and note.
        service: Checkout service.

    Returns:
        The pending session.
    """
    checkout = await service.create_session(
        to_line_requests(request.items),
        shipping_address=request.shipping_address.to_domain() if request.shipping_address else None,
        billing_address=request.billing_address.to_domain() if request.billing_address else None,
        coupon_code=request.coupon_code,
        note=request.note,
    )
    return CheckoutSessionResponse.from_domain(checkout)


@router.get(
    "/{session_id}",
    response_model=CheckoutSessionResponse,
    responses=ERROR_RESPONSES,
    summary="Get checkout session",
)
async def get_session(session_id: SessionIdParam, service: Service) -> CheckoutSessionResponse:
    checkout = await service.get_session(session_id)
    return CheckoutSessionResponse.from_domain(checkout)


@router.patch(
    "/{session_id}",
    response_model=CheckoutSessionResponse,
    responses=ERROR_RESPONSES,
    summary="Update checkout session",
    description="Set addresses, apply or remove a coupon, or select a shipping method. "
    "A new shipping address refreshes the offered shipping options.",
)
async def update_session(
    session_id: SessionIdParam,
    request: CheckoutSessionUpdateRequest,
    service: Service,
) -> CheckoutSessionResponse:
    checkout = await service.update_session(
        session_id,
        shipping_address=request.shipping_address.to_domain() if request.shipping_address else None,
        billing_address=request.billing_address.to_domain() if request.billing_address else None,
        shipping_method=request.shipping_method,
        coupon_code=request.coupon_code,
    )
    return CheckoutSessionResponse.from_domain(checkout)


@router.post(
    "/{session_id}/confirm",
    response_model=CheckoutSessionResponse,
    responses=ERROR_RESPONSES,
    summary="Confirm checkout session",
)
async def confirm_session(
    session_id: SessionIdParam,
    service: Service,
    request: CheckoutConfirmRequest | None = None,
) -> CheckoutSessionResponse:
    """Confirm a pending session.

    Physical items need a shipping method and a positive total needs a
    payment method, either already on the session or given here.
    """
    request = request or CheckoutConfirmRequest()
    checkout = await service.confirm_session(
        session_id,
        shipping_method=request.shipping_method,
        payment_method=request.payment_method,
    )
    return CheckoutSessionResponse.from_domain(checkout)


@router.post(
    "/{session_id}/cancel",
    response_model=CheckoutSessionResponse,
    responses=ERROR_RESPONSES,
    summary="Cancel checkout session",
)
async def cancel_session(session_id: SessionIdParam, service: Service) -> CheckoutSessionResponse:
    checkout = await service.cancel_session(session_id)
    return CheckoutSessionResponse.from_domain(checkout)
