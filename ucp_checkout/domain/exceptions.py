"""Domain exceptions.

All domain-level errors that represent business rule violations.
Every error carries a stable machine-readable ``code`` and a ``kind``
that the API layer maps to a response status:

- ``not_found``: unknown cart, session, item or product
- ``conflict``: the record is in a state that forbids the operation
- ``gone``: the record expired and must be recreated
- ``validation``: the caller must correct the input before retrying
- ``upstream``: a collaborator (catalog, coupon, shipping, ledger) failed
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    code: str = "domain_error"
    kind: str = "validation"
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(DomainError):
    """Base class for unknown identifiers."""

    kind = "not_found"


class ConflictError(DomainError):
    """Base class for operations forbidden by the current state."""

    kind = "conflict"


class GoneError(DomainError):
    """Base class for expired records."""

    kind = "gone"


class ValidationError(DomainError):
    """Base class for input the caller has to correct."""

    kind = "validation"


# ============================================================================
# State Machine Errors
# ============================================================================


class InvalidStateTransitionError(ConflictError):
    """Raised when an invalid state transition is attempted."""

    code = "invalid_state_transition"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Cart", "CheckoutSession").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class ConcurrentModificationError(ConflictError):
    """Raised when a row kept changing under an optimistic write.

    The caller may retry the same request.
    """

    code = "concurrent_modification"
    retryable = True

    def __init__(self, entity_type: str, entity_id: str, attempts: int) -> None:
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently; "
            f"gave up after {attempts} attempts",
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "attempts": attempts,
                "retryable": True,
            },
        )


# ============================================================================
# Cart Errors
# ============================================================================


class CartNotFoundError(NotFoundError):
    """Raised when a cart id is unknown."""

    code = "cart_not_found"

    def __init__(self, cart_id: str) -> None:
        super().__init__("Cart not found.", details={"cart_id": cart_id})


class CartExpiredError(GoneError):
    """Raised when a cart is read after its expiry."""

    code = "cart_expired"

    def __init__(self, cart_id: str) -> None:
        super().__init__("Cart has expired.", details={"cart_id": cart_id})


class CartConvertedError(ConflictError):
    """Raised on any access to a cart that became a checkout session."""

    code = "cart_converted"

    def __init__(self, cart_id: str, session_id: str | None = None) -> None:
        """Initialize cart converted error.

        Args:
            cart_id: ID of the cart.
            session_id: Checkout session the cart was converted into.
        """
        super().__init__(
            "Cart has been converted to a checkout session.",
            details={"cart_id": cart_id, "session_id": session_id},
        )


class CartItemNotFoundError(NotFoundError):
    """Raised when a cart item is not found."""

    code = "item_not_found"

    def __init__(self, cart_id: str, item_key: str) -> None:
        super().__init__(
            "Item not found in cart.",
            details={"cart_id": cart_id, "item_key": item_key},
        )


class CartFullError(ValidationError):
    """Raised when an add would exceed the distinct item cap."""

    code = "cart_full"

    def __init__(self, cart_id: str, max_items: int) -> None:
        super().__init__(
            f"Cart cannot contain more than {max_items} items.",
            details={"cart_id": cart_id, "max_items": max_items},
        )


class CartEmptyError(ValidationError):
    """Raised when trying to checkout an empty cart."""

    code = "cart_empty"

    def __init__(self, cart_id: str) -> None:
        super().__init__(
            "Cannot checkout with an empty cart.",
            details={"cart_id": cart_id},
        )


class InvalidQuantityError(ValidationError):
    """Raised when an invalid quantity is provided."""

    code = "invalid_quantity"

    def __init__(self, quantity: int, reason: str = "Quantity must be positive") -> None:
        super().__init__(
            f"Invalid quantity {quantity}: {reason}",
            details={"quantity": quantity, "reason": reason},
        )


# ============================================================================
# Product Errors
# ============================================================================


class ProductNotFoundError(NotFoundError):
    """Raised when the catalog cannot resolve a product reference."""

    code = "product_not_found"

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"Product not found: {reference}",
            details={"reference": reference},
        )


class ProductNotPurchasableError(ValidationError):
    """Raised when the catalog marks a product as not purchasable."""

    code = "product_not_purchasable"

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Product is not purchasable: {name}",
            details={"product": name},
        )


class ProductOutOfStockError(ValidationError):
    """Raised when a product has no stock at all."""

    code = "product_out_of_stock"

    def __init__(self, name: str) -> None:
        super().__init__(
            f"Product is out of stock: {name}",
            details={"product": name},
        )


class InsufficientStockError(ValidationError):
    """Raised when the requested quantity exceeds available stock."""

    code = "insufficient_stock"

    def __init__(self, name: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for: {name}",
            details={"product": name, "requested": requested, "available": available},
        )


# ============================================================================
# Checkout Session Errors
# ============================================================================


class InvalidItemsError(ValidationError):
    """Raised when a session is requested with no or malformed items."""

    code = "invalid_items"

    def __init__(self, reason: str = "Items array is required and cannot be empty.") -> None:
        super().__init__(reason, details={"reason": reason})


class SessionNotFoundError(NotFoundError):
    """Raised when a session id is unknown."""

    code = "session_not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "Checkout session not found.",
            details={"session_id": session_id},
        )


class SessionExpiredError(GoneError):
    """Raised when a pending session is used after its expiry."""

    code = "session_expired"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "Checkout session has expired.",
            details={"session_id": session_id},
        )


class SessionAlreadyConfirmedError(ConflictError):
    """Raised when mutating a confirmed session."""

    code = "session_already_confirmed"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "Session has already been confirmed.",
            details={"session_id": session_id},
        )


class SessionCancelledError(ConflictError):
    """Raised when mutating a cancelled session."""

    code = "session_cancelled"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "Session has been cancelled.",
            details={"session_id": session_id},
        )


class InvalidShippingMethodError(ValidationError):
    """Raised when a shipping method was not among the offered options."""

    code = "invalid_shipping_method"

    def __init__(self, session_id: str, method_id: str, offered: list[str]) -> None:
        super().__init__(
            f"Shipping method '{method_id}' is not available for this session.",
            details={
                "session_id": session_id,
                "shipping_method": method_id,
                "available_methods": offered,
            },
        )


class ShippingMethodRequiredError(ValidationError):
    """Raised when confirming a physical order without a shipping method."""

    code = "shipping_method_required"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "A shipping method must be selected before confirming.",
            details={"session_id": session_id},
        )


class PaymentMethodRequiredError(ValidationError):
    """Raised when confirming a paid order without a payment method."""

    code = "payment_method_required"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "A payment method is required to confirm this session.",
            details={"session_id": session_id},
        )


# ============================================================================
# Upstream Errors
# ============================================================================


class UpstreamError(DomainError):
    """Raised when an external collaborator rejects or fails a call.

    The collaborator's own code and message are kept unchanged so they
    reach the caller verbatim.
    """

    kind = "upstream"

    def __init__(
        self,
        service: str,
        code: str,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize upstream error.

        Args:
            service: Collaborator name ("catalog", "coupon", "shipping", "ledger").
            code: Error code reported by the collaborator.
            message: Error message reported by the collaborator.
            status_code: HTTP status the collaborator answered with, if any.
            details: Extra context supplied by the collaborator.
        """
        super().__init__(message, details={"service": service, **(details or {})})
        self.service = service
        self.code = code
        self.status_code = status_code
