"""State machines for domain entities.

Deterministic state machines that define valid state transitions
for carts and checkout sessions.
"""

from enum import Enum

from ucp_checkout.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Cart State Machine
# ============================================================================


class CartStatus(str, Enum):
    """Cart lifecycle states.

    State diagram:
        ACTIVE ──────────────────────────────► DELETED
          │
          │ convert_to_checkout
          ▼
        CONVERTED

    Expiry is derived from ``expires_at`` and never stored.
    """

    ACTIVE = "active"
    CONVERTED = "converted"
    DELETED = "deleted"

    def can_transition_to(self, target: "CartStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _CART_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["CartStatus"]:
        """Get list of valid target states."""
        return list(_CART_TRANSITIONS.get(self, set()))

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_CART_TRANSITIONS.get(self, set())) == 0


_CART_TRANSITIONS: dict[CartStatus, set[CartStatus]] = {
    CartStatus.ACTIVE: {CartStatus.CONVERTED, CartStatus.DELETED},
    CartStatus.CONVERTED: set(),  # Terminal state
    CartStatus.DELETED: set(),  # Terminal state
}


# ============================================================================
# Checkout Session State Machine
# ============================================================================


class SessionStatus(str, Enum):
    """Checkout session lifecycle states.

    State diagram:
        PENDING ─────────────────────────────► CANCELLED
          │  ▲                    │
          │  │ address / coupon / │ expire
          │  │ shipping method    ▼
          │  └────────────────  EXPIRED
          │
          │ confirm
          ▼
        CONFIRMED

    Post-payment order status belongs to the order ledger.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "SessionStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _SESSION_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["SessionStatus"]:
        """Get list of valid target states."""
        return list(_SESSION_TRANSITIONS.get(self, set()))

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_SESSION_TRANSITIONS.get(self, set())) == 0


_SESSION_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PENDING: {
        SessionStatus.PENDING,
        SessionStatus.CONFIRMED,
        SessionStatus.EXPIRED,
        SessionStatus.CANCELLED,
    },
    SessionStatus.CONFIRMED: set(),  # Terminal state
    SessionStatus.EXPIRED: set(),  # Terminal state
    SessionStatus.CANCELLED: set(),  # Terminal state
}


class NextAction(str, Enum):
    """What the caller has to supply next for a pending session."""

    PROVIDE_SHIPPING_ADDRESS = "provide_shipping_address"
    SELECT_SHIPPING_METHOD = "select_shipping_method"
    PROVIDE_PAYMENT_METHOD = "provide_payment_method"
    NONE = "none"


# ============================================================================
# State Machine Helpers
# ============================================================================


def validate_cart_transition(
    cart_id: str,
    current_status: CartStatus,
    target_status: CartStatus,
) -> None:
    """Validate and raise if cart state transition is invalid.

    Args:
        cart_id: Cart identifier for error message.
        current_status: Current cart status.
        target_status: Target cart status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Cart",
            entity_id=cart_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )


def validate_session_transition(
    session_id: str,
    current_status: SessionStatus,
    target_status: SessionStatus,
) -> None:
    """Validate and raise if checkout session state transition is invalid.

    Args:
        session_id: Session identifier for error message.
        current_status: Current session status.
        target_status: Target session status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="CheckoutSession",
            entity_id=session_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
