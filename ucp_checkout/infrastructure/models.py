"""SQLAlchemy models for database tables.

Provides ORM models for the ucp_carts and ucp_checkout_sessions tables.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TypeDecorator

from ucp_checkout.infrastructure.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back in UTC.

    SQLite drops the offset on storage, so naive values read back are
    taken to be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Cart Models
# ============================================================================


class CartModel(Base):
    """Cart model for database persistence.

    Lines are stored as a JSON array; totals are never stored.
    """

    __tablename__ = "ucp_carts"

    cart_id = Column(String(37), primary_key=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    items = Column(JSONType, nullable=False, default=list)
    cart_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    checkout_session_id = Column(String(36), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    expires_at = Column(UTCDateTime, nullable=False, index=True)


# ============================================================================
# Checkout Session Models
# ============================================================================


class CheckoutSessionModel(Base):
    """Checkout session model for database persistence.

    Money columns hold the totals as of the last write so the ledger and
    reporting can read them without recomputation.
    """

    __tablename__ = "ucp_checkout_sessions"

    session_id = Column(String(36), primary_key=True)
    order_ref = Column(String(100), nullable=False, index=True)
    source_cart_id = Column(String(37), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    next_action = Column(String(40), nullable=False)

    items = Column(JSONType, nullable=False, default=list)
    shipping_address = Column(JSONType, nullable=True)
    billing_address = Column(JSONType, nullable=True)
    applied_coupon = Column(JSONType, nullable=True)
    shipping_options = Column(JSONType, nullable=False, default=list)
    selected_shipping_method = Column(String(100), nullable=True)
    payment_method = Column(String(100), nullable=True)
    note = Column(Text, nullable=True)
    web_checkout_url = Column(Text, nullable=True)

    # Totals
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
