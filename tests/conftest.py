"""Shared fixtures: in-memory collaborators, SQLite database and services."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.pool import NullPool

from tests.fakes import (
    DRAFT,
    EBOOK,
    GADGET,
    GIFT,
    SOLD_OUT,
    TSHIRT_BLUE,
    TSHIRT_RED,
    WIDGET,
    FakeCatalog,
    FakeClock,
    FakeCoupons,
    FakeLedger,
    FakeShipping,
)
from ucp_checkout.application.cart_service import CartService
from ucp_checkout.application.checkout_service import CheckoutService
from ucp_checkout.infrastructure import models  # noqa: F401  (registers tables)
from ucp_checkout.infrastructure.collaborators import Collaborators
from ucp_checkout.infrastructure.database import Base, build_engine, build_session_factory


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog([WIDGET, GADGET, TSHIRT_RED, TSHIRT_BLUE, EBOOK, GIFT, DRAFT, SOLD_OUT])


@pytest.fixture
def coupons() -> FakeCoupons:
    return FakeCoupons({"SAVE10": Decimal("10.00"), "HUGE": Decimal("500.00")})


@pytest.fixture
def shipping() -> FakeShipping:
    return FakeShipping()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def collaborators(catalog, coupons, shipping, ledger) -> Collaborators:
    return Collaborators(catalog=catalog, coupons=coupons, shipping=shipping, ledger=ledger)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ucp_test.db'}"


@pytest.fixture
async def engine(database_url):
    """File-backed SQLite engine with the schema created."""
    engine = build_engine(database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def checkout_service(session_factory, collaborators, clock) -> CheckoutService:
    return CheckoutService(
        session_factory=session_factory,
        collaborators=collaborators,
        session_ttl=timedelta(hours=1),
        currency="USD",
        web_checkout_url_template="https://shop.test/checkout/pay/{order_ref}?session={session_id}",
        max_write_attempts=3,
        clock=clock,
    )


@pytest.fixture
def cart_service(session_factory, catalog, checkout_service, clock) -> CartService:
    return CartService(
        session_factory=session_factory,
        catalog=catalog,
        checkout_service=checkout_service,
        cart_ttl=timedelta(days=7),
        max_items=100,
        currency="USD",
        currency_symbol="$",
        max_write_attempts=3,
        clock=clock,
    )
