"""Shared fixtures for API tests.

The services and database session are swapped in through FastAPI
dependency overrides. The schema is created synchronously because
TestClient drives the app on its own event loop.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from ucp_checkout.application.cart_service import get_cart_service
from ucp_checkout.application.checkout_service import get_checkout_service
from ucp_checkout.infrastructure.database import Base, build_engine, get_session
from ucp_checkout.main import app


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
def engine(database_url):
    """File-backed SQLite engine usable from any event loop."""
    engine = build_engine(database_url, poolclass=NullPool)
    asyncio.run(create_schema(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def client(cart_service, checkout_service, session_factory) -> TestClient:
    """Create test client wired to the in-memory collaborators."""

    async def override_session():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_cart_service] = lambda: cart_service
    app.dependency_overrides[get_checkout_service] = lambda: checkout_service
    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def cart_id(client: TestClient) -> str:
    """An empty cart created through the API."""
    return client.post("/carts").json()["cart_id"]
