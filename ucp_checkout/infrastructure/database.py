"""Database configuration and session management.

Provides async SQLAlchemy engine and session factory.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ucp_checkout.infrastructure.config import settings


def build_engine(database_url: str, echo: bool = False, **kwargs: Any) -> AsyncEngine:
    """Create an async engine for a database URL.

    PostgreSQL connections get a ``lock_timeout`` so a write blocked on a
    row lock fails fast instead of hanging.

    Args:
        database_url: SQLAlchemy async URL.
        echo: Log SQL statements.
        **kwargs: Extra engine options.

    Returns:
        Configured AsyncEngine.
    """
    if database_url.startswith("postgresql"):
        kwargs.setdefault(
            "connect_args",
            {"server_settings": {"lock_timeout": str(settings.db_lock_timeout_ms)}},
        )
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(database_url, echo=echo, **kwargs)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
async_session_factory = build_session_factory(engine)

# Base class for models
Base = declarative_base()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Yields:
        AsyncSession for database operations.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
