"""
PostgreSQL engine and sessions for the bookmark system of record.

The API and the background tasks share one module-level engine built from
settings on first import. The API gets a request-scoped session through
get_async_session; the worker takes the factory and opens a short session per
database step so no connection is held across a network fetch.
"""
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from core.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine with the configured pool limits."""
    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )


engine = build_engine(get_settings())

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for callers that manage their own sessions (the worker)."""
    return async_session_factory


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """
    Yield a request-scoped session.

    Commits when the request handler returns and rolls back if it raises.
    Handlers that publish work after a write (enqueueing a job) commit
    explicitly first so the row is visible to the worker.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
