"""Shared fixtures: containers for Postgres and Redis, per-test sessions, the API client."""
import os
from collections.abc import AsyncGenerator, Callable, Coroutine, Generator
from typing import Any
from urllib.parse import urlparse

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from core.redis import RedisClient
from models import Base, Bookmark, Collection, User
from services.bookmark_records import get_or_create_tags
from services.job_queue import JobQueue
from tests.fakes import FakeSearchIndex


@pytest.fixture
def fake_search_index() -> FakeSearchIndex:
    """Fresh in-memory search index."""
    return FakeSearchIndex()


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer]:
    """One Postgres 16 container shared by the whole run."""
    with PostgresContainer("postgres:16", driver="asyncpg") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def database_url(postgres_container: PostgresContainer) -> str:
    """
    Container URL, exported as DATABASE_URL.

    db.session builds its engine from settings at import, so the variable has
    to exist before anything imports it.
    """
    url = postgres_container.get_connection_url()
    os.environ["DATABASE_URL"] = url
    return url


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer]:
    """One Redis 7 container shared by the whole run."""
    with RedisContainer("redis:7") as redis:
        yield redis


@pytest.fixture
async def redis_client(redis_container: RedisContainer) -> AsyncGenerator[RedisClient]:
    """Connected RedisClient against a clean database."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    client = RedisClient(f"redis://{host}:{port}")
    await client.connect()
    await client.client.flushdb()
    yield client
    await client.client.flushdb()
    await client.close()


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Engine with the schema created from the models."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Create a connection with a transaction that will be rolled back after the test.

    This provides test isolation - each test runs in its own transaction
    that is rolled back, so tests don't affect each other.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
def session_factory(db_connection: AsyncConnection) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the test transaction.

    Each session works inside a savepoint, so commits made by code under
    test (the processor opens one session per step) stay inside the outer
    transaction that is rolled back after the test.
    """
    return async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create an async session bound to the test transaction."""
    async with session_factory() as session:
        yield session


MakeUser = Callable[..., Coroutine[Any, Any, int]]
MakeBookmark = Callable[..., Coroutine[Any, Any, int]]


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> MakeUser:
    """Factory creating a committed user and returning its id."""
    counter = {"n": 0}

    async def _make(email: str | None = None) -> int:
        counter["n"] += 1
        async with session_factory() as session:
            user = User(email=email or f"user-{counter['n']}-{id(counter)}@test.com")
            session.add(user)
            await session.commit()
            return user.id

    return _make


@pytest.fixture
def make_bookmark(session_factory: async_sessionmaker[AsyncSession]) -> MakeBookmark:
    """Factory creating a committed bookmark (with tags) and returning its id."""

    async def _make(
        owner_id: int,
        url: str = "https://example.com/article",
        title: str | None = None,
        tags: list[str] | None = None,
        collection_name: str | None = None,
        **fields: Any,
    ) -> int:
        fields.setdefault("domain", urlparse(url).hostname)
        async with session_factory() as session:
            collection_id = None
            if collection_name is not None:
                collection = Collection(owner_id=owner_id, name=collection_name)
                session.add(collection)
                await session.flush()
                collection_id = collection.id
            bookmark = Bookmark(
                owner_id=owner_id,
                collection_id=collection_id,
                url=url,
                title=title,
                **fields,
            )
            bookmark.tag_objects = await get_or_create_tags(session, owner_id, tags or [])
            session.add(bookmark)
            await session.commit()
            return bookmark.id

    return _make


@pytest.fixture
async def client(
    db_session: AsyncSession,
    redis_client: RedisClient,
    fake_search_index: FakeSearchIndex,
) -> AsyncGenerator[AsyncClient]:
    """
    Create a test client with the session, queue and search index overridden.

    The queue is a real JobQueue on the test Redis so tests can dequeue what
    the API enqueued.
    """
    # Clear the settings cache so it picks up DATABASE_URL from environment
    from core.config import get_settings

    get_settings.cache_clear()

    from api.dependencies import get_job_queue, get_redis, get_search_index
    from api.main import app
    from db.session import get_async_session

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    queue = JobQueue(redis_client, name="api-test")
    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_job_queue] = lambda: queue
    app.dependency_overrides[get_search_index] = lambda: fake_search_index
    app.dependency_overrides[get_redis] = lambda: redis_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
