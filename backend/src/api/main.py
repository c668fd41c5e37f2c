"""FastAPI application entry point."""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.routers import bookmarks, health, search
from core.config import get_settings
from core.redis import RedisClient
from services.exceptions import QueueUnavailableError, SearchUnavailableError
from services.job_queue import JobQueue
from services.search_index import SearchIndex


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Open the queue and search connections at startup, close them at shutdown."""
    app_settings = get_settings()

    redis_client = RedisClient(url=app_settings.redis_url, pool_size=app_settings.redis_pool_size)
    await redis_client.connect()
    app.state.redis = redis_client
    app.state.job_queue = JobQueue(
        redis_client,
        name=app_settings.queue_name,
        visibility_timeout=app_settings.queue_visibility_timeout_seconds,
    )
    app.state.search_index = SearchIndex(
        host=app_settings.meili_host,
        api_key=app_settings.meili_master_key,
        index_name=app_settings.meili_index,
        timeout=app_settings.meili_timeout_seconds,
    )

    yield

    await redis_client.close()


app = FastAPI(
    title="Bookmarks API",
    description="Bookmark saving with asynchronous page ingestion and full-text search.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(SearchUnavailableError)
async def search_unavailable_handler(
    _request: Request, exc: SearchUnavailableError,
) -> JSONResponse:
    """The read path never renders a partial page when the engine is down."""
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(QueueUnavailableError)
async def queue_unavailable_handler(
    _request: Request, exc: QueueUnavailableError,
) -> JSONResponse:
    """Report a missing job queue as a temporary outage."""
    return JSONResponse(status_code=503, content={"detail": str(exc)})


app.include_router(health.router)
app.include_router(bookmarks.router)
app.include_router(search.router)
