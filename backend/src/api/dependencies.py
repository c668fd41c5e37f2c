"""FastAPI dependencies for injection."""
from fastapi import Header, HTTPException, Request

from core.config import get_settings
from core.redis import RedisClient
from db.session import get_async_session
from services.job_queue import JobQueue
from services.search_index import SearchIndex


async def get_current_owner_id(x_owner_id: int | None = Header(default=None)) -> int:
    """
    Return the id of the calling user.

    Authentication happens upstream; the gateway forwards the authenticated
    user's id in the X-Owner-Id header.
    """
    if x_owner_id is None or x_owner_id < 1:
        raise HTTPException(status_code=401, detail="Missing or invalid X-Owner-Id header")
    return x_owner_id


def get_job_queue(request: Request) -> JobQueue:
    """The job queue opened in the application lifespan."""
    return request.app.state.job_queue


def get_search_index(request: Request) -> SearchIndex:
    """The search index client opened in the application lifespan."""
    return request.app.state.search_index


def get_redis(request: Request) -> RedisClient:
    """The Redis client opened in the application lifespan."""
    return request.app.state.redis


__all__ = [
    "get_async_session",
    "get_current_owner_id",
    "get_job_queue",
    "get_redis",
    "get_search_index",
    "get_settings",
]
