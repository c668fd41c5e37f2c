"""Liveness of the three backends the pipeline depends on, plus queue sizes."""
import logging
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_job_queue, get_redis, get_search_index
from core.redis import RedisClient
from db.session import get_async_session
from services.exceptions import QueueUnavailableError
from services.job_queue import JobQueue
from services.search_index import SearchIndex


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

ComponentStatus = Literal["healthy", "unhealthy"]


class QueueSizes(BaseModel):
    """Number of jobs in each queue state."""

    waiting: int
    active: int
    delayed: int
    failed: int


class HealthResponse(BaseModel):
    """Overall status, one entry per backend, and the queue sizes when Redis answers."""

    status: Literal["healthy", "degraded"]
    database: ComponentStatus
    redis: ComponentStatus
    search: ComponentStatus
    queue: QueueSizes | None = None


def _status(ok: bool) -> ComponentStatus:
    return "healthy" if ok else "unhealthy"


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        return False
    return True


async def _queue_sizes(queue: JobQueue) -> QueueSizes | None:
    try:
        counts = await queue.counts()
    except QueueUnavailableError as e:
        logger.warning("Could not read queue sizes: %s", e)
        return None
    return QueueSizes(
        waiting=counts.waiting,
        active=counts.active,
        delayed=counts.delayed,
        failed=counts.failed,
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_async_session),
    redis: RedisClient = Depends(get_redis),
    search_index: SearchIndex = Depends(get_search_index),
    queue: JobQueue = Depends(get_job_queue),
) -> HealthResponse:
    """
    Report each backend separately.

    Redis and the search engine report failures as False rather than raising,
    so a single outage shows up as "degraded" instead of a 500. A growing
    ``queue.failed`` count is the signal that jobs are failing for good.
    """
    checks = {
        "database": await _database_ok(db),
        "redis": await redis.ping(),
        "search": await search_index.health(),
    }
    return HealthResponse(
        status="healthy" if all(checks.values()) else "degraded",
        queue=await _queue_sizes(queue) if checks["redis"] else None,
        **{name: _status(ok) for name, ok in checks.items()},
    )
