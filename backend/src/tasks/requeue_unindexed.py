"""
Scheduled recovery of bookmarks that never finished processing.

Designed to run as a cron job (e.g., every 30 minutes).

Usage:
    python -m tasks.requeue_unindexed

A bookmark can be left with content_indexed = false when its retries ran out,
when the pipeline died between the snapshot write and the final
record update, or when the enqueue after insert never happened. Every stage
of the pipeline overwrites, so the fix is simply to run the job again.

Bookmarks flagged is_broken (their last run failed permanently) are skipped,
and bookmarks that still have a job in the queue are not enqueued twice.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.redis import RedisClient
from services import bookmark_records
from services.job_queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class RequeueStats:
    """Statistics from a requeue run."""

    found: int = 0
    enqueued: int = 0
    already_pending: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to simple dict for logging/return."""
        return {
            "found": self.found,
            "enqueued": self.enqueued,
            "already_pending": self.already_pending,
        }


async def requeue_unindexed(
    db: AsyncSession,
    queue: JobQueue,
    grace: timedelta,
    now: datetime | None = None,
    limit: int = 500,
) -> RequeueStats:
    """
    Enqueue a job for every unindexed, unbroken bookmark older than ``grace``.

    The grace period leaves recently saved bookmarks to their original job.

    Args:
        db: Database session.
        queue: Queue to enqueue onto.
        grace: Minimum age of a bookmark before it is considered stuck.
        now: Current time for cutoff calculation. Defaults to datetime.now(UTC).
        limit: Maximum number of bookmarks to requeue in one run.
    """
    if now is None:
        now = datetime.now(UTC)

    stats = RequeueStats()
    ids = await bookmark_records.list_unindexed_bookmark_ids(db, now - grace, limit=limit)
    stats.found = len(ids)
    for bookmark_id in ids:
        if await queue.enqueue_if_idle(bookmark_id) is None:
            stats.already_pending += 1
        else:
            stats.enqueued += 1

    if stats.found:
        logger.info(
            "Requeued %d unindexed bookmark(s) older than %s",
            stats.enqueued,
            grace,
        )
    return stats


async def run_requeue() -> RequeueStats:
    """Open connections from settings and run one requeue pass."""
    settings = get_settings()
    from db.session import async_session_factory, dispose_engine

    redis_client = RedisClient(url=settings.redis_url, pool_size=settings.redis_pool_size)
    await redis_client.connect()
    queue = JobQueue(
        redis_client,
        name=settings.queue_name,
        visibility_timeout=settings.queue_visibility_timeout_seconds,
    )
    try:
        async with async_session_factory() as session:
            stats = await requeue_unindexed(
                session, queue, timedelta(minutes=settings.requeue_grace_minutes),
            )
    finally:
        await redis_client.close()
        await dispose_engine()

    logger.info("Requeue complete: %s", stats.to_dict())
    return stats


def main() -> None:
    """Entry point for running the requeue pass as a script."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_requeue())


if __name__ == "__main__":
    main()
