"""
Operator command that gives failed jobs another run.

Usage:
    python -m tasks.requeue_failed [--limit N]

Moves up to N jobs from the failed list back to waiting with a fresh attempt
budget, for example after an outage made every fetch time out. Bookmarks that
failed permanently are retried as well; a run that fails again parks the job
back in the failed list.
"""
import argparse
import asyncio
import logging

from core.config import get_settings
from core.redis import RedisClient
from services.job_queue import JobQueue, QueueCounts

logger = logging.getLogger(__name__)


async def requeue_failed(queue: JobQueue, limit: int) -> tuple[int, QueueCounts]:
    """Requeue up to ``limit`` failed jobs and return how many moved plus the new queue sizes."""
    moved = await queue.requeue_failed(limit=limit)
    counts = await queue.counts()
    logger.info(
        "Requeued %d failed job(s); queue now waiting=%d failed=%d",
        moved,
        counts.waiting,
        counts.failed,
    )
    return moved, counts


async def run_requeue_failed(limit: int) -> int:
    """Open Redis from settings and run one pass."""
    settings = get_settings()
    redis_client = RedisClient(url=settings.redis_url, pool_size=settings.redis_pool_size)
    await redis_client.connect()
    try:
        queue = JobQueue(redis_client, name=settings.queue_name)
        moved, _ = await requeue_failed(queue, limit)
    finally:
        await redis_client.close()
    return moved


def main() -> None:
    """Entry point for running the command as a script."""
    parser = argparse.ArgumentParser(description="Move failed bookmark jobs back to the queue.")
    parser.add_argument("--limit", type=int, default=100, help="maximum number of jobs to move")
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run_requeue_failed(args.limit))


if __name__ == "__main__":
    main()
