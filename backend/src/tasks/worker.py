"""
Background worker that consumes the bookmark processing queue.

Usage:
    python -m tasks.worker

Runs WORKER_CONCURRENCY independent consumer loops. Each loop claims one job,
runs the ingestion pipeline for it to completion, then acks or fails the job
before claiming the next. SIGINT/SIGTERM stop the loops after their current
job; connections are closed on the way out.
"""
import asyncio
import logging
import signal
from collections.abc import Awaitable
from pathlib import Path

from core.config import get_settings
from core.redis import RedisClient
from services.bookmark_processor import BookmarkProcessor
from services.content_fetcher import ContentFetcher
from services.exceptions import PipelineError
from services.job_queue import Job, JobQueue, RetryPolicy
from services.search_index import SearchIndex
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


async def handle_job(queue: JobQueue, processor: BookmarkProcessor, job: Job) -> bool:
    """
    Process one claimed job and report the outcome to the queue.

    Returns True on success. Pipeline failures are reported with their own
    retryability; anything unexpected is treated as transient. If the outcome
    cannot be reported (queue unavailable), the job keeps its lease and is
    redelivered once the lease expires.
    """
    try:
        await processor.process(job.bookmark_id)
    except PipelineError as e:
        await _report(queue.fail(job, str(e), retryable=e.retryable), job)
        return False
    except Exception as e:
        logger.exception("Unexpected error processing job %d", job.id)
        await _report(queue.fail(job, f"{type(e).__name__}: {e}", retryable=True), job)
        return False
    return await _report(queue.ack(job), job)


async def _report(outcome: Awaitable[object], job: Job) -> bool:
    try:
        await outcome
    except PipelineError as e:
        logger.warning(
            "Could not report outcome of job %d (bookmark %d); it will be redelivered: %s",
            job.id,
            job.bookmark_id,
            e,
        )
        return False
    return True


async def consume(
    queue: JobQueue,
    processor: BookmarkProcessor,
    stop_event: asyncio.Event,
    poll_interval: float = 1.0,
    consumer_id: int = 0,
) -> None:
    """Claim and process jobs one at a time until ``stop_event`` is set."""
    logger.info("Consumer %d started", consumer_id)
    while not stop_event.is_set():
        try:
            job = await queue.dequeue()
        except PipelineError as e:
            logger.warning("Consumer %d could not claim a job: %s", consumer_id, e)
            job = None
        if job is None:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
            except TimeoutError:
                pass
            continue
        logger.info(
            "Consumer %d processing job %d (bookmark %d, attempt %d)",
            consumer_id,
            job.id,
            job.bookmark_id,
            job.attempts,
        )
        await handle_job(queue, processor, job)
    logger.info("Consumer %d stopped", consumer_id)


async def run_worker(
    queue: JobQueue,
    processor: BookmarkProcessor,
    concurrency: int,
    stop_event: asyncio.Event,
    poll_interval: float = 1.0,
) -> None:
    """Run ``concurrency`` consumer loops until ``stop_event`` is set."""
    async with asyncio.TaskGroup() as group:
        for consumer_id in range(concurrency):
            group.create_task(
                consume(queue, processor, stop_event, poll_interval, consumer_id),
            )


async def run() -> None:
    """Open connections, run the worker until signalled, then close everything."""
    settings = get_settings()
    # Imported here so the engine is only created when the worker actually runs
    from db.session import dispose_engine, get_session_factory

    redis_client = RedisClient(url=settings.redis_url, pool_size=settings.redis_pool_size)
    await redis_client.connect()

    search_index = SearchIndex(
        host=settings.meili_host,
        api_key=settings.meili_master_key,
        index_name=settings.meili_index,
        timeout=settings.meili_timeout_seconds,
    )
    queue = JobQueue(
        redis_client,
        name=settings.queue_name,
        visibility_timeout=settings.queue_visibility_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.queue_max_attempts,
            backoff_base_seconds=settings.queue_backoff_base_seconds,
            backoff_max_seconds=settings.queue_backoff_max_seconds,
        ),
    )
    processor = BookmarkProcessor(
        session_factory=get_session_factory(),
        fetcher=ContentFetcher(
            timeout=settings.fetch_timeout_seconds,
            max_bytes=settings.fetch_max_bytes,
            block_private_networks=settings.fetch_block_private_networks,
        ),
        snapshot_store=SnapshotStore(Path(settings.snapshot_dir)),
        search_index=search_index,
        preserve_user_title=settings.preserve_user_title,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await search_index.ensure_index()
        logger.info(
            "Worker started: queue=%s concurrency=%d",
            settings.queue_name,
            settings.worker_concurrency,
        )
        await run_worker(
            queue,
            processor,
            concurrency=settings.worker_concurrency,
            stop_event=stop_event,
            poll_interval=settings.worker_poll_interval_seconds,
        )
    finally:
        await redis_client.close()
        await dispose_engine()
        logger.info("Worker shut down")


def main() -> None:
    """Entry point for running the worker as a script."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
