"""
Durable, at-least-once job queue for bookmark processing, backed by Redis.

Key layout for a queue named ``name``:

- ``{name}:seq``      counter used to allocate job ids
- ``{name}:jobs``     hash of job id -> JSON job payload
- ``{name}:waiting``  list of job ids ready to be claimed (LPUSH in, RPOP out)
- ``{name}:active``   sorted set of claimed job ids scored by lease deadline
- ``{name}:delayed``  sorted set of job ids waiting out a retry backoff
- ``{name}:failed``   list of job ids that exhausted retries or failed permanently
- ``{name}:pending``  hash of bookmark id -> job id while waiting, active or delayed
- ``{name}:failed_by_bookmark``  hash of bookmark id -> job id in the failed list

Each bookmark has at most one job across all states, so repeated enqueues
(the recovery sweep) neither duplicate live work nor grow the failed list.

A claimed job stays leased until it is acked or failed. If the consumer dies,
the lease expires and the next claim redelivers it, so the same bookmark id
can be processed more than once; the pipeline is idempotent per bookmark.
"""
import json
import logging
import time
from dataclasses import asdict, dataclass

from redis.exceptions import RedisError

from core.redis import RedisClient
from services.exceptions import QueueUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff policy for retryable failures."""

    max_attempts: int = 3
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0

    def backoff_for(self, attempts: int) -> float:
        """Delay before the next attempt after ``attempts`` failed attempts."""
        delay = self.backoff_base_seconds * (2 ** max(attempts - 1, 0))
        return min(delay, self.backoff_max_seconds)

    def should_retry(self, attempts: int, retryable: bool) -> bool:
        """Whether a failure on attempt number ``attempts`` gets another try."""
        return retryable and attempts < self.max_attempts


@dataclass(frozen=True)
class Job:
    """A unit of queued work: one bookmark to process, plus delivery metadata."""

    id: int
    bookmark_id: int
    attempts: int = 0
    enqueued_at: float = 0.0
    last_error: str | None = None

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Job":
        """Parse the payload stored in the jobs hash."""
        data = json.loads(raw)
        return cls(
            id=int(data["id"]),
            bookmark_id=int(data["bookmark_id"]),
            attempts=int(data.get("attempts", 0)),
            enqueued_at=float(data.get("enqueued_at", 0.0)),
            last_error=data.get("last_error"),
        )

    def to_json(self) -> str:
        """Serialize for storage in the jobs hash."""
        return json.dumps(asdict(self))


@dataclass(frozen=True)
class QueueCounts:
    """Sizes of each queue state, for health checks and operators."""

    waiting: int
    active: int
    delayed: int
    failed: int


class JobQueue:
    """Redis-backed job queue keyed by bookmark id."""

    def __init__(
        self,
        redis: RedisClient,
        name: str = "bookmark-processing",
        visibility_timeout: float = 120.0,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._redis = redis
        self._name = name
        self._visibility_timeout = visibility_timeout
        self._retry_policy = retry_policy or RetryPolicy()

    @property
    def name(self) -> str:
        """Queue name, used as the Redis key prefix."""
        return self._name

    @property
    def retry_policy(self) -> RetryPolicy:
        """The retry/backoff policy applied by fail()."""
        return self._retry_policy

    def _key(self, suffix: str) -> str:
        return f"{self._name}:{suffix}"

    async def enqueue(self, bookmark_id: int) -> Job:
        """
        Durably record a job for ``bookmark_id``.

        If the bookmark already has a job waiting, running or scheduled for a
        retry, that job is returned instead of adding a second one.
        """
        job, _ = await self._enqueue(bookmark_id)
        return job

    async def enqueue_if_idle(self, bookmark_id: int) -> Job | None:
        """Enqueue ``bookmark_id`` unless it already has a pending job; None if skipped."""
        job, created = await self._enqueue(bookmark_id)
        return job if created else None

    async def _enqueue(self, bookmark_id: int) -> tuple[Job, bool]:
        raw, created = await self._redis.run_script(
            "enqueue",
            [
                self._key("seq"),
                self._key("jobs"),
                self._key("waiting"),
                self._key("pending"),
                self._key("failed"),
                self._key("failed_by_bookmark"),
            ],
            [bookmark_id, time.time()],
        )
        job = Job.from_json(raw)
        if created:
            logger.info("Enqueued job %d for bookmark %d", job.id, bookmark_id)
        else:
            logger.debug("Bookmark %d already has pending job %d", bookmark_id, job.id)
        return job, bool(created)

    async def dequeue(self) -> Job | None:
        """
        Claim the next job, or return None if nothing is ready.

        The claim leases the job for the visibility timeout and counts one
        delivery attempt. Delayed retries that are due and jobs with expired
        leases are moved back to waiting first.
        """
        now = time.time()
        raw = await self._redis.run_script(
            "claim",
            [
                self._key("waiting"),
                self._key("active"),
                self._key("delayed"),
                self._key("jobs"),
                self._key("failed"),
                self._key("pending"),
                self._key("failed_by_bookmark"),
            ],
            [now, now + self._visibility_timeout, self._retry_policy.max_attempts],
        )
        if raw is None:
            return None
        return Job.from_json(raw)

    async def ack(self, job: Job) -> None:
        """Mark a job as successfully processed and remove it."""
        removed = await self._redis.run_script(
            "ack",
            [self._key("active"), self._key("jobs"), self._key("pending")],
            [job.id, job.bookmark_id],
        )
        if not removed:
            logger.warning(
                "Acked job %d for bookmark %d after its lease expired",
                job.id,
                job.bookmark_id,
            )

    async def fail(self, job: Job, error: str, retryable: bool) -> bool:
        """
        Record a failed attempt.

        Returns True if the job was scheduled for another attempt, False if it
        moved to the failed list (or its lease was already lost).
        """
        retry = self._retry_policy.should_retry(job.attempts, retryable)
        retry_at = ""
        if retry:
            retry_at = str(time.time() + self._retry_policy.backoff_for(job.attempts))
        updated = Job(
            id=job.id,
            bookmark_id=job.bookmark_id,
            attempts=job.attempts,
            enqueued_at=job.enqueued_at,
            last_error=error,
        )
        applied = await self._redis.run_script(
            "fail",
            [
                self._key("active"),
                self._key("delayed"),
                self._key("failed"),
                self._key("jobs"),
                self._key("pending"),
                self._key("failed_by_bookmark"),
            ],
            [job.id, updated.to_json(), retry_at, job.bookmark_id],
        )
        if not applied:
            logger.warning(
                "Job %d for bookmark %d failed after its lease expired; "
                "leaving it to the redelivered attempt",
                job.id,
                job.bookmark_id,
            )
            return False
        if retry:
            logger.warning(
                "Job %d for bookmark %d failed (attempt %d/%d), retrying: %s",
                job.id,
                job.bookmark_id,
                job.attempts,
                self._retry_policy.max_attempts,
                error,
            )
        else:
            logger.error(
                "Job %d for bookmark %d failed permanently after %d attempt(s): %s",
                job.id,
                job.bookmark_id,
                job.attempts,
                error,
            )
        return retry

    async def requeue_failed(self, limit: int = 100) -> int:
        """Move up to ``limit`` failed jobs back to waiting with a fresh attempt budget."""
        moved = await self._redis.run_script(
            "requeue_failed",
            [
                self._key("failed"),
                self._key("waiting"),
                self._key("jobs"),
                self._key("pending"),
                self._key("failed_by_bookmark"),
            ],
            [limit],
        )
        if moved:
            logger.info("Requeued %d failed job(s) on %s", moved, self._name)
        return int(moved)

    async def counts(self) -> QueueCounts:
        """Current size of each queue state."""
        client = self._redis.client
        try:
            async with client.pipeline(transaction=False) as pipe:
                pipe.llen(self._key("waiting"))
                pipe.zcard(self._key("active"))
                pipe.zcard(self._key("delayed"))
                pipe.llen(self._key("failed"))
                waiting, active, delayed, failed = await pipe.execute()
        except RedisError as e:
            raise QueueUnavailableError(f"Could not read queue sizes: {e}") from e
        return QueueCounts(waiting=waiting, active=active, delayed=delayed, failed=failed)
