"""Redis client with connection pooling and the job queue's Lua scripts."""
import logging
from typing import Any

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import NoScriptError, RedisError

from services.exceptions import QueueUnavailableError

logger = logging.getLogger(__name__)

# All queue state transitions run as Lua scripts so each one is a single atomic
# operation on the Redis side, even with many workers claiming concurrently.
#
# A bookmark has at most one job at a time. ``pending`` maps bookmark id to the
# job that is waiting, active or delayed; ``failed_by_bookmark`` maps it to the
# job parked in the failed list. Enqueueing a bookmark with a pending job
# returns that job, and enqueueing one with a failed job replaces it.

# KEYS: seq, jobs, waiting, pending, failed, failed_by_bookmark
# ARGV: bookmark_id, now
# Returns {job_json, 1} for a new job, {job_json, 0} for an already pending one.
ENQUEUE_SCRIPT = """
local existing = redis.call('HGET', KEYS[4], ARGV[1])
if existing then
    local raw = redis.call('HGET', KEYS[2], existing)
    if raw then
        return {raw, 0}
    end
end
local stale = redis.call('HGET', KEYS[6], ARGV[1])
if stale then
    redis.call('LREM', KEYS[5], 0, stale)
    redis.call('HDEL', KEYS[2], stale)
    redis.call('HDEL', KEYS[6], ARGV[1])
end
local id = redis.call('INCR', KEYS[1])
local job = cjson.encode({
    id = id,
    bookmark_id = tonumber(ARGV[1]),
    attempts = 0,
    enqueued_at = tonumber(ARGV[2]),
})
redis.call('HSET', KEYS[2], id, job)
redis.call('HSET', KEYS[4], ARGV[1], id)
redis.call('LPUSH', KEYS[3], id)
return {job, 1}
"""

# KEYS: waiting, active, delayed, jobs, failed, pending, failed_by_bookmark
# ARGV: now, lease_until, max_attempts
CLAIM_SCRIPT = """
local now = tonumber(ARGV[1])
local max_attempts = tonumber(ARGV[3])

-- Promote delayed retries whose backoff has elapsed
local due = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', now)
for _, id in ipairs(due) do
    redis.call('ZREM', KEYS[3], id)
    redis.call('LPUSH', KEYS[1], id)
end

-- Redeliver jobs whose lease expired (consumer crashed or stalled)
local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now)
for _, id in ipairs(expired) do
    redis.call('ZREM', KEYS[2], id)
    redis.call('RPUSH', KEYS[1], id)
end

local id = redis.call('RPOP', KEYS[1])
if not id then
    return nil
end
local raw = redis.call('HGET', KEYS[4], id)
if not raw then
    return nil
end
local job = cjson.decode(raw)
job.attempts = job.attempts + 1
if job.attempts > max_attempts then
    local bookmark = string.format('%d', job.bookmark_id)
    job.last_error = 'lease expired after final attempt'
    redis.call('HSET', KEYS[4], id, cjson.encode(job))
    redis.call('LPUSH', KEYS[5], id)
    if redis.call('HGET', KEYS[6], bookmark) == id then
        redis.call('HDEL', KEYS[6], bookmark)
    end
    redis.call('HSET', KEYS[7], bookmark, id)
    return nil
end
raw = cjson.encode(job)
redis.call('HSET', KEYS[4], id, raw)
redis.call('ZADD', KEYS[2], ARGV[2], id)
return raw
"""

# KEYS: active, jobs, pending    ARGV: job_id, bookmark_id
ACK_SCRIPT = """
local removed = redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HDEL', KEYS[2], ARGV[1])
if redis.call('HGET', KEYS[3], ARGV[2]) == ARGV[1] then
    redis.call('HDEL', KEYS[3], ARGV[2])
end
return removed
"""

# KEYS: active, delayed, failed, jobs, pending, failed_by_bookmark
# ARGV: job_id, job_json, retry_at ('' moves the job to the failed list), bookmark_id
FAIL_SCRIPT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 0 then
    return 0
end
redis.call('HSET', KEYS[4], ARGV[1], ARGV[2])
if ARGV[3] == '' then
    redis.call('LPUSH', KEYS[3], ARGV[1])
    if redis.call('HGET', KEYS[5], ARGV[4]) == ARGV[1] then
        redis.call('HDEL', KEYS[5], ARGV[4])
    end
    redis.call('HSET', KEYS[6], ARGV[4], ARGV[1])
else
    redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
end
return 1
"""

# KEYS: failed, waiting, jobs, pending, failed_by_bookmark    ARGV: limit
REQUEUE_FAILED_SCRIPT = """
local moved = 0
local limit = tonumber(ARGV[1])
while moved < limit do
    local id = redis.call('RPOP', KEYS[1])
    if not id then
        break
    end
    local raw = redis.call('HGET', KEYS[3], id)
    if raw then
        local job = cjson.decode(raw)
        local bookmark = string.format('%d', job.bookmark_id)
        if redis.call('HGET', KEYS[5], bookmark) == id then
            redis.call('HDEL', KEYS[5], bookmark)
        end
        if redis.call('HEXISTS', KEYS[4], bookmark) == 1 then
            -- A newer job already covers this bookmark
            redis.call('HDEL', KEYS[3], id)
        else
            job.attempts = 0
            redis.call('HSET', KEYS[3], id, cjson.encode(job))
            redis.call('HSET', KEYS[4], bookmark, id)
            redis.call('LPUSH', KEYS[2], id)
            moved = moved + 1
        end
    end
end
return moved
"""

QUEUE_SCRIPTS = {
    "enqueue": ENQUEUE_SCRIPT,
    "claim": CLAIM_SCRIPT,
    "ack": ACK_SCRIPT,
    "fail": FAIL_SCRIPT,
    "requeue_failed": REQUEUE_FAILED_SCRIPT,
}


class RedisClient:
    """
    Async Redis client with connection pooling.

    Constructed explicitly at startup and passed to whatever needs it; there
    is no module-level client. Unlike a cache, the job queue cannot fail open,
    so operations raise QueueUnavailableError when Redis is not connected.
    """

    def __init__(self, url: str, pool_size: int = 20) -> None:
        self._url = url
        self._pool_size = pool_size
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None
        self._script_shas: dict[str, str] = {}

    async def connect(self) -> None:
        """Open the pool, confirm the server answers, and register the queue scripts."""
        try:
            self._pool = ConnectionPool.from_url(self._url, max_connections=self._pool_size)
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
            await self._load_scripts()
            logger.info("Connected to Redis for the job queue")
        except RedisError as e:
            logger.error("Redis connection failed: %s", e)
            self._client = None
            self._pool = None
            raise QueueUnavailableError(f"Redis connection failed: {e}") from e

    async def _load_scripts(self) -> None:
        """SCRIPT LOAD every queue script, keeping the SHA for EVALSHA."""
        client = self._require_client()
        for name, script in QUEUE_SCRIPTS.items():
            self._script_shas[name] = await client.script_load(script)
        logger.info("Loaded %d queue scripts", len(self._script_shas))

    async def close(self) -> None:
        """Release the pool. Safe to call more than once."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._pool = None
            self._script_shas = {}
            logger.info("Closed Redis connection")

    @property
    def is_connected(self) -> bool:
        """True between a successful connect() and close()."""
        return self._client is not None

    @property
    def client(self) -> Redis:
        """Underlying redis.asyncio client for plain commands."""
        return self._require_client()

    def _require_client(self) -> Redis:
        if self._client is None:
            raise QueueUnavailableError("Redis is not connected")
        return self._client

    async def ping(self) -> bool:
        """Health probe. Never raises; False means unreachable or never connected."""
        if not self._client:
            return False
        try:
            return await self._client.ping()
        except RedisError:
            return False

    async def run_script(self, name: str, keys: list[str], args: list[Any]) -> Any:
        """
        Execute a queue Lua script by name with automatic script reload.

        Handles NOSCRIPT errors (Redis restarted and lost its script cache)
        by reloading scripts and retrying once. Other Redis errors propagate
        as QueueUnavailableError.
        """
        client = self._require_client()
        try:
            return await client.evalsha(self._script_shas[name], len(keys), *keys, *args)
        except NoScriptError:
            logger.warning("redis_script_reload", extra={"script": name})
            try:
                await self._load_scripts()
                return await client.evalsha(
                    self._script_shas[name], len(keys), *keys, *args,
                )
            except RedisError as e:
                raise QueueUnavailableError(f"Redis script {name} failed: {e}") from e
        except RedisError as e:
            raise QueueUnavailableError(f"Redis script {name} failed: {e}") from e
