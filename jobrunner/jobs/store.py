import heapq
from abc import ABC, abstractmethod
from typing import Optional

import structlog
from redis.asyncio import Redis

from jobrunner.jobs.models import Job

logger = structlog.get_logger()

_redis: Optional[Redis] = None


def get_redis(url: str) -> Redis:
    """Return the process-wide Redis client, creating it on first use.

    Args:
        url: Redis connection URL (only used on first call)
    """
    global _redis

    if _redis is None:
        _redis = Redis.from_url(url, decode_responses=True)
        logger.info("redis_client_created", source="store")

    return _redis


async def close_redis() -> None:
    """Close and forget the process-wide Redis client."""
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None
        logger.info("redis_client_closed", source="store")


class DelayStore(ABC):
    """Ordered store of pending jobs scored by ready time (epoch ms).

    A job scored in the future is invisible to ``claim`` until its time
    arrives, which gives delayed and retried jobs the same code path.
    """

    @abstractmethod
    async def add(self, job: Job) -> None:
        """Insert (or replace) a job scored by ``job.ready_at``."""

    @abstractmethod
    async def claim(self, now: int) -> Optional[Job]:
        """Atomically remove and return the earliest job with score <= now."""

    @abstractmethod
    async def remove(self, job_id: str) -> Optional[Job]:
        """Atomically remove a pending job by id, returning it if present."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Return a pending job by id without removing it."""

    @abstractmethod
    async def count(self) -> int:
        """Return the number of pending jobs, ready or not."""

    async def close(self) -> None:
        """Release any resources held by the store."""


class RedisDelayStore(DelayStore):
    """Redis-backed store.

    Layout under the queue name ``Q``:
    - ``Q:pending``: sorted set, member = job id, score = ready time
    - ``Q:jobs``: hash, job id -> serialized job

    Claim and remove run as Lua scripts so the two keys change together and
    no two consumers can pop the same member.
    """

    CLAIM_SCRIPT = """
    local ids = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1], "LIMIT", 0, 1)
    if #ids == 0 then return nil end

    local id = ids[1]
    local raw = redis.call("HGET", KEYS[2], id)
    redis.call("ZREM", KEYS[1], id)
    redis.call("HDEL", KEYS[2], id)

    return raw
    """

    REMOVE_SCRIPT = """
    if redis.call("ZREM", KEYS[1], ARGV[1]) == 0 then return nil end

    local raw = redis.call("HGET", KEYS[2], ARGV[1])
    redis.call("HDEL", KEYS[2], ARGV[1])
    return raw
    """

    def __init__(self, redis_client: Redis, queue_name: str = "jobs") -> None:
        """Initialize the Redis store.

        Args:
            redis_client: Async Redis client created with decode_responses=True
            queue_name: Prefix for the keys of this queue
        """
        self.redis = redis_client
        self.queue_name = queue_name
        self.pending_key = f"{queue_name}:pending"
        self.jobs_key = f"{queue_name}:jobs"
        self._claim = self.redis.register_script(self.CLAIM_SCRIPT)
        self._remove = self.redis.register_script(self.REMOVE_SCRIPT)

        logger.info("redis_store_initialized", queue_name=queue_name, source="store")

    async def add(self, job: Job) -> None:
        raw = job.to_json()

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self.jobs_key, job.id, raw)
            pipe.zadd(self.pending_key, {job.id: job.ready_at})
            await pipe.execute()

    async def claim(self, now: int) -> Optional[Job]:
        raw = await self._claim(keys=[self.pending_key, self.jobs_key], args=[now])

        if raw is None:
            return None

        # The record is already gone from Redis, so a bad one is dropped here.
        return Job.from_json(raw)

    async def remove(self, job_id: str) -> Optional[Job]:
        raw = await self._remove(keys=[self.pending_key, self.jobs_key], args=[job_id])
        return Job.from_json(raw) if raw is not None else None

    async def get(self, job_id: str) -> Optional[Job]:
        raw = await self.redis.hget(self.jobs_key, job_id)
        return Job.from_json(raw) if raw is not None else None

    async def count(self) -> int:
        return await self.redis.zcard(self.pending_key)

    async def close(self) -> None:
        if self.redis is _redis:
            await close_redis()
        else:
            await self.redis.aclose()


class MemoryDelayStore(DelayStore):
    """In-process store used when no Redis is configured.

    Jobs are kept serialized so they follow the same wire contract as the
    Redis store. Every method runs without awaiting, so each operation is
    atomic with respect to other tasks on the event loop.

    Pending jobs live and die with the process: other processes cannot
    enqueue into it.
    """

    # Stale heap entries tolerated before remove() rebuilds the heap
    COMPACT_SLACK = 64

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, str]] = []
        self._jobs: dict[str, tuple[int, str]] = {}
        self._seq = 0

        logger.info("memory_store_initialized", source="store")

    async def add(self, job: Job) -> None:
        raw = job.to_json()
        score = job.ready_at

        self._seq += 1
        self._jobs[job.id] = (self._seq, raw)
        heapq.heappush(self._heap, (score, self._seq, job.id))

    async def claim(self, now: int) -> Optional[Job]:
        while self._heap and self._heap[0][0] <= now:
            _, seq, job_id = heapq.heappop(self._heap)
            entry = self._jobs.get(job_id)

            # Stale heap entry left behind by a remove or a re-add.
            if entry is None or entry[0] != seq:
                continue

            del self._jobs[job_id]
            return Job.from_json(entry[1])

        return None

    async def remove(self, job_id: str) -> Optional[Job]:
        entry = self._jobs.pop(job_id, None)
        if entry is None:
            return None

        if len(self._heap) > 2 * len(self._jobs) + self.COMPACT_SLACK:
            self._compact()

        return Job.from_json(entry[1])

    async def get(self, job_id: str) -> Optional[Job]:
        entry = self._jobs.get(job_id)
        return Job.from_json(entry[1]) if entry is not None else None

    async def count(self) -> int:
        return len(self._jobs)

    def _compact(self) -> None:
        self._heap = [
            entry for entry in self._heap
            if self._jobs.get(entry[2], (None,))[0] == entry[1]
        ]
        heapq.heapify(self._heap)
