import asyncio

import fakeredis
import pytest

from jobrunner.jobs import JobQueue, MemoryDelayStore, RedisDelayStore

from helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryDelayStore()


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def redis_store(redis_client):
    return RedisDelayStore(redis_client, queue_name="test_jobs")


@pytest.fixture(params=["memory", "redis"])
def store(request, memory_store, redis_store):
    """Run a test against every store backend."""
    return memory_store if request.param == "memory" else redis_store


@pytest.fixture
async def queue(memory_store, clock):
    """Queue on a fake clock, for driving process_job directly."""
    q = JobQueue(
        memory_store, retry_delay=100, max_retries=3, poll_interval=0.01, clock=clock
    )
    yield q
    await q.stop_processing()


@pytest.fixture
async def live_queue(memory_store):
    """Queue on the wall clock with fast polling, for worker tests."""
    q = JobQueue(
        memory_store,
        concurrency=2,
        retry_delay=100,
        max_retries=3,
        poll_interval=0.01,
        error_backoff=0.05,
    )
    yield q
    await q.stop_processing()


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait_until
