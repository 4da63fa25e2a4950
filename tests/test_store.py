import asyncio

import pytest

from jobrunner.errors import JobDecodeError
from jobrunner.jobs.models import Job, JobStatus
from jobrunner.jobs.store import MemoryDelayStore

from helpers import START_MS


def make_job(job_id: str, ready_at: int = START_MS, **fields) -> Job:
    return Job(id=job_id, type="test", created_at=START_MS, scheduled_for=ready_at, **fields)


async def test_future_job_is_invisible_until_its_ready_time(store):
    await store.add(make_job("later", START_MS + 5000))

    assert await store.claim(START_MS) is None
    assert await store.claim(START_MS + 4999) is None
    assert await store.count() == 1

    job = await store.claim(START_MS + 5000)

    assert job.id == "later"
    assert await store.count() == 0


async def test_claim_returns_earliest_ready_job_first(store):
    await store.add(make_job("c", START_MS + 30))
    await store.add(make_job("a", START_MS + 10))
    await store.add(make_job("b", START_MS + 20))

    now = START_MS + 100
    claimed = [(await store.claim(now)).id for _ in range(3)]

    assert claimed == ["a", "b", "c"]
    assert await store.claim(now) is None


async def test_claimed_job_keeps_all_fields(store):
    job = make_job("full", payload={"n": 1}, tags=["x"], attempts=1, error="ValueError: bad")
    await store.add(job)

    claimed = await store.claim(START_MS)

    assert claimed == job


async def test_concurrent_claims_never_return_the_same_job(store):
    for i in range(20):
        await store.add(make_job(f"job_{i}", START_MS + i))

    results = await asyncio.gather(*(store.claim(START_MS + 100) for _ in range(30)))
    claimed = [job.id for job in results if job is not None]

    assert len(claimed) == 20
    assert len(set(claimed)) == 20


async def test_re_adding_a_job_replaces_its_score(store):
    job = make_job("retry", START_MS)
    await store.add(job)
    job.scheduled_for = START_MS + 1000
    job.attempts = 1
    await store.add(job)

    assert await store.count() == 1
    assert await store.claim(START_MS + 999) is None

    claimed = await store.claim(START_MS + 1000)
    assert claimed.attempts == 1
    assert await store.claim(START_MS + 10_000) is None


async def test_remove_and_get(store):
    await store.add(make_job("keep", START_MS + 50))
    await store.add(make_job("drop", START_MS + 60))

    assert (await store.get("drop")).status == JobStatus.PENDING
    removed = await store.remove("drop")

    assert removed.id == "drop"
    assert await store.get("drop") is None
    assert await store.remove("drop") is None
    assert await store.count() == 1
    assert (await store.claim(START_MS + 100)).id == "keep"


async def test_redis_layout(redis_store, redis_client):
    await redis_store.add(make_job("job_1", START_MS + 5))

    assert await redis_client.zscore("test_jobs:pending", "job_1") == START_MS + 5
    assert await redis_client.hexists("test_jobs:jobs", "job_1")

    await redis_store.claim(START_MS + 5)

    assert await redis_client.zcard("test_jobs:pending") == 0
    assert await redis_client.hlen("test_jobs:jobs") == 0


async def test_redis_corrupt_record_is_removed_before_raising(redis_store, redis_client):
    await redis_client.zadd("test_jobs:pending", {"bad": START_MS})
    await redis_client.hset("test_jobs:jobs", "bad", "{not json")

    with pytest.raises(JobDecodeError):
        await redis_store.claim(START_MS)

    assert await redis_store.count() == 0
    assert await redis_store.claim(START_MS) is None


async def test_memory_store_skips_stale_entries_after_remove():
    store = MemoryDelayStore()
    await store.add(make_job("gone", START_MS))
    await store.add(make_job("next", START_MS + 1))
    await store.remove("gone")

    assert (await store.claim(START_MS + 1)).id == "next"
    assert await store.count() == 0


async def test_memory_store_heap_stays_bounded_under_add_and_remove():
    store = MemoryDelayStore()
    await store.add(make_job("keeper", START_MS + 10))

    for i in range(1000):
        await store.add(make_job(f"cancelled-{i}", START_MS + 60_000))
        await store.remove(f"cancelled-{i}")

    assert await store.count() == 1
    assert len(store._heap) <= 2 + store.COMPACT_SLACK
    assert await store.claim(START_MS + 9) is None
    assert (await store.claim(START_MS + 10)).id == "keeper"
