"""
Tests for the prefetch scheduler.

Loads are fake coroutines; retry waits go through a recording sleep so
backoff delays can be asserted without waiting.
"""

import asyncio

import pytest

from snipecache.common.error_handling import LoadFailedError
from snipecache.resources.models import Resource
from snipecache.warming.scheduler import PrefetchScheduler


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        PrefetchScheduler(max_concurrent=0)


def test_enqueue_deduplicates(resources):
    scheduler = PrefetchScheduler()

    assert scheduler.enqueue(resources[0]) is True
    assert scheduler.enqueue(Resource("r0", "https://elsewhere.example.com")) is False

    stats = scheduler.stats()
    assert stats.submitted == 1
    assert stats.deduplicated == 1
    assert scheduler.pending == 1
    assert scheduler.is_scheduled("r0")


@pytest.mark.asyncio
async def test_concurrency_is_bounded(resources, sleep):
    """Five resources with a limit of two never have more than two in flight."""
    scheduler = PrefetchScheduler(max_concurrent=2, sleep=sleep)
    active = 0
    peak = 0
    loaded = []

    async def load(resource):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        for _ in range(3):
            await asyncio.sleep(0)
        active -= 1
        loaded.append(resource.id)

    for resource in resources:
        scheduler.enqueue(resource)

    assert scheduler.drain(load) == 2
    await scheduler.join()

    assert peak == 2
    assert sorted(loaded) == ["r0", "r1", "r2", "r3", "r4"]

    stats = scheduler.stats()
    assert stats.succeeded == 5
    assert stats.peak_in_flight == 2
    assert scheduler.is_idle


@pytest.mark.asyncio
async def test_queue_is_fifo(resources, sleep):
    scheduler = PrefetchScheduler(max_concurrent=1, sleep=sleep)
    order = []

    async def load(resource):
        order.append(resource.id)

    for resource in reversed(resources):
        scheduler.enqueue(resource)
    scheduler.drain(load)
    await scheduler.join()

    assert order == ["r4", "r3", "r2", "r1", "r0"]


@pytest.mark.asyncio
async def test_drain_does_not_exceed_running_workers(resources, sleep):
    scheduler = PrefetchScheduler(max_concurrent=2, sleep=sleep)
    release = asyncio.Event()

    async def load(resource):
        await release.wait()

    scheduler.enqueue(resources[0])
    scheduler.enqueue(resources[1])
    assert scheduler.drain(load) == 2

    scheduler.enqueue(resources[2])
    assert scheduler.drain(load) == 0

    release.set()
    await scheduler.join()
    assert scheduler.stats().succeeded == 3


@pytest.mark.asyncio
async def test_in_flight_resources_are_not_requeued(resources, sleep):
    scheduler = PrefetchScheduler(sleep=sleep)
    started = asyncio.Event()
    release = asyncio.Event()

    async def load(resource):
        started.set()
        await release.wait()

    scheduler.enqueue(resources[0])
    scheduler.drain(load)
    await started.wait()

    assert scheduler.in_flight == {"r0"}
    assert scheduler.enqueue(resources[0]) is False

    release.set()
    await scheduler.join()

    # Once finished the id can be submitted again
    assert scheduler.enqueue(resources[0]) is True


@pytest.mark.asyncio
async def test_retries_use_exponential_backoff(resources, sleep):
    """A load failing twice is retried after d and then 2d."""
    scheduler = PrefetchScheduler(max_retries=3, retry_delay=0.5, sleep=sleep)
    attempts = []

    async def load(resource):
        attempts.append(resource.id)
        if len(attempts) < 3:
            raise LoadFailedError(resource.id, "HTTP error 503", status_code=503)

    scheduler.enqueue(resources[0])
    scheduler.drain(load)
    await scheduler.join()

    assert sleep.delays == [0.5, 1.0]
    stats = scheduler.stats()
    assert stats.succeeded == 1
    assert stats.failed == 0
    assert stats.retries == 2


@pytest.mark.asyncio
async def test_exhausted_retries_drop_the_resource(resources, sleep):
    scheduler = PrefetchScheduler(max_retries=3, retry_delay=1.0, sleep=sleep)
    calls = 0

    async def load(resource):
        nonlocal calls
        calls += 1
        raise LoadFailedError(resource.id, "connection reset")

    scheduler.enqueue(resources[0])
    scheduler.enqueue(resources[1])
    scheduler.drain(load)
    await scheduler.join()

    assert calls == 8
    assert sleep.delays == [1.0, 2.0, 4.0] * 2
    stats = scheduler.stats()
    assert stats.failed == 2
    assert stats.succeeded == 0
    assert scheduler.is_idle


@pytest.mark.asyncio
async def test_shutdown_cancels_work(resources, sleep):
    scheduler = PrefetchScheduler(max_concurrent=1, sleep=sleep)
    started = asyncio.Event()

    async def hang(resource):
        started.set()
        await asyncio.Event().wait()

    for resource in resources[:3]:
        scheduler.enqueue(resource)
    scheduler.drain(hang)
    await started.wait()

    await scheduler.shutdown()

    assert scheduler.pending == 0
    assert scheduler.in_flight == set()

    # The scheduler can be used again afterwards
    loaded = []

    async def load(resource):
        loaded.append(resource.id)

    scheduler.enqueue(resources[3])
    assert scheduler.drain(load) == 1
    await scheduler.join()
    assert loaded == ["r3"]
