"""Tests for job queue backends, the in-flight registry, and dedup."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from recall.jobs.queue import (
    COMPACTION_JOB,
    AsyncioJobQueue,
    CompactionQueue,
    InFlightRegistry,
    JobQueue,
    SchedulerJobQueue,
)
from recall.memory.models import CompactionState

# -- InFlightRegistry ----------------------------------------------------------


def test_registry_lifecycle() -> None:
    registry = InFlightRegistry()
    assert registry.state("c1") is CompactionState.IDLE

    assert registry.try_mark_pending("c1") is True
    assert registry.state("c1") is CompactionState.PENDING
    assert registry.try_mark_pending("c1") is False

    registry.mark_running("c1")
    assert registry.state("c1") is CompactionState.RUNNING
    assert registry.try_mark_pending("c1") is False

    registry.clear("c1")
    assert registry.state("c1") is CompactionState.IDLE
    assert registry.try_mark_pending("c1") is True


def test_registry_is_per_conversation() -> None:
    registry = InFlightRegistry()
    registry.try_mark_pending("c1")
    assert registry.try_mark_pending("c2") is True


def test_registry_reset() -> None:
    registry = InFlightRegistry()
    registry.try_mark_pending("c1")
    registry.reset()
    assert registry.state("c1") is CompactionState.IDLE


# -- AsyncioJobQueue -----------------------------------------------------------


def test_backends_satisfy_protocol() -> None:
    assert isinstance(AsyncioJobQueue(), JobQueue)
    assert isinstance(SchedulerJobQueue(timezone="UTC"), JobQueue)


async def test_asyncio_queue_runs_handler() -> None:
    backend = AsyncioJobQueue()
    handler = AsyncMock()
    backend.register("job", handler)

    await backend.enqueue("job", {"x": 1}, "key")
    await backend.drain()

    handler.assert_awaited_once_with({"x": 1})


async def test_asyncio_queue_unknown_job_type() -> None:
    with pytest.raises(ValueError):
        await AsyncioJobQueue().enqueue("missing", {}, "key")


async def test_asyncio_queue_contains_handler_errors() -> None:
    backend = AsyncioJobQueue()
    backend.register("job", AsyncMock(side_effect=RuntimeError("boom")))

    await backend.enqueue("job", {}, "key")
    await backend.drain()  # does not raise


async def test_asyncio_queue_stop_cancels_running_jobs() -> None:
    backend = AsyncioJobQueue()
    started = asyncio.Event()

    async def slow(payload):
        started.set()
        await asyncio.sleep(10)

    backend.register("job", slow)
    await backend.enqueue("job", {}, "key")
    await started.wait()
    await backend.stop()
    await backend.drain()


# -- SchedulerJobQueue ---------------------------------------------------------


async def test_scheduler_queue_start_and_stop() -> None:
    backend = SchedulerJobQueue(timezone="UTC")
    await backend.start()
    assert backend.running is True
    await backend.stop()
    assert backend.running is False


async def test_scheduler_queue_runs_handler() -> None:
    backend = SchedulerJobQueue(timezone="UTC")
    done = asyncio.Event()
    received = []

    async def handler(payload):
        received.append(payload)
        done.set()

    backend.register(COMPACTION_JOB, handler)
    await backend.start()
    try:
        await backend.enqueue(COMPACTION_JOB, {"conversation_id": "c1"}, "c1")
        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        await backend.stop()

    assert received == [{"conversation_id": "c1"}]


# -- CompactionQueue -----------------------------------------------------------


async def test_enqueue_marks_pending() -> None:
    backend = AsyncMock()
    registry = InFlightRegistry()
    queue = CompactionQueue(backend, registry)

    assert await queue.enqueue("c1") is True
    assert registry.state("c1") is CompactionState.PENDING
    backend.enqueue.assert_awaited_once_with(COMPACTION_JOB, {"conversation_id": "c1"}, "c1")


async def test_enqueue_is_noop_while_in_flight() -> None:
    backend = AsyncMock()
    queue = CompactionQueue(backend, InFlightRegistry())

    results = [await queue.enqueue("c1") for _ in range(5)]

    assert results == [True, False, False, False, False]
    assert backend.enqueue.await_count == 1


async def test_concurrent_enqueues_dedupe() -> None:
    backend = AsyncMock()
    queue = CompactionQueue(backend, InFlightRegistry())

    results = await asyncio.gather(*(queue.enqueue("c1") for _ in range(20)))

    assert sum(results) == 1
    assert backend.enqueue.await_count == 1


async def test_different_conversations_both_enqueue() -> None:
    backend = AsyncMock()
    queue = CompactionQueue(backend, InFlightRegistry())
    assert await queue.enqueue("c1") is True
    assert await queue.enqueue("c2") is True


async def test_backend_failure_releases_marker() -> None:
    backend = AsyncMock()
    backend.enqueue.side_effect = [RuntimeError("redis down"), None]
    registry = InFlightRegistry()
    queue = CompactionQueue(backend, registry)

    assert await queue.enqueue("c1") is False
    assert registry.state("c1") is CompactionState.IDLE
    assert await queue.enqueue("c1") is True


async def test_release_all_clears_markers() -> None:
    registry = InFlightRegistry()
    queue = CompactionQueue(AsyncMock(), registry)
    await queue.enqueue("c1")
    registry.mark_running("c2")

    queue.release_all()

    assert registry.state("c1") is CompactionState.IDLE
    assert registry.state("c2") is CompactionState.IDLE
    assert await queue.enqueue("c1") is True
