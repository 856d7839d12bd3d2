"""Job queue backends and the deduplicating compaction queue.

Backends only promise at-least-once execution. At most one compaction per
conversation is enforced here, by the in-flight registry, not by the
backend.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from recall.config import settings
from recall.memory.models import CompactionState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    JobHandler = Callable[[dict[str, Any]], Awaitable[None]]

logger = logging.getLogger(__name__)

COMPACTION_JOB = "compress-memory"


@runtime_checkable
class JobQueue(Protocol):
    """Asynchronous job execution with at-least-once delivery."""

    def register(self, job_type: str, handler: JobHandler) -> None: ...

    async def enqueue(self, job_type: str, payload: dict[str, Any], dedupe_key: str) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class _HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(self, job_type: str, handler: JobHandler) -> None:
        """Register the coroutine that processes *job_type* payloads."""
        if job_type in self._handlers:
            logger.warning("Handler already registered for %s, replacing", job_type)
        self._handlers[job_type] = handler

    def _handler(self, job_type: str) -> JobHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            msg = f"No handler registered for job type: {job_type}"
            raise ValueError(msg) from None

    async def _run(self, job_type: str, payload: dict[str, Any]) -> None:
        try:
            await self._handler(job_type)(payload)
            logger.debug("Job completed: %s %s", job_type, payload)
        except Exception:
            logger.exception("Job failed: %s %s", job_type, payload)


# -- Backends ------------------------------------------------------------------


class AsyncioJobQueue(_HandlerRegistry):
    """Runs each job as an asyncio task on the current loop."""

    def __init__(self) -> None:
        super().__init__()
        self._tasks: set[asyncio.Task] = set()

    async def enqueue(self, job_type: str, payload: dict[str, Any], dedupe_key: str) -> None:
        self._handler(job_type)
        task = asyncio.create_task(self._run(job_type, payload), name=f"{job_type}:{dedupe_key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every enqueued job (including ones enqueued meanwhile) finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        """Cancel jobs that are still running."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


class SchedulerJobQueue(_HandlerRegistry):
    """Runs jobs through an APScheduler ``AsyncIOScheduler``.

    Each enqueue becomes a one-shot ``DateTrigger`` job firing immediately.
    """

    def __init__(self, timezone: str | None = None) -> None:
        super().__init__()
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if not self._running:
            self._scheduler.start()
            self._running = True
            logger.info("Job scheduler started (tz=%s)", self._timezone)

    async def stop(self) -> None:
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Job scheduler stopped")

    async def enqueue(self, job_type: str, payload: dict[str, Any], dedupe_key: str) -> None:
        self._handler(job_type)
        job = self._scheduler.add_job(
            self._run,
            trigger=DateTrigger(timezone=self._timezone),
            id=f"{job_type}:{dedupe_key}",
            name=job_type,
            args=[job_type, payload],
            misfire_grace_time=None,
            replace_existing=True,
        )
        logger.debug("Job added to scheduler: %s", job.id)


# -- Dedup ---------------------------------------------------------------------


class InFlightRegistry:
    """Tracks which conversations have a compaction pending or running.

    A conversation absent from the registry is IDLE.
    """

    def __init__(self) -> None:
        self._states: dict[str, CompactionState] = {}

    def state(self, conversation_id: str) -> CompactionState:
        return self._states.get(conversation_id, CompactionState.IDLE)

    def try_mark_pending(self, conversation_id: str) -> bool:
        """IDLE → PENDING. Returns False if a job is already pending or running."""
        if conversation_id in self._states:
            return False
        self._states[conversation_id] = CompactionState.PENDING
        return True

    def mark_running(self, conversation_id: str) -> None:
        self._states[conversation_id] = CompactionState.RUNNING

    def clear(self, conversation_id: str) -> None:
        """Back to IDLE."""
        self._states.pop(conversation_id, None)

    def reset(self) -> None:
        self._states.clear()


class CompactionQueue:
    """Schedules compaction jobs, at most one in flight per conversation."""

    def __init__(self, backend: JobQueue, registry: InFlightRegistry) -> None:
        self._backend = backend
        self._registry = registry

    @property
    def backend(self) -> JobQueue:
        return self._backend

    def release_all(self) -> None:
        """Forget every in-flight marker, e.g. after the backend was stopped."""
        self._registry.reset()

    async def enqueue(self, conversation_id: str) -> bool:
        """Schedule a compaction job for *conversation_id*.

        Returns False (a no-op) if a job is already pending or running, or
        if the backend refused the job.
        """
        # Marked before the first await so concurrent callers see it.
        if not self._registry.try_mark_pending(conversation_id):
            logger.debug("Compaction already in flight for %s, skipping", conversation_id)
            return False
        try:
            await self._backend.enqueue(
                COMPACTION_JOB, {"conversation_id": conversation_id}, conversation_id
            )
        except Exception:
            self._registry.clear(conversation_id)
            logger.exception("Failed to queue compaction for %s", conversation_id)
            return False
        logger.info("Queued memory compaction for %s", conversation_id)
        return True
