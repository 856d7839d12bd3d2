"""CompactionEngine — the two in-process entry points of the memory engine.

Write side: ``maybe_enqueue`` (awaited) or ``notify`` (fire-and-forget) after
a message has been appended. Read side: ``build_context``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from recall.jobs.queue import CompactionQueue
    from recall.memory.context import ContextAssembler
    from recall.memory.trigger import CompactionTrigger

    EnqueueListener = Callable[[str], Awaitable[None] | None]

logger = logging.getLogger(__name__)


class CompactionEngine:
    """Ties trigger, queue, and context assembly together.

    Args:
        trigger: Decides whether a conversation is due for compaction.
        queue: Deduplicating compaction queue.
        assembler: Builds prompt context for response generation.
    """

    def __init__(
        self,
        trigger: CompactionTrigger,
        queue: CompactionQueue,
        assembler: ContextAssembler,
    ) -> None:
        self._trigger = trigger
        self._queue = queue
        self._assembler = assembler
        self._listeners: list[EnqueueListener] = []
        self._signals: asyncio.Queue[str] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def add_listener(self, listener: EnqueueListener) -> None:
        """Call *listener(conversation_id)* whenever a compaction job is queued."""
        self._listeners.append(listener)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the job backend and the background signal consumer."""
        await self._queue.backend.start()
        if not self.running:
            self._consumer = asyncio.create_task(self._consume(), name="compaction-signals")
        logger.info("Compaction engine started")

    async def stop(self) -> None:
        """Stop consuming signals and shut down the job backend."""
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        dropped = 0
        while not self._signals.empty():
            self._signals.get_nowait()
            self._signals.task_done()
            dropped += 1
        if dropped:
            logger.info("Dropped %d unprocessed compaction signal(s)", dropped)
        await self._queue.backend.stop()
        # Jobs the backend dropped on shutdown would otherwise stay in flight.
        self._queue.release_all()
        logger.info("Compaction engine stopped")

    # -- Write side ------------------------------------------------------------

    async def maybe_enqueue(self, conversation_id: str) -> bool:
        """Queue a compaction job if the conversation is due. Never raises."""
        try:
            if not await self._trigger.should_compress(conversation_id):
                return False
            enqueued = await self._queue.enqueue(conversation_id)
        except Exception:
            logger.exception("Failed to check/queue memory compaction for %s", conversation_id)
            return False

        if enqueued:
            logger.info("Context limit reached for %s, compaction queued", conversation_id)
            await self._notify_listeners(conversation_id)
        return enqueued

    def notify(self, conversation_id: str) -> None:
        """Signal that a message was appended. Returns immediately.

        The trigger check runs on the background consumer started by
        ``start()``; message delivery never waits on it.
        """
        self._signals.put_nowait(conversation_id)

    async def join(self) -> None:
        """Wait until every signal sent so far has been evaluated."""
        await self._signals.join()

    async def _consume(self) -> None:
        while True:
            conversation_id = await self._signals.get()
            try:
                await self.maybe_enqueue(conversation_id)
            finally:
                self._signals.task_done()

    async def _notify_listeners(self, conversation_id: str) -> None:
        for listener in self._listeners:
            try:
                result = listener(conversation_id)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Compaction listener failed for %s", conversation_id)

    # -- Read side -------------------------------------------------------------

    async def build_context(self, conversation_id: str, recent_window_size: int | None = None) -> str:
        """Compacted history plus recent messages. Never raises."""
        return await self._assembler.build_context(conversation_id, recent_window_size)
