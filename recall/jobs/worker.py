"""CompactionWorker — folds a conversation's unsummarized messages into memory."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from recall.config import settings
from recall.errors import ChainConflictError, PersistenceFailure, SummarizationFailure
from recall.memory.models import CompactionState, MemoryEntry, make_entry_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from recall.jobs.queue import InFlightRegistry
    from recall.memory.store import MemoryStore
    from recall.memory.summarizer import Summarizer
    from recall.messages.store import MessageStore

logger = logging.getLogger(__name__)


class CompactionWorker:
    """Runs compaction jobs.

    One job reads the latest committed entry, summarizes every message after
    it except the recent window, and commits the result. Failed attempts are
    retried with exponential backoff; once attempts run out the job is
    abandoned and nothing is persisted.

    Args:
        message_store: Source of raw messages.
        memory_store: Entry chain to extend.
        summarizer: Produces the entry content.
        registry: In-flight registry shared with the CompactionQueue.
        recent_window_size: Messages always left verbatim (default from settings).
        max_attempts: Attempts per job (default from settings).
        backoff_seconds: Base backoff, doubled per attempt (default from settings).
        concurrency: Max jobs running at once across conversations.
        sleep: Async sleep used for backoff.
    """

    def __init__(
        self,
        message_store: MessageStore,
        memory_store: MemoryStore,
        summarizer: Summarizer,
        registry: InFlightRegistry,
        *,
        recent_window_size: int | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        concurrency: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._messages = message_store
        self._memory = memory_store
        self._summarizer = summarizer
        self._registry = registry
        self._window = recent_window_size or settings.recent_window_size
        self._max_attempts = max_attempts or settings.compaction_max_attempts
        self._backoff = settings.compaction_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._semaphore = asyncio.Semaphore(concurrency or settings.compaction_worker_concurrency)
        self._sleep = sleep

    async def handle(self, payload: dict[str, Any]) -> None:
        """Job handler registered with the queue backend."""
        await self.run(payload["conversation_id"])

    async def run(self, conversation_id: str) -> MemoryEntry | None:
        """Run one compaction job. Returns the committed entry, or None.

        Never raises for compaction failures; the conversation always ends
        up IDLE again.
        """
        if self._registry.state(conversation_id) is CompactionState.RUNNING:
            logger.info("Duplicate delivery for %s while running, skipping", conversation_id)
            return None

        # Cleared even if cancelled while waiting for a worker slot.
        try:
            async with self._semaphore:
                self._registry.mark_running(conversation_id)
                return await self._run_with_retries(conversation_id)
        finally:
            self._registry.clear(conversation_id)

    async def _run_with_retries(self, conversation_id: str) -> MemoryEntry | None:
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._attempt(conversation_id)
            except ChainConflictError:
                logger.warning("Range already compacted for %s, dropping job", conversation_id)
                return None
            except (SummarizationFailure, PersistenceFailure) as exc:
                logger.warning(
                    "Compaction attempt %d/%d failed for %s: %s",
                    attempt,
                    self._max_attempts,
                    conversation_id,
                    exc,
                )
            except Exception:
                logger.exception(
                    "Compaction attempt %d/%d failed for %s",
                    attempt,
                    self._max_attempts,
                    conversation_id,
                )

            if attempt < self._max_attempts:
                delay = self._backoff * 2 ** (attempt - 1)
                logger.info("Retrying compaction for %s in %.1fs", conversation_id, delay)
                await self._sleep(delay)

        logger.error(
            "Abandoning compaction for %s after %d attempts",
            conversation_id,
            self._max_attempts,
        )
        return None

    async def _attempt(self, conversation_id: str) -> MemoryEntry | None:
        previous = await self._memory.get_latest(conversation_id)
        after = previous.end_message_sequence if previous else 0
        unconsumed = await self._messages.list_messages_after(conversation_id, after)

        if len(unconsumed) <= self._window:
            logger.info(
                "Not enough messages to compact for %s (%d unconsumed, window %d)",
                conversation_id,
                len(unconsumed),
                self._window,
            )
            return None

        batch = unconsumed[: -self._window]
        logger.info(
            "Compacting %d message(s) for %s (sequence %d-%d)",
            len(batch),
            conversation_id,
            batch[0].sequence,
            batch[-1].sequence,
        )
        result = await self._summarizer.summarize(
            previous.summary if previous else None,
            previous.key_events if previous else None,
            batch,
        )
        entry = MemoryEntry(
            id=make_entry_id(),
            conversation_id=conversation_id,
            summary=result.summary,
            key_events=result.key_events,
            start_message_sequence=batch[0].sequence,
            end_message_sequence=batch[-1].sequence,
        )
        return await self._commit(entry)

    async def _commit(self, entry: MemoryEntry) -> MemoryEntry:
        """Commit, retrying persistence failures without re-summarizing."""
        for attempt in range(1, self._max_attempts):
            try:
                return await self._memory.commit(entry)
            except ChainConflictError:
                raise
            except PersistenceFailure as exc:
                logger.warning(
                    "Commit attempt %d/%d failed for %s: %s",
                    attempt,
                    self._max_attempts,
                    entry.conversation_id,
                    exc,
                )
                await self._sleep(self._backoff * 2 ** (attempt - 1))
        return await self._memory.commit(entry)
