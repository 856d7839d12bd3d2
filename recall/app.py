"""Wiring: build a CompactionEngine from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from recall.config import settings
from recall.engine import CompactionEngine
from recall.jobs.queue import (
    COMPACTION_JOB,
    CompactionQueue,
    InFlightRegistry,
    SchedulerJobQueue,
)
from recall.jobs.worker import CompactionWorker
from recall.llm.client import AnthropicLLMClient
from recall.memory.context import ContextAssembler
from recall.memory.rate_limit import TokenBucket
from recall.memory.store import MemoryStore
from recall.memory.summarizer import Summarizer
from recall.memory.tokens import TokenAccountant
from recall.memory.trigger import CompactionTrigger
from recall.messages.store import SQLiteMessageStore

if TYPE_CHECKING:
    from recall.jobs.queue import JobQueue
    from recall.llm.client import LLMClient
    from recall.messages.store import MessageStore

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging the same way for every entry point."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, level or settings.log_level),
    )


def create_engine(
    *,
    message_store: MessageStore | None = None,
    memory_store: MemoryStore | None = None,
    llm: LLMClient | None = None,
    backend: JobQueue | None = None,
) -> CompactionEngine:
    """Assemble the engine. Any collaborator can be swapped in for tests.

    Defaults: SQLite stores at ``settings.database_path``, the Anthropic
    client, and an APScheduler-backed job queue.
    """
    message_store = message_store or SQLiteMessageStore()
    memory_store = memory_store or MemoryStore()
    backend = backend or SchedulerJobQueue()

    accountant = TokenAccountant(message_store, memory_store)
    summarizer = Summarizer(
        llm or AnthropicLLMClient(),
        accountant,
        rate_limiter=TokenBucket(
            settings.summarizer_rate_capacity,
            settings.summarizer_rate_per_second,
        ),
    )
    registry = InFlightRegistry()
    worker = CompactionWorker(message_store, memory_store, summarizer, registry)
    backend.register(COMPACTION_JOB, worker.handle)

    engine = CompactionEngine(
        trigger=CompactionTrigger(accountant),
        queue=CompactionQueue(backend, registry),
        assembler=ContextAssembler(message_store, memory_store),
    )
    logger.info(
        "Memory engine configured: max_context_tokens=%d ratio=%.2f window=%d",
        accountant.max_context_tokens,
        accountant.compressed_budget_ratio,
        settings.recent_window_size,
    )
    return engine
