"""Shared test fixtures."""

import json
from dataclasses import dataclass
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from recall.engine import CompactionEngine
from recall.jobs.queue import (
    COMPACTION_JOB,
    AsyncioJobQueue,
    CompactionQueue,
    InFlightRegistry,
)
from recall.jobs.worker import CompactionWorker
from recall.llm.client import GenerationOptions
from recall.memory.context import ContextAssembler
from recall.memory.store import MemoryStore
from recall.memory.summarizer import Summarizer
from recall.memory.tokens import TokenAccountant
from recall.memory.trigger import CompactionTrigger
from recall.messages.store import InMemoryMessageStore

# 40-char messages at 4 chars/token cost 10 tokens each, so a 550-token
# budget is first reached by the 55th message.
MESSAGE_CHARS = 40
MAX_CONTEXT_TOKENS = 550
WINDOW = 10

VALID_SUMMARY = json.dumps(
    {
        "summary": "Alice and Bob planned a trip to the coast.",
        "keyEvents": [
            {
                "description": "Alice proposed the coast trip",
                "participants": ["Alice", "Bob"],
                "importance": "high",
            }
        ],
    }
)


class FakeLLM:
    """LLMClient stand-in that replays scripted responses.

    Items in *responses* are returned (or raised, if exceptions) in order;
    after that every call returns *default*.
    """

    def __init__(self, responses: list | None = None, default: str | Exception = VALID_SUMMARY) -> None:
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list[str] = []
        self.options: list[GenerationOptions] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        result = self.responses.pop(0) if self.responses else self.default
        if isinstance(result, Exception):
            raise result
        return result


def message_text(i: int) -> str:
    return f"message {i}".ljust(MESSAGE_CHARS, ".")


async def add_messages(store: InMemoryMessageStore, conversation_id: str, count: int) -> None:
    """Append *count* 10-token messages, alternating senders."""
    existing = len(await store.list_messages_after(conversation_id, 0))
    for i in range(existing + 1, existing + count + 1):
        sender = "Alice" if i % 2 else "Bob"
        await store.append(conversation_id, sender, message_text(i))


@dataclass
class Harness:
    """A fully wired engine over in-memory messages and a temp SQLite memory store."""

    engine: CompactionEngine
    backend: AsyncioJobQueue
    queue: CompactionQueue
    registry: InFlightRegistry
    worker: CompactionWorker
    trigger: CompactionTrigger
    accountant: TokenAccountant
    assembler: ContextAssembler
    messages: InMemoryMessageStore
    memory: MemoryStore
    llm: FakeLLM
    sleep: AsyncMock


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def memory_store(tmp_path: Path) -> MemoryStore:
    """Create a MemoryStore backed by a temp database."""
    return MemoryStore(db_path=tmp_path / "test.db")


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def accountant(message_store: InMemoryMessageStore, memory_store: MemoryStore) -> TokenAccountant:
    return TokenAccountant(
        message_store,
        memory_store,
        max_context_tokens=MAX_CONTEXT_TOKENS,
        compressed_budget_ratio=0.3,
        chars_per_token=4,
    )


@pytest.fixture
def harness(
    message_store: InMemoryMessageStore,
    memory_store: MemoryStore,
    llm: FakeLLM,
    accountant: TokenAccountant,
) -> Harness:
    sleep = AsyncMock()
    registry = InFlightRegistry()
    backend = AsyncioJobQueue()
    summarizer = Summarizer(llm, accountant, timeout=5)
    worker = CompactionWorker(
        message_store,
        memory_store,
        summarizer,
        registry,
        recent_window_size=WINDOW,
        max_attempts=3,
        backoff_seconds=1.0,
        concurrency=4,
        sleep=sleep,
    )
    backend.register(COMPACTION_JOB, worker.handle)
    queue = CompactionQueue(backend, registry)
    trigger = CompactionTrigger(accountant, recent_window_size=WINDOW)
    assembler = ContextAssembler(message_store, memory_store, recent_window_size=WINDOW)
    engine = CompactionEngine(trigger=trigger, queue=queue, assembler=assembler)
    return Harness(
        engine=engine,
        backend=backend,
        queue=queue,
        registry=registry,
        worker=worker,
        trigger=trigger,
        accountant=accountant,
        assembler=assembler,
        messages=message_store,
        memory=memory_store,
        llm=llm,
        sleep=sleep,
    )
