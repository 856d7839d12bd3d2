"""Conversation memory: token accounting, summarization, persistence and context."""

from recall.memory.context import ContextAssembler
from recall.memory.models import KeyEvent, MemoryEntry, SummaryResult, TokenStats
from recall.memory.rate_limit import TokenBucket
from recall.memory.store import MemoryStore
from recall.memory.summarizer import Summarizer
from recall.memory.tokens import TokenAccountant
from recall.memory.trigger import CompactionTrigger

__all__ = [
    "CompactionTrigger",
    "ContextAssembler",
    "KeyEvent",
    "MemoryEntry",
    "MemoryStore",
    "Summarizer",
    "SummaryResult",
    "TokenAccountant",
    "TokenBucket",
    "TokenStats",
]
