"""Conversation message log consumed by the memory engine."""

from recall.messages.models import Message
from recall.messages.store import InMemoryMessageStore, MessageStore, SQLiteMessageStore

__all__ = [
    "Message",
    "MessageStore",
    "InMemoryMessageStore",
    "SQLiteMessageStore",
]
