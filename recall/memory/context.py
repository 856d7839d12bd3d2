"""Context assembly: compacted history plus the verbatim recent window."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from recall.config import settings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from recall.memory.models import MemoryEntry
    from recall.memory.store import MemoryStore
    from recall.messages.models import Message
    from recall.messages.store import MessageStore

logger = logging.getLogger(__name__)

HISTORY_HEADER = "[= CONVERSATION HISTORY (SUMMARIZED) =]"
HISTORY_FOOTER = "[= END OF SUMMARIZED HISTORY =]"
RECENT_HEADER = "[= RECENT MESSAGES (FULL CONTEXT) =]"


def format_history(entry: MemoryEntry) -> str:
    """Render the compacted-history section for *entry*."""
    lines = [
        HISTORY_HEADER,
        "",
        f"=== Summary (messages {entry.start_message_sequence}-"
        f"{entry.end_message_sequence}) ===",
        entry.summary,
    ]
    if entry.key_events:
        lines.append("")
        lines.append("Key Events:")
        lines.extend(f"- {event.description} ({event.importance})" for event in entry.key_events)
    lines.append("")
    lines.append(HISTORY_FOOTER)
    return "\n".join(lines)


def format_recent(messages: Sequence[Message]) -> str:
    """Render the recent-messages section. Empty when there are no messages."""
    if not messages:
        return ""
    lines = [RECENT_HEADER, ""]
    lines.extend(f"{m.sender_label}: {m.content}" for m in messages)
    return "\n".join(lines)


class ContextAssembler:
    """Builds the prompt context handed to response generation.

    ``build_context`` never raises. When the memory store is unavailable it
    falls back to the recent messages alone.
    """

    def __init__(
        self,
        message_store: MessageStore,
        memory_store: MemoryStore,
        recent_window_size: int | None = None,
    ) -> None:
        self._messages = message_store
        self._memory = memory_store
        self.recent_window_size = recent_window_size or settings.recent_window_size

    async def build_context(self, conversation_id: str, recent_window_size: int | None = None) -> str:
        """Return compacted history (if any) followed by the recent messages."""
        window = recent_window_size or self.recent_window_size
        try:
            return await self._build(conversation_id, window)
        except Exception:
            logger.exception("Error building context with memory for %s, falling back", conversation_id)

        try:
            return await self._build_fallback(conversation_id, window)
        except Exception:
            logger.exception("Fallback context failed for %s", conversation_id)
            return ""

    async def _build(self, conversation_id: str, window: int) -> str:
        latest = await self._memory.get_latest(conversation_id)
        after = latest.end_message_sequence if latest else 0
        unconsumed = await self._messages.list_messages_after(conversation_id, after)

        sections = []
        if latest is not None:
            sections.append(format_history(latest))
        recent = format_recent(unconsumed[-window:])
        if recent:
            sections.append(recent)
        return "\n\n".join(sections)

    async def _build_fallback(self, conversation_id: str, window: int) -> str:
        count = await self._messages.count_recent(conversation_id, window)
        if count == 0:
            return ""
        messages = await self._messages.list_messages_after(conversation_id, 0)
        return format_recent(messages[-count:])
