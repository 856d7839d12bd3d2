"""Token accounting for the compacted/raw split of a conversation.

Estimates are character-based (``ceil(len / chars_per_token)``) rather than
tokenizer-exact. They only need to be stable and monotonic so the trigger
makes the same decision for the same conversation.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from recall.config import settings
from recall.errors import EstimationError
from recall.memory.models import MemoryEntry, TokenStats

if TYPE_CHECKING:
    from recall.memory.store import MemoryStore
    from recall.messages.models import Message
    from recall.messages.store import MessageStore

logger = logging.getLogger(__name__)


class TokenAccountant:
    """Estimates token costs and computes per-conversation token stats.

    Args:
        message_store: Source of raw conversation messages.
        memory_store: Source of the latest committed memory entry.
        max_context_tokens: Total context budget (default from settings).
        compressed_budget_ratio: Share of the budget reserved for the
            compacted summary (default from settings).
        chars_per_token: Average characters per token (default from settings).
        unreadable_message_tokens: Estimate used when a message's content
            cannot be read (default from settings).
    """

    def __init__(
        self,
        message_store: MessageStore,
        memory_store: MemoryStore,
        *,
        max_context_tokens: int | None = None,
        compressed_budget_ratio: float | None = None,
        chars_per_token: float | None = None,
        unreadable_message_tokens: int | None = None,
    ) -> None:
        self._messages = message_store
        self._memory = memory_store
        self.max_context_tokens = max_context_tokens or settings.max_context_tokens
        self.compressed_budget_ratio = compressed_budget_ratio or settings.compressed_budget_ratio
        self.chars_per_token = chars_per_token or settings.chars_per_token
        self._unreadable_tokens = unreadable_message_tokens or settings.unreadable_message_tokens

    @property
    def compressed_token_ceiling(self) -> int:
        """Token ceiling for a memory entry's summary."""
        return int(self.max_context_tokens * self.compressed_budget_ratio)

    # -- Estimation ------------------------------------------------------------

    def estimate_tokens(self, text: str) -> int:
        """Estimate the token cost of *text*.

        Raises:
            EstimationError: *text* is not a string.
        """
        if not isinstance(text, str):
            msg = f"Cannot estimate tokens for {type(text).__name__}"
            raise EstimationError(msg)
        return math.ceil(len(text) / self.chars_per_token)

    def estimate_message_tokens(self, message: Message) -> int:
        """Estimate a message's cost, overestimating when its content is unreadable."""
        try:
            return self.estimate_tokens(getattr(message, "content", None))
        except EstimationError:
            logger.warning(
                "Unreadable content in message %s, assuming %d tokens",
                getattr(message, "id", "?"),
                self._unreadable_tokens,
            )
            return self._unreadable_tokens

    def estimate_entry_tokens(self, entry: MemoryEntry) -> int:
        """Estimate what a memory entry costs once rendered into context."""
        total = self.estimate_tokens(entry.summary)
        for event in entry.key_events:
            total += self.estimate_tokens(event.description)
        return total

    # -- Stats -----------------------------------------------------------------

    async def compute_stats(self, conversation_id: str) -> TokenStats:
        """Sum token estimates for the latest entry and the unconsumed suffix."""
        latest = await self._memory.get_latest(conversation_id)
        after = latest.end_message_sequence if latest else 0
        messages = await self._messages.list_messages_after(conversation_id, after)

        stats = TokenStats(
            compressed_tokens=self.estimate_entry_tokens(latest) if latest else 0,
            recent_tokens=sum(self.estimate_message_tokens(m) for m in messages),
            recent_message_count=len(messages),
        )
        logger.debug(
            "Token stats for %s: compressed=%d recent=%d total=%d messages=%d (max=%d)",
            conversation_id,
            stats.compressed_tokens,
            stats.recent_tokens,
            stats.total_tokens,
            stats.recent_message_count,
            self.max_context_tokens,
        )
        return stats
