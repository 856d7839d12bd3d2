"""Compaction trigger: decides whether a conversation is due for compaction."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from recall.config import settings
from recall.errors import TriggerReadError

if TYPE_CHECKING:
    from recall.memory.models import TokenStats
    from recall.memory.tokens import TokenAccountant

logger = logging.getLogger(__name__)


class CompactionTrigger:
    """Read-only compaction decision.

    Compaction is due when the conversation is over budget *and* holds more
    unconsumed messages than the recent window, so something remains to keep
    verbatim afterwards.
    """

    def __init__(self, accountant: TokenAccountant, recent_window_size: int | None = None) -> None:
        self._accountant = accountant
        self.recent_window_size = recent_window_size or settings.recent_window_size

    def is_due(self, stats: TokenStats) -> bool:
        return (
            stats.total_tokens >= self._accountant.max_context_tokens
            and stats.recent_message_count > self.recent_window_size
        )

    async def _read_stats(self, conversation_id: str) -> TokenStats:
        try:
            return await self._accountant.compute_stats(conversation_id)
        except Exception as exc:
            msg = f"Could not read token stats for {conversation_id}"
            raise TriggerReadError(msg) from exc

    async def should_compress(self, conversation_id: str) -> bool:
        """Return True if a compaction job should run now.

        Never raises: if stats cannot be read the answer is False, so a
        storage hiccup never blocks messaging.
        """
        try:
            stats = await self._read_stats(conversation_id)
        except TriggerReadError:
            logger.exception("Compaction check failed for %s, not compressing", conversation_id)
            return False
        return self.is_due(stats)
