"""Token-bucket rate limiter for summarizer calls.

An explicit object injected into the summarizer, so each engine (and each
test) owns its own counters and can reset them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Classic token bucket.

    Args:
        capacity: Maximum burst size. The bucket starts full.
        refill_per_second: Tokens added per second, up to *capacity*.
        clock: Monotonic time source in seconds.
        sleep: Async sleep used by ``acquire()`` while waiting for a token.
    """

    def __init__(
        self,
        capacity: int,
        refill_per_second: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            msg = "capacity must be at least 1"
            raise ValueError(msg)
        if refill_per_second <= 0:
            msg = "refill_per_second must be positive"
            raise ValueError(msg)
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.reset()

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        self._tokens = float(self.capacity)
        self._updated_at = self._clock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(now - self._updated_at, 0.0)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.refill_per_second)
        self._updated_at = now

    def try_acquire(self) -> bool:
        """Take one token if available. Never waits."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Take one token, waiting for a refill if the bucket is empty."""
        async with self._lock:
            while not self.try_acquire():
                wait = (1 - self._tokens) / self.refill_per_second
                logger.debug("Rate limit reached, waiting %.2fs", wait)
                await self._sleep(wait)
