"""Per-agent request throttling."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

logger = logging.getLogger("aicollab.agents.throttle")

_WINDOW_SECONDS = 60.0


class SlidingWindow:
    """Allows at most *limit* requests in any 60 second window.

    ``acquire`` waits for a free slot instead of failing. A limit of 0 or
    less disables throttling.
    """

    def __init__(
        self,
        limit: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.limit = limit
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()

    def count_in_window(self) -> int:
        cutoff = self._clock() - _WINDOW_SECONDS
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()
        return len(self._timestamps)

    async def acquire(self) -> None:
        if self.limit <= 0:
            return
        while self.count_in_window() >= self.limit:
            wait = self._timestamps[0] + _WINDOW_SECONDS - self._clock()
            logger.debug("Rate limit of %d/min reached, waiting %.1fs", self.limit, wait)
            await self._sleep(max(wait, 0.0))
        self._timestamps.append(self._clock())
