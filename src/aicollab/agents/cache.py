"""Small TTL cache with oldest-timestamp eviction, private to one agent."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger("aicollab.agents.cache")

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Entries expire after *ttl* seconds.

    When more than *max_entries* are stored, the entry with the oldest
    timestamp is removed, one at a time, until the cache fits again.
    """

    def __init__(
        self,
        ttl: float,
        max_entries: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}

    def get(self, key: str) -> V | None:
        """Return the cached value, dropping it first if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stamp = entry
        if self._clock() - stamp >= self._ttl:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: V) -> None:
        self._entries[key] = (value, self._clock())
        while len(self._entries) > self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest]
            logger.debug("Evicted cache entry %s", oldest)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
