"""Bounded decision cache shared by all callers of one engine."""
from __future__ import annotations

import logging
import threading
from collections.abc import Hashable
from typing import Any

logger = logging.getLogger(__name__)

_MISSING = object()


class DecisionCache:
    """A size-bounded mapping safe for concurrent use.

    When an insert pushes the cache past ``capacity`` entries it is cut down
    to its most recently inserted half.  Every read and write holds the same
    lock, so a reader never observes a half-evicted cache.

    Args:
        capacity: Maximum number of entries kept.
        enabled: When ``False`` the cache stores nothing.
    """

    def __init__(self, capacity: int = 10_000, enabled: bool = True) -> None:
        if capacity < 2:
            raise ValueError("capacity must be at least 2")
        self._capacity = capacity
        self._enabled = enabled
        self._entries: dict[Hashable, Any] = {}
        self._lock = threading.RLock()
        self.hits = 0
        self.misses = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def enabled(self) -> bool:
        return self._enabled

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: Hashable, default: Any = None) -> Any:
        if not self._enabled:
            return default
        with self._lock:
            value = self._entries.get(key, _MISSING)
            if value is _MISSING:
                self.misses += 1
                return default
            self.hits += 1
            return value

    def put(self, key: Hashable, value: Any) -> None:
        if not self._enabled:
            return
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = value
            if len(self._entries) > self._capacity:
                self._evict()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def reset_counters(self) -> None:
        with self._lock:
            self.hits = 0
            self.misses = 0

    def _evict(self) -> None:
        keep = self._capacity // 2
        dropped = len(self._entries) - keep
        # dicts preserve insertion order; the tail is the newest entries
        self._entries = dict(list(self._entries.items())[-keep:])
        logger.debug("Decision cache evicted %d entries (capacity %d)", dropped, self._capacity)
