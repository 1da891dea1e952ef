"""
Suggestion cache with true LRU eviction and lazy TTL expiry.

Lookups and hits are O(1); the O(n) scan over access times only happens
when a new key is inserted into a full cache.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .models import Suggestion


MAX_CACHE_SIZE = 100
CACHE_TTL_SECONDS = 5 * 60


@dataclass
class CacheEntry:
    """Ranked suggestions for one normalized query."""
    suggestions: List[Suggestion]
    timestamp: float


class SuggestionCache:
    """Capacity-bounded LRU map keyed by normalized query."""

    def __init__(self,
                 max_size: int = MAX_CACHE_SIZE,
                 ttl: float = CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.logger = logging.getLogger(f"{__name__}.SuggestionCache")
        self.max_size = max_size
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._access_times: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[List[Suggestion]]:
        """Live entry for ``key``, refreshing its access time; None on miss."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self.clock()
        if now - entry.timestamp > self.ttl:
            del self._entries[key]
            self._access_times.pop(key, None)
            return None

        self._access_times[key] = now
        return entry.suggestions

    def set(self, key: str, suggestions: List[Suggestion]) -> None:
        """Store ``suggestions``, evicting the least recently accessed key if full."""
        now = self.clock()

        if len(self._entries) >= self.max_size and key not in self._entries:
            lru_key = min(self._access_times, key=self._access_times.__getitem__, default=None)
            if lru_key is not None:
                del self._entries[lru_key]
                del self._access_times[lru_key]
                self.logger.debug(f"Evicted least recently used entry '{lru_key}'")

        self._entries[key] = CacheEntry(suggestions=suggestions, timestamp=now)
        self._access_times[key] = now

    def clear(self) -> None:
        self._entries.clear()
        self._access_times.clear()
