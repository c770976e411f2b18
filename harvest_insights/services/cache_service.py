"""
In-memory response cache for upstream GET requests.

Entries are bounded both by count (least recently used is evicted first)
and by age (an entry older than the TTL is never returned). Reads refresh
recency but never age.
"""

import math
import re
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Pattern, Union

import structlog

from harvest_insights.models.cache import CacheConfig, CacheEntry, CacheStats
from harvest_insights.observability.metrics import CACHE_OPERATIONS, CACHE_SIZE

logger = structlog.get_logger()


class ResponseCache:
    """
    LRU + TTL cache shared by every gateway.

    All methods are synchronous, so each call is atomic with respect to
    other coroutines on the same event loop.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            config: Cache configuration
            clock: Seconds source, injectable for tests
        """
        self.config = config or CacheConfig()
        self.enabled = self.config.enabled
        self._clock = clock
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0

        if not self.enabled:
            logger.info("cache_disabled")

    @property
    def ttl_seconds(self) -> float:
        return self.config.ttl_seconds

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at >= self.config.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Look up a fresh entry.

        Counts a hit or a miss. An expired entry is removed and reported as
        a miss. A hit moves the entry to most recently used.

        Args:
            key: Cache key from generate_cache_key

        Returns:
            The entry, or None
        """
        if not self.enabled:
            return None

        entry = self._store.get(key)
        if entry is not None and self._is_expired(entry, self._clock()):
            del self._store[key]
            entry = None

        if entry is None:
            self._misses += 1
            CACHE_OPERATIONS.labels(operation="miss").inc()
            return None

        self._store.move_to_end(key)
        self._hits += 1
        CACHE_OPERATIONS.labels(operation="hit").inc()
        return entry

    def set(self, key: str, data: Any) -> None:
        """
        Store data under key, stamped with the current time.

        Evicts least recently used entries while at capacity.
        """
        if not self.enabled:
            return

        if key in self._store:
            del self._store[key]

        while len(self._store) >= self.config.max_size:
            evicted, _ = self._store.popitem(last=False)
            CACHE_OPERATIONS.labels(operation="evict").inc()
            logger.debug("cache_evicted", key=evicted)

        self._store[key] = CacheEntry(data=data, stored_at=self._clock(), key=key)
        CACHE_OPERATIONS.labels(operation="set").inc()
        CACHE_SIZE.set(len(self._store))

    def has(self, key: str) -> bool:
        """Check for a fresh entry without touching recency or stats"""
        entry = self._store.get(key)
        if entry is None:
            return False
        if self._is_expired(entry, self._clock()):
            del self._store[key]
            return False
        return True

    def get_age(self, key: str) -> Optional[int]:
        """Age of a fresh entry in whole seconds, or None"""
        entry = self._store.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._is_expired(entry, now):
            return None
        return math.floor(now - entry.stored_at)

    def invalidate(self, pattern: Union[str, Pattern[str]]) -> int:
        """
        Remove every entry whose key matches pattern.

        Args:
            pattern: Substring, or compiled regex matched with search()

        Returns:
            Number of entries removed
        """
        if isinstance(pattern, re.Pattern):
            matches = [key for key in self._store if pattern.search(key)]
        else:
            matches = [key for key in self._store if pattern in key]

        for key in matches:
            del self._store[key]

        if matches:
            CACHE_OPERATIONS.labels(operation="invalidate").inc(len(matches))
            CACHE_SIZE.set(len(self._store))
            logger.debug(
                "cache_invalidated",
                pattern=getattr(pattern, "pattern", pattern),
                removed=len(matches),
            )
        return len(matches)

    def clear(self) -> None:
        """Drop every entry; hit and miss counters are kept"""
        self._store.clear()
        CACHE_SIZE.set(0)
        logger.info("cache_cleared")

    def get_stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._store))

    def __len__(self) -> int:
        return len(self._store)
