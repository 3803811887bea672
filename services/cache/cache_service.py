# services/cache/cache_service.py
"""
In-process, time-bounded result cache.

Entries live for an absolute TTL from the moment they are written (reads do
not extend them) and are never overwritten while alive.  Size is bounded by
the TTL alone: there is no LRU eviction.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from loguru import logger
from prometheus_client import Counter, Gauge

from models.scrape import ScrapeKind, ScrapeResult

CACHE_HITS = Counter('cache_hits_total', 'Result cache hits')
CACHE_MISSES = Counter('cache_misses_total', 'Result cache misses')
CACHE_ENTRIES = Gauge('cache_entries', 'Live entries in the result cache')


@dataclass(frozen=True)
class CacheEntry:
    value: ScrapeResult
    expires_at: float


class CacheService:
    def __init__(
        self,
        ttl: float = 3600.0,
        failed_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Parameters
        ----------
        ttl: float
            Lifetime in seconds of a successful result.
        failed_ttl: float | None
            Lifetime of an ``"N/A"`` result.  ``None`` uses ``ttl``; ``0``
            disables caching of such results.
        clock: callable
            Monotonic time source, injectable for tests.
        """
        self.ttl = ttl
        self.failed_ttl = ttl if failed_ttl is None else failed_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    @staticmethod
    def make_key(kind: ScrapeKind, subject_id: str) -> str:
        return f"{ScrapeKind(kind).value}:{subject_id}"

    def __len__(self) -> int:
        return len(self._entries)

    def _ttl_for(self, result: ScrapeResult) -> float:
        return self.ttl if result.available else self.failed_ttl

    def get(self, key: str) -> Optional[ScrapeResult]:
        entry = self._entries.get(key)
        if entry is None:
            CACHE_MISSES.inc()
            return None
        if self._clock() >= entry.expires_at:
            # timer has not fired yet; never serve past the deadline
            self._evict(key)
            CACHE_MISSES.inc()
            return None
        CACHE_HITS.inc()
        return entry.value

    def set(self, key: str, result: ScrapeResult) -> bool:
        """Store ``result`` unless the key already holds a live entry."""
        ttl = self._ttl_for(result)
        if ttl <= 0:
            return False

        current = self._entries.get(key)
        if current is not None and self._clock() < current.expires_at:
            logger.debug(f"Cache entry for {key} still live, not replacing")
            return False
        if current is not None:
            self._evict(key)

        self._entries[key] = CacheEntry(value=result, expires_at=self._clock() + ttl)
        self._schedule_expiry(key, ttl)
        CACHE_ENTRIES.set(len(self._entries))
        return True

    def _schedule_expiry(self, key: str, ttl: float) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # outside a loop the deadline check in get() still applies
            return
        self._timers[key] = loop.call_later(ttl, self._evict, key)

    def _evict(self, key: str) -> None:
        self._entries.pop(key, None)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        CACHE_ENTRIES.set(len(self._entries))

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()
        CACHE_ENTRIES.set(0)
