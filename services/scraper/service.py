# services/scraper/service.py
"""
Request-facing orchestration: validate → cache → queue → cache.

Cache hits never touch the task queue.  Concurrent misses for the same key
share one queued scrape instead of each taking a concurrency slot.
"""

import asyncio
import time
from functools import partial
from typing import Any, Dict, Optional, Tuple

from loguru import logger

from core.config import Settings
from models.scrape import ScrapeKind, ScrapeResult, utcnow
from services.browser.backend import BrowsingBackend, PlaywrightBackend
from services.browser.supervisor import BrowserSupervisor
from services.cache.cache_service import CacheService
from services.scraper.scraper import SpotifyScraper, validate_identifier
from services.scraper.task_queue import TaskQueue


class ScrapeService:
    def __init__(
        self,
        scraper: SpotifyScraper,
        queue: TaskQueue,
        cache: CacheService,
        supervisor: BrowserSupervisor,
    ):
        self.scraper = scraper
        self.queue = queue
        self.cache = cache
        self.supervisor = supervisor
        self.started_at = time.monotonic()
        self._inflight: Dict[str, asyncio.Future] = {}

    async def fetch(self, kind: ScrapeKind, subject_id: str) -> Tuple[ScrapeResult, bool]:
        """Return ``(result, served_from_cache)``."""
        kind = ScrapeKind(kind)
        validate_identifier(subject_id)

        key = self.cache.make_key(kind, subject_id)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {key}")
            return cached, True

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, kind, subject_id))
            self._inflight[key] = pending
            pending.add_done_callback(partial(self._forget, key))
        # shield: one impatient caller must not cancel the shared scrape
        return await asyncio.shield(pending), False

    def _forget(self, key: str, future: asyncio.Future) -> None:
        self._inflight.pop(key, None)
        if not future.cancelled():
            future.exception()

    async def _load(self, key: str, kind: ScrapeKind, subject_id: str) -> ScrapeResult:
        result: ScrapeResult = await self.queue.submit(
            kind, subject_id, lambda: self.scraper.scrape(kind, subject_id)
        )
        self.cache.set(key, result)
        return result

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "serverUptime": round(time.monotonic() - self.started_at, 3),
            "browserStatus": "running" if self.supervisor.is_running else "not running",
            "browserUptime": self._rounded(self.supervisor.browser_uptime()),
            "queueLength": self.queue.length,
            "activePages": self.supervisor.active_contexts,
            "timestamp": utcnow(),
        }

    @staticmethod
    def _rounded(value):
        return None if value is None else round(value, 3)

    async def close(self) -> None:
        for pending in list(self._inflight.values()):
            pending.cancel()
        await self.queue.stop()
        await self.supervisor.shutdown()
        self.cache.clear()


def build_service(settings: Settings, backend: Optional[BrowsingBackend] = None) -> ScrapeService:
    """Wire the components from settings; ``backend`` defaults to Playwright."""
    supervisor = BrowserSupervisor(
        backend or PlaywrightBackend(),
        max_lifetime=settings.BROWSER_MAX_LIFETIME,
        health_interval=settings.HEALTH_CHECK_INTERVAL,
        probe_timeout=settings.HEALTH_PROBE_TIMEOUT,
    )
    scraper = SpotifyScraper(
        supervisor,
        base_url=settings.TARGET_BASE_URL,
        navigation_timeout=settings.NAVIGATION_TIMEOUT,
        selector_timeout=settings.SELECTOR_TIMEOUT,
        user_agent=settings.DEFAULT_USER_AGENT,
        viewport={"width": settings.VIEWPORT_WIDTH, "height": settings.VIEWPORT_HEIGHT},
        block_trackers=settings.BLOCK_TRACKERS,
        targets_path=settings.TARGETS_PATH,
    )
    queue = TaskQueue(
        supervisor,
        max_concurrent=settings.MAX_CONCURRENT_PAGES,
        max_size=settings.QUEUE_MAX_SIZE,
        max_attempts=settings.TASK_ATTEMPTS,
    )
    cache = CacheService(ttl=settings.CACHE_TTL, failed_ttl=settings.CACHE_FAILED_TTL)
    return ScrapeService(scraper, queue, cache, supervisor)
