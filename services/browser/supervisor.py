# services/browser/supervisor.py
"""
Owner of the single shared browser process.

Everything else borrows short-lived isolated contexts through
``BrowserSupervisor.isolated_context()``, which re-reads the current handle
at the moment the context is created.  Nobody else keeps a reference to the
browser across an ``await``, so a restart never leaves a caller holding a
closed browser for longer than one call.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional

from loguru import logger
from prometheus_client import Counter, Gauge, Histogram

from core.exceptions import BrowserUnavailable, sanitize_message
from services.browser.backend import BrowsingBackend

# Headless, sandbox-free, low-memory Chromium flags
LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--no-zygote",
    "--no-first-run",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-default-apps",
    "--disable-sync",
    "--metrics-recording-only",
]

BROWSER_LAUNCH_TOTAL = Counter('browser_launch_total', 'Total number of browser launches')
BROWSER_FAILURES = Counter('browser_failures_total', 'Total number of failed browser launches')
BROWSER_HEALTH_FAILURES = Counter('browser_health_failures_total', 'Health probes that failed')
BROWSER_RUNNING = Gauge('browser_running', '1 while a browser handle exists')
BROWSER_CONTEXTS_ACTIVE = Gauge('browser_contexts_active', 'Isolated contexts currently open')
BROWSER_HEALTH_CHECK_DURATION = Histogram(
    'browser_health_check_seconds',
    'Time spent on browser health checks',
)


@dataclass
class BrowserHandle:
    """One running browser process.  Liveness is probed, never stored."""

    browser: Any
    created_at: float
    launched_at: float = field(default_factory=time.time)

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)


class BrowserSupervisor:
    """Launches, probes, recycles and replaces the shared browser."""

    def __init__(
        self,
        backend: BrowsingBackend,
        max_lifetime: float = 1800.0,
        health_interval: float = 60.0,
        probe_timeout: float = 10.0,
        launch_args: Optional[List[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backend = backend
        self.max_lifetime = max_lifetime
        self.health_interval = health_interval
        self.probe_timeout = probe_timeout
        self._launch_args = list(launch_args or LAUNCH_ARGS)
        self._clock = clock

        self._handle: Optional[BrowserHandle] = None
        self._lock = asyncio.Lock()          # serializes start()
        self._monitor: Optional[asyncio.Task] = None
        self.active_contexts = 0
        self.restart_count = 0

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def handle(self) -> Optional[BrowserHandle]:
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    def browser_uptime(self) -> Optional[float]:
        if self._handle is None:
            return None
        return self._handle.age(self._clock())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self, stale: Optional[BrowserHandle] = None) -> bool:
        """
        Replace the current browser with a freshly launched one.

        Passing ``stale`` turns the call into "restart if this handle is
        still current", so several tasks failing on the same dead browser
        cause a single relaunch.  Never raises; returns whether a browser
        is available afterwards.
        """
        async with self._lock:
            if stale is not None and self._handle is not stale:
                logger.debug("Browser already replaced, skipping restart")
                return self._handle is not None
            return await self._relaunch()

    async def _relaunch(self) -> bool:
        # caller holds self._lock
        if self._handle is not None:
            await self._close_handle(self._handle)
            self._handle = None
            BROWSER_RUNNING.set(0)
            self.restart_count += 1

        logger.info("Launching headless browser")
        try:
            browser = await self._backend.launch(self._launch_args)
        except Exception as exc:  # pylint: disable=broad-except
            BROWSER_FAILURES.inc()
            logger.error(f"Browser launch failed: {sanitize_message(exc)}")
            return False

        self._handle = BrowserHandle(browser=browser, created_at=self._clock())
        BROWSER_LAUNCH_TOTAL.inc()
        BROWSER_RUNNING.set(1)
        logger.info("Headless browser ready")
        return True

    async def ensure_started(self) -> BrowserHandle:
        """
        Return the live handle, launching once if there is none.  Raises
        ``BrowserUnavailable`` when that launch fails too.
        """
        handle = self._handle
        if handle is not None:
            return handle
        async with self._lock:
            if self._handle is None:
                await self._relaunch()
            handle = self._handle
        if handle is None:
            raise BrowserUnavailable()
        return handle

    async def _close_handle(self, handle: BrowserHandle) -> None:
        try:
            await handle.browser.close()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(f"Error closing browser: {sanitize_message(exc)}")

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------
    async def probe(self) -> bool:
        """
        Cheap liveness probe: open and immediately close a context.

        The probe context is not admitted through the task queue and is not
        counted in ``active_contexts``, so while every worker is busy the
        browser briefly holds one context more than ``MAX_CONCURRENT_PAGES``.
        """
        handle = self._handle
        if handle is None:
            return False
        try:
            context = await asyncio.wait_for(
                handle.browser.new_context(), timeout=self.probe_timeout
            )
            await asyncio.wait_for(context.close(), timeout=self.probe_timeout)
            return True
        except Exception as exc:  # pylint: disable=broad-except
            BROWSER_HEALTH_FAILURES.inc()
            logger.warning(f"Browser health probe failed: {sanitize_message(exc)}")
            return False

    async def health_check(self) -> bool:
        """Recycle an expired browser, replace a dead one.  Returns liveness."""
        with BROWSER_HEALTH_CHECK_DURATION.time():
            handle = self._handle
            if handle is None:
                logger.info("No browser running, starting one")
                return await self.start()

            if handle.age(self._clock()) > self.max_lifetime:
                logger.info("Browser exceeded its maximum lifetime, recycling")
                return await self.start()

            if await self.probe():
                return True

            logger.warning("Browser unresponsive, restarting")
            return await self.start(stale=handle)

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_interval)
            try:
                await self.health_check()
            except Exception as exc:  # pylint: disable=broad-except
                logger.error(f"Health check crashed: {sanitize_message(exc)}")

    def start_monitor(self) -> None:
        if self._monitor is None or self._monitor.done():
            self._monitor = asyncio.create_task(self._monitor_loop())
            logger.debug(f"Browser health monitor every {self.health_interval}s")

    async def stop_monitor(self) -> None:
        if self._monitor is None:
            return
        self._monitor.cancel()
        try:
            await self._monitor
        except asyncio.CancelledError:
            pass
        self._monitor = None

    # ------------------------------------------------------------------
    # Borrowing
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def isolated_context(self, **options) -> AsyncIterator[Any]:
        """
        Yield a fresh browsing context (own cookies/storage) from whatever
        browser is current right now; it is closed exactly once on exit.
        """
        handle = self._handle
        if handle is None:
            raise BrowserUnavailable()

        context = await handle.browser.new_context(**options)
        self.active_contexts += 1
        BROWSER_CONTEXTS_ACTIVE.inc()
        try:
            yield context
        finally:
            self.active_contexts -= 1
            BROWSER_CONTEXTS_ACTIVE.dec()
            try:
                await context.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.debug(f"Context close failed: {sanitize_message(exc)}")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    async def shutdown(self) -> None:
        await self.stop_monitor()
        async with self._lock:
            if self._handle is not None:
                await self._close_handle(self._handle)
                self._handle = None
                BROWSER_RUNNING.set(0)
        await self._backend.shutdown()
        logger.info("Browser supervisor shut down")
