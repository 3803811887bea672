# services/browser/backend.py
"""
Browsing backends.

The supervisor only needs two things from a backend: launch a browser with a
given argument list, and tear the driver down at exit.  The returned browser
is expected to expose the subset of Playwright's async API the core uses:

* browser: ``new_context(**options)``, ``is_connected()``, ``close()``
* context: ``new_page()``, ``close()``
* page:    ``route()``, ``goto()``, ``wait_for_selector()``, ``content()``,
  ``close()``
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from loguru import logger
from playwright.async_api import Browser, Playwright, async_playwright


class BrowsingBackend(ABC):
    """Launches browser processes for the supervisor."""

    @abstractmethod
    async def launch(self, args: List[str]) -> Any:
        """Start a new headless browser process and return it."""

    async def shutdown(self) -> None:
        """Release driver-level resources (nothing by default)."""


class PlaywrightBackend(BrowsingBackend):
    """Headless Chromium through Playwright; the driver is started lazily."""

    def __init__(self, headless: bool = True):
        self._headless = headless
        self._playwright: Optional[Playwright] = None

    async def launch(self, args: List[str]) -> Browser:
        if self._playwright is None:
            logger.info("Starting Playwright driver")
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self._headless, args=args)

    async def shutdown(self) -> None:
        if self._playwright is None:
            return
        try:
            await self._playwright.stop()
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning(f"Error stopping Playwright driver: {exc}")
        finally:
            self._playwright = None
