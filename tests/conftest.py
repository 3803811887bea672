# tests/conftest.py
"""
In-memory stand-in for the Playwright browser.

``FakeSite`` describes what each URL renders (selector → text, raw HTML);
``FakeBackend`` launches ``FakeBrowser`` objects that serve it and keep
enough bookkeeping (open contexts, close counts) for the tests to assert on
resource handling.
"""

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from core.config import Settings  # noqa: E402
from services.browser.supervisor import BrowserSupervisor  # noqa: E402
from services.scraper.scraper import SpotifyScraper  # noqa: E402

BASE_URL = "https://open.spotify.test"
ARTIST_ID = "4iHNK0tOyZPYnBU7nGAgpQ"
TRACK_ID = "1301WleyT98MSxVHPZCA6M"
LISTENERS_SELECTOR = (
    "span:has-text('monthly listeners')"
    ":not(:has(span:has-text('monthly listeners')))"
)
CLOSED_MESSAGE = "Target page, context or browser has been closed"


class FakeSite:
    def __init__(self):
        self.pages: Dict[str, dict] = {}
        self.visits: List[str] = []
        self.nav_delay = 0.0
        self.unreachable = False

    def add_page(self, path: str, elements: Optional[Dict[str, str]] = None, html: str = "") -> None:
        self.pages[BASE_URL + path] = {"elements": elements or {}, "html": html}


class FakeElement:
    def __init__(self, text: str):
        self._text = text

    async def inner_text(self) -> str:
        return self._text


class FakePage:
    def __init__(self, context: "FakeContext"):
        self.context = context
        self.browser = context.browser
        self.url: Optional[str] = None
        self.routes = []
        self.close_count = 0

    def _check_alive(self) -> None:
        if self.browser.closed or self.close_count:
            raise PlaywrightError(CLOSED_MESSAGE)

    async def route(self, pattern, handler) -> None:
        self.routes.append((pattern, handler))

    async def goto(self, url: str, timeout: int = 30_000, wait_until: str = "load"):
        self._check_alive()
        site = self.browser.site
        site.visits.append(url)
        if site.nav_delay:
            await asyncio.sleep(site.nav_delay)
        self._check_alive()
        if site.unreachable or url not in site.pages:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.\nnavigating to {url}")
        self.url = url
        return None

    async def wait_for_selector(self, selector: str, timeout: int = 30_000, state: str = "visible"):
        self._check_alive()
        elements = self.browser.site.pages.get(self.url, {}).get("elements", {})
        if selector in elements:
            return FakeElement(elements[selector])
        await asyncio.sleep(min(timeout / 1000, 0.05))
        self._check_alive()
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def content(self) -> str:
        self._check_alive()
        return self.browser.site.pages.get(self.url, {}).get("html", "<html></html>")

    async def close(self) -> None:
        self.close_count += 1


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: dict):
        self.browser = browser
        self.options = options
        self.pages: List[FakePage] = []
        self.close_count = 0

    async def new_page(self) -> FakePage:
        if self.browser.closed:
            raise PlaywrightError(CLOSED_MESSAGE)
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.close_count += 1
        self.browser.open_contexts -= 1


class FakeBrowser:
    def __init__(self, site: FakeSite, args: List[str]):
        self.site = site
        self.args = args
        self.closed = False
        self.close_count = 0
        self.contexts: List[FakeContext] = []
        self.open_contexts = 0
        self.max_open_contexts = 0
        self.hang_probe = False

    def is_connected(self) -> bool:
        return not self.closed

    async def new_context(self, **options) -> FakeContext:
        if self.hang_probe:
            await asyncio.sleep(3600)
        if self.closed:
            raise PlaywrightError("Browser has been closed")
        context = FakeContext(self, options)
        self.contexts.append(context)
        self.open_contexts += 1
        self.max_open_contexts = max(self.max_open_contexts, self.open_contexts)
        return context

    def crash(self) -> None:
        """Die without telling anyone, like a killed Chromium."""
        self.closed = True

    async def close(self) -> None:
        self.close_count += 1
        self.closed = True


class FakeBackend:
    def __init__(self, site: Optional[FakeSite] = None, fail_launches: int = 0):
        self.site = site or FakeSite()
        self.fail_launches = fail_launches
        self.browsers: List[FakeBrowser] = []
        self.shutdown_called = False

    async def launch(self, args: List[str]) -> FakeBrowser:
        if self.fail_launches:
            self.fail_launches -= 1
            raise RuntimeError("Failed to launch chromium\nexit code 127")
        browser = FakeBrowser(self.site, args)
        self.browsers.append(browser)
        return browser

    async def shutdown(self) -> None:
        self.shutdown_called = True

    @property
    def contexts(self) -> List[FakeContext]:
        return [ctx for browser in self.browsers for ctx in browser.contexts]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ----------------------------------------------------------------------
# Fixtures
# ----------------------------------------------------------------------
@pytest.fixture
def site() -> FakeSite:
    site = FakeSite()
    site.add_page(
        f"/artist/{ARTIST_ID}",
        elements={LISTENERS_SELECTOR: "1,234,567 monthly listeners"},
        html="<html><body><span>1,234,567 monthly listeners</span></body></html>",
    )
    site.add_page(f"/track/{TRACK_ID}", html="<html><body><h1>Some track</h1></body></html>")
    return site


@pytest.fixture
def backend(site) -> FakeBackend:
    return FakeBackend(site)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def supervisor(backend) -> BrowserSupervisor:
    return BrowserSupervisor(backend, max_lifetime=600, health_interval=3600, probe_timeout=0.2)


@pytest.fixture
def scraper(supervisor) -> SpotifyScraper:
    return SpotifyScraper(
        supervisor,
        base_url=BASE_URL,
        navigation_timeout=200,
        selector_timeout=50,
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        TARGET_BASE_URL=BASE_URL,
        NAVIGATION_TIMEOUT=200,
        SELECTOR_TIMEOUT=50,
        MAX_CONCURRENT_PAGES=2,
        QUEUE_MAX_SIZE=10,
        HEALTH_CHECK_INTERVAL=3600,
        LOG_LEVEL="WARNING",
    )


@pytest_asyncio.fixture
async def started_supervisor(supervisor):
    await supervisor.start()
    yield supervisor
    await supervisor.shutdown()
