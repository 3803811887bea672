# services/browser/interception.py
"""
Request interception expressed as a pure predicate.  Pages get a route
handler built from the predicate instead of sharing a mutable route table.
"""

from typing import Callable, FrozenSet
from urllib.parse import urlsplit

from loguru import logger

BLOCKED_RESOURCE_TYPES: FrozenSet[str] = frozenset({"image", "font", "media"})

TRACKER_HOSTS: FrozenSet[str] = frozenset({
    "google-analytics.com",
    "googletagmanager.com",
    "doubleclick.net",
    "googlesyndication.com",
    "adservice.google.com",
    "facebook.net",
    "connect.facebook.net",
    "hotjar.com",
    "scorecardresearch.com",
})

ShouldBlock = Callable[[str, str], bool]


def _is_tracker(url: str) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    return any(host == t or host.endswith("." + t) for t in TRACKER_HOSTS)


def should_block(resource_type: str, url: str, block_trackers: bool = True) -> bool:
    """Decide whether a request is dead weight for a text-only scrape."""
    if resource_type in BLOCKED_RESOURCE_TYPES:
        return True
    return block_trackers and _is_tracker(url)


def make_predicate(block_trackers: bool = True) -> ShouldBlock:
    def predicate(resource_type: str, url: str) -> bool:
        return should_block(resource_type, url, block_trackers=block_trackers)

    return predicate


def make_route_handler(predicate: ShouldBlock):
    """Adapt a predicate to Playwright's ``page.route`` handler signature."""

    async def handler(route) -> None:
        request = route.request
        if predicate(request.resource_type, request.url):
            await route.abort()
        else:
            await route.continue_()

    return handler


async def install_interception(page, predicate: ShouldBlock) -> None:
    await page.route("**/*", make_route_handler(predicate))
    logger.debug("Request interception installed")
