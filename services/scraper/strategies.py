# services/scraper/strategies.py
"""
Extraction strategies and the combinators that pick a winner.

A strategy is an independent way of locating the target value on a loaded
page.  It returns the element text, ``None`` when its wait timed out (the
value is simply not there), and raises for anything else, so that a dead
browser is never mistaken for missing data.
"""

import asyncio
import re
from typing import Awaitable, Callable, List, Optional, Sequence

from bs4 import BeautifulSoup
from loguru import logger
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.exceptions import ExtractionNotFound, is_browser_fault, sanitize_message
from services.scraper.config_loader import (
    SelectorStrategyConfig,
    SourceStrategyConfig,
    StrategyConfig,
    TextStrategyConfig,
)

Attempt = Callable[[], Awaitable[Optional[str]]]

SOURCE_POLL_INTERVAL = 0.5


class ExtractionStrategy:
    name = "strategy"

    async def extract(self, page, timeout_ms: int) -> Optional[str]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class SelectorStrategy(ExtractionStrategy):
    def __init__(self, selector: str, name: Optional[str] = None):
        self.selector = selector
        self.name = name or selector

    async def extract(self, page, timeout_ms: int) -> Optional[str]:
        try:
            element = await page.wait_for_selector(
                self.selector, timeout=timeout_ms, state="attached"
            )
        except PlaywrightTimeoutError:
            return None
        if element is None:
            return None
        text = (await element.inner_text()).strip()
        return text or None


class TextStrategy(SelectorStrategy):
    """
    Innermost element of a given tag whose text contains a phrase
    (case-insensitive).  ``:has-text`` also matches every ancestor of the
    text, and those come first in document order, so ancestors that hold a
    matching descendant of the same tag are excluded.
    """

    def __init__(self, tag: str, contains: str, name: Optional[str] = None):
        self.tag = tag
        self.contains = contains
        safe = contains.replace("\\", "\\\\").replace("'", "\\'")
        matching = f"{tag}:has-text('{safe}')"
        super().__init__(f"{matching}:not(:has({matching}))", name=name)


class SourceStrategy(ExtractionStrategy):
    """Poll the rendered markup and regex-match its visible text."""

    def __init__(self, pattern: str, name: Optional[str] = None):
        self.pattern = re.compile(pattern, re.IGNORECASE)
        self.name = name or pattern

    def _match(self, html: str) -> Optional[str]:
        text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
        found = self.pattern.search(text)
        if found is None:
            return None
        value = found.group(1) if found.groups() else found.group(0)
        return value.strip() or None

    async def extract(self, page, timeout_ms: int) -> Optional[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_ms / 1000
        while True:
            value = self._match(await page.content())
            if value is not None:
                return value
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(SOURCE_POLL_INTERVAL, remaining))


def build_strategy(config: StrategyConfig) -> ExtractionStrategy:
    if isinstance(config, SelectorStrategyConfig):
        return SelectorStrategy(config.css, name=config.name)
    if isinstance(config, TextStrategyConfig):
        return TextStrategy(config.tag, config.contains, name=config.name)
    if isinstance(config, SourceStrategyConfig):
        return SourceStrategy(config.pattern, name=config.name)
    raise TypeError(f"Unknown strategy config: {config!r}")


# ----------------------------------------------------------------------
# Combinators
# ----------------------------------------------------------------------
def _consume_result(task: asyncio.Task) -> None:
    # Losers keep running until their own timeout; fetch their outcome so
    # asyncio does not warn about never-retrieved exceptions.
    if not task.cancelled():
        task.exception()


def _give_up(errors: List[BaseException]) -> None:
    for error in errors:
        if is_browser_fault(error):
            raise error
    if errors:
        logger.debug(f"Strategies failed: {sanitize_message(errors[0])}")
    raise ExtractionNotFound()


async def first_successful(attempts: Sequence[Attempt]) -> str:
    """
    Run every attempt concurrently and return the first non-empty value.

    Losing attempts are not cancelled, only ignored.  If no attempt
    produces a value, a browser fault among the errors is re-raised;
    otherwise ``ExtractionNotFound`` is raised.
    """
    tasks = [asyncio.ensure_future(attempt()) for attempt in attempts]
    for task in tasks:
        task.add_done_callback(_consume_result)

    errors: List[BaseException] = []
    for next_done in asyncio.as_completed(tasks):
        try:
            value = await next_done
        except Exception as exc:  # pylint: disable=broad-except
            errors.append(exc)
            continue
        if value:
            return value
    _give_up(errors)


async def first_in_sequence(attempts: Sequence[Attempt]) -> str:
    """Same contract as ``first_successful`` but one attempt at a time."""
    errors: List[BaseException] = []
    for attempt in attempts:
        try:
            value = await attempt()
        except Exception as exc:  # pylint: disable=broad-except
            errors.append(exc)
            continue
        if value:
            return value
    _give_up(errors)
