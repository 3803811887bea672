# --------------------------------------------------------------
# scraper.py – page-level scrape of one subject
# --------------------------------------------------------------

import re
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from prometheus_client import Counter, Histogram

from core.exceptions import (
    ExtractionNotFound,
    InvalidIdentifier,
    NavigationFailure,
    sanitize_message,
)
from models.scrape import NOT_AVAILABLE, ScrapeKind, ScrapeResult
from services.browser.interception import ShouldBlock, install_interception, make_predicate
from services.browser.supervisor import BrowserSupervisor
from services.scraper.config_loader import TargetConfig, get_target
from services.scraper.strategies import (
    ExtractionStrategy,
    build_strategy,
    first_in_sequence,
    first_successful,
)

IDENTIFIER_PATTERN = re.compile(r"[A-Za-z0-9]{22}")

SCRAPE_REQUESTS = Counter('scraper_requests_total', 'Total number of scrapes run', ['kind'])
SCRAPE_ERRORS = Counter('scraper_errors_total', 'Total number of failed scrapes', ['kind'])
SCRAPE_NOT_FOUND = Counter('scraper_not_found_total', 'Scrapes that yielded N/A', ['kind'])
SCRAPE_DURATION = Histogram('scraper_duration_seconds', 'Time spent scraping a page', ['kind'])
PAGE_LOAD_DURATION = Histogram('page_load_duration_seconds', 'Time taken for page loads')


def validate_identifier(subject_id: str) -> str:
    """Accept exactly 22 ASCII letters/digits; anything else is rejected."""
    if not isinstance(subject_id, str) or not IDENTIFIER_PATTERN.fullmatch(subject_id):
        raise InvalidIdentifier()
    return subject_id


def normalize_value(mode: str, text: str) -> str:
    """
    ``digits`` keeps only the digits ("1,234,567 monthly listeners" ->
    "1234567"); ``passthrough`` keeps the site's own, possibly abbreviated,
    rendering.
    """
    if mode == "digits":
        digits = re.sub(r"\D", "", text)
        return digits or NOT_AVAILABLE
    cleaned = " ".join(text.split())
    return cleaned or NOT_AVAILABLE


class SpotifyScraper:
    """
    Runs one scrape against the supervisor's current browser: isolated
    context, blocked heavy resources, bounded navigation, strategy fallback
    and normalization.
    """

    def __init__(
        self,
        supervisor: BrowserSupervisor,
        base_url: str = "https://open.spotify.com",
        navigation_timeout: int = 10_000,
        selector_timeout: int = 15_000,
        user_agent: Optional[str] = None,
        viewport: Optional[Dict[str, int]] = None,
        block_trackers: bool = True,
        targets_path: Optional[Path] = None,
    ):
        self._supervisor = supervisor
        self.base_url = base_url
        self.navigation_timeout = navigation_timeout
        self.selector_timeout = selector_timeout
        self._targets_path = targets_path
        self._should_block: ShouldBlock = make_predicate(block_trackers)

        self._context_options: Dict[str, object] = {
            "viewport": viewport or {"width": 1280, "height": 720},
            "java_script_enabled": True,
        }
        if user_agent:
            self._context_options["user_agent"] = user_agent

        self._strategies: Dict[ScrapeKind, List[ExtractionStrategy]] = {}

    # ------------------------------------------------------------------
    # Target catalogue
    # ------------------------------------------------------------------
    def _target(self, kind: ScrapeKind) -> TargetConfig:
        return get_target(kind, self._targets_path)

    def _strategies_for(self, kind: ScrapeKind, target: TargetConfig) -> List[ExtractionStrategy]:
        if kind not in self._strategies:
            self._strategies[kind] = [build_strategy(cfg) for cfg in target.strategies]
        return self._strategies[kind]

    def url_for(self, kind: ScrapeKind, subject_id: str) -> str:
        return self._target(kind).url_for(self.base_url, subject_id)

    # ------------------------------------------------------------------
    # Page steps
    # ------------------------------------------------------------------
    async def _navigate(self, page, url: str) -> None:
        logger.info(f"Navigating to {url}")
        try:
            with PAGE_LOAD_DURATION.time():
                await page.goto(
                    url, timeout=self.navigation_timeout, wait_until="domcontentloaded"
                )
        except Exception as exc:
            raise NavigationFailure(f"Could not load {url}") from exc

    async def _extract(self, page, target: TargetConfig, strategies: List[ExtractionStrategy]) -> str:
        attempts = [partial(s.extract, page, self.selector_timeout) for s in strategies]
        if target.race:
            return await first_successful(attempts)
        return await first_in_sequence(attempts)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------
    async def scrape(self, kind: ScrapeKind, subject_id: str) -> ScrapeResult:
        """
        Scrape ``subject_id``'s page for ``kind``.  Missing data gives an
        ``"N/A"`` result; an unreachable page raises ``NavigationFailure``.
        """
        kind = ScrapeKind(kind)
        validate_identifier(subject_id)
        target = self._target(kind)
        strategies = self._strategies_for(kind, target)
        url = target.url_for(self.base_url, subject_id)

        SCRAPE_REQUESTS.labels(kind=kind.value).inc()
        try:
            with SCRAPE_DURATION.labels(kind=kind.value).time():
                async with self._supervisor.isolated_context(**self._context_options) as context:
                    page = await context.new_page()
                    try:
                        await install_interception(page, self._should_block)
                        await self._navigate(page, url)
                        raw = await self._extract(page, target, strategies)
                    finally:
                        try:
                            await page.close()
                        except Exception as exc:  # pylint: disable=broad-except
                            logger.debug(f"Page close failed: {sanitize_message(exc)}")
        except ExtractionNotFound:
            SCRAPE_NOT_FOUND.labels(kind=kind.value).inc()
            logger.info(f"No value found for {kind.value}:{subject_id}")
            return ScrapeResult(kind=kind, subject_id=subject_id, value=NOT_AVAILABLE)
        except Exception as exc:
            SCRAPE_ERRORS.labels(kind=kind.value).inc()
            cause = exc.__cause__ or exc
            logger.error(f"Scrape failure for {kind.value}:{subject_id}: {sanitize_message(cause)}")
            raise

        value = normalize_value(target.normalize, raw)
        logger.info(f"Scraped {kind.value}:{subject_id} -> {value}")
        return ScrapeResult(kind=kind, subject_id=subject_id, value=value)
