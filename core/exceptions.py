# core/exceptions.py
"""
Error taxonomy shared by the scraping core and the API layer.

Every error that may reach a client derives from ``ScraperException`` and
knows its HTTP status and a message that is safe to return verbatim.
"""

import re
from typing import Any, Dict, Optional

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]+")

# Fragments Playwright/Chromium put in errors raised once the browser,
# a context or a page has gone away underneath us.
_BROWSER_FAULT_MARKERS = (
    "target page, context or browser has been closed",
    "target closed",
    "browser has been closed",
    "browser has disconnected",
    "browser closed",
    "context has been closed",
    "connection closed",
    "websocket error",
    "crashed",
)


def sanitize_message(message: Any, limit: int = 200) -> str:
    """Collapse control characters (newlines, ANSI escapes) and truncate."""
    text = _CONTROL_CHARS.sub(" ", str(message)).strip()
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


class ScraperException(Exception):
    """Base class for errors that are reported to API clients."""

    code = "SCRAPER_ERROR"
    status_code = 500
    default_message = "The scrape could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = sanitize_message(message or self.default_message)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.code, "message": self.message}


class InvalidIdentifier(ScraperException):
    """The subject id does not have the 22-character alphanumeric shape."""

    code = "INVALID_IDENTIFIER"
    status_code = 400
    default_message = "Identifier must be 22 alphanumeric characters"


class BrowserUnavailable(ScraperException):
    """No browser could be launched, even after a fresh start attempt."""

    code = "BROWSER_UNAVAILABLE"
    default_message = "Headless browser is not available"


class NavigationFailure(ScraperException):
    """The subject's page could not be reached within the timeout."""

    code = "NAVIGATION_FAILURE"
    default_message = "Could not load the requested page"


class ExtractionNotFound(ScraperException):
    """
    Page loaded but no strategy located the value.  Never surfaced to
    clients: the scraper turns it into an ``"N/A"`` result.
    """

    code = "EXTRACTION_NOT_FOUND"
    status_code = 404
    default_message = "Value not found on page"


class QueueFull(ScraperException):
    code = "QUEUE_FULL"
    status_code = 503
    default_message = "Too many pending scrapes, retry later"


def is_browser_fault(exc: BaseException) -> bool:
    """
    True when ``exc`` (or anything in its cause/context chain) means the
    browser or one of its contexts is dead.  ``BrowserUnavailable`` is not a
    fault of a running browser and is never retried.
    """
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, BrowserUnavailable):
            return False
        text = str(current).lower()
        if any(marker in text for marker in _BROWSER_FAULT_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False
