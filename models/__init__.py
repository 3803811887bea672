from .scrape import (
    NOT_AVAILABLE,
    ErrorResponse,
    HealthResponse,
    MonthlyListenersResponse,
    PlayCountResponse,
    ScrapeKind,
    ScrapeResult,
)

__all__ = [
    'NOT_AVAILABLE',
    'ErrorResponse',
    'HealthResponse',
    'MonthlyListenersResponse',
    'PlayCountResponse',
    'ScrapeKind',
    'ScrapeResult',
]
