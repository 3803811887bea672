# core/config.py
"""
Runtime settings for the gateway, read from the environment (and an optional
``.env`` file) through Pydantic Settings.

Usage::

    from core.config import get_settings

    settings = get_settings()
    settings.MAX_CONCURRENT_PAGES
"""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Every knob the service exposes.  Durations are seconds unless noted."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # HTTP server
    # ------------------------------------------------------------------
    PROJECT_NAME: str = "Listener Count Gateway"
    HOST: str = "0.0.0.0"
    PORT: int = 10000
    DEBUG: bool = False
    WORKERS: int = 1
    LOG_LEVEL: str = "INFO"
    ALLOWED_HOSTS: List[str] = Field(default_factory=lambda: ["*"])

    # ------------------------------------------------------------------
    # Admission control
    # ------------------------------------------------------------------
    MAX_CONCURRENT_PAGES: int = Field(default=3, ge=1)
    QUEUE_MAX_SIZE: int = Field(default=100, ge=1)
    # total attempts for a task that hit a browser fault (1 = no retry)
    TASK_ATTEMPTS: int = Field(default=2, ge=1)

    # ------------------------------------------------------------------
    # Browser supervision
    # ------------------------------------------------------------------
    BROWSER_MAX_LIFETIME: float = Field(default=30 * 60, gt=0)
    HEALTH_CHECK_INTERVAL: float = Field(default=60, gt=0)
    HEALTH_PROBE_TIMEOUT: float = Field(default=10, gt=0)

    # ------------------------------------------------------------------
    # Result cache
    # ------------------------------------------------------------------
    CACHE_TTL: float = Field(default=60 * 60, gt=0)
    # TTL for "N/A" results; 0 means they are not cached at all
    CACHE_FAILED_TTL: float = Field(default=60 * 60, ge=0)

    # ------------------------------------------------------------------
    # Scraping (timeouts in milliseconds, as Playwright expects)
    # ------------------------------------------------------------------
    TARGET_BASE_URL: str = "https://open.spotify.com"
    NAVIGATION_TIMEOUT: int = 10_000
    SELECTOR_TIMEOUT: int = 15_000
    DEFAULT_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
    VIEWPORT_WIDTH: int = 1280
    VIEWPORT_HEIGHT: int = 720
    BLOCK_TRACKERS: bool = True
    TARGETS_PATH: Path = PROJECT_ROOT / "configs" / "targets.yaml"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


settings = get_settings()
