# scripts/check_browser.py
"""Launch the real browser through the supervisor and scrape one artist."""

import asyncio
import sys
from pathlib import Path

# ensure repo root is on sys.path
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from core.config import get_settings
from models.scrape import ScrapeKind
from services.browser.backend import PlaywrightBackend
from services.browser.supervisor import BrowserSupervisor
from services.scraper.scraper import SpotifyScraper

ARTIST_ID = sys.argv[1] if len(sys.argv) > 1 else "4iHNK0tOyZPYnBU7nGAgpQ"


async def main() -> None:
    settings = get_settings()
    supervisor = BrowserSupervisor(PlaywrightBackend())

    try:
        if not await supervisor.start():
            print("❌ Browser failed to launch")
            return
        print("✅ Probe:", await supervisor.probe())

        scraper = SpotifyScraper(supervisor, base_url=settings.TARGET_BASE_URL)
        result = await scraper.scrape(ScrapeKind.ARTIST_LISTENERS, ARTIST_ID)
        print("✅ Monthly listeners:", result.value)
    finally:
        await supervisor.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
