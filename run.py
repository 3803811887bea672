"""
Command line entry point.

    python run.py serve                      # start the HTTP API
    python run.py scrape artist-listeners 4iHNK0tOyZPYnBU7nGAgpQ
    python run.py scrape track-playcount 1301WleyT98MSxVHPZCA6M
"""

import argparse
import asyncio
import json
import sys

from loguru import logger

from core.config import get_settings
from core.exceptions import ScraperException
from core.logging import setup_logging
from models.scrape import ScrapeKind
from services.scraper.service import build_service


async def scrape_once(kind: ScrapeKind, subject_id: str) -> int:
    """Run one scrape outside the API, through the same queue and cache."""
    service = build_service(get_settings())
    try:
        result, _ = await service.fetch(kind, subject_id)
    except ScraperException as exc:
        logger.error(f"Scrape failed: {exc.code} {exc.message}")
        print(json.dumps(exc.to_dict()))
        return 1
    finally:
        await service.close()

    print(json.dumps(result.model_dump(mode="json")))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Listener count scraping gateway")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="run the HTTP API")

    scrape = sub.add_parser("scrape", help="scrape a single subject and print JSON")
    scrape.add_argument("kind", choices=[k.value for k in ScrapeKind])
    scrape.add_argument("subject_id")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "main:app",
            host=settings.HOST,
            port=settings.PORT,
            workers=settings.WORKERS,
            log_level=settings.LOG_LEVEL.lower(),
        )
        return 0

    return asyncio.run(scrape_once(ScrapeKind(args.kind), args.subject_id))


if __name__ == "__main__":
    sys.exit(main())
