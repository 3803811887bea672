import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from loguru import logger

from core.config import Settings, get_settings
from core.exceptions import ScraperException, sanitize_message
from core.logging import setup_logging
from api.v1.endpoints import health, scraper
from services.browser.backend import BrowsingBackend
from services.scraper.service import build_service


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[BrowsingBackend] = None,
) -> FastAPI:
    """Build the API; ``backend`` replaces Playwright (tests use a fake)."""
    settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Lifecycle: one browser, one worker pool, one cache per process
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        logger.info("Initializing application...")

        service = build_service(settings, backend=backend)
        if not await service.supervisor.start():
            # first request retries the launch
            logger.warning("Browser not available at startup")
        service.supervisor.start_monitor()
        service.queue.start()
        app.state.service = service

        try:
            yield
        finally:
            logger.info("Shutting down application...")
            await service.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Monthly listeners and play counts scraped with a headless browser",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_HOSTS,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS,
    )

    app.include_router(scraper.router, tags=["scraper"])
    app.include_router(health.router, tags=["health"])

    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(ScraperException)
    async def scraper_exception_handler(request: Request, exc: ScraperException):
        logger.warning(f"{request.url.path} failed: {exc.code} {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {sanitize_message(exc)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected error occurred",
            },
        )

    # Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root():
        return {
            "name": settings.PROJECT_NAME,
            "version": "1.0.0",
            "docs_url": "/docs",
            "health_check": "/health",
            "endpoints": [
                "/scrape/monthly-listeners/{artistId}",
                "/scrape/playcount/{trackId}",
            ],
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL.lower(),
    )
