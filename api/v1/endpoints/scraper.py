# api/v1/endpoints/scraper.py
import time

from fastapi import APIRouter, Request
from loguru import logger

from models.scrape import (
    ErrorResponse,
    MonthlyListenersResponse,
    PlayCountResponse,
    ScrapeKind,
)
from services.scraper.service import ScrapeService

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _service(request: Request) -> ScrapeService:
    return request.app.state.service


# the /get/... paths are those of the first public version of the service
@router.get(
    "/scrape/monthly-listeners/{artist_id}",
    response_model=MonthlyListenersResponse,
    responses=_ERRORS,
)
@router.get(
    "/get/monthly-listeners/{artist_id}",
    response_model=MonthlyListenersResponse,
    include_in_schema=False,
)
async def monthly_listeners(artist_id: str, request: Request):
    start = time.perf_counter()
    logger.info(f"Monthly listeners requested for {artist_id!r}")
    result, cached = await _service(request).fetch(ScrapeKind.ARTIST_LISTENERS, artist_id)
    return MonthlyListenersResponse(
        artist_id=result.subject_id,
        monthly_listeners=result.value,
        response_time_ms=round((time.perf_counter() - start) * 1000, 2),
        timestamp=result.timestamp,
        cached=cached,
    )


@router.get(
    "/scrape/playcount/{track_id}",
    response_model=PlayCountResponse,
    responses=_ERRORS,
)
@router.get(
    "/get/playcount/{track_id}",
    response_model=PlayCountResponse,
    include_in_schema=False,
)
async def playcount(track_id: str, request: Request):
    start = time.perf_counter()
    logger.info(f"Play count requested for {track_id!r}")
    result, cached = await _service(request).fetch(ScrapeKind.TRACK_PLAYCOUNT, track_id)
    return PlayCountResponse(
        track_id=result.subject_id,
        play_count=result.value,
        response_time_ms=round((time.perf_counter() - start) * 1000, 2),
        timestamp=result.timestamp,
        cached=cached,
    )
