# api/v1/endpoints/health.py
from fastapi import APIRouter, Request

from models.scrape import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Supervisor and queue state; never touches the browser."""
    return HealthResponse(**request.app.state.service.health())
