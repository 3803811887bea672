# models/scrape.py
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

NOT_AVAILABLE = "N/A"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScrapeKind(str, Enum):
    ARTIST_LISTENERS = "artist-listeners"
    TRACK_PLAYCOUNT = "track-playcount"


class ScrapeResult(BaseModel):
    """
    Outcome of one scrape.  Frozen so a cached result can be shared between
    requests without anyone mutating it.
    """

    model_config = ConfigDict(frozen=True)

    kind: ScrapeKind
    subject_id: str
    value: str
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def available(self) -> bool:
        return self.value != NOT_AVAILABLE


# ----------------------------------------------------------------------
# HTTP payloads – field names follow the public JSON contract (camelCase)
# ----------------------------------------------------------------------
class _ResponseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MonthlyListenersResponse(_ResponseModel):
    artist_id: str = Field(alias="artistId")
    monthly_listeners: str = Field(alias="monthlyListeners")
    response_time_ms: float = Field(alias="responseTimeMs")
    timestamp: datetime
    cached: bool = False


class PlayCountResponse(_ResponseModel):
    track_id: str = Field(alias="trackId")
    play_count: str = Field(alias="playCount")
    response_time_ms: float = Field(alias="responseTimeMs")
    timestamp: datetime
    cached: bool = False


class HealthResponse(_ResponseModel):
    status: str
    server_uptime: float = Field(alias="serverUptime")
    browser_status: str = Field(alias="browserStatus")
    browser_uptime: Optional[float] = Field(default=None, alias="browserUptime")
    queue_length: int = Field(alias="queueLength")
    active_pages: int = Field(alias="activePages")
    timestamp: datetime


class ErrorResponse(BaseModel):
    error: str
    message: str
