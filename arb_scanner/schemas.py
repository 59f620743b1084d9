"""
Pydantic schemas for the arbitrage scanner.

Two groups live here:

* **Wire schemas** for The Odds API v4 ``/sports/{sport}/odds`` response.
  The live provider validates every payload against :class:`OddsApiEvent`
  before anything downstream (or the cache) sees it.  Validated snapshots
  are frozen.
* **API schemas** for the FastAPI adapter: request filters, settings,
  and response envelopes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from arb_scanner.core.sport_config import is_valid_sport_input


# ---------------------------------------------------------------------------
# The Odds API wire format
# ---------------------------------------------------------------------------

class OddsApiOutcome(BaseModel):
    """One priced outcome inside a bookmaker's market."""

    model_config = ConfigDict(frozen=True)

    name: str
    price: float
    point: Optional[float] = None


class OddsApiMarket(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    last_update: Optional[str] = None
    outcomes: tuple[OddsApiOutcome, ...] = ()


class OddsApiBookmaker(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    title: str
    last_update: Optional[str] = None
    markets: tuple[OddsApiMarket, ...] = ()

    def market(self, market_key: str) -> Optional[OddsApiMarket]:
        for market in self.markets:
            if market.key == market_key:
                return market
        return None


class OddsApiEvent(BaseModel):
    """Market snapshot for one event: every bookmaker's markets and prices."""

    model_config = ConfigDict(frozen=True)

    id: str
    sport_key: str
    sport_title: str
    commence_time: str
    home_team: str
    away_team: str
    bookmakers: tuple[OddsApiBookmaker, ...] = ()

    @property
    def match(self) -> str:
        return f"{self.home_team} vs {self.away_team}"

    @property
    def commence_datetime(self) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(self.commence_time.replace("Z", "+00:00"))
        except ValueError:
            return None


#: Validator for a whole per-sport response body.
EVENT_LIST_ADAPTER: TypeAdapter[list[OddsApiEvent]] = TypeAdapter(list[OddsApiEvent])


# ---------------------------------------------------------------------------
# Settings snapshot (read from the record store on every call)
# ---------------------------------------------------------------------------

class SettingsSnapshot(BaseModel):
    """Runtime switches that decide which sources feed a scan."""

    show_mock_data: bool = True
    show_live_data: bool = True
    mock_mode: bool = False
    cache_timeout_seconds: int = Field(60, ge=10, le=300)
    bookmaker_preferences: list[str] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "example": {
                "show_mock_data": True,
                "show_live_data": True,
                "mock_mode": False,
                "cache_timeout_seconds": 60,
                "bookmaker_preferences": ["DraftKings", "FanDuel"],
            }
        }
    }


class SettingsUpdate(BaseModel):
    """Partial settings payload for POST /api/settings."""

    show_mock_data: Optional[bool] = None
    show_live_data: Optional[bool] = None
    mock_mode: Optional[bool] = None
    cache_timeout_seconds: Optional[int] = Field(None, ge=10, le=300)
    bookmaker_preferences: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Opportunity requests / responses
# ---------------------------------------------------------------------------

TimeFilter = Literal["all", "5min", "10min", "30min", "1hr", "6hr", "12hr", "24hr", "tomorrow", "week"]
DataSource = Literal["live", "mock", "cached"]


class GetOddsRequest(BaseModel):
    """Query filters for GET /api/odds."""

    sports: Optional[list[str]] = None
    min_profit: float = Field(0.0, ge=0, le=100)
    bookmakers: Optional[list[str]] = None
    time_filter: Optional[TimeFilter] = None

    @field_validator("sports")
    @classmethod
    def validate_sports(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is None:
            return v
        unknown = [s for s in v if not is_valid_sport_input(s)]
        if unknown:
            raise ValueError(f"Unknown sport(s): {', '.join(unknown)}")
        return v


class StakedBetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    source: str
    outcome: str
    price: float
    stake: float
    ev: Optional[float] = None
    ev_dollars: Optional[float] = None


class MiddleInfoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    line1: float
    line2: float
    win_scenarios: list[str]


class OpportunityResponse(BaseModel):
    """Serialised :class:`~arb_scanner.services.opportunities.Opportunity`."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    sport: str
    match: str
    market: str
    bets: list[StakedBetResponse]
    profit_percentage: float
    hold: Optional[float] = None
    discovered_at: datetime
    commence_time: Optional[str] = None
    source: DataSource
    middle: Optional[MiddleInfoResponse] = None


class GetOddsResponse(BaseModel):
    """Envelope for GET /api/odds."""

    opportunities: list[OpportunityResponse]
    count: int
    cached_at: datetime
    is_from_cache: bool
    cache_age_minutes: Optional[float] = None
    failed_sources: list[str] = Field(default_factory=list)


class OpportunityListResponse(BaseModel):
    """Envelope for /api/middles and /api/positive-ev."""

    opportunities: list[OpportunityResponse]
    count: int
    cached_at: datetime


class KellyResponse(BaseModel):
    price: float
    true_probability_pct: float
    bankroll: float
    fraction: float
    stake: float


class CacheStatsResponse(BaseModel):
    total: int
    active: int
    expired: int


class HealthCheckResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    timestamp: datetime
    services: dict[str, bool]


class HistoricalOddsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    bookmaker: str
    outcome: str
    price: float
    market: Optional[str] = None
    timestamp: datetime


class StoredEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: str
    sport_key: str
    sport_title: str
    home_team: str
    away_team: str
    commence_time: datetime
    bookmakers: list[dict]
    created_at: datetime
    last_updated: datetime
