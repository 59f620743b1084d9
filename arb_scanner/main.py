"""
FastAPI application for the arbitrage scanner
Includes REST API, the retention job, and health monitoring
"""

from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional
import logging
import os

from dotenv import load_dotenv

from arb_scanner.models import Base, engine, get_db, SessionLocal
from arb_scanner.auth import get_server_api_key, resolve_odds_api_key
from arb_scanner.core.errors import AllSourcesFailedError, InputValidationError
from arb_scanner.core.kelly import DEFAULT_KELLY_FRACTION, kelly_stake
from arb_scanner.core.ttl_cache import TTLCache
from arb_scanner.services.aggregator import OpportunityAggregator
from arb_scanner.services.storage import (
    OddsStore,
    session_event_sink,
    session_history_sink,
    session_settings_loader,
)
from arb_scanner.schemas import (
    CacheStatsResponse,
    GetOddsRequest,
    GetOddsResponse,
    HealthCheckResponse,
    HistoricalOddsResponse,
    KellyResponse,
    OpportunityListResponse,
    OpportunityResponse,
    SettingsSnapshot,
    SettingsUpdate,
    StoredEventResponse,
)

load_dotenv()

# Logging setup
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

APP_NAME = "Sports Arbitrage Scanner"
APP_VERSION = "1.0"

CLEANUP_INTERVAL_HOURS = int(os.getenv("CLEANUP_INTERVAL_HOURS", "6"))
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]

# Key under which the last /api/odds result is persisted
LAST_ODDS_KEY = "odds:last"

# Scheduler instance
scheduler = BackgroundScheduler()

_odds_cache: Optional[TTLCache] = None
_aggregator: Optional[OpportunityAggregator] = None


def get_odds_cache() -> TTLCache:
    """Process-wide odds cache shared by every request."""
    global _odds_cache
    if _odds_cache is None:
        _odds_cache = TTLCache(default_ttl_seconds=60)
    return _odds_cache


def get_aggregator() -> OpportunityAggregator:
    global _aggregator
    if _aggregator is None:
        _aggregator = OpportunityAggregator(
            cache=get_odds_cache(),
            settings_loader=session_settings_loader(),
            api_key=get_server_api_key(),
            history_sink=session_history_sink(),
            event_sink=session_event_sink(),
        )
    return _aggregator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting %s", APP_NAME)
    Base.metadata.create_all(bind=engine)

    scheduler.add_job(
        _cleanup_job,
        IntervalTrigger(hours=CLEANUP_INTERVAL_HOURS),
        id="cleanup_old_events",
        name="Remove Old Events",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: cleanup every %dh", CLEANUP_INTERVAL_HOURS)

    yield

    logger.info("Shutting down %s", APP_NAME)
    scheduler.shutdown()


app = FastAPI(
    title=APP_NAME,
    description="Cross-bookmaker arbitrage, middles, and +EV finder",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _cleanup_job():
    """Delete events past the retention window. Runs every CLEANUP_INTERVAL_HOURS."""
    db = SessionLocal()
    try:
        deleted = OddsStore(db).cleanup_old_events()
        logger.info("Cleanup job removed %d events", deleted)
    except Exception as exc:
        db.rollback()
        logger.error("Cleanup job failed: %s", exc, exc_info=True)
    finally:
        db.close()


# ============================================================================
# HELPERS
# ============================================================================

def _split(values: Optional[List[str]]) -> Optional[List[str]]:
    """Accept both ?sports=a,b and ?sports=a&sports=b."""
    if not values:
        return None
    parts = [p.strip() for v in values for p in v.split(",") if p.strip()]
    return parts or None


def _sources_unavailable(exc: AllSourcesFailedError) -> HTTPException:
    logger.error("All odds sources failed: %s", exc.failures)
    return HTTPException(
        status_code=503,
        detail={
            "message": "All odds sources failed; no data available",
            "failures": exc.failures,
        },
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    return {
        "app": APP_NAME,
        "version": APP_VERSION,
        "status": "operational",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/healthz", response_model=HealthCheckResponse)
@app.get("/api/healthz", response_model=HealthCheckResponse)
async def health_check(
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_odds_cache),
):
    """Health check endpoint"""
    services = {
        "api": get_server_api_key() is not None,
        "cache": cache.stats()["active"] >= 0,
        "database": True,
        "scheduler": scheduler.running,
    }
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Health check database error: %s", exc)
        services["database"] = False

    if not services["database"]:
        status = "unhealthy"
    elif not services["scheduler"]:
        status = "degraded"
    else:
        status = "healthy"

    body = HealthCheckResponse(status=status, timestamp=datetime.now(timezone.utc), services=services)
    if status == "unhealthy":
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body


# ============================================================================
# OPPORTUNITIES
# ============================================================================

@app.get("/api/odds", response_model=GetOddsResponse)
def get_odds(
    sports: Optional[List[str]] = Query(default=None),
    min_profit: float = Query(default=0.0, alias="minProfit"),
    bookmakers: Optional[List[str]] = Query(default=None),
    time_filter: Optional[str] = Query(default=None, alias="timeFilter"),
    api_key: Optional[str] = Depends(resolve_odds_api_key),
    aggregator: OpportunityAggregator = Depends(get_aggregator),
    db: Session = Depends(get_db),
):
    """
    Arbitrage opportunities across mock and live sources.

    Query params:
        sports: categories or league keys, comma separated
        minProfit: minimum guaranteed profit percentage
        bookmakers: keep opportunities with a leg at one of these
        timeFilter: 5min | 10min | 30min | 1hr | 6hr | 12hr | 24hr | tomorrow | week | all
    """
    try:
        request = GetOddsRequest(
            sports=_split(sports),
            min_profit=min_profit,
            bookmakers=_split(bookmakers),
            time_filter=time_filter,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Invalid request parameters",
                "errors": exc.errors(include_url=False, include_context=False),
            },
        )

    try:
        result = aggregator.get_opportunities(
            sports=request.sports,
            min_profit_pct=request.min_profit,
            bookmaker_filter=request.bookmakers,
            time_filter=request.time_filter,
            api_key=api_key,
        )
    except AllSourcesFailedError as exc:
        raise _sources_unavailable(exc)
    except InputValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    response = GetOddsResponse(
        opportunities=[OpportunityResponse.model_validate(o) for o in result.opportunities],
        count=result.count,
        cached_at=result.cached_at,
        is_from_cache=result.is_from_cache,
        cache_age_minutes=result.cache_age_minutes,
        failed_sources=result.failed_sources,
    )

    try:
        OddsStore(db).set_cached_opportunities(
            LAST_ODDS_KEY,
            [o.model_dump(mode="json") for o in response.opportunities],
            ttl_seconds=OddsStore(db).get_settings().cache_timeout_seconds,
        )
    except Exception as exc:
        db.rollback()
        logger.warning("Could not persist served opportunities: %s", exc)

    return response


@app.get("/api/odds/last", response_model=OpportunityListResponse)
async def get_last_odds(db: Session = Depends(get_db)):
    """Most recent /api/odds result, while it is younger than the cache timeout."""
    row = OddsStore(db).get_cached_opportunities(LAST_ODDS_KEY)
    if row is None:
        raise HTTPException(status_code=404, detail="No recent opportunities stored")
    return OpportunityListResponse(
        opportunities=row.payload,
        count=row.count,
        cached_at=row.created_at.replace(tzinfo=timezone.utc),
    )


@app.get("/api/middles", response_model=OpportunityListResponse)
def get_middles(
    sports: Optional[List[str]] = Query(default=None),
    api_key: Optional[str] = Depends(resolve_odds_api_key),
    aggregator: OpportunityAggregator = Depends(get_aggregator),
):
    """Spread and total middles: both legs win if the result lands in the gap."""
    try:
        middles = aggregator.get_middles(sports=_split(sports), api_key=api_key)
    except AllSourcesFailedError as exc:
        raise _sources_unavailable(exc)

    return OpportunityListResponse(
        opportunities=[OpportunityResponse.model_validate(o) for o in middles],
        count=len(middles),
        cached_at=datetime.now(timezone.utc),
    )


@app.get("/api/positive-ev", response_model=OpportunityListResponse)
def get_positive_ev(
    sports: Optional[List[str]] = Query(default=None),
    min_ev: float = Query(default=2.0, alias="minEV"),
    api_key: Optional[str] = Depends(resolve_odds_api_key),
    aggregator: OpportunityAggregator = Depends(get_aggregator),
):
    """Prices longer than the cross-book consensus by at least minEV percent."""
    try:
        found = aggregator.get_positive_ev(sports=_split(sports), min_ev_pct=min_ev, api_key=api_key)
    except AllSourcesFailedError as exc:
        raise _sources_unavailable(exc)

    return OpportunityListResponse(
        opportunities=[OpportunityResponse.model_validate(o) for o in found],
        count=len(found),
        cached_at=datetime.now(timezone.utc),
    )


@app.get("/api/kelly", response_model=KellyResponse)
async def get_kelly_stake(
    price: float = Query(..., description="Decimal odds"),
    probability: float = Query(..., description="True win probability, percent"),
    bankroll: float = Query(...),
    fraction: float = Query(default=DEFAULT_KELLY_FRACTION),
):
    """Fractional Kelly stake for a single bet."""
    try:
        stake = kelly_stake(price, probability, bankroll, fraction)
    except InputValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return KellyResponse(
        price=price,
        true_probability_pct=probability,
        bankroll=bankroll,
        fraction=fraction,
        stake=stake,
    )


# ============================================================================
# SETTINGS & CACHE
# ============================================================================

@app.get("/api/settings", response_model=SettingsSnapshot)
async def get_settings(db: Session = Depends(get_db)):
    return OddsStore(db).get_settings()


@app.post("/api/settings", response_model=SettingsSnapshot)
async def update_settings(update: SettingsUpdate, db: Session = Depends(get_db)):
    """Partial update; omitted fields keep their current value."""
    return OddsStore(db).update_settings(update)


@app.get("/api/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: TTLCache = Depends(get_odds_cache)):
    return CacheStatsResponse(**cache.stats())


@app.post("/api/cache/clear")
async def clear_cache(cache: TTLCache = Depends(get_odds_cache)):
    cache.clear()
    logger.info("Odds cache cleared")
    return {"message": "Cache cleared successfully"}


# ============================================================================
# HISTORY & EVENTS
# ============================================================================

@app.get("/api/historical-odds/{event_id}", response_model=List[HistoricalOddsResponse])
async def get_historical_odds(event_id: str, db: Session = Depends(get_db)):
    """Every price observed for an event, oldest first."""
    return OddsStore(db).get_historical_odds(event_id)


@app.get("/api/events", response_model=List[StoredEventResponse])
async def get_events(
    sport: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return OddsStore(db).get_events(sport_key=sport, limit=limit)


@app.get("/api/events/{event_id}", response_model=StoredEventResponse)
async def get_event(event_id: str, db: Session = Depends(get_db)):
    event = OddsStore(db).get_event(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@app.post("/api/cleanup")
async def run_cleanup(
    retention_days: Optional[int] = Query(default=None, alias="retentionDays", ge=0),
    db: Session = Depends(get_db),
):
    """Manually trigger the retention cleanup."""
    store = OddsStore(db)
    if retention_days is None:
        deleted = store.cleanup_old_events()
    else:
        deleted = store.cleanup_old_events(retention_days)
    return {"message": "Cleanup completed successfully", "deleted_count": deleted}


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
