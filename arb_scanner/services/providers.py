"""
Odds providers: a uniform fetch contract over live and synthetic sources.
https://the-odds-api.com/

Two implementations of :class:`OddsProvider`:

  TheOddsApiProvider:
      One GET per requested sport against The Odds API v4, issued
      concurrently.  Every response body is validated against
      :class:`~arb_scanner.schemas.OddsApiEvent`.  The combined result is
      written to the injected :class:`~arb_scanner.core.ttl_cache.TTLCache`
      only after *every* sport validated.  Partial results are never cached
      and never returned: the provider is all-or-nothing per call.

  MockOddsProvider:
      A fixed set of example snapshots for demos, tests, and environments
      without an API key.  Never touches the cache or the network.

There is no retry policy here.  A failed fetch is reported once as a
:class:`~arb_scanner.core.errors.ProviderFetchError`.
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import requests
from pydantic import ValidationError

from arb_scanner.core.errors import ProviderFetchError
from arb_scanner.core.sport_config import DEFAULT_MARKET, UPCOMING
from arb_scanner.core.ttl_cache import TTLCache
from arb_scanner.schemas import EVENT_LIST_ADAPTER, OddsApiEvent

logger = logging.getLogger(__name__)

API_KEY = os.getenv("THE_ODDS_API_KEY")
BASE_URL = os.getenv("ODDS_API_BASE_URL", "https://api.the-odds-api.com/v4")
DEFAULT_REGIONS: List[str] = [
    r.strip() for r in os.getenv("ODDS_API_REGIONS", "us,uk,eu").split(",") if r.strip()
]
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("ODDS_API_TIMEOUT_SECONDS", "10"))
DEFAULT_CACHE_TTL_SECONDS = 60

# How often a waiting fetch re-checks its cancel event.
_CANCEL_POLL_SECONDS = 0.1


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FetchResult:
    """Snapshots returned by a provider plus where they came from."""

    events: tuple
    provider: str
    from_cache: bool = False
    cache_age_seconds: Optional[float] = None

    @property
    def cache_age_minutes(self) -> Optional[float]:
        if self.cache_age_seconds is None:
            return None
        return round(self.cache_age_seconds / 60.0, 2)


class OddsProvider(ABC):
    """Capability to fetch market snapshots for a set of sports."""

    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def fetch(
        self,
        sports: Sequence[str],
        regions: Optional[Sequence[str]] = None,
        markets: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# The Odds API
# ---------------------------------------------------------------------------

class TheOddsApiProvider(OddsProvider):
    """Live provider backed by The Odds API, guarded by a TTL cache."""

    def __init__(
        self,
        api_key: Optional[str],
        cache: TTLCache,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        max_workers: int = 8,
    ):
        self.api_key = api_key or API_KEY
        if not self.api_key:
            raise ValueError("THE_ODDS_API_KEY not set in environment")
        self._cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self.max_workers = max_workers

    def name(self) -> str:
        return "The Odds API"

    @staticmethod
    def cache_key(sports: Sequence[str], regions: Sequence[str], markets: Sequence[str]) -> str:
        return f"odds:{','.join(sports)}:{','.join(regions)}:{','.join(markets)}"

    def fetch(
        self,
        sports: Sequence[str],
        regions: Optional[Sequence[str]] = None,
        markets: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchResult:
        """
        Fetch and validate snapshots for every sport, or fail as a whole.

        A cache hit for the exact ``(sports, regions, markets)`` key returns
        immediately without any remote call.

        Raises:
            ProviderFetchError: Any sport failed (network, HTTP status,
                timeout, schema), or ``cancel_event`` was set.  The cache
                is untouched in every failure case.
        """
        sports = list(sports) or [UPCOMING]
        regions = list(regions or DEFAULT_REGIONS)
        markets = list(markets or [DEFAULT_MARKET])
        timeout = self.timeout if timeout is None else timeout
        key = self.cache_key(sports, regions, markets)

        entry = self._cache.get_entry(key)
        if entry is not None:
            age = entry.age(self._cache.now())
            logger.info("Odds API: cache hit for %s (age %.1fs)", key, age)
            return FetchResult(
                events=entry.value, provider=self.name(), from_cache=True, cache_age_seconds=age
            )

        logger.info("Odds API: fetching fresh data for sports: %s", ", ".join(sports))
        per_sport = self._fetch_all(sports, regions, markets, timeout, cancel_event)

        # Flatten in request order so repeated scans see identical input order.
        events = tuple(event for sport in sports for event in per_sport[sport])

        if cancel_event is not None and cancel_event.is_set():
            raise ProviderFetchError(self.name(), "fetch cancelled before caching")

        self._cache.set(key, events, self.cache_ttl_seconds)
        logger.info(
            "Odds API: fetched %d events across %d sports, cached for %ss",
            len(events), len(sports), self.cache_ttl_seconds,
        )
        return FetchResult(events=events, provider=self.name(), cache_age_seconds=0.0)

    def _fetch_all(
        self,
        sports: List[str],
        regions: List[str],
        markets: List[str],
        timeout: float,
        cancel_event: Optional[threading.Event],
    ) -> Dict[str, List[OddsApiEvent]]:
        pool = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(sports))),
            thread_name_prefix="odds-api",
        )
        futures = {
            pool.submit(self._fetch_sport, sport, regions, markets, timeout): sport
            for sport in sports
        }
        results: Dict[str, List[OddsApiEvent]] = {}
        deadline = time.monotonic() + timeout
        pending = set(futures)
        try:
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    raise ProviderFetchError(self.name(), "fetch cancelled")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ProviderFetchError(self.name(), f"timed out after {timeout:g}s")
                done, pending = wait(
                    pending,
                    timeout=min(remaining, _CANCEL_POLL_SECONDS),
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    results[futures[future]] = future.result()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return results

    def _fetch_sport(
        self,
        sport: str,
        regions: List[str],
        markets: List[str],
        timeout: float,
    ) -> List[OddsApiEvent]:
        url = f"{self.base_url}/sports/{sport}/odds"
        params = {
            "apiKey": self.api_key,
            "regions": ",".join(regions),
            "markets": ",".join(markets),
            "oddsFormat": "decimal",
        }

        try:
            response = self._session.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise ProviderFetchError(
                self.name(), f"HTTP {status} for {sport}", status_code=status
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ProviderFetchError(self.name(), f"request failed for {sport}: {exc}") from exc
        except ValueError as exc:
            raise ProviderFetchError(self.name(), f"invalid JSON for {sport}") from exc

        if not isinstance(data, list):
            raise ProviderFetchError(
                self.name(), f"expected a list of events for {sport}, got {type(data).__name__}"
            )
        try:
            events = EVENT_LIST_ADAPTER.validate_python(data)
        except ValidationError as exc:
            raise ProviderFetchError(
                self.name(), f"schema mismatch for {sport}: {exc.error_count()} error(s)"
            ) from exc

        headers = getattr(response, "headers", None) or {}
        logger.info(
            "Odds API: %d events for %s. Quota: %s used, %s remaining",
            len(events), sport,
            headers.get("x-requests-used"), headers.get("x-requests-remaining"),
        )
        return events


# ---------------------------------------------------------------------------
# Synthetic provider
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _book(key: str, title: str, markets: Dict[str, list], stamp: str) -> dict:
    return {
        "key": key,
        "title": title,
        "last_update": stamp,
        "markets": [
            {"key": market_key, "last_update": stamp, "outcomes": outcomes}
            for market_key, outcomes in markets.items()
        ],
    }


def _h2h(*pairs) -> Dict[str, list]:
    return {"h2h": [{"name": name, "price": price} for name, price in pairs]}


class MockOddsProvider(OddsProvider):
    """Deterministic example snapshots.

    Contains two h2h arbitrages (a three-way EPL market and a two-way NBA
    market), two efficient markets, and an NFL game whose spreads and
    totals form middles.  Commence times are offsets from ``now``.
    """

    def __init__(self, now: Callable[[], datetime] = _utcnow):
        self._now = now

    def name(self) -> str:
        return "Mock Provider"

    def fetch(
        self,
        sports: Sequence[str],
        regions: Optional[Sequence[str]] = None,
        markets: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchResult:
        events = self.events()
        requested = set(sports or [])
        if requested and UPCOMING not in requested:
            events = [e for e in events if e.sport_key in requested]
        logger.info("Mock provider: %d events for sports: %s", len(events), ", ".join(sports) or "all")
        return FetchResult(events=tuple(events), provider=self.name())

    def events(self) -> List[OddsApiEvent]:
        now = self._now()
        stamp = _iso(now)

        def at(hours: float) -> str:
            return _iso(now + timedelta(hours=hours))

        raw = [
            {
                "id": "mock_soccer_epl_1",
                "sport_key": "soccer_epl",
                "sport_title": "EPL",
                "commence_time": at(2),
                "home_team": "Manchester City",
                "away_team": "Arsenal",
                "bookmakers": [
                    _book("bet365", "Bet365", _h2h(("Manchester City", 2.10), ("Arsenal", 3.50), ("Draw", 3.40)), stamp),
                    _book("draftkings", "DraftKings", _h2h(("Manchester City", 2.05), ("Arsenal", 3.90), ("Draw", 3.50)), stamp),
                    _book("fanduel", "FanDuel", _h2h(("Manchester City", 2.25), ("Arsenal", 3.40), ("Draw", 3.70)), stamp),
                ],
            },
            {
                "id": "mock_basketball_nba_1",
                "sport_key": "basketball_nba",
                "sport_title": "NBA",
                "commence_time": at(4),
                "home_team": "Los Angeles Lakers",
                "away_team": "Golden State Warriors",
                "bookmakers": [
                    _book("betmgm", "BetMGM", _h2h(("Los Angeles Lakers", 1.95), ("Golden State Warriors", 2.05)), stamp),
                    _book("caesars", "Caesars", _h2h(("Los Angeles Lakers", 1.90), ("Golden State Warriors", 2.10)), stamp),
                ],
            },
            {
                "id": "mock_tennis_atp_1",
                "sport_key": "tennis_atp",
                "sport_title": "ATP",
                "commence_time": at(6),
                "home_team": "Novak Djokovic",
                "away_team": "Carlos Alcaraz",
                "bookmakers": [
                    _book("pointsbetus", "PointsBet", _h2h(("Novak Djokovic", 2.25), ("Carlos Alcaraz", 1.75)), stamp),
                    _book("fanduel", "FanDuel", _h2h(("Novak Djokovic", 2.30), ("Carlos Alcaraz", 1.70)), stamp),
                ],
            },
            {
                "id": "mock_soccer_la_liga_1",
                "sport_key": "soccer_spain_la_liga",
                "sport_title": "La Liga - Spain",
                "commence_time": at(8),
                "home_team": "Real Madrid",
                "away_team": "Barcelona",
                "bookmakers": [
                    _book("draftkings", "DraftKings", _h2h(("Real Madrid", 2.40), ("Barcelona", 2.90), ("Draw", 3.50)), stamp),
                    _book("bet365", "Bet365", _h2h(("Real Madrid", 2.35), ("Barcelona", 3.00), ("Draw", 3.45)), stamp),
                    _book("betmgm", "BetMGM", _h2h(("Real Madrid", 2.38), ("Barcelona", 2.95), ("Draw", 3.60)), stamp),
                ],
            },
            {
                "id": "mock_americanfootball_nfl_1",
                "sport_key": "americanfootball_nfl",
                "sport_title": "NFL",
                "commence_time": at(26),
                "home_team": "Kansas City Chiefs",
                "away_team": "Buffalo Bills",
                "bookmakers": [
                    _book("draftkings", "DraftKings", {
                        "h2h": [
                            {"name": "Kansas City Chiefs", "price": 1.80},
                            {"name": "Buffalo Bills", "price": 2.05},
                        ],
                        "spreads": [
                            {"name": "Kansas City Chiefs", "price": 1.91, "point": -2.5},
                            {"name": "Buffalo Bills", "price": 1.91, "point": 2.5},
                        ],
                        "totals": [
                            {"name": "Over", "price": 1.91, "point": 47.5},
                            {"name": "Under", "price": 1.91, "point": 47.5},
                        ],
                    }, stamp),
                    _book("fanduel", "FanDuel", {
                        "h2h": [
                            {"name": "Kansas City Chiefs", "price": 1.85},
                            {"name": "Buffalo Bills", "price": 2.00},
                        ],
                        "spreads": [
                            {"name": "Kansas City Chiefs", "price": 1.87, "point": -1.5},
                            {"name": "Buffalo Bills", "price": 1.95, "point": 3.5},
                        ],
                        "totals": [
                            {"name": "Over", "price": 1.95, "point": 45.5},
                            {"name": "Under", "price": 1.87, "point": 45.5},
                        ],
                    }, stamp),
                ],
            },
        ]
        return EVENT_LIST_ADAPTER.validate_python(raw)
