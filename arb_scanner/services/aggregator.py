"""
Multi-source merge: one call that answers "what can I bet on right now?".

For every request the aggregator:

    1. Re-reads the settings snapshot (never cached between calls).
    2. Builds the enabled source list: mock when ``show_mock_data``; live
       when ``show_live_data``, an API key is configured, and ``mock_mode``
       is off.
    3. Fetches every enabled source concurrently, each bounded by
       ``fetch_timeout``.  A failed or timed-out source is logged and left
       out; the call fails only when every enabled source failed.
    4. Runs the arbitrage assembler per source, tags the results, then
       applies the bookmaker and time filters.

No enabled source at all is not a failure: the result is simply empty.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from arb_scanner.core.errors import AllSourcesFailedError, ProviderFetchError
from arb_scanner.core.sport_config import expand_sports
from arb_scanner.core.ttl_cache import TTLCache
from arb_scanner.schemas import DataSource, OddsApiEvent, SettingsSnapshot
from arb_scanner.services.opportunities import (
    HistoricalOddsRecord,
    Opportunity,
    find_middles,
    find_opportunities,
    find_positive_ev_opportunities,
    historical_odds_rows,
)
from arb_scanner.services.providers import (
    API_KEY,
    FetchResult,
    MockOddsProvider,
    OddsProvider,
    TheOddsApiProvider,
)

logger = logging.getLogger(__name__)

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "15"))

# Games that started less than this long ago still count as "live".
LIVE_GAME_WINDOW = timedelta(hours=3)

MIDDLE_MARKETS = ["spreads", "totals"]

TIME_WINDOWS: Dict[str, timedelta] = {
    "5min": timedelta(minutes=5),
    "10min": timedelta(minutes=10),
    "30min": timedelta(minutes=30),
    "1hr": timedelta(hours=1),
    "6hr": timedelta(hours=6),
    "12hr": timedelta(hours=12),
    "24hr": timedelta(hours=24),
    "tomorrow": timedelta(hours=48),
    "week": timedelta(days=7),
}

LiveProviderFactory = Callable[[str, TTLCache, int], OddsProvider]
HistorySink = Callable[[List[HistoricalOddsRecord]], None]
EventSink = Callable[[List[OddsApiEvent]], None]


def _default_live_provider(api_key: str, cache: TTLCache, ttl_seconds: int) -> OddsProvider:
    return TheOddsApiProvider(api_key, cache, cache_ttl_seconds=ttl_seconds)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpportunitySet:
    """Merged, filtered, ranked opportunities from one aggregator call."""

    opportunities: List[Opportunity]
    count: int
    is_from_cache: bool = False
    cache_age_minutes: Optional[float] = None
    failed_sources: List[str] = field(default_factory=list)
    cached_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class _SourceResult:
    tag: DataSource
    result: FetchResult


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def filter_by_bookmakers(
    opportunities: Iterable[Opportunity],
    bookmakers: Optional[Sequence[str]],
) -> List[Opportunity]:
    """Keep opportunities with at least one leg at a listed bookmaker.

    Matching is case-insensitive.  An empty or ``None`` filter keeps all.
    """
    opportunities = list(opportunities)
    wanted = {b.strip().lower() for b in (bookmakers or []) if b and b.strip()}
    if not wanted:
        return opportunities
    return [o for o in opportunities if any(b.source.lower() in wanted for b in o.bets)]


def _parse_commence(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def filter_by_time(
    opportunities: Iterable[Opportunity],
    time_filter: Optional[str],
    now: Optional[datetime] = None,
) -> List[Opportunity]:
    """Keep games starting inside the window, plus games already in play.

    ``"all"`` or ``None`` keeps everything.  Otherwise an opportunity is kept
    when its event starts after ``now`` and before ``now + window``, or when
    it started less than three hours ago.  Opportunities without a usable
    commence time are dropped.
    """
    opportunities = list(opportunities)
    window = TIME_WINDOWS.get(time_filter or "all")
    if window is None:
        return opportunities

    now = now or datetime.now(timezone.utc)
    end = now + window
    kept = []
    for opp in opportunities:
        start = _parse_commence(opp.commence_time)
        if start is None:
            continue
        if now - LIVE_GAME_WINDOW < start < now or now < start < end:
            kept.append(opp)
    return kept


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class OpportunityAggregator:
    """Merges mock and live sources into one ranked opportunity list.

    Args:
        cache: Shared TTL cache handed to the live provider.
        settings_loader: Returns the current :class:`SettingsSnapshot`;
            called once per request.
        api_key: The Odds API key.  Falls back to ``THE_ODDS_API_KEY``.
        mock_provider: Provider used when mock data is enabled.
        live_provider_factory: ``(api_key, cache, ttl_seconds) -> provider``.
            Called per request so a changed cache timeout applies at once.
        history_sink: Receives price observations from fresh live fetches.
        event_sink: Receives the raw snapshots of fresh live fetches.
        fetch_timeout: Upper bound in seconds for each source's fetch.
    """

    def __init__(
        self,
        cache: TTLCache,
        settings_loader: Callable[[], SettingsSnapshot],
        api_key: Optional[str] = None,
        mock_provider: Optional[OddsProvider] = None,
        live_provider_factory: Optional[LiveProviderFactory] = None,
        history_sink: Optional[HistorySink] = None,
        event_sink: Optional[EventSink] = None,
        fetch_timeout: float = PROVIDER_TIMEOUT_SECONDS,
    ):
        self.cache = cache
        self.settings_loader = settings_loader
        self.api_key = api_key or API_KEY
        self.mock_provider = mock_provider or MockOddsProvider()
        self.live_provider_factory = live_provider_factory or _default_live_provider
        self.history_sink = history_sink
        self.event_sink = event_sink
        self.fetch_timeout = fetch_timeout

    # ------------------------------------------------------------------
    # Source selection and fetch
    # ------------------------------------------------------------------

    def _enabled_sources(
        self, settings: SettingsSnapshot, api_key: Optional[str]
    ) -> List[Tuple[str, OddsProvider]]:
        sources: List[Tuple[str, OddsProvider]] = []
        if settings.show_mock_data:
            sources.append(("mock", self.mock_provider))
        if settings.show_live_data and api_key and not settings.mock_mode:
            provider = self.live_provider_factory(
                api_key, self.cache, settings.cache_timeout_seconds
            )
            sources.append(("live", provider))
        return sources

    def _gather(
        self,
        settings: SettingsSnapshot,
        sports: List[str],
        api_key: Optional[str] = None,
        markets: Optional[List[str]] = None,
    ) -> Tuple[List[_SourceResult], List[str]]:
        sources = self._enabled_sources(settings, api_key or self.api_key)
        if not sources:
            logger.info("Aggregator: no data sources enabled")
            return [], []

        cancel = threading.Event()
        pool = ThreadPoolExecutor(max_workers=len(sources), thread_name_prefix="odds-source")
        futures = [
            (tag, provider, pool.submit(
                provider.fetch, sports, markets=markets,
                timeout=self.fetch_timeout, cancel_event=cancel,
            ))
            for tag, provider in sources
        ]

        collected: List[_SourceResult] = []
        failures: Dict[str, str] = {}
        deadline = time.monotonic() + self.fetch_timeout
        try:
            for tag, provider, future in futures:
                try:
                    result = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FuturesTimeout:
                    cancel.set()
                    failures[provider.name()] = f"timed out after {self.fetch_timeout:g}s"
                    logger.warning("Aggregator: %s timed out", provider.name())
                    continue
                except ProviderFetchError as exc:
                    failures[provider.name()] = str(exc)
                    logger.error("Aggregator: %s failed: %s", provider.name(), exc)
                    continue
                except Exception as exc:
                    failures[provider.name()] = f"unexpected error: {exc}"
                    logger.error(
                        "Aggregator: %s raised unexpectedly", provider.name(), exc_info=True
                    )
                    continue

                if tag == "live" and result.from_cache:
                    tag = "cached"
                collected.append(_SourceResult(tag=tag, result=result))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if not collected:
            raise AllSourcesFailedError(failures)

        self._record_history(collected)
        return collected, list(failures)

    def _record_history(self, collected: List[_SourceResult]) -> None:
        fresh = [e for s in collected if s.tag == "live" for e in s.result.events]
        if not fresh:
            return
        # History is best-effort.
        if self.event_sink is not None:
            try:
                self.event_sink(fresh)
            except Exception:
                logger.warning("Aggregator: failed to save events", exc_info=True)
        if self.history_sink is not None:
            try:
                self.history_sink(historical_odds_rows(fresh))
            except Exception:
                logger.warning("Aggregator: failed to record historical odds", exc_info=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_events(
        self,
        sports: Optional[Sequence[str]] = None,
        api_key: Optional[str] = None,
    ) -> List[OddsApiEvent]:
        """Merged raw snapshots from every source that answered.

        Raises:
            AllSourcesFailedError: Every enabled source failed.
        """
        collected, _ = self._gather(self.settings_loader(), expand_sports(sports), api_key)
        return [event for source in collected for event in source.result.events]

    def get_opportunities(
        self,
        sports: Optional[Sequence[str]] = None,
        min_profit_pct: float = 0.0,
        bookmaker_filter: Optional[Sequence[str]] = None,
        time_filter: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> OpportunitySet:
        """
        Arbitrage opportunities across every enabled source.

        Args:
            sports:           Categories or league keys; empty means upcoming.
            min_profit_pct:   Drop opportunities below this profit.
            bookmaker_filter: Keep opportunities with a leg at one of these.
                              ``None`` falls back to the saved
                              ``bookmaker_preferences``; ``[]`` keeps all.
            time_filter:      One of :data:`TIME_WINDOWS` or ``"all"``.
            api_key:          Overrides the configured key for this call.

        Returns:
            OpportunitySet with ``failed_sources`` naming any source that
            was skipped.

        Raises:
            AllSourcesFailedError: Every enabled source failed.
        """
        settings = self.settings_loader()
        if bookmaker_filter is None:
            bookmaker_filter = settings.bookmaker_preferences
        leagues = expand_sports(sports)
        collected, failed = self._gather(settings, leagues, api_key)

        now = datetime.now(timezone.utc)
        opportunities: List[Opportunity] = []
        cache_age_minutes: Optional[float] = None
        for source in collected:
            opportunities.extend(find_opportunities(
                source.result.events, min_profit_pct, source=source.tag, now=now
            ))
            if source.tag == "cached":
                cache_age_minutes = source.result.cache_age_minutes

        opportunities = filter_by_bookmakers(opportunities, bookmaker_filter)
        opportunities = filter_by_time(opportunities, time_filter, now)

        logger.info(
            "Aggregator: %d opportunities for %s (sources ok=%d, failed=%d)",
            len(opportunities), ",".join(leagues), len(collected), len(failed),
        )
        return OpportunitySet(
            opportunities=opportunities,
            count=len(opportunities),
            is_from_cache=cache_age_minutes is not None,
            cache_age_minutes=cache_age_minutes,
            failed_sources=failed,
            cached_at=now,
        )

    def get_middles(
        self,
        sports: Optional[Sequence[str]] = None,
        api_key: Optional[str] = None,
    ) -> List[Opportunity]:
        """Spread and total middles across every enabled source."""
        collected, _ = self._gather(
            self.settings_loader(), expand_sports(sports), api_key, markets=MIDDLE_MARKETS
        )
        now = datetime.now(timezone.utc)
        middles: List[Opportunity] = []
        for source in collected:
            middles.extend(find_middles(source.result.events, source=source.tag, now=now))
        return sorted(middles, key=lambda o: o.profit_percentage, reverse=True)

    def get_positive_ev(
        self,
        sports: Optional[Sequence[str]] = None,
        min_ev_pct: float = 0.0,
        api_key: Optional[str] = None,
    ) -> List[Opportunity]:
        """+EV prices across every enabled source, best EV first."""
        collected, _ = self._gather(self.settings_loader(), expand_sports(sports), api_key)
        now = datetime.now(timezone.utc)
        found: List[Opportunity] = []
        for source in collected:
            found.extend(find_positive_ev_opportunities(
                source.result.events, min_ev_pct, source=source.tag, now=now
            ))
        return sorted(found, key=lambda o: max(b.ev for b in o.bets), reverse=True)
