"""
Tests for the multi-source merge
Run with: pytest tests/test_aggregator.py -v
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from arb_scanner.core.errors import AllSourcesFailedError, ProviderFetchError
from arb_scanner.core.ttl_cache import TTLCache
from arb_scanner.schemas import SettingsSnapshot
from arb_scanner.services.aggregator import (
    OpportunityAggregator,
    _default_live_provider,
    filter_by_bookmakers,
    filter_by_time,
)
from arb_scanner.services.opportunities import Opportunity, StakedBet
from arb_scanner.services.providers import (
    FetchResult,
    MockOddsProvider,
    OddsProvider,
    TheOddsApiProvider,
)


class FailingProvider(OddsProvider):
    def name(self):
        return "Failing"

    def fetch(self, sports, regions=None, markets=None, timeout=None, cancel_event=None):
        raise ProviderFetchError(self.name(), "HTTP 500")


class BrokenProvider(OddsProvider):
    def name(self):
        return "Broken"

    def fetch(self, sports, regions=None, markets=None, timeout=None, cancel_event=None):
        raise RuntimeError("unexpected provider bug")


class SlowProvider(OddsProvider):
    """Blocks until cancelled; records whether cancellation was seen."""

    def __init__(self):
        self.cancelled = False

    def name(self):
        return "Slow"

    def fetch(self, sports, regions=None, markets=None, timeout=None, cancel_event=None):
        if cancel_event.wait(5):
            self.cancelled = True
            raise ProviderFetchError(self.name(), "fetch cancelled")
        return FetchResult(events=(), provider=self.name())


class StaticProvider(OddsProvider):
    def __init__(self, events, from_cache=False, age=None):
        self.events = tuple(events)
        self.from_cache = from_cache
        self.age = age
        self.calls = []

    def name(self):
        return "Static"

    def fetch(self, sports, regions=None, markets=None, timeout=None, cancel_event=None):
        self.calls.append({"sports": list(sports), "markets": markets})
        return FetchResult(
            events=self.events, provider=self.name(),
            from_cache=self.from_cache, cache_age_seconds=self.age,
        )


def _settings(**overrides):
    return lambda: SettingsSnapshot(**overrides)


def _aggregator(settings, live=None, **kwargs):
    return OpportunityAggregator(
        cache=TTLCache(),
        settings_loader=settings,
        api_key="test-key",
        mock_provider=MockOddsProvider(),
        live_provider_factory=(lambda key, cache, ttl: live) if live is not None else None,
        **kwargs,
    )


def _live_events():
    return [e.model_copy(update={"id": f"live_{e.id}"}) for e in MockOddsProvider().events()]


# ---------------------------------------------------------------------------
# Source selection and failure policy
# ---------------------------------------------------------------------------

class TestSources:

    def test_live_failure_keeps_mock_results(self):
        agg = _aggregator(_settings(), live=FailingProvider())
        result = agg.get_opportunities()

        assert result.count == 2
        assert {o.source for o in result.opportunities} == {"mock"}
        assert result.failed_sources == ["Failing"]

    def test_untyped_live_error_keeps_mock_results(self):
        agg = _aggregator(_settings(), live=BrokenProvider())
        result = agg.get_opportunities()

        assert result.count == 2
        assert {o.source for o in result.opportunities} == {"mock"}
        assert result.failed_sources == ["Broken"]

    def test_untyped_error_counts_towards_all_failed(self):
        agg = _aggregator(_settings(show_mock_data=False), live=BrokenProvider())

        with pytest.raises(AllSourcesFailedError) as exc_info:
            agg.get_opportunities()
        assert "unexpected provider bug" in exc_info.value.failures["Broken"]

    def test_default_live_provider(self):
        provider = _default_live_provider("key", TTLCache(), 120)
        assert isinstance(provider, TheOddsApiProvider)
        assert provider.cache_ttl_seconds == 120

    def test_all_sources_failed(self):
        agg = _aggregator(_settings(show_mock_data=False), live=FailingProvider())

        with pytest.raises(AllSourcesFailedError) as exc_info:
            agg.get_opportunities()
        assert "Failing" in exc_info.value.failures

    def test_no_sources_enabled_is_empty(self):
        agg = _aggregator(_settings(show_mock_data=False, show_live_data=False))
        result = agg.get_opportunities()

        assert result.count == 0
        assert result.opportunities == []
        assert result.failed_sources == []

    def test_mock_mode_disables_live(self):
        factory = MagicMock()
        agg = OpportunityAggregator(
            cache=TTLCache(),
            settings_loader=_settings(mock_mode=True),
            api_key="test-key",
            live_provider_factory=factory,
        )
        agg.get_opportunities()
        factory.assert_not_called()

    def test_no_api_key_disables_live(self, monkeypatch):
        from arb_scanner.services import aggregator as aggregator_module

        monkeypatch.setattr(aggregator_module, "API_KEY", None)
        factory = MagicMock()
        agg = OpportunityAggregator(
            cache=TTLCache(),
            settings_loader=_settings(),
            live_provider_factory=factory,
        )
        agg.get_opportunities()
        factory.assert_not_called()

    def test_request_key_overrides(self):
        factory = MagicMock(return_value=StaticProvider([]))
        agg = OpportunityAggregator(
            cache=TTLCache(),
            settings_loader=_settings(show_mock_data=False, cache_timeout_seconds=120),
            api_key="server-key",
            live_provider_factory=factory,
        )
        agg.get_opportunities(api_key="header-key")

        assert factory.call_args.args[0] == "header-key"
        assert factory.call_args.args[2] == 120

    def test_settings_reread_every_call(self):
        snapshots = iter([
            SettingsSnapshot(show_mock_data=True, show_live_data=False),
            SettingsSnapshot(show_mock_data=False, show_live_data=False),
        ])
        agg = _aggregator(lambda: next(snapshots))

        assert agg.get_opportunities().count == 2
        assert agg.get_opportunities().count == 0

    def test_slow_source_times_out_and_is_cancelled(self):
        slow = SlowProvider()
        agg = _aggregator(_settings(), live=slow, fetch_timeout=0.2)

        result = agg.get_opportunities()

        assert result.count == 2
        assert result.failed_sources == ["Slow"]


# ---------------------------------------------------------------------------
# Tagging and sinks
# ---------------------------------------------------------------------------

class TestLiveResults:

    def test_live_tag(self):
        live = StaticProvider(_live_events())
        agg = _aggregator(_settings(show_mock_data=False), live=live)
        result = agg.get_opportunities()

        assert {o.source for o in result.opportunities} == {"live"}
        assert not result.is_from_cache
        assert result.cache_age_minutes is None

    def test_cached_tag(self):
        live = StaticProvider(_live_events(), from_cache=True, age=90)
        agg = _aggregator(_settings(show_mock_data=False), live=live)
        result = agg.get_opportunities()

        assert {o.source for o in result.opportunities} == {"cached"}
        assert result.is_from_cache
        assert result.cache_age_minutes == pytest.approx(1.5)

    def test_mock_then_live_order(self):
        live = StaticProvider(_live_events())
        agg = _aggregator(_settings(), live=live)
        result = agg.get_opportunities()

        assert [o.source for o in result.opportunities] == ["mock", "mock", "live", "live"]

    def test_sinks_receive_fresh_live_data(self):
        history, events = MagicMock(), MagicMock()
        live = StaticProvider(_live_events())
        agg = _aggregator(_settings(), live=live, history_sink=history, event_sink=events)
        agg.get_opportunities()

        saved = events.call_args.args[0]
        assert all(e.id.startswith("live_") for e in saved)
        rows = history.call_args.args[0]
        assert rows and all(r.event_id.startswith("live_") for r in rows)

    def test_sinks_skip_cached_data(self):
        history = MagicMock()
        live = StaticProvider(_live_events(), from_cache=True, age=10)
        agg = _aggregator(_settings(), live=live, history_sink=history)
        agg.get_opportunities()
        history.assert_not_called()

    def test_sink_failure_does_not_fail_scan(self):
        history = MagicMock(side_effect=RuntimeError("db down"))
        live = StaticProvider(_live_events())
        agg = _aggregator(_settings(show_mock_data=False), live=live, history_sink=history)

        assert agg.get_opportunities().count == 2


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class TestFilters:

    def test_bookmaker_filter_case_insensitive(self):
        agg = _aggregator(_settings(show_live_data=False))
        result = agg.get_opportunities(bookmaker_filter=["caesars"])
        assert [o.event_id for o in result.opportunities] == ["mock_basketball_nba_1"]

    def test_bookmaker_filter_any_leg(self):
        agg = _aggregator(_settings(show_live_data=False))
        result = agg.get_opportunities(bookmaker_filter=["DRAFTKINGS"])
        assert [o.event_id for o in result.opportunities] == ["mock_soccer_epl_1"]

    def test_empty_bookmaker_filter_keeps_all(self):
        agg = _aggregator(_settings(show_live_data=False))
        assert agg.get_opportunities(bookmaker_filter=[]).count == 2

    def test_saved_preferences_are_default_filter(self):
        agg = _aggregator(_settings(show_live_data=False, bookmaker_preferences=["Caesars"]))
        result = agg.get_opportunities()
        assert [o.event_id for o in result.opportunities] == ["mock_basketball_nba_1"]

    def test_request_filter_overrides_preferences(self):
        agg = _aggregator(_settings(show_live_data=False, bookmaker_preferences=["Caesars"]))
        result = agg.get_opportunities(bookmaker_filter=["DraftKings"])
        assert [o.event_id for o in result.opportunities] == ["mock_soccer_epl_1"]

    def test_empty_filter_ignores_preferences(self):
        agg = _aggregator(_settings(show_live_data=False, bookmaker_preferences=["Caesars"]))
        assert agg.get_opportunities(bookmaker_filter=[]).count == 2

    def test_min_profit(self):
        agg = _aggregator(_settings(show_live_data=False))
        result = agg.get_opportunities(min_profit_pct=2.0)
        assert [o.event_id for o in result.opportunities] == ["mock_soccer_epl_1"]

    def test_sport_category(self):
        agg = _aggregator(_settings(show_live_data=False))
        result = agg.get_opportunities(sports=["basketball"])
        assert [o.event_id for o in result.opportunities] == ["mock_basketball_nba_1"]

    @pytest.mark.parametrize("time_filter, expected", [
        ("1hr", 0),
        ("6hr", 2),
        ("week", 2),
        ("all", 2),
        (None, 2),
    ])
    def test_time_filter(self, time_filter, expected):
        agg = _aggregator(_settings(show_live_data=False))
        assert agg.get_opportunities(time_filter=time_filter).count == expected


def _opp(event_id, commence, books=("A",)):
    return Opportunity(
        id=event_id,
        event_id=event_id,
        sport="NBA",
        match="H vs A",
        market="h2h",
        bets=tuple(StakedBet(source=b, outcome="x", price=2.1, stake=1.0) for b in books),
        profit_percentage=1.0,
        discovered_at=datetime.now(timezone.utc),
        source="mock",
        commence_time=commence,
    )


class TestFilterFunctions:

    NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def _iso(self, delta):
        return (self.NOW + delta).strftime("%Y-%m-%dT%H:%M:%SZ")

    def test_live_games_included(self):
        opps = [
            _opp("live", self._iso(-timedelta(hours=1))),
            _opp("finished", self._iso(-timedelta(hours=4))),
            _opp("soon", self._iso(timedelta(minutes=20))),
            _opp("later", self._iso(timedelta(hours=2))),
        ]
        kept = filter_by_time(opps, "30min", self.NOW)
        assert [o.event_id for o in kept] == ["live", "soon"]

    def test_missing_commence_time_dropped(self):
        kept = filter_by_time([_opp("x", None), _opp("y", "garbage")], "week", self.NOW)
        assert kept == []

    def test_tomorrow_is_48_hours(self):
        opps = [_opp("a", self._iso(timedelta(hours=47))), _opp("b", self._iso(timedelta(hours=49)))]
        assert [o.event_id for o in filter_by_time(opps, "tomorrow", self.NOW)] == ["a"]

    def test_bookmakers(self):
        opps = [_opp("a", None, books=("FanDuel", "Bet365")), _opp("b", None, books=("BetMGM",))]
        assert [o.event_id for o in filter_by_bookmakers(opps, [" fanduel "])] == ["a"]


class TestOtherViews:

    def test_get_events(self):
        agg = _aggregator(_settings(show_live_data=False))
        assert len(agg.get_events()) == 5

    def test_middles_request_line_markets(self):
        live = StaticProvider([])
        agg = _aggregator(_settings(), live=live)
        middles = agg.get_middles()

        assert {m.market for m in middles} == {"spreads", "totals"}
        assert live.calls[0]["markets"] == ["spreads", "totals"]

    def test_positive_ev(self):
        agg = _aggregator(_settings(show_live_data=False))
        found = agg.get_positive_ev(min_ev_pct=0.0)
        assert {o.event_id for o in found} == {"mock_soccer_epl_1", "mock_soccer_la_liga_1"}
        assert all(o.source == "mock" for o in found)
