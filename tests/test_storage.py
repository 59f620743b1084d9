"""
Tests for the record store
Run with: pytest tests/test_storage.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from arb_scanner.models import (
    CachedOpportunitySet,
    HistoricalOdds,
    SettingsRow,
    StoredEvent,
    utcnow,
)
from arb_scanner.schemas import SettingsUpdate
from arb_scanner.services.opportunities import HistoricalOddsRecord
from arb_scanner.services.storage import (
    OddsStore,
    session_event_sink,
    session_history_sink,
    session_settings_loader,
)


def _record(event_id, price, minutes_ago=0, bookmaker="Book"):
    return HistoricalOddsRecord(
        event_id=event_id,
        bookmaker=bookmaker,
        outcome="Home",
        price=price,
        market="h2h",
        timestamp=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )


def _iso(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class TestSettings:

    def test_defaults_created_on_first_read(self, db, monkeypatch):
        monkeypatch.delenv("MOCK_ODDS", raising=False)
        settings = OddsStore(db).get_settings()

        assert settings.show_mock_data
        assert settings.show_live_data
        assert not settings.mock_mode
        assert settings.cache_timeout_seconds == 60
        assert settings.bookmaker_preferences == []

    def test_mock_odds_env_seeds_mock_mode(self, db, monkeypatch):
        monkeypatch.setenv("MOCK_ODDS", "true")
        assert OddsStore(db).get_settings().mock_mode

    def test_partial_update(self, db):
        store = OddsStore(db)
        updated = store.update_settings(SettingsUpdate(show_live_data=False, cache_timeout_seconds=120))

        assert not updated.show_live_data
        assert updated.show_mock_data
        assert updated.cache_timeout_seconds == 120

        again = store.update_settings(SettingsUpdate(bookmaker_preferences=["FanDuel"]))
        assert again.cache_timeout_seconds == 120
        assert again.bookmaker_preferences == ["FanDuel"]

    def test_single_row(self, db):
        store = OddsStore(db)
        store.get_settings()
        store.update_settings(SettingsUpdate(mock_mode=True))
        store.get_settings()
        assert db.query(SettingsRow).count() == 1

    def test_session_loader_sees_updates(self, session_factory):
        load = session_settings_loader(session_factory)
        assert load().show_mock_data

        db = session_factory()
        try:
            OddsStore(db).update_settings(SettingsUpdate(show_mock_data=False))
        finally:
            db.close()

        assert not load().show_mock_data


class TestHistoricalOdds:

    def test_save_and_read_oldest_first(self, db):
        store = OddsStore(db)
        saved = store.save_historical_odds([
            _record("e1", 2.10, minutes_ago=0),
            _record("e1", 2.05, minutes_ago=10),
            _record("e2", 1.90, minutes_ago=5),
        ])

        assert saved == 3
        history = store.get_historical_odds("e1")
        assert [h.price for h in history] == [2.05, 2.10]
        assert all(h.timestamp.tzinfo is None for h in history)

    def test_limit(self, db):
        store = OddsStore(db)
        store.save_historical_odds([_record("e1", 2.0 + i / 100, minutes_ago=i) for i in range(5)])
        assert len(store.get_historical_odds("e1", limit=2)) == 2

    def test_unknown_event(self, db):
        assert OddsStore(db).get_historical_odds("missing") == []

    def test_history_sink(self, session_factory):
        sink = session_history_sink(session_factory)
        sink([_record("e1", 2.0), _record("e1", 2.1, bookmaker="Other")])

        db = session_factory()
        try:
            assert db.query(HistoricalOdds).count() == 2
        finally:
            db.close()


class TestEvents:

    def test_upsert_by_event_id(self, db, make_event):
        store = OddsStore(db)
        store.save_events([make_event("e1", books={"A": {"Home": 2.0, "Away": 1.9}})])
        store.save_events([make_event("e1", books={"B": {"Home": 2.2, "Away": 1.7}})])

        rows = db.query(StoredEvent).all()
        assert len(rows) == 1
        assert rows[0].bookmakers[0]["title"] == "B"

    def test_unparseable_commence_time_skipped(self, db, make_event):
        saved = OddsStore(db).save_events([make_event("bad", commence_time="not a date")])
        assert saved == 0
        assert db.query(StoredEvent).count() == 0

    def test_filter_and_order(self, db, make_event):
        store = OddsStore(db)
        store.save_events([
            make_event("late", commence_time="2030-01-03T00:00:00Z"),
            make_event("early", commence_time="2030-01-01T00:00:00Z"),
            make_event("epl", sport_key="soccer_epl", sport_title="EPL"),
        ])

        assert [e.event_id for e in store.get_events("basketball_nba")] == ["early", "late"]
        assert len(store.get_events(limit=1)) == 1
        assert store.get_events()[-1].event_id == "late"

    def test_get_event(self, db, make_event):
        store = OddsStore(db)
        store.save_events([make_event("e1")])

        assert store.get_event("e1").home_team == "Home"
        assert store.get_event("missing") is None

    def test_event_sink(self, session_factory, make_event):
        session_event_sink(session_factory)([make_event("e1"), make_event("e2")])

        db = session_factory()
        try:
            assert db.query(StoredEvent).count() == 2
        finally:
            db.close()


class TestCachedOpportunities:

    def test_round_trip(self, db):
        store = OddsStore(db)
        store.set_cached_opportunities("odds:last", [{"id": "a"}, {"id": "b"}], ttl_seconds=60)

        row = store.get_cached_opportunities("odds:last")
        assert row.count == 2
        assert row.payload[1]["id"] == "b"

    def test_overwrite_same_key(self, db):
        store = OddsStore(db)
        store.set_cached_opportunities("k", [{"id": "a"}], ttl_seconds=60)
        store.set_cached_opportunities("k", [], ttl_seconds=60)

        assert db.query(CachedOpportunitySet).count() == 1
        assert store.get_cached_opportunities("k").count == 0

    def test_expired_is_none(self, db):
        store = OddsStore(db)
        store.set_cached_opportunities("k", [{"id": "a"}], ttl_seconds=0)
        assert store.get_cached_opportunities("k") is None

    def test_missing_is_none(self, db):
        assert OddsStore(db).get_cached_opportunities("nope") is None


class TestCleanup:

    def test_removes_old_events_and_their_history(self, db, make_event):
        store = OddsStore(db)
        now = datetime.now(timezone.utc)
        store.save_events([
            make_event("old", commence_time=_iso(now - timedelta(days=10))),
            make_event("new", commence_time=_iso(now + timedelta(days=1))),
        ])
        store.save_historical_odds([_record("old", 2.0), _record("new", 2.0)])
        store.set_cached_opportunities("k", [], ttl_seconds=0)

        deleted = store.cleanup_old_events(retention_days=7)

        assert deleted == 1
        assert [e.event_id for e in store.get_events()] == ["new"]
        assert store.get_historical_odds("old") == []
        assert len(store.get_historical_odds("new")) == 1
        assert db.query(CachedOpportunitySet).count() == 0

    def test_stale_history_removed(self, db):
        store = OddsStore(db)
        store.save_historical_odds([
            _record("e1", 2.0, minutes_ago=60 * 24 * 3),
            _record("e1", 2.1),
        ])

        assert store.cleanup_old_events(retention_days=1) == 0
        assert [h.price for h in store.get_historical_odds("e1")] == [2.1]

    @pytest.mark.parametrize("days", [7, 30])
    def test_nothing_to_delete(self, db, days):
        assert OddsStore(db).cleanup_old_events(retention_days=days) == 0


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None
