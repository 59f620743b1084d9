"""
Record store: settings, price history, stored events, and served results.

:class:`OddsStore` wraps one SQLAlchemy session.  Route handlers get one
per request through ``get_db``; background callers (the aggregator's
sinks, the cleanup job) open their own via the ``session_*`` helpers at
the bottom of this module, which commit or roll back and always close.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional

from sqlalchemy.orm import Session

from arb_scanner.models import (
    CachedOpportunitySet,
    HistoricalOdds,
    SessionLocal,
    SettingsRow,
    StoredEvent,
    utcnow,
)
from arb_scanner.schemas import OddsApiEvent, SettingsSnapshot, SettingsUpdate
from arb_scanner.services.opportunities import HistoricalOddsRecord

logger = logging.getLogger(__name__)

EVENT_RETENTION_DAYS = int(os.getenv("EVENT_RETENTION_DAYS", "7"))


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def default_settings() -> SettingsSnapshot:
    """Settings used before anything has been saved; MOCK_ODDS seeds mock_mode."""
    return SettingsSnapshot(mock_mode=_env_flag("MOCK_ODDS"))


class OddsStore:
    """CRUD over the scanner's tables for a single session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _settings_row(self) -> SettingsRow:
        row = self.db.query(SettingsRow).order_by(SettingsRow.id).first()
        if row is None:
            defaults = default_settings()
            row = SettingsRow(**defaults.model_dump())
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        return row

    def get_settings(self) -> SettingsSnapshot:
        row = self._settings_row()
        return SettingsSnapshot(
            show_mock_data=row.show_mock_data,
            show_live_data=row.show_live_data,
            mock_mode=row.mock_mode,
            cache_timeout_seconds=row.cache_timeout_seconds,
            bookmaker_preferences=list(row.bookmaker_preferences or []),
        )

    def update_settings(self, update: SettingsUpdate) -> SettingsSnapshot:
        """Apply the fields present in ``update`` and return the new snapshot."""
        row = self._settings_row()
        for key, value in update.model_dump(exclude_none=True).items():
            setattr(row, key, value)
        self.db.commit()
        logger.info("Settings updated: %s", update.model_dump(exclude_none=True))
        return self.get_settings()

    # ------------------------------------------------------------------
    # Historical odds
    # ------------------------------------------------------------------

    def save_historical_odds(self, records: Iterable[HistoricalOddsRecord]) -> int:
        rows = [
            HistoricalOdds(
                event_id=r.event_id,
                bookmaker=r.bookmaker,
                outcome=r.outcome,
                price=r.price,
                market=r.market,
                timestamp=_naive_utc(r.timestamp),
            )
            for r in records
        ]
        self.db.add_all(rows)
        self.db.commit()
        return len(rows)

    def get_historical_odds(self, event_id: str, limit: int = 500) -> List[HistoricalOdds]:
        """Price history for one event, oldest first."""
        return (
            self.db.query(HistoricalOdds)
            .filter(HistoricalOdds.event_id == event_id)
            .order_by(HistoricalOdds.timestamp, HistoricalOdds.id)
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Stored events
    # ------------------------------------------------------------------

    def save_events(self, events: Iterable[OddsApiEvent]) -> int:
        """Insert new events and refresh existing ones (keyed by event id)."""
        saved = 0
        for event in events:
            commence = event.commence_datetime
            if commence is None:
                logger.warning("Skipping event %s: unparseable commence_time %r",
                               event.id, event.commence_time)
                continue
            bookmakers = [b.model_dump() for b in event.bookmakers]
            row = self.db.query(StoredEvent).filter(StoredEvent.event_id == event.id).first()
            if row is None:
                row = StoredEvent(event_id=event.id)
                self.db.add(row)
            row.sport_key = event.sport_key
            row.sport_title = event.sport_title
            row.home_team = event.home_team
            row.away_team = event.away_team
            row.commence_time = _naive_utc(commence)
            row.bookmakers = bookmakers
            row.last_updated = utcnow()
            saved += 1
        self.db.commit()
        return saved

    def get_events(self, sport_key: Optional[str] = None, limit: int = 200) -> List[StoredEvent]:
        query = self.db.query(StoredEvent)
        if sport_key:
            query = query.filter(StoredEvent.sport_key == sport_key)
        return query.order_by(StoredEvent.commence_time).limit(limit).all()

    def get_event(self, event_id: str) -> Optional[StoredEvent]:
        return self.db.query(StoredEvent).filter(StoredEvent.event_id == event_id).first()

    # ------------------------------------------------------------------
    # Served opportunity sets
    # ------------------------------------------------------------------

    def set_cached_opportunities(self, cache_key: str, payload: list, ttl_seconds: int) -> None:
        now = utcnow()
        row = (
            self.db.query(CachedOpportunitySet)
            .filter(CachedOpportunitySet.cache_key == cache_key)
            .first()
        )
        if row is None:
            row = CachedOpportunitySet(cache_key=cache_key)
            self.db.add(row)
        row.payload = payload
        row.count = len(payload)
        row.created_at = now
        row.expires_at = now + timedelta(seconds=ttl_seconds)
        self.db.commit()

    def get_cached_opportunities(self, cache_key: str) -> Optional[CachedOpportunitySet]:
        """Stored set for ``cache_key``, or None when absent or expired."""
        row = (
            self.db.query(CachedOpportunitySet)
            .filter(CachedOpportunitySet.cache_key == cache_key)
            .first()
        )
        if row is None or row.expires_at <= utcnow():
            return None
        return row

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_old_events(self, retention_days: int = EVENT_RETENTION_DAYS) -> int:
        """
        Delete events that started more than ``retention_days`` ago, their
        price history, and expired opportunity sets.

        Returns:
            Number of events deleted.
        """
        cutoff = utcnow() - timedelta(days=retention_days)

        old_ids = [
            event_id
            for (event_id,) in self.db.query(StoredEvent.event_id)
            .filter(StoredEvent.commence_time < cutoff)
            .all()
        ]
        deleted = 0
        if old_ids:
            self.db.query(HistoricalOdds).filter(
                HistoricalOdds.event_id.in_(old_ids)
            ).delete(synchronize_session=False)
            deleted = self.db.query(StoredEvent).filter(
                StoredEvent.event_id.in_(old_ids)
            ).delete(synchronize_session=False)

        history = self.db.query(HistoricalOdds).filter(
            HistoricalOdds.timestamp < cutoff
        ).delete(synchronize_session=False)
        expired = self.db.query(CachedOpportunitySet).filter(
            CachedOpportunitySet.expires_at <= utcnow()
        ).delete(synchronize_session=False)
        self.db.commit()

        logger.info(
            "Cleanup: removed %d events, %d stale price rows, %d expired result sets",
            deleted, history, expired,
        )
        return deleted


# ---------------------------------------------------------------------------
# Session-scoped helpers for callers outside a request
# ---------------------------------------------------------------------------

def session_settings_loader(
    session_factory: Callable[[], Session] = SessionLocal,
) -> Callable[[], SettingsSnapshot]:
    """Settings loader that opens a fresh session on every call."""

    def load() -> SettingsSnapshot:
        db = session_factory()
        try:
            return OddsStore(db).get_settings()
        finally:
            db.close()

    return load


def session_history_sink(
    session_factory: Callable[[], Session] = SessionLocal,
) -> Callable[[List[HistoricalOddsRecord]], None]:
    def sink(records: List[HistoricalOddsRecord]) -> None:
        db = session_factory()
        try:
            count = OddsStore(db).save_historical_odds(records)
            logger.debug("Recorded %d historical prices", count)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return sink


def session_event_sink(
    session_factory: Callable[[], Session] = SessionLocal,
) -> Callable[[List[OddsApiEvent]], None]:
    def sink(events: List[OddsApiEvent]) -> None:
        db = session_factory()
        try:
            count = OddsStore(db).save_events(events)
            logger.debug("Saved %d events", count)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return sink
