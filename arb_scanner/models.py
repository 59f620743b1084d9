"""
Database models for the arbitrage scanner
SQLAlchemy ORM, SQLite by default (any SQLAlchemy URL via DATABASE_URL)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    JSON,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./arb_scanner.db")

# SQLite connections are shared with the scheduler thread
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SettingsRow(Base):
    """Singleton row holding the runtime settings snapshot"""

    __tablename__ = "settings"

    id = Column(Integer, primary_key=True)
    show_mock_data = Column(Boolean, default=True, nullable=False)
    show_live_data = Column(Boolean, default=True, nullable=False)
    mock_mode = Column(Boolean, default=False, nullable=False)
    cache_timeout_seconds = Column(Integer, default=60, nullable=False)
    bookmaker_preferences = Column(JSON, default=list)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class HistoricalOdds(Base):
    """One observed price: event, bookmaker, outcome, market, time"""

    __tablename__ = "historical_odds"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, nullable=False, index=True)
    bookmaker = Column(String, nullable=False)
    outcome = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    market = Column(String)  # h2h | spreads | totals
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)


class StoredEvent(Base):
    """Latest raw snapshot for an event fetched from the live provider"""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, nullable=False, index=True)
    sport_key = Column(String, nullable=False, index=True)
    sport_title = Column(String, nullable=False)
    home_team = Column(String, nullable=False)
    away_team = Column(String, nullable=False)
    commence_time = Column(DateTime, nullable=False, index=True)

    # Bookmakers / markets / outcomes exactly as validated from the wire
    bookmakers = Column(JSON, default=list)

    created_at = Column(DateTime, default=utcnow)
    last_updated = Column(DateTime, default=utcnow, onupdate=utcnow)


class CachedOpportunitySet(Base):
    """Last served opportunity list for a query key, with an expiry"""

    __tablename__ = "cached_opportunities"

    id = Column(Integer, primary_key=True, index=True)
    cache_key = Column(String, unique=True, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    count = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
