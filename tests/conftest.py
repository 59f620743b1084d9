"""Shared builders for market snapshots and database sessions."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from arb_scanner.models import Base
from arb_scanner.schemas import OddsApiEvent


def build_event(
    event_id="evt_1",
    books=None,
    market="h2h",
    sport_key="basketball_nba",
    sport_title="NBA",
    home="Home",
    away="Away",
    commence_time="2030-01-01T00:00:00Z",
):
    """Snapshot from ``{bookmaker title: {outcome: price}}`` for one market."""
    bookmakers = []
    for title, prices in (books or {}).items():
        bookmakers.append({
            "key": title.lower().replace(" ", ""),
            "title": title,
            "markets": [{
                "key": market,
                "outcomes": [{"name": name, "price": price} for name, price in prices.items()],
            }],
        })
    return OddsApiEvent.model_validate({
        "id": event_id,
        "sport_key": sport_key,
        "sport_title": sport_title,
        "commence_time": commence_time,
        "home_team": home,
        "away_team": away,
        "bookmakers": bookmakers,
    })


@pytest.fixture
def make_event():
    return build_event


@pytest.fixture
def session_factory():
    """Sessionmaker bound to a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
