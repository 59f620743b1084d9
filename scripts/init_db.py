#!/usr/bin/env python3
"""
Create the scanner's tables and, optionally, the default settings row.

Usage:
  python scripts/init_db.py               # create missing tables
  python scripts/init_db.py --seed        # ...and write default settings
  python scripts/init_db.py --drop        # drop everything first (asks)
  python scripts/init_db.py --check       # connection test only
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import inspect, text

from arb_scanner.models import DATABASE_URL, Base, SessionLocal, engine
from arb_scanner.services.storage import OddsStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def check_connection() -> bool:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Cannot reach %s: %s", DATABASE_URL, e)
        return False
    finally:
        db.close()
    logger.info("Connected to %s", DATABASE_URL)
    return True


def create_tables(drop_existing: bool = False) -> bool:
    """Create every table in ``Base.metadata``; returns False if the drop was aborted."""
    if drop_existing:
        answer = input("Drop ALL scanner tables and their data? Type 'yes' to confirm: ")
        if answer.strip().lower() != "yes":
            logger.info("Drop aborted, nothing changed")
            return False
        Base.metadata.drop_all(bind=engine)
        logger.warning("All scanner tables dropped")

    Base.metadata.create_all(bind=engine)
    tables = sorted(inspect(engine).get_table_names())
    logger.info("Tables present: %s", ", ".join(tables))
    return True


def seed_settings() -> None:
    """Persist the default settings snapshot (MOCK_ODDS decides mock_mode)."""
    db = SessionLocal()
    try:
        snapshot = OddsStore(db).get_settings()
        logger.info("Settings row ready: %s", snapshot.model_dump())
    except Exception as e:
        db.rollback()
        logger.error("Could not seed settings: %s", e)
        raise
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Initialise the arbitrage scanner database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables first (destroys data)")
    parser.add_argument("--seed", action="store_true", help="Write the default settings row")
    parser.add_argument("--check", action="store_true", help="Only test the connection")
    args = parser.parse_args()

    if not check_connection():
        return 1
    if args.check:
        return 0

    if create_tables(drop_existing=args.drop) and args.seed:
        seed_settings()
    return 0


if __name__ == "__main__":
    sys.exit(main())
