"""
purge_cache.py: wipe persisted odds data so the next scan starts clean.

Tables
------
  cached_opportunities  Served /api/odds result sets.  Always purged.
  historical_odds       Recorded price observations (--all only).
  events                Stored live snapshots (--all only).

The in-memory odds cache belongs to the running server; clear it with
POST /api/cache/clear.

Usage
-----
  python scripts/purge_cache.py                   # dry-run, counts only
  python scripts/purge_cache.py --execute         # delete served result sets
  python scripts/purge_cache.py --execute --all   # ...plus history and events
"""

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from arb_scanner.models import CachedOpportunitySet, HistoricalOdds, SessionLocal, StoredEvent

ALWAYS = [CachedOpportunitySet]
WITH_ALL = [HistoricalOdds, StoredEvent]


def purge(models, execute: bool) -> dict:
    """Row counts per table; rows are deleted only when ``execute`` is set."""
    db = SessionLocal()
    counts = {}
    try:
        for model in models:
            query = db.query(model)
            counts[model.__tablename__] = query.count()
            if execute:
                query.delete(synchronize_session=False)
        if execute:
            db.commit()
        else:
            db.rollback()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge persisted arbitrage scanner data.")
    parser.add_argument("--execute", action="store_true",
                        help="Delete rows.  Without this flag nothing is changed.")
    parser.add_argument("--all", action="store_true",
                        help="Include historical_odds and events.")
    args = parser.parse_args()

    models = ALWAYS + (WITH_ALL if args.all else [])
    try:
        counts = purge(models, execute=args.execute)
    except Exception as exc:
        root = exc.__cause__ or exc
        print(f"ERROR: {type(root).__name__}: {root}")
        sys.exit(1)

    verb = "deleted" if args.execute else "would delete"
    for table, count in counts.items():
        print(f"{table}: {count} row(s), {verb}")
    if not args.all:
        print("historical_odds, events: skipped (pass --all)")

    if args.execute:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        print(f"\nPurge complete at {stamp} UTC. POST /api/cache/clear to drop the in-memory cache.")
    else:
        print("\nDry run: nothing deleted. Re-run with --execute to apply.")


if __name__ == "__main__":
    main()
