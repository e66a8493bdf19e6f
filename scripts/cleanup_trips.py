#!/usr/bin/env python3
"""Delete trips that have not been updated within the TTL.

Removes the trip record, its retrieval index and its uploads directory.

Suggested cron: 30 3 * * * cd /path/to/trip-planner && . .env && venv/bin/python scripts/cleanup_trips.py

Usage:
    python scripts/cleanup_trips.py                  # TTL from TRIP_TTL_DAYS (default 14)
    python scripts/cleanup_trips.py --ttl-days 30
    python scripts/cleanup_trips.py --dry-run        # list what would be deleted
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from trip_planner.config import load_config
from trip_planner.store import TripStore

logger = logging.getLogger("cleanup_trips")


def main() -> None:
    cfg = load_config()

    parser = argparse.ArgumentParser(description="Delete trips older than the TTL")
    parser.add_argument(
        "--ttl-days",
        type=int,
        default=cfg.trip_ttl_days,
        help=f"Delete trips not updated for this many days (default: {cfg.trip_ttl_days})",
    )
    parser.add_argument("--data-dir", default=cfg.data_dir, help="Override data directory")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without deleting",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if args.ttl_days < 0:
        logger.error("--ttl-days must be >= 0")
        sys.exit(2)

    store = TripStore(args.data_dir)
    deleted = store.cleanup_old_trips(args.ttl_days, dry_run=args.dry_run)
    verb = "would delete" if args.dry_run else "deleted"
    logger.info("Cleanup: %s %d trip(s) older than %d days.", verb, deleted, args.ttl_days)


if __name__ == "__main__":
    main()
