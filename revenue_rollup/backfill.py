"""
Populate revenue analytics from historical bookings.

Usage:
    revenue-backfill [START END] [--granularity daily --granularity monthly ...]
    revenue-backfill 2024-01-01 2025-12-31

Without dates every booking in the ledger is processed, from the earliest to
the latest creation date.
"""
import argparse
import logging
import sys
import time
from datetime import date

from revenue_rollup.core.config import settings
from revenue_rollup.db.session import SessionLocal
from revenue_rollup.models.analytics import Granularity
from revenue_rollup.services.aggregation import RecalculationJob
from revenue_rollup.services.exceptions import AnalyticsError
from revenue_rollup.services.ledger import SqlBookingLedger

logger = logging.getLogger("revenue_rollup.backfill")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="revenue-backfill",
        description="Rebuild revenue analytics buckets from the bookings ledger.",
    )
    parser.add_argument("start", nargs="?", type=date.fromisoformat, help="First day (YYYY-MM-DD)")
    parser.add_argument("end", nargs="?", type=date.fromisoformat, help="Last day (YYYY-MM-DD)")
    parser.add_argument(
        "--granularity",
        action="append",
        choices=[g.value for g in Granularity],
        help="Limit the rebuild to these granularities (repeatable, default: all)",
    )
    return parser


def main(argv=None, session_factory=SessionLocal) -> int:
    args = build_parser().parse_args(argv)
    if (args.start is None) != (args.end is None):
        logger.error("Provide both START and END, or neither to process the whole ledger.")
        return 2

    ledger = SqlBookingLedger()
    db = session_factory()
    try:
        if args.start is None:
            bounds = ledger.date_bounds(db)
            if bounds is None:
                logger.info("No bookings found in the ledger. Nothing to migrate.")
                return 0
            start, end = bounds
            logger.info("Processing ALL bookings from %s to %s", start, end)
        else:
            start, end = args.start, args.end
            logger.info("Processing bookings from %s to %s", start, end)

        started = time.monotonic()
        job = RecalculationJob(start, end, granularities=args.granularity, ledger=ledger)
        result = job.run(db)
        elapsed = time.monotonic() - started

        logger.info("Processed %d booking(s)", result.records_processed)
        logger.info("Wrote %d analytics bucket(s)", result.buckets_written)
        logger.info("Time taken: %.2f seconds", elapsed)
        return 0
    except AnalyticsError:
        logger.exception("Migration failed")
        return 1
    finally:
        db.close()


def run():
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
    sys.exit(main())


if __name__ == "__main__":
    run()
