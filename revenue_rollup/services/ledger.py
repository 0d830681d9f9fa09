import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Protocol, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from revenue_rollup.core.config import settings
from revenue_rollup.models.booking import Booking
from revenue_rollup.schemas.ledger import BookingRecord

logger = logging.getLogger(__name__)


def analytics_zone() -> ZoneInfo:
    return ZoneInfo(settings.ANALYTICS_TIMEZONE)


def local_date(ts: datetime) -> date:
    """Calendar date of a ledger timestamp in the analytics timezone."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(analytics_zone()).date()


def today() -> date:
    return datetime.now(analytics_zone()).date()


def day_window(start: date, end: date) -> Tuple[datetime, datetime]:
    """UTC half-open [lo, hi) covering local calendar days start..end."""
    zone = analytics_zone()
    lo = datetime.combine(start, time.min, tzinfo=zone)
    hi = datetime.combine(end + timedelta(days=1), time.min, tzinfo=zone)
    return lo.astimezone(timezone.utc), hi.astimezone(timezone.utc)


class BookingLedger(Protocol):
    def fetch_bookings(self, db: Session, start: date, end: date) -> Iterator[BookingRecord]:
        ...

    def date_bounds(self, db: Session) -> Optional[Tuple[date, date]]:
        ...


class SqlBookingLedger:
    """Streams booking rows from the ledger table in creation order."""

    def __init__(self, batch_size: Optional[int] = None):
        self.batch_size = batch_size or settings.LEDGER_BATCH_SIZE

    def fetch_bookings(self, db: Session, start: date, end: date) -> Iterator[BookingRecord]:
        lo, hi = day_window(start, end)
        rows = (
            db.query(Booking)
            .filter(Booking.created_at >= lo, Booking.created_at < hi)
            .order_by(Booking.created_at, Booking.id)
            .yield_per(self.batch_size)
        )
        for row in rows:
            yield BookingRecord.model_validate(row)

    def date_bounds(self, db: Session) -> Optional[Tuple[date, date]]:
        """Local dates of the earliest and latest booking, or None for an empty ledger."""
        earliest, latest = db.query(
            func.min(Booking.created_at), func.max(Booking.created_at)
        ).one()
        if earliest is None:
            return None
        return local_date(earliest), local_date(latest)
