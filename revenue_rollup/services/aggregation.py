"""
Revenue rollup: rebuild analytics buckets from the bookings ledger.

A recalculation covers every bucket its date range touches, at each requested
granularity, over the bucket's whole span. The ledger is scanned once over the
union of those spans and each booking is accumulated in memory into the
daily/weekly/monthly/yearly bucket it falls in. Buckets are then replaced one
granularity at a time: delete the span, upsert every accumulated bucket, patch
growth metrics, commit. Before anything is deleted the whole span is flagged
``needs_recalculation`` so a failed job leaves flagged buckets behind, never
silently partial ones.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from revenue_rollup.core.config import settings
from revenue_rollup.core.locks import RangeClaim, RangeLockManager, recalculation_locks
from revenue_rollup.models.analytics import Granularity
from revenue_rollup.models.booking import BookingStatus, ServiceCategory, UNATTRIBUTED
from revenue_rollup.schemas.analytics import (
    CategoryRevenue,
    PaymentMethodRevenue,
    RecalculationResult,
    StatusBreakdown,
    VendorRevenue,
)
from revenue_rollup.schemas.ledger import BookingRecord
from revenue_rollup.services import bucket_store
from revenue_rollup.services.exceptions import InvalidRangeError, RecalculationError
from revenue_rollup.services.growth import apply_growth_metrics
from revenue_rollup.services.ledger import BookingLedger, SqlBookingLedger, local_date, today
from revenue_rollup.utils.periods import PeriodKey, covering_span, derive_period_key

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
UNKNOWN_PAYMENT_METHOD = "unknown"
UNKNOWN_VENDOR_NAME = "Unknown"

_CATEGORIES = {c.value for c in ServiceCategory}


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def average(revenue, bookings: int) -> Decimal:
    """Average order value; 0 when there are no bookings."""
    if not bookings:
        return money(0)
    return money(Decimal(revenue) / bookings)


def ranked(tallies: Dict[str, "Tally"]) -> List[Tuple[str, "Tally"]]:
    """Highest revenue first, ties broken by key so output is deterministic."""
    return sorted(tallies.items(), key=lambda item: (-item[1].revenue, item[0]))


@dataclass
class Tally:
    revenue: Decimal = Decimal("0")
    bookings: int = 0

    def add(self, amount: Decimal) -> None:
        self.revenue += amount
        self.bookings += 1


@dataclass
class VendorTally(Tally):
    vendor_name: str = UNKNOWN_VENDOR_NAME


@dataclass
class BucketAccumulator:
    """In-memory running totals for one bucket during a single ledger pass."""

    key: PeriodKey
    revenue_statuses: frozenset
    total: Tally = field(default_factory=Tally)
    by_category: Dict[str, Tally] = field(default_factory=dict)
    by_transport_category: Dict[str, Tally] = field(default_factory=dict)
    by_status: Dict[str, Tally] = field(default_factory=dict)
    by_payment_method: Dict[str, Tally] = field(default_factory=dict)
    by_vendor: Dict[str, VendorTally] = field(default_factory=dict)

    def add(self, record: BookingRecord) -> None:
        amount = record.total_amount
        status = record.status or BookingStatus.pending.value
        self.by_status.setdefault(status, Tally()).add(amount)

        if status not in self.revenue_statuses:
            return

        self.total.add(amount)

        category = record.service_type if record.service_type in _CATEGORIES else UNATTRIBUTED
        self.by_category.setdefault(category, Tally()).add(amount)

        if category == ServiceCategory.Transportation.value:
            transport = record.transport_category or UNATTRIBUTED
            self.by_transport_category.setdefault(transport, Tally()).add(amount)

        method = record.payment_method or UNKNOWN_PAYMENT_METHOD
        self.by_payment_method.setdefault(method, Tally()).add(amount)

        # Unattributed bookings still count in the totals, just not in the vendor ranking
        if record.vendor_id:
            vendor = self.by_vendor.setdefault(record.vendor_id, VendorTally())
            vendor.add(amount)
            vendor.vendor_name = record.vendor_name or UNKNOWN_VENDOR_NAME

    def to_values(self, top_vendors_limit: int) -> dict:
        """Column values for a bucket row, breakdown maps flattened into lists."""
        categories = [
            CategoryRevenue(
                category=name,
                revenue=money(t.revenue),
                bookings=t.bookings,
                average_order_value=average(t.revenue, t.bookings),
            )
            for name, t in ranked(self.by_category)
        ]
        transport = [
            CategoryRevenue(
                category=name,
                revenue=money(t.revenue),
                bookings=t.bookings,
                average_order_value=average(t.revenue, t.bookings),
            )
            for name, t in ranked(self.by_transport_category)
        ]
        statuses = [
            StatusBreakdown(status=name, count=t.bookings, revenue=money(t.revenue))
            for name, t in ranked(self.by_status)
        ]
        methods = [
            PaymentMethodRevenue(method=name, revenue=money(t.revenue), bookings=t.bookings)
            for name, t in ranked(self.by_payment_method)
        ]
        vendors = [
            VendorRevenue(
                vendor_id=vendor_id,
                vendor_name=t.vendor_name,
                revenue=money(t.revenue),
                bookings=t.bookings,
                average_order_value=average(t.revenue, t.bookings),
            )
            for vendor_id, t in ranked(self.by_vendor)[:top_vendors_limit]
        ]

        return {
            **self.key.as_columns(),
            "total_revenue": money(self.total.revenue),
            "total_bookings": self.total.bookings,
            "average_order_value": average(self.total.revenue, self.total.bookings),
            "revenue_by_category": [c.model_dump(mode="json") for c in categories],
            "revenue_by_transport_category": [c.model_dump(mode="json") for c in transport],
            "bookings_by_status": [s.model_dump(mode="json") for s in statuses],
            "revenue_by_payment_method": [m.model_dump(mode="json") for m in methods],
            "top_vendors": [v.model_dump(mode="json") for v in vendors],
            "revenue_growth": 0.0,
            "booking_growth": 0.0,
            "aov_growth": 0.0,
            "needs_recalculation": False,
        }


class RecalculationJob:
    """
    One explicit rebuild of the buckets touched by [start_date, end_date].

    Jobs whose spans overlap at the same granularity are serialized through
    the shared range lock; disjoint jobs run side by side.
    """

    def __init__(
        self,
        start_date: Optional[date],
        end_date: Optional[date],
        granularities: Optional[Iterable[Granularity]] = None,
        ledger: Optional[BookingLedger] = None,
        locks: Optional[RangeLockManager] = None,
    ):
        if start_date is None:
            raise InvalidRangeError("start_date is required")
        if end_date is None:
            raise InvalidRangeError("end_date is required")
        if start_date > end_date:
            raise InvalidRangeError(
                f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}"
            )

        requested = set(Granularity(g) for g in (granularities or Granularity))
        # Rebuilt in declaration order: daily, weekly, monthly, yearly
        self.granularities = [g for g in Granularity if g in requested]
        self.start_date = start_date
        self.end_date = end_date
        self.ledger = ledger or SqlBookingLedger()
        self.locks = locks or recalculation_locks
        self.spans = {
            g: covering_span(g, start_date, end_date) for g in self.granularities
        }

    @property
    def scan_window(self) -> Tuple[date, date]:
        return (
            min(lo for lo, _ in self.spans.values()),
            max(hi for _, hi in self.spans.values()),
        )

    def claims(self) -> List[RangeClaim]:
        # A rebuild also rewrites growth on the bucket right after its span
        return [
            RangeClaim(g.value, lo, derive_period_key(g, hi).next().end_date)
            for g, (lo, hi) in self.spans.items()
        ]

    def run(self, db: Session) -> RecalculationResult:
        scan_from, scan_to = self.scan_window
        logger.info(
            "Recalculating revenue analytics for %s..%s (scan %s..%s, %s)",
            self.start_date, self.end_date, scan_from, scan_to,
            ", ".join(g.value for g in self.granularities),
        )

        with self.locks.hold(self.claims(), timeout=settings.RECALCULATION_LOCK_TIMEOUT):
            self._flag_spans(db)
            accumulators, processed = self._scan(db, scan_from, scan_to)
            logger.info("Processed %d ledger record(s)", processed)

            run_at = datetime.now(timezone.utc)
            written = 0
            rebuilt: List[Granularity] = []
            for granularity in self.granularities:
                try:
                    written += self._rebuild(db, granularity, accumulators[granularity], run_at)
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    logger.exception(
                        "Rebuilding %s buckets failed; remaining buckets stay flagged",
                        granularity.value,
                    )
                    raise RecalculationError(
                        f"Failed to rebuild {granularity.value} buckets: {exc}",
                        rebuilt=[g.value for g in rebuilt],
                        records_processed=processed,
                    ) from exc
                rebuilt.append(granularity)

        logger.info("Revenue analytics recalculated: %d bucket(s) written", written)
        return RecalculationResult(
            start_date=self.start_date,
            end_date=self.end_date,
            scan_from=scan_from,
            scan_to=scan_to,
            records_processed=processed,
            buckets_written=written,
            granularities=self.granularities,
        )

    def _flag_spans(self, db: Session) -> None:
        try:
            for granularity, (lo, hi) in self.spans.items():
                bucket_store.flag_range(db, granularity, lo, hi)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Could not flag buckets before recalculation")
            raise RecalculationError(f"Failed to flag buckets: {exc}") from exc

    def _scan(self, db: Session, scan_from: date, scan_to: date):
        accumulators: Dict[Granularity, Dict[PeriodKey, BucketAccumulator]] = {
            g: {} for g in self.granularities
        }
        revenue_statuses = frozenset(settings.REVENUE_STATUSES)
        processed = 0
        try:
            for record in self.ledger.fetch_bookings(db, scan_from, scan_to):
                on = local_date(record.created_at)
                for granularity, (lo, hi) in self.spans.items():
                    if not lo <= on <= hi:
                        continue
                    key = derive_period_key(granularity, on)
                    acc = accumulators[granularity].get(key)
                    if acc is None:
                        acc = BucketAccumulator(key, revenue_statuses)
                        accumulators[granularity][key] = acc
                    acc.add(record)
                processed += 1
        except Exception as exc:
            db.rollback()
            logger.exception("Ledger scan failed after %d record(s)", processed)
            raise RecalculationError(
                f"Ledger scan failed: {exc}", records_processed=processed
            ) from exc
        return accumulators, processed

    def _rebuild(
        self,
        db: Session,
        granularity: Granularity,
        accumulators: Dict[PeriodKey, BucketAccumulator],
        run_at: datetime,
    ) -> int:
        lo, hi = self.spans[granularity]
        removed = bucket_store.delete_range(db, granularity, lo, hi)

        buckets = []
        for key in sorted(accumulators, key=lambda k: k.anchor_date):
            values = accumulators[key].to_values(settings.TOP_VENDORS_LIMIT)
            values["last_updated"] = run_at
            buckets.append(bucket_store.upsert(db, values))

        # Oldest first: each bucket's predecessor is already final when it is compared
        for bucket in buckets:
            apply_growth_metrics(db, bucket)

        # The period right after the span compares against a bucket that just changed
        successor = bucket_store.get_bucket(db, derive_period_key(granularity, hi).next())
        if successor is not None:
            apply_growth_metrics(db, successor)

        logger.info(
            "Rebuilt %d %s bucket(s) for %s..%s (%d removed)",
            len(buckets), granularity.value, lo, hi, removed,
        )
        return len(buckets)


def recalculate(
    db: Session,
    start_date: Optional[date],
    end_date: Optional[date] = None,
    granularities: Optional[Iterable[Granularity]] = None,
    ledger: Optional[BookingLedger] = None,
) -> RecalculationResult:
    """Rebuild all buckets touched by [start_date, end_date]; end defaults to today."""
    job = RecalculationJob(
        start_date,
        end_date or today(),
        granularities=granularities,
        ledger=ledger,
    )
    return job.run(db)
