from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.orm import Session

from revenue_rollup.models.analytics import AnalyticsBucket
from revenue_rollup.schemas.analytics import GrowthMetrics
from revenue_rollup.services import bucket_store
from revenue_rollup.utils.periods import derive_period_key


def percent_change(current, previous) -> float:
    """(current - previous) / previous * 100, rounded to 2 places; 0 when previous is 0."""
    previous = Decimal(str(previous or 0))
    if previous == 0:
        return 0.0
    change = (Decimal(str(current or 0)) - previous) / previous * 100
    return float(change.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def compare(current: AnalyticsBucket, previous: Optional[AnalyticsBucket]) -> GrowthMetrics:
    if previous is None:
        return GrowthMetrics()
    return GrowthMetrics(
        revenue_growth=percent_change(current.total_revenue, previous.total_revenue),
        booking_growth=percent_change(current.total_bookings, previous.total_bookings),
        aov_growth=percent_change(current.average_order_value, previous.average_order_value),
    )


def previous_bucket(db: Session, bucket: AnalyticsBucket) -> Optional[AnalyticsBucket]:
    """The bucket one period earlier at the same granularity, if it was ever written."""
    key = derive_period_key(bucket.granularity, bucket.anchor_date).previous()
    return bucket_store.get_bucket(db, key)


def apply_growth_metrics(db: Session, bucket: AnalyticsBucket) -> GrowthMetrics:
    """Compute growth vs. the preceding bucket and write it onto `bucket` (flushed, not committed)."""
    metrics = compare(bucket, previous_bucket(db, bucket))
    bucket.revenue_growth = metrics.revenue_growth
    bucket.booking_growth = metrics.booking_growth
    bucket.aov_growth = metrics.aov_growth
    db.flush()
    return metrics
