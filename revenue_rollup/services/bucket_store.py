"""
Persistence for revenue analytics buckets.

A bucket is identified by (granularity, period_key); the unique constraint on
that pair is what keeps a single document per period. Writes go through the
dialect's INSERT .. ON CONFLICT so concurrent callers for the same key never
race a read-then-insert.
"""
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from revenue_rollup.models.analytics import AnalyticsBucket, Granularity
from revenue_rollup.utils.periods import PeriodKey, derive_period_key

CONFLICT_COLUMNS = ["granularity", "period_key"]

# Columns a recalculation rewrites on conflict (identity and created_at stay)
_REPLACED_COLUMNS = (
    "year", "month", "week", "day", "anchor_date",
    "total_revenue", "total_bookings", "average_order_value",
    "revenue_by_category", "revenue_by_transport_category",
    "bookings_by_status", "revenue_by_payment_method", "top_vendors",
    "revenue_growth", "booking_growth", "aov_growth",
    "last_updated", "needs_recalculation",
)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(AnalyticsBucket)
    if dialect == "sqlite":
        return sqlite.insert(AnalyticsBucket)
    raise NotImplementedError(f"Bucket upsert is not supported on {dialect}")


def empty_bucket_values(key: PeriodKey) -> dict:
    """Zeroed placeholder, flagged until a recalculation fills it from the ledger."""
    return {
        **key.as_columns(),
        "total_revenue": 0,
        "total_bookings": 0,
        "average_order_value": 0,
        "revenue_by_category": [],
        "revenue_by_transport_category": [],
        "bookings_by_status": [],
        "revenue_by_payment_method": [],
        "top_vendors": [],
        "revenue_growth": 0.0,
        "booking_growth": 0.0,
        "aov_growth": 0.0,
        "needs_recalculation": True,
    }


def get_bucket(db: Session, key: PeriodKey) -> Optional[AnalyticsBucket]:
    return (
        db.query(AnalyticsBucket)
        .filter(
            AnalyticsBucket.granularity == key.granularity,
            AnalyticsBucket.period_key == key.period_key,
        )
        .populate_existing()
        .one_or_none()
    )


def get_or_create(db: Session, granularity: Granularity, on: date) -> AnalyticsBucket:
    """Return the bucket covering `on`, inserting a zeroed one if it is missing."""
    key = derive_period_key(granularity, on)
    values = empty_bucket_values(key)
    values["last_updated"] = datetime.now(timezone.utc)
    db.execute(_insert_for(db).values(**values).on_conflict_do_nothing(index_elements=CONFLICT_COLUMNS))
    return get_bucket(db, key)


def upsert(db: Session, values: dict) -> AnalyticsBucket:
    """Replace-or-insert a fully computed bucket by its (granularity, period_key)."""
    values = dict(values)
    values.setdefault("last_updated", datetime.now(timezone.utc))
    stmt = _insert_for(db).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=CONFLICT_COLUMNS,
        set_={col: stmt.excluded[col] for col in _REPLACED_COLUMNS if col in values},
    )
    db.execute(stmt)
    return get_bucket(db, derive_period_key(values["granularity"], values["anchor_date"]))


def delete_range(db: Session, granularity: Granularity, start: date, end: date) -> int:
    """Remove every bucket of a granularity anchored within [start, end]."""
    return (
        db.query(AnalyticsBucket)
        .filter(
            AnalyticsBucket.granularity == granularity,
            AnalyticsBucket.anchor_date >= start,
            AnalyticsBucket.anchor_date <= end,
        )
        .delete(synchronize_session=False)
    )


def flag_range(db: Session, granularity: Granularity, start: date, end: date) -> int:
    """Mark buckets anchored within [start, end] as waiting for a rebuild."""
    return (
        db.query(AnalyticsBucket)
        .filter(
            AnalyticsBucket.granularity == granularity,
            AnalyticsBucket.anchor_date >= start,
            AnalyticsBucket.anchor_date <= end,
        )
        .update({"needs_recalculation": True}, synchronize_session=False)
    )


def list_range(db: Session, granularity: Granularity, start: date, end: date) -> List[AnalyticsBucket]:
    return (
        db.query(AnalyticsBucket)
        .filter(
            AnalyticsBucket.granularity == granularity,
            AnalyticsBucket.anchor_date >= start,
            AnalyticsBucket.anchor_date <= end,
        )
        .order_by(AnalyticsBucket.anchor_date)
        .populate_existing()
        .all()
    )
