"""
Read side of the revenue rollup.

Everything here works on persisted buckets only; the ledger is never touched.
Summaries over several buckets are a second aggregation pass: breakdowns are
summed per key across buckets first, then averages, shares and rankings are
recomputed from the merged totals.
"""
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from revenue_rollup.core.config import settings
from revenue_rollup.models.analytics import AnalyticsBucket, Granularity
from revenue_rollup.schemas.analytics import (
    CategoryBreakdown,
    CategoryBreakdownResponse,
    CategoryDayBreakdown,
    CategoryDayPoint,
    CategoryRevenue,
    GrowthMetrics,
    GrowthMetricsResponse,
    RevenueResponse,
    TimeSeriesPoint,
    TransportBreakdown,
    TransportBreakdownResponse,
    VendorAnalyticsResponse,
    VendorBreakdown,
    VendorDayPoint,
    VendorPerformance,
)
from revenue_rollup.services import bucket_store
from revenue_rollup.services.aggregation import Tally, VendorTally, average, money, ranked
from revenue_rollup.services.exceptions import InvalidRangeError
from revenue_rollup.services.growth import apply_growth_metrics
from revenue_rollup.services.ledger import today
from revenue_rollup.utils.periods import select_granularity


def window(days: int, end: Optional[date] = None):
    """The last `days` calendar days ending on `end` (inclusive)."""
    if days < 1:
        raise InvalidRangeError("period must be at least one day")
    end = end or today()
    return end - timedelta(days=days - 1), end


def get_analytics_for_range(
    db: Session, granularity: Granularity, start: date, end: date
) -> List[AnalyticsBucket]:
    """Persisted buckets of one granularity anchored in [start, end], oldest first."""
    if start is None or end is None or start > end:
        raise InvalidRangeError("date_from must be on or before date_to")
    return bucket_store.list_range(db, Granularity(granularity), start, end)


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_categories(buckets: List[AnalyticsBucket], attr: str = "revenue_by_category") -> Dict[str, Tally]:
    merged: Dict[str, Tally] = {}
    for bucket in buckets:
        for entry in getattr(bucket, attr) or []:
            tally = merged.setdefault(entry["category"], Tally())
            tally.revenue += Decimal(str(entry["revenue"]))
            tally.bookings += entry["bookings"]
    return merged


def merge_vendors(buckets: List[AnalyticsBucket]) -> Dict[str, VendorTally]:
    merged: Dict[str, VendorTally] = {}
    for bucket in buckets:
        for entry in bucket.top_vendors or []:
            vendor_id = entry.get("vendor_id")
            if not vendor_id:
                continue
            tally = merged.setdefault(vendor_id, VendorTally(vendor_name=entry["vendor_name"]))
            tally.revenue += Decimal(str(entry["revenue"]))
            tally.bookings += entry["bookings"]
    return merged


def vendor_breakdowns(merged: Dict[str, VendorTally], limit: Optional[int] = None) -> List[VendorBreakdown]:
    rows = ranked(merged)
    if limit is not None:
        rows = rows[:limit]
    return [
        VendorBreakdown(
            vendor_id=vendor_id,
            vendor_name=t.vendor_name,
            revenue=money(t.revenue),
            bookings=t.bookings,
            average_order_value=average(t.revenue, t.bookings),
        )
        for vendor_id, t in rows
    ]


def compose_summary(
    buckets: List[AnalyticsBucket],
    granularity: Granularity,
    date_from: date,
    date_to: date,
    days: int,
) -> RevenueResponse:
    """Merge an ordered run of buckets into one dashboard summary."""
    total_revenue = sum((Decimal(str(b.total_revenue)) for b in buckets), Decimal("0"))
    total_bookings = sum(b.total_bookings for b in buckets)

    time_series = [
        TimeSeriesPoint(
            period=b.period_key,
            anchor_date=b.anchor_date,
            revenue=money(b.total_revenue),
            bookings=b.total_bookings,
        )
        for b in buckets
    ]

    revenue_by_category = [
        CategoryBreakdown(
            category=name,
            revenue=money(t.revenue),
            bookings=t.bookings,
            average_order_value=average(t.revenue, t.bookings),
            percentage=round(float(t.revenue / total_revenue * 100), 2) if total_revenue else 0.0,
        )
        for name, t in ranked(merge_categories(buckets))
    ]

    growth = GrowthMetrics(**buckets[-1].growth_metrics) if buckets else GrowthMetrics()

    return RevenueResponse(
        period=days,
        granularity=granularity,
        date_from=date_from,
        date_to=date_to,
        total_revenue=money(total_revenue),
        total_bookings=total_bookings,
        average_order_value=average(total_revenue, total_bookings),
        time_series=time_series,
        revenue_by_category=revenue_by_category,
        top_vendors=vendor_breakdowns(merge_vendors(buckets), settings.TOP_VENDORS_LIMIT),
        growth_metrics=growth,
        needs_recalculation=any(b.needs_recalculation for b in buckets),
    )


# ---------------------------------------------------------------------------
# Dashboard reads
# ---------------------------------------------------------------------------


def get_revenue_summary(db: Session, days: int, end: Optional[date] = None) -> RevenueResponse:
    """Composed summary for the last `days` days at the resolution the window calls for."""
    date_from, date_to = window(days, end)
    granularity = select_granularity(days)
    buckets = get_analytics_for_range(db, granularity, date_from, date_to)
    return compose_summary(buckets, granularity, date_from, date_to, days)


def get_category_breakdown(
    db: Session, days: int, category: Optional[str] = None, end: Optional[date] = None
) -> CategoryBreakdownResponse:
    date_from, date_to = window(days, end)
    buckets = get_analytics_for_range(db, Granularity.daily, date_from, date_to)

    if category:
        data = []
        for b in buckets:
            entry = next((c for c in b.revenue_by_category if c["category"] == category), None)
            data.append(CategoryDayPoint(
                anchor_date=b.anchor_date,
                revenue=money(entry["revenue"]) if entry else money(0),
                bookings=entry["bookings"] if entry else 0,
            ))
    else:
        data = [
            CategoryDayBreakdown(
                anchor_date=b.anchor_date,
                categories=[CategoryRevenue(**c) for c in b.revenue_by_category],
            )
            for b in buckets
        ]

    return CategoryBreakdownResponse(period=days, category=category or "all", data=data)


def get_vendor_analytics(
    db: Session, days: int, vendor_id: Optional[str] = None, end: Optional[date] = None
) -> VendorAnalyticsResponse:
    """
    One vendor's daily series, or every vendor merged and ranked.

    Built from each day's top-vendor snapshot, so a vendor outside a day's
    top list contributes nothing for that day.
    """
    date_from, date_to = window(days, end)
    buckets = get_analytics_for_range(db, Granularity.daily, date_from, date_to)

    if not vendor_id:
        return VendorAnalyticsResponse(period=days, vendors=vendor_breakdowns(merge_vendors(buckets)))

    daily = []
    for b in buckets:
        entry = next((v for v in b.top_vendors if v["vendor_id"] == vendor_id), None)
        revenue = Decimal(str(entry["revenue"])) if entry else Decimal("0")
        bookings = entry["bookings"] if entry else 0
        daily.append(VendorDayPoint(
            anchor_date=b.anchor_date,
            revenue=money(revenue),
            bookings=bookings,
            average_order_value=average(revenue, bookings),
        ))

    total_revenue = sum((d.revenue for d in daily), Decimal("0"))
    total_bookings = sum(d.bookings for d in daily)
    performance = VendorPerformance(
        vendor_id=vendor_id,
        total_revenue=money(total_revenue),
        total_bookings=total_bookings,
        average_order_value=average(total_revenue, total_bookings),
        daily_data=daily,
    )
    return VendorAnalyticsResponse(period=days, vendor=performance)


def get_transport_breakdown(db: Session, days: int, end: Optional[date] = None) -> TransportBreakdownResponse:
    date_from, date_to = window(days, end)
    buckets = get_analytics_for_range(db, Granularity.daily, date_from, date_to)
    merged = merge_categories(buckets, attr="revenue_by_transport_category")
    return TransportBreakdownResponse(
        period=days,
        categories=[
            TransportBreakdown(category=name, revenue=money(t.revenue), bookings=t.bookings)
            for name, t in ranked(merged)
        ],
    )


def refresh_current_growth(db: Session, granularity: Granularity, on: Optional[date] = None) -> GrowthMetricsResponse:
    """Recompute growth for the bucket covering `on` (default today), creating it empty if needed."""
    bucket = bucket_store.get_or_create(db, granularity, on or today())
    metrics = apply_growth_metrics(db, bucket)
    db.commit()
    return GrowthMetricsResponse(
        granularity=granularity,
        period_key=bucket.period_key,
        metrics=metrics,
        calculated_at=datetime.now(timezone.utc),
    )
