from typing import Optional, List, Union
from pydantic import BaseModel, Field
from decimal import Decimal
from datetime import date, datetime

from revenue_rollup.models.analytics import Granularity


# ---------------------------------------------------------------------------
# Breakdown entries stored inside a bucket
# ---------------------------------------------------------------------------


class CategoryRevenue(BaseModel):
    category: str
    revenue: Decimal
    bookings: int
    average_order_value: Decimal


class StatusBreakdown(BaseModel):
    status: str
    count: int
    revenue: Decimal


class PaymentMethodRevenue(BaseModel):
    method: str
    revenue: Decimal
    bookings: int


class VendorRevenue(BaseModel):
    vendor_id: str
    vendor_name: str
    revenue: Decimal
    bookings: int
    average_order_value: Decimal


class GrowthMetrics(BaseModel):
    revenue_growth: float = 0.0
    booking_growth: float = 0.0
    aov_growth: float = 0.0


class TemporalKey(BaseModel):
    year: int
    month: Optional[int] = None     # 1-12, daily / weekly / monthly
    week: Optional[int] = None      # 1-53, weekly only
    day: Optional[int] = None       # 1-31, daily only


# ---------------------------------------------------------------------------
# Persisted bucket (GET /admin/analytics/buckets)
# ---------------------------------------------------------------------------


class AnalyticsBucket(BaseModel):
    granularity: Granularity
    period_key: str
    temporal_key: TemporalKey
    anchor_date: date
    total_revenue: Decimal
    total_bookings: int
    average_order_value: Decimal
    revenue_by_category: List[CategoryRevenue] = []
    revenue_by_transport_category: List[CategoryRevenue] = []
    bookings_by_status: List[StatusBreakdown] = []
    revenue_by_payment_method: List[PaymentMethodRevenue] = []
    top_vendors: List[VendorRevenue] = []
    growth_metrics: GrowthMetrics
    last_updated: Optional[datetime] = None
    needs_recalculation: bool = False

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Composed summary (GET /admin/analytics/revenue)
# ---------------------------------------------------------------------------


class TimeSeriesPoint(BaseModel):
    period: str          # "2024-06-01" | "2024-W23" | "2024-06" | "2024"
    anchor_date: date
    revenue: Decimal
    bookings: int


class CategoryBreakdown(BaseModel):
    category: str
    revenue: Decimal
    bookings: int
    average_order_value: Decimal
    percentage: float    # share of total revenue in the window


class VendorBreakdown(BaseModel):
    vendor_id: str
    vendor_name: str
    revenue: Decimal
    bookings: int
    average_order_value: Decimal


class RevenueResponse(BaseModel):
    period: int                     # window size in days
    granularity: Granularity
    date_from: date
    date_to: date
    total_revenue: Decimal
    total_bookings: int
    average_order_value: Decimal
    time_series: List[TimeSeriesPoint]
    revenue_by_category: List[CategoryBreakdown]
    top_vendors: List[VendorBreakdown]
    # Taken from the most recent bucket in the window only
    growth_metrics: GrowthMetrics
    # True when at least one merged bucket is waiting for a rebuild
    needs_recalculation: bool = False


# ---------------------------------------------------------------------------
# Drill-down reads
# ---------------------------------------------------------------------------


class CategoryDayPoint(BaseModel):
    anchor_date: date
    revenue: Decimal
    bookings: int


class CategoryDayBreakdown(BaseModel):
    anchor_date: date
    categories: List[CategoryRevenue]


class CategoryBreakdownResponse(BaseModel):
    period: int
    category: str                   # "all" when no filter is applied
    data: Union[List[CategoryDayPoint], List[CategoryDayBreakdown]]


class VendorDayPoint(BaseModel):
    anchor_date: date
    revenue: Decimal
    bookings: int
    average_order_value: Decimal


class VendorPerformance(BaseModel):
    vendor_id: str
    total_revenue: Decimal
    total_bookings: int
    average_order_value: Decimal
    daily_data: List[VendorDayPoint]


class VendorAnalyticsResponse(BaseModel):
    period: int
    vendor: Optional[VendorPerformance] = None
    vendors: List[VendorBreakdown] = []


class TransportBreakdown(BaseModel):
    category: str
    revenue: Decimal
    bookings: int


class TransportBreakdownResponse(BaseModel):
    period: int
    categories: List[TransportBreakdown]


class GrowthMetricsResponse(BaseModel):
    granularity: Granularity
    period_key: str
    metrics: GrowthMetrics
    calculated_at: datetime


# ---------------------------------------------------------------------------
# Recalculation (POST /admin/analytics/recalculate)
# ---------------------------------------------------------------------------


class RecalculateRequest(BaseModel):
    start_date: date
    end_date: Optional[date] = None     # defaults to today
    granularities: List[Granularity] = Field(default_factory=lambda: list(Granularity), min_length=1)


class RecalculationResult(BaseModel):
    start_date: date
    end_date: date
    scan_from: date
    scan_to: date
    records_processed: int
    buckets_written: int
    granularities: List[Granularity]
