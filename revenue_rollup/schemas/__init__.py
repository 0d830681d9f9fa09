from revenue_rollup.schemas.common import ErrorResponse, RecalculationFailure
from revenue_rollup.schemas.analytics import (
    CategoryRevenue, StatusBreakdown, PaymentMethodRevenue, VendorRevenue,
    GrowthMetrics, TemporalKey, AnalyticsBucket,
    TimeSeriesPoint, CategoryBreakdown, VendorBreakdown, RevenueResponse,
    CategoryDayPoint, CategoryDayBreakdown, CategoryBreakdownResponse,
    VendorDayPoint, VendorPerformance, VendorAnalyticsResponse,
    TransportBreakdown, TransportBreakdownResponse, GrowthMetricsResponse,
    RecalculateRequest, RecalculationResult,
)
from revenue_rollup.schemas.ledger import BookingRecord
