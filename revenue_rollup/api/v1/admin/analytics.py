from typing import List, Optional
from datetime import date

from fastapi import APIRouter, Depends, Query, HTTPException
from sqlalchemy.orm import Session

from revenue_rollup.db.session import get_db
from revenue_rollup.api.deps import require_admin
from revenue_rollup.models.analytics import Granularity
from revenue_rollup.models.booking import ServiceCategory, UNATTRIBUTED
from revenue_rollup.schemas.analytics import (
    AnalyticsBucket,
    CategoryBreakdownResponse,
    GrowthMetricsResponse,
    RecalculateRequest,
    RecalculationResult,
    RevenueResponse,
    TransportBreakdownResponse,
    VendorAnalyticsResponse,
)
from revenue_rollup.schemas.common import RecalculationFailure
from revenue_rollup.services import query
from revenue_rollup.services.aggregation import recalculate
from revenue_rollup.services.exceptions import (
    InvalidRangeError,
    RecalculationBusyError,
    RecalculationError,
)

router = APIRouter(
    prefix="/admin/analytics",
    tags=["Admin - Analytics"],
    dependencies=[Depends(require_admin)],
)

CATEGORY_CHOICES = "^(" + "|".join([c.value for c in ServiceCategory] + [UNATTRIBUTED]) + ")$"


# ---------------------------------------------------------------------------
# Dashboard reads (pre-aggregated buckets only)
# ---------------------------------------------------------------------------


@router.get("/revenue", response_model=RevenueResponse)
def get_revenue_analytics(
    period: int = Query(30, ge=1, le=3660, description="Window size in days"),
    end_date: Optional[date] = Query(None, description="Last day of the window (default: today)"),
    db: Session = Depends(get_db),
):
    """
    Revenue summary for the last `period` days.

    The bucket resolution follows the window size:
    - more than 180 days → monthly buckets
    - more than 60 days → weekly buckets
    - otherwise → daily buckets

    Totals, categories and top vendors are merged across the buckets in the
    window; `growth_metrics` come from the most recent bucket only.
    An empty window returns zeroed totals, not an error.
    """
    return query.get_revenue_summary(db, period, end_date)


@router.get("/category-breakdown", response_model=CategoryBreakdownResponse)
def get_category_breakdown(
    period: int = Query(30, ge=1, le=3660),
    category: Optional[str] = Query(None, pattern=CATEGORY_CHOICES, description="Transportation | Stay | Dining | Activity | Other"),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    """Daily revenue for one category, or every category per day."""
    return query.get_category_breakdown(db, period, category, end_date)


@router.get("/vendors", response_model=VendorAnalyticsResponse)
def get_vendor_analytics(
    period: int = Query(30, ge=1, le=3660),
    vendor_id: Optional[str] = Query(None, description="Daily series for a single vendor"),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    """Vendor ranking over the window, or one vendor's daily performance."""
    return query.get_vendor_analytics(db, period, vendor_id, end_date)


@router.get("/transportation-breakdown", response_model=TransportBreakdownResponse)
def get_transportation_breakdown(
    period: int = Query(30, ge=1, le=3660),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
):
    """Transportation revenue per sub-category (Taxi, Ferry, ...), highest first."""
    return query.get_transport_breakdown(db, period, end_date)


@router.get("/growth-metrics", response_model=GrowthMetricsResponse)
def get_growth_metrics(
    granularity: Granularity = Query(Granularity.monthly),
    db: Session = Depends(get_db),
):
    """Growth of the current period vs. the one before it."""
    return query.refresh_current_growth(db, granularity)


@router.get("/buckets", response_model=List[AnalyticsBucket])
def list_buckets(
    granularity: Granularity = Query(...),
    date_from: date = Query(..., description="Start date (YYYY-MM-DD)"),
    date_to: date = Query(..., description="End date (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
):
    """Persisted buckets anchored in [date_from, date_to], oldest first."""
    try:
        return query.get_analytics_for_range(db, granularity, date_from, date_to)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


@router.post("/recalculate", response_model=RecalculationResult)
def recalculate_analytics(
    data: RecalculateRequest,
    db: Session = Depends(get_db),
):
    """
    Rebuild every bucket touched by [start_date, end_date] from the bookings ledger.

    Long-running: the request blocks until the rebuild finishes. A job that
    overlaps a running one waits for it (409 if the configured wait expires).
    """
    try:
        return recalculate(db, data.start_date, data.end_date, granularities=data.granularities)
    except InvalidRangeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RecalculationBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RecalculationError as e:
        raise HTTPException(
            status_code=500,
            detail=RecalculationFailure(
                error="recalculation_failed",
                message=str(e),
                rebuilt_granularities=e.rebuilt,
                records_processed=e.records_processed,
            ).model_dump(),
        )
