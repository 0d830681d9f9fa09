import uuid
import enum
from sqlalchemy import (
    Column, String, Boolean, DateTime, Date, func, Numeric, Integer, Float, JSON, Uuid,
    Enum as SAEnum, UniqueConstraint, Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from revenue_rollup.db.session import Base


class Granularity(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


# Breakdown lists are JSONB on PostgreSQL, plain JSON elsewhere
BreakdownList = JSON().with_variant(JSONB(), "postgresql")


class AnalyticsBucket(Base):
    """
    One pre-aggregated revenue summary per (granularity, period_key).

    Buckets are disposable: every recalculation deletes and rewrites them from
    the bookings ledger, they are never patched field by field.
    """

    __tablename__ = "revenue_analytics"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    granularity = Column(SAEnum(Granularity, native_enum=False, length=10), nullable=False)
    period_key = Column(String(16), nullable=False) # 2024-06-01 | 2025-W01 | 2024-06 | 2024
    year = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=True)
    week = Column(Integer, nullable=True)
    day = Column(Integer, nullable=True)
    anchor_date = Column(Date, nullable=False)

    total_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    total_bookings = Column(Integer, nullable=False, default=0)
    average_order_value = Column(Numeric(14, 2), nullable=False, default=0)

    revenue_by_category = Column(BreakdownList, nullable=False, default=list)
    revenue_by_transport_category = Column(BreakdownList, nullable=False, default=list)
    bookings_by_status = Column(BreakdownList, nullable=False, default=list)
    revenue_by_payment_method = Column(BreakdownList, nullable=False, default=list)
    top_vendors = Column(BreakdownList, nullable=False, default=list)

    # Percent change vs. the immediately preceding bucket of the same granularity
    revenue_growth = Column(Float, nullable=False, default=0.0)
    booking_growth = Column(Float, nullable=False, default=0.0)
    aov_growth = Column(Float, nullable=False, default=0.0)

    last_updated = Column(DateTime(timezone=True), server_default=func.now())
    needs_recalculation = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("granularity", "period_key", name="uq_revenue_analytics_period"),
        Index("ix_revenue_analytics_granularity_anchor", "granularity", "anchor_date"),
    )

    @property
    def temporal_key(self) -> dict:
        return {"year": self.year, "month": self.month, "week": self.week, "day": self.day}

    @property
    def growth_metrics(self) -> dict:
        return {
            "revenue_growth": self.revenue_growth or 0.0,
            "booking_growth": self.booking_growth or 0.0,
            "aov_growth": self.aov_growth or 0.0,
        }
