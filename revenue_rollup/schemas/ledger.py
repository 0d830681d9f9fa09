from typing import Optional
from pydantic import BaseModel, field_validator
from decimal import Decimal
from datetime import datetime, timezone


class BookingRecord(BaseModel):
    """Read-only view of a ledger booking, as the rollup engine consumes it."""

    id: str
    customer_id: str
    vendor_id: Optional[str] = None
    vendor_name: Optional[str] = None
    service_type: Optional[str] = None
    transport_category: Optional[str] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None
    total_amount: Decimal
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v):
        return str(v)

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        # SQLite hands back naive values; the ledger always writes UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
