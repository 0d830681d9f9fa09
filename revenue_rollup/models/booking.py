import uuid
import enum
from sqlalchemy import Column, String, DateTime, func, DECIMAL, Uuid, Index
from revenue_rollup.db.session import Base


class ServiceCategory(str, enum.Enum):
    Transportation = "Transportation"
    Stay = "Stay"
    Dining = "Dining"
    Activity = "Activity"


class BookingStatus(str, enum.Enum):
    pending = "pending"
    confirmed = "confirmed"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no-show"


# Bucket label for bookings without a (known) service type or transport category
UNATTRIBUTED = "Other"


class Booking(Base):
    """Ledger row. Owned by the booking service; analytics only reads it."""

    __tablename__ = "bookings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_number = Column(String(20), unique=True, nullable=True, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    vendor_id = Column(String(64), nullable=True, index=True)
    vendor_name = Column(String(255), nullable=True)
    service_type = Column(String(20), nullable=True, index=True) # Transportation, Stay, Dining, Activity
    transport_category = Column(String(50), nullable=True) # Taxi, Ferry, ... (Transportation only)
    status = Column(String(20), default="pending", index=True) # pending, confirmed, in-progress, completed, cancelled, no-show
    payment_method = Column(String(30), nullable=True)
    total_amount = Column(DECIMAL(10, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_bookings_created_at_id", "created_at", "id"),
    )
