import os

# Must be set before revenue_rollup.db.session builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from revenue_rollup.db.base import Base
from revenue_rollup.models.booking import Booking


def at(year, month, day, hour=12, minute=0):
    """UTC timestamp for a ledger row."""
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def add_booking(db):
    """Insert a ledger row and commit it."""

    def _add(
        amount,
        created_at,
        status="confirmed",
        service_type="Activity",
        vendor_id="vendor-1",
        vendor_name="Vendor One",
        transport_category=None,
        payment_method="card",
        customer_id="customer-1",
    ):
        booking = Booking(
            id=uuid.uuid4(),
            customer_id=customer_id,
            vendor_id=vendor_id,
            vendor_name=vendor_name,
            service_type=service_type,
            transport_category=transport_category,
            status=status,
            payment_method=payment_method,
            total_amount=Decimal(str(amount)),
            created_at=created_at,
        )
        db.add(booking)
        db.commit()
        return booking

    return _add
