"""Recalculation of revenue buckets from the bookings ledger."""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from revenue_rollup.models.analytics import AnalyticsBucket, Granularity
from revenue_rollup.schemas.analytics import AnalyticsBucket as AnalyticsBucketSchema
from revenue_rollup.services import bucket_store
from revenue_rollup.services.aggregation import RecalculationJob, recalculate
from revenue_rollup.services.exceptions import InvalidRangeError, RecalculationError
from revenue_rollup.services.ledger import SqlBookingLedger
from revenue_rollup.utils.periods import derive_period_key

from conftest import at


def bucket(db, granularity, on):
    return bucket_store.get_bucket(db, derive_period_key(granularity, on))


def snapshot(db):
    rows = (
        db.query(AnalyticsBucket)
        .order_by(AnalyticsBucket.granularity, AnalyticsBucket.period_key)
        .populate_existing()
        .all()
    )
    return [
        AnalyticsBucketSchema.model_validate(row).model_dump(mode="json", exclude={"last_updated"})
        for row in rows
    ]


class TestEndToEnd:
    def test_june_scenario(self, db, add_booking):
        add_booking(100, at(2024, 6, 1, 9), service_type="Activity")
        add_booking(150, at(2024, 6, 1, 13), service_type="Dining", vendor_id="vendor-2")
        add_booking(50, at(2024, 6, 1, 18), service_type="Activity")

        result = recalculate(db, date(2024, 6, 1), date(2024, 6, 30))

        assert result.records_processed == 3
        # one bucket per granularity
        assert result.buckets_written == 4

        daily = bucket(db, Granularity.daily, date(2024, 6, 1))
        assert daily.total_revenue == Decimal("300")
        assert daily.total_bookings == 3
        assert daily.average_order_value == Decimal("100")
        assert daily.needs_recalculation is False

        monthly = bucket(db, Granularity.monthly, date(2024, 6, 1))
        assert monthly.total_revenue == Decimal("300")
        assert monthly.total_bookings == 3

        categories = {c["category"]: c for c in monthly.revenue_by_category}
        assert set(categories) == {"Activity", "Dining"}
        assert sum(Decimal(c["revenue"]) for c in categories.values()) == Decimal("300")
        assert Decimal(categories["Activity"]["average_order_value"]) == Decimal("75")

        assert bucket(db, Granularity.weekly, date(2024, 6, 1)).total_revenue == Decimal("300")
        assert bucket(db, Granularity.yearly, date(2024, 6, 1)).total_revenue == Decimal("300")

    def test_invalid_range_is_rejected_before_touching_buckets(self, db, add_booking):
        add_booking(100, at(2024, 6, 1))
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))

        with pytest.raises(InvalidRangeError):
            recalculate(db, date(2024, 7, 1), date(2024, 6, 1))
        with pytest.raises(InvalidRangeError):
            recalculate(db, None, date(2024, 6, 1))

        daily = bucket(db, Granularity.daily, date(2024, 6, 1))
        assert daily.needs_recalculation is False


class TestInvariants:
    def test_recalculation_is_idempotent(self, db, add_booking):
        add_booking(120.5, at(2024, 5, 30), service_type="Stay", vendor_id="vendor-3")
        add_booking(80, at(2024, 6, 2), service_type="Transportation", transport_category="Taxi")
        add_booking(45.25, at(2024, 6, 2), status="cancelled")
        add_booking(200, at(2024, 6, 20), service_type="Dining", payment_method="paypal")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))
        first = snapshot(db)
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))
        second = snapshot(db)

        assert first == second

    def test_daily_buckets_add_up_to_month(self, db, add_booking):
        amounts = [19.99, 5.01, 250, 0.33, 74.5, 1000, 12.12]
        for i, amount in enumerate(amounts):
            add_booking(amount, at(2024, 6, 1 + i * 4, hour=i), vendor_id=f"vendor-{i}")
        add_booking(99, at(2024, 6, 10), status="pending")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))

        daily = bucket_store.list_range(db, Granularity.daily, date(2024, 6, 1), date(2024, 6, 30))
        monthly = bucket(db, Granularity.monthly, date(2024, 6, 1))
        assert sum(b.total_revenue for b in daily) == monthly.total_revenue
        assert sum(b.total_bookings for b in daily) == monthly.total_bookings == len(amounts)

        weekly = bucket_store.list_range(db, Granularity.weekly, date(2024, 5, 27), date(2024, 6, 30))
        assert sum(b.total_revenue for b in weekly) == monthly.total_revenue

    def test_top_vendors_bounded_and_ordered(self, db, add_booking):
        for i in range(12):
            add_booking(10 * (i + 1), at(2024, 6, 1), vendor_id=f"vendor-{i:02d}", vendor_name=f"V{i}")
        # tie with vendor-11 (120); lower id must rank first
        add_booking(120, at(2024, 6, 1), vendor_id="vendor-00b", vendor_name="Tied")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 1))

        vendors = bucket(db, Granularity.daily, date(2024, 6, 1)).top_vendors
        assert len(vendors) == 10
        revenues = [Decimal(v["revenue"]) for v in vendors]
        assert revenues == sorted(revenues, reverse=True)
        assert [v["vendor_id"] for v in vendors[:2]] == ["vendor-00b", "vendor-11"]


class TestRevenuePolicy:
    def test_only_confirmed_bookings_count_toward_revenue(self, db, add_booking):
        add_booking(100, at(2024, 6, 1), status="confirmed")
        add_booking(40, at(2024, 6, 1), status="pending")
        add_booking(60, at(2024, 6, 1), status="cancelled")
        add_booking(25, at(2024, 6, 1), status="completed")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 1))

        daily = bucket(db, Granularity.daily, date(2024, 6, 1))
        assert daily.total_revenue == Decimal("100")
        assert daily.total_bookings == 1
        assert [c["category"] for c in daily.revenue_by_category] == ["Activity"]
        assert sum(Decimal(v["revenue"]) for v in daily.top_vendors) == Decimal("100")
        assert sum(Decimal(m["revenue"]) for m in daily.revenue_by_payment_method) == Decimal("100")

        statuses = {s["status"]: s for s in daily.bookings_by_status}
        assert set(statuses) == {"confirmed", "pending", "cancelled", "completed"}
        assert statuses["cancelled"]["count"] == 1
        assert Decimal(statuses["cancelled"]["revenue"]) == Decimal("60")
        assert Decimal(statuses["pending"]["revenue"]) == Decimal("40")

    def test_revenue_statuses_setting(self, db, add_booking, monkeypatch):
        from revenue_rollup.core.config import settings

        monkeypatch.setattr(settings, "REVENUE_STATUSES", ["confirmed", "completed"])
        add_booking(100, at(2024, 6, 1), status="confirmed")
        add_booking(25, at(2024, 6, 1), status="completed")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 1))

        assert bucket(db, Granularity.daily, date(2024, 6, 1)).total_revenue == Decimal("125")

    def test_bucket_with_only_cancelled_bookings_has_zero_totals(self, db, add_booking):
        add_booking(60, at(2024, 6, 1), status="cancelled")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 1))

        daily = bucket(db, Granularity.daily, date(2024, 6, 1))
        assert daily.total_revenue == 0
        assert daily.average_order_value == 0
        assert daily.revenue_by_category == []
        assert daily.bookings_by_status[0]["count"] == 1


class TestUnattributedBookings:
    def test_missing_vendor_and_category(self, db, add_booking):
        add_booking(70, at(2024, 6, 1), vendor_id=None, vendor_name=None, service_type=None, payment_method=None)
        add_booking(30, at(2024, 6, 1))

        recalculate(db, date(2024, 6, 1), date(2024, 6, 1))

        daily = bucket(db, Granularity.daily, date(2024, 6, 1))
        assert daily.total_revenue == Decimal("100")
        assert {c["category"] for c in daily.revenue_by_category} == {"Other", "Activity"}
        assert [v["vendor_id"] for v in daily.top_vendors] == ["vendor-1"]
        assert {m["method"] for m in daily.revenue_by_payment_method} == {"unknown", "card"}

    def test_transport_sub_categories(self, db, add_booking):
        add_booking(50, at(2024, 6, 1), service_type="Transportation", transport_category="Ferry")
        add_booking(20, at(2024, 6, 1), service_type="Transportation", transport_category="Taxi")
        add_booking(30, at(2024, 6, 1), service_type="Transportation")
        add_booking(99, at(2024, 6, 1), service_type="Stay", transport_category="Taxi")

        recalculate(db, date(2024, 6, 1), date(2024, 6, 1))

        transport = bucket(db, Granularity.daily, date(2024, 6, 1)).revenue_by_transport_category
        assert [t["category"] for t in transport] == ["Ferry", "Other", "Taxi"]
        assert sum(Decimal(t["revenue"]) for t in transport) == Decimal("100")


class TestRebuildScope:
    def test_partial_range_rebuilds_whole_month(self, db, add_booking):
        add_booking(100, at(2024, 6, 2))
        add_booking(50, at(2024, 6, 25))

        recalculate(db, date(2024, 6, 20), date(2024, 6, 30))

        assert bucket(db, Granularity.monthly, date(2024, 6, 1)).total_revenue == Decimal("150")
        # daily buckets outside the requested range are left alone
        assert bucket(db, Granularity.daily, date(2024, 6, 2)) is None
        assert bucket(db, Granularity.daily, date(2024, 6, 25)).total_revenue == Decimal("50")

    def test_stale_buckets_are_removed(self, db, add_booking):
        booking = add_booking(100, at(2024, 6, 2))
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))
        assert bucket(db, Granularity.daily, date(2024, 6, 2)) is not None

        db.delete(booking)
        db.commit()
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))

        assert bucket(db, Granularity.daily, date(2024, 6, 2)) is None
        assert bucket(db, Granularity.monthly, date(2024, 6, 1)) is None

    def test_granularity_subset(self, db, add_booking):
        add_booking(100, at(2024, 6, 2))

        result = recalculate(db, date(2024, 6, 1), date(2024, 6, 30), granularities=[Granularity.monthly])

        assert result.granularities == [Granularity.monthly]
        assert result.scan_from == date(2024, 6, 1)
        assert bucket(db, Granularity.monthly, date(2024, 6, 1)) is not None
        assert bucket(db, Granularity.daily, date(2024, 6, 2)) is None


class FailingLedger(SqlBookingLedger):
    """Yields `fail_after` records, then breaks like a dropped connection."""

    def __init__(self, fail_after):
        super().__init__()
        self.fail_after = fail_after

    def fetch_bookings(self, db, start, end):
        for i, record in enumerate(super().fetch_bookings(db, start, end)):
            if i == self.fail_after:
                raise OperationalError("SELECT bookings", {}, Exception("connection lost"))
            yield record


class TestFailureHandling:
    def test_ledger_failure_keeps_previous_buckets_flagged(self, db, add_booking):
        add_booking(100, at(2024, 6, 1))
        add_booking(50, at(2024, 6, 2))
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))

        with pytest.raises(RecalculationError) as excinfo:
            RecalculationJob(date(2024, 6, 1), date(2024, 6, 30), ledger=FailingLedger(1)).run(db)

        assert excinfo.value.rebuilt == []
        assert excinfo.value.records_processed == 1
        db.expire_all()
        monthly = bucket(db, Granularity.monthly, date(2024, 6, 1))
        assert monthly.total_revenue == Decimal("150")
        assert monthly.needs_recalculation is True
        assert bucket(db, Granularity.daily, date(2024, 6, 1)).needs_recalculation is True

    def test_persistence_failure_flags_unrebuilt_granularities(self, db, add_booking, monkeypatch):
        add_booking(100, at(2024, 6, 1))
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))
        add_booking(40, at(2024, 6, 3))

        real_upsert = bucket_store.upsert

        def flaky_upsert(session, values):
            if values["granularity"] == Granularity.monthly:
                raise OperationalError("INSERT revenue_analytics", {}, Exception("disk full"))
            return real_upsert(session, values)

        monkeypatch.setattr(bucket_store, "upsert", flaky_upsert)

        with pytest.raises(RecalculationError) as excinfo:
            recalculate(db, date(2024, 6, 1), date(2024, 6, 30))

        assert excinfo.value.rebuilt == ["daily", "weekly"]

        daily = bucket(db, Granularity.daily, date(2024, 6, 3))
        assert daily.total_revenue == Decimal("40")
        assert daily.needs_recalculation is False

        monthly = bucket(db, Granularity.monthly, date(2024, 6, 1))
        assert monthly.total_revenue == Decimal("100")
        assert monthly.needs_recalculation is True
        assert bucket(db, Granularity.yearly, date(2024, 6, 1)).needs_recalculation is True

        monkeypatch.setattr(bucket_store, "upsert", real_upsert)
        recalculate(db, date(2024, 6, 1), date(2024, 6, 30))
        monthly = bucket(db, Granularity.monthly, date(2024, 6, 1))
        assert monthly.total_revenue == Decimal("140")
        assert monthly.needs_recalculation is False


class TestLedgerScan:
    def test_window_streams_in_creation_order_across_batches(self, db, add_booking):
        add_booking(30, at(2024, 6, 3))
        add_booking(10, at(2024, 6, 1))
        add_booking(20, at(2024, 6, 2))
        add_booking(99, at(2024, 7, 1))

        ledger = SqlBookingLedger(batch_size=2)
        records = list(ledger.fetch_bookings(db, date(2024, 6, 1), date(2024, 6, 30)))

        assert [r.total_amount for r in records] == [Decimal("10"), Decimal("20"), Decimal("30")]
        assert all(isinstance(r.id, str) for r in records)

    def test_small_batches_build_the_same_buckets(self, db, add_booking):
        for day in range(1, 6):
            add_booking(10 * day, at(2024, 6, day))

        result = recalculate(
            db, date(2024, 6, 1), date(2024, 6, 30), ledger=SqlBookingLedger(batch_size=1)
        )

        assert result.records_processed == 5
        monthly = bucket(db, Granularity.monthly, date(2024, 6, 1))
        assert monthly.total_revenue == Decimal("150")
        assert monthly.total_bookings == 5
        assert monthly.needs_recalculation is False
