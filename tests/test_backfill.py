from datetime import date
from decimal import Decimal

from revenue_rollup.backfill import main
from revenue_rollup.models.analytics import AnalyticsBucket, Granularity
from revenue_rollup.services import bucket_store
from revenue_rollup.utils.periods import derive_period_key

from conftest import at


def test_empty_ledger_is_a_no_op(session_factory, db):
    assert main([], session_factory=session_factory) == 0
    assert db.query(AnalyticsBucket).count() == 0


def test_whole_ledger_backfill(session_factory, db, add_booking):
    add_booking(100, at(2023, 11, 5))
    add_booking(250, at(2024, 2, 10))

    assert main([], session_factory=session_factory) == 0

    yearly = bucket_store.get_bucket(db, derive_period_key(Granularity.yearly, date(2024, 1, 1)))
    assert yearly.total_revenue == Decimal("250")
    assert bucket_store.get_bucket(db, derive_period_key(Granularity.monthly, date(2023, 11, 1))) is not None


def test_explicit_range_and_granularity(session_factory, db, add_booking):
    add_booking(100, at(2024, 6, 5))

    assert main(["2024-06-01", "2024-06-30", "--granularity", "daily"], session_factory=session_factory) == 0

    granularities = {b.granularity for b in db.query(AnalyticsBucket).all()}
    assert granularities == {Granularity.daily}


def test_start_without_end_is_rejected(session_factory):
    assert main(["2024-06-01"], session_factory=session_factory) == 2


def test_inverted_range_fails(session_factory):
    assert main(["2024-07-01", "2024-06-01"], session_factory=session_factory) == 1
