from revenue_rollup.db.session import Base
from revenue_rollup.models.booking import Booking
from revenue_rollup.models.analytics import AnalyticsBucket
