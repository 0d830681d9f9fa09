from revenue_rollup.models.booking import Booking, BookingStatus, ServiceCategory, UNATTRIBUTED
from revenue_rollup.models.analytics import AnalyticsBucket, Granularity
