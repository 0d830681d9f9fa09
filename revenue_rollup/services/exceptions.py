from typing import List, Optional


class AnalyticsError(Exception):
    """Base class for revenue analytics failures."""


class InvalidRangeError(AnalyticsError, ValueError):
    """Start date missing or after the end date. Raised before anything is touched."""


class RecalculationBusyError(AnalyticsError):
    """An overlapping recalculation still holds the range after the wait timeout."""


class RecalculationError(AnalyticsError):
    """
    Ledger scan or bucket persistence failed partway through a job.

    Granularities listed in ``rebuilt`` were committed and are consistent;
    every other bucket in the job's span keeps ``needs_recalculation=True``.
    """

    def __init__(self, message: str, rebuilt: Optional[List[str]] = None, records_processed: int = 0):
        super().__init__(message)
        self.rebuilt = list(rebuilt or [])
        self.records_processed = records_processed
