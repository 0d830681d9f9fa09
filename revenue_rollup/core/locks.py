import threading
import time
from contextlib import contextmanager
from datetime import date
from typing import Iterable, List, NamedTuple, Optional

from revenue_rollup.services.exceptions import RecalculationBusyError


class RangeClaim(NamedTuple):
    granularity: str
    start: date
    end: date

    def overlaps(self, other: "RangeClaim") -> bool:
        return (
            self.granularity == other.granularity
            and self.start <= other.end
            and other.start <= self.end
        )


class RangeLockManager:
    """
    Single-writer lock over (granularity, date range) claims.

    A job registers all of its claims at once, and only when none of them
    overlaps a claim held by a running job, so two jobs can never each hold
    half of what the other needs. Disjoint ranges proceed in parallel.
    Process-local: run one worker process per bucket store for recalculation.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._active: List[RangeClaim] = []

    def _conflicts(self, claims: List[RangeClaim]) -> bool:
        return any(c.overlaps(a) for c in claims for a in self._active)

    @contextmanager
    def hold(self, claims: Iterable[RangeClaim], timeout: Optional[float] = None):
        claims = list(claims)
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._conflicts(claims):
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise RecalculationBusyError(
                        "Another recalculation is rebuilding an overlapping range"
                    )
                self._cond.wait(remaining)
            self._active.extend(claims)
        try:
            yield
        finally:
            with self._cond:
                for claim in claims:
                    self._active.remove(claim)
                self._cond.notify_all()

    def active(self) -> List[RangeClaim]:
        with self._cond:
            return list(self._active)


recalculation_locks = RangeLockManager()
