import math
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Tuple

from revenue_rollup.models.analytics import Granularity


def iso_week(d: date) -> Tuple[int, int]:
    """
    Return (week_year, week) for a date, Monday-start weeks.

    The date is shifted to the Thursday of its week; that Thursday decides the
    year, so 2024-12-31 is week 1 of 2025 and 2021-01-01 is week 53 of 2020.
    """
    thursday = d + timedelta(days=3 - d.weekday())
    year_start = date(thursday.year, 1, 1)
    return thursday.year, math.ceil(((thursday - year_start).days + 1) / 7)


@dataclass(frozen=True)
class PeriodKey:
    """Canonical identity of a bucket: granularity plus its temporal key fields."""

    granularity: Granularity
    year: int
    month: Optional[int] = None
    week: Optional[int] = None
    day: Optional[int] = None

    @property
    def period_key(self) -> str:
        if self.granularity == Granularity.daily:
            return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
        if self.granularity == Granularity.weekly:
            return f"{self.year:04d}-W{self.week:02d}"
        if self.granularity == Granularity.monthly:
            return f"{self.year:04d}-{self.month:02d}"
        return f"{self.year:04d}"

    @property
    def anchor_date(self) -> date:
        """First calendar day covered by the bucket."""
        if self.granularity == Granularity.daily:
            return date(self.year, self.month, self.day)
        if self.granularity == Granularity.weekly:
            return date.fromisocalendar(self.year, self.week, 1)
        if self.granularity == Granularity.monthly:
            return date(self.year, self.month, 1)
        return date(self.year, 1, 1)

    @property
    def end_date(self) -> date:
        """Last calendar day covered by the bucket (inclusive)."""
        if self.granularity == Granularity.daily:
            return self.anchor_date
        if self.granularity == Granularity.weekly:
            return self.anchor_date + timedelta(days=6)
        if self.granularity == Granularity.monthly:
            return date(self.year, self.month, monthrange(self.year, self.month)[1])
        return date(self.year, 12, 31)

    def previous(self) -> "PeriodKey":
        if self.granularity == Granularity.yearly:
            return PeriodKey(Granularity.yearly, self.year - 1)
        return derive_period_key(self.granularity, self.anchor_date - timedelta(days=1))

    def next(self) -> "PeriodKey":
        return derive_period_key(self.granularity, self.end_date + timedelta(days=1))

    def as_columns(self) -> dict:
        return {
            "granularity": self.granularity,
            "period_key": self.period_key,
            "year": self.year,
            "month": self.month,
            "week": self.week,
            "day": self.day,
            "anchor_date": self.anchor_date,
        }


def derive_period_key(granularity: Granularity, d: date) -> PeriodKey:
    """Classify a calendar date into the bucket of the given granularity."""
    granularity = Granularity(granularity)
    if granularity == Granularity.daily:
        return PeriodKey(granularity, d.year, month=d.month, day=d.day)
    if granularity == Granularity.weekly:
        week_year, week = iso_week(d)
        # Month context follows the week's Thursday, same as the week-year
        thursday = d + timedelta(days=3 - d.weekday())
        return PeriodKey(granularity, week_year, month=thursday.month, week=week)
    if granularity == Granularity.monthly:
        return PeriodKey(granularity, d.year, month=d.month)
    return PeriodKey(granularity, d.year)


def covering_span(granularity: Granularity, start: date, end: date) -> Tuple[date, date]:
    """Whole-bucket span touched by [start, end] at the given granularity."""
    return (
        derive_period_key(granularity, start).anchor_date,
        derive_period_key(granularity, end).end_date,
    )


def select_granularity(days: int) -> Granularity:
    """Coarser buckets for wider dashboard windows, to bound the response size."""
    if days > 180:
        return Granularity.monthly
    if days > 60:
        return Granularity.weekly
    return Granularity.daily
