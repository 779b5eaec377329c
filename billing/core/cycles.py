"""
Billing cycle derivation and validation.

Whether tiers reset per calendar month, per utility billing day or per rolling
N-day window depends on the tariff, so cycles are always an explicit input to
the accumulator. These helpers derive the common policies from a usage span.
"""

from bisect import bisect_right
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

import pandas as pd

from billing.exceptions import InvalidBillingCycles

from .types import BillingCycle, UsageInterval
from .util import _to_local, _wall_clock


def usage_date_span(intervals: Sequence[UsageInterval]) -> tuple[date, date]:
    """
    Return the first and last local dates touched by a usage series.

    An interval ending exactly at midnight does not touch the following day.
    """
    if not intervals:
        raise InvalidBillingCycles("Cannot derive billing cycles from an empty usage series")
    first_day = intervals[0].start.date()
    last_instant = intervals[-1].end - timedelta(microseconds=1)
    return first_day, last_instant.date()


def derive_calendar_cycles(intervals: Sequence[UsageInterval]) -> tuple[BillingCycle, ...]:
    """
    Derive calendar month billing cycles from usage data.

    Args:
        intervals: chronological usage series

    Returns:
        One cycle per calendar month touched by the data
    """
    first_day, last_day = usage_date_span(intervals)
    months = pd.period_range(start=pd.Timestamp(first_day), end=pd.Timestamp(last_day), freq="M")
    return tuple(
        BillingCycle(period.start_time.date(), period.end_time.date()) for period in months
    )


def get_billing_cycle_for_month(billing_day: int, year: int, month: int) -> BillingCycle:
    """
    Get the billing cycle that ends in the given month.

    With billing_day=15 and month=1 (January), year=2024:
    Returns BillingCycle(date(2023, 12, 16), date(2024, 1, 15))

    Args:
        billing_day: Day of month when billing cycle ends (1-28)
        year: Year of the billing month
        month: Month of the billing month (1-12)
    """
    end_date = date(year, month, billing_day)

    # Start date is day after billing_day of previous month
    prev_month = month - 1 if month > 1 else 12
    prev_year = year if month > 1 else year - 1
    start_date = date(prev_year, prev_month, billing_day) + timedelta(days=1)

    return BillingCycle(start_date, end_date)


def derive_billing_day_cycles(
    intervals: Sequence[UsageInterval], billing_day: int
) -> tuple[BillingCycle, ...]:
    """
    Derive cycles that close on ``billing_day`` of each month, covering the usage span.
    """
    if not 1 <= billing_day <= 28:
        raise InvalidBillingCycles(f"billing_day must be between 1 and 28, got {billing_day}")

    first_day, last_day = usage_date_span(intervals)

    year, month = first_day.year, first_day.month
    if first_day.day > billing_day:
        month += 1
        if month > 12:
            month = 1
            year += 1

    cycles = []
    while True:
        cycle = get_billing_cycle_for_month(billing_day, year, month)
        if cycle.start_date > last_day:
            break
        cycles.append(cycle)
        month += 1
        if month > 12:
            month = 1
            year += 1
    return tuple(cycles)


def derive_rolling_cycles(
    intervals: Sequence[UsageInterval], days: int
) -> tuple[BillingCycle, ...]:
    """Derive consecutive ``days``-long cycles starting on the first usage date."""
    if days < 1:
        raise InvalidBillingCycles(f"Rolling cycles need at least one day, got {days}")

    first_day, last_day = usage_date_span(intervals)
    cycles = []
    cycle_start = first_day
    while cycle_start <= last_day:
        cycle_end = cycle_start + timedelta(days=days - 1)
        cycles.append(BillingCycle(cycle_start, cycle_end))
        cycle_start = cycle_end + timedelta(days=1)
    return tuple(cycles)


def validate_billing_cycles(cycles: Iterable[BillingCycle]) -> tuple[BillingCycle, ...]:
    """
    Check that cycles are non-empty, chronological and non-overlapping.

    Gaps between cycles are allowed; usage falling in a gap is not billed.
    """
    cycles = tuple(cycles)
    if not cycles:
        raise InvalidBillingCycles("At least one billing cycle is required")

    for previous, current in zip(cycles, cycles[1:]):
        if current.start_date <= previous.end_date:
            raise InvalidBillingCycles(
                f"Billing cycles {previous.label} and {current.label} "
                "overlap or are out of order",
                cycles,
            )
    return cycles


def cycle_cut_points(
    cycles: Iterable[BillingCycle], tz: Optional[tzinfo]
) -> tuple[datetime, ...]:
    """Absolute instants at which each cycle starts and stops accumulating."""
    points: set[datetime] = set()
    for cycle in cycles:
        points.add(_wall_clock(cycle.start_date, time(0), tz))
        points.add(_wall_clock(cycle.end_date + timedelta(days=1), time(0), tz))
    return tuple(sorted(points))


class CycleIndex:
    """Find the billing cycle containing a local instant."""

    def __init__(self, cycles: tuple[BillingCycle, ...]):
        self.cycles = cycles
        self._starts = [cycle.start_date for cycle in cycles]

    def find(self, instant: datetime, tz: Optional[tzinfo] = None) -> Optional[BillingCycle]:
        day = _to_local(instant, tz).date()
        position = bisect_right(self._starts, day) - 1
        if position < 0:
            return None
        cycle = self.cycles[position]
        return cycle if cycle.contains(day) else None
