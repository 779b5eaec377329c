"""
Applicability predicates for rate windows.

Each predicate kind is its own small frozen dataclass exposing the same
``matches(instant) -> bool`` capability. A rate window combines its predicates
by conjunction; a window with no predicates applies everywhere.

All predicates look at local wall-clock fields of the instant (time of day,
weekday, month/day, date). Timezone-aware instants are expected to already be
expressed in the schedule's local zone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import IntEnum
from typing import Iterable, Union


class Weekday(IntEnum):
    """Day of week, numbered like ``datetime.weekday()``."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


WEEKDAYS = frozenset(Weekday(d) for d in range(5))
WEEKEND = frozenset((Weekday.SATURDAY, Weekday.SUNDAY))
ALL_DAYS = frozenset(Weekday)


def _normalize_to_year_2000(d: date) -> date:
    # 2000 is a leap year, so Feb 29 survives normalization
    return date(2000, d.month, d.day)


@dataclass(frozen=True, slots=True)
class TimeOfDayRule:
    """
    Half-open local clock range ``[start, end)``.

    An end at or before the start wraps past midnight, so ``end=time(0)`` means
    "until the end of the day". ``start == end`` covers the whole day.
    """

    start: time = time(0)
    end: time = time(0)

    def __post_init__(self) -> None:
        if self.start.tzinfo is not None or self.end.tzinfo is not None:
            raise ValueError("Time-of-day bounds must be naive local clock times")

    def matches(self, instant: datetime) -> bool:
        clock = instant.time()
        if self.start == self.end:
            return True
        if self.start < self.end:
            return self.start <= clock < self.end
        return clock >= self.start or clock < self.end

    def boundary_times(self) -> frozenset[time]:
        return frozenset((self.start, self.end))


@dataclass(frozen=True, slots=True)
class DaysOfWeekRule:
    """Matches instants whose local weekday is in ``days``."""

    days: frozenset[Weekday] = ALL_DAYS

    def __post_init__(self) -> None:
        days = frozenset(Weekday(d) for d in self.days)
        if not days:
            raise ValueError("days must name at least one weekday")
        object.__setattr__(self, "days", days)

    def matches(self, instant: datetime) -> bool:
        return instant.weekday() in self.days

    def boundary_times(self) -> frozenset[time]:
        return frozenset()


@dataclass(frozen=True, slots=True)
class SeasonRule:
    """
    Inclusive month/day range applied to every year.

    Only the month and day of ``start`` and ``end`` matter; both are normalized
    to year 2000. A start later in the year than the end wraps across the year
    boundary, e.g. Nov 1 - Mar 31 for winter.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", _normalize_to_year_2000(self.start))
        object.__setattr__(self, "end", _normalize_to_year_2000(self.end))

    def matches(self, instant: datetime) -> bool:
        month_day = (instant.month, instant.day)
        start = (self.start.month, self.start.day)
        end = (self.end.month, self.end.day)
        if start <= end:
            return start <= month_day <= end
        return month_day >= start or month_day <= end

    def season_edges(self) -> frozenset[date]:
        """First days (in year 2000) on which membership may change."""
        day_after_end = self.end + timedelta(days=1)
        if day_after_end.year != 2000:
            day_after_end = date(2000, 1, 1)
        return frozenset((self.start, day_after_end))

    def boundary_times(self) -> frozenset[time]:
        return frozenset()


@dataclass(frozen=True, slots=True)
class HolidayRule:
    """
    Matches instants on (``observed=True``) or off (``observed=False``) a holiday.

    Holidays are specific calendar dates, year included.
    """

    dates: frozenset[date] = field(default_factory=frozenset)
    observed: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "dates", frozenset(self.dates))

    def matches(self, instant: datetime) -> bool:
        return (instant.date() in self.dates) == self.observed

    def boundary_times(self) -> frozenset[time]:
        return frozenset()


Predicate = Union[TimeOfDayRule, DaysOfWeekRule, SeasonRule, HolidayRule]


def rules_match(rules: Iterable[Predicate], instant: datetime) -> bool:
    """
    Combine predicates with AND logic.

    An empty collection of rules matches every instant.
    """
    return all(rule.matches(instant) for rule in rules)


def collect_boundary_times(rules: Iterable[Predicate]) -> frozenset[time]:
    """
    Return every local clock time at which any of ``rules`` may change value.

    Midnight is always included since day-of-week, season and holiday rules
    change there.
    """
    times: set[time] = {time(0)}
    for rule in rules:
        times.update(rule.boundary_times())
    return frozenset(times)
