"""
Semantic validation of rate schedules.

A schedule is valid when every instant of every day of every year is matched by
exactly one rate window. Predicates are piecewise constant: time-of-day rules
change only at their bounds, and date-based rules change only at midnight on
season edges, weekdays and holidays. Probing one instant per combination of
(season segment, weekday, holiday) and clock segment is therefore exhaustive,
and strictly finer than any fixed minute grid.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterator

from billing.exceptions import InvalidSchedule

from .applicability import HolidayRule, SeasonRule, Weekday
from .types import RateSchedule

logger = logging.getLogger(__name__)

# (month, day, weekday) combinations repeat on a 28-year cycle between 1901 and 2099
_PROBE_YEARS = range(2000, 2028)


def _season_segments(schedule: RateSchedule) -> list[tuple[date, date]]:
    """
    Split the (year 2000) calendar into runs of days with identical season membership.

    Returns:
        List of inclusive (first_day, last_day) pairs normalized to year 2000.
    """
    edges = {date(2000, 1, 1)}
    for window in schedule.windows:
        for rule in window.rules:
            if isinstance(rule, SeasonRule):
                edges.update(rule.season_edges())

    ordered = sorted(edges)
    segments = []
    for i, first_day in enumerate(ordered):
        if i + 1 < len(ordered):
            last_day = ordered[i + 1] - timedelta(days=1)
        else:
            last_day = date(2000, 12, 31)
        segments.append((first_day, last_day))
    return segments


def _holiday_dates(schedule: RateSchedule) -> frozenset[date]:
    dates: set[date] = set()
    for window in schedule.windows:
        for rule in window.rules:
            if isinstance(rule, HolidayRule):
                dates.update(rule.dates)
    return frozenset(dates)


def _find_probe_date(
    first_day: date, last_day: date, weekday: Weekday, excluded: frozenset[date]
) -> date | None:
    """Find a real, non-holiday date inside a season segment falling on ``weekday``."""
    for year in _PROBE_YEARS:
        day = first_day
        while day <= last_day:
            try:
                candidate = day.replace(year=year)
            except ValueError:
                # Feb 29 outside a leap year
                candidate = None
            if (
                candidate is not None
                and candidate.weekday() == weekday
                and candidate not in excluded
            ):
                return candidate
            day += timedelta(days=1)
    return None


def probe_dates(schedule: RateSchedule) -> list[date]:
    """Representative dates covering every season segment, weekday, and holiday."""
    holidays = _holiday_dates(schedule)
    dates = []
    for first_day, last_day in _season_segments(schedule):
        for weekday in Weekday:
            probe = _find_probe_date(first_day, last_day, weekday, holidays)
            if probe is not None:
                dates.append(probe)
    dates.extend(sorted(holidays))
    return dates


def probe_instants(schedule: RateSchedule) -> Iterator[datetime]:
    """Yield one local instant for every distinct applicability state of ``schedule``."""
    clock_times = schedule.boundary_times()
    for day in probe_dates(schedule):
        for clock in clock_times:
            yield datetime.combine(day, clock)


def validate_schedule(schedule: RateSchedule) -> RateSchedule:
    """
    Check that exactly one window applies at every instant.

    Args:
        schedule: the schedule to check

    Returns:
        The same schedule, for chaining.

    Raises:
        InvalidSchedule: on the first gap or overlap found, naming the probe
            instant and the offending window ids.
    """
    probes = 0
    for instant in probe_instants(schedule):
        probes += 1
        matching = schedule.windows_at(instant)
        if not matching:
            raise InvalidSchedule(
                f"no rate window covers {instant:%a %Y-%m-%d %H:%M:%S}",
                schedule.name,
                instant=instant,
            )
        if len(matching) > 1:
            window_ids = tuple(w.window_id for w in matching)
            raise InvalidSchedule(
                f"windows {', '.join(window_ids)} overlap at {instant:%a %Y-%m-%d %H:%M:%S}",
                schedule.name,
                instant=instant,
                window_ids=window_ids,
            )

    logger.debug("Schedule '%s' passed coverage validation (%d probes)", schedule.name, probes)
    return schedule
