"""
Split usage intervals into slices attributed to single rate windows.
"""

from collections.abc import Iterable, Iterator
from datetime import datetime, tzinfo
from decimal import Decimal
from typing import Optional

from billing.exceptions import InvalidSchedule

from .types import ClassifiedSlice, RateSchedule, RateWindow, UsageInterval
from .util import (
    _absolute,
    _dates_between,
    _elapsed_microseconds,
    _to_local,
    _wall_clock,
    decimal_context,
)


def _single_window(schedule: RateSchedule, local_instant: datetime) -> RateWindow:
    matching = schedule.windows_at(local_instant)
    if len(matching) != 1:
        window_ids = tuple(w.window_id for w in matching)
        problem = "no rate window covers" if not matching else "overlapping windows at"
        raise InvalidSchedule(
            f"{problem} {local_instant}",
            schedule.name,
            instant=local_instant,
            window_ids=window_ids,
        )
    return matching[0]


def _window_boundaries(
    start: datetime, end: datetime, schedule: RateSchedule, tz: Optional[tzinfo]
) -> set[datetime]:
    """Absolute instants strictly inside (start, end) where the matching window may change."""
    boundaries: set[datetime] = set()
    first_day = _to_local(start, tz).date()
    last_day = _to_local(end, tz).date()
    clock_times = schedule.boundary_times()
    for day in _dates_between(first_day, last_day):
        for clock in clock_times:
            boundary = _wall_clock(day, clock, tz)
            if start < boundary < end:
                boundaries.add(boundary)
    return boundaries


def classify(
    interval: UsageInterval,
    schedule: RateSchedule,
    cut_points: Iterable[datetime] = (),
) -> tuple[ClassifiedSlice, ...]:
    """
    Attribute an interval's energy to the rate windows it spans.

    The interval is split at every window boundary it crosses (time-of-day
    edges, day rollovers, season and holiday edges) and at every forced cut
    point, such as the start of a billing cycle. Adjacent pieces that land in
    the same window are merged back together unless a cut point separates them.

    Energy is allocated to each slice proportionally to its elapsed time. The
    meter reports only one energy total per interval, so consumption is assumed
    uniform within it; this is the only place the engine introduces precision
    the source data does not have. The last slice receives the remainder, so
    slice energies always sum exactly to ``interval.energy_kwh``.

    Boundaries are half-open: an instant on a boundary belongs to the window
    that starts there.

    Args:
        interval: the usage interval to classify
        schedule: a schedule that passed ``validate_schedule``
        cut_points: extra instants to split at, in the interval's timezone style

    Returns:
        Chronological slices, one per (window, uninterrupted sub-interval)

    Raises:
        InvalidSchedule: if some sub-interval matches zero or several windows.
    """
    tz = interval.start.tzinfo
    start = _absolute(interval.start)
    end = _absolute(interval.end)

    forced = {_absolute(p) for p in cut_points}
    forced = {p for p in forced if start < p < end}
    edges = [start, *sorted(_window_boundaries(start, end, schedule, tz) | forced), end]

    pieces: list[tuple[datetime, datetime, RateWindow]] = []
    for piece_start, piece_end in zip(edges, edges[1:]):
        if piece_start >= piece_end:
            continue
        window = _single_window(schedule, _to_local(piece_start, tz))
        if (
            pieces
            and pieces[-1][2].window_id == window.window_id
            and piece_start not in forced
        ):
            pieces[-1] = (pieces[-1][0], piece_end, window)
        else:
            pieces.append((piece_start, piece_end, window))

    total_us = Decimal(_elapsed_microseconds(start, end))
    slices: list[ClassifiedSlice] = []
    allocated = Decimal("0")
    with decimal_context():
        for i, (piece_start, piece_end, window) in enumerate(pieces):
            if i == len(pieces) - 1:
                energy = interval.energy_kwh - allocated
            else:
                share = Decimal(_elapsed_microseconds(piece_start, piece_end)) / total_us
                energy = interval.energy_kwh * share
                allocated += energy
            slices.append(
                ClassifiedSlice(
                    start=_to_local(piece_start, tz),
                    end=_to_local(piece_end, tz),
                    energy_kwh=energy,
                    window=window,
                )
            )

    return tuple(slices)


def classify_series(
    intervals: Iterable[UsageInterval],
    schedule: RateSchedule,
    cut_points: Iterable[datetime] = (),
) -> Iterator[ClassifiedSlice]:
    """Classify a chronological usage series, yielding slices in order."""
    cut_points = tuple(cut_points)
    for interval in intervals:
        yield from classify(interval, schedule, cut_points)
