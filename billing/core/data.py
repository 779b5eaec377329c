"""
Data validation and summaries for usage series
"""

import logging
import zoneinfo
from collections.abc import Iterable
from datetime import timedelta
from decimal import Decimal, InvalidOperation

import pandas as pd

from billing.exceptions import MalformedUsageSeries

from .types import UsageInterval, UsageSummary
from .util import _absolute, _to_decimal_series, decimal_context

logger = logging.getLogger(__name__)


def validate_usage_series(intervals: Iterable[UsageInterval]) -> tuple[UsageInterval, ...]:
    """
    Validate that a usage series is usable by the engine.

    Checks:
      - every element is a UsageInterval (which already enforces start < end and
        non-negative energy)
      - timestamps are all naive or all timezone-aware
      - intervals are chronological and non-overlapping (checked in UTC when aware)

    Gaps between intervals are allowed; see ``summarize_usage``.

    Returns:
        The series as a tuple.

    Raises:
        MalformedUsageSeries: identifying the first offending interval.
    """
    series = tuple(intervals)
    aware = None
    previous = None

    for index, interval in enumerate(series):
        if not isinstance(interval, UsageInterval):
            raise MalformedUsageSeries(
                f"expected UsageInterval, got {type(interval).__name__}", index=index
            )

        is_aware = interval.start.tzinfo is not None
        if aware is None:
            aware = is_aware
        elif aware != is_aware:
            raise MalformedUsageSeries(
                "series mixes naive and timezone-aware timestamps",
                index=index,
                interval=interval,
            )

        if previous is not None:
            if _absolute(interval.start) < _absolute(previous.start):
                raise MalformedUsageSeries(
                    f"starts at {interval.start}, before the previous interval "
                    f"starting at {previous.start}",
                    index=index,
                    interval=interval,
                )
            if _absolute(interval.start) < _absolute(previous.end):
                raise MalformedUsageSeries(
                    f"starts at {interval.start}, overlapping the previous interval "
                    f"ending at {previous.end}",
                    index=index,
                    interval=interval,
                )
        previous = interval

    return series


def _as_zoneinfo(timestamps: pd.Series) -> pd.Series:
    """Re-express tz-aware timestamps in the equivalent zoneinfo zone."""
    tz = timestamps.dt.tz
    if tz is None or isinstance(tz, zoneinfo.ZoneInfo):
        return timestamps
    try:
        return timestamps.dt.tz_convert(zoneinfo.ZoneInfo(str(tz)))
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        # Fixed offsets have no IANA name
        return timestamps


def usage_from_dataframe(usage: pd.DataFrame) -> tuple[UsageInterval, ...]:
    """
    Convert a usage DataFrame into a validated usage series.

    Args:
        usage: DataFrame with columns interval_start, interval_end and kwh
            (other columns are ignored). Rows must already be chronological.

    Returns:
        Tuple of UsageInterval

    Raises:
        MalformedUsageSeries: on missing columns, NaNs, or invalid intervals.
    """
    required_columns = ["interval_start", "interval_end", "kwh"]
    missing = [c for c in required_columns if c not in usage.columns]
    if missing:
        raise MalformedUsageSeries(
            f"Missing required columns: {missing}. Got: {list(usage.columns)}"
        )

    df = usage[required_columns].copy()
    if df.isna().any(axis=None):
        counts = df.isna().sum()
        nonzero = counts[counts > 0].to_dict()
        raise MalformedUsageSeries(f"Incomplete usage data; NaN counts by column: {nonzero}.")

    for column in ("interval_start", "interval_end"):
        df[column] = _as_zoneinfo(pd.to_datetime(df[column], errors="raise"))
    try:
        df["kwh"] = _to_decimal_series(df["kwh"])
    except InvalidOperation as e:
        raise MalformedUsageSeries("kwh column contains non-numeric values") from e

    intervals = []
    for index, row in enumerate(df.itertuples(index=False)):
        try:
            intervals.append(
                UsageInterval(
                    start=row.interval_start.to_pydatetime(),
                    end=row.interval_end.to_pydatetime(),
                    energy_kwh=row.kwh,
                )
            )
        except MalformedUsageSeries as e:
            raise MalformedUsageSeries(str(e), index=index, interval=e.interval) from e

    return validate_usage_series(intervals)


def summarize_usage(intervals: tuple[UsageInterval, ...]) -> UsageSummary:
    """
    Describe a validated usage series, including gaps between intervals.

    Gaps are reported, never filled: the engine bills only metered energy.
    """
    if not intervals:
        return UsageSummary(
            interval_count=0,
            start=None,
            end=None,
            metered_kwh=Decimal("0"),
        )

    gap_count = 0
    missing = timedelta(0)
    for previous, current in zip(intervals, intervals[1:]):
        gap = _absolute(current.start) - _absolute(previous.end)
        if gap > timedelta(0):
            gap_count += 1
            missing += gap

    with decimal_context():
        metered = sum((i.energy_kwh for i in intervals), start=Decimal("0"))

    if gap_count:
        logger.warning(
            "Usage series has %d gap(s) totalling %s; missing periods are not billed",
            gap_count,
            missing,
        )

    return UsageSummary(
        interval_count=len(intervals),
        start=intervals[0].start,
        end=intervals[-1].end,
        metered_kwh=metered,
        gap_count=gap_count,
        missing_duration=missing,
    )
