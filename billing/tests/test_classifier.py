"""
Unit tests for interval classification.

Tests splitting at window boundaries, energy allocation and DST handling.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
import zoneinfo

import pytest

from billing.core.applicability import WEEKDAYS, WEEKEND, DaysOfWeekRule, TimeOfDayRule
from billing.core.classifier import classify, classify_series
from billing.core.types import RateSchedule, RateWindow, UsageInterval
from billing.core.util import decimal_context
from billing.exceptions import InvalidSchedule

PACIFIC = zoneinfo.ZoneInfo("America/Los_Angeles")


def test_interval_across_midnight_splits_at_boundary(overnight_schedule):
    """
    23:00-01:00 with 4 kWh splits into one hour off-peak and one hour super-off-peak.

    Expected: 2.0 kWh at $0.10 ($0.20) + 2.0 kWh at $0.05 ($0.10) = $0.30
    """
    interval = UsageInterval(
        start=datetime(2024, 1, 1, 23, 0),
        end=datetime(2024, 1, 2, 1, 0),
        energy_kwh=Decimal("4.0"),
    )

    slices = classify(interval, overnight_schedule)

    assert [s.window.window_id for s in slices] == ["off_peak", "super_off_peak"]
    assert [s.energy_kwh for s in slices] == [Decimal("2.0"), Decimal("2.0")]
    assert slices[0].end == slices[1].start == datetime(2024, 1, 2, 0, 0)
    cost = sum(s.energy_kwh * s.window.price_per_kwh for s in slices)
    assert cost == Decimal("0.30")


def test_interval_inside_one_window_is_not_split(overnight_schedule):
    interval = UsageInterval(datetime(2024, 1, 1, 9), datetime(2024, 1, 1, 10), Decimal("1.5"))

    slices = classify(interval, overnight_schedule)

    assert len(slices) == 1
    assert slices[0].window.window_id == "day"
    assert slices[0].start == interval.start
    assert slices[0].end == interval.end
    assert slices[0].energy_kwh == Decimal("1.5")


def test_interval_starting_on_boundary_belongs_to_new_window(overnight_schedule):
    interval = UsageInterval(datetime(2024, 1, 1, 22), datetime(2024, 1, 1, 22, 15), Decimal("1"))

    slices = classify(interval, overnight_schedule)

    assert slices[0].window.window_id == "off_peak"


def test_interval_ending_on_boundary_is_not_split(overnight_schedule):
    interval = UsageInterval(datetime(2024, 1, 1, 21), datetime(2024, 1, 1, 22), Decimal("1"))

    slices = classify(interval, overnight_schedule)

    assert len(slices) == 1
    assert slices[0].window.window_id == "day"


def test_midnight_does_not_split_same_window(flat_schedule):
    """Adjacent pieces in the same window are merged back together."""
    interval = UsageInterval(datetime(2024, 1, 1, 22), datetime(2024, 1, 2, 2), Decimal("4"))

    slices = classify(interval, flat_schedule)

    assert len(slices) == 1
    assert slices[0].energy_kwh == Decimal("4")


def test_cut_point_forces_split_in_same_window(flat_schedule):
    interval = UsageInterval(datetime(2024, 1, 31, 23), datetime(2024, 2, 1, 1), Decimal("4"))

    slices = classify(interval, flat_schedule, cut_points=[datetime(2024, 2, 1)])

    assert len(slices) == 2
    assert slices[0].end == datetime(2024, 2, 1)
    assert [s.energy_kwh for s in slices] == [Decimal("2"), Decimal("2")]


def test_cut_points_outside_interval_are_ignored(flat_schedule):
    interval = UsageInterval(datetime(2024, 1, 1, 1), datetime(2024, 1, 1, 2), Decimal("1"))

    cut_points = [datetime(2024, 1, 1), datetime(2024, 1, 1, 2)]

    slices = classify(interval, flat_schedule, cut_points=cut_points)

    assert len(slices) == 1


def test_energy_allocated_proportionally_to_time(overnight_schedule):
    """05:00-09:00 with 4 kWh: 1 hour super-off-peak, 3 hours day."""
    interval = UsageInterval(datetime(2024, 1, 1, 5), datetime(2024, 1, 1, 9), Decimal("4"))

    slices = classify(interval, overnight_schedule)

    assert [s.window.window_id for s in slices] == ["super_off_peak", "day"]
    assert slices[0].energy_kwh == Decimal("1")
    assert slices[1].energy_kwh == Decimal("3")


def test_energy_is_conserved_with_repeating_fractions(overnight_schedule):
    """Slices always sum exactly to the interval energy."""
    interval = UsageInterval(
        datetime(2024, 1, 1, 21, 40), datetime(2024, 1, 2, 6, 20), Decimal("1")
    )

    slices = classify(interval, overnight_schedule)

    assert [s.window.window_id for s in slices] == ["day", "off_peak", "super_off_peak", "day"]
    with decimal_context():
        total = sum((s.energy_kwh for s in slices), start=Decimal("0"))
    assert total == Decimal("1")


def test_zero_energy_interval_still_classified(overnight_schedule):
    interval = UsageInterval(datetime(2024, 1, 1, 23), datetime(2024, 1, 2, 1), Decimal("0"))

    slices = classify(interval, overnight_schedule)

    assert len(slices) == 2
    assert all(s.energy_kwh == 0 for s in slices)


def test_weekday_to_weekend_split():
    schedule = RateSchedule(
        name="Weekend",
        windows=(
            RateWindow("weekday", "0.2", (DaysOfWeekRule(WEEKDAYS),)),
            RateWindow("weekend", "0.1", (DaysOfWeekRule(WEEKEND),)),
        ),
    )
    # Friday 2024-01-05 22:00 to Saturday 02:00
    interval = UsageInterval(datetime(2024, 1, 5, 22), datetime(2024, 1, 6, 2), Decimal("8"))

    slices = classify(interval, schedule)

    assert [(s.window.window_id, s.energy_kwh) for s in slices] == [
        ("weekday", Decimal("4")),
        ("weekend", Decimal("4")),
    ]


def test_multi_day_interval_splits_every_day(overnight_schedule):
    interval = UsageInterval(datetime(2024, 1, 1), datetime(2024, 1, 3), Decimal("48"))

    slices = classify(interval, overnight_schedule)

    assert [s.window.window_id for s in slices] == [
        "super_off_peak",
        "day",
        "off_peak",
        "super_off_peak",
        "day",
        "off_peak",
    ]
    assert slices[0].energy_kwh == Decimal("6")
    with decimal_context():
        total = sum((s.energy_kwh for s in slices), start=Decimal("0"))
    assert total == Decimal("48")


def test_uncovered_instant_raises_invalid_schedule():
    schedule = RateSchedule(
        name="Gappy",
        windows=(RateWindow("night", "0.05", (TimeOfDayRule(time(0), time(6)),)),),
    )
    interval = UsageInterval(datetime(2024, 1, 1, 5), datetime(2024, 1, 1, 7), Decimal("1"))

    with pytest.raises(InvalidSchedule, match="no rate window covers"):
        classify(interval, schedule)


def test_classify_series_preserves_order(overnight_schedule, hourly_day_usage):
    slices = list(classify_series(hourly_day_usage, overnight_schedule))

    assert len(slices) == 24
    assert all(a.end == b.start for a, b in zip(slices, slices[1:]))
    assert sum(s.energy_kwh for s in slices) == Decimal("24")


class TestDaylightSavingTime:
    """Aware intervals are split on local wall-clock boundaries."""

    def test_spring_forward_interval_has_real_duration(self, overnight_schedule):
        """01:00-04:00 local on 2024-03-10 lasts two real hours."""
        start = datetime(2024, 3, 10, 1, tzinfo=PACIFIC)
        end = datetime(2024, 3, 10, 4, tzinfo=PACIFIC)
        interval = UsageInterval(start, end, Decimal("2"))

        slices = classify(interval, overnight_schedule)

        assert interval.duration == timedelta(hours=2)
        assert len(slices) == 1
        assert slices[0].window.window_id == "super_off_peak"
        assert slices[0].energy_kwh == Decimal("2")

    def test_fall_back_repeated_hour_allocates_by_real_time(self, overnight_schedule):
        """The repeated 01:00 hour on 2024-11-03 counts twice."""
        start = datetime(2024, 11, 3, 1, tzinfo=PACIFIC)
        end = datetime(2024, 11, 3, 8, tzinfo=PACIFIC)
        interval = UsageInterval(start, end, Decimal("8"))

        slices = classify(interval, overnight_schedule)

        # 01:00 PDT -> 06:00 PST is six real hours, 06:00 -> 08:00 two more
        assert [s.window.window_id for s in slices] == ["super_off_peak", "day"]
        assert slices[0].energy_kwh == Decimal("6")
        assert slices[1].energy_kwh == Decimal("2")
        assert slices[1].start == datetime(2024, 11, 3, 6, tzinfo=PACIFIC)

    def test_aware_slices_stay_in_local_zone(self, overnight_schedule, usage_factory):
        usage = usage_factory(
            start="2024-07-01 20:00", periods=4, freq="1h", tz="America/Los_Angeles"
        )

        slices = list(classify_series(usage, overnight_schedule))

        assert [s.window.window_id for s in slices] == ["day", "day", "off_peak", "off_peak"]
        assert all(s.start.tzinfo is not None for s in slices)
        assert slices[2].start.hour == 22


def test_cut_point_on_date_boundary_in_aware_series(flat_schedule):
    start = datetime(2024, 1, 31, 23, tzinfo=PACIFIC)
    interval = UsageInterval(start, start + timedelta(hours=2), Decimal("2"))
    cut = datetime.combine(date(2024, 2, 1), time(0), tzinfo=PACIFIC)

    slices = classify(interval, flat_schedule, cut_points=[cut])

    assert [s.energy_kwh for s in slices] == [Decimal("1"), Decimal("1")]
