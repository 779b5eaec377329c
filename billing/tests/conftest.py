"""
Shared fixtures for billing tests.

Consolidates usage series and schedule construction used across test files.
"""

from datetime import date, time
from decimal import Decimal
import zoneinfo

import pandas as pd
import pytest

from billing.core.applicability import TimeOfDayRule
from billing.core.types import BillingCycle, RateSchedule, RateWindow, Tier, UsageInterval


@pytest.fixture
def usage_factory():
    """Factory fixture for creating usage series with flexible configurations.

    Returns a factory function that creates a tuple of UsageInterval with
    configurable:
    - Time period (start, periods, frequency)
    - Timezone (None for naive local time)
    - Energy per interval (scalar, or a list with one value per interval)
    """

    def _create_usage(
        start: str = "2024-01-01 00:00:00",
        periods: int = 4,
        freq: str = "1h",
        tz: str | None = None,
        kwh="1.0",
    ) -> tuple[UsageInterval, ...]:
        """Create a contiguous usage series.

        Args:
            start: ISO format start datetime string
            periods: Number of intervals to create
            freq: Pandas frequency string (e.g., "15min", "1h")
            tz: Timezone name (e.g., "America/Los_Angeles"), or None for naive
            kwh: Energy per interval (scalar or list)

        Returns:
            Tuple of UsageInterval
        """
        starts = pd.date_range(start=start, periods=periods, freq=freq, tz=tz)
        step = pd.Timedelta(freq).to_pytimedelta()
        energies = kwh if isinstance(kwh, list) else [kwh] * periods

        zone = zoneinfo.ZoneInfo(tz) if tz else None

        intervals = []
        for interval_start, energy in zip(starts, energies):
            start_dt = interval_start.to_pydatetime()
            if zone is None:
                end_dt = start_dt + step
            else:
                # Absolute arithmetic keeps intervals contiguous across DST changes
                start_dt = start_dt.astimezone(zone)
                end_dt = (start_dt.astimezone(zoneinfo.ZoneInfo("UTC")) + step).astimezone(zone)
            intervals.append(
                UsageInterval(start=start_dt, end=end_dt, energy_kwh=Decimal(str(energy)))
            )
        return tuple(intervals)

    return _create_usage


@pytest.fixture
def flat_schedule():
    """Single window at $0.10/kWh, all day every day."""
    return RateSchedule(
        name="Flat",
        windows=(RateWindow(window_id="flat", price_per_kwh=Decimal("0.10")),),
    )


@pytest.fixture
def overnight_schedule():
    """Day $0.15, off-peak 22:00-24:00 $0.10, super-off-peak 00:00-06:00 $0.05."""
    return RateSchedule(
        name="Overnight",
        windows=(
            RateWindow(
                window_id="super_off_peak",
                price_per_kwh=Decimal("0.05"),
                rules=(TimeOfDayRule(time(0), time(6)),),
            ),
            RateWindow(
                window_id="day",
                price_per_kwh=Decimal("0.15"),
                rules=(TimeOfDayRule(time(6), time(22)),),
            ),
            RateWindow(
                window_id="off_peak",
                price_per_kwh=Decimal("0.10"),
                rules=(TimeOfDayRule(time(22), time(0)),),
            ),
        ),
    )


@pytest.fixture
def tiered_schedule():
    """No time-of-use component; 0-500 kWh at $0.12, above that $0.18."""
    return RateSchedule(
        name="Tiered",
        windows=(RateWindow(window_id="all_day", price_per_kwh=Decimal("0")),),
        tiers=(
            Tier(threshold_kwh=Decimal("500"), price_per_kwh=Decimal("0.12")),
            Tier(threshold_kwh=None, price_per_kwh=Decimal("0.18")),
        ),
    )


@pytest.fixture
def january_cycle():
    return BillingCycle(date(2024, 1, 1), date(2024, 1, 31))


@pytest.fixture
def hourly_day_usage(usage_factory):
    """24 hours of hourly data at 1 kWh each (Monday, January 1, 2024)."""
    return usage_factory(start="2024-01-01 00:00:00", periods=24, freq="1h")


@pytest.fixture
def month_usage(usage_factory):
    """Full month of hourly data at 1 kWh each (January 2024 - 31 days)."""
    return usage_factory(start="2024-01-01 00:00:00", periods=31 * 24, freq="1h")

