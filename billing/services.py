"""
Comparison service layer.

Orchestrates loading usage data from a Green Button export, choosing billing
cycles, and comparing two schedules with the core engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional

from billing.core.calculator import compare
from billing.core.cycles import (
    derive_billing_day_cycles,
    derive_calendar_cycles,
    derive_rolling_cycles,
)
from billing.core.types import BillingCycle, ComparisonResult, RateSchedule, UsageInterval
from billing.exceptions import InvalidBillingCycles
from rate_compare import settings
from usage.csv_service import GreenButtonCSVReader


@dataclass
class ComparisonRun:
    """Result of comparing two schedules over one usage file."""

    result: ComparisonResult
    current: RateSchedule
    proposed: RateSchedule
    cycles: tuple[BillingCycle, ...]
    warnings: list[str] = field(default_factory=list)

    @property
    def savings_usd(self) -> Decimal:
        """Positive when switching to the proposed schedule is cheaper."""
        return -self.result.delta


def load_usage(
    path: Path, timezone: Optional[str] = None
) -> tuple[tuple[UsageInterval, ...], list[str]]:
    """
    Read a Green Button usage export.

    Args:
        path: CSV file exported from the utility's usage portal
        timezone: IANA timezone for the export's wall-clock times
            (defaults to settings.TIMEZONE; None keeps naive local times)

    Returns:
        Tuple of (usage series, reader warnings formatted for display)

    Raises:
        UsageFileError: If the file cannot be read or has invalid rows
    """
    reader = GreenButtonCSVReader.from_path(path, timezone=timezone or settings.TIMEZONE)
    intervals = reader.read()
    warnings = [f"{where}: {message}" for where, message in reader.results["warnings"]]
    return intervals, warnings


def resolve_billing_cycles(
    intervals: tuple[UsageInterval, ...],
    billing_day: Optional[int] = None,
    cycle_days: Optional[int] = None,
) -> tuple[BillingCycle, ...]:
    """
    Pick the billing cycle policy.

    Args:
        intervals: validated usage series
        billing_day: Day of month when billing cycle ends (1-28)
        cycle_days: Length of rolling cycles in days

    Returns:
        Cycles covering the usage series; calendar months when neither option
        is given

    Raises:
        InvalidBillingCycles: If both options are given or either is out of range
    """
    if billing_day is not None and cycle_days is not None:
        raise InvalidBillingCycles("Specify either a billing day or a cycle length, not both")
    if billing_day is not None:
        return derive_billing_day_cycles(intervals, billing_day)
    if cycle_days is not None:
        return derive_rolling_cycles(intervals, cycle_days)
    return derive_calendar_cycles(intervals)


def run_comparison(
    usage_path: Path,
    current: RateSchedule,
    proposed: RateSchedule,
    timezone: Optional[str] = None,
    billing_day: Optional[int] = None,
    cycle_days: Optional[int] = None,
    reference_kwh: Optional[Decimal] = None,
) -> ComparisonRun:
    """
    Compare the current and proposed schedules over a usage export.

    Args:
        usage_path: Green Button CSV file
        current: the schedule the customer is on now (schedule A)
        proposed: the schedule being considered (schedule B)
        timezone: IANA timezone for the export's wall-clock times
        billing_day: close cycles on this day of each month
        cycle_days: use rolling cycles of this many days
        reference_kwh: total usage reported on the bill, for reconciliation

    Returns:
        ComparisonRun with the comparison result and any warnings

    Raises:
        RateComparisonError: for any invalid input; nothing partial is returned
    """
    intervals, warnings = load_usage(usage_path, timezone)
    cycles = resolve_billing_cycles(intervals, billing_day, cycle_days)

    result = compare(
        intervals,
        current,
        proposed,
        billing_cycles=cycles,
        reference_kwh=reference_kwh,
    )

    if result.usage.gap_count:
        warnings.append(
            f"Usage has {result.usage.gap_count} gap(s) totalling "
            f"{result.usage.missing_duration}; missing periods are not billed"
        )
    if result.reconciliation.unbilled_kwh:
        warnings.append(
            f"{result.reconciliation.unbilled_kwh} kWh falls outside the billing cycles"
        )

    return ComparisonRun(
        result=result,
        current=current,
        proposed=proposed,
        cycles=cycles,
        warnings=warnings,
    )
