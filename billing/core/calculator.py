"""
Core comparison functions.

Orchestrates classification and tier accumulation per schedule and compares two
schedules over the same usage series.
"""

import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Optional

import pandas as pd

from billing.exceptions import MalformedUsageSeries

from .accumulator import accumulate
from .classifier import classify_series
from .cycles import cycle_cut_points, derive_calendar_cycles, validate_billing_cycles
from .data import summarize_usage, validate_usage_series
from .schedule import validate_schedule
from .types import (
    BillingCycle,
    ComparisonResult,
    RateSchedule,
    ScheduleCost,
    UsageInterval,
    UsageReconciliation,
)
from .util import _to_decimal, decimal_context

logger = logging.getLogger(__name__)

SLICE_COLUMNS = [
    "interval_start",
    "interval_end",
    "billing_cycle",
    "window_id",
    "window",
    "cumulative_kwh_start",
    "kwh",
    "cost_usd",
]


def evaluate_schedule(
    intervals: tuple[UsageInterval, ...],
    schedule: RateSchedule,
    cycles: tuple[BillingCycle, ...],
) -> ScheduleCost:
    """
    Cost a usage series under one schedule.

    Intervals are classified with every cycle start as a forced cut point, so
    an interval straddling a cycle boundary contributes to both cycles.

    Args:
        intervals: validated, chronological usage series
        schedule: validated schedule
        cycles: validated billing cycles

    Returns:
        ScheduleCost for this schedule alone
    """
    tz = intervals[0].start.tzinfo if intervals else None
    cut_points = cycle_cut_points(cycles, tz)
    slices = classify_series(intervals, schedule, cut_points)
    return accumulate(slices, schedule, cycles)


def reconcile_usage(
    metered_kwh: Decimal,
    schedule_cost: ScheduleCost,
    reference_kwh: Optional[Decimal] = None,
) -> UsageReconciliation:
    """
    Compare metered energy with billed energy and an external reference total.

    Meter data and the utility's bill rarely cover exactly the same period, so
    a difference against ``reference_kwh`` is expected. It is reported as-is;
    costs are never scaled to match the reference.
    """
    discrepancy = None
    with decimal_context():
        if reference_kwh is not None:
            reference_kwh = _to_decimal(reference_kwh)
            discrepancy = reference_kwh - metered_kwh

    if schedule_cost.unbilled_kwh:
        logger.warning(
            "%s kWh of usage falls outside the billing cycles and was not billed",
            schedule_cost.unbilled_kwh,
        )
    if discrepancy:
        logger.warning(
            "Metered usage %s kWh differs from reference %s kWh by %s kWh",
            metered_kwh,
            reference_kwh,
            discrepancy,
        )

    return UsageReconciliation(
        metered_kwh=metered_kwh,
        billed_kwh=schedule_cost.energy_kwh,
        unbilled_kwh=schedule_cost.unbilled_kwh,
        reference_kwh=reference_kwh,
        discrepancy_kwh=discrepancy,
    )


def compare(
    usage: Iterable[UsageInterval],
    schedule_a: RateSchedule,
    schedule_b: RateSchedule,
    billing_cycles: Optional[Iterable[BillingCycle]] = None,
    reference_kwh: Optional[Decimal] = None,
) -> ComparisonResult:
    """
    Compare the cost of the same usage under two schedules.

    Each schedule is evaluated independently with its own accumulator state;
    nothing computed for one is visible to the other. Validation of the usage
    series, both schedules and the billing cycles happens before any cost is
    computed, so a result is either complete or an exception is raised.

    Args:
        usage: chronological, non-overlapping usage intervals
        schedule_a: the current schedule
        schedule_b: the proposed schedule
        billing_cycles: cycles over which tiers accumulate. If None, uses
            calendar months derived from the usage data.
        reference_kwh: optional externally reported usage (e.g. from a bill),
            used only to report a discrepancy

    Returns:
        ComparisonResult with ``delta = schedule_b_total - schedule_a_total``

    Raises:
        MalformedUsageSeries: if the usage series is empty or invalid
        InvalidSchedule: if either schedule has a coverage gap or overlap
        InvalidBillingCycles: if supplied cycles are empty or overlap
    """
    intervals = validate_usage_series(usage)
    if not intervals:
        raise MalformedUsageSeries("usage series is empty")

    validate_schedule(schedule_a)
    validate_schedule(schedule_b)

    if billing_cycles is None:
        cycles = derive_calendar_cycles(intervals)
    else:
        cycles = validate_billing_cycles(billing_cycles)

    summary = summarize_usage(intervals)

    cost_a = evaluate_schedule(intervals, schedule_a, cycles)
    cost_b = evaluate_schedule(intervals, schedule_b, cycles)

    with decimal_context():
        delta = cost_b.total_usd - cost_a.total_usd

    logger.info(
        "Compared %d intervals over %d cycle(s): %s = %s, %s = %s, delta %s",
        summary.interval_count,
        len(cycles),
        schedule_a.name,
        cost_a.total_usd,
        schedule_b.name,
        cost_b.total_usd,
        delta,
    )

    return ComparisonResult(
        schedule_a=cost_a,
        schedule_b=cost_b,
        delta=delta,
        usage=summary,
        reconciliation=reconcile_usage(summary.metered_kwh, cost_a, reference_kwh),
    )


def slices_frame(schedule_cost: ScheduleCost) -> pd.DataFrame:
    """
    Tabulate billed slices, one row per slice.

    Columns: interval_start, interval_end, billing_cycle, window_id, window,
    cumulative_kwh_start, kwh, cost_usd (Decimal values are kept as objects).
    """
    rows = [
        {
            "interval_start": billed.start,
            "interval_end": billed.end,
            "billing_cycle": billed.cycle.label,
            "window_id": billed.window.window_id,
            "window": billed.window.name,
            "cumulative_kwh_start": billed.cumulative_kwh_start,
            "kwh": billed.energy_kwh,
            "cost_usd": billed.cost_usd,
        }
        for billed in schedule_cost.slices
    ]
    return pd.DataFrame(rows, columns=SLICE_COLUMNS)


def _decimal_sum(values: pd.Series) -> Decimal:
    return sum(values, start=Decimal("0"))


def daily_costs(schedule_cost: ScheduleCost) -> pd.DataFrame:
    """
    Aggregate billed slices per local calendar day and window.

    Returns:
        DataFrame with columns date, window_id, kwh, cost_usd
    """
    df = slices_frame(schedule_cost)
    if df.empty:
        return pd.DataFrame(columns=["date", "window_id", "kwh", "cost_usd"])

    df["date"] = [billed.start.date() for billed in schedule_cost.slices]
    grouped = df.groupby(["date", "window_id"], sort=True)[["kwh", "cost_usd"]].agg(_decimal_sum)
    return grouped.reset_index()
