"""
Unit tests for tiered cost accumulation.

Tests tier crossing, tier scopes and per-cycle resets.
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from unittest import TestCase

import pytest

from billing.core.accumulator import TierAccumulator, accumulate
from billing.core.applicability import TimeOfDayRule
from billing.core.types import (
    BillingCycle,
    ClassifiedSlice,
    RateSchedule,
    RateWindow,
    Tier,
    TierScope,
)
from billing.exceptions import MalformedUsageSeries


def make_slice(window, start, kwh, hours=1):
    return ClassifiedSlice(
        start=start,
        end=start + timedelta(hours=hours),
        energy_kwh=Decimal(str(kwh)),
        window=window,
    )


def test_tier_crossing_splits_slice(tiered_schedule, january_cycle):
    """
    Cumulative 480 kWh, then a 40 kWh slice crosses the 500 kWh threshold.

    Expected: 20 kWh at $0.12 ($2.40) + 20 kWh at $0.18 ($3.60) = $6.00
    """
    window = tiered_schedule.windows[0]
    accumulator = TierAccumulator(tiered_schedule, january_cycle)
    accumulator.bill(make_slice(window, datetime(2024, 1, 1), 480))

    billed = accumulator.bill(make_slice(window, datetime(2024, 1, 2), 40))

    assert billed.cumulative_kwh_start == Decimal("480")
    assert [(p.tier_index, p.energy_kwh, p.cost_usd) for p in billed.portions] == [
        (0, Decimal("20"), Decimal("2.40")),
        (1, Decimal("20"), Decimal("3.60")),
    ]
    assert billed.cost_usd == Decimal("6.00")
    assert accumulator.position(window) == Decimal("520")


def test_slice_ending_exactly_on_threshold_stays_in_lower_tier(tiered_schedule, january_cycle):
    window = tiered_schedule.windows[0]
    accumulator = TierAccumulator(tiered_schedule, january_cycle)

    billed = accumulator.bill(make_slice(window, datetime(2024, 1, 1), 500))
    next_billed = accumulator.bill(make_slice(window, datetime(2024, 1, 2), 1))

    assert [p.tier_index for p in billed.portions] == [0]
    assert [p.tier_index for p in next_billed.portions] == [1]
    assert next_billed.cost_usd == Decimal("0.18")


def test_energy_beyond_last_threshold_uses_unbounded_tier(tiered_schedule, january_cycle):
    window = tiered_schedule.windows[0]
    accumulator = TierAccumulator(tiered_schedule, january_cycle)

    billed = accumulator.bill(make_slice(window, datetime(2024, 1, 1), 10000))

    assert billed.portions[-1].tier_index == 1
    assert billed.portions[-1].energy_kwh == Decimal("9500")


def test_marginal_price_adds_window_and_tier_prices(january_cycle):
    schedule = RateSchedule(
        name="TOU with tiers",
        windows=(
            RateWindow("night", "0.05", (TimeOfDayRule(time(0), time(12)),)),
            RateWindow("day", "0.10", (TimeOfDayRule(time(12), time(0)),)),
        ),
        tiers=(Tier("10", "0"), Tier(None, "0.02")),
    )
    accumulator = TierAccumulator(schedule, january_cycle)

    accumulator.bill(make_slice(schedule.window("night"), datetime(2024, 1, 1, 1), 10))
    billed = accumulator.bill(make_slice(schedule.window("day"), datetime(2024, 1, 1, 13), 5))

    assert billed.portions[0].price_per_kwh == Decimal("0.12")
    assert billed.cost_usd == Decimal("0.60")


def test_zero_energy_slice_gets_single_zero_portion(tiered_schedule, january_cycle):
    accumulator = TierAccumulator(tiered_schedule, january_cycle)

    billed = accumulator.bill(make_slice(tiered_schedule.windows[0], datetime(2024, 1, 1), 0))

    assert len(billed.portions) == 1
    assert billed.cost_usd == Decimal("0")


@pytest.mark.parametrize("kwh", ["1", "499.99", "500", "500.01", "1234.5"])
def test_marginal_cost_never_decreases(tiered_schedule, january_cycle, kwh):
    """Billing in many small slices never gives a lower marginal price later on."""
    window = tiered_schedule.windows[0]
    accumulator = TierAccumulator(tiered_schedule, january_cycle)
    step = Decimal(kwh) / 7

    prices = []
    for i in range(7):
        billed = accumulator.bill(make_slice(window, datetime(2024, 1, 1, i), step))
        prices.extend(p.price_per_kwh for p in billed.portions)

    assert prices == sorted(prices)


class TierScopeTests(TestCase):
    """Tests for cycle-wide versus per-window ladders."""

    def setUp(self):
        self.cycle = BillingCycle(date(2024, 1, 1), date(2024, 1, 31))
        self.windows = (
            RateWindow("night", "0", (TimeOfDayRule(time(0), time(12)),)),
            RateWindow("day", "0", (TimeOfDayRule(time(12), time(0)),)),
        )
        self.tiers = (Tier("10", "0.10"), Tier(None, "0.20"))

    def test_cycle_scope_shares_one_running_total(self):
        schedule = RateSchedule("Cycle", self.windows, self.tiers, TierScope.CYCLE)
        accumulator = TierAccumulator(schedule, self.cycle)

        accumulator.bill(make_slice(self.windows[0], datetime(2024, 1, 1, 1), 10))
        billed = accumulator.bill(make_slice(self.windows[1], datetime(2024, 1, 1, 13), 5))

        self.assertEqual(billed.cumulative_kwh_start, Decimal("10"))
        self.assertEqual(billed.cost_usd, Decimal("1.00"))

    def test_window_scope_keeps_separate_running_totals(self):
        schedule = RateSchedule("Window", self.windows, self.tiers, TierScope.WINDOW)
        accumulator = TierAccumulator(schedule, self.cycle)

        accumulator.bill(make_slice(self.windows[0], datetime(2024, 1, 1, 1), 10))
        billed = accumulator.bill(make_slice(self.windows[1], datetime(2024, 1, 1, 13), 5))

        self.assertEqual(billed.cumulative_kwh_start, Decimal("0"))
        self.assertEqual(billed.cost_usd, Decimal("0.50"))
        self.assertEqual(accumulator.position(self.windows[0]), Decimal("10"))
        self.assertEqual(accumulator.position(self.windows[1]), Decimal("5"))


class AccumulateTests(TestCase):
    """Tests for billing a whole slice stream across cycles."""

    def setUp(self):
        self.schedule = RateSchedule(
            name="Tiered",
            windows=(RateWindow("all_day", "0"),),
            tiers=(Tier("500", "0.12"), Tier(None, "0.18")),
        )
        self.window = self.schedule.windows[0]
        self.cycles = (
            BillingCycle(date(2024, 1, 1), date(2024, 1, 31)),
            BillingCycle(date(2024, 2, 1), date(2024, 2, 29)),
        )

    def test_tiers_reset_each_cycle(self):
        slices = [
            make_slice(self.window, datetime(2024, 1, 10), 400),
            make_slice(self.window, datetime(2024, 1, 20), 200),
            make_slice(self.window, datetime(2024, 2, 10), 400),
        ]

        result = accumulate(slices, self.schedule, self.cycles)

        january, february = result.cycles
        # 500 * 0.12 + 100 * 0.18
        self.assertEqual(january.cost_usd, Decimal("78.00"))
        self.assertEqual(february.cost_usd, Decimal("48.00"))
        self.assertEqual(result.total_usd, Decimal("126.00"))
        self.assertEqual(result.slices[2].cumulative_kwh_start, Decimal("0"))

    def test_totals_are_consistent(self):
        slices = [
            make_slice(self.window, datetime(2024, 1, 10), "123.4"),
            make_slice(self.window, datetime(2024, 1, 25), "456.7"),
            make_slice(self.window, datetime(2024, 2, 3), "89.1"),
        ]

        result = accumulate(slices, self.schedule, self.cycles)

        self.assertEqual(result.total_usd, sum(c.cost_usd for c in result.cycles))
        self.assertEqual(result.total_usd, sum(w.cost_usd for w in result.windows))
        self.assertEqual(result.energy_kwh, Decimal("669.2"))
        self.assertEqual(result.breakdown, {"all_day": result.total_usd})

    def test_slices_outside_cycles_are_unbilled(self):
        slices = [
            make_slice(self.window, datetime(2023, 12, 31, 22), 3),
            make_slice(self.window, datetime(2024, 1, 1), 5),
            make_slice(self.window, datetime(2024, 3, 1), 7),
        ]

        result = accumulate(slices, self.schedule, self.cycles)

        self.assertEqual(result.unbilled_kwh, Decimal("10"))
        self.assertEqual(result.energy_kwh, Decimal("5"))
        self.assertEqual(len(result.slices), 1)

    def test_cycle_without_usage_reports_zero(self):
        slices = [make_slice(self.window, datetime(2024, 1, 5), 10)]

        result = accumulate(slices, self.schedule, self.cycles)

        self.assertEqual(result.cycles[1].cost_usd, Decimal("0"))
        self.assertEqual(result.cycles[1].energy_kwh, Decimal("0"))

    def test_out_of_order_slices_raise(self):
        slices = [
            make_slice(self.window, datetime(2024, 1, 10), 1),
            make_slice(self.window, datetime(2024, 1, 5), 1),
        ]

        with self.assertRaises(MalformedUsageSeries):
            accumulate(slices, self.schedule, self.cycles)

    def test_window_costs_follow_schedule_order(self):
        schedule = RateSchedule(
            name="TOU",
            windows=(
                RateWindow("peak", "0.3", (TimeOfDayRule(time(17), time(21)),)),
                RateWindow("off_peak", "0.1", (TimeOfDayRule(time(21), time(17)),)),
            ),
        )
        slices = [
            make_slice(schedule.window("off_peak"), datetime(2024, 1, 1, 8), 2),
            make_slice(schedule.window("peak"), datetime(2024, 1, 1, 18), 1),
        ]

        result = accumulate(slices, schedule, self.cycles)

        self.assertEqual([w.window_id for w in result.windows], ["peak", "off_peak"])
        self.assertEqual(result.window_cost("peak").cost_usd, Decimal("0.3"))
        self.assertEqual(result.window_cost("off_peak").cost_usd, Decimal("0.2"))
