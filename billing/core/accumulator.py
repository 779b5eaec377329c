"""
Tiered cost accumulation over classified slices.

Tier state is scoped to one billing cycle of one schedule evaluation and is
threaded explicitly through the chronological scan.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal
from typing import Optional

from billing.exceptions import MalformedUsageSeries

from .cycles import CycleIndex
from .types import (
    BilledSlice,
    BillingCycle,
    ClassifiedSlice,
    CycleCost,
    RateSchedule,
    RateWindow,
    ScheduleCost,
    TierPortion,
    TierScope,
    WindowCost,
)
from .util import _absolute, decimal_context

logger = logging.getLogger(__name__)


class TierAccumulator:
    """
    Running cumulative energy for one billing cycle of one schedule.

    With ``TierScope.CYCLE`` a single running total is kept for the cycle. With
    ``TierScope.WINDOW`` each rate window climbs its own copy of the ladder.
    """

    def __init__(self, schedule: RateSchedule, cycle: BillingCycle):
        self.schedule = schedule
        self.cycle = cycle
        self._cumulative: dict[Optional[str], Decimal] = defaultdict(Decimal)

    def _key(self, window: RateWindow) -> Optional[str]:
        if self.schedule.tier_scope == TierScope.WINDOW:
            return window.window_id
        return None

    def position(self, window: RateWindow) -> Decimal:
        """Cumulative kWh already billed on the ladder ``window`` climbs."""
        return self._cumulative[self._key(window)]

    def bill(self, classified: ClassifiedSlice) -> BilledSlice:
        """
        Price one slice and advance the running total.

        A slice crossing a threshold is split there and each part billed at the
        marginal price of its tier. Energy beyond the last threshold is billed
        at the final, unbounded tier; that is normal operation.
        """
        key = self._key(classified.window)
        start_position = self._cumulative[key]
        position = start_position
        remaining = classified.energy_kwh
        portions: list[TierPortion] = []

        with decimal_context():
            for index, tier in enumerate(self.schedule.effective_tiers):
                if tier.threshold_kwh is not None and position >= tier.threshold_kwh:
                    continue

                if tier.threshold_kwh is None:
                    energy_in_tier = remaining
                else:
                    energy_in_tier = min(remaining, tier.threshold_kwh - position)

                price = classified.window.price_per_kwh + tier.price_per_kwh
                portions.append(
                    TierPortion(
                        tier_index=index,
                        energy_kwh=energy_in_tier,
                        price_per_kwh=price,
                        cost_usd=energy_in_tier * price,
                    )
                )
                position += energy_in_tier
                remaining -= energy_in_tier
                if remaining <= 0:
                    break

        self._cumulative[key] = position
        return BilledSlice(
            slice=classified,
            cycle=self.cycle,
            cumulative_kwh_start=start_position,
            portions=tuple(portions),
        )


def _window_costs(
    schedule: RateSchedule, billed: Iterable[BilledSlice]
) -> tuple[WindowCost, ...]:
    energy: dict[str, Decimal] = defaultdict(Decimal)
    cost: dict[str, Decimal] = defaultdict(Decimal)
    for billed_slice in billed:
        window_id = billed_slice.window.window_id
        energy[window_id] += billed_slice.energy_kwh
        cost[window_id] += billed_slice.cost_usd

    return tuple(
        WindowCost(
            window_id=window.window_id,
            name=window.name,
            energy_kwh=energy[window.window_id],
            cost_usd=cost[window.window_id],
        )
        for window in schedule.windows
    )


def summarize_billed(
    schedule: RateSchedule,
    cycles: tuple[BillingCycle, ...],
    billed: list[BilledSlice],
    unbilled_kwh: Decimal = Decimal("0"),
) -> ScheduleCost:
    """Aggregate billed slices by window, by cycle, and in total."""
    with decimal_context():
        by_cycle: dict[BillingCycle, list[BilledSlice]] = defaultdict(list)
        for billed_slice in billed:
            by_cycle[billed_slice.cycle].append(billed_slice)

        cycle_costs = []
        for cycle in cycles:
            windows = _window_costs(schedule, by_cycle[cycle])
            cycle_costs.append(
                CycleCost(
                    cycle=cycle,
                    energy_kwh=sum((w.energy_kwh for w in windows), start=Decimal("0")),
                    cost_usd=sum((w.cost_usd for w in windows), start=Decimal("0")),
                    windows=windows,
                )
            )

        windows = _window_costs(schedule, billed)
        total = sum((w.cost_usd for w in windows), start=Decimal("0"))
        energy = sum((w.energy_kwh for w in windows), start=Decimal("0"))

    return ScheduleCost(
        schedule_name=schedule.name,
        total_usd=total,
        energy_kwh=energy,
        windows=windows,
        cycles=tuple(cycle_costs),
        slices=tuple(billed),
        unbilled_kwh=unbilled_kwh,
    )


def accumulate(
    slices: Iterable[ClassifiedSlice],
    schedule: RateSchedule,
    cycles: tuple[BillingCycle, ...],
) -> ScheduleCost:
    """
    Bill chronological slices cycle by cycle.

    Each cycle gets a fresh TierAccumulator, so cumulative energy resets at every
    cycle boundary. Slices are expected to have been split at cycle starts
    already (see ``cycles.cycle_cut_points``); a slice is assigned to the cycle
    containing its start. Slices outside every cycle are not billed and their
    energy is returned as ``unbilled_kwh``.

    Args:
        slices: classified slices in chronological order
        schedule: the schedule the slices were classified against
        cycles: validated, chronological billing cycles

    Returns:
        ScheduleCost with per-window, per-cycle and total figures

    Raises:
        MalformedUsageSeries: if slices arrive out of chronological order
    """
    index = CycleIndex(cycles)
    accumulators: dict[BillingCycle, TierAccumulator] = {}
    billed: list[BilledSlice] = []
    unbilled = Decimal("0")
    previous_end = None

    for classified in slices:
        slice_start = _absolute(classified.start)
        if previous_end is not None and slice_start < previous_end:
            raise MalformedUsageSeries(
                f"slice starting {classified.start} arrived out of chronological order"
            )
        previous_end = _absolute(classified.end)

        cycle = index.find(classified.start)
        if cycle is None:
            unbilled += classified.energy_kwh
            continue

        accumulator = accumulators.get(cycle)
        if accumulator is None:
            logger.debug(
                "Schedule '%s': starting tier accumulation for %s", schedule.name, cycle.label
            )
            accumulator = accumulators[cycle] = TierAccumulator(schedule, cycle)
        billed.append(accumulator.bill(classified))

    return summarize_billed(schedule, cycles, billed, unbilled)
