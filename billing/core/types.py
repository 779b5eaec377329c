"""
Define lightweight dataclasses to use for rate comparisons.

Everything here is immutable. Monetary amounts and energy are Decimals; numeric
inputs are converted through str() so binary float artefacts never leak in.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from billing.exceptions import InvalidBillingCycles, InvalidSchedule, MalformedUsageSeries

from .applicability import Predicate, collect_boundary_times, rules_match
from .util import _absolute, _to_decimal


class TierScope(str, Enum):
    """Which running total a tier ladder is measured against."""

    CYCLE = "cycle"
    WINDOW = "window"


@dataclass(frozen=True, slots=True)
class UsageInterval:
    """
    Metered energy over ``[start, end)``.

    Timestamps are either both naive local wall-clock datetimes or both
    timezone-aware.
    """

    start: datetime
    end: datetime
    energy_kwh: Decimal

    def __post_init__(self) -> None:
        try:
            energy = _to_decimal(self.energy_kwh)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise MalformedUsageSeries(f"energy_kwh is not a number: {self.energy_kwh!r}") from e
        object.__setattr__(self, "energy_kwh", energy)

        if (self.start.tzinfo is None) != (self.end.tzinfo is None):
            raise MalformedUsageSeries(
                "start and end must both be naive or both be timezone-aware", interval=self
            )
        if _absolute(self.start) >= _absolute(self.end):
            raise MalformedUsageSeries(
                f"start {self.start} must be strictly earlier than end {self.end}", interval=self
            )
        if not energy.is_finite() or energy < 0:
            raise MalformedUsageSeries(
                f"energy_kwh must be finite and non-negative, got {energy}", interval=self
            )

    @property
    def duration(self) -> timedelta:
        return _absolute(self.end) - _absolute(self.start)


@dataclass(frozen=True, slots=True)
class RateWindow:
    """
    A price that applies whenever all of its rules match.

    ``window_id`` keys the cost breakdown; ``name`` is for display.
    """

    window_id: str
    price_per_kwh: Decimal
    rules: tuple[Predicate, ...] = ()
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "price_per_kwh", _to_decimal(self.price_per_kwh))
        object.__setattr__(self, "rules", tuple(self.rules))
        if not self.name:
            object.__setattr__(self, "name", self.window_id)

    def matches(self, instant: datetime) -> bool:
        return rules_match(self.rules, instant)


@dataclass(frozen=True, slots=True)
class Tier:
    """
    One bracket of a cumulative consumption ladder.

    ``threshold_kwh`` is the cumulative upper bound of the bracket; None marks
    the final, unbounded tier.
    """

    threshold_kwh: Optional[Decimal]
    price_per_kwh: Decimal

    def __post_init__(self) -> None:
        if self.threshold_kwh is not None:
            object.__setattr__(self, "threshold_kwh", _to_decimal(self.threshold_kwh))
        object.__setattr__(self, "price_per_kwh", _to_decimal(self.price_per_kwh))


UNTIERED = (Tier(threshold_kwh=None, price_per_kwh=Decimal("0")),)


@dataclass(frozen=True, slots=True)
class RateSchedule:
    """
    A tariff: rate windows plus an optional tier ladder.

    The marginal price of a kWh is the matching window's price plus the price
    of the tier its cumulative position falls in. Without tiers the window
    price is the whole price.

    Structural problems are rejected at construction. Coverage (every instant
    matched by exactly one window) is checked by
    ``billing.core.schedule.validate_schedule``.
    """

    name: str
    windows: tuple[RateWindow, ...]
    tiers: tuple[Tier, ...] = ()
    tier_scope: TierScope = TierScope.CYCLE

    def __post_init__(self) -> None:
        object.__setattr__(self, "windows", tuple(self.windows))
        object.__setattr__(self, "tiers", tuple(self.tiers))
        object.__setattr__(self, "tier_scope", TierScope(self.tier_scope))

        if not self.windows:
            raise InvalidSchedule("must define at least one rate window", self.name)

        seen: set[str] = set()
        for window in self.windows:
            if window.window_id in seen:
                raise InvalidSchedule(
                    f"duplicate window id '{window.window_id}'",
                    self.name,
                    window_ids=(window.window_id,),
                )
            seen.add(window.window_id)

        previous: Optional[Decimal] = Decimal("0")
        for index, tier in enumerate(self.tiers):
            is_last = index == len(self.tiers) - 1
            if tier.threshold_kwh is None:
                if not is_last:
                    raise InvalidSchedule("only the last tier may be unbounded", self.name)
                continue
            if tier.threshold_kwh <= previous:
                raise InvalidSchedule(
                    "tier thresholds must be positive and strictly increasing", self.name
                )
            previous = tier.threshold_kwh
        if self.tiers and self.tiers[-1].threshold_kwh is not None:
            raise InvalidSchedule("the last tier must be unbounded", self.name)
        for lower, upper in zip(self.tiers, self.tiers[1:]):
            if upper.price_per_kwh < lower.price_per_kwh:
                raise InvalidSchedule("tier prices must not decrease", self.name)

    @property
    def is_tiered(self) -> bool:
        return bool(self.tiers)

    @property
    def effective_tiers(self) -> tuple[Tier, ...]:
        return self.tiers or UNTIERED

    def windows_at(self, instant: datetime) -> tuple[RateWindow, ...]:
        """Every window applicable at the local instant; exactly one when valid."""
        return tuple(window for window in self.windows if window.matches(instant))

    def window(self, window_id: str) -> RateWindow:
        for window in self.windows:
            if window.window_id == window_id:
                return window
        raise KeyError(window_id)

    def boundary_times(self) -> tuple[time, ...]:
        """Sorted local clock times at which the matching window may change."""
        return tuple(
            sorted(collect_boundary_times(rule for w in self.windows for rule in w.rules))
        )


@dataclass(frozen=True, slots=True)
class BillingCycle:
    """
    Period over which tier accumulation runs.

    Both dates are inclusive.
    """

    start_date: date
    end_date: date

    def __post_init__(self) -> None:
        if self.start_date > self.end_date:
            raise InvalidBillingCycles(
                f"cycle start {self.start_date} is after its end {self.end_date}"
            )

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def label(self) -> str:
        return f"{self.start_date:%Y-%m-%d} -- {self.end_date:%Y-%m-%d}"

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True, slots=True)
class ClassifiedSlice:
    """A sub-interval of usage attributed to exactly one rate window."""

    start: datetime
    end: datetime
    energy_kwh: Decimal
    window: RateWindow

    @property
    def duration(self) -> timedelta:
        return _absolute(self.end) - _absolute(self.start)


@dataclass(frozen=True, slots=True)
class TierPortion:
    """Part of a slice billed within a single tier."""

    tier_index: int
    energy_kwh: Decimal
    price_per_kwh: Decimal
    cost_usd: Decimal


@dataclass(frozen=True, slots=True)
class BilledSlice:
    """A classified slice priced against the tier ladder of its cycle."""

    slice: ClassifiedSlice
    cycle: BillingCycle
    cumulative_kwh_start: Decimal
    portions: tuple[TierPortion, ...]

    @property
    def start(self) -> datetime:
        return self.slice.start

    @property
    def end(self) -> datetime:
        return self.slice.end

    @property
    def window(self) -> RateWindow:
        return self.slice.window

    @property
    def energy_kwh(self) -> Decimal:
        return self.slice.energy_kwh

    @property
    def cost_usd(self) -> Decimal:
        return sum((portion.cost_usd for portion in self.portions), start=Decimal("0"))


@dataclass(frozen=True, slots=True)
class WindowCost:
    """Cost and energy aggregated for one rate window."""

    window_id: str
    name: str
    energy_kwh: Decimal
    cost_usd: Decimal


@dataclass(frozen=True, slots=True)
class CycleCost:
    """Cost and energy for one billing cycle, broken down by window."""

    cycle: BillingCycle
    energy_kwh: Decimal
    cost_usd: Decimal
    windows: tuple[WindowCost, ...]


@dataclass(frozen=True, slots=True)
class ScheduleCost:
    """
    Full evaluation of one schedule over a usage series.

    ``total_usd`` equals the sum of ``windows`` costs and of ``cycles`` costs.
    Energy outside every billing cycle is reported in ``unbilled_kwh``.
    """

    schedule_name: str
    total_usd: Decimal
    energy_kwh: Decimal
    windows: tuple[WindowCost, ...]
    cycles: tuple[CycleCost, ...]
    slices: tuple[BilledSlice, ...] = ()
    unbilled_kwh: Decimal = Decimal("0")

    @property
    def breakdown(self) -> dict[str, Decimal]:
        """Mapping of window id to cost."""
        return {w.window_id: w.cost_usd for w in self.windows}

    def window_cost(self, window_id: str) -> WindowCost:
        for window in self.windows:
            if window.window_id == window_id:
                return window
        raise KeyError(window_id)


@dataclass(frozen=True, slots=True)
class UsageSummary:
    """Descriptive facts about a validated usage series."""

    interval_count: int
    start: Optional[datetime]
    end: Optional[datetime]
    metered_kwh: Decimal
    gap_count: int = 0
    missing_duration: timedelta = field(default_factory=timedelta)


@dataclass(frozen=True, slots=True)
class UsageReconciliation:
    """
    Metered versus billed versus externally reported energy.

    ``discrepancy_kwh`` is ``reference_kwh - metered_kwh`` when a reference is
    supplied. It is reported only; no cost figure is adjusted for it.
    """

    metered_kwh: Decimal
    billed_kwh: Decimal
    unbilled_kwh: Decimal
    reference_kwh: Optional[Decimal] = None
    discrepancy_kwh: Optional[Decimal] = None

    @property
    def has_discrepancy(self) -> bool:
        return bool(self.discrepancy_kwh)


@dataclass(frozen=True, slots=True)
class ComparisonResult:
    """Costs of the same usage under two schedules."""

    schedule_a: ScheduleCost
    schedule_b: ScheduleCost
    delta: Decimal
    usage: UsageSummary
    reconciliation: UsageReconciliation

    @property
    def schedule_a_total(self) -> Decimal:
        return self.schedule_a.total_usd

    @property
    def schedule_b_total(self) -> Decimal:
        return self.schedule_b.total_usd

    @property
    def per_window_breakdown(self) -> dict[str, dict[str, Decimal]]:
        return {
            "schedule_a": self.schedule_a.breakdown,
            "schedule_b": self.schedule_b.breakdown,
        }
