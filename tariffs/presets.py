"""
Built-in schedules for Seattle City Light residential customers.

Time-of-use periods apply every day of the year:
    off-peak  00:00 - 06:00
    mid-peak  06:00 - 17:00 and 21:00 - 24:00
    peak      17:00 - 21:00

See https://www.seattle.gov/city-light/residential-services/billing-information/time-of-use
"""

from dataclasses import dataclass
from datetime import time
from decimal import Decimal
from enum import Enum

from billing.core.applicability import TimeOfDayRule
from billing.core.types import RateSchedule, RateWindow


@dataclass(frozen=True, slots=True)
class TouRates:
    """Off-peak, mid-peak and peak prices in $/kWh."""

    off_peak: Decimal
    mid_peak: Decimal
    peak: Decimal


class TouLocation(str, Enum):
    """Service locations with published TOU rates."""

    SEATTLE = "seattle"
    LAKE_FOREST_PARK = "lake-forest-park"
    NORMANDY_PARK = "normandy-park"
    TUKWILA = "tukwila"
    RENTON = "renton"
    # Burien, SeaTac, Shoreline, Uninc. King County
    OTHER = "other"

    @property
    def rates(self) -> TouRates:
        return LOCATION_RATES[self]

    @property
    def label(self) -> str:
        return self.value.replace("-", " ").title()


LOCATION_RATES = {
    TouLocation.SEATTLE: TouRates(Decimal("0.0828"), Decimal("0.1449"), Decimal("0.1656")),
    TouLocation.LAKE_FOREST_PARK: TouRates(Decimal("0.0895"), Decimal("0.1565"), Decimal("0.1789")),
    TouLocation.NORMANDY_PARK: TouRates(Decimal("0.0881"), Decimal("0.1541"), Decimal("0.1762")),
    TouLocation.TUKWILA: TouRates(Decimal("0.0886"), Decimal("0.1551"), Decimal("0.1773")),
    TouLocation.RENTON: TouRates(Decimal("0.0828"), Decimal("0.1449"), Decimal("0.1656")),
    TouLocation.OTHER: TouRates(Decimal("0.0894"), Decimal("0.1565"), Decimal("0.1788")),
}


def tou_schedule(off_peak, mid_peak, peak, name: str = "TOU") -> RateSchedule:
    """
    Build the three-period TOU schedule.

    Mid-peak spans two separate clock ranges, so it is split into a daytime and
    an evening window; both carry the same price.
    """
    return RateSchedule(
        name=name,
        windows=(
            RateWindow(
                window_id="off_peak",
                name="Off-peak",
                price_per_kwh=off_peak,
                rules=(TimeOfDayRule(time(0), time(6)),),
            ),
            RateWindow(
                window_id="mid_peak",
                name="Mid-peak",
                price_per_kwh=mid_peak,
                rules=(TimeOfDayRule(time(6), time(17)),),
            ),
            RateWindow(
                window_id="peak",
                name="Peak",
                price_per_kwh=peak,
                rules=(TimeOfDayRule(time(17), time(21)),),
            ),
            RateWindow(
                window_id="mid_peak_evening",
                name="Mid-peak (evening)",
                price_per_kwh=mid_peak,
                rules=(TimeOfDayRule(time(21), time(0)),),
            ),
        ),
    )


def flat_schedule(rate, name: str = "Flat rate") -> RateSchedule:
    """A single window charging ``rate`` at all times."""
    return RateSchedule(
        name=name,
        windows=(RateWindow(window_id="flat", name="Flat", price_per_kwh=rate),),
    )


def location_schedule(location: TouLocation) -> RateSchedule:
    rates = location.rates
    return tou_schedule(
        rates.off_peak, rates.mid_peak, rates.peak, name=f"TOU ({location.label})"
    )
