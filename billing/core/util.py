"""Helper functions for billing engine."""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal, DivisionByZero, InvalidOperation, Overflow, localcontext
from typing import Any, Optional

import pandas as pd

from billing.exceptions import PrecisionError
from rate_compare import settings


def _to_decimal(value: Any) -> Decimal:
    """
    Convert a number to Decimal safely.

    Notes:
        Uses str(x) to avoid embedding binary-float artefacts into Decimal.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    return Decimal(str(value))


def _to_decimal_series(values: pd.Series) -> pd.Series:
    """Convert a numeric pandas Series to Decimals safely."""
    return values.map(_to_decimal)


@contextmanager
def decimal_context(precision: Optional[int] = None) -> Iterator[Any]:
    """
    Run decimal arithmetic with a fixed precision and strict traps.

    Overflow, invalid operations and division by zero surface as PrecisionError
    rather than producing infinities, NaNs or silently truncated values.
    """
    with localcontext() as ctx:
        ctx.prec = precision or settings.DECIMAL_PRECISION
        ctx.traps[Overflow] = True
        ctx.traps[InvalidOperation] = True
        ctx.traps[DivisionByZero] = True
        try:
            yield ctx
        except (Overflow, InvalidOperation, DivisionByZero) as e:
            raise PrecisionError(f"Decimal arithmetic failed: {e!r}") from e


def _absolute(instant: datetime) -> datetime:
    """
    Return an instant suitable for ordering and elapsed-time arithmetic.

    Aware datetimes sharing a tzinfo compare on wall-clock time in Python, which
    is wrong across DST transitions, so they are converted to UTC. Naive
    datetimes are already local wall-clock values and are returned unchanged.
    """
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc)


def _to_local(instant: datetime, tz: Optional[tzinfo]) -> datetime:
    """Express an absolute instant in the given zone (no-op for naive instants)."""
    if tz is None or instant.tzinfo is None:
        return instant
    return instant.astimezone(tz)


def _wall_clock(day: date, clock: time, tz: Optional[tzinfo]) -> datetime:
    """Build the absolute instant for a local date and clock time."""
    return _absolute(datetime.combine(day, clock, tzinfo=tz))


def _elapsed_microseconds(start: datetime, end: datetime) -> int:
    return (end - start) // timedelta(microseconds=1)


def _dates_between(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)
