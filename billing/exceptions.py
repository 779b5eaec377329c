"""Custom exceptions for the rate comparison engine."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from billing.core.types import UsageInterval


class RateComparisonError(Exception):
    """Base exception for rate comparison errors."""

    pass


class MalformedUsageSeries(RateComparisonError):
    """Raised when usage intervals are invalid, out of order, or overlapping."""

    def __init__(
        self,
        message: str,
        index: int | None = None,
        interval: UsageInterval | None = None,
    ):
        self.index = index
        self.interval = interval
        if index is not None:
            message = f"Interval {index}: {message}"
        super().__init__(message)


class InvalidSchedule(RateComparisonError):
    """Raised when a rate schedule has a coverage gap, an overlap, or bad structure."""

    def __init__(
        self,
        message: str,
        schedule_name: str | None = None,
        instant: datetime | None = None,
        window_ids: tuple[str, ...] = (),
    ):
        self.schedule_name = schedule_name
        self.instant = instant
        self.window_ids = window_ids
        if schedule_name:
            message = f"Schedule '{schedule_name}': {message}"
        super().__init__(message)


class InvalidBillingCycles(RateComparisonError):
    """Raised when billing cycles are empty, reversed, unordered, or overlapping."""

    def __init__(self, message: str, cycles: tuple[Any, ...] = ()):
        super().__init__(message)
        self.cycles = cycles


class PrecisionError(RateComparisonError):
    """Raised when decimal arithmetic overflows or becomes invalid."""

    def __init__(self, message: str, operands: tuple[Any, ...] = ()):
        super().__init__(message)
        self.operands = operands


class UsageFileError(RateComparisonError):
    """Raised when a usage export cannot be read."""

    def __init__(self, message: str, errors: list[tuple[str, str]] | None = None):
        self.errors = errors or []
        if self.errors:
            details = "; ".join(f"{where}: {problem}" for where, problem in self.errors[:5])
            message = f"{message} ({details})"
        super().__init__(message)


class ScheduleFileError(RateComparisonError):
    """Raised when a schedule definition file cannot be loaded."""

    def __init__(self, message: str, errors: list[tuple[str, list[str]]] | None = None):
        self.errors = errors or []
        if self.errors:
            details = "; ".join(
                f"{where}: {', '.join(problems)}" for where, problems in self.errors
            )
            message = f"{message} ({details})"
        super().__init__(message)
