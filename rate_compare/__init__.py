"""Compare electricity costs under two rate schedules."""

__version__ = "0.1.0"
