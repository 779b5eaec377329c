"""
YAML import/export service for rate schedules.

Provides loading and dumping of rate schedules with windows, predicates and
tiers. Every loaded schedule is checked for full, non-overlapping coverage.

YAML Format:
    schedules:
      - name: "Seattle TOU"
        tier_scope: "cycle"            # optional: cycle | window
        tiers:                         # optional cumulative ladder
          - threshold_kwh: 500
            price_per_kwh: 0.0
          - threshold_kwh: null        # last tier is unbounded
            price_per_kwh: 0.02
        windows:
          - id: "off_peak"
            name: "Off-peak"
            price_per_kwh: 0.0828
            rules:
              - time_of_day: {start: "00:00", end: "06:00"}
          - id: "summer_weekday_peak"
            price_per_kwh: 0.1656
            rules:
              - time_of_day: {start: "17:00", end: "21:00"}
              - days_of_week: "weekdays"   # or a list: [mon, tue] / [0, 1]
              - season: {start: "06-01", end: "09-30"}
              - holidays: {dates: ["2024-07-04"], observed: false}

Times are HH:MM or HH:MM:SS; "24:00" is accepted as the end of the day.
Season bounds are MM-DD or YYYY-MM-DD (the year is ignored).
"""

import datetime
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing.core.applicability import (
    ALL_DAYS,
    WEEKDAYS,
    WEEKEND,
    DaysOfWeekRule,
    HolidayRule,
    Predicate,
    SeasonRule,
    TimeOfDayRule,
    Weekday,
)
from billing.core.schedule import validate_schedule
from billing.core.types import RateSchedule, RateWindow, Tier, TierScope
from billing.exceptions import InvalidSchedule, ScheduleFileError

logger = logging.getLogger(__name__)

DAY_NAMES = {
    "mon": Weekday.MONDAY,
    "tue": Weekday.TUESDAY,
    "wed": Weekday.WEDNESDAY,
    "thu": Weekday.THURSDAY,
    "fri": Weekday.FRIDAY,
    "sat": Weekday.SATURDAY,
    "sun": Weekday.SUNDAY,
}

DAY_GROUPS = {
    "weekdays": WEEKDAYS,
    "weekends": WEEKEND,
    "all": ALL_DAYS,
}


class _ScheduleDumper(yaml.SafeDumper):
    pass


def _decimal_representer(dumper, value):
    # Preserve precision exactly as written
    return dumper.represent_scalar("tag:yaml.org,2002:float", str(value))


yaml.add_representer(Decimal, _decimal_representer, Dumper=_ScheduleDumper)


class ScheduleYAMLExporter:
    """Export rate schedules to YAML format."""

    def __init__(self, schedules: list[RateSchedule]):
        self.schedules = schedules

    def export_to_yaml(self) -> str:
        """
        Export schedules to YAML string.

        Returns:
            YAML string that ScheduleYAMLImporter reads back to equal schedules
        """
        data = {"schedules": [self._serialize_schedule(s) for s in self.schedules]}
        return yaml.dump(
            data,
            Dumper=_ScheduleDumper,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    def _serialize_schedule(self, schedule: RateSchedule) -> dict:
        result: dict[str, Any] = {"name": schedule.name}
        if schedule.tiers:
            result["tier_scope"] = schedule.tier_scope.value
            result["tiers"] = [
                {"threshold_kwh": tier.threshold_kwh, "price_per_kwh": tier.price_per_kwh}
                for tier in schedule.tiers
            ]
        result["windows"] = [self._serialize_window(w) for w in schedule.windows]
        return result

    def _serialize_window(self, window: RateWindow) -> dict:
        result: dict[str, Any] = {"id": window.window_id}
        if window.name != window.window_id:
            result["name"] = window.name
        result["price_per_kwh"] = window.price_per_kwh
        if window.rules:
            result["rules"] = [self._serialize_rule(rule) for rule in window.rules]
        return result

    def _serialize_rule(self, rule: Predicate) -> dict:
        if isinstance(rule, TimeOfDayRule):
            return {
                "time_of_day": {
                    "start": rule.start.strftime("%H:%M:%S" if rule.start.second else "%H:%M"),
                    "end": rule.end.strftime("%H:%M:%S" if rule.end.second else "%H:%M"),
                }
            }
        if isinstance(rule, DaysOfWeekRule):
            names = {v: k for k, v in DAY_NAMES.items()}
            return {"days_of_week": [names[day] for day in sorted(rule.days)]}
        if isinstance(rule, SeasonRule):
            return {
                "season": {
                    "start": rule.start.strftime("%m-%d"),
                    "end": rule.end.strftime("%m-%d"),
                }
            }
        if isinstance(rule, HolidayRule):
            return {
                "holidays": {
                    "dates": [d.isoformat() for d in sorted(rule.dates)],
                    "observed": rule.observed,
                }
            }
        raise TypeError(f"Unsupported rule type: {type(rule).__name__}")


class ScheduleYAMLImporter:
    """Import rate schedules from YAML format with validation."""

    def __init__(self, yaml_content: str):
        """
        Initialize importer with YAML content.

        Args:
            yaml_content: YAML string to parse
        """
        self.yaml_content = yaml_content
        self.results: dict[str, list] = {
            "loaded": [],  # [RateSchedule, ...]
            "errors": [],  # [(schedule_name, error_messages), ...]
        }

    def import_schedules(self) -> dict:
        """
        Parse and validate schedules from YAML.

        Returns:
            Dictionary with results:
            {
                'loaded': [RateSchedule, ...],
                'errors': [(schedule_name, error_messages), ...]
            }
        """
        try:
            data = self._parse_yaml()
            self._validate_schema(data)
        except ValueError as e:
            # Parse or schema errors affect entire file
            self.results["errors"].append(("YAML File", [str(e)]))
            return self.results

        seen_names: set[str] = set()
        for schedule_data in data["schedules"]:
            name = str(schedule_data.get("name", "Unknown")) if isinstance(
                schedule_data, dict
            ) else "Unknown"
            if name in seen_names:
                self.results["errors"].append((name, ["Duplicate schedule name"]))
                continue
            seen_names.add(name)

            try:
                schedule = self._create_schedule(schedule_data)
                validate_schedule(schedule)
            except (ValueError, KeyError, TypeError, InvalidOperation, InvalidSchedule) as e:
                message = str(e) if not isinstance(e, KeyError) else f"Missing field: {e}"
                self.results["errors"].append((name, [message]))
                continue

            self.results["loaded"].append(schedule)

        return self.results

    def _parse_yaml(self) -> dict:
        """Parse YAML content with error handling."""
        try:
            data = yaml.safe_load(self.yaml_content)
            if data is None:
                raise ValueError("Empty YAML file")
            return data
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML syntax: {str(e)}")

    def _validate_schema(self, data: dict):
        """Validate top-level YAML structure."""
        if not isinstance(data, dict):
            raise ValueError("YAML must contain a dictionary at top level")

        if "schedules" not in data:
            raise ValueError("Missing required top-level key: schedules")

        if not isinstance(data["schedules"], list):
            raise ValueError("schedules must be a list")

        if len(data["schedules"]) == 0:
            raise ValueError("schedules list cannot be empty")

    def _create_schedule(self, schedule_data: dict) -> RateSchedule:
        """Create a schedule; structural checks happen in RateSchedule itself."""
        if not isinstance(schedule_data, dict):
            raise ValueError("Each schedule must be a mapping")
        if "name" not in schedule_data:
            raise ValueError("Schedule missing required field: name")

        windows_data = schedule_data.get("windows")
        if not isinstance(windows_data, list):
            raise ValueError("windows must be a list")

        return RateSchedule(
            name=str(schedule_data["name"]),
            windows=tuple(self._create_window(w) for w in windows_data),
            tiers=tuple(self._create_tier(t) for t in schedule_data.get("tiers") or []),
            tier_scope=TierScope(schedule_data.get("tier_scope", TierScope.CYCLE.value)),
        )

    def _require_mapping(self, value: Any, what: str) -> dict:
        if not isinstance(value, dict):
            raise ValueError(f"{what} must be a mapping, got {value!r}")
        return value

    def _create_window(self, window_data: dict) -> RateWindow:
        self._require_mapping(window_data, "Rate window")
        if "id" not in window_data:
            raise ValueError("Rate window missing required field: id")
        return RateWindow(
            window_id=str(window_data["id"]),
            name=str(window_data.get("name", "")),
            price_per_kwh=self._parse_decimal(window_data["price_per_kwh"]),
            rules=tuple(self._create_rule(r) for r in window_data.get("rules") or []),
        )

    def _create_tier(self, tier_data: dict) -> Tier:
        self._require_mapping(tier_data, "Tier")
        threshold = tier_data.get("threshold_kwh")
        return Tier(
            threshold_kwh=None if threshold is None else self._parse_decimal(threshold),
            price_per_kwh=self._parse_decimal(tier_data["price_per_kwh"]),
        )

    def _create_rule(self, rule_data: dict) -> Predicate:
        """Create one predicate from a single-key mapping."""
        if not isinstance(rule_data, dict) or len(rule_data) != 1:
            raise ValueError(f"Each rule must be a mapping with exactly one key, got {rule_data!r}")

        kind, value = next(iter(rule_data.items()))
        if kind in ("time_of_day", "season", "holidays"):
            self._require_mapping(value, f"Rule '{kind}'")
        if kind == "time_of_day":
            return TimeOfDayRule(
                start=self._parse_time(value.get("start", "00:00")),
                end=self._parse_time(value.get("end", "00:00")),
            )
        if kind == "days_of_week":
            return DaysOfWeekRule(days=self._parse_days(value))
        if kind == "season":
            return SeasonRule(
                start=self._parse_month_day(value["start"]),
                end=self._parse_month_day(value["end"]),
            )
        if kind == "holidays":
            return HolidayRule(
                dates=frozenset(self._parse_date(d) for d in value.get("dates", [])),
                observed=bool(value.get("observed", True)),
            )
        raise ValueError(f"Unknown rule type: '{kind}'")

    def _parse_decimal(self, value: Any) -> Decimal:
        if isinstance(value, bool) or value is None:
            raise ValueError(f"Invalid number: {value!r}")
        return Decimal(str(value))

    def _parse_time(self, time_str: Any) -> datetime.time:
        """Parse time string in HH:MM or HH:MM:SS format."""
        if isinstance(time_str, int) and not isinstance(time_str, bool):
            # YAML 1.1 reads unquoted 6:00 or 6:00:30 as a sexagesimal integer.
            # An unquoted HH:MM:SS always has a non-zero hour, so it exceeds 24:00.
            if time_str > 24 * 60:
                hours, seconds = divmod(time_str, 3600)
                minutes, seconds = divmod(seconds, 60)
                time_str = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
            else:
                hours, minutes = divmod(time_str, 60)
                time_str = f"{hours:02d}:{minutes:02d}"
        if not time_str:
            raise ValueError("Time field cannot be empty")
        if time_str in ("24:00", "24:00:00"):
            return datetime.time(0, 0)

        # Try HH:MM format first
        try:
            return datetime.datetime.strptime(time_str, "%H:%M").time()
        except ValueError:
            pass

        # Try HH:MM:SS format
        try:
            return datetime.datetime.strptime(time_str, "%H:%M:%S").time()
        except ValueError:
            raise ValueError(f"Invalid time format: '{time_str}'. Expected HH:MM or HH:MM:SS")

    def _parse_days(self, value: Any) -> frozenset[Weekday]:
        if isinstance(value, str):
            group = DAY_GROUPS.get(value.strip().lower())
            if group is None:
                raise ValueError(
                    f"Invalid days_of_week: '{value}'. Expected weekdays, weekends, all, or a list"
                )
            return group

        days = set()
        for item in value:
            if isinstance(item, int):
                days.add(Weekday(item))
                continue
            key = str(item).strip().lower()[:3]
            if key not in DAY_NAMES:
                raise ValueError(f"Invalid day name: '{item}'")
            days.add(DAY_NAMES[key])
        return frozenset(days)

    def _parse_month_day(self, value: Any) -> datetime.date:
        """Parse MM-DD or YYYY-MM-DD and normalize to year 2000."""
        if isinstance(value, datetime.date):
            return datetime.date(2000, value.month, value.day)
        text = str(value).strip()
        for fmt in ("%Y-%m-%d", "%m-%d"):
            try:
                parsed = datetime.datetime.strptime(
                    f"2000-{text}" if fmt == "%m-%d" else text, "%Y-%m-%d"
                ).date()
            except ValueError:
                continue
            return datetime.date(2000, parsed.month, parsed.day)
        raise ValueError(f"Invalid season date: '{value}'. Expected MM-DD or YYYY-MM-DD")

    def _parse_date(self, value: Any) -> datetime.date:
        """Parse a holiday date in YYYY-MM-DD format."""
        if isinstance(value, datetime.date):
            return value
        try:
            return datetime.datetime.strptime(str(value), "%Y-%m-%d").date()
        except ValueError:
            raise ValueError(f"Invalid date format: '{value}'. Expected YYYY-MM-DD")


def load_schedules(path: Path) -> dict[str, RateSchedule]:
    """
    Load every schedule from a YAML file, failing if any is invalid.

    Returns:
        Mapping of schedule name to RateSchedule, in file order

    Raises:
        ScheduleFileError: if the file cannot be read or any schedule is invalid
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ScheduleFileError(f"Cannot read schedule file {path}: {e.strerror}") from e

    results = ScheduleYAMLImporter(content).import_schedules()
    if results["errors"]:
        raise ScheduleFileError(f"Invalid schedule file {path}", results["errors"])

    logger.info("Loaded %d schedule(s) from %s", len(results["loaded"]), path)
    return {schedule.name: schedule for schedule in results["loaded"]}
