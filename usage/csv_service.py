"""
CSV import service for Green Button usage exports.

Provides GreenButtonCSVReader for turning a utility "Green Button" usage
export (View Usage > View Usage Details) into a validated usage series.

CSV Format:
    Any number of preamble lines (account name, address, ...) followed by:

    TYPE,DATE,START TIME,END TIME,IMPORT (kWh),EXPORT (kWh),NOTES
    Electric usage,2024-01-01,00:00,00:14,0.21,0.00,
    Electric usage,2024-01-01,00:15,00:29,0.18,0.00,

END TIME is the last minute covered by the reading, so a 15-minute reading
starting at 00:00 ends at 00:14. Net energy is IMPORT minus EXPORT.
"""

import io
import logging
import zoneinfo
from datetime import datetime, timedelta, tzinfo
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import pandas as pd
from dateutil import parser as dateutil_parser

from billing.core.data import validate_usage_series
from billing.core.types import UsageInterval
from billing.core.util import _absolute
from billing.exceptions import MalformedUsageSeries, UsageFileError

logger = logging.getLogger(__name__)

EXPECTED_COLUMNS = [
    "TYPE",
    "DATE",
    "START TIME",
    "END TIME",
    "IMPORT (kWh)",
    "EXPORT (kWh)",
    "NOTES",
]

HEADER_PREFIX = "TYPE,DATE,"

USAGE_ROW_TYPE = "Electric usage"


class GreenButtonCSVReader:
    """Read a Green Button usage export into UsageIntervals with validation."""

    def __init__(
        self,
        csv_content: str,
        timezone: Optional[str] = None,
        end_time_inclusive: bool = True,
    ):
        """
        Initialize reader with CSV content.

        Args:
            csv_content: CSV string, preamble included
            timezone: IANA timezone used to localize the export's wall-clock
                times. None keeps naive local datetimes.
            end_time_inclusive: Whether END TIME names the last minute covered
                (the utility's convention) rather than the exclusive end.
        """
        self.csv_content = csv_content
        self.end_time_inclusive = end_time_inclusive
        self.timezone: Optional[tzinfo] = None
        if timezone:
            try:
                self.timezone = zoneinfo.ZoneInfo(timezone)
            except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
                raise UsageFileError(f"Unknown timezone '{timezone}'") from e
        self.results: dict[str, list] = {
            "intervals": [],  # [UsageInterval, ...]
            "warnings": [],  # [(row_identifier, warning_message), ...]
            "errors": [],  # [(row_identifier, error_message), ...]
        }

    @classmethod
    def from_path(cls, path: Path, **kwargs) -> "GreenButtonCSVReader":
        """Build a reader from a file on disk."""
        try:
            content = Path(path).read_text(encoding="utf-8-sig")
        except OSError as e:
            raise UsageFileError(f"Cannot read usage file {path}: {e.strerror}") from e
        return cls(content, **kwargs)

    def read(self) -> tuple[UsageInterval, ...]:
        """
        Parse every "Electric usage" row into a UsageInterval.

        Returns:
            Validated, chronological usage series

        Raises:
            UsageFileError: if the file is malformed or any row is invalid
            MalformedUsageSeries: if the rows are out of order or overlap
        """
        df, header_line = self._parse_csv()

        usage_rows = df[df["TYPE"].str.strip() == USAGE_ROW_TYPE]
        skipped = len(df) - len(usage_rows)
        if skipped:
            self.results["warnings"].append(
                ("CSV File", f"Skipped {skipped} row(s) that are not '{USAGE_ROW_TYPE}'")
            )
        if usage_rows.empty:
            raise UsageFileError(f"No '{USAGE_ROW_TYPE}' rows found in usage file")

        previous: Optional[UsageInterval] = None
        for position, row in usage_rows.iterrows():
            # 1-indexed line in the original file
            row_identifier = f"Line {header_line + position + 2}"
            try:
                interval = self._row_to_interval(row, previous)
            except (ValueError, InvalidOperation, MalformedUsageSeries) as e:
                self.results["errors"].append((row_identifier, str(e)))
                continue

            notes = row["NOTES"].strip()
            if notes:
                self.results["warnings"].append((row_identifier, notes))
            self.results["intervals"].append(interval)
            previous = interval

        if self.results["errors"]:
            raise UsageFileError(
                f"{len(self.results['errors'])} invalid usage row(s)", self.results["errors"]
            )

        for row_identifier, warning in self.results["warnings"]:
            logger.warning("%s: %s", row_identifier, warning)
        logger.info("Read %d usage intervals", len(self.results["intervals"]))

        return validate_usage_series(self.results["intervals"])

    def _parse_csv(self) -> tuple[pd.DataFrame, int]:
        """
        Skip the preamble and parse the CSV body with pandas.

        Returns:
            DataFrame of string values, and the 0-indexed line of the header

        Raises:
            UsageFileError: If the header row is missing or wrong, or the CSV is invalid
        """
        lines = self.csv_content.splitlines()
        for header_line, line in enumerate(lines):
            if line.startswith(HEADER_PREFIX):
                break
        else:
            raise UsageFileError("Usage file is empty or malformed: header row not found")

        try:
            df = pd.read_csv(
                io.StringIO("\n".join(lines[header_line:])),
                dtype=str,
                keep_default_na=False,
            )
        except pd.errors.ParserError as e:
            raise UsageFileError(f"Invalid CSV syntax: {str(e)}")

        self._validate_schema(df.columns.tolist())
        return df.fillna(""), header_line

    def _validate_schema(self, columns: list[str]):
        """
        Validate CSV header structure.

        Raises:
            UsageFileError: If header is not exactly the expected columns
        """
        if columns != EXPECTED_COLUMNS:
            raise UsageFileError(
                f"Unexpected headers in usage CSV: {columns}. Expected: {EXPECTED_COLUMNS}"
            )

    def _row_to_interval(
        self, row: pd.Series, previous: Optional[UsageInterval]
    ) -> UsageInterval:
        """Validate and transform a single usage row."""
        start = self._parse_timestamp(row["DATE"], row["START TIME"])
        end = self._parse_timestamp(row["DATE"], row["END TIME"])
        if self.end_time_inclusive:
            end += timedelta(minutes=1)
        if end <= start:
            # Reading rolls past midnight
            end += timedelta(days=1)

        imported = Decimal(row["IMPORT (kWh)"].strip() or "0")
        exported = Decimal(row["EXPORT (kWh)"].strip() or "0")

        if self.timezone is not None:
            start, end = self._localize(start, end, previous)

        return UsageInterval(start=start, end=end, energy_kwh=imported - exported)

    def _parse_timestamp(self, date_str: str, time_str: str) -> datetime:
        """
        Combine the DATE and a time column into a naive local datetime.

        Supports a wide variety of formats via python-dateutil, e.g.
        2024-01-15 14:30, 01/15/2024 2:30 PM.
        """
        text = f"{date_str.strip()} {time_str.strip()}"
        try:
            return dateutil_parser.parse(text)
        except (ValueError, OverflowError, dateutil_parser.ParserError):
            raise ValueError(f"Unable to parse timestamp '{text}'")

    def _localize(
        self, start: datetime, end: datetime, previous: Optional[UsageInterval]
    ) -> tuple[datetime, datetime]:
        """
        Attach the reader's timezone to naive wall-clock times.

        During the repeated hour when clocks fall back, the second pass through
        the same wall-clock times is disambiguated with ``fold=1`` whenever the
        first reading would otherwise overlap the previous one. The end is the
        start plus the reading's nominal length, so readings that straddle a
        transition keep their real duration.
        """
        local_start = start.replace(tzinfo=self.timezone)
        if previous is not None and _absolute(local_start) < _absolute(previous.end):
            folded = start.replace(tzinfo=self.timezone, fold=1)
            if _absolute(folded) >= _absolute(previous.end):
                local_start = folded
        local_end = (_absolute(local_start) + (end - start)).astimezone(self.timezone)
        return local_start, local_end
