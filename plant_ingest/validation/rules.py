from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass
from enum import Enum

from ..excel.cells import DateFormat
from ..models.readings import MeterReading, Reading, WeatherReading

"""Declarative rule table for the reading domains.

Meter and weather spreadsheets share one reader, one validator and one
submitter; everything that differs between them lives in a ``DomainRules``
value:

- header policy (fixed row 1 vs. detection in the first N rows)
- canonical date layout, time required-ness / default
- duplicate key shape ((date,) vs (date, time))
- numeric rules (pattern-matched reading columns, closed ranges)
- cross-field Start/Stop-or-reading rule
- submission policy (overwrite vs. skip existing)
"""

__all__ = [
    "DOMAINS",
    "DomainRules",
    "HeaderPolicy",
    "METER_RULES",
    "RangeRule",
    "SubmitPolicy",
    "WEATHER_RULES",
    "get_rules",
    "with_overrides",
]


class HeaderPolicy(Enum):
    FIXED = "fixed"  # header is always row 1
    DETECT = "detect"  # scan the first header_scan_limit rows


class SubmitPolicy(Enum):
    OVERWRITE = "overwrite"  # upsert keyed on (date, time), full $set
    SKIP_EXISTING = "skip_existing"  # insert-only, existing keys are skipped


@dataclass(frozen=True)
class RangeRule:
    """Closed numeric range for one column; optionally forbids exactly 0."""
    column: str
    label: str
    minimum: float
    maximum: float
    forbid_zero: bool = False


@dataclass(frozen=True)
class DomainRules:
    name: str
    label: str
    table: str
    reading_type: type[Reading]
    date_format: DateFormat
    header_policy: HeaderPolicy
    header_keys: tuple[str, ...]
    duplicate_key: tuple[str, ...]
    duplicate_message: str
    date_message: str
    time_message: str
    submit_policy: SubmitPolicy
    time_required: bool = True
    default_time: str | None = None
    header_scan_limit: int = 20
    # meter: export/import を含む列は数値かつ非負
    reading_pattern: re.Pattern[str] | None = None
    reject_negative_readings: bool = False
    range_rules: tuple[RangeRule, ...] = ()
    start_columns: tuple[str, ...] = ()
    stop_columns: tuple[str, ...] = ()
    require_window_or_reading: bool = False
    example_date: str = ""
    example_time: str = ""
    list_newest_first: bool = False

    @property
    def extra_time_columns(self) -> tuple[str, ...]:
        return self.start_columns + self.stop_columns

    @property
    def template_headers(self) -> list[str]:
        return ["Date", "Time"] + [f.header for f in self.reading_type.FIELDS]


METER_RULES = DomainRules(
    name="meter",
    label="Meter",
    table="meter_readings",
    reading_type=MeterReading,
    date_format=DateFormat.DMY,
    header_policy=HeaderPolicy.FIXED,
    header_keys=("date",),
    duplicate_key=("date",),
    duplicate_message="No duplicate dates allowed",
    date_message="Date must be in format DD-MM-YYYY (e.g., 01-12-2024)",
    time_message="Time must be HH:MM (24-hour)",
    submit_policy=SubmitPolicy.OVERWRITE,
    time_required=False,
    default_time="00:00",
    reading_pattern=re.compile(r"export|import", re.IGNORECASE),
    reject_negative_readings=True,
    start_columns=("Start Time", "StartTime", "Start"),
    stop_columns=("Stop Time", "StopTime", "Stop"),
    require_window_or_reading=True,
    list_newest_first=True,
    example_date="01-01-2025",
    example_time="10:00",
)

WEATHER_RULES = DomainRules(
    name="weather",
    label="Weather",
    table="weather_readings",
    reading_type=WeatherReading,
    date_format=DateFormat.DMON,
    header_policy=HeaderPolicy.DETECT,
    header_keys=("date", "time"),
    duplicate_key=("date", "time"),
    duplicate_message="Duplicate Date & Time",
    date_message="Invalid Date format (expected DD-MMM-YY, e.g., 01-Dec-24)",
    time_message="Invalid Time format (expected HH:MM 24-hour, e.g., 09:30)",
    submit_policy=SubmitPolicy.SKIP_EXISTING,
    range_rules=(
        RangeRule("POA", "POA", 0, 1500),
        RangeRule("GHI", "GHI", 0, 1500),
        RangeRule("AlbedoUp", "AlbedoUp", 0, 1500),
        RangeRule("AlbedoDown", "AlbedoDown", 0, 1500),
        RangeRule("ModuleTemp", "Module Temperature", 0, 100, forbid_zero=True),
        RangeRule("AmbientTemp", "Ambient Temperature", 0, 100),
        RangeRule("WindSpeed", "Wind Speed", 0, 200),
        RangeRule("Rainfall", "Rainfall", 0, 500),
        RangeRule("Humidity", "Humidity", 0, 100),
    ),
    example_date="01-Dec-24",
    example_time="09:30",
)

DOMAINS: dict[str, DomainRules] = {r.name: r for r in (METER_RULES, WEATHER_RULES)}


def get_rules(name: str) -> DomainRules:
    try:
        return DOMAINS[name.lower()]
    except KeyError:
        raise ValueError(f"unknown domain: {name!r} (expected one of {sorted(DOMAINS)})") from None


def with_overrides(
    rules: DomainRules,
    header_policy: str | None = None,
    header_scan_limit: int | None = None,
) -> DomainRules:
    """Return a copy of ``rules`` with configuration overrides applied."""
    changes: dict[str, object] = {}
    if header_policy is not None:
        changes["header_policy"] = HeaderPolicy(header_policy)
    if header_scan_limit is not None:
        changes["header_scan_limit"] = header_scan_limit
    return dataclasses.replace(rules, **changes) if changes else rules
