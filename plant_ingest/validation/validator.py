from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..excel.cells import (
    is_canonical_date,
    is_canonical_time,
    is_invalid_number,
    normalize_date,
    normalize_number,
    normalize_time,
)
from ..models.row_data import lookup
from .rules import DomainRules

"""Row validator shared by all reading domains.

``validate_row`` never raises for bad data: every broken rule appends one
human-readable message. The only state it touches is the caller-owned
``seen`` set used for duplicate-key detection within one validation pass.
"""

__all__ = [
    "SeenKeys",
    "validate_row",
]

logger = logging.getLogger(__name__)

SeenKeys = set[tuple[str, ...]]


def _first_present(row: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        value = lookup(row, name)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _check_ranges(row: Mapping[str, Any], rules: DomainRules) -> list[str]:
    errors: list[str] = []
    for rule in rules.range_rules:
        value = normalize_number(lookup(row, rule.column))
        if value is None:
            continue
        if is_invalid_number(value):
            errors.append(f"{rule.label} must be a number")
            continue
        if rule.forbid_zero and value == 0:
            errors.append(f"{rule.label} cannot be 0")
        if value < rule.minimum or value > rule.maximum:
            errors.append(f"{rule.label} must be between {rule.minimum:g} and {rule.maximum:g}")
    return errors


def _check_readings(row: Mapping[str, Any], rules: DomainRules) -> tuple[list[str], bool]:
    """Pattern-matched reading columns. Returns (errors, has_valid_reading)."""
    errors: list[str] = []
    has_reading = False
    if rules.reading_pattern is None:
        return errors, has_reading
    for key, raw in row.items():
        if not isinstance(key, str) or not rules.reading_pattern.search(key):
            continue
        value = normalize_number(raw)
        if value is None:
            continue
        if is_invalid_number(value):
            errors.append(f"{key} must be numeric")
        elif value < 0 and rules.reject_negative_readings:
            errors.append(f"{key} cannot be negative")
        else:
            has_reading = True
    return errors, has_reading


def _check_window(row: Mapping[str, Any], rules: DomainRules) -> tuple[list[str], bool]:
    """Start/Stop time pair. Returns (errors, has_valid_pair)."""
    errors: list[str] = []
    if not rules.start_columns:
        return errors, False
    valid = 0
    for label, names in (("Start Time", rules.start_columns), ("Stop Time", rules.stop_columns)):
        value = normalize_time(_first_present(row, names))
        if value is None:
            continue
        if is_canonical_time(value):
            valid += 1
        else:
            errors.append(f"{label} must be HH:MM (24-hour)")
    return errors, valid == 2


def validate_row(
    row: Mapping[str, Any],
    row_number: int,
    seen: SeenKeys,
    rules: DomainRules,
) -> list[str]:
    """Validate one row record and record its key into ``seen``.

    Parameters
    ----------
    row: column name -> value (as produced by the sheet reader or edited by a client)
    row_number: spreadsheet row number, used for diagnostics only
    seen: duplicate keys accepted so far in this pass (mutated)
    rules: domain rule table
    """
    errors: list[str] = []

    date = normalize_date(lookup(row, "Date"), rules.date_format)
    date_ok = False
    if date is None:
        errors.append("Missing Date")
    elif is_canonical_date(date, rules.date_format):
        date_ok = True
    else:
        errors.append(rules.date_message)

    time = normalize_time(lookup(row, "Time"))
    time_ok = False
    if time is None:
        if rules.time_required:
            errors.append("Missing Time")
        else:
            time, time_ok = rules.default_time, True
    elif is_canonical_time(time):
        time_ok = True
    else:
        errors.append(rules.time_message)

    # 重複判定は書式が正しいキーのみ対象。最初の出現は受理して記録
    parts = {"date": (date, date_ok), "time": (time, time_ok)}
    if all(parts[p][1] for p in rules.duplicate_key):
        key = tuple(parts[p][0] for p in rules.duplicate_key)
        if key in seen:
            errors.append(rules.duplicate_message)
        else:
            seen.add(key)

    window_errors, has_window = _check_window(row, rules)
    errors.extend(window_errors)

    reading_errors, has_reading = _check_readings(row, rules)
    errors.extend(reading_errors)

    if rules.require_window_or_reading and not has_window and not has_reading:
        errors.append("Each date must have either Start/Stop times OR Export/Import readings")

    errors.extend(_check_ranges(row, rules))

    if errors:
        logger.debug("row %d: %d error(s)", row_number, len(errors))
    return errors
