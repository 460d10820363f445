from __future__ import annotations

import logging
import numbers
from collections.abc import Mapping, Sequence
from typing import Any

from ..db import readings as store
from ..db.readings import ReadingConflictError, ReadingNotFoundError, transaction
from ..models.readings import InvalidReadingError, coerce_number
from ..models.row_data import lookup, text_value
from ..validation.rules import DomainRules

"""Single-record paths (create / read / update / delete) for readings.

Unlike bulk submission, these paths enforce the per-record business rules
(``moduleTemp`` must not be 0 for weather) and surface duplicate keys as
:class:`ReadingConflictError`.
"""

__all__ = [
    "create_reading",
    "delete_reading",
    "delete_readings",
    "get_reading",
    "list_readings",
    "list_readings_by_date",
    "update_reading",
]

logger = logging.getLogger(__name__)


def _to_document(rules: DomainRules, record: Sequence[Any]) -> dict[str, Any]:
    """``record`` is ``(id, date, time, *numeric columns)`` as returned by storage."""
    reading = rules.reading_type(*record[1:])
    return {"id": record[0], **reading.to_document()}


def _check_forbidden_zero(rules: DomainRules, payload: Mapping[str, Any]) -> None:
    # 入力値そのものが数値 0 の場合のみ拒否 (欠損や非数値は 0 扱いにしない)
    for rule in rules.range_rules:
        if not rule.forbid_zero:
            continue
        spec = next(f for f in rules.reading_type.FIELDS if f.header == rule.column)
        for name in (spec.header, spec.key, spec.column):
            raw = lookup(payload, name)
            if raw is None:
                continue
            if isinstance(raw, numbers.Real) and not isinstance(raw, bool) and raw == 0:
                raise InvalidReadingError(f"{rule.label.capitalize()} cannot be 0")
            break


def create_reading(cursor: Any, rules: DomainRules, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Create one reading from a payload using any header casing."""
    _check_forbidden_zero(rules, payload)
    reading = rules.reading_type.from_row(payload, default_time=rules.default_time)
    try:
        with transaction(cursor):
            record = store.insert_one(cursor, rules.table, reading.columns(), reading.values())
    except ReadingConflictError as e:
        raise ReadingConflictError(
            f"{rules.label} record already exists for this date and time"
        ) from e
    logger.info("%s: created reading %s %s", rules.name, *reading.key())
    return _to_document(rules, record)


def update_reading(
    cursor: Any, rules: DomainRules, reading_id: int, payload: Mapping[str, Any]
) -> dict[str, Any]:
    """Update only the fields present in ``payload``; numbers are coerced like on submit."""
    _check_forbidden_zero(rules, payload)
    changes: dict[str, Any] = {}
    for key in ("date", "time"):
        if lookup(payload, key) is not None:
            changes[key] = text_value(payload, key)
    for spec in rules.reading_type.FIELDS:
        for name in (spec.key, spec.header, spec.column):
            if name in payload:
                changes[spec.column] = coerce_number(payload[name])
                break

    columns = rules.reading_type.columns()
    try:
        with transaction(cursor):
            record = store.update_one(cursor, rules.table, reading_id, changes, columns)
    except ReadingConflictError as e:
        raise ReadingConflictError("Duplicate date and time not allowed") from e
    if record is None:
        raise ReadingNotFoundError(f"{rules.label} record not found")
    return _to_document(rules, record)


def get_reading(cursor: Any, rules: DomainRules, reading_id: int) -> dict[str, Any]:
    record = store.fetch_one(cursor, rules.table, reading_id, rules.reading_type.columns())
    if record is None:
        raise ReadingNotFoundError(f"{rules.label} record not found")
    return _to_document(rules, record)


def list_readings_by_date(cursor: Any, rules: DomainRules, date: str) -> list[dict[str, Any]]:
    records = store.fetch_by_date(cursor, rules.table, date, rules.reading_type.columns())
    return [_to_document(rules, r) for r in records]


def list_readings(
    cursor: Any,
    rules: DomainRules,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 100,
    skip: int = 0,
) -> tuple[list[dict[str, Any]], int]:
    """Return one page of readings and the total count for the same date range.

    Meter lists newest first, weather oldest first.
    """
    if limit < 0 or skip < 0:
        raise ValueError("limit and skip must not be negative")
    records, total = store.fetch_page(
        cursor,
        rules.table,
        rules.reading_type.columns(),
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        skip=skip,
        descending=rules.list_newest_first,
    )
    return [_to_document(rules, r) for r in records], total


def delete_reading(cursor: Any, rules: DomainRules, reading_id: int) -> dict[str, Any]:
    with transaction(cursor):
        record = store.delete_one(cursor, rules.table, reading_id, rules.reading_type.columns())
    if record is None:
        raise ReadingNotFoundError(f"{rules.label} record not found")
    return _to_document(rules, record)


def delete_readings(cursor: Any, rules: DomainRules, reading_ids: Sequence[int]) -> int:
    """Explicit batch delete; returns the number of deleted readings."""
    with transaction(cursor):
        deleted = store.delete_many(cursor, rules.table, reading_ids)
    logger.info("%s: deleted %d reading(s)", rules.name, deleted)
    return deleted
