from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from ..db.batch_insert import BatchMetrics
from ..db.readings import bulk_upsert, insert_many, reading_exists, transaction
from ..models.readings import Reading
from ..models.row_data import text_value
from ..models.submit_result import MeterSubmitResult, WeatherSubmitResult
from ..validation.rules import DomainRules, SubmitPolicy
from .pipeline import RequestShapeError

"""Upsert submitter: client-approved rows -> reading tables.

Submission trusts that validation already ran: values are coerced (missing
or unparseable numbers become 0) but ranges are not re-checked, so a negative
meter reading is stored as-is.

Policies (from the rule table):

- OVERWRITE (meter): unordered bulk upsert keyed on (date, time); existing
  rows are fully overwritten; per-row failures are absorbed into the counts.
- SKIP_EXISTING (weather): rows without date/time, or whose key already
  exists, are skipped; the rest are inserted in one batch.
"""

__all__ = [
    "submit_overwrite",
    "submit_rows",
    "submit_skip_existing",
]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


def _log_batch(metrics: BatchMetrics) -> None:
    logger.debug("batch of %d row(s) written in %.3fs", metrics.batch_size, metrics.elapsed_seconds)


def submit_rows(
    cursor: Any,
    rows: Any,
    rules: DomainRules,
    progress: ProgressCallback | None = None,
) -> MeterSubmitResult | WeatherSubmitResult:
    """Dispatch to the domain's submission policy."""
    if not isinstance(rows, list):
        raise RequestShapeError("rows must be an array")
    if rules.submit_policy is SubmitPolicy.OVERWRITE:
        return submit_overwrite(cursor, rows, rules, progress)
    return submit_skip_existing(cursor, rows, rules, progress)


def submit_overwrite(
    cursor: Any,
    rows: list[Any],
    rules: DomainRules,
    progress: ProgressCallback | None = None,
) -> MeterSubmitResult:
    readings: list[Reading] = []
    for row in rows:
        # Date 欠落は書き込み前にリクエスト全体を拒否
        if not isinstance(row, Mapping) or not text_value(row, "Date"):
            raise RequestShapeError("Each row must contain Date")
        readings.append(rules.reading_type.from_row(row, default_time=rules.default_time))

    columns = rules.reading_type.columns()
    with transaction(cursor):
        bulk = bulk_upsert(
            cursor,
            rules.table,
            columns,
            [r.values() for r in readings],
            progress=progress,
            metrics_callback=_log_batch,
        )

    if bulk.write_errors:
        logger.warning("%s: %d row(s) rejected by storage", rules.name, len(bulk.write_errors))
    result = MeterSubmitResult(
        acknowledged=True,
        inserted_count=0,
        matched_count=bulk.matched,
        modified_count=bulk.modified,
        upserted_count=bulk.upserted,
        write_errors=bulk.write_errors,
    )
    logger.info(
        "%s: upserted=%d matched=%d modified=%d",
        rules.name, result.upserted_count, result.matched_count, result.modified_count,
    )
    return result


def submit_skip_existing(
    cursor: Any,
    rows: list[Any],
    rules: DomainRules,
    progress: ProgressCallback | None = None,
) -> WeatherSubmitResult:
    if not rows:
        return WeatherSubmitResult(inserted=0, skipped=0, message="No data provided")

    pending: list[Reading] = []
    pending_keys: set[tuple[str, str]] = set()
    skipped = 0
    with transaction(cursor):
        for row in rows:
            date = text_value(row, "Date") if isinstance(row, Mapping) else ""
            time = text_value(row, "Time") if isinstance(row, Mapping) else ""
            if not date or not time:
                skipped += 1
            else:
                reading = rules.reading_type.from_row(row)
                key = reading.key()
                if key in pending_keys or reading_exists(cursor, rules.table, *key):
                    skipped += 1
                else:
                    pending.append(reading)
                    pending_keys.add(key)
            if progress is not None:
                progress(1)

        if pending:
            insert_many(
                cursor,
                rules.table,
                rules.reading_type.columns(),
                [r.values() for r in pending],
                metrics_callback=_log_batch,
            )

    _warn_unchecked_zero(pending, rules)
    logger.info("%s: inserted=%d skipped=%d", rules.name, len(pending), skipped)
    return WeatherSubmitResult(
        inserted=len(pending),
        skipped=skipped,
        message=f"{rules.label} data submission completed",
    )


def _warn_unchecked_zero(readings: list[Reading], rules: DomainRules) -> None:
    # 単一レコード作成/更新では 0 を拒否するが、一括登録では再検証しない
    for rule in rules.range_rules:
        if not rule.forbid_zero:
            continue
        column = next(f.column for f in rules.reading_type.FIELDS if f.header == rule.column)
        zeros = sum(1 for r in readings if getattr(r, column) == 0)
        if zeros:
            logger.warning(
                "%s: %d row(s) stored with %s = 0 (bulk submit does not re-validate)",
                rules.name, zeros, rule.column,
            )
