from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import psycopg2
import psycopg2.errors

from ..models.readings import Reading
from ..models.submit_result import WriteError
from .batch_insert import BatchMetrics, BatchWriteError, batch_insert

"""Reading tables: schema, bulk writes and single-record statements.

Both tables are keyed by a unique (date, time) index. Table names come from
the domain rule table, never from user input.

Bulk paths absorb duplicate keys (upsert / skip); single-record paths surface
them as :class:`ReadingConflictError` so callers can tell "already exists"
apart from generic storage failures (:class:`BatchWriteError`).
"""

__all__ = [
    "BulkWriteResult",
    "ReadingConflictError",
    "ReadingNotFoundError",
    "bulk_upsert",
    "delete_many",
    "delete_one",
    "ensure_schema",
    "fetch_by_date",
    "fetch_one",
    "fetch_page",
    "insert_many",
    "insert_one",
    "reading_exists",
    "transaction",
    "update_one",
]

logger = logging.getLogger(__name__)

KEY_COLUMNS = ("date", "time")

ProgressCallback = Callable[[int], None]


class ReadingConflictError(Exception):
    """A reading with the same (date, time) already exists."""


class ReadingNotFoundError(Exception):
    pass


@dataclass(frozen=True)
class BulkWriteResult:
    matched: int
    modified: int
    upserted: int
    write_errors: list[WriteError] = field(default_factory=list)


@contextmanager
def transaction(cursor: Any) -> Iterator[Any]:
    """Explicit BEGIN / COMMIT; ROLLBACK and re-raise on any failure."""
    cursor.execute("BEGIN")
    try:
        yield cursor
    except BaseException:
        try:
            cursor.execute("ROLLBACK")
        except psycopg2.Error:
            logger.warning("rollback failed", exc_info=True)
        raise
    cursor.execute("COMMIT")


def ensure_schema(cursor: Any, tables: Mapping[str, type[Reading]]) -> None:
    """Create reading tables and their unique (date, time) index if missing."""
    for table, reading_type in tables.items():
        numeric = ",\n".join(
            f"    {f.column} DOUBLE PRECISION NOT NULL DEFAULT 0" for f in reading_type.FIELDS
        )
        cursor.execute(
            f"CREATE TABLE IF NOT EXISTS {table} (\n"
            "    id BIGSERIAL PRIMARY KEY,\n"
            "    date TEXT NOT NULL,\n"
            "    time TEXT NOT NULL,\n"
            f"{numeric},\n"
            "    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),\n"
            "    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()\n"
            ")"
        )
        cursor.execute(
            f"CREATE UNIQUE INDEX IF NOT EXISTS {table}_date_time_key ON {table} (date, time)"
        )


def _upsert_clause(table: str, columns: Sequence[str]) -> str:
    value_cols = [c for c in columns if c not in KEY_COLUMNS]
    updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in value_cols)
    current = ", ".join(f"{table}.{c}" for c in value_cols)
    incoming = ", ".join(f"EXCLUDED.{c}" for c in value_cols)
    # 値が同一なら UPDATE しない -> RETURNING が返らず matched のみ計上
    return (
        f"ON CONFLICT (date, time) DO UPDATE SET {updates}, updated_at = now() "
        f"WHERE ({current}) IS DISTINCT FROM ({incoming})"
    )


def bulk_upsert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    progress: ProgressCallback | None = None,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> BulkWriteResult:
    """Unordered upsert keyed on (date, time), overwriting every value column.

    The whole batch is tried first in one statement. When it fails (for
    example a key repeated inside the batch), it is replayed row by row under a
    savepoint each, so one bad row never aborts the others; failed rows are
    reported in ``write_errors``.
    """
    rows_list = [tuple(r) for r in rows]
    if not rows_list:
        return BulkWriteResult(matched=0, modified=0, upserted=0)

    conflict = _upsert_clause(table, columns)
    cursor.execute("SAVEPOINT bulk_upsert")
    try:
        res = batch_insert(
            cursor,
            table,
            columns,
            rows_list,
            returning="(xmax = 0)",
            on_conflict=conflict,
            metrics_callback=metrics_callback,
        )
    except BatchWriteError as e:
        cursor.execute("ROLLBACK TO SAVEPOINT bulk_upsert")
        logger.info("bulk upsert into %s failed (%s); retrying row by row", table, e)
        return _upsert_each(cursor, table, columns, rows_list, conflict, progress)
    cursor.execute("RELEASE SAVEPOINT bulk_upsert")

    flags = [bool(r[0]) for r in res.returned_values or []]
    upserted = sum(flags)
    if progress is not None:
        progress(len(rows_list))
    return BulkWriteResult(
        matched=len(rows_list) - upserted,
        modified=len(flags) - upserted,
        upserted=upserted,
    )


def _upsert_each(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Sequence[tuple[Any, ...]],
    conflict: str,
    progress: ProgressCallback | None,
) -> BulkWriteResult:
    cols_sql = ",".join(f'"{c}"' for c in columns)
    placeholders = ",".join(["%s"] * len(columns))
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES ({placeholders}) {conflict} RETURNING (xmax = 0)"

    matched = modified = upserted = 0
    write_errors: list[WriteError] = []
    for index, values in enumerate(rows):
        cursor.execute("SAVEPOINT reading_upsert")
        try:
            cursor.execute(sql, values)
            returned = cursor.fetchone()
        except psycopg2.Error as e:
            cursor.execute("ROLLBACK TO SAVEPOINT reading_upsert")
            write_errors.append(WriteError(index=index, message=str(e).strip()))
            logger.warning("upsert into %s failed for row index %d: %s", table, index, e)
        else:
            cursor.execute("RELEASE SAVEPOINT reading_upsert")
            if returned is None:
                matched += 1
            elif returned[0]:
                upserted += 1
            else:
                matched += 1
                modified += 1
        if progress is not None:
            progress(1)
    return BulkWriteResult(matched=matched, modified=modified, upserted=upserted, write_errors=write_errors)


def reading_exists(cursor: Any, table: str, date: str, time: str) -> bool:
    cursor.execute(f"SELECT 1 FROM {table} WHERE date = %s AND time = %s LIMIT 1", (date, time))
    return cursor.fetchone() is not None


def insert_many(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[Any]],
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> int:
    return batch_insert(cursor, table, columns, rows, metrics_callback=metrics_callback).inserted_rows


def _returning(columns: Sequence[str]) -> str:
    return ", ".join(["id", *columns])


def insert_one(cursor: Any, table: str, columns: Sequence[str], values: Sequence[Any]) -> tuple[Any, ...]:
    """Insert one reading; returns ``(id, *columns)``."""
    cols_sql = ",".join(f'"{c}"' for c in columns)
    placeholders = ",".join(["%s"] * len(columns))
    try:
        cursor.execute(
            f"INSERT INTO {table} ({cols_sql}) VALUES ({placeholders}) RETURNING {_returning(columns)}",
            tuple(values),
        )
    except psycopg2.errors.UniqueViolation as e:
        raise ReadingConflictError(str(e).strip()) from e
    except psycopg2.Error as e:
        raise BatchWriteError(str(e)) from e
    return cursor.fetchone()


def update_one(
    cursor: Any,
    table: str,
    reading_id: int,
    changes: Mapping[str, Any],
    columns: Sequence[str],
) -> tuple[Any, ...] | None:
    """Apply ``changes`` (column -> value) to one reading; ``None`` when the id is unknown."""
    if not changes:
        return fetch_one(cursor, table, reading_id, columns)
    assignments = ", ".join(f"{c} = %s" for c in changes)
    try:
        cursor.execute(
            f"UPDATE {table} SET {assignments}, updated_at = now() WHERE id = %s "
            f"RETURNING {_returning(columns)}",
            (*changes.values(), reading_id),
        )
    except psycopg2.errors.UniqueViolation as e:
        raise ReadingConflictError(str(e).strip()) from e
    except psycopg2.Error as e:
        raise BatchWriteError(str(e)) from e
    return cursor.fetchone()


def fetch_one(cursor: Any, table: str, reading_id: int, columns: Sequence[str]) -> tuple[Any, ...] | None:
    cursor.execute(f"SELECT {_returning(columns)} FROM {table} WHERE id = %s", (reading_id,))
    return cursor.fetchone()


def fetch_by_date(cursor: Any, table: str, date: str, columns: Sequence[str]) -> list[tuple[Any, ...]]:
    cursor.execute(f"SELECT {_returning(columns)} FROM {table} WHERE date = %s ORDER BY time", (date,))
    return list(cursor.fetchall())


def delete_one(cursor: Any, table: str, reading_id: int, columns: Sequence[str]) -> tuple[Any, ...] | None:
    cursor.execute(f"DELETE FROM {table} WHERE id = %s RETURNING {_returning(columns)}", (reading_id,))
    return cursor.fetchone()


def delete_many(cursor: Any, table: str, reading_ids: Sequence[int]) -> int:
    if not reading_ids:
        return 0
    cursor.execute(f"DELETE FROM {table} WHERE id = ANY(%s)", (list(reading_ids),))
    return cursor.rowcount


def fetch_page(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    *,
    start_date: str | None = None,
    end_date: str | None = None,
    limit: int = 100,
    skip: int = 0,
    descending: bool = False,
) -> tuple[list[tuple[Any, ...]], int]:
    """One page of readings plus the total count matching the same filter.

    The date bounds compare the stored date text as-is (inclusive).
    """
    where: list[str] = []
    params: list[Any] = []
    if start_date:
        where.append("date >= %s")
        params.append(start_date)
    if end_date:
        where.append("date <= %s")
        params.append(end_date)
    where_sql = f" WHERE {' AND '.join(where)}" if where else ""
    order = "DESC" if descending else "ASC"

    cursor.execute(f"SELECT count(*) FROM {table}{where_sql}", tuple(params))
    total = cursor.fetchone()[0]
    cursor.execute(
        f"SELECT {_returning(columns)} FROM {table}{where_sql} "
        f"ORDER BY date {order}, time {order} LIMIT %s OFFSET %s",
        (*params, limit, skip),
    )
    return list(cursor.fetchall()), total
