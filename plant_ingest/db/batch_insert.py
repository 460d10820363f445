from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

"""Batched INSERT via psycopg2.extras.execute_values.

Used for the insert-only (weather) submission path and, with an
``on_conflict`` clause, for the first attempt of the meter upsert. Any driver
error is wrapped in :class:`BatchWriteError`; transaction handling (BEGIN /
SAVEPOINT / ROLLBACK) is the caller's job.
"""

__all__ = [
    "BatchMetrics",
    "BatchWriteError",
    "InsertResult",
    "batch_insert",
]


class BatchWriteError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single execute_values call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float  # time.time()
    end_time: float  # time.time()


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: str | None = None,
    on_conflict: str | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Insert ``rows`` into ``table`` in pages of ``page_size``.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table (trusted identifier from the rule table)
    columns: insert columns, in the order of each row sequence
    rows: row value sequences
    returning: optional RETURNING expression list; results of all pages are collected
    on_conflict: optional ``ON CONFLICT ...`` clause appended verbatim
    page_size: execute_values page size
    metrics_callback: receives one BatchMetrics per call. Not invoked for empty ``rows``.
    """
    rows_list = [tuple(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if on_conflict:
        sql += f" {on_conflict}"
    if returning:
        sql += f" RETURNING {returning}"

    start_time = time.time()
    returned = None
    try:
        if returning:
            # fetch=True で全ページ分の RETURNING を回収 (cursor.fetchall は最終ページのみ)
            returned = execute_values(cursor, sql, rows_list, page_size=page_size, fetch=True)
        else:
            execute_values(cursor, sql, rows_list, page_size=page_size)
    except psycopg2.Error as e:
        raise BatchWriteError(str(e)) from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list), returned_values=returned)
