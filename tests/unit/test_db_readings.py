from __future__ import annotations

import psycopg2
import psycopg2.errors
import pytest

from plant_ingest.db.batch_insert import BatchWriteError
from plant_ingest.db.readings import (
    ReadingConflictError,
    bulk_upsert,
    delete_many,
    ensure_schema,
    fetch_by_date,
    insert_one,
    reading_exists,
    transaction,
    update_one,
)
from plant_ingest.models.readings import MeterReading, WeatherReading

COLUMNS = MeterReading.columns()


def _row(date: str, value: float = 1.0) -> list:
    return MeterReading.from_row({"Date": date, "ActiveEnergyImport": value}, default_time="00:00").values()


def test_transaction_commits(fake_cursor):
    cur = fake_cursor()
    with transaction(cur):
        cur.execute("SELECT 1")
    assert cur.statements == ["BEGIN", "SELECT 1", "COMMIT"]


def test_transaction_rolls_back_and_reraises(fake_cursor):
    cur = fake_cursor()
    with pytest.raises(RuntimeError):
        with transaction(cur):
            raise RuntimeError("boom")
    assert cur.statements == ["BEGIN", "ROLLBACK"]


def test_ensure_schema_creates_tables_and_unique_index(fake_cursor):
    cur = fake_cursor()
    ensure_schema(cur, {"meter_readings": MeterReading, "weather_readings": WeatherReading})
    ddl = "\n".join(cur.statements)
    assert "CREATE TABLE IF NOT EXISTS meter_readings" in ddl
    assert "active_energy_import DOUBLE PRECISION NOT NULL DEFAULT 0" in ddl
    assert "module_temp DOUBLE PRECISION NOT NULL DEFAULT 0" in ddl
    assert "CREATE UNIQUE INDEX IF NOT EXISTS weather_readings_date_time_key ON weather_readings (date, time)" in ddl
    assert "updated_at TIMESTAMPTZ" in ddl


class TestBulkUpsert:
    def test_counts_from_single_statement(self, fake_cursor, execute_values_calls):
        # 新規 2 件 + 値が変わった既存 1 件 (+ 値が同一の既存 1 件は RETURNING されない)
        cur = fake_cursor(fetchall=[(True,), (True,), (False,)])
        progress: list[int] = []
        res = bulk_upsert(
            cur,
            "meter_readings",
            COLUMNS,
            [_row("01-12-2024"), _row("02-12-2024"), _row("03-12-2024"), _row("04-12-2024")],
            progress=progress.append,
        )
        assert (res.upserted, res.matched, res.modified) == (2, 2, 1)
        assert res.write_errors == []
        assert progress == [4]
        sql = execute_values_calls[0]["sql"]
        assert "ON CONFLICT (date, time) DO UPDATE SET" in sql
        assert "IS DISTINCT FROM" in sql
        assert cur.statements[0] == "SAVEPOINT bulk_upsert"
        assert cur.statements[-1] == "RELEASE SAVEPOINT bulk_upsert"

    def test_empty_rows(self, fake_cursor, execute_values_calls):
        res = bulk_upsert(fake_cursor(), "meter_readings", COLUMNS, [])
        assert (res.upserted, res.matched, res.modified) == (0, 0, 0)
        assert execute_values_calls == []

    def test_falls_back_to_row_by_row(self, fake_cursor, execute_values_calls):
        def fail(sql, params):
            if "VALUES %s" in sql:
                return psycopg2.DataError("ON CONFLICT DO UPDATE command cannot affect row a second time")
            if "VALUES (%s" in sql and params[2] == -99.0:
                return psycopg2.DataError("value out of range")
            return None

        # row0: 新規, row1: 同一キーで値変更, row2: 失敗, row3: 値同一 (RETURNING なし)
        cur = fake_cursor(fetchone=[(True,), (False,), None], fail=fail)
        rows = [_row("01-12-2024"), _row("01-12-2024", 2.0), _row("02-12-2024", -99.0), _row("03-12-2024")]
        progress: list[int] = []
        res = bulk_upsert(cur, "meter_readings", COLUMNS, rows, progress=progress.append)

        assert res.upserted == 1
        assert res.matched == 2
        assert res.modified == 1
        assert len(res.write_errors) == 1
        assert res.write_errors[0].index == 2
        assert "value out of range" in res.write_errors[0].message
        assert progress == [1, 1, 1, 1]
        assert "ROLLBACK TO SAVEPOINT bulk_upsert" in cur.statements
        assert cur.statements.count("ROLLBACK TO SAVEPOINT reading_upsert") == 1
        assert cur.statements.count("RELEASE SAVEPOINT reading_upsert") == 3


def test_reading_exists(fake_cursor):
    cur = fake_cursor(fetchone=[(1,), None])
    assert reading_exists(cur, "weather_readings", "01-Dec-24", "09:30") is True
    assert reading_exists(cur, "weather_readings", "02-Dec-24", "09:30") is False
    assert cur.executed[0][1] == ("01-Dec-24", "09:30")


def test_insert_one_maps_unique_violation(fake_cursor):
    cur = fake_cursor(fail=lambda sql, params: psycopg2.errors.UniqueViolation("duplicate key"))
    with pytest.raises(ReadingConflictError):
        insert_one(cur, "meter_readings", COLUMNS, _row("01-12-2024"))


def test_insert_one_maps_other_errors(fake_cursor):
    cur = fake_cursor(fail=lambda sql, params: psycopg2.OperationalError("server closed"))
    with pytest.raises(BatchWriteError):
        insert_one(cur, "meter_readings", COLUMNS, _row("01-12-2024"))


def test_insert_one_returns_record(fake_cursor):
    cur = fake_cursor(fetchone=[(5, "01-12-2024", "00:00")])
    assert insert_one(cur, "meter_readings", ["date", "time"], ["01-12-2024", "00:00"]) == (5, "01-12-2024", "00:00")
    assert "RETURNING id, date, time" in cur.statements[0]


def test_update_one_builds_assignments(fake_cursor):
    cur = fake_cursor(fetchone=[(3, "01-12-2024", "06:00")])
    record = update_one(cur, "meter_readings", 3, {"time": "06:00", "voltage": 415.0}, ["date", "time"])
    assert record == (3, "01-12-2024", "06:00")
    sql, params = cur.executed[0]
    assert "SET time = %s, voltage = %s, updated_at = now() WHERE id = %s" in sql
    assert params == ("06:00", 415.0, 3)


def test_update_one_without_changes_fetches(fake_cursor):
    cur = fake_cursor(fetchone=[None])
    assert update_one(cur, "meter_readings", 3, {}, ["date", "time"]) is None
    assert cur.statements[0].startswith("SELECT id, date, time FROM meter_readings")


def test_fetch_by_date_orders_by_time(fake_cursor):
    cur = fake_cursor(fetchall=[(1, "01-Dec-24", "09:00"), (2, "01-Dec-24", "09:30")])
    assert len(fetch_by_date(cur, "weather_readings", "01-Dec-24", ["date", "time"])) == 2
    assert cur.statements[0].endswith("ORDER BY time")


def test_delete_many(fake_cursor):
    cur = fake_cursor(rowcount=2)
    assert delete_many(cur, "weather_readings", [1, 2]) == 2
    assert cur.executed[0][1] == ([1, 2],)
    assert delete_many(fake_cursor(), "weather_readings", []) == 0
