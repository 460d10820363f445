from __future__ import annotations

import logging

import pytest

from plant_ingest.models.submit_result import MeterSubmitResult, WeatherSubmitResult
from plant_ingest.services.pipeline import RequestShapeError
from plant_ingest.services.submitter import submit_rows
from plant_ingest.validation.rules import METER_RULES, WEATHER_RULES


def test_submit_rejects_non_list(fake_cursor):
    with pytest.raises(RequestShapeError, match="rows must be an array"):
        submit_rows(fake_cursor(), {"Date": "01-12-2024"}, METER_RULES)


class TestMeterSubmit:
    def test_upsert_counts(self, fake_cursor, execute_values_calls):
        cur = fake_cursor(fetchall=[(True,), (False,)])
        rows = [
            {"Date": "01-12-2024", "Time": "", "ActiveEnergyImport": 1200},
            {"Date": "02-12-2024", "Time": "06:00", "activeEnergyExport": "300"},
        ]
        result = submit_rows(cur, rows, METER_RULES)
        assert isinstance(result, MeterSubmitResult)
        assert result.to_dict() == {
            "acknowledged": True,
            "insertedCount": 0,
            "matchedCount": 1,
            "modifiedCount": 1,
            "upsertedCount": 1,
        }
        written = execute_values_calls[0]["rows"]
        # Time 欠落は 00:00 に補完
        assert written[0][:3] == ("01-12-2024", "00:00", 1200.0)
        assert written[1][:4] == ("02-12-2024", "06:00", 0.0, 300.0)
        assert cur.statements[0] == "BEGIN"
        assert cur.statements[-1] == "COMMIT"

    def test_missing_date_rejects_whole_request(self, fake_cursor, execute_values_calls):
        cur = fake_cursor()
        rows = [{"Date": "01-12-2024"}, {"Time": "10:00"}]
        with pytest.raises(RequestShapeError, match="Each row must contain Date"):
            submit_rows(cur, rows, METER_RULES)
        assert cur.executed == []
        assert execute_values_calls == []

    def test_reports_progress(self, fake_cursor, execute_values_calls):
        cur = fake_cursor(fetchall=[(True,)])
        progress: list[int] = []
        submit_rows(cur, [{"Date": "01-12-2024"}], METER_RULES, progress=progress.append)
        assert sum(progress) == 1

    def test_empty_rows(self, fake_cursor, execute_values_calls):
        result = submit_rows(fake_cursor(), [], METER_RULES)
        assert (result.upserted_count, result.matched_count) == (0, 0)


class TestWeatherSubmit:
    def test_empty(self, fake_cursor):
        cur = fake_cursor()
        result = submit_rows(cur, [], WEATHER_RULES)
        assert result == WeatherSubmitResult(0, 0, "No data provided")
        assert cur.executed == []

    def test_skips_missing_existing_and_repeated_keys(self, fake_cursor, execute_values_calls):
        # reading_exists: row0 -> なし, row2 -> 既存
        cur = fake_cursor(fetchone=[None, (1,)])
        rows = [
            {"Date": "01-Dec-24", "Time": "09:30", "POA": 850},
            {"Date": "", "Time": "09:45"},
            {"Date": "01-Dec-24", "Time": "09:45"},
            {"Date": "01-Dec-24", "Time": "09:30", "POA": 900},
        ]
        progress: list[int] = []
        result = submit_rows(cur, rows, WEATHER_RULES, progress=progress.append)
        assert isinstance(result, WeatherSubmitResult)
        assert result.to_dict() == {
            "inserted": 1,
            "skipped": 3,
            "message": "Weather data submission completed",
        }
        assert progress == [1, 1, 1, 1]
        written = execute_values_calls[0]["rows"]
        assert len(written) == 1
        assert written[0][:3] == ("01-Dec-24", "09:30", 850.0)
        assert cur.statements[-1] == "COMMIT"

    def test_all_skipped_writes_nothing(self, fake_cursor, execute_values_calls):
        cur = fake_cursor(fetchone=[(1,)])
        result = submit_rows(cur, [{"Date": "01-Dec-24", "Time": "09:30"}], WEATHER_RULES)
        assert (result.inserted, result.skipped) == (0, 1)
        assert execute_values_calls == []

    def test_zero_module_temp_is_stored_with_warning(self, fake_cursor, execute_values_calls, caplog, monkeypatch):
        # CLI の setup_logging 後は propagate=False のため caplog に届くよう戻す
        monkeypatch.setattr(logging.getLogger("plant_ingest"), "propagate", True)
        cur = fake_cursor(fetchone=[None])
        with caplog.at_level(logging.WARNING, logger="plant_ingest"):
            result = submit_rows(cur, [{"Date": "01-Dec-24", "Time": "09:30", "ModuleTemp": 0}], WEATHER_RULES)
        assert result.inserted == 1
        assert "ModuleTemp = 0" in caplog.text
