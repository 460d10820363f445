from __future__ import annotations

import pytest

from plant_ingest.models.submit_result import MeterSubmitResult, WeatherSubmitResult, WriteError
from plant_ingest.models.upload_result import RowError, UploadResult
from plant_ingest.services.summary import format_number, render_submit_summary, render_upload_summary


@pytest.mark.parametrize(
    "value, expected",
    [(0, "0"), (2.0, "2"), (0.001234, "0.001234"), (1.23456, "1.235"), (12.5, "12.5")],
)
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_render_upload_summary():
    result = UploadResult.create([{}, {}, {}], [RowError(3, ["Missing Date"])])
    assert (
        render_upload_summary("meter", result, 0.5)
        == "SUMMARY domain=meter rows=3 invalid_rows=1 valid=false elapsed_sec=0.5"
    )


def test_render_submit_summary_meter():
    result = MeterSubmitResult(True, 0, 3, 1, 2, [WriteError(4, "boom")])
    assert (
        render_submit_summary("meter", 6, result, 2.0)
        == "SUMMARY domain=meter rows=6 upserted=2 matched=3 modified=1 write_errors=1 elapsed_sec=2"
    )


def test_render_submit_summary_weather():
    result = WeatherSubmitResult(4, 1, "Weather data submission completed")
    assert (
        render_submit_summary("weather", 5, result, 0)
        == "SUMMARY domain=weather rows=5 inserted=4 skipped=1 elapsed_sec=0"
    )
