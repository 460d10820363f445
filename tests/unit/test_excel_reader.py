from __future__ import annotations

from datetime import datetime

import pytest

from plant_ingest.excel.reader import (
    SheetParseError,
    clean_header,
    locate_header_row,
    make_unique_headers,
    read_rows,
    read_workbook,
)
from plant_ingest.validation.rules import METER_RULES, WEATHER_RULES, HeaderPolicy, with_overrides


def test_read_workbook_first_sheet_matrix(excel_bytes):
    payload = excel_bytes([["Date", "Time"], ["01-12-2024", None], ["NA", 5]])
    matrix = read_workbook(payload)
    assert matrix[0] == ["Date", "Time"]
    assert matrix[1] == ["01-12-2024", None]
    # "NA" は欠損扱いしない
    assert matrix[2] == ["NA", 5]


def test_read_workbook_garbage_bytes():
    with pytest.raises(SheetParseError) as e:
        read_workbook(b"definitely not a workbook")
    assert str(e.value).startswith("Failed to parse Excel")


def test_clean_header_collapses_whitespace():
    assert clean_header("  Start \n Time ") == "Start Time"
    assert clean_header(None) == ""


def test_make_unique_headers():
    assert make_unique_headers(["Date", "Voltage", "Voltage", "", "Voltage"]) == [
        "Date",
        "Voltage",
        "Voltage (2)",
        "",
        "Voltage (3)",
    ]


def test_locate_header_fixed_requires_row_one():
    matrix = [["Meter export"], ["Date", "Time"]]
    with pytest.raises(SheetParseError) as e:
        locate_header_row(matrix, METER_RULES)
    assert str(e.value) == "Could not detect header row. Expected columns: Date"


def test_locate_header_detect_scans_title_rows():
    matrix = [["Plant weather log"], [None], [" date ", "TIME", "POA"], ["01-Dec-24", "09:30", 800]]
    assert locate_header_row(matrix, WEATHER_RULES) == 2


def test_locate_header_detect_respects_scan_limit():
    matrix = [["title"]] * 3 + [["Date", "Time"]]
    rules = with_overrides(WEATHER_RULES, header_scan_limit=3)
    with pytest.raises(SheetParseError) as e:
        locate_header_row(matrix, rules)
    assert "Expected columns: Date, Time" in str(e.value)


def test_header_policy_override_to_detect_for_meter():
    matrix = [["title"], ["Date", "ActiveEnergyImport"]]
    rules = with_overrides(METER_RULES, header_policy="detect")
    assert rules.header_policy is HeaderPolicy.DETECT
    assert locate_header_row(matrix, rules) == 1


def test_read_rows_empty_sheet():
    with pytest.raises(SheetParseError) as e:
        read_rows([], METER_RULES)
    assert str(e.value) == "Excel sheet is empty"


def test_read_rows_meter_normalizes_key_columns():
    matrix = [
        ["DATE", "time", "Start Time", "ActiveEnergyImport", "Note"],
        [datetime(2024, 12, 1), "9:5", 0.25, 1200.0, None],
        [None, None, None, None, None],
        ["02-12-2024"],
    ]
    rows = read_rows(matrix, METER_RULES)
    assert len(rows) == 2
    assert rows[0] == {
        "Date": "01-12-2024",
        "Time": "09:05",
        "Start Time": "06:00",
        "ActiveEnergyImport": 1200,
        "Note": None,
    }
    # 短い行は None で埋める
    assert rows[1]["Date"] == "02-12-2024"
    assert rows[1]["ActiveEnergyImport"] is None


def test_read_rows_weather_with_title_rows(excel_bytes):
    payload = excel_bytes(
        [
            ["Weather station export", None, None],
            ["Date", "Time", "ModuleTemp"],
            ["2024-12-01", "9:30", 41.5],
        ]
    )
    rows = read_rows(read_workbook(payload), WEATHER_RULES)
    assert rows == [{"Date": "01-Dec-24", "Time": "09:30", "ModuleTemp": 41.5}]


def test_read_rows_skips_unnamed_columns():
    matrix = [["Date", None, "Voltage"], ["01-12-2024", "ignored", 415]]
    rows = read_rows(matrix, METER_RULES)
    assert rows == [{"Date": "01-12-2024", "Voltage": 415}]
