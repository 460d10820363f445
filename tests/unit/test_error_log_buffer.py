from __future__ import annotations

import json
import re
from pathlib import Path

from plant_ingest.logging.error_log import ErrorLogBuffer, records_from_result
from plant_ingest.models.error_record import ErrorRecord
from plant_ingest.models.upload_result import RowError, UploadResult


def test_flush_empty_creates_nothing(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    assert buf.flush() is None
    assert not (tmp_path / "logs").exists()


def test_flush_writes_json_lines(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path / "logs")
    buf.append(ErrorRecord.create("meter.xlsx", "meter", 2, "ROW_VALIDATION", "Missing Date"))
    buf.append(ErrorRecord.create("meter.xlsx", "meter", -1, "PARSE_ERROR", "Excel sheet is empty"))
    assert len(buf) == 2
    path = buf.flush()
    assert path is not None
    assert re.fullmatch(r"errors-\d{8}-\d{6}\.log", path.name)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["row"] for line in lines] == [2, -1]
    assert len(buf) == 0


def test_flush_appends_to_same_file(tmp_path: Path):
    buf = ErrorLogBuffer(tmp_path)
    buf.append(ErrorRecord.create("a.xlsx", "weather", 2, "ROW_VALIDATION", "x"))
    first = buf.flush()
    buf.append(ErrorRecord.create("a.xlsx", "weather", 3, "ROW_VALIDATION", "y"))
    second = buf.flush()
    assert first == second
    assert len(second.read_text(encoding="utf-8").splitlines()) == 2


def test_records_from_result_one_per_message():
    result = UploadResult.create(
        [{}, {}],
        [RowError(2, ["Missing Date", "Missing Time"]), RowError(3, ["Duplicate Date & Time"])],
    )
    records = records_from_result("w.xlsx", "weather", result)
    assert [(r.row, r.message) for r in records] == [
        (2, "Missing Date"),
        (2, "Missing Time"),
        (3, "Duplicate Date & Time"),
    ]
    assert {r.error_type for r in records} == {"ROW_VALIDATION"}
    assert {r.file for r in records} == {"w.xlsx"}
