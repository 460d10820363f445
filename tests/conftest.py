# Shared pytest fixtures
from __future__ import annotations

import io
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pandas as pd
import pytest

import plant_ingest.db.batch_insert as bi
from plant_ingest.logging.init import reset_logging


class FakeCursor:
    """Records every statement; results are served from queues.

    ``fail`` receives ``(sql, params)`` and may return an exception to raise.
    """

    def __init__(
        self,
        fetchone: list[Any] | None = None,
        fetchall: list[Any] | None = None,
        rowcount: int = 0,
        fail: Callable[[str, Any], BaseException | None] | None = None,
    ) -> None:
        self.executed: list[tuple[str, Any]] = []
        self._fetchone = list(fetchone or [])
        self._fetchall = list(fetchall or [])
        self.rowcount = rowcount
        self.fail = fail

    def execute(self, sql: str, params: Any = None) -> None:
        self.executed.append((sql, params))
        if self.fail is not None:
            exc = self.fail(sql, params)
            if exc is not None:
                raise exc

    def fetchone(self) -> Any:
        return self._fetchone.pop(0) if self._fetchone else None

    def fetchall(self) -> list[Any]:
        return self._fetchall

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.executed]


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: plant
  password: secret
  database: plantdb
domains:
  weather:
    header_scan_limit: 10
error_log_dir: logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "ingest.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def make_excel(rows: list[list[object]], sheet_name: str = "Sheet1") -> bytes:
    """Build an xlsx payload whose first sheet holds ``rows`` verbatim (no header inference)."""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return buf.getvalue()


@pytest.fixture()
def excel_bytes() -> Callable[..., bytes]:
    return make_excel


@pytest.fixture()
def fake_cursor() -> type[FakeCursor]:
    return FakeCursor


@pytest.fixture()
def execute_values_calls(monkeypatch) -> list[dict[str, Any]]:
    """Replace execute_values with a recorder that routes through the cursor."""
    calls: list[dict[str, Any]] = []

    def fake_execute_values(cursor, sql, argslist, template=None, page_size=100, fetch=False):
        rows = list(argslist)
        calls.append({"sql": sql, "rows": rows, "fetch": fetch, "page_size": page_size})
        cursor.execute(sql, rows)
        if fetch:
            return cursor.fetchall()
        return None

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return calls


@pytest.fixture()
def clean_logging():
    reset_logging()
    yield
    reset_logging()
