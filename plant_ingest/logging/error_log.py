from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord
from ..models.upload_result import UploadResult

"""Error log buffering (JSON Lines).

- 固定スキーマ (ErrorRecord のキーのみ)
- 実行ごとに ``<logs_dir>/errors-YYYYMMDD-HHMMSS.log`` (UTC)
- ファイルは flush 時にレコードがある場合のみ作成
"""

__all__ = [
    "ErrorLogBuffer",
    "ErrorRecord",
    "records_from_result",
]

TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records; ``flush`` appends them as JSON Lines."""

    def __init__(self, logs_dir: Path | str = "logs") -> None:
        self.logs_dir = Path(logs_dir)
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend(self, records: list[ErrorRecord]) -> None:
        self._records.extend(records)

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Write buffered records; returns the file path, or ``None`` when empty."""
        if not self._records:
            return None
        fp = self.file_path
        fp.parent.mkdir(parents=True, exist_ok=True)
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp


def records_from_result(file: str, domain: str, result: UploadResult) -> list[ErrorRecord]:
    """One ``ROW_VALIDATION`` record per message, in row order."""
    return [
        ErrorRecord.create(file, domain, err.row_number, "ROW_VALIDATION", message)
        for err in result.errors
        for message in err.errors
    ]
