from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

One record per row-attributed validation failure, plus file-level records
(``row=-1``) for structural parse failures and storage errors where no single
row can be blamed.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: Source spreadsheet / rows file name
        domain: Reading domain (meter / weather)
        row: Spreadsheet row number (first data row = 2). -1 when not attributable
        error_type: UPPER_SNAKE classification (ROW_VALIDATION, PARSE_ERROR, ...)
        message: Human readable message
    """
    timestamp: str
    file: str
    domain: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, domain: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            domain=domain,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # 追加キー阻止: dataclass -> dict して json.dumps
        return json.dumps(asdict(self), ensure_ascii=False)
