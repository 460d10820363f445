from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .row_data import RowRecord

"""Upload / validate result models.

Canonical wire shape::

    {"rows": [...], "errors": [{"rowNumber": 2, "errors": ["..."]}], "isValid": false}

Older clients send and expect ``{"rowIndex": 2, "messages": [...]}`` per error
and sometimes ``data`` instead of ``rows``. :func:`normalize_upload_result`
accepts every variant; ``to_dict(legacy=True)`` produces the old one.
"""

__all__ = [
    "RowError",
    "UploadResult",
    "normalize_upload_result",
]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class RowError:
    """Validation messages for one spreadsheet row.

    Attributes:
        row_number: Spreadsheet row (header is row 1, first data row is 2)
        errors: Messages in the order the rules fired
    """
    row_number: int
    errors: list[str]

    @staticmethod
    def from_mapping(data: Any) -> RowError | None:
        """Adapt either error shape; unknown shapes give ``None``."""
        if not isinstance(data, Mapping):
            return None
        if _is_int(data.get("rowNumber")) and isinstance(data.get("errors"), list):
            return RowError(row_number=data["rowNumber"], errors=[str(m) for m in data["errors"]])
        if _is_int(data.get("rowIndex")) and isinstance(data.get("messages"), list):
            return RowError(row_number=data["rowIndex"], errors=[str(m) for m in data["messages"]])
        return None

    def to_dict(self, legacy: bool = False) -> dict[str, Any]:
        if legacy:
            return {"rowIndex": self.row_number, "messages": list(self.errors)}
        return {"rowNumber": self.row_number, "errors": list(self.errors)}


@dataclass(frozen=True)
class UploadResult:
    rows: list[RowRecord]
    errors: list[RowError]
    is_valid: bool

    @staticmethod
    def create(
        rows: Sequence[RowRecord], errors: Sequence[RowError], is_valid: bool | None = None
    ) -> UploadResult:
        """Build a result; ``is_valid`` defaults to "no row errors"."""
        errors = list(errors)
        return UploadResult(
            rows=list(rows),
            errors=errors,
            is_valid=(not errors) if is_valid is None else is_valid,
        )

    @property
    def invalid_rows(self) -> int:
        return len(self.errors)

    def to_dict(self, legacy: bool = False) -> dict[str, Any]:
        return {
            "rows": list(self.rows),
            "errors": [e.to_dict(legacy=legacy) for e in self.errors],
            "isValid": self.is_valid,
        }


def normalize_upload_result(payload: Any) -> UploadResult:
    """Convert any legacy/variant result shape into :class:`UploadResult`.

    - ``rows`` or ``data`` (non-lists become ``[]``)
    - errors as ``{rowNumber, errors}`` or ``{rowIndex, messages}``; other
      entries are dropped
    - ``isValid`` kept when it is a bool, otherwise recomputed
    """
    if not isinstance(payload, Mapping):
        payload = {}
    rows = payload.get("rows")
    if rows is None:
        rows = payload.get("data")
    if not isinstance(rows, list):
        rows = []

    raw_errors = payload.get("errors")
    errors: list[RowError] = []
    if isinstance(raw_errors, list):
        for item in raw_errors:
            err = RowError.from_mapping(item)
            if err is not None:
                errors.append(err)

    is_valid = payload.get("isValid")
    return UploadResult.create(rows, errors, is_valid if isinstance(is_valid, bool) else None)
