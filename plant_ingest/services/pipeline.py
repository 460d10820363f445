from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..excel.reader import read_rows, read_workbook
from ..models.row_data import FIRST_DATA_ROW, RowRecord
from ..models.upload_result import RowError, UploadResult
from ..validation.rules import DomainRules
from ..validation.validator import SeenKeys, validate_row

"""Batch pipeline: sheet reader -> row validator -> UploadResult.

- ``run_upload``: raw workbook bytes in, ``UploadResult`` out
- ``validate_rows``: re-validation of (possibly hand-edited) rows without
  re-uploading the file; the rows are echoed back unchanged

Both are synchronous, never stop at the first bad row, and own their
duplicate-tracking set, so concurrent calls cannot see each other's keys.
Structural failures (unreadable workbook, no header row) propagate as
``SheetParseError`` and produce no partial result.
"""

__all__ = [
    "RequestShapeError",
    "extract_rows",
    "run_upload",
    "validate_rows",
]

logger = logging.getLogger(__name__)


class RequestShapeError(Exception):
    """The request does not carry a ``rows`` array of row objects."""


def extract_rows(payload: Any) -> list[RowRecord]:
    """Return ``payload["rows"]`` or raise :class:`RequestShapeError`."""
    if not isinstance(payload, Mapping) or not isinstance(payload.get("rows"), list):
        raise RequestShapeError("Request body must contain rows array")
    rows = payload["rows"]
    if not all(isinstance(r, Mapping) for r in rows):
        raise RequestShapeError("Each row must be an object")
    return rows


def _validate_all(rows: Sequence[RowRecord], rules: DomainRules) -> UploadResult:
    seen: SeenKeys = set()
    errors: list[RowError] = []
    for index, row in enumerate(rows):
        row_number = index + FIRST_DATA_ROW
        messages = validate_row(row, row_number, seen, rules)
        if messages:
            errors.append(RowError(row_number=row_number, errors=messages))
    result = UploadResult.create(rows, errors)
    logger.info(
        "%s: validated %d row(s), %d with errors", rules.name, len(result.rows), result.invalid_rows
    )
    return result


def run_upload(buffer: bytes, rules: DomainRules) -> UploadResult:
    """Parse the first sheet of ``buffer`` and validate every data row."""
    matrix = read_workbook(buffer)
    rows = read_rows(matrix, rules)
    logger.debug("%s: read %d data row(s) from %d raw row(s)", rules.name, len(rows), len(matrix))
    return _validate_all(rows, rules)


def validate_rows(rows: Any, rules: DomainRules) -> UploadResult:
    """Re-validate client-held rows; idempotent for unchanged input."""
    rows = extract_rows({"rows": rows})
    return _validate_all(rows, rules)
