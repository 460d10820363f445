from __future__ import annotations

import io
import re
from collections.abc import Sequence
from typing import Any

import pandas as pd

from ..validation.rules import DomainRules, HeaderPolicy
from .cells import is_missing, normalize_cell, normalize_date, normalize_time

"""Sheet reader: raw workbook bytes -> ordered row records.

- Only the first sheet of the workbook is read.
- The header row is either fixed at row 1 or detected among the first N rows,
  depending on the domain's ``HeaderPolicy``.
- Header names are whitespace-collapsed and de-duplicated (``Name (2)``...).
- Blank rows are skipped; short rows are padded with ``None``.
- ``date`` / ``time`` columns go through the cell normalizer and are emitted
  under the canonical keys ``Date`` / ``Time``.
"""

__all__ = [
    "SheetParseError",
    "clean_header",
    "locate_header_row",
    "make_unique_headers",
    "read_rows",
    "read_workbook",
]

_WHITESPACE_RE = re.compile(r"\s+")


class SheetParseError(Exception):
    """Raised when the workbook is unreadable or no header row can be located."""


def read_workbook(buffer: bytes) -> list[list[Any]]:
    """Read the first sheet of an Excel payload as a raw cell matrix.

    Empty cells become ``None``. Text such as ``NA`` is kept as text (pandas'
    default NA strings are disabled) so that it is reported by validation
    instead of being mistaken for a blank cell.
    """
    try:
        xls = pd.ExcelFile(io.BytesIO(buffer))
    except Exception as e:
        raise SheetParseError(f"Failed to parse Excel: {e}") from e
    if not xls.sheet_names:
        raise SheetParseError("No sheet found in Excel")
    try:
        df = xls.parse(xls.sheet_names[0], header=None, keep_default_na=False, na_values=[""])
    except Exception as e:
        raise SheetParseError(f"Failed to parse Excel: {e}") from e
    df = df.astype(object).where(df.notna(), None)
    return df.values.tolist()


def clean_header(value: Any) -> str:
    if is_missing(value):
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def make_unique_headers(headers: Sequence[str]) -> list[str]:
    """Suffix repeated header names with `` (2)``, `` (3)``... in order of appearance."""
    used: dict[str, int] = {}
    out: list[str] = []
    for h in headers:
        if not h:
            out.append("")
            continue
        count = used.get(h, 0)
        used[h] = count + 1
        out.append(h if count == 0 else f"{h} ({count + 1})")
    return out


def locate_header_row(matrix: Sequence[Sequence[Any]], rules: DomainRules) -> int:
    """Return the index of the header row or raise :class:`SheetParseError`."""
    if rules.header_policy is HeaderPolicy.FIXED:
        candidates = range(min(len(matrix), 1))
    else:
        candidates = range(min(len(matrix), rules.header_scan_limit))
    required = set(rules.header_keys)
    for i in candidates:
        names = {clean_header(c).lower() for c in matrix[i] or []}
        if required <= names:
            return i
    expected = ", ".join(k.title() for k in rules.header_keys)
    raise SheetParseError(f"Could not detect header row. Expected columns: {expected}")


def _is_blank_row(raw: Sequence[Any] | None) -> bool:
    return not raw or all(is_missing(v) for v in raw)


def read_rows(matrix: Sequence[Sequence[Any]], rules: DomainRules) -> list[dict[str, Any]]:
    """Build row records from a raw matrix using the domain's header policy."""
    if not matrix:
        raise SheetParseError("Excel sheet is empty")
    header_index = locate_header_row(matrix, rules)
    headers = make_unique_headers([clean_header(h) for h in matrix[header_index]])
    time_columns = {c.lower() for c in rules.extra_time_columns}

    rows: list[dict[str, Any]] = []
    for raw in matrix[header_index + 1:]:
        if _is_blank_row(raw):
            continue
        row: dict[str, Any] = {}
        for idx, header in enumerate(headers):
            if not header:
                continue
            val = raw[idx] if idx < len(raw) else None
            key = header.lower()
            if key == "date":
                row["Date"] = normalize_date(val, rules.date_format)
            elif key == "time":
                row["Time"] = normalize_time(val)
            elif key in time_columns:
                row[header] = normalize_time(val)
            else:
                row[header] = normalize_cell(val)
        rows.append(row)
    return rows
