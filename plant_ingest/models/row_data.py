from __future__ import annotations

from collections.abc import Mapping
from typing import Any

"""RowRecord helpers.

A row record is a plain ``dict`` (column name -> normalized value) in header
order. It may be edited client-side between upload and re-validation, so
header casing is not guaranteed: lookups go through :func:`lookup`.
"""

__all__ = [
    "FIRST_DATA_ROW",
    "RowRecord",
    "lookup",
    "text_value",
]

RowRecord = dict[str, Any]

# 1 行目はヘッダ。最初のデータ行はスプレッドシート上の 2 行目
FIRST_DATA_ROW = 2


def lookup(row: Mapping[str, Any], name: str) -> Any:
    """Return ``row[name]`` falling back to a case-insensitive key match."""
    if name in row:
        return row[name]
    folded = name.lower()
    for key, value in row.items():
        if isinstance(key, str) and key.lower() == folded:
            return value
    return None


def text_value(row: Mapping[str, Any], name: str) -> str:
    """Stripped text of a column; absent values give an empty string."""
    value = lookup(row, name)
    if value is None:
        return ""
    return str(value).strip()
