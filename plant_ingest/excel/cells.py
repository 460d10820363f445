from __future__ import annotations

import math
import numbers
import re
import warnings
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any

import pandas as pd

"""Cell normalizer for spreadsheet sensor readings.

Converts one raw cell (text, numeric day serial, or native date/time value as
produced by pandas/openpyxl) into a canonical token:

- dates  -> ``DD-MM-YYYY`` (meter) or ``DD-MMM-YY`` (weather)
- times  -> ``HH:MM`` (24h, seconds truncated)
- numbers -> float, ``None`` (absent) or ``NaN`` (present but invalid)

Values that cannot be normalized are returned as stripped text so that the
strict format check in the row validator reports them instead of silently
dropping them.
"""

__all__ = [
    "DateFormat",
    "MONTHS",
    "is_canonical_date",
    "is_canonical_time",
    "is_invalid_number",
    "is_missing",
    "normalize_cell",
    "normalize_date",
    "normalize_number",
    "normalize_time",
    "serial_to_datetime",
    "to_iso_instant",
]

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

SECONDS_PER_DAY = 86_400

# 1900 date system. serial 60 は Lotus 互換の架空日 1900-02-29 のため 61 未満は 1 日ずらす
_EXCEL_EPOCH = datetime(1899, 12, 30)
_LEAP_BUG_SERIAL = 61

_DMY_RE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")
_DMON_RE = re.compile(r"^(\d{2})-([A-Za-z]{3})-(\d{2})$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_GENERIC_DATE_RES = (
    # 1/12/2024, 01.12.24, 1 Dec 2024 (optionally followed by a time)
    re.compile(
        r"^\d{1,2}[/. -](?:\d{1,2}|[A-Za-z]{3,9}\.?)[/. -]\d{2,4}"
        r"(?:[ T]\d{1,2}:\d{2}(?::\d{2})?)?$"
    ),
    # Dec 1, 2024 / December 1 2024
    re.compile(r"^[A-Za-z]{3,9}\.? \d{1,2},? \d{4}$"),
)
_TIME_TEXT_RE = re.compile(r"^(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?$")
_STRICT_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class DateFormat(Enum):
    """Canonical date token layouts used by the two reading domains."""

    DMY = "DD-MM-YYYY"
    DMON = "DD-MMM-YY"

    def render(self, year: int, month: int, day: int) -> str:
        if self is DateFormat.DMY:
            return f"{day:02d}-{month:02d}-{year:04d}"
        return f"{day:02d}-{MONTHS[month - 1]}-{year % 100:02d}"

    def match(self, text: str) -> str | None:
        """Return ``text`` in canonical casing if it already has this layout."""
        if self is DateFormat.DMY:
            return text if _DMY_RE.match(text) else None
        m = _DMON_RE.match(text)
        if not m:
            return None
        return f"{m.group(1)}-{m.group(2).title()}-{m.group(3)}"


def is_missing(value: Any) -> bool:
    """True for absent cells: None, blank text, NaN and NaT."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return math.isnan(value)
    return value is pd.NaT


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def is_invalid_number(value: Any) -> bool:
    """True for the NaN sentinel returned by :func:`normalize_number`."""
    return isinstance(value, float) and math.isnan(value)


def serial_to_datetime(serial: float) -> datetime | None:
    """Decode a spreadsheet day serial (integer days + fraction of day)."""
    if not math.isfinite(serial) or serial < 0:
        return None
    days = int(serial)
    seconds = int(round((serial - days) * SECONDS_PER_DAY))
    if seconds >= SECONDS_PER_DAY:
        days += 1
        seconds -= SECONDS_PER_DAY
    base = _EXCEL_EPOCH if days >= _LEAP_BUG_SERIAL else _EXCEL_EPOCH + timedelta(days=1)
    try:
        return base + timedelta(days=days, seconds=seconds)
    except OverflowError:
        return None


def _parse_date_text(text: str) -> datetime | None:
    # 日・月・年が揃った形だけを汎用パースに回す ("now", "9:30", "Dec" は原文のまま返す)
    if not any(r.match(text) for r in _GENERIC_DATE_RES):
        return None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            parsed = pd.to_datetime(text, dayfirst=True, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def _normalize_date_text(text: str, fmt: DateFormat) -> str | None:
    if not text:
        return None
    canonical = fmt.match(text)
    if canonical is not None:
        return canonical
    iso = _ISO_RE.match(text)
    if iso:
        year, month, day = iso.group(1), iso.group(2), iso.group(3)
        if fmt is DateFormat.DMY:
            return f"{day}-{month}-{year}"
        if 1 <= int(month) <= 12:
            return fmt.render(int(year), int(month), int(day))
    parsed = _parse_date_text(text)
    if parsed is not None:
        return fmt.render(parsed.year, parsed.month, parsed.day)
    return text


def normalize_date(raw: Any, fmt: DateFormat = DateFormat.DMY) -> str | None:
    """Normalize a raw cell into a canonical date token.

    Precedence: canonical text, native date value, numeric day serial, ISO
    ``YYYY-MM-DD`` text, generic date text with an explicit day, month and
    year. Anything else (relative words or bare times, say) is returned
    as the original (stripped) text. Absent cells give ``None``.
    """
    if is_missing(raw):
        return None
    if isinstance(raw, str):
        return _normalize_date_text(raw.strip(), fmt)
    if isinstance(raw, (datetime, date)):
        return fmt.render(raw.year, raw.month, raw.day)
    if _is_number(raw) and raw >= 1:
        decoded = serial_to_datetime(float(raw))
        if decoded is not None:
            return fmt.render(decoded.year, decoded.month, decoded.day)
    return _normalize_date_text(str(raw).strip(), fmt)


def normalize_time(raw: Any) -> str | None:
    """Normalize a raw cell into ``HH:MM``; unparseable text is returned as-is."""
    if is_missing(raw):
        return None
    if isinstance(raw, (datetime, time)):
        return f"{raw.hour:02d}:{raw.minute:02d}"
    if isinstance(raw, date):
        return "00:00"
    if _is_number(raw) and math.isfinite(raw) and raw >= 0:
        # 日付部分は捨てて 1 日内の端数のみ使う。秒は切り捨て
        seconds = int(round((float(raw) % 1) * SECONDS_PER_DAY)) % SECONDS_PER_DAY
        return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}"
    text = str(raw).strip()
    m = _TIME_TEXT_RE.match(text)
    if m:
        return f"{int(m.group(1)):02d}:{int(m.group(2)):02d}"
    return text


def normalize_number(raw: Any) -> float | None:
    """Return the finite number, ``None`` when absent, ``NaN`` when unparseable."""
    if is_missing(raw):
        return None
    if isinstance(raw, bool):
        return math.nan
    if _is_number(raw):
        value = float(raw)
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            return math.nan
    return value if math.isfinite(value) else math.nan


def is_canonical_date(value: str, fmt: DateFormat) -> bool:
    """Strict check of a canonical date token (day 01-31, known month)."""
    if fmt is DateFormat.DMY:
        m = _DMY_RE.match(value)
        if not m:
            return False
        return 1 <= int(m.group(1)) <= 31 and 1 <= int(m.group(2)) <= 12
    m = _DMON_RE.match(value)
    if not m:
        return False
    return 1 <= int(m.group(1)) <= 31 and m.group(2).title() in MONTHS


def is_canonical_time(value: str) -> bool:
    return bool(_STRICT_TIME_RE.match(value))


def to_iso_instant(value: datetime) -> str:
    """Render a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``; naive values are taken as UTC."""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime("%Y-%m-%dT%H:%M:%S") + f".{value.microsecond // 1000:03d}Z"


def normalize_cell(raw: Any) -> Any:
    """Light normalization for columns that are neither date nor time."""
    if raw is None or raw is pd.NaT:
        return None
    if isinstance(raw, float) and math.isnan(raw):
        return None
    if isinstance(raw, datetime):
        return to_iso_instant(raw)
    if isinstance(raw, date):
        return to_iso_instant(datetime(raw.year, raw.month, raw.day))
    if isinstance(raw, time):
        return raw.isoformat()
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    return raw
