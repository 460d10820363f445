from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from ..excel.cells import is_invalid_number, normalize_number
from .row_data import text_value

"""Storage entities for meter and weather readings.

Both are keyed by the (date, time) pair, unique in storage. Numeric fields
default to 0: at the storage boundary a missing or unparseable value becomes 0,
never NULL. This differs from validation time, where missing is ``None`` and
unparseable is ``NaN``.
"""

__all__ = [
    "FieldSpec",
    "InvalidReadingError",
    "MeterReading",
    "Reading",
    "WeatherReading",
    "coerce_number",
]


class InvalidReadingError(Exception):
    """Raised when a single reading violates a business rule (missing key, zero module temp)."""


@dataclass(frozen=True)
class FieldSpec:
    """One numeric reading field.

    header: spreadsheet / template header (external vocabulary)
    key: document key in JSON output
    column: storage column (== dataclass attribute)
    example: value used in the template's example row
    """
    header: str
    key: str
    column: str
    example: float


def coerce_number(value: Any) -> float:
    n = normalize_number(value)
    if n is None or is_invalid_number(n):
        return 0.0
    return n


@dataclass(frozen=True)
class Reading:
    FIELDS: ClassVar[tuple[FieldSpec, ...]] = ()
    date: str
    time: str

    @classmethod
    def columns(cls) -> list[str]:
        return ["date", "time"] + [f.column for f in cls.FIELDS]

    @classmethod
    def from_row(cls, row: Mapping[str, Any], default_time: str | None = None) -> Reading:
        """Map a (pre-validated) row record to a reading.

        Any header casing is accepted (``ActiveEnergyImport`` / ``activeEnergyImport``).
        """
        date = text_value(row, "Date")
        time = text_value(row, "Time") or (default_time or "")
        if not date:
            raise InvalidReadingError("Date is required")
        if not time:
            raise InvalidReadingError("Time is required")
        values = {f.column: coerce_number(_field_value(row, f)) for f in cls.FIELDS}
        return cls(date=date, time=time, **values)

    def key(self) -> tuple[str, str]:
        return (self.date, self.time)

    def values(self) -> list[Any]:
        return [getattr(self, c) for c in self.columns()]

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"date": self.date, "time": self.time}
        for f in self.FIELDS:
            doc[f.key] = getattr(self, f.column)
        return doc


def _field_value(row: Mapping[str, Any], spec: FieldSpec) -> Any:
    # header 名 / document key / column 名のいずれでも受け付ける
    for name in (spec.header, spec.key, spec.column):
        for key, value in row.items():
            if isinstance(key, str) and key.lower() == name.lower():
                return value
    return None


METER_FIELDS = (
    FieldSpec("ActiveEnergyImport", "activeEnergyImport", "active_energy_import", 1200),
    FieldSpec("ActiveEnergyExport", "activeEnergyExport", "active_energy_export", 300),
    FieldSpec("ReactiveEnergyImport", "reactiveEnergyImport", "reactive_energy_import", 150),
    FieldSpec("ReactiveEnergyExport", "reactiveEnergyExport", "reactive_energy_export", 80),
    FieldSpec("Voltage", "voltage", "voltage", 415),
    FieldSpec("Current", "current", "current", 32),
    FieldSpec("Frequency", "frequency", "frequency", 50),
    FieldSpec("PowerFactor", "powerFactor", "power_factor", 0.98),
)

WEATHER_FIELDS = (
    FieldSpec("POA", "poa", "poa", 850),
    FieldSpec("GHI", "ghi", "ghi", 780),
    FieldSpec("AlbedoUp", "albedoUp", "albedo_up", 210),
    FieldSpec("AlbedoDown", "albedoDown", "albedo_down", 45),
    FieldSpec("ModuleTemp", "moduleTemp", "module_temp", 42.5),
    FieldSpec("AmbientTemp", "ambientTemp", "ambient_temp", 31.2),
    FieldSpec("WindSpeed", "windSpeed", "wind_speed", 3.4),
    FieldSpec("Rainfall", "rainfall", "rainfall", 0),
    FieldSpec("Humidity", "humidity", "humidity", 55),
)


@dataclass(frozen=True)
class MeterReading(Reading):
    FIELDS: ClassVar[tuple[FieldSpec, ...]] = METER_FIELDS
    active_energy_import: float = 0.0
    active_energy_export: float = 0.0
    reactive_energy_import: float = 0.0
    reactive_energy_export: float = 0.0
    voltage: float = 0.0
    current: float = 0.0
    frequency: float = 0.0
    power_factor: float = 0.0


@dataclass(frozen=True)
class WeatherReading(Reading):
    FIELDS: ClassVar[tuple[FieldSpec, ...]] = WEATHER_FIELDS
    poa: float = 0.0
    ghi: float = 0.0
    albedo_up: float = 0.0
    albedo_down: float = 0.0
    module_temp: float = 0.0
    ambient_temp: float = 0.0
    wind_speed: float = 0.0
    rainfall: float = 0.0
    humidity: float = 0.0
