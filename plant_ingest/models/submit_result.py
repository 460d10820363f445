from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Submission summaries.

The two domains have different submission policies and therefore different
summaries: meter rows are upserted (overwrite on conflict), weather rows are
inserted only when the (date, time) key does not exist yet.
"""

__all__ = [
    "MeterSubmitResult",
    "WeatherSubmitResult",
    "WriteError",
]


@dataclass(frozen=True)
class WriteError:
    """A single row rejected by the store during an unordered bulk write."""
    index: int  # 0-based position in the submitted rows
    message: str


@dataclass(frozen=True)
class MeterSubmitResult:
    acknowledged: bool
    inserted_count: int  # upsert は upserted_count 側に計上される
    matched_count: int
    modified_count: int
    upserted_count: int
    write_errors: list[WriteError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "acknowledged": self.acknowledged,
            "insertedCount": self.inserted_count,
            "matchedCount": self.matched_count,
            "modifiedCount": self.modified_count,
            "upsertedCount": self.upserted_count,
        }


@dataclass(frozen=True)
class WeatherSubmitResult:
    inserted: int
    skipped: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"inserted": self.inserted, "skipped": self.skipped, "message": self.message}
