from __future__ import annotations

from ..models.submit_result import MeterSubmitResult, WeatherSubmitResult
from ..models.upload_result import UploadResult

"""SUMMARY line rendering for uploads and submissions.

Upload:
    SUMMARY domain={domain} rows={rows} invalid_rows={invalid} valid={true|false} elapsed_sec={elapsed}

Submit (meter):
    SUMMARY domain=meter rows={rows} upserted={n} matched={n} modified={n} write_errors={n} elapsed_sec={elapsed}

Submit (weather):
    SUMMARY domain=weather rows={rows} inserted={n} skipped={n} elapsed_sec={elapsed}
"""

__all__ = [
    "format_number",
    "render_submit_summary",
    "render_upload_summary",
]


def format_number(value: float) -> str:
    """Render a duration without trailing zeros or scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(round(value, 3))


def render_upload_summary(domain: str, result: UploadResult, elapsed_seconds: float) -> str:
    return (
        f"SUMMARY domain={domain} "
        f"rows={len(result.rows)} "
        f"invalid_rows={result.invalid_rows} "
        f"valid={'true' if result.is_valid else 'false'} "
        f"elapsed_sec={format_number(elapsed_seconds)}"
    )


def render_submit_summary(
    domain: str,
    rows: int,
    result: MeterSubmitResult | WeatherSubmitResult,
    elapsed_seconds: float,
) -> str:
    if isinstance(result, MeterSubmitResult):
        counts = (
            f"upserted={result.upserted_count} "
            f"matched={result.matched_count} "
            f"modified={result.modified_count} "
            f"write_errors={len(result.write_errors)}"
        )
    else:
        counts = f"inserted={result.inserted} skipped={result.skipped}"
    return (
        f"SUMMARY domain={domain} rows={rows} {counts} "
        f"elapsed_sec={format_number(elapsed_seconds)}"
    )
