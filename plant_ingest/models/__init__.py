"""Domain models for the plant sensor ingestion pipeline.

Row records, upload/validate results, storage readings and submission summaries.
"""

from .readings import InvalidReadingError, MeterReading, Reading, WeatherReading
from .row_data import FIRST_DATA_ROW, RowRecord
from .submit_result import MeterSubmitResult, WeatherSubmitResult, WriteError
from .upload_result import RowError, UploadResult, normalize_upload_result

__all__ = [
    # Row level
    "FIRST_DATA_ROW",
    "RowRecord",
    "RowError",
    "UploadResult",
    "normalize_upload_result",
    # Storage
    "InvalidReadingError",
    "MeterReading",
    "Reading",
    "WeatherReading",
    # Submission
    "MeterSubmitResult",
    "WeatherSubmitResult",
    "WriteError",
]
