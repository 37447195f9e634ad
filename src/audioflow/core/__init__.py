"""Core utilities package.

Pure helpers with no dependencies on the rest of the package.
"""

from audioflow.core.datetime_utils import (
    calculate_duration_seconds,
    parse_iso_timestamp,
    utc_now_iso,
)

__all__ = [
    "calculate_duration_seconds",
    "parse_iso_timestamp",
    "utc_now_iso",
]
