"""Shared utility helpers."""

from tap_deploy.utils.io import atomic_temp_path, write_json_atomically, write_parquet_atomically
from tap_deploy.utils.paths import (
    directory_is_populated,
    ensure_directories,
    write_marker_file,
)
from tap_deploy.utils.time_utils import now_utc, utc_compact_date

__all__ = [
    "atomic_temp_path",
    "write_json_atomically",
    "write_parquet_atomically",
    "directory_is_populated",
    "ensure_directories",
    "write_marker_file",
    "now_utc",
    "utc_compact_date",
]
