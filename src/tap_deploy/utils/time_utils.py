"""Time utility helpers for UTC-safe timestamps."""

from __future__ import annotations

from datetime import datetime, timezone


def now_utc() -> datetime:
    """Return current timezone-aware UTC timestamp."""

    return datetime.now(timezone.utc)


def utc_compact_date() -> str:
    """Return current UTC date as ``YYYYMMDD`` (default release label)."""

    return now_utc().strftime("%Y%m%d")
