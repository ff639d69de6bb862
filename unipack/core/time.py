from __future__ import annotations

from datetime import datetime, timezone


FIXED_TIMESTAMP_UTC_Z = "1970-01-01T00:00:00Z"
FIXED_DATE_UTC = "1970-01-01"


def utc_timestamp_iso_z(*, deterministic: bool) -> str:
    if deterministic:
        return FIXED_TIMESTAMP_UTC_Z
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_date(*, deterministic: bool) -> str:
    if deterministic:
        return FIXED_DATE_UTC
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def parse_iso_date(s: str) -> str:
    """Validate a YYYY-MM-DD calendar date and return it unchanged."""

    if not isinstance(s, str) or len(s) != 10:
        raise ValueError(f"date must be YYYY-MM-DD: {s!r}")
    datetime.strptime(s, "%Y-%m-%d")
    return s
