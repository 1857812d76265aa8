from __future__ import annotations

from datetime import datetime, timezone

RECORD_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_record_time(dt: datetime) -> str:
    return as_utc(dt).strftime(RECORD_TIME_FORMAT)


def parse_record_time(value: str) -> datetime:
    return datetime.strptime(value, RECORD_TIME_FORMAT).astimezone(timezone.utc)

