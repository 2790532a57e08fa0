from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Seoul"
DEFAULT_OFFSET_MINUTES = 9 * 60
END_OF_DAY = (23, 59)


@lru_cache(maxsize=16)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def civil_to_instant(
    date: Any | None,
    time: Any | None = None,
    offset_minutes: int = DEFAULT_OFFSET_MINUTES,
) -> datetime | None:
    """Treat ``date``/``time`` as wall-clock time ``offset_minutes`` east of UTC.

    No date means no instant. A missing hour defaults to 23 and a missing
    minute to 59, whether or not ``time`` itself is present.
    """
    if date is None:
        return None
    hour, minute = END_OF_DAY
    if time is not None:
        hour = hour if time.hours is None else time.hours
        minute = minute if time.minutes is None else time.minutes
    wall = datetime(date.year, date.month, date.day, hour, minute, tzinfo=timezone.utc)
    return wall - timedelta(minutes=offset_minutes)


def local_time(instant: datetime, tz: str | tzinfo = DEFAULT_TIMEZONE) -> datetime:
    zone = _zone(tz) if isinstance(tz, str) else tz
    return _as_utc(instant).astimezone(zone)


def day_key(instant: datetime, tz: str | tzinfo = DEFAULT_TIMEZONE) -> str:
    local = local_time(instant, tz)
    return f"{local.year:04d}-{local.month:02d}-{local.day:02d}"


def day_label(key: str) -> str:
    return key.replace("-", ".")


def format_instant(instant: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    utc = _as_utc(instant)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)
