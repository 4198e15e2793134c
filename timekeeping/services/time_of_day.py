from __future__ import annotations

import re
from datetime import date, datetime, time, timezone, tzinfo

from timekeeping.errors import ValidationError

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?$")
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def hm(hour: int, minute: int) -> int:
    return hour * 60 + minute


def _parse_datetime_text(raw: str) -> datetime | None:
    value = raw.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _wall_clock(value: datetime, tz: tzinfo | None) -> datetime:
    if value.tzinfo is not None and tz is not None:
        return value.astimezone(tz)
    return value


def minutes_since_midnight(value: object, tz: tzinfo | None = None) -> int | None:
    """Return the wall-clock minute of day for a timestamp-like value.

    Accepts datetimes, times, ISO-8601 datetime strings and ``HH:MM[:SS]``
    strings. Aware datetimes are shifted into ``tz`` first; naive values are
    read as they are. Anything that cannot be read yields ``None``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        local = _wall_clock(value, tz)
        return local.hour * 60 + local.minute
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        return None

    raw = value.strip()
    if not raw:
        return None

    clock = _CLOCK_RE.match(raw)
    if clock is not None:
        hour = int(clock.group(1))
        minute = int(clock.group(2))
        second = int(clock.group(3) or 0)
        if hour > 23 or minute > 59 or second > 59:
            return None
        return hour * 60 + minute

    parsed = _parse_datetime_text(raw)
    if parsed is None:
        return None
    local = _wall_clock(parsed, tz)
    return local.hour * 60 + local.minute


def parse_hhmm(value: str) -> time:
    raw = (value or "").strip()
    match = _HHMM_RE.match(raw)
    if match is None:
        raise ValidationError(f"Invalid time '{value}', expected 24-hour HH:MM")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def to_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def combine_local(day_date: date, hhmm: str | None, tz: tzinfo) -> datetime | None:
    if hhmm is None:
        return None
    parsed_time = parse_hhmm(hhmm)
    local_dt = datetime.combine(day_date, parsed_time, tzinfo=tz)
    return local_dt.astimezone(timezone.utc)
