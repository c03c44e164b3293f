"""
Cooldown Timer Module - QR Attendance Session System

Pure time arithmetic for the login hold window and the post-logout cooldown.
The same functions back the engine's decisions and the countdowns shown to
students, so both always agree.
"""

import math
from datetime import datetime, timedelta
from typing import Optional, Union

TimeValue = Union[datetime, str]

DEFAULT_MIN_HOLD_SECONDS = 60


def to_datetime(value: TimeValue) -> datetime:
    """
    Accept either a datetime or an ISO-8601 string as stored in SQLite.

    Offset-aware values are converted to naive local wall-clock time, the
    only form the store holds.
    """
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value


def seconds_since(t0: TimeValue, now: TimeValue) -> float:
    """Seconds elapsed between t0 and now (negative if t0 is in the future)."""
    return (to_datetime(now) - to_datetime(t0)).total_seconds()


def is_hold_satisfied(login_time: TimeValue, now: TimeValue,
                      min_seconds: int = DEFAULT_MIN_HOLD_SECONDS) -> bool:
    """True once a session has been active for at least min_seconds."""
    return seconds_since(login_time, now) >= min_seconds


def hold_remaining(login_time: TimeValue, now: TimeValue,
                   min_seconds: int = DEFAULT_MIN_HOLD_SECONDS) -> int:
    """Whole seconds (rounded up) until logout becomes allowed, 0 if allowed."""
    remaining = min_seconds - seconds_since(login_time, now)
    if remaining <= 0:
        return 0
    return math.ceil(remaining)


def cooldown_remaining(cooldown_until: Optional[TimeValue], now: TimeValue) -> int:
    """Whole seconds (rounded up) left on a cooldown, 0 when none or expired."""
    if cooldown_until is None:
        return 0
    remaining = (to_datetime(cooldown_until) - to_datetime(now)).total_seconds()
    if remaining <= 0:
        return 0
    return math.ceil(remaining)


def cooldown_deadline(logout_time: TimeValue, minutes: float) -> datetime:
    """Instant at which a cooldown started at logout_time ends."""
    return to_datetime(logout_time) + timedelta(minutes=minutes)
