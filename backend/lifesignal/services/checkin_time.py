"""
Check-in clock helpers.

Timestamps come back from the store as ISO strings, but older records
carry epoch milliseconds and in-process callers pass datetimes. Everything
is normalized to timezone-aware UTC datetimes here.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from lifesignal.models.enums import SafetyStatus
from lifesignal.services.notification_config import coerce_number


DEFAULT_CHECKIN_INTERVAL_MIN = 60

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp.

    Accepts aware or naive datetimes (naive is taken as UTC), ISO-8601
    strings (with or without a trailing "Z") and epoch milliseconds.
    Returns None for missing or unparseable values.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return to_datetime(parsed)

    return None


def to_iso(value: datetime) -> str:
    """Serialize a datetime for the store (UTC, ISO-8601)."""
    return value.astimezone(timezone.utc).isoformat()


def minutes_between(later: datetime, earlier: datetime) -> float:
    """Elapsed minutes from `earlier` to `later` (negative if reversed)."""
    return (later - earlier).total_seconds() / 60


def get_checkin_interval(user: dict) -> float:
    """Check-in interval in minutes, defaulting to an hour."""
    return coerce_number(user.get("checkin_interval"), DEFAULT_CHECKIN_INTERVAL_MIN)


def get_next_due_at(last_checkin_at: Any, interval_minutes: Any) -> Optional[datetime]:
    """When the next check-in is due, or None if the user never checked in."""
    last = to_datetime(last_checkin_at)
    if last is None:
        return None
    interval = coerce_number(interval_minutes, DEFAULT_CHECKIN_INTERVAL_MIN)
    return last + timedelta(minutes=interval)


def is_checkin_overdue(user: dict, now: datetime) -> bool:
    """
    True when check-ins are enabled and the interval has elapsed.

    A user who never checked in counts as last checked in at the epoch,
    so they are overdue as soon as check-ins are enabled.
    """
    if user.get("checkin_enabled") is not True:
        return False

    last = to_datetime(user.get("last_checkin_at")) or EPOCH
    due_at = last + timedelta(minutes=get_checkin_interval(user))
    return now >= due_at


def compute_safety_status(
    last_checkin_at: Any,
    interval_minutes: Any,
    now: Optional[datetime] = None
) -> SafetyStatus:
    """Dashboard status: unknown before the first check-in, then safe or missed."""
    next_due = get_next_due_at(last_checkin_at, interval_minutes)
    if next_due is None:
        return SafetyStatus.UNKNOWN

    now = now or datetime.now(timezone.utc)
    return SafetyStatus.MISSED if now > next_due else SafetyStatus.SAFE
