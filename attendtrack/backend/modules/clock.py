# attendtrack/backend/modules/clock.py

from datetime import datetime, timezone, timedelta

from ..config.config import settings

# All session math happens in this zone. The offset is configuration, never an inline literal.
REFERENCE_TIMEZONE = timezone(timedelta(hours=settings.REFERENCE_UTC_OFFSET_HOURS), name="Reference")


def to_reference(value: datetime) -> datetime:
    """
    Normalises a datetime to the reference timezone.

    Aware values are converted, so the absolute instant is preserved. Naive
    values are taken to already be reference-local wall time and only get the
    tzinfo attached; the offset is applied exactly once.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=REFERENCE_TIMEZONE)
    return value.astimezone(REFERENCE_TIMEZONE)


class Clock:
    """Supplies the current instant. Subclass for anything other than wall time."""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(REFERENCE_TIMEZONE)


def remaining_time(expires_at: datetime, now: datetime) -> str:
    """
    Formats the time left before `expires_at` for the lecturer countdown.

    Returns "expired" once less than a whole minute remains, "{h}h {m}m" while at
    least an hour is left, and "{m} minutes" otherwise.
    """
    diff_in_minutes = int((expires_at - now).total_seconds() // 60)
    if diff_in_minutes <= 0:
        return "expired"
    hours, minutes = divmod(diff_in_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes} minutes"
