from __future__ import annotations
from datetime import datetime, timedelta, timezone as dt_tz
from arena.config import Settings, settings as default_settings


def utcnow() -> datetime:
    return datetime.now(dt_tz.utc)


def respond_deadline(created_at: datetime, open_type: bool, settings: Settings = default_settings) -> datetime:
    """
    Deadline for the first response to a new challenge.

    Direct challenges must be accepted within `acceptance_hours`; open
    challenges must attract a first joiner within `open_join_hours`.

    Examples:
        >>> from datetime import datetime, timezone
        >>> t0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        >>> respond_deadline(t0, open_type=False).isoformat()
        '2025-03-02T12:00:00+00:00'
    """
    hours = settings.open_join_hours if open_type else settings.acceptance_hours
    return created_at + timedelta(hours=hours)


def activation_window(
    started_at: datetime,
    duration_hours: int,
    settings: Settings = default_settings,
) -> tuple[datetime, datetime]:
    """
    Return (ends_at, betting_closes_at) for a challenge that becomes active at `started_at`.

    Betting closes `betting_window_hours` after the start for both challenge types.

    Examples:
        >>> from datetime import datetime, timezone
        >>> t0 = datetime(2025, 3, 1, 0, 0, tzinfo=timezone.utc)
        >>> ends, closes = activation_window(t0, 168)
        >>> (ends - t0).days, int((closes - t0).total_seconds() // 3600)
        (7, 72)
    """
    ends_at = started_at + timedelta(hours=duration_hours)
    betting_closes_at = started_at + timedelta(hours=settings.betting_window_hours)
    return ends_at, betting_closes_at


def is_past(deadline: datetime | None, now: datetime) -> bool:
    """Deadlines are exclusive: an action at exactly `deadline` is too late."""
    return deadline is not None and now >= deadline


def time_remaining(deadline: datetime | None, now: datetime) -> str:
    """
    Human-readable countdown carried in notification payloads.

    Examples:
        >>> from datetime import datetime, timedelta, timezone
        >>> now = datetime(2025, 3, 1, tzinfo=timezone.utc)
        >>> time_remaining(now + timedelta(days=2, hours=5), now)
        '2d 5h'
        >>> time_remaining(now + timedelta(minutes=42), now)
        '42m'
        >>> time_remaining(now - timedelta(seconds=1), now)
        'Ended'
    """
    if deadline is None:
        return "Not started"
    left = deadline - now
    if left.total_seconds() <= 0:
        return "Ended"
    days = left.days
    hours, rem = divmod(left.seconds, 3600)
    minutes = rem // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
