"""
Tool: Delivery Policy
Purpose: Decide whether a due reminder may be dispatched now, and when to retry

Usage:
    from hrcall.notifications.queue.policy import (
        can_send_now,
        is_in_quiet_hours,
        quiet_hours_end,
        next_retry_at,
    )

Every function is a pure function of (settings, now). Quiet hours use the
local wall-clock time in ``now`` with no timezone or DST normalisation.
"""

from datetime import datetime, time, timedelta

from hrcall.notifications.config import NotificationSettings
from hrcall.notifications.models import NotificationPriority, NotificationRecord


def _window(settings: NotificationSettings) -> tuple[time, time] | None:
    if not settings.quiet_hours_start or not settings.quiet_hours_end:
        return None
    start = time.fromisoformat(settings.quiet_hours_start)
    end = time.fromisoformat(settings.quiet_hours_end)
    if start == end:
        return None
    return start, end


def is_in_quiet_hours(settings: NotificationSettings, now: datetime) -> bool:
    """
    Check whether ``now`` falls inside the quiet-hours window.

    The window is half-open, [start, end): with the 22:00-08:00 default,
    22:00 is quiet and 08:00 is not.
    """
    window = _window(settings)
    if window is None:
        return False

    start, end = window
    current = now.time()

    if start < end:
        # Same day range
        return start <= current < end
    # Overnight range
    return current >= start or current < end


def quiet_hours_end(settings: NotificationSettings, now: datetime) -> datetime | None:
    """When the current quiet window closes, or None if not in one."""
    if not is_in_quiet_hours(settings, now):
        return None

    start, end = _window(settings)
    today = now.date()
    if start < end or now.time() < end:
        return datetime.combine(today, end)
    # Before midnight in an overnight window - ends tomorrow
    return datetime.combine(today + timedelta(days=1), end)


def can_send_now(
    record: NotificationRecord,
    settings: NotificationSettings,
    now: datetime,
) -> dict:
    """
    Check if a due record may be dispatched right now.

    Checks (in order):
    1. Notifications are enabled
    2. Not in quiet hours (unless urgent)

    Returns:
        {
            "can_send": bool,
            "reason": str | None,
            "retry_at": datetime | None,
        }
    """
    if not settings.enabled:
        return {"can_send": False, "reason": "notifications_disabled", "retry_at": None}

    if record.priority != NotificationPriority.URGENT and is_in_quiet_hours(settings, now):
        return {
            "can_send": False,
            "reason": "quiet_hours",
            "retry_at": quiet_hours_end(settings, now),
        }

    return {"can_send": True, "reason": None, "retry_at": None}


def backoff(settings: NotificationSettings, retry_count: int) -> timedelta:
    """Delay before attempt number ``retry_count`` (1-based)."""
    exponent = max(retry_count - 1, 0)
    delay_ms = settings.retry_backoff_ms * (settings.backoff_multiplier ** exponent)
    return timedelta(milliseconds=delay_ms)


def next_retry_at(settings: NotificationSettings, retry_count: int, now: datetime) -> datetime:
    return now + backoff(settings, retry_count)


def retries_exhausted(settings: NotificationSettings, record: NotificationRecord) -> bool:
    """True once a further failure must be terminal."""
    return record.retry_count >= settings.max_retries


def get_send_schedule(
    settings: NotificationSettings,
    now: datetime,
    hours_ahead: int = 24,
) -> list[dict]:
    """
    Hour-by-hour view of when non-urgent reminders can go out.

    Used by the ``stats`` CLI to show upcoming quiet windows.
    """
    schedule = []
    for hour in range(hours_ahead):
        check_time = now + timedelta(hours=hour)
        quiet = is_in_quiet_hours(settings, check_time)
        schedule.append({
            "time": check_time.isoformat(),
            "can_send": not quiet,
            "quiet_hours": quiet,
        })
    return schedule
