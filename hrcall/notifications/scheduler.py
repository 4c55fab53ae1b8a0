"""
Tool: Reminder Scheduler
Purpose: Turn call-changed domain events into queue records

Usage:
    from hrcall.notifications.scheduler import Scheduler

    scheduler = Scheduler(store, settings)
    scheduler.handle_call_event(CallEvent(
        call_id="call-42",
        employee_id="emp-7",
        new_scheduled_for=datetime(2026, 10, 19, 14, 30),
        status="scheduled",
        employee_name="Giulia Rossi",
    ))

Every call produces at most one record per reminder type, keyed by
derive_id(call_id, type). Rescheduling upserts over the same id, so the
old reminder is replaced rather than joined by a second one.
"""

from datetime import datetime, time, timedelta
from typing import Iterable

from hrcall.logging_config import get_logger
from hrcall.notifications.config import NotificationSettings
from hrcall.notifications.models import (
    Call,
    CallEvent,
    Channel,
    NotificationPriority,
    NotificationRecord,
    NotificationType,
    derive_id,
)
from hrcall.notifications.queue.store import BaseQueueStore

logger = get_logger(__name__)

SCHEDULING_STATUSES = {"scheduled", "rescheduled"}

CALL_REMINDER_TYPES = (NotificationType.CALL_REMINDER, NotificationType.OVERDUE)

_DEFAULT_PRIORITY = {
    NotificationType.CALL_REMINDER: NotificationPriority.MEDIUM,
    NotificationType.OVERDUE: NotificationPriority.HIGH,
}


class Scheduler:
    """Maps domain events onto idempotent queue mutations."""

    def __init__(self, store: BaseQueueStore, settings: NotificationSettings):
        self.store = store
        self.settings = settings

    def handle_call_event(self, event: CallEvent, now: datetime | None = None) -> dict:
        """
        Apply one call-changed event to the queue.

        Returns:
            {
                "scheduled": list[str],   # record ids written
                "cancelled": list[str],   # record ids moved to cancelled
            }
        """
        now = now or datetime.now()

        if event.status in SCHEDULING_STATUSES and event.new_scheduled_for is not None:
            if not self.settings.enabled:
                logger.debug("call_event_ignored_disabled", call_id=event.call_id)
                return {"scheduled": [], "cancelled": []}
            return self.schedule_call(event, now)

        return {"scheduled": [], "cancelled": self.cancel_call(event.call_id)}

    def schedule_call(self, event: CallEvent, now: datetime) -> dict:
        scheduled: list[str] = []
        cancelled: list[str] = []

        for notification_type in CALL_REMINDER_TYPES:
            record = self.build_record(event, notification_type, now)
            record_id = derive_id(event.call_id, notification_type)

            if record is None:
                # No longer meaningful; drop any reminder left from an older slot
                if self.store.mark_cancelled(record_id):
                    cancelled.append(record_id)
                continue

            if self.store.upsert(record):
                scheduled.append(record.id)
                logger.info(
                    "reminder_scheduled",
                    notification_id=record.id,
                    call_id=event.call_id,
                    type=notification_type.value,
                    scheduled_for=record.scheduled_for.isoformat(),
                )
            else:
                logger.debug("reminder_already_delivered", notification_id=record.id)

        return {"scheduled": scheduled, "cancelled": cancelled}

    def cancel_call(self, call_id: str) -> list[str]:
        """Cancel both reminders of a call. Absent or delivered records are left alone."""
        cancelled = []
        for notification_type in CALL_REMINDER_TYPES:
            record_id = derive_id(call_id, notification_type)
            if self.store.mark_cancelled(record_id):
                cancelled.append(record_id)

        if cancelled:
            logger.info("reminders_cancelled", call_id=call_id, count=len(cancelled))
        return cancelled

    def build_record(
        self,
        event: CallEvent,
        notification_type: NotificationType,
        now: datetime,
    ) -> NotificationRecord | None:
        call_time = event.new_scheduled_for
        lead = timedelta(minutes=self.settings.lead_time_for(notification_type.value))
        scheduled_for = call_time - lead

        # A heads-up for a call that has already started helps nobody
        if notification_type == NotificationType.CALL_REMINDER and call_time <= now:
            return None

        who = event.employee_name or event.employee_id
        at = call_time.strftime("%H:%M")
        if notification_type == NotificationType.CALL_REMINDER:
            title = "Upcoming HR call"
            message = f"Call with {who} scheduled for {at}"
        else:
            title = "HR call overdue"
            message = f"Call with {who} was scheduled for {at} and is not completed"

        return NotificationRecord(
            id=derive_id(event.call_id, notification_type),
            type=notification_type,
            priority=event.priority or _DEFAULT_PRIORITY[notification_type],
            title=title,
            message=message,
            scheduled_for=scheduled_for,
            created_at=now,
            channels=frozenset({Channel.NATIVE, Channel.IN_APP}),
            related_call_id=event.call_id,
            related_employee_id=event.employee_id,
            metadata={
                "call_time": call_time.isoformat(),
                "employee_name": event.employee_name,
            },
        )

    def next_digest_time(self, now: datetime) -> datetime:
        """Next occurrence of the configured digest time, today or tomorrow."""
        target = datetime.combine(now.date(), time.fromisoformat(self.settings.daily_digest_time))
        if target <= now:
            target += timedelta(days=1)
        return target

    def schedule_daily_digest(
        self,
        now: datetime,
        calls: Iterable[Call],
    ) -> NotificationRecord | None:
        """
        Queue the daily summary of scheduled calls.

        One record per calendar day; nothing is queued when the digest is
        disabled or the day has no scheduled calls.
        """
        if not (self.settings.enabled and self.settings.daily_digest_enabled):
            return None

        send_at = self.next_digest_time(now)
        day = send_at.date()
        count = sum(
            1 for call in calls
            if call.status == "scheduled" and call.scheduled_for.date() == day
        )
        if count == 0:
            return None

        record_id = derive_id(f"digest:{day.isoformat()}", NotificationType.DIGEST)
        message = f"You have {count} call{'s' if count != 1 else ''} scheduled today"

        # Polled every minute from the UI; only rewrite when the count moves
        existing = self.store.get(record_id)
        if existing is not None and existing.message == message:
            return existing

        record = NotificationRecord(
            id=record_id,
            type=NotificationType.DIGEST,
            priority=NotificationPriority.LOW,
            title="Today's HR calls",
            message=message,
            scheduled_for=send_at,
            created_at=now,
            channels=frozenset({Channel.NATIVE, Channel.IN_APP}),
            metadata={"date": day.isoformat(), "call_count": count},
        )
        if self.store.upsert(record):
            logger.info("digest_scheduled", notification_id=record.id, call_count=count)
        return record
