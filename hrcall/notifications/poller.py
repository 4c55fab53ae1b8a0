"""
Tool: Foreground Poller
Purpose: Secondary delivery path that runs only while a UI window is open

Usage:
    from hrcall.notifications.poller import ForegroundPoller, LocalState

    poller = ForegroundPoller(
        calls_provider=lambda: loaded_calls,
        notifier=notifier,
        store=store,
        settings=settings,
        state=LocalState(),
    )
    asyncio.create_task(poller.run(stop))

Background wake-ups are best-effort, so the open UI also watches the calls
it already has in memory and raises native notifications for overdue and
imminent ones.

De-duplication:
    The queue record for derive_id(call_id, overdue|call_reminder) is the
    authoritative marker shared with the worker. The poller skips calls whose
    record is already sent or cancelled, tags its notification with that
    record id (the surface coalesces equal tags), and claims the record as
    sent after every successful dispatch, writing it first when the call has
    none yet. An open UI therefore delivers a call's reminder early instead
    of twice. The local last-notified map only throttles repeats the store
    refuses to record (e.g. a record the worker already gave up on).

Quiet hours apply here exactly as in the worker: a non-urgent record is
neither shown nor claimed inside the window.
"""

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from hrcall.logging_config import bind_execution_context, get_logger
from hrcall.notifications import LOCAL_STATE_PATH
from hrcall.notifications.config import NotificationSettings, UrgencyThresholdsConfig
from hrcall.notifications.errors import NotificationError
from hrcall.notifications.models import (
    DISPATCHABLE_STATUSES,
    Call,
    Channel,
    NotificationPriority,
    NotificationRecord,
    NotificationStatus,
    NotificationType,
    derive_id,
)
from hrcall.notifications.push.delivery import NativeNotifier
from hrcall.notifications.queue.policy import can_send_now
from hrcall.notifications.queue.store import BaseQueueStore
from hrcall.notifications.scheduler import Scheduler

logger = get_logger(__name__)


class UrgencyLevel(str, Enum):
    OVERDUE = "overdue"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_URGENCY_ORDER = {
    UrgencyLevel.OVERDUE: 0,
    UrgencyLevel.HIGH: 1,
    UrgencyLevel.MEDIUM: 2,
    UrgencyLevel.LOW: 3,
}

NOTIFYING_LEVELS = frozenset({UrgencyLevel.OVERDUE, UrgencyLevel.HIGH})


@dataclass
class CallReminder:
    call: Call
    urgency: UrgencyLevel
    time_until: str


def classify(
    call: Call,
    now: datetime,
    thresholds: UrgencyThresholdsConfig | None = None,
) -> UrgencyLevel | None:
    """Bucket a call by how soon it is; None when it is too far out."""
    thresholds = thresholds or UrgencyThresholdsConfig()
    delta = call.scheduled_for - now

    if delta < timedelta(0):
        return UrgencyLevel.OVERDUE
    if delta <= timedelta(hours=thresholds.high_hours):
        return UrgencyLevel.HIGH
    if delta <= timedelta(hours=thresholds.medium_hours):
        return UrgencyLevel.MEDIUM
    if delta <= timedelta(days=thresholds.low_days):
        return UrgencyLevel.LOW
    return None


def describe_time_until(call_time: datetime, now: datetime) -> str:
    """Human wording for the gap between now and the call."""
    delta = call_time - now
    seconds = delta.total_seconds()

    if seconds < 0:
        hours_ago = -seconds / 3600
        if hours_ago < 1:
            return f"{int(-seconds // 60)} minutes ago"
        if hours_ago < 24:
            return f"{int(hours_ago)} hours ago"
        return f"{int(hours_ago // 24)} days ago"

    if seconds <= 3600:
        return f"in {int(seconds // 60)} minutes"
    if seconds <= 4 * 3600:
        return f"in {int(seconds // 3600)} hours"
    if call_time.date() == now.date():
        return f"today at {call_time:%H:%M}"
    if call_time.date() == now.date() + timedelta(days=1):
        return f"tomorrow at {call_time:%H:%M}"
    return f"in {(call_time.date() - now.date()).days} days"


class LocalState:
    """
    UI-local key-value state, kept in a JSON file.

    Holds the per-call last-notified timestamps and the dismissed markers.
    Dismissal hides a call from the reminder list; it never touches the
    queue record's status.
    """

    def __init__(self, path: str | Path | None = LOCAL_STATE_PATH):
        self.path = Path(path) if path else None
        self.last_notified: dict[str, datetime] = {}
        self.dismissed: set[str] = set()
        self.load()

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("local_state_unreadable", path=str(self.path), error=str(e))
            return
        self.last_notified = {
            call_id: datetime.fromisoformat(ts)
            for call_id, ts in (raw.get("last_notified") or {}).items()
        }
        self.dismissed = set(raw.get("dismissed") or [])

    def save(self) -> None:
        if self.path is None:
            return
        payload = {
            "last_notified": {k: v.isoformat() for k, v in self.last_notified.items()},
            "dismissed": sorted(self.dismissed),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp, self.path)

    def get_last_notified(self, call_id: str) -> datetime | None:
        return self.last_notified.get(call_id)

    def set_last_notified(self, call_id: str, ts: datetime) -> None:
        self.last_notified[call_id] = ts
        self.save()

    def is_dismissed(self, call_id: str) -> bool:
        return call_id in self.dismissed

    def dismiss(self, call_id: str) -> None:
        self.dismissed.add(call_id)
        self.save()

    def clear_dismissed(self) -> None:
        self.dismissed.clear()
        self.save()


class ForegroundPoller:
    """Polls the live call list and notifies about overdue/imminent calls."""

    def __init__(
        self,
        calls_provider: Callable[[], Iterable[Call]],
        notifier: NativeNotifier,
        store: BaseQueueStore,
        settings: NotificationSettings,
        state: LocalState | None = None,
        scheduler: Scheduler | None = None,
    ):
        self.calls_provider = calls_provider
        self.notifier = notifier
        self.store = store
        self.settings = settings
        self.state = state if state is not None else LocalState()
        self.scheduler = scheduler or Scheduler(store, settings)

    def collect_reminders(
        self,
        now: datetime,
        calls: Iterable[Call] | None = None,
    ) -> list[CallReminder]:
        """Scheduled, non-dismissed calls within reach, most urgent first."""
        if calls is None:
            calls = self.calls_provider()

        reminders = []
        for call in calls:
            if call.status != "scheduled" or self.state.is_dismissed(call.id):
                continue
            urgency = classify(call, now, self.settings.urgency_thresholds)
            if urgency is None:
                continue
            reminders.append(CallReminder(call, urgency, describe_time_until(call.scheduled_for, now)))

        reminders.sort(key=lambda r: (_URGENCY_ORDER[r.urgency], r.call.scheduled_for))
        return reminders

    async def poll_once(self, now: datetime | None = None) -> dict:
        """
        One poll cycle.

        Also keeps the daily digest queued from the calls the UI has loaded.

        Returns:
            {
                "reminders": list[CallReminder],   # for the reminder panel
                "notified": list[str],             # call ids notified this cycle
            }
        """
        now = now or datetime.now()
        calls = list(self.calls_provider())
        reminders = self.collect_reminders(now, calls)
        notified: list[str] = []

        if not self.settings.enabled:
            return {"reminders": reminders, "notified": notified}

        self.scheduler.schedule_daily_digest(now, calls)

        for reminder in reminders:
            if len(notified) >= self.settings.max_per_poll:
                break
            if reminder.urgency not in NOTIFYING_LEVELS:
                continue
            if await self._notify(reminder, now):
                notified.append(reminder.call.id)

        return {"reminders": reminders, "notified": notified}

    def _build_record(
        self,
        reminder: CallReminder,
        notification_type: NotificationType,
        now: datetime,
        existing: NotificationRecord | None = None,
    ) -> NotificationRecord:
        call = reminder.call
        if reminder.urgency == UrgencyLevel.OVERDUE:
            title = "HR call overdue"
        else:
            title = "HR call coming up"

        # Same slot the scheduler would compute, so replaying the call event
        # is recognised as already delivered
        if existing is not None:
            scheduled_for = existing.scheduled_for
        else:
            lead = timedelta(minutes=self.settings.lead_time_for(notification_type.value))
            scheduled_for = call.scheduled_for - lead

        return NotificationRecord(
            id=derive_id(call.id, notification_type),
            type=notification_type,
            priority=existing.priority if existing is not None else NotificationPriority.HIGH,
            title=title,
            message=f"{call.employee_name or call.employee_id} - {reminder.time_until}",
            scheduled_for=scheduled_for,
            created_at=now,
            channels=frozenset({Channel.NATIVE}),
            related_call_id=call.id,
            related_employee_id=call.employee_id,
        )

    async def _notify(self, reminder: CallReminder, now: datetime) -> bool:
        call = reminder.call
        if reminder.urgency == UrgencyLevel.OVERDUE:
            notification_type = NotificationType.OVERDUE
        else:
            notification_type = NotificationType.CALL_REMINDER

        existing = self.store.get(derive_id(call.id, notification_type))
        if existing is not None and existing.status in (
            NotificationStatus.SENT,
            NotificationStatus.CANCELLED,
        ):
            return False

        last = self.state.get_last_notified(call.id)
        renotify = timedelta(minutes=self.settings.renotify_interval_minutes)
        if last is not None and now - last < renotify:
            return False

        record = self._build_record(reminder, notification_type, now, existing)
        check = can_send_now(record, self.settings, now)
        if not check["can_send"]:
            logger.debug(
                "foreground_notification_deferred",
                call_id=call.id,
                reason=check["reason"],
            )
            return False

        try:
            await self.notifier.dispatch(record)
        except NotificationError as e:
            logger.warning("foreground_dispatch_failed", call_id=call.id, error=str(e))
            return False

        self.state.set_last_notified(call.id, now)
        self._claim(record, existing, now)

        logger.info("foreground_notification_sent", call_id=call.id, urgency=reminder.urgency.value)
        return True

    def _claim(
        self,
        record: NotificationRecord,
        existing: NotificationRecord | None,
        now: datetime,
    ) -> None:
        """Record the delivery in the shared store so the worker stays quiet."""
        if existing is None:
            self.store.upsert(record)
        elif existing.status not in DISPATCHABLE_STATUSES:
            return

        if not self.store.mark_sent(record.id, now=now):
            # Cancelled or delivered by the worker meanwhile; the tag coalesces
            logger.debug("foreground_claim_lost", notification_id=record.id)

    def dismiss(self, call_id: str) -> None:
        self.state.dismiss(call_id)

    def clear_dismissed(self) -> None:
        self.state.clear_dismissed()

    async def run(self, stop: asyncio.Event, interval: float | None = None) -> None:
        """Poll until ``stop`` is set (i.e. the last UI window closes)."""
        interval = interval or self.settings.poll_interval_seconds
        bind_execution_context("foreground")

        while not stop.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("foreground_poll_failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
