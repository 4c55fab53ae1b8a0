"""Tests for hrcall/notifications/scheduler.py"""

from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from hrcall.notifications.config import NotificationSettings
from hrcall.notifications.models import (
    Call,
    Channel,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    derive_id,
)
from hrcall.notifications.scheduler import Scheduler

MORNING = datetime(2026, 10, 19, 8, 0)

REMINDER_ID = derive_id("call-42", NotificationType.CALL_REMINDER)
OVERDUE_ID = derive_id("call-42", NotificationType.OVERDUE)


@pytest.fixture
def scheduler(store, settings):
    return Scheduler(store, settings)


class TestHandleCallEvent:
    def test_schedules_reminder_and_overdue(self, scheduler, store, call_event):
        result = scheduler.handle_call_event(call_event, now=MORNING)

        assert set(result["scheduled"]) == {REMINDER_ID, OVERDUE_ID}
        assert result["cancelled"] == []

        reminder = store.get(REMINDER_ID)
        assert reminder.scheduled_for == datetime(2026, 10, 19, 14, 15)
        assert reminder.type == NotificationType.CALL_REMINDER
        assert reminder.priority == NotificationPriority.MEDIUM
        assert reminder.channels == frozenset({Channel.NATIVE, Channel.IN_APP})
        assert reminder.related_call_id == "call-42"
        assert reminder.related_employee_id == "emp-7"
        assert reminder.message == "Call with Giulia Rossi scheduled for 14:30"
        assert reminder.metadata["call_time"] == "2026-10-19T14:30:00"

        overdue = store.get(OVERDUE_ID)
        assert overdue.scheduled_for == datetime(2026, 10, 19, 15, 0)
        assert overdue.priority == NotificationPriority.HIGH

    def test_reschedule_replaces_under_same_id(self, scheduler, store, call_event):
        scheduler.handle_call_event(call_event, now=MORNING)
        moved = replace(call_event, new_scheduled_for=datetime(2026, 10, 19, 16, 0),
                        status="rescheduled")

        scheduler.handle_call_event(moved, now=MORNING)

        records = store.list_records()
        assert len(records) == 2
        assert store.get(REMINDER_ID).scheduled_for == datetime(2026, 10, 19, 15, 45)
        assert store.get(REMINDER_ID).status == NotificationStatus.PENDING

    def test_replayed_event_after_delivery_is_ignored(self, scheduler, store, call_event):
        scheduler.handle_call_event(call_event, now=MORNING)
        store.mark_sent(REMINDER_ID, now=datetime(2026, 10, 19, 14, 16))

        result = scheduler.handle_call_event(call_event, now=datetime(2026, 10, 19, 14, 20))

        assert REMINDER_ID not in result["scheduled"]
        assert store.get(REMINDER_ID).status == NotificationStatus.SENT

    @pytest.mark.parametrize("status", ["cancelled", "completed", "suspended"])
    def test_non_scheduling_status_cancels(self, scheduler, store, call_event, status):
        scheduler.handle_call_event(call_event, now=MORNING)

        result = scheduler.handle_call_event(replace(call_event, status=status), now=MORNING)

        assert set(result["cancelled"]) == {REMINDER_ID, OVERDUE_ID}
        assert store.get(REMINDER_ID).status == NotificationStatus.CANCELLED
        assert store.get(OVERDUE_ID).status == NotificationStatus.CANCELLED

    def test_missing_time_cancels(self, scheduler, store, call_event):
        scheduler.handle_call_event(call_event, now=MORNING)

        result = scheduler.handle_call_event(replace(call_event, new_scheduled_for=None), now=MORNING)

        assert set(result["cancelled"]) == {REMINDER_ID, OVERDUE_ID}

    def test_cancel_of_unknown_call_is_noop(self, scheduler, call_event):
        result = scheduler.handle_call_event(replace(call_event, status="cancelled"), now=MORNING)
        assert result == {"scheduled": [], "cancelled": []}

    def test_call_already_started_gets_only_overdue(self, scheduler, store, call_event):
        scheduler.handle_call_event(call_event, now=MORNING)

        result = scheduler.handle_call_event(call_event, now=datetime(2026, 10, 19, 14, 40))

        assert result["cancelled"] == [REMINDER_ID]
        assert store.get(REMINDER_ID).status == NotificationStatus.CANCELLED
        assert store.get(OVERDUE_ID).status == NotificationStatus.PENDING

    def test_disabled_schedules_nothing_but_still_cancels(self, store, call_event):
        Scheduler(store, NotificationSettings()).handle_call_event(call_event, now=MORNING)
        disabled = Scheduler(store, NotificationSettings(enabled=False))

        assert disabled.handle_call_event(call_event, now=MORNING) == {
            "scheduled": [],
            "cancelled": [],
        }
        result = disabled.handle_call_event(replace(call_event, status="cancelled"), now=MORNING)
        assert len(result["cancelled"]) == 2

    def test_event_priority_overrides_default(self, scheduler, store, call_event):
        scheduler.handle_call_event(replace(call_event, priority=NotificationPriority.URGENT),
                                    now=MORNING)

        assert store.get(REMINDER_ID).priority == NotificationPriority.URGENT
        assert store.get(OVERDUE_ID).priority == NotificationPriority.URGENT

    def test_lead_time_from_settings(self, store, call_event):
        settings = NotificationSettings(lead_time_minutes={"call_reminder": 60, "overdue": -10})
        Scheduler(store, settings).handle_call_event(call_event, now=MORNING)

        assert store.get(REMINDER_ID).scheduled_for == datetime(2026, 10, 19, 13, 30)
        assert store.get(OVERDUE_ID).scheduled_for == datetime(2026, 10, 19, 14, 40)

    def test_falls_back_to_employee_id(self, scheduler, call_event):
        record = scheduler.build_record(
            replace(call_event, employee_name=None),
            NotificationType.OVERDUE,
            MORNING,
        )
        assert record.message == "Call with emp-7 was scheduled for 14:30 and is not completed"


class TestCancelCall:
    def test_returns_cancelled_ids(self, scheduler, call_event):
        scheduler.handle_call_event(call_event, now=MORNING)
        assert set(scheduler.cancel_call("call-42")) == {REMINDER_ID, OVERDUE_ID}
        assert scheduler.cancel_call("call-42") == []


class TestDailyDigest:
    @pytest.fixture
    def digest_scheduler(self, store):
        return Scheduler(store, NotificationSettings(daily_digest_enabled=True))

    @pytest.fixture
    def calls(self):
        return [
            Call("call-1", "emp-1", datetime(2026, 10, 19, 10, 0)),
            Call("call-2", "emp-2", datetime(2026, 10, 19, 15, 0)),
            Call("call-3", "emp-3", datetime(2026, 10, 19, 16, 0), status="completed"),
            Call("call-4", "emp-4", datetime(2026, 10, 20, 10, 0)),
        ]

    def test_next_digest_time(self, digest_scheduler):
        assert digest_scheduler.next_digest_time(MORNING) == datetime(2026, 10, 19, 9, 0)
        assert digest_scheduler.next_digest_time(datetime(2026, 10, 19, 9, 0)) == datetime(
            2026, 10, 20, 9, 0
        )

    def test_counts_scheduled_calls_of_the_day(self, digest_scheduler, store, calls):
        record = digest_scheduler.schedule_daily_digest(MORNING, calls)

        assert record.type == NotificationType.DIGEST
        assert record.priority == NotificationPriority.LOW
        assert record.scheduled_for == datetime(2026, 10, 19, 9, 0)
        assert record.message == "You have 2 calls scheduled today"
        assert record.metadata == {"date": "2026-10-19", "call_count": 2}
        assert store.get(record.id) == record

    def test_after_digest_time_targets_tomorrow(self, digest_scheduler, calls):
        record = digest_scheduler.schedule_daily_digest(datetime(2026, 10, 19, 12, 0), calls)
        assert record.message == "You have 1 call scheduled today"

    def test_one_record_per_day(self, digest_scheduler, store, calls):
        first = digest_scheduler.schedule_daily_digest(MORNING, calls)
        second = digest_scheduler.schedule_daily_digest(MORNING + timedelta(minutes=30), calls)

        assert first.id == second.id
        assert len(store.list_records()) == 1

    def test_no_calls_no_digest(self, digest_scheduler, store):
        assert digest_scheduler.schedule_daily_digest(MORNING, []) is None
        assert store.list_records() == []

    def test_disabled_by_default(self, scheduler, calls):
        assert scheduler.schedule_daily_digest(MORNING, calls) is None

    def test_rewritten_only_when_the_count_changes(self, digest_scheduler, store, calls):
        first = digest_scheduler.schedule_daily_digest(MORNING, calls)

        with patch.object(store, "upsert", wraps=store.upsert) as upsert:
            digest_scheduler.schedule_daily_digest(MORNING + timedelta(minutes=1), calls)
            upsert.assert_not_called()

            calls.append(Call("call-5", "emp-5", datetime(2026, 10, 19, 17, 0)))
            updated = digest_scheduler.schedule_daily_digest(MORNING + timedelta(minutes=2), calls)

        assert upsert.call_count == 1
        assert updated.id == first.id
        assert store.get(first.id).message == "You have 3 calls scheduled today"
