"""Shared test fixtures for the reminder engine tests.

This module provides common fixtures used across all test modules:
- Queue store isolation with temporary SQLite files
- A recording notification surface standing in for the OS
- Standard call events and records

Usage:
    def test_something(store, notifier):
        # store writes to a throwaway database under tmp_path
        ...
"""

from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from hrcall.notifications.config import NotificationSettings
from hrcall.notifications.models import (
    CallEvent,
    Channel,
    NotificationPriority,
    NotificationRecord,
    NotificationType,
    derive_id,
)
from hrcall.notifications.push.delivery import NativeNotifier
from hrcall.notifications.push.surface import GRANTED, NotificationSurface
from hrcall.notifications.queue.store import InMemoryQueueStore, QueueStore


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent

# Monday; the canonical 14:30 call used throughout the scenarios
CALL_TIME = datetime(2026, 10, 19, 14, 30)


# ─────────────────────────────────────────────────────────────────────────────
# Surface Fixtures
# ─────────────────────────────────────────────────────────────────────────────


class FakeSurface(NotificationSurface):
    """Records what would have been shown; fails on demand."""

    name = "fake"

    def __init__(self, state: str = GRANTED, failures: list[Exception] | None = None):
        self.state = state
        self.failures = list(failures or [])
        self.shown: list[dict[str, Any]] = []
        self.closed: list[str] = []

    def permission(self) -> str:
        return self.state

    async def show(self, title: str, options: dict[str, Any]) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.shown.append({"title": title, **options})

    async def close(self, tag: str) -> None:
        self.closed.append(tag)


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def notifier(surface: FakeSurface) -> NativeNotifier:
    return NativeNotifier(surface)


# ─────────────────────────────────────────────────────────────────────────────
# Store Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "notifications.db"


@pytest.fixture
def store(temp_db_path: Path) -> QueueStore:
    return QueueStore(temp_db_path)


@pytest.fixture
def memory_store() -> InMemoryQueueStore:
    return InMemoryQueueStore()


@pytest.fixture(params=["sqlite", "memory"])
def any_store(request):
    """Both store implementations, for behaviour they must share."""
    if request.param == "sqlite":
        return request.getfixturevalue("store")
    return request.getfixturevalue("memory_store")


# ─────────────────────────────────────────────────────────────────────────────
# Settings / Domain Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> NotificationSettings:
    """Defaults: 15 min lead, 22:00-08:00 quiet hours, 3 retries 5 min apart."""
    return NotificationSettings()


@pytest.fixture
def no_quiet_settings() -> NotificationSettings:
    return NotificationSettings(quiet_hours_start=None, quiet_hours_end=None)


@pytest.fixture
def call_event() -> CallEvent:
    return CallEvent(
        call_id="call-42",
        employee_id="emp-7",
        new_scheduled_for=CALL_TIME,
        status="scheduled",
        employee_name="Giulia Rossi",
    )


@pytest.fixture
def make_record() -> Callable[..., NotificationRecord]:
    """Factory for records; keyword overrides win over the defaults."""

    def _make(source: str = "call-1", **overrides: Any) -> NotificationRecord:
        notification_type = overrides.pop("type", NotificationType.CALL_REMINDER)
        fields = {
            "id": derive_id(source, notification_type),
            "type": notification_type,
            "title": "Upcoming HR call",
            "message": "Call with emp-1 scheduled for 14:30",
            "scheduled_for": datetime(2026, 10, 19, 14, 15),
            "created_at": datetime(2026, 10, 19, 9, 0),
            "priority": NotificationPriority.MEDIUM,
            "channels": frozenset({Channel.NATIVE, Channel.IN_APP}),
            "related_call_id": source,
            "related_employee_id": "emp-1",
        }
        fields.update(overrides)
        return NotificationRecord(**fields)

    return _make
