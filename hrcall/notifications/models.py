"""
Tool: Notification Models
Purpose: Data structures for queued reminders and the domain objects feeding them

Usage:
    from hrcall.notifications.models import (
        NotificationRecord,
        NotificationType,
        NotificationPriority,
        NotificationStatus,
        Channel,
        Call,
        CallEvent,
        derive_id,
    )

All datetimes are naive local wall-clock values, matching how quiet hours
and call times are expressed by the HR tracker.
"""

import hashlib
import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from hrcall.notifications.errors import InvalidTransition


class NotificationType(str, Enum):
    """What triggered the reminder."""

    CALL_REMINDER = "call_reminder"
    OVERDUE = "overdue"
    DIGEST = "digest"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    """
    Priority label supplied by the priority-scoring engine.

    Only ``urgent`` bypasses quiet hours and requires interaction.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    NotificationPriority.LOW: 1,
    NotificationPriority.MEDIUM: 2,
    NotificationPriority.HIGH: 3,
    NotificationPriority.URGENT: 4,
}


class NotificationStatus(str, Enum):
    """Record lifecycle status."""

    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED_RETRY_PENDING = "failed-retry-pending"
    FAILED_EXHAUSTED = "failed-exhausted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    NotificationStatus.SENT,
    NotificationStatus.CANCELLED,
    NotificationStatus.FAILED_EXHAUSTED,
})

# Statuses a dispatch attempt may start from
DISPATCHABLE_STATUSES = frozenset({
    NotificationStatus.PENDING,
    NotificationStatus.FAILED_RETRY_PENDING,
})

ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset({
        NotificationStatus.SENT,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED_RETRY_PENDING,
        NotificationStatus.FAILED_EXHAUSTED,  # permanent errors only
    }),
    NotificationStatus.FAILED_RETRY_PENDING: frozenset({
        NotificationStatus.SENT,
        NotificationStatus.CANCELLED,
        NotificationStatus.FAILED_RETRY_PENDING,
        NotificationStatus.FAILED_EXHAUSTED,
    }),
    NotificationStatus.SENT: frozenset(),
    NotificationStatus.CANCELLED: frozenset(),
    NotificationStatus.FAILED_EXHAUSTED: frozenset(),
}


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[NotificationStatus(current)]


class Channel(str, Enum):
    """Where a reminder may be shown."""

    NATIVE = "native"
    IN_APP = "in-app"


def derive_id(source: str, notification_type: NotificationType | str) -> str:
    """
    Derive the stable record id for a source entity and reminder type.

    The same (source, type) pair always maps to the same id, so rescheduling
    a call overwrites its reminder instead of queueing a second one.
    """
    type_value = NotificationType(notification_type).value
    digest = hashlib.sha256(f"{source}|{type_value}".encode("utf-8")).hexdigest()
    return f"notif_{digest[:20]}"


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class NotificationRecord:
    """
    A queued reminder.

    ``scheduled_for`` is fixed at creation; a new time means a new record
    upserted under the same derived id.
    """

    id: str
    type: NotificationType
    title: str
    scheduled_for: datetime

    message: str = ""
    priority: NotificationPriority = NotificationPriority.MEDIUM
    channels: frozenset[Channel] = frozenset({Channel.NATIVE})
    related_call_id: str | None = None
    related_employee_id: str | None = None

    # Delivery state
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    retry_count: int = 0
    next_retry_at: datetime | None = None
    last_attempt_at: datetime | None = None
    sent_at: datetime | None = None
    last_error: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = NotificationType(self.type)
        self.priority = NotificationPriority(self.priority)
        self.status = NotificationStatus(self.status)
        self.channels = frozenset(Channel(c) for c in self.channels)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "priority_rank": self.priority.rank,
            "title": self.title,
            "message": self.message,
            "scheduled_for": _format_dt(self.scheduled_for),
            "created_at": _format_dt(self.created_at),
            "status": self.status.value,
            "channels": json.dumps(sorted(c.value for c in self.channels)),
            "related_call_id": self.related_call_id,
            "related_employee_id": self.related_employee_id,
            "retry_count": self.retry_count,
            "next_retry_at": _format_dt(self.next_retry_at),
            "last_attempt_at": _format_dt(self.last_attempt_at),
            "sent_at": _format_dt(self.sent_at),
            "last_error": self.last_error,
            "metadata": json.dumps(self.metadata) if self.metadata else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationRecord":
        """Create from a database row or a message payload."""
        data = dict(data)
        data.pop("priority_rank", None)

        channels = data.get("channels")
        if isinstance(channels, str):
            data["channels"] = json.loads(channels) if channels else [Channel.NATIVE.value]
        elif channels is None:
            data["channels"] = [Channel.NATIVE.value]

        metadata = data.get("metadata")
        if isinstance(metadata, str):
            data["metadata"] = json.loads(metadata) if metadata else {}
        elif metadata is None:
            data["metadata"] = {}

        for field_name in ["scheduled_for", "created_at", "next_retry_at", "last_attempt_at", "sent_at"]:
            if field_name in data:
                data[field_name] = _parse_dt(data[field_name])
        if data.get("created_at") is None:
            data.pop("created_at", None)

        if data.get("message") is None:
            data["message"] = ""
        data["retry_count"] = int(data.get("retry_count") or 0)

        return cls(**data)

    def is_due(self, now: datetime) -> bool:
        """Dispatchable at ``now``, ignoring quiet hours."""
        if self.status not in DISPATCHABLE_STATUSES:
            return False
        if self.scheduled_for > now:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def transition(self, target: NotificationStatus, **changes: Any) -> "NotificationRecord":
        """Return a copy moved to ``target``; raises on an illegal move."""
        if not can_transition(self.status, target):
            raise InvalidTransition(self.id, self.status.value, NotificationStatus(target).value)
        return replace(self, status=NotificationStatus(target), **changes)

    def to_native_descriptor(
        self,
        icon: str = "/favicon.ico",
        badge: str = "/favicon.ico",
    ) -> dict[str, Any]:
        """Build the descriptor handed to the native notification surface."""
        if self.related_call_id:
            actions = [
                {"action": "view", "title": "View call"},
                {"action": "dismiss", "title": "Dismiss"},
            ]
        else:
            actions = [{"action": "dismiss", "title": "Dismiss"}]

        return {
            "title": self.title,
            "body": self.message,
            "icon": icon,
            "badge": badge,
            "tag": self.id,
            "requireInteraction": self.priority == NotificationPriority.URGENT,
            "actions": actions,
            "data": {
                "relatedCallId": self.related_call_id,
                "relatedEmployeeId": self.related_employee_id,
                "type": self.type.value,
            },
        }


@dataclass
class Call:
    """
    Live domain call as loaded by the UI.

    Only the fields the reminder engine reads; CRUD lives elsewhere.
    """

    id: str
    employee_id: str
    scheduled_for: datetime
    status: str = "scheduled"
    employee_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Call":
        data = dict(data)
        data["scheduled_for"] = _parse_dt(data["scheduled_for"])
        return cls(**data)


@dataclass
class CallEvent:
    """
    Call-changed event emitted by the domain layer.

    ``new_scheduled_for`` is None when the call no longer has a slot
    (cancelled, completed, suspended).
    """

    call_id: str
    employee_id: str
    new_scheduled_for: datetime | None
    status: str
    employee_name: str | None = None
    priority: NotificationPriority | None = None

    def __post_init__(self) -> None:
        if self.priority is not None:
            self.priority = NotificationPriority(self.priority)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CallEvent":
        data = dict(data)
        data["new_scheduled_for"] = _parse_dt(data.get("new_scheduled_for"))
        return cls(**data)
