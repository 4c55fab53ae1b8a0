"""
Tool: Notification Queue Store
Purpose: Durable table of reminder records, scanned for due work by both delivery paths

Usage:
    from hrcall.notifications.queue.store import open_store

    store = open_store()            # SQLite, or in-memory when degraded
    store.upsert(record)
    for record in store.get_due(datetime.now()):
        ...
        store.mark_sent(record.id)

Every method is one short transaction on its own connection. Nothing here
ever calls out to the notification surface, so no lock outlives a method.
Status changes are conditional updates: a transition that the state
machine does not allow simply matches zero rows and returns False.
"""

import argparse
import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from hrcall.logging_config import get_logger
from hrcall.notifications import get_connection
from hrcall.notifications.errors import InvalidTransition, StoreUnavailable
from hrcall.notifications.models import (
    DISPATCHABLE_STATUSES,
    TERMINAL_STATUSES,
    NotificationRecord,
    NotificationStatus,
)

logger = get_logger(__name__)

_DISPATCHABLE = tuple(s.value for s in DISPATCHABLE_STATUSES)
_TERMINAL = tuple(s.value for s in TERMINAL_STATUSES)

_COLUMNS = [
    "id", "type", "priority", "priority_rank", "title", "message",
    "scheduled_for", "created_at", "status", "channels",
    "related_call_id", "related_employee_id", "retry_count",
    "next_retry_at", "last_attempt_at", "sent_at", "last_error", "metadata",
]


def _placeholders(values: tuple) -> str:
    return ", ".join("?" * len(values))


_KEPT_ON_REPLAY = frozenset({
    NotificationStatus.SENT,
    NotificationStatus.FAILED_EXHAUSTED,
    NotificationStatus.FAILED_RETRY_PENDING,
})


def _keeps_existing(existing: NotificationRecord | None, incoming: NotificationRecord) -> bool:
    """
    A replayed event must not re-fire a delivered reminder or reset retries.

    Only an upsert for the same ``scheduled_for`` is a replay; a new time
    is a new triggering event and always replaces.
    """
    if existing is None:
        return False
    return existing.status in _KEPT_ON_REPLAY and existing.scheduled_for == incoming.scheduled_for


def _copy(record: NotificationRecord) -> NotificationRecord:
    return replace(record, metadata=dict(record.metadata))


class BaseQueueStore(ABC):
    """Operations shared by the durable and the degraded store."""

    degraded: bool = False

    @abstractmethod
    def get(self, notification_id: str) -> NotificationRecord | None: ...

    @abstractmethod
    def get_due(self, now: datetime, limit: int = 100) -> list[NotificationRecord]: ...

    @abstractmethod
    def upsert(self, record: NotificationRecord) -> bool: ...

    @abstractmethod
    def mark_sent(self, notification_id: str, now: datetime | None = None) -> bool: ...

    @abstractmethod
    def mark_retry(
        self,
        notification_id: str,
        next_retry_at: datetime,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool: ...

    @abstractmethod
    def mark_cancelled(self, notification_id: str) -> bool: ...

    @abstractmethod
    def mark_exhausted(
        self,
        notification_id: str,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool: ...

    @abstractmethod
    def purge_older_than(self, ts: datetime) -> int: ...

    @abstractmethod
    def list_records(self, status: NotificationStatus | None = None) -> list[NotificationRecord]: ...

    def cancel_for_call(self, call_id: str) -> int:
        """Cancel every non-terminal record related to a call."""
        cancelled = 0
        for record in self.list_records():
            if record.related_call_id == call_id and self.mark_cancelled(record.id):
                cancelled += 1
        return cancelled

    def get_stats(self) -> dict:
        stats = {status.value: 0 for status in NotificationStatus}
        for record in self.list_records():
            stats[record.status.value] += 1
        stats["total"] = sum(stats.values())
        stats["degraded"] = self.degraded
        return stats


class QueueStore(BaseQueueStore):
    """SQLite-backed queue store."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = db_path
        try:
            conn = get_connection(db_path)
            conn.close()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"Cannot open notification store at {db_path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    def get(self, notification_id: str) -> NotificationRecord | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM notification_queue WHERE id = ?",
                (notification_id,),
            ).fetchone()
        finally:
            conn.close()
        return NotificationRecord.from_dict(dict(row)) if row else None

    def get_due(self, now: datetime, limit: int = 100) -> list[NotificationRecord]:
        """
        Get dispatchable records whose time has come.

        Ordered by priority (urgent first), then scheduled time, then id.
        Quiet hours are not applied here; that is a delivery decision.
        """
        now_iso = now.isoformat()
        conn = self._connect()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM notification_queue
                WHERE status IN ({_placeholders(_DISPATCHABLE)})
                AND scheduled_for <= ?
                AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY priority_rank DESC, scheduled_for ASC, id ASC
                LIMIT ?
                """,
                (*_DISPATCHABLE, now_iso, now_iso, limit),
            ).fetchall()
        finally:
            conn.close()
        return [NotificationRecord.from_dict(dict(row)) for row in rows]

    def upsert(self, record: NotificationRecord) -> bool:
        """
        Insert or replace a record under its id (last write wins).

        Returns:
            False when the write was a replay of an event already being
            delivered (or done) and was skipped, True otherwise
        """
        data = record.to_dict()
        values = tuple(data[c] for c in _COLUMNS)

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM notification_queue WHERE id = ?",
                (record.id,),
            ).fetchone()
            existing = NotificationRecord.from_dict(dict(row)) if row else None

            if _keeps_existing(existing, record):
                conn.rollback()
                return False

            conn.execute(
                f"INSERT OR REPLACE INTO notification_queue ({', '.join(_COLUMNS)}) "
                f"VALUES ({_placeholders(values)})",
                values,
            )
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _transition(self, notification_id: str, sql_set: str, params: tuple) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                UPDATE notification_queue
                SET {sql_set}
                WHERE id = ? AND status IN ({_placeholders(_DISPATCHABLE)})
                """,
                (*params, notification_id, *_DISPATCHABLE),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def mark_sent(self, notification_id: str, now: datetime | None = None) -> bool:
        ts = (now or datetime.now()).isoformat()
        return self._transition(
            notification_id,
            "status = ?, sent_at = ?, last_attempt_at = ?, next_retry_at = NULL",
            (NotificationStatus.SENT.value, ts, ts),
        )

    def mark_retry(
        self,
        notification_id: str,
        next_retry_at: datetime,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        return self._transition(
            notification_id,
            "status = ?, retry_count = retry_count + 1, next_retry_at = ?, "
            "last_attempt_at = ?, last_error = ?",
            (
                NotificationStatus.FAILED_RETRY_PENDING.value,
                next_retry_at.isoformat(),
                (now or datetime.now()).isoformat(),
                error,
            ),
        )

    def mark_cancelled(self, notification_id: str) -> bool:
        return self._transition(
            notification_id,
            "status = ?, next_retry_at = NULL",
            (NotificationStatus.CANCELLED.value,),
        )

    def mark_exhausted(
        self,
        notification_id: str,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        return self._transition(
            notification_id,
            "status = ?, next_retry_at = NULL, last_attempt_at = ?, "
            "last_error = COALESCE(?, last_error)",
            (
                NotificationStatus.FAILED_EXHAUSTED.value,
                (now or datetime.now()).isoformat(),
                error,
            ),
        )

    def purge_older_than(self, ts: datetime) -> int:
        """Delete terminal records created before ``ts``."""
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                DELETE FROM notification_queue
                WHERE status IN ({_placeholders(_TERMINAL)})
                AND created_at < ?
                """,
                (*_TERMINAL, ts.isoformat()),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def cancel_for_call(self, call_id: str) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                UPDATE notification_queue
                SET status = ?, next_retry_at = NULL
                WHERE related_call_id = ? AND status IN ({_placeholders(_DISPATCHABLE)})
                """,
                (NotificationStatus.CANCELLED.value, call_id, *_DISPATCHABLE),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def list_records(self, status: NotificationStatus | None = None) -> list[NotificationRecord]:
        conn = self._connect()
        try:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM notification_queue ORDER BY scheduled_for ASC, id ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM notification_queue WHERE status = ? "
                    "ORDER BY scheduled_for ASC, id ASC",
                    (NotificationStatus(status).value,),
                ).fetchall()
        finally:
            conn.close()
        return [NotificationRecord.from_dict(dict(row)) for row in rows]

    def get_stats(self) -> dict:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM notification_queue GROUP BY status"
            ).fetchall()
        finally:
            conn.close()

        stats = {status.value: 0 for status in NotificationStatus}
        stats.update({row["status"]: row["count"] for row in rows})
        stats["total"] = sum(stats.values())
        stats["degraded"] = self.degraded
        return stats


class InMemoryQueueStore(BaseQueueStore):
    """
    Ephemeral store used when SQLite cannot be opened.

    Same semantics, no durability: everything is lost when the process exits.
    """

    def __init__(self, degraded: bool = True):
        self.degraded = degraded
        self._records: dict[str, NotificationRecord] = {}
        self._lock = threading.Lock()

    def get(self, notification_id: str) -> NotificationRecord | None:
        with self._lock:
            record = self._records.get(notification_id)
        return _copy(record) if record is not None else None

    def get_due(self, now: datetime, limit: int = 100) -> list[NotificationRecord]:
        with self._lock:
            due = [_copy(r) for r in self._records.values() if r.is_due(now)]
        due.sort(key=lambda r: (-r.priority.rank, r.scheduled_for, r.id))
        return due[:limit]

    def upsert(self, record: NotificationRecord) -> bool:
        with self._lock:
            if _keeps_existing(self._records.get(record.id), record):
                return False
            self._records[record.id] = _copy(record)
            return True

    def _apply(self, notification_id: str, target: NotificationStatus, **changes) -> bool:
        with self._lock:
            record = self._records.get(notification_id)
            if record is None:
                return False
            try:
                self._records[notification_id] = record.transition(target, **changes)
            except InvalidTransition:
                return False
            return True

    def mark_sent(self, notification_id: str, now: datetime | None = None) -> bool:
        ts = now or datetime.now()
        return self._apply(
            notification_id,
            NotificationStatus.SENT,
            sent_at=ts,
            last_attempt_at=ts,
            next_retry_at=None,
        )

    def mark_retry(
        self,
        notification_id: str,
        next_retry_at: datetime,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        with self._lock:
            record = self._records.get(notification_id)
            if record is None:
                return False
            try:
                self._records[notification_id] = record.transition(
                    NotificationStatus.FAILED_RETRY_PENDING,
                    retry_count=record.retry_count + 1,
                    next_retry_at=next_retry_at,
                    last_attempt_at=now or datetime.now(),
                    last_error=error,
                )
            except InvalidTransition:
                return False
            return True

    def mark_cancelled(self, notification_id: str) -> bool:
        return self._apply(notification_id, NotificationStatus.CANCELLED, next_retry_at=None)

    def mark_exhausted(
        self,
        notification_id: str,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        changes = {"next_retry_at": None, "last_attempt_at": now or datetime.now()}
        if error is not None:
            changes["last_error"] = error
        return self._apply(notification_id, NotificationStatus.FAILED_EXHAUSTED, **changes)

    def purge_older_than(self, ts: datetime) -> int:
        with self._lock:
            stale = [
                rid for rid, r in self._records.items()
                if r.status.is_terminal and r.created_at < ts
            ]
            for rid in stale:
                del self._records[rid]
        return len(stale)

    def list_records(self, status: NotificationStatus | None = None) -> list[NotificationRecord]:
        with self._lock:
            records = list(self._records.values())
        if status is not None:
            records = [r for r in records if r.status == NotificationStatus(status)]
        return sorted((_copy(r) for r in records), key=lambda r: (r.scheduled_for, r.id))


def open_store(db_path: str | Path | None = None) -> BaseQueueStore:
    """
    Open the durable store, degrading to memory if it is unavailable.

    The returned store's ``degraded`` flag tells callers which one they got.
    """
    try:
        return QueueStore(db_path)
    except StoreUnavailable as e:
        logger.warning("notification_store_degraded", error=str(e), db_path=str(db_path))
        return InMemoryQueueStore(degraded=True)


# CLI interface
if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Notification queue store")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    list_parser = subparsers.add_parser("list", help="List queued records")
    list_parser.add_argument("--status", "-s", choices=[s.value for s in NotificationStatus])
    list_parser.add_argument("--db", help="Database path")

    stats_parser = subparsers.add_parser("stats", help="Count records per status")
    stats_parser.add_argument("--db", help="Database path")

    args = parser.parse_args()

    if args.command == "list":
        store = open_store(args.db)
        for record in store.list_records(args.status):
            print(f"{record.id}  {record.status.value:<22} {record.scheduled_for:%Y-%m-%d %H:%M}  {record.title}")

    elif args.command == "stats":
        store = open_store(args.db)
        print(json.dumps(store.get_stats(), indent=2))

    else:
        parser.print_help()
