"""HR Call Notifications: durable reminder queue with two delivery paths

Philosophy:
    A reminder the HR manager never sees is worse than one that arrives a
    minute late, and a reminder that fires twice teaches people to ignore it.
    The engine therefore favours at-most-once delivery per triggering event,
    backed by durable state that survives restarts of either context.

Design Principles:
    1. Durable First - every decision is made from the queue table, never
       from memory that a restarted worker would not have
    2. Idempotent Scheduling - record ids derive from (call, type), so a
       rescheduled call replaces its reminder instead of adding one
    3. Quiet Hours - non-urgent reminders wait for the window to close
    4. Bounded Retries - transient failures back off, permanent ones stop
    5. Redundant Foreground Path - the open UI polls live calls because
       background wake-ups are best-effort

Components:
    queue/: Queue Store (SQLite, in-memory fallback) and delivery policy
    push/: Native notifier service and notification surfaces
    scheduler.py: Domain events -> queue records
    worker.py: Background delivery worker and click handling
    messenger.py: Worker <-> UI message passing
    poller.py: Foreground poller and UI-local state

Database: data/notifications.db (override with HRCALL_DB_PATH)
    - notification_queue: one row per reminder, keyed by derived id
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv

from hrcall import DATA_DIR

load_dotenv()

DB_PATH = Path(os.environ.get("HRCALL_DB_PATH", str(DATA_DIR / "notifications.db")))
LOCAL_STATE_PATH = DATA_DIR / "ui_state.json"


def get_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """
    Get database connection, creating the queue table if needed.

    Args:
        db_path: Database file (defaults to DB_PATH, ":memory:" allowed)

    Returns:
        SQLite connection with row_factory set
    """
    path = str(db_path or DB_PATH)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, timeout=5.0)
    conn.row_factory = sqlite3.Row

    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS notification_queue (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'medium',
            priority_rank INTEGER NOT NULL DEFAULT 2,
            title TEXT NOT NULL,
            message TEXT,
            scheduled_for TEXT NOT NULL,
            created_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            channels TEXT NOT NULL DEFAULT '["native"]',
            related_call_id TEXT,
            related_employee_id TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            next_retry_at TEXT,
            last_attempt_at TEXT,
            sent_at TEXT,
            last_error TEXT,
            metadata TEXT
        )
    """)

    # Indexes for the due-scan and cancellation paths
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_queue_scheduled "
        "ON notification_queue(scheduled_for)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_queue_status "
        "ON notification_queue(status)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_queue_priority "
        "ON notification_queue(priority_rank)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_queue_call "
        "ON notification_queue(related_call_id)"
    )

    conn.commit()
    return conn
