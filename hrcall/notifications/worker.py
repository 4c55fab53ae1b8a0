"""
Tool: Delivery Worker
Purpose: Background context that delivers due reminders and handles clicks

Usage:
    python -m hrcall.notifications.worker scan        # one due-scan
    python -m hrcall.notifications.worker run         # scan forever
    python -m hrcall.notifications.worker stats
    python -m hrcall.notifications.worker purge

    from hrcall.notifications.worker import create_worker
    worker = create_worker()
    results = await worker.run_once()

State machine (per record):
    pending              -> sent | failed-retry-pending | cancelled
    failed-retry-pending -> sent | failed-retry-pending | cancelled | failed-exhausted
    permanent errors     -> failed-exhausted without consuming a retry

The host may stop and restart this context at any time, so every scan reads
everything it needs from the queue store. Failures are contained to the
record being processed; nothing raised by one record stops the scan, and
nothing raised by a scan stops the loop.
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlsplit

from hrcall.logging_config import bind_execution_context, get_logger, setup_logging
from hrcall.notifications.config import NotificationSettings, load_settings
from hrcall.notifications.errors import (
    DispatchPermanentError,
    DispatchTransientError,
    PermissionDenied,
)
from hrcall.notifications.messenger import ClientRegistry, Message
from hrcall.notifications.models import Channel, NotificationRecord
from hrcall.notifications.push.delivery import NativeNotifier
from hrcall.notifications.push.surface import DesktopSurface, NotificationSurface
from hrcall.notifications.queue.policy import (
    can_send_now,
    get_send_schedule,
    next_retry_at,
    retries_exhausted,
)
from hrcall.notifications.queue.store import BaseQueueStore, open_store

logger = get_logger(__name__)

CALLS_ROUTE = "/calls"
ROOT_ROUTE = "/"


def call_route(call_id: str) -> str:
    return f"{CALLS_ROUTE}?highlight={call_id}"


class DeliveryWorker:
    """Scans the queue store and dispatches due reminders."""

    def __init__(
        self,
        store: BaseQueueStore,
        notifier: NativeNotifier,
        settings: NotificationSettings,
        clients: ClientRegistry | None = None,
        in_app_sink: Callable[[NotificationRecord], Any] | None = None,
        scan_limit: int = 100,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self.clients = clients or ClientRegistry()
        self.in_app_sink = in_app_sink
        self.scan_limit = scan_limit
        self.permission_denied = False

    async def run_scan(self, now: datetime | None = None) -> dict:
        """
        Process every due record once.

        Returns:
            {
                "due": int,
                "sent": int,
                "retried": int,
                "exhausted": int,
                "deferred": int,    # quiet hours / disabled
                "skipped": int,     # changed under us since the scan read
                "errors": int,
            }
        """
        now = now or datetime.now()
        results = {
            "due": 0,
            "sent": 0,
            "retried": 0,
            "exhausted": 0,
            "deferred": 0,
            "skipped": 0,
            "errors": 0,
        }

        due = self.store.get_due(now, limit=self.scan_limit)
        results["due"] = len(due)

        for record in due:
            try:
                outcome = await self.process_record(record, now)
                results[outcome] += 1
            except Exception:
                results["errors"] += 1
                logger.exception("record_processing_failed", notification_id=record.id)

        if results["due"]:
            logger.info("scan_complete", **results)
        return results

    async def process_record(self, record: NotificationRecord, now: datetime) -> str:
        """Run one dispatch attempt and apply the resulting transition."""
        check = can_send_now(record, self.settings, now)
        if not check["can_send"]:
            # Left pending; the first scan after the window closes picks it up
            logger.debug(
                "dispatch_deferred",
                notification_id=record.id,
                reason=check["reason"],
                retry_at=check["retry_at"].isoformat() if check["retry_at"] else None,
            )
            return "deferred"

        # Another context may have cancelled or delivered it since get_due
        current = self.store.get(record.id)
        if current is None or not current.is_due(now):
            return "skipped"

        try:
            await self.notifier.dispatch(current)
        except PermissionDenied as e:
            return self._on_permission_denied(current, e, now)
        except DispatchPermanentError as e:
            self.store.mark_exhausted(current.id, error=str(e), now=now)
            logger.error("dispatch_failed_permanently", notification_id=current.id, error=str(e))
            return "exhausted"
        except DispatchTransientError as e:
            return self._on_transient_failure(current, e, now)

        if not self.store.mark_sent(current.id, now=now):
            logger.warning("sent_record_changed_concurrently", notification_id=current.id)
        else:
            logger.info("notification_sent", notification_id=current.id, type=current.type.value)
        return "sent"

    def _on_transient_failure(
        self,
        record: NotificationRecord,
        error: Exception,
        now: datetime,
    ) -> str:
        if retries_exhausted(self.settings, record):
            if not self.store.mark_exhausted(record.id, error=str(error), now=now):
                logger.warning("failed_record_changed_concurrently", notification_id=record.id)
                return "skipped"
            logger.error(
                "dispatch_retries_exhausted",
                notification_id=record.id,
                retry_count=record.retry_count,
                error=str(error),
            )
            return "exhausted"

        retry_at = next_retry_at(self.settings, record.retry_count + 1, now)
        if not self.store.mark_retry(record.id, retry_at, error=str(error), now=now):
            # Cancelled while the dispatch was in flight
            logger.warning("failed_record_changed_concurrently", notification_id=record.id)
            return "skipped"
        logger.warning(
            "dispatch_failed_will_retry",
            notification_id=record.id,
            retry_count=record.retry_count + 1,
            next_retry_at=retry_at.isoformat(),
            error=str(error),
        )
        return "retried"

    def _on_permission_denied(
        self,
        record: NotificationRecord,
        error: PermissionDenied,
        now: datetime,
    ) -> str:
        self.store.mark_exhausted(record.id, error=f"permission_denied: {error}", now=now)

        if not self.permission_denied:
            self.permission_denied = True
            logger.warning("native_permission_denied_degrading_to_in_app", error=str(error))

        if Channel.IN_APP in record.channels and self.in_app_sink is not None:
            try:
                self.in_app_sink(record)
            except Exception:
                logger.exception("in_app_delivery_failed", notification_id=record.id)
        return "exhausted"

    def cleanup(self, now: datetime | None = None) -> int:
        """Purge terminal records older than the retention horizon."""
        now = now or datetime.now()
        purged = self.store.purge_older_than(now - timedelta(days=self.settings.retention_days))
        if purged:
            logger.info("notifications_purged", count=purged)
        return purged

    async def run_once(self, now: datetime | None = None) -> dict:
        now = now or datetime.now()
        results = await self.run_scan(now)
        results["purged"] = self.cleanup(now)
        return results

    async def run(self, stop: asyncio.Event, interval: float | None = None) -> None:
        """Scan every ``interval`` seconds until ``stop`` is set."""
        interval = interval or self.settings.worker_interval_seconds
        bind_execution_context("worker")
        logger.info("worker_started", interval=interval, degraded=self.store.degraded)

        while not stop.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("worker_iteration_failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("worker_stopped")

    async def handle_click(
        self,
        action: str | None,
        data: dict[str, Any] | None = None,
        tag: str | None = None,
    ) -> str:
        """
        React to a click on a displayed notification.

        Args:
            action: "view", "dismiss", or empty for a bare click
            data: the descriptor's data block (relatedCallId, ...)
            tag: the notification's tag, closed in every case

        Returns:
            "focused" | "opened" | "dismissed"
        """
        data = data or {}
        if tag:
            await self.notifier.close(tag)

        if action == "dismiss":
            return "dismissed"

        call_id = data.get("relatedCallId")
        if action == "view" and call_id:
            for client in self.clients.match_all():
                if urlsplit(client.url).path == CALLS_ROUTE:
                    client.post_message(Message.highlight(call_id))
                    await client.focus()
                    return "focused"
            self.clients.open_window(call_route(call_id))
            return "opened"

        windows = self.clients.match_all()
        if windows:
            await windows[0].focus()
            return "focused"
        self.clients.open_window(ROOT_ROUTE)
        return "opened"


def create_worker(
    db_path: str | Path | None = None,
    settings: NotificationSettings | None = None,
    surface: NotificationSurface | None = None,
    clients: ClientRegistry | None = None,
) -> DeliveryWorker:
    """Wire a worker from configuration."""
    settings = settings or load_settings()
    notifier = NativeNotifier(surface or DesktopSurface(), icon=settings.icon, badge=settings.badge)
    return DeliveryWorker(open_store(db_path), notifier, settings, clients=clients)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="HR call reminder delivery worker")
    parser.add_argument("--db", help="Database path (default: data/notifications.db)")
    parser.add_argument("--config", type=Path, help="Settings YAML (default: args/notifications.yaml)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("scan", help="Run one due-scan and cleanup")

    run_parser = subparsers.add_parser("run", help="Scan periodically until interrupted")
    run_parser.add_argument("--interval", "-i", type=float, help="Seconds between scans")

    subparsers.add_parser("stats", help="Queue statistics and quiet-hours outlook")
    subparsers.add_parser("purge", help="Purge terminal records past retention")

    args = parser.parse_args(argv)
    setup_logging()

    settings = load_settings(args.config) if args.config else load_settings()
    worker = create_worker(args.db, settings)

    if args.command == "scan":
        results = asyncio.run(worker.run_once())
        print(json.dumps(results, indent=2))

    elif args.command == "run":
        async def _run() -> None:
            stop = asyncio.Event()
            try:
                await worker.run(stop, args.interval)
            finally:
                stop.set()

        try:
            asyncio.run(_run())
        except KeyboardInterrupt:
            pass

    elif args.command == "stats":
        stats = worker.store.get_stats()
        schedule = get_send_schedule(settings, datetime.now(), hours_ahead=12)
        print(json.dumps({"queue": stats, "next_12_hours": schedule}, indent=2))

    elif args.command == "purge":
        print(f"Purged: {worker.cleanup()}")

    else:
        parser.print_help()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
