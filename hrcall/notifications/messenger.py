"""
Tool: Cross-Context Messenger
Purpose: Message passing between the delivery worker and open UI windows

Usage:
    from hrcall.notifications.messenger import (
        Message,
        MessageType,
        MessagePort,
        ClientRegistry,
        WorkerEndpoint,
        UiEndpoint,
    )

    worker_port = MessagePort()
    registry = ClientRegistry()
    window = registry.open_window("/calls")

    worker = WorkerEndpoint(store, worker_port)
    ui = UiEndpoint(window, worker_port, highlight=router.highlight_call)

    await ui.schedule(record)        # SCHEDULE_NOTIFICATION -> worker
    await ui.cancel(record.id)       # CANCEL_NOTIFICATION  -> worker

Envelope:
    {"type": "SCHEDULE_NOTIFICATION" | "CANCEL_NOTIFICATION" | "HIGHLIGHT_CALL",
     "data": {...}}

Delivery is asynchronous and at-most-once: a full port drops the message,
and nothing orders messages across ports. The two contexts share no objects;
records cross the boundary as plain dicts.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from hrcall.logging_config import get_logger
from hrcall.notifications.models import NotificationRecord
from hrcall.notifications.queue.store import BaseQueueStore

logger = get_logger(__name__)


class MessageType(str, Enum):
    SCHEDULE_NOTIFICATION = "SCHEDULE_NOTIFICATION"
    CANCEL_NOTIFICATION = "CANCEL_NOTIFICATION"
    HIGHLIGHT_CALL = "HIGHLIGHT_CALL"


@dataclass
class Message:
    """Envelope exchanged between contexts."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Message":
        return cls(type=payload.get("type", ""), data=payload.get("data") or {})

    @classmethod
    def schedule(cls, record: NotificationRecord) -> "Message":
        return cls(MessageType.SCHEDULE_NOTIFICATION.value, {"record": record.to_dict()})

    @classmethod
    def cancel(cls, notification_id: str) -> "Message":
        return cls(MessageType.CANCEL_NOTIFICATION.value, {"id": notification_id})

    @classmethod
    def highlight(cls, call_id: str) -> "Message":
        return cls(MessageType.HIGHLIGHT_CALL.value, {"callId": call_id})


class MessagePort:
    """One-directional asynchronous inbox."""

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)

    def post(self, message: Message) -> bool:
        """Send without waiting. Returns False if the message was dropped."""
        try:
            self._queue.put_nowait(message.to_dict())
            return True
        except asyncio.QueueFull:
            logger.warning("message_dropped", type=message.type, depth=self._queue.qsize())
            return False

    async def receive(self) -> Message:
        return Message.from_dict(await self._queue.get())

    def pending(self) -> int:
        return self._queue.qsize()


async def _pump(
    port: MessagePort,
    handler: Callable[[Message], Awaitable[None]],
    stop: asyncio.Event,
    poll_seconds: float,
) -> None:
    while not stop.is_set():
        try:
            message = await asyncio.wait_for(port.receive(), timeout=poll_seconds)
        except asyncio.TimeoutError:
            continue
        try:
            await handler(message)
        except Exception:
            logger.exception("message_handler_failed", type=message.type)


_window_ids = itertools.count(1)


class WindowClient:
    """An open UI window as seen from the worker context."""

    def __init__(self, url: str = "/", port: MessagePort | None = None):
        self.id = f"window-{next(_window_ids)}"
        self.url = url
        self.port = port or MessagePort()
        self.focused = False

    async def focus(self) -> "WindowClient":
        self.focused = True
        return self

    def post_message(self, message: Message) -> bool:
        return self.port.post(message)


class ClientRegistry:
    """The set of open UI windows, plus the ability to open a new one."""

    def __init__(self, opener: Callable[[str], WindowClient] | None = None):
        self._windows: list[WindowClient] = []
        self._opener = opener or WindowClient

    def register(self, window: WindowClient) -> WindowClient:
        self._windows.append(window)
        return window

    def unregister(self, window: WindowClient) -> None:
        if window in self._windows:
            self._windows.remove(window)

    def match_all(self) -> list[WindowClient]:
        return list(self._windows)

    def open_window(self, url: str) -> WindowClient:
        window = self.register(self._opener(url))
        logger.info("window_opened", url=url, window_id=window.id)
        return window


class WorkerEndpoint:
    """Worker side: applies schedule/cancel requests straight to the store."""

    def __init__(self, store: BaseQueueStore, port: MessagePort):
        self.store = store
        self.port = port

    async def handle(self, message: Message) -> None:
        if message.type == MessageType.SCHEDULE_NOTIFICATION.value:
            record = NotificationRecord.from_dict(message.data["record"])
            written = self.store.upsert(record)
            logger.info("schedule_request_applied", notification_id=record.id, written=written)

        elif message.type == MessageType.CANCEL_NOTIFICATION.value:
            notification_id = message.data["id"]
            cancelled = self.store.mark_cancelled(notification_id)
            logger.info("cancel_request_applied", notification_id=notification_id, cancelled=cancelled)

        else:
            logger.warning("unknown_message_type", type=message.type)

    async def serve(self, stop: asyncio.Event, poll_seconds: float = 0.5) -> None:
        await _pump(self.port, self.handle, stop, poll_seconds)


class UiEndpoint:
    """
    UI side: sends requests to the worker and exposes HIGHLIGHT_CALL to
    the route-highlight capability.
    """

    def __init__(
        self,
        window: WindowClient,
        worker_port: MessagePort,
        highlight: Callable[[str], Any],
    ):
        self.window = window
        self.worker_port = worker_port
        self.highlight = highlight

    async def schedule(self, record: NotificationRecord) -> bool:
        return self.worker_port.post(Message.schedule(record))

    async def cancel(self, notification_id: str) -> bool:
        return self.worker_port.post(Message.cancel(notification_id))

    async def handle(self, message: Message) -> None:
        if message.type == MessageType.HIGHLIGHT_CALL.value:
            result = self.highlight(message.data["callId"])
            if asyncio.iscoroutine(result):
                await result
        else:
            logger.warning("unknown_message_type", type=message.type, window_id=self.window.id)

    async def serve(self, stop: asyncio.Event, poll_seconds: float = 0.5) -> None:
        await _pump(self.window.port, self.handle, stop, poll_seconds)
