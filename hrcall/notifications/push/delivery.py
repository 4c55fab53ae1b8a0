"""
Tool: Native Notifier
Purpose: Turn a queued record into a native notification, with typed failures

Usage:
    from hrcall.notifications.push.delivery import NativeNotifier
    from hrcall.notifications.push.surface import DesktopSurface

    notifier = NativeNotifier(DesktopSurface())
    descriptor = await notifier.dispatch(record)

One instance is constructed at start-up and passed to the scheduler side,
the delivery worker and the foreground poller. It keeps no permission
cache: every dispatch asks the surface again.
"""

from typing import Any

from hrcall.logging_config import get_logger
from hrcall.notifications.errors import (
    DispatchPermanentError,
    DispatchTransientError,
    NotificationError,
    PermissionDenied,
)
from hrcall.notifications.models import NotificationRecord
from hrcall.notifications.push.surface import GRANTED, UNSUPPORTED, NotificationSurface

logger = get_logger(__name__)

_KNOWN_ACTIONS = {"view", "dismiss"}


class NativeNotifier:
    """Native notification service injected into the delivery paths."""

    def __init__(
        self,
        surface: NotificationSurface,
        icon: str = "/favicon.ico",
        badge: str = "/favicon.ico",
    ):
        self.surface = surface
        self.icon = icon
        self.badge = badge

    def check_permission(self) -> None:
        """
        Raise unless the surface may show notifications right now.

        Raises:
            DispatchPermanentError: platform has no native surface
            PermissionDenied: permission not granted (denied or never asked)
        """
        state = self.surface.permission()
        if state == UNSUPPORTED:
            raise DispatchPermanentError(f"Native notifications unsupported on {self.surface.name}")
        if state != GRANTED:
            raise PermissionDenied(f"Notification permission is {state}")

    def has_permission(self) -> bool:
        return self.surface.permission() == GRANTED

    def build_descriptor(self, record: NotificationRecord) -> dict[str, Any]:
        return record.to_native_descriptor(icon=self.icon, badge=self.badge)

    @staticmethod
    def validate_descriptor(descriptor: dict[str, Any]) -> None:
        """Reject descriptors the surface could never display."""
        if not isinstance(descriptor.get("title"), str) or not descriptor["title"].strip():
            raise DispatchPermanentError("Descriptor has no title")
        if not descriptor.get("tag"):
            raise DispatchPermanentError("Descriptor has no tag")
        for action in descriptor.get("actions") or []:
            if action.get("action") not in _KNOWN_ACTIONS or not action.get("title"):
                raise DispatchPermanentError(f"Malformed action: {action!r}")
        data = descriptor.get("data")
        if data is not None and not isinstance(data, dict):
            raise DispatchPermanentError("Descriptor data must be a mapping")

    async def dispatch(self, record: NotificationRecord) -> dict[str, Any]:
        """
        Show ``record`` on the native surface.

        Returns:
            The descriptor that was displayed

        Raises:
            PermissionDenied, DispatchPermanentError, DispatchTransientError
        """
        self.check_permission()

        descriptor = self.build_descriptor(record)
        self.validate_descriptor(descriptor)

        options = {k: v for k, v in descriptor.items() if k != "title"}
        try:
            await self.surface.show(descriptor["title"], options)
        except NotificationError:
            raise
        except Exception as e:
            raise DispatchTransientError(f"{type(e).__name__}: {e}") from e

        logger.debug("native_notification_shown", tag=descriptor["tag"], surface=self.surface.name)
        return descriptor

    async def close(self, tag: str) -> None:
        await self.surface.close(tag)
