"""
Tool: Native Notification Surfaces
Purpose: The OS-level alert UI a descriptor is finally shown on

Usage:
    from hrcall.notifications.push.surface import DesktopSurface

    surface = DesktopSurface()
    surface.permission()        # "granted" | "denied" | "default" | "unsupported"
    await surface.show("Call in 15 minutes", {"body": "...", "tag": "notif_..."})

Surfaces raise the engine's dispatch errors; they never retry themselves.
The notifier re-reads ``permission()`` before every attempt because the
user can revoke it at any time.

Dependencies:
    notify-send (libnotify-bin) for DesktopSurface
"""

import asyncio
import shutil
from abc import ABC, abstractmethod
from typing import Any

from hrcall.logging_config import get_logger
from hrcall.notifications.errors import DispatchPermanentError, DispatchTransientError

logger = get_logger(__name__)

GRANTED = "granted"
DENIED = "denied"
DEFAULT = "default"
UNSUPPORTED = "unsupported"


class NotificationSurface(ABC):
    """Capability to display a native notification."""

    name = "surface"

    @abstractmethod
    def permission(self) -> str:
        """Current permission state; read fresh on every call."""

    @abstractmethod
    async def show(self, title: str, options: dict[str, Any]) -> None:
        """Display a notification; raise a dispatch error on failure."""

    async def close(self, tag: str) -> None:
        """Close a displayed notification by tag, where supported."""
        logger.debug("surface_close_unsupported", surface=self.name, tag=tag)


class DesktopSurface(NotificationSurface):
    """
    Linux desktop notifications through ``notify-send``.

    The notification tag is passed as a synchronous hint, so a second
    notification with the same tag replaces the first on screen.
    """

    name = "desktop"

    def __init__(
        self,
        command: str = "notify-send",
        app_name: str = "HR Call Tracker",
        timeout_seconds: float = 10.0,
    ):
        self.command = command
        self.app_name = app_name
        self.timeout_seconds = timeout_seconds

    def permission(self) -> str:
        return GRANTED if shutil.which(self.command) else UNSUPPORTED

    def _build_args(self, title: str, options: dict[str, Any]) -> list[str]:
        urgency = "critical" if options.get("requireInteraction") else "normal"
        args = [
            self.command,
            "--app-name", self.app_name,
            "--urgency", urgency,
        ]
        if options.get("icon"):
            args += ["--icon", str(options["icon"])]
        if options.get("tag"):
            args += ["--hint", f"string:x-canonical-private-synchronous:{options['tag']}"]
        args += [title, options.get("body") or ""]
        return args

    async def show(self, title: str, options: dict[str, Any]) -> None:
        args = self._build_args(title, options)

        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise DispatchPermanentError(f"{self.command} not available: {e}") from e
        except OSError as e:
            raise DispatchTransientError(f"{self.command} failed to start: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise DispatchTransientError(f"{self.command} timed out") from e

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise DispatchTransientError(f"{self.command} exited {proc.returncode}: {message}")
