"""Native notification delivery."""

from hrcall.notifications.push.delivery import NativeNotifier
from hrcall.notifications.push.surface import (
    DENIED,
    DEFAULT,
    GRANTED,
    UNSUPPORTED,
    DesktopSurface,
    NotificationSurface,
)

__all__ = [
    "NativeNotifier",
    "NotificationSurface",
    "DesktopSurface",
    "GRANTED",
    "DENIED",
    "DEFAULT",
    "UNSUPPORTED",
]
