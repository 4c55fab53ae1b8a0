"""Error taxonomy for the reminder engine.

Every failure a single record can hit maps to one of these; the delivery
worker catches them per record and turns them into status transitions.
"""


class NotificationError(Exception):
    """Base class for reminder engine errors."""


class PermissionDenied(NotificationError):
    """The native notification permission is not granted.

    Never retried. The worker degrades to the in-app channel.
    """


class StoreUnavailable(NotificationError):
    """The durable queue store could not be opened."""


class DispatchTransientError(NotificationError):
    """The native surface failed in a way that may succeed later."""


class DispatchPermanentError(NotificationError):
    """Malformed descriptor or unsupported platform. Never retried."""


class InvalidTransition(NotificationError):
    """A status change outside the record state machine was requested."""

    def __init__(self, record_id: str, current: str, target: str):
        self.record_id = record_id
        self.current = current
        self.target = target
        super().__init__(f"{record_id}: cannot move from {current} to {target}")
