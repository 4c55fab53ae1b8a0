"""Queue store and delivery policy."""

from hrcall.notifications.queue.store import (
    BaseQueueStore,
    QueueStore,
    InMemoryQueueStore,
    open_store,
)
from hrcall.notifications.queue.policy import (
    can_send_now,
    is_in_quiet_hours,
    quiet_hours_end,
    next_retry_at,
    retries_exhausted,
)

__all__ = [
    "BaseQueueStore",
    "QueueStore",
    "InMemoryQueueStore",
    "open_store",
    "can_send_now",
    "is_in_quiet_hours",
    "quiet_hours_end",
    "next_retry_at",
    "retries_exhausted",
]
