from __future__ import annotations

import logging
from datetime import time
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hrcall import ARGS_DIR

logger = logging.getLogger(__name__)

CONFIG_PATH = ARGS_DIR / "notifications.yaml"


# =============================================================================
# NotificationSettings (args/notifications.yaml)
# =============================================================================

class UrgencyThresholdsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    high_hours: float = Field(default=4.0, gt=0)
    medium_hours: float = Field(default=24.0, gt=0)
    low_days: float = Field(default=3.0, gt=0)


class NotificationSettings(BaseModel):
    """Settings supplied by the (external) settings layer."""

    model_config = ConfigDict(extra="allow")

    enabled: bool = Field(default=True)
    # Minutes before the call; negative values trigger after it
    lead_time_minutes: dict[str, int] = Field(
        default_factory=lambda: {"call_reminder": 15, "overdue": -30}
    )
    quiet_hours_start: Optional[str] = Field(default="22:00")
    quiet_hours_end: Optional[str] = Field(default="08:00")
    daily_digest_enabled: bool = Field(default=False)
    daily_digest_time: str = Field(default="09:00")

    max_retries: int = Field(default=3, ge=0)
    retry_backoff_ms: int = Field(default=5 * 60 * 1000, ge=0)
    backoff_multiplier: float = Field(default=1.0, ge=1.0)

    retention_days: int = Field(default=30, ge=1)
    worker_interval_seconds: float = Field(default=60.0, gt=0)

    poll_interval_seconds: float = Field(default=60.0, gt=0)
    renotify_interval_minutes: int = Field(default=10, ge=0)
    max_per_poll: int = Field(default=3, ge=1)
    urgency_thresholds: UrgencyThresholdsConfig = Field(default_factory=UrgencyThresholdsConfig)

    icon: str = Field(default="/favicon.ico")
    badge: str = Field(default="/favicon.ico")

    @field_validator("quiet_hours_start", "quiet_hours_end", "daily_digest_time")
    @classmethod
    def _check_hhmm(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        time.fromisoformat(value)
        return value

    def lead_time_for(self, notification_type: str) -> int:
        return self.lead_time_minutes.get(notification_type, 0)


def load_settings(path: Path | None = None) -> NotificationSettings:
    """Load settings from YAML, falling back to defaults on any problem."""
    yaml_path = path or CONFIG_PATH

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return NotificationSettings.model_validate(raw.get("notifications", raw))
    except Exception as e:
        logger.warning(f"Notification settings invalid in {yaml_path}: {e}, using defaults")
        return NotificationSettings()
