"""Alert decisioning — AQI level classification and the notification gate."""

from src.alerts.classification import ClassificationTable, LevelOverride
from src.alerts.gate import (
    NotificationGate,
    check_level_enabled,
    check_quiet_hours,
    check_rate_limit,
    in_quiet_window,
    is_quiet_hours,
)

__all__ = [
    "ClassificationTable",
    "LevelOverride",
    "NotificationGate",
    "check_level_enabled",
    "check_quiet_hours",
    "check_rate_limit",
    "in_quiet_window",
    "is_quiet_hours",
]
