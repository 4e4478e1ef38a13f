"""Delivery, orchestration and scheduling of AQI alerts."""

from src.monitor.delivery import (
    DeliveryEngine,
    backoff_delay,
    format_recipient_id,
    is_session_error,
)
from src.monitor.factory import NotifierStack, create_notifier_stack, create_scheduler
from src.monitor.formatters import format_reading_alert, format_test_message, render_template
from src.monitor.notifier import AqiNotifier
from src.monitor.scheduler import CheckScheduler
from src.monitor.types import CycleReport, DeliveryResult

__all__ = [
    "AqiNotifier",
    "CheckScheduler",
    "CycleReport",
    "DeliveryEngine",
    "DeliveryResult",
    "NotifierStack",
    "backoff_delay",
    "create_notifier_stack",
    "create_scheduler",
    "format_reading_alert",
    "format_recipient_id",
    "format_test_message",
    "is_session_error",
    "render_template",
]
