"""Core module — config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import setup_logging
from src.core.types import (
    FetchFailureKind,
    FetchResult,
    GateVerdict,
    NotificationRecord,
    NotificationStatus,
    Reading,
    ReadingStatistics,
    StoredReading,
    SuppressReason,
)

__all__ = [
    "FetchFailureKind",
    "FetchResult",
    "GateVerdict",
    "NotificationRecord",
    "NotificationStatus",
    "Reading",
    "ReadingStatistics",
    "Settings",
    "StoredReading",
    "SuppressReason",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
