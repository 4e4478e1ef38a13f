"""SQLite persistence — settings and append-only history."""

from src.storage.database import Database
from src.storage.exceptions import StorageError, StorageNotConnectedError
from src.storage.history import HistoryStore
from src.storage.settings import (
    KNOWN_KEYS,
    QUIET_HOURS_KEY,
    RATE_LIMIT_MINUTES_KEY,
    RECIPIENTS_KEY,
    THRESHOLDS_KEY,
    SettingsStore,
)

__all__ = [
    "Database",
    "HistoryStore",
    "KNOWN_KEYS",
    "QUIET_HOURS_KEY",
    "RATE_LIMIT_MINUTES_KEY",
    "RECIPIENTS_KEY",
    "SettingsStore",
    "StorageError",
    "StorageNotConnectedError",
    "THRESHOLDS_KEY",
]
