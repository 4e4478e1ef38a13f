"""Durable key → JSON value settings store."""

from __future__ import annotations

import datetime
import json
import sqlite3
from typing import Any

import structlog

from src.storage.database import Database, to_db_time

logger = structlog.get_logger(__name__)

THRESHOLDS_KEY = "thresholds"
RECIPIENTS_KEY = "recipients"
QUIET_HOURS_KEY = "quiet_hours"
RATE_LIMIT_MINUTES_KEY = "rate_limit_minutes"

KNOWN_KEYS = (
    THRESHOLDS_KEY,
    RECIPIENTS_KEY,
    QUIET_HOURS_KEY,
    RATE_LIMIT_MINUTES_KEY,
)


class SettingsStore:
    """User-editable settings persisted as JSON values.

    Nothing is cached: every ``get`` reads the current row. Keys never expire.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for *key*, or *default* when absent or unreadable."""
        try:
            row = self._db.conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error("setting_read_failed", key=key, error=str(exc))
            return default
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError:
            logger.warning("setting_invalid_json", key=key)
            return default

    def set(self, key: str, value: Any, description: str | None = None) -> bool:
        """Insert or replace *key*. Returns False if the write failed."""
        try:
            payload = json.dumps(value)
            with self._db.conn:
                self._db.conn.execute(
                    """
                    INSERT INTO settings (key, value, description, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        description = COALESCE(excluded.description, settings.description),
                        updated_at = excluded.updated_at
                    """,
                    (key, payload, description, to_db_time(datetime.datetime.now(datetime.UTC))),
                )
        except (sqlite3.Error, TypeError, ValueError) as exc:
            logger.error("setting_store_failed", key=key, error=str(exc))
            return False
        logger.info("setting_updated", key=key)
        return True

    def delete(self, key: str) -> bool:
        """Remove *key* so that it falls back to its built-in default."""
        try:
            with self._db.conn:
                self._db.conn.execute("DELETE FROM settings WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            logger.error("setting_delete_failed", key=key, error=str(exc))
            return False
        logger.info("setting_deleted", key=key)
        return True

    def all(self) -> dict[str, Any]:
        """Every stored setting, keyed by name."""
        rows = self._db.conn.execute("SELECT key, value FROM settings ORDER BY key").fetchall()
        result: dict[str, Any] = {}
        for row in rows:
            try:
                result[row["key"]] = json.loads(row["value"])
            except ValueError:
                logger.warning("setting_invalid_json", key=row["key"])
        return result
