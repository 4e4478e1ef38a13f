"""SQLite connection management and schema for settings and history tables."""

from __future__ import annotations

import datetime
import sqlite3
from pathlib import Path
from types import TracebackType

import structlog

from src.storage.exceptions import StorageNotConnectedError

logger = structlog.get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    description TEXT,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS readings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    city TEXT NOT NULL,
    aqi_value INTEGER NOT NULL,
    dominant_pollutant TEXT,
    pm25 REAL,
    pm10 REAL,
    o3 REAL,
    no2 REAL,
    so2 REAL,
    co REAL,
    temperature REAL,
    humidity INTEGER,
    pressure INTEGER,
    wind_speed REAL,
    latitude REAL,
    longitude REAL,
    reading_time TEXT NOT NULL,
    raw_response TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_readings_reading_time
    ON readings(reading_time);
CREATE INDEX IF NOT EXISTS idx_readings_city
    ON readings(city);

CREATE TABLE IF NOT EXISTS notification_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    recipient TEXT NOT NULL,
    city TEXT NOT NULL,
    aqi_value INTEGER NOT NULL,
    aqi_level TEXT NOT NULL,
    message_content TEXT NOT NULL,
    status TEXT NOT NULL,
    response_data TEXT,
    sent_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notification_logs_level_city_sent
    ON notification_logs(aqi_level, city, sent_at);
CREATE INDEX IF NOT EXISTS idx_notification_logs_sent_at
    ON notification_logs(sent_at);
"""


def to_db_time(value: datetime.datetime) -> str:
    """Serialise a datetime as a UTC ISO string that sorts lexically.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime.datetime:
    return datetime.datetime.fromisoformat(value)


class Database:
    """Owns the SQLite connection shared by the settings and history stores.

    Usage::

        with Database("data/aqi_notifier.db") as db:
            settings = SettingsStore(db)
            history = HistoryStore(db, table)
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> sqlite3.Connection:
        """The open connection, raising if not connected."""
        if self._conn is None:
            raise StorageNotConnectedError("Database not connected. Call connect() first.")
        return self._conn

    def connect(self) -> None:
        """Open the database file (creating parent dirs) and ensure the schema."""
        if self._conn is not None:
            return
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info("database_connected", path=self._path)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("database_closed", path=self._path)

    def __enter__(self) -> Database:
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
