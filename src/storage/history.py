"""Append-only history of AQI readings and notification outcomes."""

from __future__ import annotations

import datetime
import json
import sqlite3
from typing import Any

import structlog

from src.alerts.classification import ClassificationTable
from src.core.types import (
    NotificationRecord,
    NotificationStatus,
    Reading,
    ReadingStatistics,
    StoredReading,
)
from src.storage.database import Database, from_db_time, to_db_time

logger = structlog.get_logger(__name__)

_POLLUTANT_COLUMNS = ("pm25", "pm10", "o3", "no2", "so2", "co")
_WEATHER_COLUMNS = ("temperature", "humidity", "pressure", "wind_speed")


class HistoryStore:
    """Readings and notification records, written once and never updated.

    Write methods return the new row id, or ``None`` when the write failed;
    failures are logged rather than raised so a cycle can carry on.
    """

    def __init__(self, db: Database, table: ClassificationTable) -> None:
        self._db = db
        self._table = table

    # ── Writes ──────────────────────────────────────────────────

    def record_reading(
        self,
        reading: Reading,
        recorded_at: datetime.datetime | None = None,
    ) -> int | None:
        now = recorded_at or datetime.datetime.now(datetime.UTC)
        reading_time = reading.observed_at
        if reading_time is None or reading_time.tzinfo is None:
            # Naive provider times are station-local.
            reading_time = now
        values: dict[str, Any] = {
            "city": reading.city,
            "aqi_value": reading.aqi,
            "dominant_pollutant": reading.dominant_pollutant,
            "latitude": reading.latitude,
            "longitude": reading.longitude,
            "reading_time": to_db_time(reading_time),
            "raw_response": json.dumps(reading.raw, default=str),
            "created_at": to_db_time(now),
        }
        for column in _POLLUTANT_COLUMNS:
            values[column] = reading.pollutants.get(column)
        for column in _WEATHER_COLUMNS:
            values[column] = reading.weather.get(column)

        columns = ", ".join(values)
        placeholders = ", ".join(f":{name}" for name in values)
        try:
            with self._db.conn:
                cursor = self._db.conn.execute(
                    f"INSERT INTO readings ({columns}) VALUES ({placeholders})",  # noqa: S608
                    values,
                )
        except sqlite3.Error as exc:
            logger.error(
                "reading_store_failed",
                city=reading.city,
                aqi=reading.aqi,
                error=str(exc),
            )
            return None
        return cursor.lastrowid

    def record_notification(self, record: NotificationRecord) -> int | None:
        try:
            with self._db.conn:
                cursor = self._db.conn.execute(
                    """
                    INSERT INTO notification_logs
                    (recipient, city, aqi_value, aqi_level, message_content,
                     status, response_data, sent_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.recipient,
                        record.city,
                        record.aqi,
                        record.level,
                        record.message,
                        record.status.value,
                        json.dumps(record.response, default=str),
                        to_db_time(record.sent_at),
                    ),
                )
        except sqlite3.Error as exc:
            logger.error(
                "notification_store_failed",
                recipient=record.recipient,
                city=record.city,
                level=record.level,
                error=str(exc),
            )
            return None
        return cursor.lastrowid

    # ── Queries ─────────────────────────────────────────────────

    def has_recent_notification(
        self, level: str, city: str, since: datetime.datetime
    ) -> bool:
        """Whether any record for (*level*, *city*) was sent after *since*."""
        row = self._db.conn.execute(
            """
            SELECT 1 FROM notification_logs
            WHERE aqi_level = ? AND city = ? AND sent_at > ?
            LIMIT 1
            """,
            (level, city, to_db_time(since)),
        ).fetchone()
        return row is not None

    def recent_notifications(self, limit: int = 50) -> list[NotificationRecord]:
        rows = self._db.conn.execute(
            "SELECT * FROM notification_logs ORDER BY sent_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_record(row) for row in rows]

    def readings_since(self, since: datetime.datetime) -> list[StoredReading]:
        rows = self._db.conn.execute(
            "SELECT * FROM readings WHERE reading_time >= ? ORDER BY reading_time ASC, id ASC",
            (to_db_time(since),),
        ).fetchall()
        return [self._row_to_reading(row) for row in rows]

    def reading_statistics(self, since: datetime.datetime) -> ReadingStatistics:
        row = self._db.conn.execute(
            """
            SELECT COUNT(*) AS n, AVG(aqi_value) AS avg_aqi,
                   MAX(aqi_value) AS max_aqi, MIN(aqi_value) AS min_aqi
            FROM readings WHERE reading_time >= ?
            """,
            (to_db_time(since),),
        ).fetchone()
        if not row["n"]:
            return ReadingStatistics()
        return ReadingStatistics(
            count=row["n"],
            average_aqi=round(row["avg_aqi"], 1),
            max_aqi=row["max_aqi"],
            min_aqi=row["min_aqi"],
            readings=self.readings_since(since),
        )

    def _row_to_reading(self, row: sqlite3.Row) -> StoredReading:
        pollutants = {
            column: float(row[column])
            for column in _POLLUTANT_COLUMNS
            if row[column] is not None
        }
        weather = {
            column: row[column]
            for column in _WEATHER_COLUMNS
            if row[column] is not None
        }
        return StoredReading(
            id=row["id"],
            city=row["city"],
            aqi=row["aqi_value"],
            level=self._table.level_for(row["aqi_value"]),
            dominant_pollutant=row["dominant_pollutant"],
            pollutants=pollutants,
            weather=weather,
            latitude=row["latitude"],
            longitude=row["longitude"],
            reading_time=from_db_time(row["reading_time"]),
        )


def _row_to_record(row: sqlite3.Row) -> NotificationRecord:
    response: dict[str, Any] = {}
    if row["response_data"]:
        try:
            loaded = json.loads(row["response_data"])
            if isinstance(loaded, dict):
                response = loaded
        except ValueError:
            pass
    return NotificationRecord(
        id=row["id"],
        recipient=row["recipient"],
        city=row["city"],
        aqi=row["aqi_value"],
        level=row["aqi_level"],
        message=row["message_content"],
        status=NotificationStatus(row["status"]),
        response=response,
        sent_at=from_db_time(row["sent_at"]),
    )
