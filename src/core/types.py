"""Domain types shared across the AQI notifier — readings, gate verdicts, history rows."""

from __future__ import annotations

import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Reading(BaseModel):
    """One normalised AQI snapshot plus ancillary pollutant and weather data.

    ``level`` must be derived from ``aqi``: build readings through
    ``ClassificationTable.classify`` rather than passing a level by hand. The
    level is never persisted on its own.
    """

    model_config = ConfigDict(frozen=True)

    city: str
    aqi: int
    level: str
    dominant_pollutant: str | None = None
    pollutants: dict[str, float] = Field(default_factory=dict)
    weather: dict[str, float | int] = Field(default_factory=dict)
    latitude: float | None = None
    longitude: float | None = None
    observed_at: datetime.datetime | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def temperature(self) -> float | None:
        value = self.weather.get("temperature")
        return float(value) if value is not None else None

    @property
    def humidity(self) -> int | None:
        value = self.weather.get("humidity")
        return int(value) if value is not None else None


class FetchFailureKind(StrEnum):
    """Why a metric fetch produced no reading."""

    CONNECTIVITY = "connectivity"
    UPSTREAM = "upstream"
    PARSE = "parse"


class FetchResult(BaseModel):
    """Outcome of a single metric fetch — a reading or a failure, never both."""

    city: str
    reading: Reading | None = None
    failure: FetchFailureKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.reading is not None


class SuppressReason(StrEnum):
    """Why the notification gate declined to fire."""

    QUIET_HOURS = "quiet_hours"
    LEVEL_DISABLED = "level_disabled"
    RATE_LIMITED = "rate_limited"


class GateVerdict(BaseModel):
    """Result of evaluating the notification gate."""

    notify: bool
    reason: SuppressReason | None = None
    detail: str = ""
    forced: bool = False


class NotificationStatus(StrEnum):
    """Final delivery status stored with each notification record."""

    SENT = "sent"
    FAILED = "failed"


class NotificationRecord(BaseModel):
    """Append-only log entry for one delivery outcome to one recipient."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    recipient: str
    city: str
    aqi: int
    level: str
    message: str
    status: NotificationStatus
    response: dict[str, Any] = Field(default_factory=dict)
    sent_at: datetime.datetime


class StoredReading(BaseModel):
    """A reading row as read back from history, with its level recomputed."""

    id: int
    city: str
    aqi: int
    level: str
    dominant_pollutant: str | None = None
    pollutants: dict[str, float] = Field(default_factory=dict)
    weather: dict[str, float | int] = Field(default_factory=dict)
    latitude: float | None = None
    longitude: float | None = None
    reading_time: datetime.datetime


class ReadingStatistics(BaseModel):
    """Aggregate view over readings since a cut-off."""

    count: int = 0
    average_aqi: float | None = None
    max_aqi: int | None = None
    min_aqi: int | None = None
    readings: list[StoredReading] = Field(default_factory=list)
