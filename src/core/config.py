"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

DEFAULT_MESSAGE_TEMPLATE = (
    "🌬️ *AQI Alert for {city}*\n\n"
    "📊 Current AQI: *{aqi}*\n"
    "🎯 Level: *{level}*\n"
    "🕐 Time: {timestamp}\n\n"
    "{message}\n\n"
    "🌡️ Temperature: {temperature}°C\n"
    "💧 Humidity: {humidity}%"
)


class WaqiConfig(BaseModel):
    """World Air Quality Index API configuration."""

    token: SecretStr = SecretStr("")
    base_url: str = "https://api.waqi.info"
    default_city: str = "kuala-lumpur"
    timeout_secs: float = 30.0


class WahaConfig(BaseModel):
    """WAHA (WhatsApp HTTP API) gateway configuration."""

    base_url: str = "http://localhost:3000"
    api_key: SecretStr = SecretStr("")
    session_name: str = "default"
    timeout_secs: float = 60.0
    chat_suffix: str = "@c.us"


class DeliveryConfig(BaseModel):
    """Retry, backoff and session-recovery policy for message delivery."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay_secs: float = 5.0
    exponential: bool = True
    recovery_delay_secs: float = 10.0
    restart_pause_secs: float = 2.0


class QuietHoursConfig(BaseModel):
    """Daily window during which alerts are suppressed."""

    enabled: bool = False
    start: str = "22:00"
    end: str = "07:00"
    timezone: str = "Asia/Kuala_Lumpur"

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        parse_hhmm(value)
        return value


class NotificationsConfig(BaseModel):
    """Built-in notification defaults (overridable via the settings store)."""

    default_recipient: str = ""
    rate_limit_minutes: int = Field(default=60, ge=1)
    quiet_hours: QuietHoursConfig = QuietHoursConfig()
    message_template: str = DEFAULT_MESSAGE_TEMPLATE


class LevelConfig(BaseModel):
    """One AQI severity tier."""

    key: str
    min: int
    max: int
    color: str = ""
    message: str = ""
    notify: bool = False


def _default_levels() -> list[LevelConfig]:
    return [
        LevelConfig(
            key="good", min=0, max=50, color="green",
            message="Air quality is good. Enjoy outdoor activities!",
            notify=False,
        ),
        LevelConfig(
            key="moderate", min=51, max=100, color="yellow",
            message=(
                "Air quality is moderate. Sensitive people should consider"
                " limiting outdoor activities."
            ),
            notify=False,
        ),
        LevelConfig(
            key="unhealthy_sensitive", min=101, max=150, color="orange",
            message=(
                "Air quality is unhealthy for sensitive groups. Children, elderly,"
                " and people with respiratory conditions should limit outdoor"
                " activities."
            ),
            notify=True,
        ),
        LevelConfig(
            key="unhealthy", min=151, max=200, color="red",
            message=(
                "Air quality is unhealthy. Everyone should limit outdoor"
                " activities and consider wearing masks."
            ),
            notify=True,
        ),
        LevelConfig(
            key="very_unhealthy", min=201, max=300, color="purple",
            message=(
                "Air quality is very unhealthy. Avoid outdoor activities. Stay"
                " indoors and use air purifiers if available."
            ),
            notify=True,
        ),
        LevelConfig(
            key="hazardous", min=301, max=500, color="maroon",
            message=(
                "Air quality is hazardous. Emergency conditions. Avoid all"
                " outdoor activities."
            ),
            notify=True,
        ),
    ]


class ClassificationConfig(BaseModel):
    """AQI level table, ordered from least to most severe."""

    levels: list[LevelConfig] = Field(default_factory=_default_levels)


class StorageConfig(BaseModel):
    """SQLite persistence configuration."""

    database_path: str = "data/aqi_notifier.db"


class SchedulerConfig(BaseModel):
    """Periodic check configuration."""

    interval_minutes: float = 15.0
    city: str | None = None
    run_on_start: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    waqi: WaqiConfig = WaqiConfig()
    waha: WahaConfig = WahaConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    classification: ClassificationConfig = ClassificationConfig()
    storage: StorageConfig = StorageConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    logging: LoggingConfig = LoggingConfig()


def parse_hhmm(value: str) -> int:
    """Parse an ``HH:MM`` string into minutes since midnight.

    Raises:
        ValueError: If the string is not a valid 24h time.
    """
    hours_str, sep, minutes_str = value.partition(":")
    if not sep or not hours_str.isdigit() or not minutes_str.isdigit():
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hours, minutes = int(hours_str), int(minutes_str)
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
