"""Pure functions that render readings into outgoing message text."""

from __future__ import annotations

import datetime

from src.alerts.classification import ClassificationTable
from src.core.config import DEFAULT_MESSAGE_TEMPLATE, LevelConfig
from src.core.types import Reading

NOT_AVAILABLE = "N/A"
NO_ADVICE = "No specific advice available."
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _fmt_number(value: float | int | None) -> str:
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_template(template: str, fields: dict[str, str]) -> str:
    """Substitute ``{name}`` placeholders in a single pass.

    Unknown placeholders and stray braces are left untouched, so templates may
    contain literal ``{`` characters.
    """
    out: list[str] = []
    i = 0
    while i < len(template):
        if template[i] == "{":
            close = template.find("}", i + 1)
            if close != -1:
                name = template[i + 1:close]
                if name in fields:
                    out.append(fields[name])
                    i = close + 1
                    continue
        out.append(template[i])
        i += 1
    return "".join(out)


def alert_fields(reading: Reading, level: LevelConfig | None) -> dict[str, str]:
    """Template substitutions for an AQI alert."""
    observed = (
        reading.observed_at.strftime(TIME_FORMAT)
        if reading.observed_at is not None
        else NOT_AVAILABLE
    )
    advice = level.message if level is not None and level.message else NO_ADVICE
    return {
        "city": reading.city,
        "aqi": str(reading.aqi),
        "level": ClassificationTable.display_name(reading.level),
        "timestamp": observed,
        "message": advice,
        "temperature": _fmt_number(reading.temperature),
        "humidity": _fmt_number(reading.humidity),
    }


def format_reading_alert(
    reading: Reading,
    level: LevelConfig | None,
    template: str = DEFAULT_MESSAGE_TEMPLATE,
) -> str:
    """Render the alert body for *reading* using the level's advice text."""
    return render_template(template, alert_fields(reading, level))


def format_test_message(now: datetime.datetime | None = None) -> str:
    """Body of the connectivity test message."""
    sent_at = (now or datetime.datetime.now()).strftime(TIME_FORMAT)
    return (
        "🤖 *AQI Notifier Test*\n\n"
        "This is a test message from your AQI notification system.\n\n"
        "If you received this message, your WhatsApp integration is working"
        " correctly!\n\n"
        f"⏰ Sent at: {sent_at}"
    )
