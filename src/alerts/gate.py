"""Notification gate — quiet hours, level flag and rate limit, each returning a GateVerdict."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import ValidationError

from src.alerts.classification import ClassificationTable
from src.core.config import NotificationsConfig, QuietHoursConfig, parse_hhmm
from src.core.types import GateVerdict, Reading, SuppressReason
from src.storage.settings import (
    QUIET_HOURS_KEY,
    RATE_LIMIT_MINUTES_KEY,
    THRESHOLDS_KEY,
)

if TYPE_CHECKING:
    from src.storage.history import HistoryStore
    from src.storage.settings import SettingsStore

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ── Pure checks ─────────────────────────────────────────────────


def in_quiet_window(moment: int, start: int, end: int) -> bool:
    """Whether *moment* falls inside the inclusive window *start*..*end*.

    All three are offsets into the day in the same unit. A window whose start
    is after its end wraps past midnight.
    """
    if start > end:
        return moment >= start or moment <= end
    return start <= moment <= end


def _zone(name: str) -> datetime.tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("quiet_hours_unknown_timezone", timezone=name)
        return datetime.UTC


def is_quiet_hours(quiet: QuietHoursConfig, now: datetime.datetime) -> bool:
    """Evaluate the quiet-hours window against *now* in the configured timezone.

    Compared to the second: with an end of 07:00, 07:00:00 is quiet and
    07:00:01 is not.
    """
    if not quiet.enabled:
        return False
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.UTC)
    local = now.astimezone(_zone(quiet.timezone))
    second_of_day = local.hour * 3600 + local.minute * 60 + local.second
    return in_quiet_window(
        second_of_day,
        parse_hhmm(quiet.start) * 60,
        parse_hhmm(quiet.end) * 60,
    )


def check_quiet_hours(quiet: QuietHoursConfig, now: datetime.datetime) -> GateVerdict:
    """Reject while inside the quiet-hours window."""
    if is_quiet_hours(quiet, now):
        return GateVerdict(
            notify=False,
            reason=SuppressReason.QUIET_HOURS,
            detail=f"Quiet hours {quiet.start}-{quiet.end} ({quiet.timezone})",
        )
    return GateVerdict(notify=True)


def check_level_enabled(level: str, table: ClassificationTable) -> GateVerdict:
    """Reject if the level is unknown or has notifications switched off."""
    cfg = table.config_for(level)
    if cfg is None or not cfg.notify:
        return GateVerdict(
            notify=False,
            reason=SuppressReason.LEVEL_DISABLED,
            detail=f"Notifications disabled for level '{level}'",
        )
    return GateVerdict(notify=True)


def check_rate_limit(
    level: str,
    city: str,
    rate_limit_minutes: int,
    history: HistoryStore,
    now: datetime.datetime,
) -> GateVerdict:
    """Reject if a notification for the same (level, city) went out inside the window."""
    since = now - datetime.timedelta(minutes=rate_limit_minutes)
    if history.has_recent_notification(level=level, city=city, since=since):
        return GateVerdict(
            notify=False,
            reason=SuppressReason.RATE_LIMITED,
            detail=(
                f"'{level}' alert for {city} already sent within"
                f" the last {rate_limit_minutes} minutes"
            ),
        )
    return GateVerdict(notify=True)


# ── Gate ────────────────────────────────────────────────────────


class NotificationGate:
    """Decides whether a reading should produce an alert.

    Settings are read from the store on every evaluation. Checks run
    cheapest-first and stop at the first rejection:

    1. quiet hours
    2. level notify flag (stored ``thresholds`` over table defaults)
    3. rate limit per (level, city)

    ``force=True`` skips all three. The gate only reads state.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        history: HistoryStore,
        table: ClassificationTable,
        defaults: NotificationsConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings_store
        self._history = history
        self._table = table
        self._defaults = defaults or NotificationsConfig()
        self._clock = clock or utc_now

    def should_notify(
        self,
        reading: Reading,
        force: bool = False,
        now: datetime.datetime | None = None,
    ) -> GateVerdict:
        if force:
            return GateVerdict(notify=True, forced=True, detail="Forced notification")

        now = now or self._clock()

        verdict = check_quiet_hours(self.quiet_hours(), now)
        if not verdict.notify:
            logger.info("gate_quiet_hours", city=reading.city, aqi=reading.aqi)
            return verdict

        verdict = check_level_enabled(reading.level, self.effective_table())
        if not verdict.notify:
            logger.info(
                "gate_level_disabled",
                city=reading.city,
                aqi=reading.aqi,
                level=reading.level,
            )
            return verdict

        verdict = check_rate_limit(
            reading.level,
            reading.city,
            self.rate_limit_minutes(),
            self._history,
            now,
        )
        if not verdict.notify:
            logger.info("gate_rate_limited", city=reading.city, level=reading.level)
            return verdict

        return GateVerdict(notify=True)

    # ── Effective settings ──────────────────────────────────────

    def effective_table(self) -> ClassificationTable:
        stored: Any = self._settings.get(THRESHOLDS_KEY)
        if stored is not None and not isinstance(stored, dict):
            logger.warning("gate_invalid_setting", key=THRESHOLDS_KEY)
            return self._table
        return self._table.with_overrides(stored)

    def quiet_hours(self) -> QuietHoursConfig:
        stored = self._settings.get(QUIET_HOURS_KEY)
        if stored is None:
            return self._defaults.quiet_hours
        try:
            return QuietHoursConfig.model_validate(stored)
        except ValidationError:
            logger.warning("gate_invalid_setting", key=QUIET_HOURS_KEY)
            return self._defaults.quiet_hours

    def rate_limit_minutes(self) -> int:
        stored = self._settings.get(RATE_LIMIT_MINUTES_KEY)
        if stored is None:
            return self._defaults.rate_limit_minutes
        try:
            minutes = int(stored)
        except (TypeError, ValueError):
            minutes = 0
        if minutes < 1:
            logger.warning("gate_invalid_setting", key=RATE_LIMIT_MINUTES_KEY, value=stored)
            return self._defaults.rate_limit_minutes
        return minutes
