"""Check-and-notify orchestrator — one fetch → classify → gate → deliver cycle."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from src.alerts.classification import ClassificationTable
from src.alerts.gate import NotificationGate, utc_now
from src.core.config import NotificationsConfig, QuietHoursConfig
from src.core.types import (
    NotificationRecord,
    NotificationStatus,
    Reading,
    ReadingStatistics,
)
from src.feeds.base import MetricSource
from src.monitor.delivery import DeliveryEngine
from src.monitor.formatters import format_reading_alert
from src.monitor.types import CycleReport, DeliveryResult
from src.storage.history import HistoryStore
from src.storage.settings import (
    QUIET_HOURS_KEY,
    RATE_LIMIT_MINUTES_KEY,
    RECIPIENTS_KEY,
    THRESHOLDS_KEY,
    SettingsStore,
)

logger = structlog.get_logger(__name__)


class AqiNotifier:
    """Ties the source, gate, stores and delivery engine into one cycle.

    ``run_cycle`` is the single externally triggered entry point. It does not
    serialise itself: callers must ensure at most one cycle runs at a time per
    deployment (see ``CheckScheduler``), otherwise overlapping cycles can both
    pass the rate-limit check.

    Usage::

        notifier = AqiNotifier(source, gate, delivery, settings_store, history, table)
        report = await notifier.run_cycle(force=False)
    """

    def __init__(
        self,
        source: MetricSource,
        gate: NotificationGate,
        delivery: DeliveryEngine,
        settings_store: SettingsStore,
        history: HistoryStore,
        table: ClassificationTable,
        defaults: NotificationsConfig | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._source = source
        self._gate = gate
        self._delivery = delivery
        self._settings = settings_store
        self._history = history
        self._table = table
        self._defaults = defaults or NotificationsConfig()
        self._clock = clock or utc_now

    @property
    def delivery(self) -> DeliveryEngine:
        return self._delivery

    # ── Cycle ───────────────────────────────────────────────────

    async def run_cycle(
        self,
        city: str | None = None,
        recipients: list[str] | None = None,
        force: bool = False,
    ) -> CycleReport:
        """Fetch, persist, gate and deliver. Never raises."""
        log = logger.bind(city=city or self._source.default_city, force=force)
        log.info("cycle_started")
        try:
            report = await self._run_cycle(city, recipients, force)
        except Exception as exc:
            log.exception("cycle_unexpected_error")
            return CycleReport(success=False, message=f"Unexpected error: {exc}")

        log.info(
            "cycle_finished",
            success=report.success,
            message=report.message,
            sent=report.sent_count,
            failed=report.failed_count,
        )
        return report

    async def _run_cycle(
        self,
        city: str | None,
        recipients: list[str] | None,
        force: bool,
    ) -> CycleReport:
        fetched = await self._source.fetch(city)
        reading = fetched.reading
        if reading is None:
            return CycleReport(
                success=False,
                message=f"Failed to fetch AQI data: {fetched.detail or fetched.failure}",
            )

        reading_id = self._history.record_reading(reading)

        verdict = self._gate.should_notify(reading, force=force)
        if not verdict.notify:
            return CycleReport(
                success=True,
                message=f"AQI checked, no notification needed ({verdict.detail})",
                reading=reading,
                reading_id=reading_id,
                verdict=verdict,
            )

        targets = self.resolve_recipients(recipients)
        if not targets:
            logger.error("cycle_no_recipients", city=reading.city)
            return CycleReport(
                success=False,
                message="No recipients configured",
                reading=reading,
                reading_id=reading_id,
                verdict=verdict,
            )

        message = self.render_message(reading)
        deliveries = await self._delivery.send_all(targets, message)
        for delivery in deliveries:
            self._record_delivery(reading, message, delivery)

        return CycleReport(
            success=True,
            message="AQI checked and notifications processed",
            reading=reading,
            reading_id=reading_id,
            verdict=verdict,
            deliveries=deliveries,
        )

    def resolve_recipients(self, override: list[str] | None = None) -> list[str]:
        """Explicit override, else stored recipients, else the configured fallback."""
        if override:
            return list(override)
        stored = self._settings.get(RECIPIENTS_KEY)
        if isinstance(stored, list):
            recipients = [str(r) for r in stored if r]
            if recipients:
                return recipients
        if self._defaults.default_recipient:
            return [self._defaults.default_recipient]
        return []

    def render_message(self, reading: Reading) -> str:
        table = self._gate.effective_table()
        return format_reading_alert(
            reading,
            table.config_for(reading.level),
            self._defaults.message_template,
        )

    def _record_delivery(
        self, reading: Reading, message: str, delivery: DeliveryResult
    ) -> None:
        record = NotificationRecord(
            recipient=delivery.recipient,
            city=reading.city,
            aqi=reading.aqi,
            level=reading.level,
            message=message,
            status=NotificationStatus.SENT if delivery.success else NotificationStatus.FAILED,
            response={
                **delivery.response,
                "attempts": delivery.attempts,
                "session_recovered": delivery.session_recovered,
            },
            sent_at=self._clock(),
        )
        self._history.record_notification(record)

    # ── Settings ────────────────────────────────────────────────

    def get_setting(self, key: str) -> Any:
        """Stored value for *key*, or its built-in default."""
        defaults: dict[str, Any] = {
            THRESHOLDS_KEY: self._table.as_thresholds(),
            RECIPIENTS_KEY: [],
            QUIET_HOURS_KEY: self._defaults.quiet_hours.model_dump(),
            RATE_LIMIT_MINUTES_KEY: self._defaults.rate_limit_minutes,
        }
        return self._settings.get(key, defaults.get(key))

    def update_setting(self, key: str, value: Any, description: str | None = None) -> bool:
        """Validate and store a setting. Returns False on invalid input or write failure."""
        try:
            value = _validate_setting(key, value, self._table)
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("setting_rejected", key=key, error=str(exc))
            return False
        return self._settings.set(key, value, description)

    # ── History ─────────────────────────────────────────────────

    def recent_notifications(self, limit: int = 50) -> list[NotificationRecord]:
        return self._history.recent_notifications(limit)

    def statistics(self, days: int = 7) -> ReadingStatistics:
        since = self._clock() - datetime.timedelta(days=days)
        return self._history.reading_statistics(since)

    async def send_test_notification(self, recipient: str) -> DeliveryResult:
        return await self._delivery.send_test_message(recipient)


def _validate_setting(key: str, value: Any, table: ClassificationTable) -> Any:
    """Normalise known setting keys; unknown keys are stored as given."""
    if key == RATE_LIMIT_MINUTES_KEY:
        if isinstance(value, bool):
            raise TypeError("rate_limit_minutes must be an integer")
        minutes = int(value)
        if minutes < 1:
            raise ValueError("rate_limit_minutes must be at least 1")
        return minutes

    if key == QUIET_HOURS_KEY:
        return QuietHoursConfig.model_validate(value).model_dump()

    if key == RECIPIENTS_KEY:
        if not isinstance(value, list):
            raise TypeError("recipients must be a list")
        return [str(r).strip() for r in value if str(r).strip()]

    if key == THRESHOLDS_KEY:
        return table.validate_overrides(value)

    return value
