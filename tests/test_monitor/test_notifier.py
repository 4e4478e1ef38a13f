"""Tests for AqiNotifier — the check-and-notify cycle end to end with fakes."""

from __future__ import annotations

import datetime
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.alerts.classification import ClassificationTable
from src.alerts.gate import NotificationGate
from src.core.config import ClassificationConfig, DeliveryConfig, NotificationsConfig
from src.core.types import NotificationStatus, Reading, SuppressReason
from src.feeds.base import MetricSource
from src.feeds.exceptions import FeedConnectionError
from src.monitor.delivery import DeliveryEngine
from src.monitor.notifier import AqiNotifier
from src.storage.database import Database
from src.storage.history import HistoryStore
from src.storage.settings import SettingsStore
from src.waha.client import MessagingChannel
from src.waha.types import ChannelResponse, QrCode, SendResponse, SessionState, SessionStatus

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)


# ── Helpers ─────────────────────────────────────────────────────


class FixedSource(MetricSource):
    """Source that always returns the same AQI, or raises a connection error."""

    def __init__(self, table: ClassificationTable, aqi: int = 160, fail: bool = False) -> None:
        super().__init__(table=table, default_city="kuala-lumpur")
        self.aqi = aqi
        self.fail = fail

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def fetch_raw(self, city: str) -> dict[str, Any]:
        if self.fail:
            raise FeedConnectionError("Connection refused")
        return {"aqi": self.aqi, "city": city}

    def parse(self, payload: dict[str, Any]) -> Reading:
        return self.table.classify(
            payload["aqi"],
            city="Kuala Lumpur",
            weather={"temperature": 31.5, "humidity": 88},
            observed_at=NOW,
        )


class RecordingChannel(MessagingChannel):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    @property
    def session_name(self) -> str:
        return "default"

    async def get_session_status(self) -> SessionStatus:
        return SessionStatus(name="default", status=SessionState.WORKING)

    async def start_session(self) -> ChannelResponse:
        return ChannelResponse(success=True)

    async def stop_session(self) -> ChannelResponse:
        return ChannelResponse(success=True)

    async def get_qr_code(self) -> QrCode:
        return QrCode(success=False, error="already paired")

    async def send_text(self, chat_id: str, text: str) -> SendResponse:
        self.sent.append((chat_id, text))
        if self.fail:
            return SendResponse(success=False, error="Internal error", http_status=500)
        message_id = f"id-{len(self.sent)}"
        return SendResponse(
            success=True,
            message_id=message_id,
            data={"id": message_id, "ack": 1, "timestamp": 1772366400},
        )

    async def close(self) -> None:
        pass


async def _no_sleep(delay: float) -> None:
    pass


@pytest.fixture()
def db() -> Iterator[Database]:
    database = Database(":memory:")
    database.connect()
    yield database
    database.close()


def _build(
    db: Database,
    aqi: int = 160,
    fetch_fails: bool = False,
    send_fails: bool = False,
    default_recipient: str = "",
) -> tuple[AqiNotifier, RecordingChannel, HistoryStore, SettingsStore]:
    table = ClassificationTable(ClassificationConfig().levels)
    store = SettingsStore(db)
    history = HistoryStore(db, table)
    defaults = NotificationsConfig(default_recipient=default_recipient)
    channel = RecordingChannel(fail=send_fails)
    gate = NotificationGate(store, history, table, defaults=defaults, clock=lambda: NOW)
    delivery = DeliveryEngine(channel, config=DeliveryConfig(max_attempts=2), sleep=_no_sleep)
    notifier = AqiNotifier(
        source=FixedSource(table, aqi=aqi, fail=fetch_fails),
        gate=gate,
        delivery=delivery,
        settings_store=store,
        history=history,
        table=table,
        defaults=defaults,
        clock=lambda: NOW,
    )
    return notifier, channel, history, store


# ── run_cycle ───────────────────────────────────────────────────


class TestRunCycle:
    async def test_unhealthy_reading_notifies_recipient(self, db: Database) -> None:
        notifier, channel, history, store = _build(db)
        store.set("recipients", ["+60 12-345 6789"])

        report = await notifier.run_cycle()

        assert report.success is True
        assert report.message == "AQI checked and notifications processed"
        assert report.reading is not None
        assert report.reading.level == "unhealthy"
        assert report.reading_id is not None
        assert report.sent_count == 1
        assert channel.sent[0][0] == "60123456789@c.us"
        assert "Current AQI: *160*" in channel.sent[0][1]

        [record] = history.recent_notifications()
        assert record.status == NotificationStatus.SENT
        assert record.level == "unhealthy"
        assert record.city == "Kuala Lumpur"
        assert record.recipient == "+60 12-345 6789"
        assert record.sent_at == NOW
        assert len(history.readings_since(NOW - datetime.timedelta(hours=1))) == 1

    async def test_record_keeps_channel_response_body(self, db: Database) -> None:
        notifier, _, history, store = _build(db)
        store.set("recipients", ["60123456789"])

        await notifier.run_cycle()

        [record] = history.recent_notifications()
        assert record.response["success"] is True
        assert record.response["message_id"] == "id-1"
        assert record.response["data"] == {"id": "id-1", "ack": 1, "timestamp": 1772366400}
        assert record.response["attempts"] == 1
        assert record.response["session_recovered"] is False

    async def test_second_cycle_is_rate_limited(self, db: Database) -> None:
        notifier, channel, _, store = _build(db)
        store.set("recipients", ["60123456789"])
        await notifier.run_cycle()

        report = await notifier.run_cycle()

        assert report.success is True
        assert report.verdict is not None
        assert report.verdict.reason == SuppressReason.RATE_LIMITED
        assert report.message.startswith("AQI checked, no notification needed")
        assert len(channel.sent) == 1

    async def test_force_bypasses_rate_limit(self, db: Database) -> None:
        notifier, channel, _, store = _build(db)
        store.set("recipients", ["60123456789"])
        await notifier.run_cycle()
        report = await notifier.run_cycle(force=True)
        assert report.sent_count == 1
        assert len(channel.sent) == 2

    async def test_good_reading_not_notified(self, db: Database) -> None:
        notifier, channel, history, store = _build(db, aqi=45)
        store.set("recipients", ["60123456789"])

        report = await notifier.run_cycle()

        assert report.success is True
        assert report.verdict is not None
        assert report.verdict.reason == SuppressReason.LEVEL_DISABLED
        assert channel.sent == []
        assert history.recent_notifications() == []
        assert report.reading_id is not None

    async def test_fetch_failure(self, db: Database) -> None:
        notifier, channel, history, _ = _build(db, fetch_fails=True)
        report = await notifier.run_cycle()
        assert report.success is False
        assert report.message == "Failed to fetch AQI data: Connection refused"
        assert report.reading is None
        assert channel.sent == []
        assert history.readings_since(NOW - datetime.timedelta(days=1)) == []

    async def test_no_recipients(self, db: Database) -> None:
        notifier, channel, history, _ = _build(db)
        report = await notifier.run_cycle()
        assert report.success is False
        assert report.message == "No recipients configured"
        assert report.reading is not None
        assert channel.sent == []
        assert history.recent_notifications() == []

    async def test_default_recipient_fallback(self, db: Database) -> None:
        notifier, channel, _, _ = _build(db, default_recipient="60111111111")
        report = await notifier.run_cycle()
        assert report.sent_count == 1
        assert channel.sent[0][0] == "60111111111@c.us"

    async def test_recipient_override(self, db: Database) -> None:
        notifier, channel, _, store = _build(db)
        store.set("recipients", ["60123456789"])
        await notifier.run_cycle(recipients=["60999999999"])
        assert [chat for chat, _ in channel.sent] == ["60999999999@c.us"]

    async def test_failed_delivery_recorded(self, db: Database) -> None:
        notifier, _, history, store = _build(db, send_fails=True)
        store.set("recipients", ["60123456789", "60198765432"])

        report = await notifier.run_cycle()

        assert report.success is True
        assert report.failed_count == 2
        records = history.recent_notifications()
        assert len(records) == 2
        assert {r.status for r in records} == {NotificationStatus.FAILED}
        assert records[0].response["attempts"] == 2
        assert records[0].response["http_status"] == 500
        assert records[0].response["error"] == "Internal error"

    async def test_unexpected_error_caught(self, db: Database) -> None:
        notifier, _, _, _ = _build(db)
        notifier._source.fetch = AsyncMock(side_effect=RuntimeError("kaboom"))  # type: ignore[method-assign]
        report = await notifier.run_cycle()
        assert report.success is False
        assert report.message == "Unexpected error: kaboom"


# ── Settings ────────────────────────────────────────────────────


class TestSettings:
    def test_get_setting_defaults(self, db: Database) -> None:
        notifier, _, _, _ = _build(db)
        assert notifier.get_setting("rate_limit_minutes") == 60
        assert notifier.get_setting("recipients") == []
        assert notifier.get_setting("quiet_hours")["start"] == "22:00"
        assert notifier.get_setting("thresholds")["unhealthy"]["notify"] is True
        assert notifier.get_setting("something_else") is None

    def test_update_and_read_back(self, db: Database) -> None:
        notifier, _, _, _ = _build(db)
        assert notifier.update_setting("rate_limit_minutes", "30") is True
        assert notifier.get_setting("rate_limit_minutes") == 30

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("rate_limit_minutes", 0),
            ("rate_limit_minutes", True),
            ("rate_limit_minutes", "soon"),
            ("quiet_hours", {"start": "25:00"}),
            ("recipients", "60123456789"),
            ("thresholds", {"catastrophic": {"notify": True}}),
            ("thresholds", {"good": True}),
            ("thresholds", {"good": {"notify": "false"}}),
            ("thresholds", {"moderate": {"message": 123}}),
        ],
    )
    def test_invalid_values_rejected(self, db: Database, key: str, value: Any) -> None:
        notifier, _, _, store = _build(db)
        assert notifier.update_setting(key, value) is False
        assert store.get(key) is None

    def test_quiet_hours_normalised(self, db: Database) -> None:
        notifier, _, _, store = _build(db)
        assert notifier.update_setting("quiet_hours", {"enabled": True}) is True
        stored = store.get("quiet_hours")
        assert stored == {
            "enabled": True,
            "start": "22:00",
            "end": "07:00",
            "timezone": "Asia/Kuala_Lumpur",
        }

    def test_recipients_stripped(self, db: Database) -> None:
        notifier, _, _, store = _build(db)
        notifier.update_setting("recipients", [" 60123456789 ", "", "60198765432"])
        assert store.get("recipients") == ["60123456789", "60198765432"]


# ── History & test messages ─────────────────────────────────────


class TestHistoryViews:
    async def test_statistics_and_recent(self, db: Database) -> None:
        notifier, _, _, store = _build(db)
        store.set("recipients", ["60123456789"])
        await notifier.run_cycle()
        stats = notifier.statistics(days=7)
        assert stats.count == 1
        assert stats.max_aqi == 160
        assert len(notifier.recent_notifications()) == 1

    async def test_send_test_notification(self, db: Database) -> None:
        notifier, channel, history, _ = _build(db)
        result = await notifier.send_test_notification("60123456789")
        assert result.success is True
        assert "AQI Notifier Test" in channel.sent[0][1]
        assert history.recent_notifications() == []
