"""Tests for DeliveryEngine — retry schedule, session recovery, recipient formatting."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.core.config import DeliveryConfig
from src.monitor.delivery import (
    DeliveryEngine,
    backoff_delay,
    format_recipient_id,
    is_session_error,
)
from src.waha.client import MessagingChannel
from src.waha.types import (
    ChannelResponse,
    QrCode,
    SendResponse,
    SessionState,
    SessionStatus,
)

SESSION_ERROR = SendResponse(
    success=False,
    error="Session status is not as expected. Try again later or restart the session",
    http_status=422,
)
SERVER_ERROR = SendResponse(success=False, error="Internal error", http_status=500)
SENT = SendResponse(success=True, message_id="msg-1")


# ── Helpers ─────────────────────────────────────────────────────


class FakeChannel(MessagingChannel):
    """Channel that replays scripted send responses and counts lifecycle calls."""

    def __init__(
        self,
        responses: list[SendResponse] | None = None,
        start_success: bool = True,
        status: SessionState = SessionState.WORKING,
    ) -> None:
        self._responses = list(responses or [])
        self._start_success = start_success
        self._status = status
        self.sent: list[tuple[str, str]] = []
        self.stop_calls = 0
        self.start_calls = 0
        self.closed = False

    @property
    def session_name(self) -> str:
        return "default"

    async def get_session_status(self) -> SessionStatus:
        return SessionStatus(name="default", status=self._status)

    async def start_session(self) -> ChannelResponse:
        self.start_calls += 1
        if self._start_success:
            return ChannelResponse(success=True, message="started")
        return ChannelResponse(success=False, message="failed", error="cannot start")

    async def stop_session(self) -> ChannelResponse:
        self.stop_calls += 1
        return ChannelResponse(success=True, message="stopped")

    async def get_qr_code(self) -> QrCode:
        return QrCode(success=True, image="aGVsbG8=", mimetype="image/png")

    async def send_text(self, chat_id: str, text: str) -> SendResponse:
        self.sent.append((chat_id, text))
        if self._responses:
            return self._responses.pop(0)
        return SENT

    async def close(self) -> None:
        self.closed = True


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _engine(
    channel: MessagingChannel, **config: object
) -> tuple[DeliveryEngine, SleepRecorder]:
    sleep = SleepRecorder()
    cfg = DeliveryConfig(**config)  # type: ignore[arg-type]
    return DeliveryEngine(channel, config=cfg, sleep=sleep), sleep


# ── Pure helpers ────────────────────────────────────────────────


class TestFormatRecipientId:
    @pytest.mark.parametrize(
        ("recipient", "expected"),
        [
            ("+60 12-345 6789", "60123456789@c.us"),
            ("60123456789", "60123456789@c.us"),
            ("(012) 345.6789", "0123456789@c.us"),
            ("60123456789@c.us", "60123456789@c.us"),
            ("120363000000000000@g.us", "120363000000000000@g.us"),
        ],
    )
    def test_format(self, recipient: str, expected: str) -> None:
        assert format_recipient_id(recipient) == expected

    def test_custom_suffix(self) -> None:
        assert format_recipient_id("+1 555 0100", "@s.whatsapp.net") == "15550100@s.whatsapp.net"


class TestIsSessionError:
    def test_http_422(self) -> None:
        assert is_session_error(SendResponse(success=False, http_status=422)) is True

    @pytest.mark.parametrize(
        "error",
        [
            "Session status is not as expected",
            "Please RESTART THE SESSION",
            "session not found",
            "Session is in STARTING state",
            "status: SCAN_QR_CODE",
            "engine FAILED",
        ],
    )
    def test_error_text(self, error: str) -> None:
        assert is_session_error(SendResponse(success=False, error=error, http_status=500)) is True

    def test_state_names_are_case_sensitive(self) -> None:
        assert is_session_error(SendResponse(success=False, error="request failed")) is False

    def test_plain_server_error(self) -> None:
        assert is_session_error(SERVER_ERROR) is False


class TestBackoffDelay:
    def test_exponential(self) -> None:
        cfg = DeliveryConfig(base_delay_secs=5, exponential=True)
        assert [backoff_delay(n, cfg) for n in (1, 2, 3)] == [5, 10, 20]

    def test_flat(self) -> None:
        cfg = DeliveryConfig(base_delay_secs=5, exponential=False)
        assert [backoff_delay(n, cfg) for n in (1, 2, 3)] == [5, 5, 5]


# ── send ────────────────────────────────────────────────────────


class TestSend:
    async def test_first_attempt_success(self) -> None:
        channel = FakeChannel()
        engine, sleep = _engine(channel)
        result = await engine.send("+60 12-345 6789", "hello")
        assert result.success is True
        assert result.attempts == 1
        assert result.message_id == "msg-1"
        assert result.recipient == "+60 12-345 6789"
        assert channel.sent == [("60123456789@c.us", "hello")]
        assert sleep.delays == []

    async def test_result_carries_last_channel_response(self) -> None:
        body = {"id": "true_60123456789@c.us_ABC", "ack": 1}
        channel = FakeChannel(
            [SERVER_ERROR, SendResponse(success=True, message_id=body["id"], data=body)]
        )
        engine, _ = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.response["data"] == body
        assert result.response["http_status"] is None

    async def test_failed_result_carries_error_response(self) -> None:
        channel = FakeChannel([SERVER_ERROR])
        engine, _ = _engine(channel, max_attempts=1)
        result = await engine.send("60123456789", "hello")
        assert result.response == {
            "success": False,
            "message_id": None,
            "error": "Internal error",
            "http_status": 500,
            "data": {},
        }

    async def test_exhausts_with_exponential_backoff(self) -> None:
        channel = FakeChannel([SERVER_ERROR, SERVER_ERROR, SERVER_ERROR])
        engine, sleep = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.success is False
        assert result.attempts == 3
        assert result.http_status == 500
        assert result.error == "Internal error"
        assert len(channel.sent) == 3
        assert sleep.delays == [5, 10]
        assert channel.stop_calls == 0

    async def test_flat_backoff(self) -> None:
        channel = FakeChannel([SERVER_ERROR, SERVER_ERROR, SERVER_ERROR])
        engine, sleep = _engine(channel, exponential=False)
        await engine.send("60123456789", "hello")
        assert sleep.delays == [5, 5]

    async def test_success_on_second_attempt(self) -> None:
        channel = FakeChannel([SERVER_ERROR, SENT])
        engine, sleep = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.success is True
        assert result.attempts == 2
        assert sleep.delays == [5]

    async def test_success_on_third_attempt(self) -> None:
        channel = FakeChannel([SERVER_ERROR, SERVER_ERROR, SENT])
        engine, sleep = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.success is True
        assert result.attempts == 3
        assert result.error is None
        assert sleep.delays == [5, 10]

    async def test_session_error_recovers_and_retries(self) -> None:
        channel = FakeChannel([SESSION_ERROR, SENT])
        engine, sleep = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.success is True
        assert result.session_recovered is True
        assert result.attempts == 1
        assert channel.stop_calls == 1
        assert channel.start_calls == 1
        assert len(channel.sent) == 2
        assert sleep.delays == [2, 10]

    async def test_recovery_at_most_once_per_message(self) -> None:
        channel = FakeChannel([SESSION_ERROR] * 4)
        engine, sleep = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.success is False
        assert result.attempts == 3
        assert result.session_recovered is True
        assert channel.stop_calls == 1
        assert channel.start_calls == 1
        assert len(channel.sent) == 4
        assert sleep.delays == [2, 10, 5, 10]

    async def test_failed_recovery_continues_schedule(self) -> None:
        channel = FakeChannel([SESSION_ERROR, SERVER_ERROR, SENT], start_success=False)
        engine, sleep = _engine(channel)
        result = await engine.send("60123456789", "hello")
        assert result.success is True
        assert result.session_recovered is False
        assert result.attempts == 3
        assert len(channel.sent) == 3
        assert sleep.delays == [2, 5, 10]

    async def test_single_attempt_config(self) -> None:
        channel = FakeChannel([SERVER_ERROR])
        engine, sleep = _engine(channel, max_attempts=1)
        result = await engine.send("60123456789", "hello")
        assert result.success is False
        assert result.attempts == 1
        assert sleep.delays == []

    async def test_channel_exception_treated_as_failure(self) -> None:
        channel = FakeChannel()
        channel.send_text = AsyncMock(side_effect=RuntimeError("socket closed"))  # type: ignore[method-assign]
        engine, _ = _engine(channel, max_attempts=2)
        result = await engine.send("60123456789", "hello")
        assert result.success is False
        assert result.error == "socket closed"
        assert channel.send_text.await_count == 2

    async def test_send_all_continues_after_failure(self) -> None:
        channel = FakeChannel([SERVER_ERROR])
        engine, _ = _engine(channel, max_attempts=1)
        results = await engine.send_all(["111", "222"], "hello")
        assert [r.success for r in results] == [False, True]
        assert [chat for chat, _ in channel.sent] == ["111@c.us", "222@c.us"]


# ── Session pass-throughs ───────────────────────────────────────


class TestSessionManagement:
    async def test_restart_session(self) -> None:
        channel = FakeChannel()
        engine, sleep = _engine(channel)
        response = await engine.restart_session()
        assert response.success is True
        assert response.message == "Session restarted successfully"
        assert set(response.data) == {"stop_result", "start_result"}
        assert sleep.delays == [2]

    async def test_restart_failure(self) -> None:
        engine, _ = _engine(FakeChannel(start_success=False))
        response = await engine.restart_session()
        assert response.success is False
        assert response.error == "cannot start"

    async def test_session_info(self) -> None:
        engine, _ = _engine(FakeChannel(status=SessionState.SCAN_QR_CODE))
        info = await engine.session_info()
        assert info["session_name"] == "default"
        assert info["status"] == "SCAN_QR_CODE"
        assert info["ready"] is False
        assert info["needs_qr"] is True

    async def test_is_session_ready(self) -> None:
        engine, _ = _engine(FakeChannel())
        assert await engine.is_session_ready() is True

    async def test_send_test_message(self) -> None:
        channel = FakeChannel()
        engine, _ = _engine(channel)
        result = await engine.send_test_message("60123456789")
        assert result.success is True
        assert "AQI Notifier Test" in channel.sent[0][1]

    async def test_close(self) -> None:
        channel = FakeChannel()
        engine, _ = _engine(channel)
        await engine.close()
        assert channel.closed is True
