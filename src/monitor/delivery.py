"""Delivery engine — retry, exponential backoff and session recovery around one send."""

from __future__ import annotations

import asyncio
import datetime
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog

from src.core.config import DeliveryConfig
from src.monitor.formatters import format_test_message
from src.monitor.types import DeliveryResult
from src.waha.client import MessagingChannel
from src.waha.types import ChannelResponse, QrCode, SendResponse, SessionStatus

logger = structlog.get_logger(__name__)

Sleeper = Callable[[float], Awaitable[Any]]

DEFAULT_CHAT_SUFFIX = "@c.us"

SESSION_ERROR_HTTP_STATUS = 422

# Lower-cased phrases WAHA uses when the session cannot send yet.
_SESSION_ERROR_PHRASES: tuple[str, ...] = (
    "status is not as expected",
    "restart the session",
    "session not found",
)

# Raw state names that leak into error bodies.
_SESSION_ERROR_STATES: tuple[str, ...] = ("STARTING", "SCAN_QR_CODE", "FAILED")

_NON_DIGITS = re.compile(r"[^0-9]")


def format_recipient_id(recipient: str, suffix: str = DEFAULT_CHAT_SUFFIX) -> str:
    """Normalise a phone number into a chat id.

    Addresses that already contain ``@`` are assumed to be chat ids and pass
    through unchanged; anything else is reduced to its digits plus *suffix*.
    """
    if "@" in recipient:
        return recipient
    return _NON_DIGITS.sub("", recipient) + suffix


def is_session_error(response: SendResponse) -> bool:
    """Whether a failed send indicates the gateway session is not ready."""
    if response.http_status == SESSION_ERROR_HTTP_STATUS:
        return True
    error = response.error or ""
    lowered = error.lower()
    if any(phrase in lowered for phrase in _SESSION_ERROR_PHRASES):
        return True
    return any(state in error for state in _SESSION_ERROR_STATES)


def backoff_delay(attempt: int, config: DeliveryConfig) -> float:
    """Delay after failed *attempt* (1-based): ``base * 2**(attempt-1)`` or flat ``base``."""
    if config.exponential:
        return config.base_delay_secs * (2 ** (attempt - 1))
    return config.base_delay_secs


class DeliveryEngine:
    """Sends messages through a MessagingChannel with retry and session recovery.

    Per recipient the engine makes up to ``max_attempts`` normal attempts,
    sleeping ``backoff_delay`` between them. The first session-status error
    of a message triggers one recovery: stop the session, pause, start it,
    wait ``recovery_delay_secs`` and retry immediately. That retry is extra and
    consumes no backoff. A failed recovery is logged and the normal schedule
    continues.

    ``sleep`` is injectable so tests can record delays instead of waiting.
    """

    def __init__(
        self,
        channel: MessagingChannel,
        config: DeliveryConfig | None = None,
        chat_suffix: str = DEFAULT_CHAT_SUFFIX,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._channel = channel
        self._config = config or DeliveryConfig()
        self._chat_suffix = chat_suffix
        self._sleep = sleep

    @property
    def channel(self) -> MessagingChannel:
        return self._channel

    @property
    def config(self) -> DeliveryConfig:
        return self._config

    # ── Sending ─────────────────────────────────────────────────

    async def send(self, recipient: str, message: str) -> DeliveryResult:
        chat_id = format_recipient_id(recipient, self._chat_suffix)
        max_attempts = self._config.max_attempts
        recovery_tried = False
        recovered = False
        last = SendResponse(success=False, error="No attempt made")

        for attempt in range(1, max_attempts + 1):
            last = await self._attempt(chat_id, message, attempt)
            if last.success:
                return self._result(recipient, last, attempt, recovered)

            if not recovery_tried and is_session_error(last):
                recovery_tried = True
                if await self._recover_session(chat_id):
                    recovered = True
                    last = await self._attempt(chat_id, message, attempt, after_recovery=True)
                    if last.success:
                        return self._result(recipient, last, attempt, recovered)

            if attempt < max_attempts:
                delay = backoff_delay(attempt, self._config)
                logger.info(
                    "delivery_backoff",
                    recipient=chat_id,
                    attempt=attempt,
                    delay_secs=delay,
                )
                await self._sleep(delay)

        logger.error(
            "delivery_exhausted",
            recipient=chat_id,
            attempts=max_attempts,
            error=last.error,
            http_status=last.http_status,
        )
        return self._result(recipient, last, max_attempts, recovered)

    async def send_all(
        self, recipients: Iterable[str], message: str
    ) -> list[DeliveryResult]:
        """Send *message* to each recipient in order; one failure never stops the rest."""
        return [await self.send(recipient, message) for recipient in recipients]

    async def _attempt(
        self,
        chat_id: str,
        message: str,
        attempt: int,
        after_recovery: bool = False,
    ) -> SendResponse:
        logger.info(
            "delivery_attempt",
            recipient=chat_id,
            session=self._channel.session_name,
            attempt=attempt,
            after_recovery=after_recovery,
            message_length=len(message),
        )
        try:
            response = await self._channel.send_text(chat_id, message)
        except Exception as exc:
            logger.exception("delivery_attempt_error", recipient=chat_id, attempt=attempt)
            response = SendResponse(success=False, error=str(exc) or type(exc).__name__)

        if response.success:
            logger.info(
                "delivery_succeeded",
                recipient=chat_id,
                attempt=attempt,
                message_id=response.message_id,
            )
        else:
            logger.warning(
                "delivery_attempt_failed",
                recipient=chat_id,
                attempt=attempt,
                http_status=response.http_status,
                error=(response.error or "")[:200],
            )
        return response

    async def _recover_session(self, chat_id: str) -> bool:
        logger.warning(
            "delivery_session_recovery",
            recipient=chat_id,
            session=self._channel.session_name,
        )
        try:
            restarted = await self.restart_session()
        except Exception:
            logger.exception("delivery_session_recovery_error", recipient=chat_id)
            return False

        if not restarted.success:
            logger.error(
                "delivery_session_recovery_failed",
                recipient=chat_id,
                error=restarted.error,
            )
            return False

        await self._sleep(self._config.recovery_delay_secs)
        return True

    @staticmethod
    def _result(
        recipient: str, response: SendResponse, attempts: int, recovered: bool
    ) -> DeliveryResult:
        return DeliveryResult(
            recipient=recipient,
            success=response.success,
            message_id=response.message_id,
            error=None if response.success else response.error,
            http_status=response.http_status,
            attempts=attempts,
            session_recovered=recovered,
            response=response.model_dump(mode="json"),
        )

    # ── Session pass-throughs ───────────────────────────────────

    async def session_status(self) -> SessionStatus:
        return await self._channel.get_session_status()

    async def is_session_ready(self) -> bool:
        status = await self._channel.get_session_status()
        return status.ready

    async def session_info(self) -> dict[str, Any]:
        """Session summary for display."""
        status = await self._channel.get_session_status()
        return {
            "session_name": self._channel.session_name,
            "status": status.status.value,
            "ready": status.ready,
            "needs_qr": status.needs_qr,
            "error": status.error,
            "last_checked": datetime.datetime.now(datetime.UTC).isoformat(),
        }

    async def start_session(self) -> ChannelResponse:
        return await self._channel.start_session()

    async def stop_session(self) -> ChannelResponse:
        return await self._channel.stop_session()

    async def restart_session(self) -> ChannelResponse:
        """Stop, pause ``restart_pause_secs``, then start the session."""
        logger.info("session_restart", session=self._channel.session_name)
        stopped = await self._channel.stop_session()
        await self._sleep(self._config.restart_pause_secs)
        started = await self._channel.start_session()
        return ChannelResponse(
            success=started.success,
            message=(
                "Session restarted successfully"
                if started.success
                else "Failed to restart session"
            ),
            error=started.error,
            http_status=started.http_status,
            data={
                "stop_result": stopped.model_dump(),
                "start_result": started.model_dump(),
            },
        )

    async def qr_code(self) -> QrCode:
        return await self._channel.get_qr_code()

    async def send_test_message(self, recipient: str) -> DeliveryResult:
        return await self.send(recipient, format_test_message())

    async def close(self) -> None:
        await self._channel.close()
