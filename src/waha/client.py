"""Messaging channel — thin async client for the WAHA WhatsApp gateway."""

from __future__ import annotations

import abc
import asyncio
import json
from typing import Any

import aiohttp
import structlog

from src.core.config import WahaConfig
from src.waha.types import (
    ChannelResponse,
    QrCode,
    SendResponse,
    SessionState,
    SessionStatus,
)

logger = structlog.get_logger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class MessagingChannel(abc.ABC):
    """Base class for the external messaging transport.

    Every call returns a result object; transport failures are reported in the
    result rather than raised.
    """

    @property
    @abc.abstractmethod
    def session_name(self) -> str:
        """Name of the gateway session messages are sent through."""

    @abc.abstractmethod
    async def get_session_status(self) -> SessionStatus:
        """Fetch the current session state."""

    @abc.abstractmethod
    async def start_session(self) -> ChannelResponse:
        """Start (or resume) the session."""

    @abc.abstractmethod
    async def stop_session(self) -> ChannelResponse:
        """Stop the session."""

    @abc.abstractmethod
    async def get_qr_code(self) -> QrCode:
        """Fetch the pairing QR code as a base64 image."""

    @abc.abstractmethod
    async def send_text(self, chat_id: str, text: str) -> SendResponse:
        """Send *text* to an already-formatted *chat_id*."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


def _decode(body: str) -> dict[str, Any]:
    try:
        data = json.loads(body)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


class WahaClient(MessagingChannel):
    """Talks to a WAHA server over its REST API.

    Usage::

        client = WahaClient(settings.waha)
        status = await client.get_session_status()
        if status.ready:
            await client.send_text("60123456789@c.us", "hello")
        await client.close()
    """

    def __init__(self, config: WahaConfig) -> None:
        self._base_url = config.base_url.rstrip("/")
        self._api_key = config.api_key.get_secret_value()
        self._session_name = config.session_name
        self._timeout = aiohttp.ClientTimeout(total=config.timeout_secs)
        self._session: aiohttp.ClientSession | None = None

    @property
    def session_name(self) -> str:
        return self._session_name

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["X-Api-Key"] = self._api_key
            self._session = aiohttp.ClientSession(headers=headers, timeout=self._timeout)
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> tuple[int, str]:
        """Perform one HTTP call and return ``(status, body_text)``.

        Transport errors propagate to the caller.
        """
        session = self._get_session()
        call = session.get if method == "GET" else session.post
        kwargs: dict[str, Any] = {}
        if payload is not None:
            kwargs["json"] = payload
        if params is not None:
            kwargs["params"] = params
        async with call(f"{self._base_url}{path}", **kwargs) as resp:
            return resp.status, await resp.text()

    # ── Session lifecycle ───────────────────────────────────────

    async def get_session_status(self) -> SessionStatus:
        try:
            status, body = await self._request("GET", f"/api/sessions/{self._session_name}")
        except _TRANSPORT_ERRORS as exc:
            logger.error(
                "waha_session_status_error",
                session=self._session_name,
                error=str(exc),
            )
            return SessionStatus(
                name=self._session_name,
                status=SessionState.CONNECTION_ERROR,
                error=str(exc) or type(exc).__name__,
            )

        if 200 <= status < 300:
            data = _decode(body)
            return SessionStatus(
                name=str(data.get("name") or self._session_name),
                status=SessionState.parse(data.get("status", "UNKNOWN")),
                raw=data,
            )

        return SessionStatus(
            name=self._session_name,
            status=SessionState.ERROR,
            error=body,
            http_status=status,
        )

    async def _lifecycle(self, action: str) -> ChannelResponse:
        logger.info("waha_session_" + action, session=self._session_name)
        try:
            status, body = await self._request(
                "POST", f"/api/sessions/{self._session_name}/{action}"
            )
        except _TRANSPORT_ERRORS as exc:
            logger.error(
                "waha_session_" + action + "_error",
                session=self._session_name,
                error=str(exc),
            )
            return ChannelResponse(
                success=False,
                message="Connection error",
                error=str(exc) or type(exc).__name__,
            )

        if 200 <= status < 300:
            logger.info("waha_session_" + action + "_ok", session=self._session_name)
            return ChannelResponse(
                success=True,
                message=f"Session {action} succeeded",
                data=_decode(body),
            )

        logger.error(
            "waha_session_" + action + "_failed",
            session=self._session_name,
            status=status,
            body=body[:200],
        )
        return ChannelResponse(
            success=False,
            message=f"Failed to {action} session",
            error=body,
            http_status=status,
        )

    async def start_session(self) -> ChannelResponse:
        return await self._lifecycle("start")

    async def stop_session(self) -> ChannelResponse:
        return await self._lifecycle("stop")

    async def get_qr_code(self) -> QrCode:
        try:
            status, body = await self._request(
                "GET",
                f"/api/{self._session_name}/auth/qr",
                params={"format": "image"},
            )
        except _TRANSPORT_ERRORS as exc:
            logger.error("waha_qr_error", session=self._session_name, error=str(exc))
            return QrCode(success=False, error=str(exc) or type(exc).__name__)

        if 200 <= status < 300:
            data = _decode(body)
            return QrCode(
                success=True,
                image=data.get("data"),
                mimetype=data.get("mimetype"),
            )
        return QrCode(success=False, error=body)

    # ── Messaging ───────────────────────────────────────────────

    async def send_text(self, chat_id: str, text: str) -> SendResponse:
        payload = {
            "chatId": chat_id,
            "text": text,
            "session": self._session_name,
        }
        try:
            status, body = await self._request("POST", "/api/sendText", payload=payload)
        except _TRANSPORT_ERRORS as exc:
            return SendResponse(success=False, error=str(exc) or type(exc).__name__)

        if 200 <= status < 300:
            data = _decode(body)
            message_id = data.get("id")
            if isinstance(message_id, dict):
                # Some WAHA engines return {"id": {"_serialized": "..."}}.
                message_id = message_id.get("_serialized")
            return SendResponse(
                success=True,
                message_id=str(message_id) if message_id else None,
                data=data,
            )

        return SendResponse(success=False, error=body, http_status=status)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
