"""Domain types for the WAHA (WhatsApp HTTP API) gateway."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SessionState(StrEnum):
    """Session states reported by WAHA plus local error states."""

    STOPPED = "STOPPED"
    STARTING = "STARTING"
    SCAN_QR_CODE = "SCAN_QR_CODE"
    WORKING = "WORKING"
    FAILED = "FAILED"
    ERROR = "ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> SessionState:
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNKNOWN


class SessionStatus(BaseModel):
    """Current session state; ``ready`` is true only while WORKING."""

    name: str
    status: SessionState
    error: str | None = None
    http_status: int | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.status == SessionState.WORKING

    @property
    def needs_qr(self) -> bool:
        return self.status in (SessionState.SCAN_QR_CODE, SessionState.STARTING)


class ChannelResponse(BaseModel):
    """Outcome of a session lifecycle call (start / stop / restart)."""

    success: bool
    message: str = ""
    error: str | None = None
    http_status: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class SendResponse(BaseModel):
    """Outcome of one send-text call."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    http_status: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class QrCode(BaseModel):
    """Base64 pairing QR code for a session waiting on SCAN_QR_CODE."""

    success: bool
    image: str | None = None
    mimetype: str | None = None
    error: str | None = None
