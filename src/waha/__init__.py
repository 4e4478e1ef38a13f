"""WAHA WhatsApp gateway — session lifecycle and text messaging."""

from src.waha.client import MessagingChannel, WahaClient
from src.waha.types import (
    ChannelResponse,
    QrCode,
    SendResponse,
    SessionState,
    SessionStatus,
)

__all__ = [
    "ChannelResponse",
    "MessagingChannel",
    "QrCode",
    "SendResponse",
    "SessionState",
    "SessionStatus",
    "WahaClient",
]
