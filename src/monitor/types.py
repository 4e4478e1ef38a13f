"""Result types for delivery and check-and-notify cycles."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from src.core.types import GateVerdict, Reading


class DeliveryResult(BaseModel):
    """Per-recipient delivery outcome after retries.

    ``attempts`` counts normal attempts consumed; the extra attempt made right
    after a session recovery is reported through ``session_recovered``.
    ``response`` is the channel's last send outcome, body included, kept as
    an opaque blob for the notification log.
    """

    recipient: str
    success: bool
    message_id: str | None = None
    error: str | None = None
    http_status: int | None = None
    attempts: int = 0
    session_recovered: bool = False
    response: dict[str, Any] = Field(default_factory=dict)


class CycleReport(BaseModel):
    """Structured outcome of one check-and-notify cycle."""

    success: bool
    message: str
    reading: Reading | None = None
    reading_id: int | None = None
    verdict: GateVerdict | None = None
    deliveries: list[DeliveryResult] = Field(default_factory=list)

    @property
    def notified(self) -> bool:
        return bool(self.deliveries)

    @property
    def sent_count(self) -> int:
        return sum(1 for d in self.deliveries if d.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for d in self.deliveries if not d.success)
