"""Abstract metric source — fetch, normalise, and report failures as values."""

from __future__ import annotations

import abc
from types import TracebackType
from typing import Any

import structlog

from src.alerts.classification import ClassificationTable
from src.core.types import FetchFailureKind, FetchResult, Reading
from src.feeds.exceptions import (
    FeedConnectionError,
    FeedParseError,
    FeedUpstreamError,
)

logger = structlog.stdlib.get_logger()


class MetricSource(abc.ABC):
    """Base class for AQI sources.

    Subclasses implement ``connect()``, ``close()``, ``fetch_raw()`` and
    ``parse()``, raising the feed exceptions on failure. The base class turns
    those into a ``FetchResult`` so that ``fetch()`` never raises for
    connectivity, upstream or parse problems.

    Usage::

        async with WaqiSource(config, table) as source:
            result = await source.fetch("kuala-lumpur")
            if result.ok:
                print(result.reading.aqi)
    """

    def __init__(self, table: ClassificationTable, default_city: str) -> None:
        self._table = table
        self._default_city = default_city

    @property
    def default_city(self) -> str:
        return self._default_city

    @property
    def table(self) -> ClassificationTable:
        return self._table

    @abc.abstractmethod
    async def connect(self) -> None:
        """Open the underlying client."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release the underlying client."""

    @abc.abstractmethod
    async def fetch_raw(self, city: str) -> dict[str, Any]:
        """Return the raw payload for *city*.

        Raises:
            FeedConnectionError: On transport failure.
            FeedUpstreamError: On error status or malformed body.
        """

    @abc.abstractmethod
    def parse(self, payload: dict[str, Any]) -> Reading:
        """Normalise a raw payload into a Reading.

        Raises:
            FeedUpstreamError: If the payload lacks a usable metric value.
        """

    async def fetch(self, city: str | None = None) -> FetchResult:
        """Fetch and normalise the current reading for *city*."""
        target = city or self._default_city
        logger.info("aqi_fetch_started", city=target)

        try:
            payload = await self.fetch_raw(target)
            reading = self.parse(payload)
        except FeedConnectionError as exc:
            return self._failure(target, FetchFailureKind.CONNECTIVITY, exc)
        except FeedUpstreamError as exc:
            return self._failure(target, FetchFailureKind.UPSTREAM, exc)
        except FeedParseError as exc:
            return self._failure(target, FetchFailureKind.PARSE, exc)

        logger.info(
            "aqi_fetch_succeeded",
            city=reading.city,
            aqi=reading.aqi,
            level=reading.level,
        )
        return FetchResult(city=target, reading=reading)

    @staticmethod
    def _failure(city: str, kind: FetchFailureKind, exc: Exception) -> FetchResult:
        logger.error("aqi_fetch_failed", city=city, failure=kind.value, error=str(exc))
        return FetchResult(city=city, failure=kind, detail=str(exc))

    async def __aenter__(self) -> MetricSource:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
