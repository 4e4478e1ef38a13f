"""Tests for MetricSource — failure mapping and lifecycle."""

from __future__ import annotations

from typing import Any

from src.alerts.classification import ClassificationTable
from src.core.config import ClassificationConfig
from src.core.types import FetchFailureKind, Reading
from src.feeds.base import MetricSource
from src.feeds.exceptions import FeedConnectionError, FeedParseError, FeedUpstreamError


class StubSource(MetricSource):
    """Concrete MetricSource for testing."""

    def __init__(
        self,
        payload: dict[str, Any] | None = None,
        fetch_error: Exception | None = None,
        parse_error: Exception | None = None,
    ) -> None:
        super().__init__(
            table=ClassificationTable(ClassificationConfig().levels),
            default_city="here",
        )
        self._payload = payload or {"aqi": 42}
        self._fetch_error = fetch_error
        self._parse_error = parse_error
        self.requested: list[str] = []
        self.connect_called = False
        self.close_called = False

    async def connect(self) -> None:
        self.connect_called = True

    async def close(self) -> None:
        self.close_called = True

    async def fetch_raw(self, city: str) -> dict[str, Any]:
        self.requested.append(city)
        if self._fetch_error is not None:
            raise self._fetch_error
        return self._payload

    def parse(self, payload: dict[str, Any]) -> Reading:
        if self._parse_error is not None:
            raise self._parse_error
        aqi = int(payload["aqi"])
        return Reading(city="Here", aqi=aqi, level=self.table.level_for(aqi))


class TestMetricSourceFetch:
    async def test_success(self) -> None:
        result = await StubSource().fetch("there")
        assert result.ok
        assert result.city == "there"
        assert result.failure is None
        assert result.reading is not None
        assert result.reading.level == "good"

    async def test_default_city(self) -> None:
        source = StubSource()
        await source.fetch()
        assert source.requested == ["here"]

    async def test_connection_error(self) -> None:
        result = await StubSource(fetch_error=FeedConnectionError("refused")).fetch()
        assert not result.ok
        assert result.failure == FetchFailureKind.CONNECTIVITY
        assert result.detail == "refused"

    async def test_upstream_error(self) -> None:
        result = await StubSource(parse_error=FeedUpstreamError("no aqi")).fetch()
        assert result.failure == FetchFailureKind.UPSTREAM

    async def test_parse_error(self) -> None:
        result = await StubSource(parse_error=FeedParseError("bad")).fetch()
        assert result.failure == FetchFailureKind.PARSE


class TestMetricSourceLifecycle:
    async def test_async_context_manager(self) -> None:
        source = StubSource()
        async with source:
            assert source.connect_called
        assert source.close_called
