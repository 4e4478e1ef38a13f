"""WAQI feed — fetches the World Air Quality Index city feed and normalises it."""

from __future__ import annotations

import datetime
import math
from typing import Any

import httpx
import structlog

from src.alerts.classification import ClassificationTable
from src.core.config import WaqiConfig
from src.core.types import Reading
from src.feeds.base import MetricSource
from src.feeds.exceptions import FeedConnectionError, FeedParseError, FeedUpstreamError

logger = structlog.stdlib.get_logger()

POLLUTANT_KEYS: tuple[str, ...] = ("pm25", "pm10", "o3", "no2", "so2", "co")

# iaqi short code → (weather field, cast)
_WEATHER_KEYS: dict[str, tuple[str, type[int] | type[float]]] = {
    "t": ("temperature", float),
    "h": ("humidity", int),
    "p": ("pressure", int),
    "w": ("wind_speed", float),
}

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# ── Field parsing ──────────────────────────────────────────────


def _iaqi_value(iaqi: dict[str, Any], key: str) -> float | None:
    """Return ``iaqi[key]["v"]`` as a float, or None if absent, non-numeric or non-finite."""
    entry = iaqi.get(key)
    if not isinstance(entry, dict) or "v" not in entry:
        return None
    value = entry["v"]
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("waqi_field_unparseable", field=key, value=value)
        return None
    if not math.isfinite(number):
        logger.warning("waqi_field_unparseable", field=key, value=value)
        return None
    return number


def parse_pollutants(iaqi: dict[str, Any]) -> dict[str, float]:
    """Extract pollutant sub-indices. Missing pollutants are left out, never zeroed."""
    pollutants: dict[str, float] = {}
    for key in POLLUTANT_KEYS:
        value = _iaqi_value(iaqi, key)
        if value is not None:
            pollutants[key] = value
    return pollutants


def parse_weather(iaqi: dict[str, Any]) -> dict[str, float | int]:
    """Extract temperature, humidity, pressure and wind speed where present."""
    weather: dict[str, float | int] = {}
    for code, (field, cast) in _WEATHER_KEYS.items():
        value = _iaqi_value(iaqi, code)
        if value is not None:
            weather[field] = cast(value)
    return weather


def parse_timestamp(time_data: Any) -> datetime.datetime:
    """Parse the WAQI ``time`` block (``{"s": "Y-m-d H:M:S", "tz": "+08:00"}``).

    Raises:
        FeedParseError: If the block is missing or malformed.
    """
    if not isinstance(time_data, dict) or not isinstance(time_data.get("s"), str):
        raise FeedParseError("Missing time.s in payload")

    stamp = time_data["s"]
    tz = time_data.get("tz")
    if isinstance(tz, str) and tz:
        try:
            return datetime.datetime.fromisoformat(f"{stamp}{tz}")
        except ValueError:
            pass
    try:
        return datetime.datetime.strptime(stamp, _TIME_FORMAT)
    except ValueError as exc:
        raise FeedParseError(f"Unparseable timestamp '{stamp}'") from exc


def _parse_geo(city_obj: dict[str, Any]) -> tuple[float | None, float | None]:
    geo = city_obj.get("geo")
    if not isinstance(geo, list) or len(geo) < 2:
        return None, None
    try:
        return float(geo[0]), float(geo[1])
    except (TypeError, ValueError):
        logger.warning("waqi_field_unparseable", field="geo", value=geo)
        return None, None


def _parse_aqi(value: Any) -> int:
    if isinstance(value, bool):
        raise FeedUpstreamError(f"Invalid aqi value {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError) as exc:
        raise FeedUpstreamError(f"Invalid aqi value {value!r}") from exc


def parse_waqi_payload(body: dict[str, Any], table: ClassificationTable) -> Reading:
    """Normalise a WAQI ``/feed`` response into a Reading.

    Expected structure::

        {
            "status": "ok",
            "data": {
                "aqi": 45,
                "dominentpol": "pm25",
                "city": {"name": "Kuala Lumpur", "geo": [3.14, 101.69]},
                "iaqi": {"pm25": {"v": 12.3}, "t": {"v": 31.5}, "h": {"v": 88}},
                "time": {"s": "2025-07-21 14:00:00", "tz": "+08:00"}
            }
        }

    Raises:
        FeedUpstreamError: On a non-``ok`` status or a missing/invalid ``aqi``.
    """
    status = body.get("status")
    if status != "ok":
        detail = body.get("data") if isinstance(body.get("data"), str) else ""
        raise FeedUpstreamError(f"WAQI returned status {status!r} {detail}".strip())

    data = body.get("data")
    if not isinstance(data, dict):
        raise FeedUpstreamError("WAQI payload has no data object")
    if "aqi" not in data:
        raise FeedUpstreamError("WAQI payload has no aqi value")

    aqi = _parse_aqi(data["aqi"])

    city_obj = data.get("city") if isinstance(data.get("city"), dict) else {}
    city = str(city_obj.get("name") or "Unknown")
    latitude, longitude = _parse_geo(city_obj)

    iaqi = data.get("iaqi") if isinstance(data.get("iaqi"), dict) else {}

    observed_at: datetime.datetime | None = None
    if "time" in data:
        try:
            observed_at = parse_timestamp(data["time"])
        except FeedParseError as exc:
            logger.warning("waqi_timestamp_unparseable", error=str(exc))

    dominant = data.get("dominentpol")

    return table.classify(
        aqi,
        city=city,
        dominant_pollutant=str(dominant) if dominant else None,
        pollutants=parse_pollutants(iaqi),
        weather=parse_weather(iaqi),
        latitude=latitude,
        longitude=longitude,
        observed_at=observed_at,
        raw=data,
    )


class WaqiSource(MetricSource):
    """AQI source backed by ``api.waqi.info``.

    Usage::

        async with WaqiSource(settings.waqi, table) as source:
            result = await source.fetch()
    """

    def __init__(
        self,
        config: WaqiConfig,
        table: ClassificationTable,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(table=table, default_city=config.default_city)
        self._config = config
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        """Whether the HTTP client is active."""
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> None:
        """Create the httpx async client."""
        if self.connected:
            return
        self._http = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=httpx.Timeout(self._config.timeout_secs),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the httpx async client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def fetch_raw(self, city: str) -> dict[str, Any]:
        if self._http is None:
            await self.connect()
        assert self._http is not None

        try:
            response = await self._http.get(
                f"/feed/{city}/",
                params={"token": self._config.token.get_secret_value()},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FeedUpstreamError(
                f"WAQI API returned {exc.response.status_code} for {city}"
            ) from exc
        except httpx.HTTPError as exc:
            raise FeedConnectionError(f"WAQI API request failed for {city}: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise FeedUpstreamError(f"WAQI API returned invalid JSON for {city}") from exc

        if not isinstance(body, dict):
            raise FeedUpstreamError(f"WAQI API returned non-object for {city}")
        return body

    def parse(self, payload: dict[str, Any]) -> Reading:
        return parse_waqi_payload(payload, self._table)
