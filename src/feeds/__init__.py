"""AQI metric sources — fetch and normalise readings from external APIs."""

from src.feeds.base import MetricSource
from src.feeds.exceptions import (
    FeedConnectionError,
    FeedError,
    FeedParseError,
    FeedUpstreamError,
)
from src.feeds.waqi import WaqiSource, parse_waqi_payload

__all__ = [
    "FeedConnectionError",
    "FeedError",
    "FeedParseError",
    "FeedUpstreamError",
    "MetricSource",
    "WaqiSource",
    "parse_waqi_payload",
]
