"""Exception hierarchy for AQI metric sources.

These are raised inside a source and converted into a ``FetchResult`` at its
``fetch()`` boundary; callers never see them.
"""

from __future__ import annotations


class FeedError(Exception):
    """Base exception for all feed errors."""


class FeedConnectionError(FeedError):
    """Network failure or timeout talking to the data source."""


class FeedUpstreamError(FeedError):
    """The data source answered with an error status or an unusable payload."""


class FeedParseError(FeedError):
    """A single field could not be parsed; the field is dropped."""
