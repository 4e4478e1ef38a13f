"""Exception hierarchy for the persistence layer."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage errors."""


class StorageNotConnectedError(StorageError):
    """Database used before ``connect()`` or after ``close()``."""
