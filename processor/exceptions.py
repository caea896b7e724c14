"""Errors raised while fetching, caching and exporting events."""


class GoodTimeIntelError(Exception):
    """Base class for all errors raised by this project."""


class TransportError(GoodTimeIntelError):
    """Remote API request failed."""


class CacheStoreError(GoodTimeIntelError):
    """Cache read or write failed."""


class CacheConsistencyError(GoodTimeIntelError):
    """A cache entry that must exist is missing."""

    def __init__(self, message: str, key: str):
        super().__init__(message)
        self.key = key


class ExportError(GoodTimeIntelError):
    """An event record cannot be projected onto the export columns."""
