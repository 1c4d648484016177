"""Exception types raised by the accounting engine and its source adapters."""

from __future__ import annotations


class PnLTrackerError(Exception):
    """Base class for all tracker errors."""


class ValidationError(PnLTrackerError):
    """Raised when a transaction is malformed and must not enter the ledger."""


class SourceFetchError(PnLTrackerError):
    """Raised when one exchange, wallet or price call fails.

    Carries the name of the failing source so callers can report it and retry
    without discarding data already fetched from other sources.
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class ConfigError(PnLTrackerError):
    """Raised when credentials for a source are missing or invalid."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message
