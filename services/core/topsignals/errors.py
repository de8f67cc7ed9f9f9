"""Error taxonomy for metric acquisition."""

from __future__ import annotations

from typing import Any


class TopSignalsError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProviderError(TopSignalsError):
    """Raised when a provider could not supply usable data."""

    def __init__(
        self,
        message: str,
        provider_name: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.provider_name = provider_name
        self.status = status


class TransientProviderError(ProviderError):
    """Network blip, 5xx, rate limit or timeout. Worth trying again later."""
    pass


class TerminalProviderError(ProviderError):
    """Missing credential or unexpected schema. Retrying will not help."""
    pass


class InsufficientDataError(ProviderError):
    """The call succeeded but the data does not meet minimal validity."""
    pass


class ExhaustionError(TopSignalsError):
    """Every strategy failed and there is neither a cached nor a static value."""

    def __init__(self, metric_key: str, details: dict[str, Any] | None = None):
        super().__init__(f"No value available for metric '{metric_key}'", details)
        self.metric_key = metric_key


class PersistenceError(TopSignalsError):
    """Snapshot store read or write failure."""
    pass
