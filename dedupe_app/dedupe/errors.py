"""
Error taxonomy for the dedupe engine.

Callers catch :class:`DedupeError` to handle any engine failure; the HTTP
layer and CLI map the concrete subclasses to status codes and messages.
"""

from __future__ import annotations


class DedupeError(RuntimeError):
    """Base error for dedupe engine failures."""


class ConfigurationError(DedupeError):
    """Raised before any scoring when the run is not configured to compare anything."""


class NotFoundError(DedupeError):
    """Raised when a referenced record or merge event does not exist."""


class PreconditionError(DedupeError):
    """Raised when an operation is attempted before its inputs are ready (e.g. open decisions)."""

    def __init__(self, message: str, *, fields: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.fields = fields


class ExternalIOError(DedupeError):
    """Raised when the backing record store fails a read or write."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedHistoryError(DedupeError):
    """Raised in strict mode when a stored history value cannot be decoded."""


__all__ = [
    "ConfigurationError",
    "DedupeError",
    "ExternalIOError",
    "MalformedHistoryError",
    "NotFoundError",
    "PreconditionError",
]
