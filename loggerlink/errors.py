"""Exception hierarchy shared by the coordinator, store and CLI."""
from __future__ import annotations

from typing import Sequence


class LoggerError(RuntimeError):
    """Base class for errors reported to the operator."""


class TransportFault(LoggerError):
    """Raised when a transport adapter reports a fatal condition."""

    def __init__(self, message: str, transport: str | None = None) -> None:
        super().__init__(message)
        self.transport = transport


class StorageError(LoggerError):
    """Wraps an underlying sqlite failure."""


class DeviceStateError(LoggerError):
    """The connected device cannot perform the requested operation."""


class ValidationError(LoggerError, ValueError):
    """Invalid command-level parameter or option combination."""


class AmbiguousSeriesError(ValidationError):
    """Raised when a single-series selection matches several devices."""

    def __init__(self, candidates: Sequence[str]) -> None:
        self.candidates = tuple(candidates)
        if self.candidates:
            message = f"Several devices found, select one of: {', '.join(self.candidates)}"
        else:
            message = "No devices found"
        super().__init__(message)


__all__ = [
    "AmbiguousSeriesError",
    "DeviceStateError",
    "LoggerError",
    "StorageError",
    "TransportFault",
    "ValidationError",
]
