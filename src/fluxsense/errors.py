"""Exception types raised by the session engine and the analytics helpers."""
from __future__ import annotations


class SessionError(RuntimeError):
    """Base class for failures surfaced to callers of the session engine."""


class InvalidAddress(SessionError):
    """The device address is missing or blank."""


class TransportFailure(SessionError):
    """The transport rejected a connect, send or disconnect request."""


class PersistenceFailure(SessionError):
    """Reading or writing a CSV file through the storage backend failed."""


class DecodeSkip(ValueError):
    """A protocol line or token could not be decoded and was skipped."""


class InsufficientData(ValueError):
    """Fewer than two usable points were available for a flux fit."""


__all__ = [
    "SessionError",
    "InvalidAddress",
    "TransportFailure",
    "PersistenceFailure",
    "DecodeSkip",
    "InsufficientData",
]
