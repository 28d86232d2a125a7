"""Error taxonomy shared by the CineCast signaling components."""
from __future__ import annotations


class CineCastError(RuntimeError):
    """Base error for signaling and negotiation failures."""


class TransportError(CineCastError):
    """Raised when the relay transport cannot connect or deliver a message."""


class NotConnected(TransportError):
    """Raised when a message is sent on a channel that is not connected."""


class DecodeError(CineCastError):
    """Describes a relay payload that could not be decoded."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ApplyError(CineCastError):
    """Raised when a remote description is rejected by the current session state."""


class CaptureError(CineCastError):
    """Raised when camera or file tracks cannot be acquired."""


class InvalidInput(CineCastError, ValueError):
    """Raised for caller mistakes such as an empty stream name."""


class AlreadyActive(InvalidInput):
    """Raised when an attempt or connection is already outstanding."""


__all__ = [
    "AlreadyActive",
    "ApplyError",
    "CaptureError",
    "CineCastError",
    "DecodeError",
    "InvalidInput",
    "NotConnected",
    "TransportError",
]
