"""Data structures exchanged between the CineCast components."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidInput

DEFAULT_STREAM_NAME = "default"


class Role(str, Enum):
    """Negotiation posture of the local endpoint."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"

    @property
    def action(self) -> str:
        """Return the relay action advertised for this role."""

        return "broadcast" if self is Role.PUBLISHER else "join"

    @classmethod
    def from_action(cls, action: str) -> "Role":
        normalised = action.strip().lower()
        if normalised == "broadcast":
            return cls.PUBLISHER
        if normalised == "join":
            return cls.SUBSCRIBER
        raise InvalidInput(f"Unknown relay action: {action!r}")


class MediaSource(str, Enum):
    """Where a publisher takes its outgoing media from."""

    CAMERA = "camera"
    FILE = "file"


@dataclass(frozen=True, slots=True)
class SourceConfig:
    """Selects the publisher's media source."""

    source: MediaSource = MediaSource.CAMERA
    file_path: Path | None = None
    camera: str | None = None

    def __post_init__(self) -> None:
        try:
            source = MediaSource(self.source)
        except ValueError as exc:
            raise InvalidInput(f"Unknown media source: {self.source!r}") from exc
        object.__setattr__(self, "source", source)
        if source is MediaSource.FILE:
            if self.file_path is None or not str(self.file_path).strip():
                raise InvalidInput("A video file must be selected for file broadcasts")
            object.__setattr__(self, "file_path", Path(self.file_path))


class SessionDescription(BaseModel):
    """One side's session terms, serialised on the wire as ``{type, sdp}``.

    Unknown top-level fields are kept so a decoded payload re-encodes unchanged.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str
    sdp: str


class SignalingEnvelope(BaseModel):
    """Outer relay payload carrying a base64 encoded session description."""

    action: Literal["broadcast", "join"]
    name: str = Field(default=DEFAULT_STREAM_NAME, min_length=1)
    sdp: str


__all__ = [
    "DEFAULT_STREAM_NAME",
    "MediaSource",
    "Role",
    "SessionDescription",
    "SignalingEnvelope",
    "SourceConfig",
]
