"""Client settings for CineCast."""
from __future__ import annotations

import math
import os
from dataclasses import asdict, dataclass
from typing import Any, Mapping
from urllib.parse import urlparse

from .camera import CameraChoice, CameraError
from .capture import DEFAULT_FPS
from .negotiation import DEFAULT_ICE_SERVERS
from .signaling import DEFAULT_CONNECT_TIMEOUT

DEFAULT_RELAY_URL = "ws://localhost:8080/ws"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_ICE_SCHEMES = ("stun:", "stuns:", "turn:", "turns:")


@dataclass(frozen=True, slots=True)
class ClientSettings:
    """Connection and capture defaults for a signaling client."""

    relay_url: str = DEFAULT_RELAY_URL
    ice_servers: tuple[str, ...] = DEFAULT_ICE_SERVERS
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    receive_audio: bool = True
    camera: str = CameraChoice.AUTO.value
    fps: int = DEFAULT_FPS

    def __post_init__(self) -> None:
        scheme = urlparse(str(self.relay_url)).scheme
        if scheme not in {"ws", "wss"}:
            raise ValueError("Relay URL must use the ws:// or wss:// scheme")
        servers = tuple(str(server).strip() for server in self.ice_servers if str(server).strip())
        if not servers:
            raise ValueError("At least one ICE server is required")
        for server in servers:
            if not server.startswith(_ICE_SCHEMES):
                raise ValueError(f"Unsupported ICE server URL: {server}")
        object.__setattr__(self, "ice_servers", servers)
        try:
            timeout = float(self.connect_timeout)
        except (TypeError, ValueError) as exc:
            raise ValueError("Connect timeout must be numeric") from exc
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValueError("Connect timeout must be a positive finite value")
        object.__setattr__(self, "connect_timeout", timeout)
        try:
            camera = CameraChoice.parse(self.camera)
        except CameraError as exc:
            raise ValueError(str(exc)) from exc
        object.__setattr__(self, "camera", camera.value)
        if self.fps < 1 or self.fps > 60:
            raise ValueError("Capture fps must be between 1 and 60")

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["ice_servers"] = list(self.ice_servers)
        return payload


def _parse_bool(value: str, name: str) -> bool:
    normalised = value.strip().lower()
    if normalised in _TRUE_VALUES:
        return True
    if normalised in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {name}: {value!r}")


def load_settings(env: Mapping[str, str] | None = None, **overrides: Any) -> ClientSettings:
    """Build settings from ``CINECAST_*`` environment variables.

    Keyword *overrides* win over the environment; ``None`` values are ignored.
    """

    source = os.environ if env is None else env
    values: dict[str, Any] = {}
    if source.get("CINECAST_RELAY_URL"):
        values["relay_url"] = source["CINECAST_RELAY_URL"].strip()
    if source.get("CINECAST_ICE_SERVERS"):
        values["ice_servers"] = tuple(source["CINECAST_ICE_SERVERS"].split(","))
    if source.get("CINECAST_CONNECT_TIMEOUT"):
        values["connect_timeout"] = source["CINECAST_CONNECT_TIMEOUT"]
    if source.get("CINECAST_RECEIVE_AUDIO"):
        values["receive_audio"] = _parse_bool(source["CINECAST_RECEIVE_AUDIO"], "CINECAST_RECEIVE_AUDIO")
    if source.get("CINECAST_CAMERA"):
        values["camera"] = source["CINECAST_CAMERA"]
    if source.get("CINECAST_FPS"):
        try:
            values["fps"] = int(source["CINECAST_FPS"])
        except ValueError as exc:
            raise ValueError(f"Invalid CINECAST_FPS value: {source['CINECAST_FPS']!r}") from exc
    values.update({key: value for key, value in overrides.items() if value is not None})
    return ClientSettings(**values)


__all__ = ["ClientSettings", "DEFAULT_RELAY_URL", "load_settings"]
