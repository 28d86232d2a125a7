"""Media engine capability interface and its aiortc implementation."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription

from .events import Notifier
from .models import SessionDescription

logger = logging.getLogger(__name__)

CANDIDATE = "candidate"
TRACK = "track"
CONNECTION_STATE = "connection_state"
ICE_CONNECTION_STATE = "ice_connection_state"

EVENT_KINDS = (CANDIDATE, TRACK, CONNECTION_STATE, ICE_CONNECTION_STATE)


class SessionHandle(ABC):
    """One media session owned by a negotiation attempt.

    Event callbacks registered with :meth:`subscribe` receive:

    * ``candidate`` - a candidate string, or ``None`` once gathering is complete;
    * ``track`` - an inbound media track;
    * ``connection_state`` / ``ice_connection_state`` - the new state string.
    """

    @abstractmethod
    def subscribe(self, kind: str, callback: Callable[..., Any]) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def add_track(self, track: Any) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def add_transceiver(self, kind: str, direction: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def create_offer(self) -> SessionDescription:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:  # pragma: no cover
        raise NotImplementedError

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:  # pragma: no cover
        raise NotImplementedError

    @abstractmethod
    def local_description(self) -> SessionDescription | None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class MediaEngine(ABC):
    """Factory for :class:`SessionHandle` objects."""

    @abstractmethod
    def create_session(self, ice_servers: Sequence[str]) -> SessionHandle:  # pragma: no cover
        raise NotImplementedError


def _to_rtc(description: SessionDescription) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=description.sdp, type=description.type)


def _from_rtc(description: RTCSessionDescription) -> SessionDescription:
    return SessionDescription(type=description.type, sdp=description.sdp)


def _candidate_lines(sdp: str) -> list[str]:
    return [line[2:] for line in sdp.splitlines() if line.startswith("a=candidate:")]


class AiortcSession(SessionHandle):
    """:class:`SessionHandle` wrapping an :class:`aiortc.RTCPeerConnection`.

    aiortc gathers every candidate inside ``setLocalDescription`` and only
    reports the gathering state, so the candidates of the final description
    are replayed followed by the ``None`` sentinel.
    """

    def __init__(self, pc: RTCPeerConnection) -> None:
        self._pc = pc
        self._notifier = Notifier("aiortc")
        self._gathering_reported = False
        self._closed = False
        pc.on("icegatheringstatechange", self._on_gathering_state)
        pc.on("track", self._on_track)
        pc.on("connectionstatechange", self._on_connection_state)
        pc.on("iceconnectionstatechange", self._on_ice_connection_state)

    @property
    def peer_connection(self) -> RTCPeerConnection:
        return self._pc

    def subscribe(self, kind: str, callback: Callable[..., Any]) -> None:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown session event: {kind!r}")
        self._notifier.subscribe(kind, callback)

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(track)

    def add_transceiver(self, kind: str, direction: str) -> None:
        self._pc.addTransceiver(kind, direction=direction)

    async def create_offer(self) -> SessionDescription:
        return _from_rtc(await self._pc.createOffer())

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._pc.setLocalDescription(_to_rtc(description))
        self._report_gathering()

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(_to_rtc(description))

    def local_description(self) -> SessionDescription | None:
        description = self._pc.localDescription
        if description is None:
            return None
        return _from_rtc(description)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._pc.close()
        self._notifier.clear()

    # ----------------------------- implementation --------------------------
    def _report_gathering(self) -> None:
        if self._gathering_reported or self._pc.iceGatheringState != "complete":
            return
        description = self._pc.localDescription
        if description is None:
            return
        self._gathering_reported = True
        for candidate in _candidate_lines(description.sdp):
            self._notifier.notify(CANDIDATE, candidate)
        self._notifier.notify(CANDIDATE, None)

    def _on_gathering_state(self) -> None:
        logger.debug("ICE gathering state: %s", self._pc.iceGatheringState)
        self._report_gathering()

    def _on_track(self, track: Any) -> None:
        self._notifier.notify(TRACK, track)

    def _on_connection_state(self) -> None:
        self._notifier.notify(CONNECTION_STATE, self._pc.connectionState)

    def _on_ice_connection_state(self) -> None:
        self._notifier.notify(ICE_CONNECTION_STATE, self._pc.iceConnectionState)


class AiortcEngine(MediaEngine):
    """Create aiortc peer connections configured with the given ICE servers."""

    def create_session(self, ice_servers: Sequence[str]) -> AiortcSession:
        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in ice_servers]
        )
        return AiortcSession(RTCPeerConnection(configuration=configuration))


__all__ = [
    "AiortcEngine",
    "AiortcSession",
    "CANDIDATE",
    "CONNECTION_STATE",
    "EVENT_KINDS",
    "ICE_CONNECTION_STATE",
    "MediaEngine",
    "SessionHandle",
    "TRACK",
]
