from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterator, Sequence

import pytest

from cine_cast.capture import CaptureSource
from cine_cast.engine import MediaEngine, SessionHandle
from cine_cast.errors import CaptureError
from cine_cast.models import SessionDescription
from cine_cast.signaling import RelayTransport

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 0.0.0.0\r\ns=-\r\nt=0 0\r\nm=video 9 UDP/TLS/RTP/SAVPF 96\r\n"
DEFAULT_CANDIDATES = (
    "candidate:1 1 udp 2130706431 192.168.1.20 50000 typ host",
    "candidate:2 1 udp 1694498815 203.0.113.7 50001 typ srflx raddr 192.168.1.20 rport 50000",
)

_track_ids = itertools.count(1)


class FakeTrack:
    def __init__(self, kind: str = "video", track_id: str | None = None) -> None:
        self.kind = kind
        self.id = track_id or f"track-{next(_track_ids)}"
        self.stop_calls = 0

    def stop(self) -> None:
        self.stop_calls += 1


class FakeTransport(RelayTransport):
    """In-memory relay transport fed by the test."""

    def __init__(
        self,
        *,
        open_error: Exception | None = None,
        send_error: Exception | None = None,
        open_gate: asyncio.Event | None = None,
        close_error: Exception | None = None,
    ) -> None:
        self.open_error = open_error
        self.close_error = close_error
        self.send_error = send_error
        self.open_gate = open_gate
        self.opened_urls: list[str] = []
        self.sent: list[str] = []
        self.close_calls = 0
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    async def open(self, url: str) -> None:
        self.opened_urls.append(url)
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error

    async def send(self, text: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(text)

    async def messages(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error

    def feed(self, item: str | Exception | None) -> None:
        """Queue an inbound message, an error, or ``None`` to hang up."""

        self._inbox.put_nowait(item)


class TransportFactory:
    def __init__(self) -> None:
        self.created: list[FakeTransport] = []
        self.options: dict[str, Any] = {}

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(**self.options)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


class FakeHandle(SessionHandle):
    """Scriptable media session.

    With ``auto_gather`` the candidates and the sentinel are emitted from
    inside ``set_local_description`` the way aiortc does it.
    """

    def __init__(
        self,
        ice_servers: Sequence[str],
        *,
        auto_gather: bool = True,
        candidates: Sequence[str] = DEFAULT_CANDIDATES,
        connect_on_remote: bool = True,
        remote_error: Exception | None = None,
        remote_gate: asyncio.Event | None = None,
    ) -> None:
        self.ice_servers = tuple(ice_servers)
        self.auto_gather = auto_gather
        self.candidates = tuple(candidates)
        self.connect_on_remote = connect_on_remote
        self.remote_error = remote_error
        self.remote_gate = remote_gate
        self.callbacks: dict[str, Callable[..., Any]] = {}
        self.tracks: list[Any] = []
        self.transceivers: list[tuple[str, str]] = []
        self.local: SessionDescription | None = None
        self.remote: SessionDescription | None = None
        self.gathered: list[str] = []
        self.close_calls = 0

    def subscribe(self, kind: str, callback: Callable[..., Any]) -> None:
        self.callbacks[kind] = callback

    def emit(self, kind: str, *args: Any) -> None:
        callback = self.callbacks.get(kind)
        if callback is not None:
            callback(*args)

    def emit_candidate(self, candidate: str | None) -> None:
        if candidate is not None:
            self.gathered.append(candidate)
        self.emit("candidate", candidate)

    def add_track(self, track: Any) -> None:
        self.tracks.append(track)

    def add_transceiver(self, kind: str, direction: str) -> None:
        self.transceivers.append((kind, direction))

    async def create_offer(self) -> SessionDescription:
        await asyncio.sleep(0)
        return SessionDescription(type="offer", sdp=OFFER_SDP)

    async def set_local_description(self, description: SessionDescription) -> None:
        await asyncio.sleep(0)
        self.local = description
        if self.auto_gather:
            for candidate in self.candidates:
                self.emit_candidate(candidate)
            self.emit_candidate(None)

    async def set_remote_description(self, description: SessionDescription) -> None:
        if self.remote_gate is not None:
            await self.remote_gate.wait()
        if self.remote_error is not None:
            raise self.remote_error
        self.remote = description
        if self.connect_on_remote:
            self.emit("connection_state", "connecting")
            self.emit("connection_state", "connected")

    def local_description(self) -> SessionDescription | None:
        if self.local is None:
            return None
        lines = "".join(f"a={candidate}\r\n" for candidate in self.gathered)
        return SessionDescription(type=self.local.type, sdp=self.local.sdp + lines)

    async def close(self) -> None:
        self.close_calls += 1


class FakeEngine(MediaEngine):
    def __init__(self, **handle_options: Any) -> None:
        self.handle_options = handle_options
        self.handles: list[FakeHandle] = []

    def create_session(self, ice_servers: Sequence[str]) -> FakeHandle:
        handle = FakeHandle(ice_servers, **self.handle_options)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


class FakeCapture(CaptureSource):
    def __init__(self) -> None:
        self.error: Exception | None = None
        self.camera_calls = 0
        self.camera_choices: list[str | None] = []
        self.file_paths: list[Path] = []
        self.release_calls = 0
        self.tracks: list[FakeTrack] = []

    async def acquire_camera_tracks(self, camera: str | None = None) -> list[Any]:
        self.camera_calls += 1
        self.camera_choices.append(camera)
        if self.error is not None:
            raise self.error
        track = FakeTrack("video")
        self.tracks.append(track)
        return [track]

    async def acquire_file_tracks(self, path: Path) -> list[Any]:
        self.file_paths.append(Path(path))
        if self.error is not None:
            raise self.error
        track = FakeTrack("video")
        self.tracks.append(track)
        return [track]

    async def release(self) -> None:
        self.release_calls += 1
        for track in self.tracks:
            track.stop()
        self.tracks = []


@pytest.fixture()
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture()
def capture() -> FakeCapture:
    return FakeCapture()


@pytest.fixture()
def transports() -> Iterator[TransportFactory]:
    yield TransportFactory()


@pytest.fixture()
def make_track() -> Callable[..., FakeTrack]:
    return FakeTrack


@pytest.fixture()
def capture_failure() -> CaptureError:
    return CaptureError("Camera permission denied")


@pytest.fixture()
def make_engine() -> Callable[..., FakeEngine]:
    return FakeEngine
