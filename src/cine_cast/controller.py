"""Orchestrates one publish or view attempt from start to teardown."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable

from .capture import CaptureSource, MediaCapture
from .codec import decode_remote, encode_offer
from .config import ClientSettings
from .engine import AiortcEngine, MediaEngine
from .errors import AlreadyActive, CaptureError, CineCastError, InvalidInput, TransportError
from .event_log import EventLog
from .events import Notifier
from .models import MediaSource, Role, SourceConfig
from .negotiation import NegotiationSession, NegotiationState
from .signaling import ConnectionStatus, RelayTransport, SignalingChannel, WebSocketTransport

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Attempt:
    """Resources owned by a single ``start`` call."""

    role: Role
    stream_name: str
    source: SourceConfig
    channel: SignalingChannel | None = None
    session: NegotiationSession | None = None
    tracks: list[Any] = field(default_factory=list)
    captured: bool = False
    offer_sent: bool = False
    last_error: Exception | None = None


class SessionController:
    """Turn a single ``start`` request into a complete signaling exchange.

    Only one attempt may be active at a time. Failures are recorded in the
    event log, sent to the ``error`` subscriber and raised from ``start``
    when they end the attempt; failures on inbound messages are reported
    without ending it.

    Subscribable notifications: ``status``, ``event``, ``error``,
    ``track`` and ``state``.
    """

    def __init__(
        self,
        engine: MediaEngine,
        capture: CaptureSource | None = None,
        *,
        settings: ClientSettings | None = None,
        transport_factory: Callable[[], RelayTransport] = WebSocketTransport,
        event_log: EventLog | None = None,
    ) -> None:
        self._engine = engine
        self._capture = capture
        self._settings = settings if settings is not None else ClientSettings()
        self._transport_factory = transport_factory
        self._events = event_log if event_log is not None else EventLog()
        self._notifier = Notifier("controller")
        self._attempt: _Attempt | None = None

    # ------------------------------ properties -----------------------------
    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def active(self) -> bool:
        return self._attempt is not None

    @property
    def status(self) -> ConnectionStatus:
        attempt = self._attempt
        if attempt is None or attempt.channel is None:
            return ConnectionStatus.DISCONNECTED
        return attempt.channel.status

    @property
    def session(self) -> NegotiationSession | None:
        attempt = self._attempt
        return attempt.session if attempt is not None else None

    @property
    def session_state(self) -> NegotiationState | None:
        session = self.session
        return session.state if session is not None else None

    @property
    def remote_tracks(self) -> tuple[Any, ...]:
        session = self.session
        return session.remote_tracks if session is not None else ()

    def subscribe(self, kind: str, handler: Callable[..., Any] | None) -> None:
        self._notifier.subscribe(kind, handler)

    # ------------------------------ operations -----------------------------
    async def start(
        self,
        role: Role,
        stream_name: str,
        source_config: SourceConfig | None = None,
    ) -> None:
        """Negotiate a session as *role* on *stream_name*."""

        role = Role(role)
        name = (stream_name or "").strip()
        if not name:
            self._fail(InvalidInput("Please enter a stream name."))
        if self._attempt is not None:
            self._fail(AlreadyActive("A session is already in progress; stop it first."))
        source = source_config if source_config is not None else SourceConfig()
        if role is Role.PUBLISHER and self._capture is None:
            self._fail(InvalidInput("Broadcasting requires a capture source."))

        attempt = _Attempt(role=role, stream_name=name, source=source)
        self._attempt = attempt
        logger.info("Starting %s session for stream %r", role.value, name)
        try:
            await self._run(attempt)
        except asyncio.CancelledError:
            if self._attempt is attempt:
                self._attempt = None
                await self._release(attempt)
            raise
        except Exception as exc:
            if self._attempt is not attempt:
                logger.debug("Ignoring failure of a stopped attempt: %s", exc)
                return
            error = exc if isinstance(exc, CineCastError) else CineCastError(f"Session start failed: {exc}")
            if error is not attempt.last_error:
                self._report(error)
            self._attempt = None
            await self._release(attempt)
            if error is exc:
                raise
            raise error from exc

    async def stop(self) -> None:
        """Release the active attempt; safe to call at any time."""

        attempt, self._attempt = self._attempt, None
        if attempt is None:
            return
        await self._release(attempt)
        self._record("session", "stopped", "Session stopped")

    # ----------------------------- implementation --------------------------
    async def _run(self, attempt: _Attempt) -> None:
        if attempt.role is Role.PUBLISHER:
            tracks = await self._acquire_tracks(attempt.source)
            if self._attempt is not attempt:
                await self._release_capture()
                return
            attempt.tracks = tracks
            attempt.captured = True

        channel = SignalingChannel(
            self._transport_factory(), connect_timeout=self._settings.connect_timeout
        )
        attempt.channel = channel
        channel.on_message(partial(self._handle_message, attempt))
        channel.on_status_change(partial(self._handle_status, attempt))
        channel.on_error(partial(self._handle_channel_error, attempt))
        self._record("signaling", "connecting", "Connecting...")
        await channel.connect(self._settings.relay_url)
        if self._attempt is not attempt:
            return
        self._record("signaling", "connected", "Connected to relay")

        session = NegotiationSession(
            attempt.role,
            self._engine,
            media_source=attempt.source.source,
            ice_servers=self._settings.ice_servers,
            receive_audio=self._settings.receive_audio,
        )
        attempt.session = session
        session.subscribe("state", partial(self._handle_state, attempt))
        session.subscribe("track", partial(self._handle_track, attempt))
        session.subscribe("connection_state", partial(self._handle_connection_state, attempt))
        session.subscribe("ice_connection_state", partial(self._handle_ice_state, attempt))
        session.create()
        await session.build_local(attempt.tracks)
        if self._attempt is not attempt:
            return
        description = await session.local_description_ready()
        if description is None or self._attempt is not attempt:
            return

        payload = encode_offer(description, attempt.stream_name, attempt.role)
        if not await channel.send(payload):
            raise attempt.last_error or TransportError("Unable to send offer to relay")
        attempt.offer_sent = True
        self._record(
            "signaling",
            "offer_sent",
            f"Sent payload for {attempt.stream_name} ({attempt.role.action})",
            metadata={"candidates": session.candidate_count},
        )

    async def _acquire_tracks(self, source: SourceConfig) -> list[Any]:
        capture = self._capture
        assert capture is not None
        try:
            if source.source is MediaSource.FILE:
                assert source.file_path is not None
                self._record("capture", "loading_file", f"Loading video file: {source.file_path.name}")
                tracks = await capture.acquire_file_tracks(source.file_path)
            else:
                self._record("capture", "opening_camera", "Opening camera...")
                tracks = await capture.acquire_camera_tracks(source.camera)
        except CaptureError:
            await self._release_capture()
            raise
        except Exception as exc:
            await self._release_capture()
            raise CaptureError(f"Unable to acquire media: {exc}") from exc
        if not tracks:
            await self._release_capture()
            raise CaptureError("No media tracks were captured")
        self._record("capture", "tracks_ready", f"Captured {len(tracks)} local track(s)")
        return list(tracks)

    async def _release(self, attempt: _Attempt) -> None:
        session, attempt.session = attempt.session, None
        channel, attempt.channel = attempt.channel, None
        try:
            if session is not None:
                await session.close()
        finally:
            try:
                if channel is not None:
                    await channel.close()
            finally:
                if attempt.captured:
                    attempt.captured = False
                    attempt.tracks = []
                    await self._release_capture()

    async def _release_capture(self) -> None:
        if self._capture is None:
            return
        try:
            await self._capture.release()
        except Exception as exc:
            logger.warning("Error while releasing captured media: %s", exc)

    async def _handle_message(self, attempt: _Attempt, text: str) -> None:
        if self._attempt is not attempt:
            return
        self._record("signaling", "message_received", "Received remote payload", metadata={"length": len(text)})
        result = decode_remote(text)
        if not result.ok:
            assert result.error is not None
            self._report(result.error)
            return
        session = attempt.session
        if session is None:
            self._record("negotiation", "message_ignored", "No active session; ignoring remote description")
            return
        outcome = await session.apply_remote(result.description)
        if self._attempt is not attempt:
            return
        if not outcome.ok:
            assert outcome.error is not None
            self._report(outcome.error)
            return
        self._record("negotiation", "remote_applied", "Remote description set")

    def _handle_status(self, attempt: _Attempt, status: ConnectionStatus) -> None:
        if self._attempt is not attempt:
            return
        if status is ConnectionStatus.DISCONNECTED:
            self._record("signaling", "disconnected", "Disconnected from relay")
        self._notifier.notify("status", status)

    def _handle_channel_error(self, attempt: _Attempt, error: Exception) -> None:
        if self._attempt is not attempt:
            return
        attempt.last_error = error
        self._report(error)

    def _handle_state(self, attempt: _Attempt, state: NegotiationState) -> None:
        if self._attempt is not attempt:
            return
        if state is NegotiationState.ACTIVE:
            self._record("negotiation", "active", "Media session active")
        self._notifier.notify("state", state)

    def _handle_track(self, attempt: _Attempt, track: Any) -> None:
        if self._attempt is not attempt:
            return
        kind = getattr(track, "kind", "media")
        self._record("media", "track_received", f"Received {kind} track from broadcast")
        self._notifier.notify("track", track)

    def _handle_connection_state(self, attempt: _Attempt, state: str) -> None:
        if self._attempt is attempt:
            self._record("media", "connection_state", f"Connection state: {state}")

    def _handle_ice_state(self, attempt: _Attempt, state: str) -> None:
        if self._attempt is attempt:
            self._record("media", "ice_connection_state", f"ICE connection state: {state}")

    def _fail(self, error: CineCastError) -> None:
        self._report(error)
        raise error

    def _report(self, error: Exception) -> None:
        logger.warning("%s: %s", type(error).__name__, error)
        self._record("error", type(error).__name__, str(error))
        self._notifier.notify("error", error)

    def _record(
        self,
        category: str,
        event: str,
        message: str,
        *,
        metadata: dict[str, object | None] | None = None,
    ) -> None:
        entry = self._events.record(category, event, message, metadata=metadata)
        self._notifier.notify("event", entry)


def create_controller(
    settings: ClientSettings | None = None,
    *,
    engine: MediaEngine | None = None,
    capture: CaptureSource | None = None,
    event_log: EventLog | None = None,
) -> SessionController:
    """Build a controller wired to aiortc, local capture and a WebSocket relay."""

    resolved = settings if settings is not None else ClientSettings()
    return SessionController(
        engine if engine is not None else AiortcEngine(),
        capture if capture is not None else MediaCapture(camera=resolved.camera, fps=resolved.fps),
        settings=resolved,
        event_log=event_log,
    )


__all__ = ["SessionController", "create_controller"]
