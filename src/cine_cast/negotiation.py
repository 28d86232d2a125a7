"""Negotiation state machine for a single call attempt."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from .engine import CANDIDATE, CONNECTION_STATE, ICE_CONNECTION_STATE, TRACK, MediaEngine, SessionHandle
from .errors import ApplyError
from .events import Notifier
from .models import MediaSource, Role, SessionDescription

logger = logging.getLogger(__name__)

DEFAULT_ICE_SERVERS: tuple[str, ...] = ("stun:stun.l.google.com:19302",)

_ANSWER_TYPES = frozenset({"answer", "pranswer"})
_CONNECTED_STATES = frozenset({"connected"})
_ICE_CONNECTED_STATES = frozenset({"connected", "completed"})


class NegotiationState(str, Enum):
    IDLE = "idle"
    BUILDING = "building"
    GATHERING_CANDIDATES = "gathering_candidates"
    READY = "ready"
    REMOTE_APPLIED = "remote_applied"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Outcome of :meth:`NegotiationSession.apply_remote`."""

    error: ApplyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, reason: str) -> "ApplyResult":
        return cls(error=ApplyError(reason))


class NegotiationSession:
    """Own one media session and drive it from offer to active media.

    The local description is only released once the engine reports the end
    of candidate gathering, so the single relay message carries every
    candidate. A session is not reusable once closed.

    Notifications available through :meth:`subscribe`: ``state``,
    ``local_description``, ``track``, ``connection_state`` and
    ``ice_connection_state``.
    """

    def __init__(
        self,
        role: Role,
        engine: MediaEngine,
        *,
        media_source: MediaSource = MediaSource.CAMERA,
        ice_servers: Sequence[str] = DEFAULT_ICE_SERVERS,
        receive_audio: bool = True,
    ) -> None:
        servers = tuple(server for server in ice_servers if server)
        if not servers:
            raise ValueError("At least one ICE server is required")
        self._role = Role(role)
        self._media_source = MediaSource(media_source)
        self._engine = engine
        self._ice_servers = servers
        self._receive_audio = receive_audio
        self._state = NegotiationState.IDLE
        self._handle: SessionHandle | None = None
        self._notifier = Notifier("negotiation")
        self._local_tracks: list[Any] = []
        self._remote_tracks: dict[object, Any] = {}
        self._candidate_count = 0
        self._gathering_complete = False
        self._connectivity_confirmed = False
        self._applying = False
        self._local_description: SessionDescription | None = None
        self._remote_description: SessionDescription | None = None
        self._ready_event = asyncio.Event()
        self._failure: Exception | None = None

    # ------------------------------ properties -----------------------------
    @property
    def role(self) -> Role:
        return self._role

    @property
    def media_source(self) -> MediaSource:
        return self._media_source

    @property
    def state(self) -> NegotiationState:
        return self._state

    @property
    def local_tracks(self) -> tuple[Any, ...]:
        return tuple(self._local_tracks)

    @property
    def remote_tracks(self) -> tuple[Any, ...]:
        return tuple(self._remote_tracks.values())

    @property
    def candidate_count(self) -> int:
        return self._candidate_count

    @property
    def local_description(self) -> SessionDescription | None:
        return self._local_description

    @property
    def remote_description(self) -> SessionDescription | None:
        return self._remote_description

    def subscribe(self, kind: str, handler: Callable[..., Any] | None) -> None:
        self._notifier.subscribe(kind, handler)

    # ------------------------------ operations -----------------------------
    def create(self) -> None:
        """Allocate the media session and start listening to its events."""

        if self._state is not NegotiationState.IDLE:
            raise RuntimeError(f"Negotiation session cannot be created while {self._state.value}")
        handle = self._engine.create_session(self._ice_servers)
        handle.subscribe(CANDIDATE, self._on_candidate)
        handle.subscribe(TRACK, self._on_track)
        handle.subscribe(CONNECTION_STATE, self._on_connection_state)
        handle.subscribe(ICE_CONNECTION_STATE, self._on_ice_connection_state)
        self._handle = handle
        self._set_state(NegotiationState.BUILDING)

    async def build_local(self, tracks: Iterable[Any] = ()) -> None:
        """Attach media, create the offer and start candidate gathering."""

        if self._state is not NegotiationState.BUILDING or self._handle is None:
            raise RuntimeError(f"Cannot build a local description while {self._state.value}")
        handle = self._handle
        if self._role is Role.PUBLISHER:
            local_tracks = list(tracks)
            if not local_tracks:
                raise ValueError("A publisher needs at least one local track")
            for track in local_tracks:
                handle.add_track(track)
                self._local_tracks.append(track)
        else:
            for kind in self._receive_kinds():
                handle.add_transceiver(kind, "recvonly")

        offer = await handle.create_offer()
        if self._state is NegotiationState.CLOSED:
            return
        await handle.set_local_description(offer)
        if self._state is NegotiationState.CLOSED:
            return
        self._set_state(NegotiationState.GATHERING_CANDIDATES)
        if self._gathering_complete:
            self._finalize_local()

    async def local_description_ready(self) -> SessionDescription | None:
        """Wait for the finalized local description; ``None`` once closed."""

        await self._ready_event.wait()
        if self._failure is not None:
            raise self._failure
        if self._state is NegotiationState.CLOSED:
            return None
        return self._local_description

    async def apply_remote(self, description: SessionDescription) -> ApplyResult:
        """Apply the counterpart's answer; failures leave the session open."""

        state = self._state
        if state is NegotiationState.CLOSED or self._handle is None:
            return ApplyResult.failure("session is closed")
        if self._applying or state in (NegotiationState.REMOTE_APPLIED, NegotiationState.ACTIVE):
            return ApplyResult.failure("remote description already applied")
        if state is not NegotiationState.READY:
            return ApplyResult.failure(f"session is not ready (state: {state.value})")
        if description.type not in _ANSWER_TYPES:
            return ApplyResult.failure(f"expected an answer, received {description.type!r}")

        self._applying = True
        try:
            await self._handle.set_remote_description(description)
        except Exception as exc:
            logger.warning("Media engine rejected remote description: %s", exc)
            return ApplyResult.failure(f"remote description rejected: {exc}")
        finally:
            self._applying = False
        if self._state is NegotiationState.CLOSED:
            return ApplyResult()
        self._remote_description = description
        self._set_state(NegotiationState.REMOTE_APPLIED)
        if self._connectivity_confirmed:
            self._set_state(NegotiationState.ACTIVE)
        return ApplyResult()

    async def close(self) -> None:
        if self._state is NegotiationState.CLOSED:
            return
        handle, self._handle = self._handle, None
        self._set_state(NegotiationState.CLOSED)
        self._ready_event.set()
        if handle is not None:
            try:
                await handle.close()
            except Exception as exc:
                logger.warning("Error while closing media session: %s", exc)

    # ----------------------------- implementation --------------------------
    def _receive_kinds(self) -> tuple[str, ...]:
        if self._receive_audio:
            return ("video", "audio")
        return ("video",)

    def _finalize_local(self) -> None:
        handle = self._handle
        description = handle.local_description() if handle is not None else None
        if description is None:
            self._failure = RuntimeError("Local description missing after candidate gathering")
            logger.error("%s", self._failure)
            self._ready_event.set()
            return
        self._local_description = description
        self._set_state(NegotiationState.READY)
        self._ready_event.set()
        self._notifier.notify("local_description", description)

    def _confirm_connectivity(self) -> None:
        self._connectivity_confirmed = True
        if self._state is NegotiationState.REMOTE_APPLIED:
            self._set_state(NegotiationState.ACTIVE)

    def _on_candidate(self, candidate: str | None) -> None:
        if self._state is NegotiationState.CLOSED:
            return
        if candidate is not None:
            self._candidate_count += 1
            logger.debug("Gathered candidate %s", candidate)
            return
        if self._gathering_complete:
            return
        self._gathering_complete = True
        logger.info("Candidate gathering complete (%d candidates)", self._candidate_count)
        if self._state is NegotiationState.GATHERING_CANDIDATES:
            self._finalize_local()

    def _on_track(self, track: Any) -> None:
        if self._state is NegotiationState.CLOSED:
            return
        if self._role is not Role.SUBSCRIBER:
            logger.debug("Ignoring inbound %s track on a publisher", getattr(track, "kind", "media"))
            return
        key = getattr(track, "id", None) or id(track)
        if key in self._remote_tracks:
            return
        self._remote_tracks[key] = track
        logger.info("Received %s track", getattr(track, "kind", "media"))
        self._confirm_connectivity()
        self._notifier.notify("track", track)

    def _on_connection_state(self, state: str) -> None:
        if self._state is NegotiationState.CLOSED:
            return
        logger.info("Connection state: %s", state)
        self._notifier.notify("connection_state", state)
        if state in _CONNECTED_STATES:
            self._confirm_connectivity()

    def _on_ice_connection_state(self, state: str) -> None:
        if self._state is NegotiationState.CLOSED:
            return
        logger.info("ICE connection state: %s", state)
        self._notifier.notify("ice_connection_state", state)
        if state in _ICE_CONNECTED_STATES:
            self._confirm_connectivity()

    def _set_state(self, state: NegotiationState) -> None:
        if state is self._state:
            return
        logger.debug("Negotiation %s -> %s", self._state.value, state.value)
        self._state = state
        self._notifier.notify("state", state)


__all__ = [
    "ApplyResult",
    "DEFAULT_ICE_SERVERS",
    "NegotiationSession",
    "NegotiationState",
]
