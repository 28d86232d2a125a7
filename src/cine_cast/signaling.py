"""State-tracked wrapper around the relay transport."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Callable

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, WebSocketException

from .errors import AlreadyActive, NotConnected, TransportError
from .events import Notifier

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0


class ConnectionStatus(str, Enum):
    """Lifecycle of a :class:`SignalingChannel`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RelayTransport(ABC):
    """Opaque bidirectional text transport to the relay."""

    @abstractmethod
    async def open(self, url: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def send(self, text: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def messages(self) -> AsyncIterator[str]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class WebSocketTransport(RelayTransport):
    """Relay transport backed by a ``websockets`` client connection."""

    def __init__(self, **connect_kwargs: Any) -> None:
        self._connect_kwargs = connect_kwargs
        self._connection: Any = None

    def _require_connection(self) -> Any:
        if self._connection is None:
            raise NotConnected("WebSocket is not connected")
        return self._connection

    async def open(self, url: str) -> None:
        try:
            self._connection = await websockets.connect(url, **self._connect_kwargs)
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"Unable to connect to relay at {url}: {exc}") from exc

    async def send(self, text: str) -> None:
        connection = self._require_connection()
        try:
            await connection.send(text)
        except ConnectionClosed as exc:
            raise TransportError(f"Relay connection closed while sending: {exc}") from exc

    async def messages(self) -> AsyncIterator[str]:
        connection = self._require_connection()
        try:
            async for message in connection:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", "replace")
                yield message
        except ConnectionClosedError as exc:
            raise TransportError(f"Relay connection lost: {exc}") from exc

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()


class SignalingChannel:
    """Tracks the relay connection status and forwards raw text messages.

    The channel never interprets payloads and never reconnects on its own.
    """

    def __init__(
        self,
        transport: RelayTransport | None = None,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        if connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        self._transport = transport if transport is not None else WebSocketTransport()
        self._connect_timeout = connect_timeout
        self._status = ConnectionStatus.DISCONNECTED
        self._notifier = Notifier("signaling")
        self._reader: asyncio.Task[None] | None = None
        self._opened = False
        self._url: str | None = None

    # ------------------------------ properties -----------------------------
    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def url(self) -> str | None:
        return self._url

    # ---------------------------- subscriptions ----------------------------
    def on_message(self, handler: Callable[[str], Any] | None) -> None:
        self._notifier.subscribe("message", handler)

    def on_status_change(self, handler: Callable[[ConnectionStatus], Any] | None) -> None:
        self._notifier.subscribe("status", handler)

    def on_error(self, handler: Callable[[Exception], Any] | None) -> None:
        self._notifier.subscribe("error", handler)

    # ------------------------------ operations -----------------------------
    async def connect(self, url: str) -> None:
        """Open the transport, resolving once the relay accepted the connection."""

        if self._status is not ConnectionStatus.DISCONNECTED:
            raise AlreadyActive(f"Signaling channel is already {self._status.value}")
        self._url = url
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            await asyncio.wait_for(self._transport.open(url), timeout=self._connect_timeout)
        except asyncio.CancelledError:
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise
        except asyncio.TimeoutError as exc:
            error = TransportError(f"Timed out connecting to relay at {url}")
            self._fail(error)
            raise error from exc
        except TransportError as exc:
            self._fail(exc)
            raise
        except OSError as exc:
            error = TransportError(f"Unable to connect to relay at {url}: {exc}")
            self._fail(error)
            raise error from exc
        self._opened = True
        if self._status is not ConnectionStatus.CONNECTING:
            await self._release_transport()
            raise TransportError("Signaling channel was closed while connecting")
        self._set_status(ConnectionStatus.CONNECTED)
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def send(self, text: str) -> bool:
        """Send *text*; failures are reported through the error handler."""

        if self._status is not ConnectionStatus.CONNECTED:
            self._report(NotConnected("Cannot send message - relay is not connected"))
            return False
        try:
            await self._transport.send(text)
        except (TransportError, OSError) as exc:
            error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
            self._report(error)
            await self.close()
            return False
        logger.debug("Sent %d characters to relay", len(text))
        return True

    async def close(self) -> None:
        reader, self._reader = self._reader, None
        self._set_status(ConnectionStatus.DISCONNECTED)
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        await self._release_transport()

    # ----------------------------- implementation --------------------------
    async def _read_loop(self) -> None:
        try:
            async for message in self._transport.messages():
                await self._notifier.emit("message", message)
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            self._report(exc)
        if self._status is ConnectionStatus.CONNECTED:
            logger.info("Relay closed the signaling connection")
            self._reader = None
            self._set_status(ConnectionStatus.DISCONNECTED)
            await self._release_transport()

    async def _release_transport(self) -> None:
        if not self._opened:
            return
        self._opened = False
        try:
            await self._transport.close()
        except (TransportError, OSError) as exc:
            logger.warning("Error while closing relay transport: %s", exc)

    def _fail(self, error: TransportError) -> None:
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._report(error)

    def _report(self, error: Exception) -> None:
        logger.warning("Signaling error: %s", error)
        self._notifier.notify("error", error)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        logger.info("Signaling status %s -> %s", self._status.value, status.value)
        self._status = status
        self._notifier.notify("status", status)


__all__ = [
    "ConnectionStatus",
    "DEFAULT_CONNECT_TIMEOUT",
    "RelayTransport",
    "SignalingChannel",
    "WebSocketTransport",
]
