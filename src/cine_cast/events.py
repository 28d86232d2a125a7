"""Single-subscriber notification hub used by the signaling components."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class Notifier:
    """Dispatch named notifications to at most one handler per kind.

    Registering a handler for a kind replaces the previous one. Handlers may
    be plain callables or coroutine functions. Exceptions raised by a handler
    are logged and never propagate into the emitter.
    """

    def __init__(self, owner: str = "notifier") -> None:
        self._owner = owner
        self._handlers: dict[str, Handler] = {}
        self._pending: set[asyncio.Task[Any]] = set()

    def subscribe(self, kind: str, handler: Handler | None) -> None:
        if handler is None:
            self._handlers.pop(kind, None)
        else:
            self._handlers[kind] = handler

    async def emit(self, kind: str, *args: Any) -> None:
        """Invoke the handler for *kind* and wait for it to finish."""

        handler = self._handlers.get(kind)
        if handler is None:
            return
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s handler for %r failed", self._owner, kind)

    def notify(self, kind: str, *args: Any) -> None:
        """Invoke the handler for *kind* from synchronous code.

        Coroutine handlers are scheduled on the running loop.
        """

        handler = self._handlers.get(kind)
        if handler is None:
            return
        try:
            result = handler(*args)
        except Exception:
            logger.exception("%s handler for %r failed", self._owner, kind)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "%s async handler failed", self._owner, exc_info=(type(exc), exc, exc.__traceback__)
            )

    def clear(self) -> None:
        self._handlers.clear()


__all__ = ["Handler", "Notifier"]
