"""Bounded in-memory log of user-facing session events."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable


@dataclass(slots=True)
class EventLogEntry:
    """Represents a status line shown to the person running a session."""

    timestamp: float
    category: str
    event: str
    message: str
    metadata: dict[str, object | None] | None = None

    def to_dict(self) -> dict[str, object | None]:
        payload: dict[str, object | None] = {
            "timestamp": self.timestamp,
            "category": self.category,
            "event": self.event,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


def format_entry(entry: EventLogEntry) -> str:
    """Render *entry* as ``[HH:MM:SS] message``."""

    stamp = time.strftime("%H:%M:%S", time.localtime(entry.timestamp))
    return f"[{stamp}] {entry.message}"


class EventLog:
    """Append-only event history capped at ``max_entries``."""

    def __init__(self, *, max_entries: int = 500) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._entries: Deque[EventLogEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        category: str,
        event: str,
        message: str,
        *,
        metadata: dict[str, object | None] | None = None,
    ) -> EventLogEntry:
        """Append a new event and return the stored entry."""

        cleaned_category = category.strip() if isinstance(category, str) else ""
        entry = EventLogEntry(
            timestamp=time.time(),
            category=cleaned_category or "general",
            event=event,
            message=message,
            metadata=self._clean_metadata(metadata),
        )
        self._entries.append(entry)
        return entry

    def tail(
        self,
        limit: int | None = None,
        *,
        category: str | None = None,
    ) -> list[EventLogEntry]:
        """Return the most recent entries, optionally filtering by category."""

        entries: Iterable[EventLogEntry] = list(self._entries)
        if category is not None:
            wanted = category.strip()
            if wanted:
                entries = [entry for entry in entries if entry.category == wanted]
        entries = list(entries)
        if limit is not None:
            try:
                limit_value = max(1, int(limit))
            except (TypeError, ValueError):
                limit_value = 1
            if len(entries) > limit_value:
                entries = entries[-limit_value:]
        return entries

    def events(self) -> list[str]:
        return [entry.event for entry in self._entries]

    @staticmethod
    def _clean_metadata(
        metadata: dict[str, object | None] | None,
    ) -> dict[str, object | None] | None:
        if not metadata:
            return None
        cleaned = {key: value for key, value in metadata.items() if value is not None}
        return cleaned or None


__all__ = ["EventLog", "EventLogEntry", "format_entry"]
