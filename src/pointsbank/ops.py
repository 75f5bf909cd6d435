"""Operational event log for Points Bank."""

from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict

from .models import utcnow


class StructuredLogger:
    """JSON lines event log with an in-memory tail.

    Every event carries ``timestamp`` and ``event``; the remaining fields are
    whatever the caller passes (member ids, points, counts). When ``path`` is
    set each event is also appended to that file.
    """

    def __init__(
        self,
        *,
        path: Path | None = None,
        retain: int = 1000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = path
        self._retain = retain
        self._clock = clock or utcnow
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def log(self, event_type: str, **fields: Any) -> dict:
        entry: Dict[str, Any] = {"timestamp": self._clock().isoformat(), "event": event_type, **fields}
        line = json.dumps(entry, default=str)
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._retain:
                del self._entries[: len(self._entries) - self._retain]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        with self._lock:
            return tuple(self._entries[-limit:])

    def events(self, event_type: str, **match: Any) -> tuple[dict, ...]:
        """Events of ``event_type`` whose fields equal every ``match`` value."""

        with self._lock:
            snapshot = list(self._entries)
        return tuple(
            entry
            for entry in snapshot
            if entry["event"] == event_type and all(entry.get(name) == value for name, value in match.items())
        )

    def last(self, event_type: str, **match: Any) -> dict | None:
        found = self.events(event_type, **match)
        return found[-1] if found else None


__all__ = ["StructuredLogger"]
