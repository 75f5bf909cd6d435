"""Family-scoped audit trail for admin actions."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .models import AuditEvent, utcnow


class AuditLog:
    """Record who changed what in which family.

    Events are kept in memory, newest last, up to ``retain`` entries. The
    service records an event only after the unit of work it describes has
    committed.
    """

    def __init__(self, *, retain: int = 5000, clock: Callable[[], datetime] | None = None) -> None:
        self._events: list[AuditEvent] = []
        self._retain = retain
        self._clock = clock or utcnow
        self._lock = threading.Lock()

    def record(
        self,
        actor: str,
        action: str,
        target: str,
        *,
        family_id: str,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor=actor,
            action=action,
            target=target,
            family_id=family_id,
            timestamp=timestamp or self._clock(),
            details=dict(details or {}),
        )
        with self._lock:
            self._events.append(event)
            overflow = len(self._events) - self._retain
            if overflow > 0:
                del self._events[:overflow]
        return event

    def entries(
        self,
        *,
        action: str | None = None,
        target: str | None = None,
        family_id: str | None = None,
        actor: str | None = None,
    ) -> tuple[AuditEvent, ...]:
        criteria = {"action": action, "target": target, "family_id": family_id, "actor": actor}
        wanted = {name: value for name, value in criteria.items() if value is not None}
        with self._lock:
            snapshot = list(self._events)
        return tuple(event for event in snapshot if all(getattr(event, name) == value for name, value in wanted.items()))

    def latest(self, action: str | None = None) -> AuditEvent | None:
        matching = self.entries(action=action)
        return matching[-1] if matching else None


__all__ = ["AuditLog"]
