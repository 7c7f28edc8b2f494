"""Event Bus — in-process record of process lifecycle events.

The registry and the reporting loop emit here; the HTTP layer reads the
bounded history back out. Topic filters support wildcards: "process.*"
matches "process.started" and "process.exited".
"""

from __future__ import annotations

import fnmatch
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Event(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=_now)


class EventBus:
    """Bounded, topic-filterable history of emitted events."""

    def __init__(self, history_limit: int = 500) -> None:
        self._history: deque[Event] = deque(maxlen=history_limit)

    def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        event = Event(topic=topic, data=data or {}, source=source)
        self._history.append(event)
        return event

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Most recent events first, optionally filtered by topic pattern."""
        events = [
            e for e in self._history
            if topic_filter == "*" or fnmatch.fnmatch(e.topic, topic_filter)
        ]
        return list(reversed(events[-limit:]))
