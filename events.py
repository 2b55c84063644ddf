"""Outbound run events (status, log lines, thoughts, frames).

The agent writes to an :class:`EventSink`; nothing in the agent depends on a
subscriber existing or on delivery succeeding.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

EventType = Literal["status", "log", "thought", "frame"]


@dataclass(frozen=True)
class RunEvent:
    run_id: str
    type: EventType
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            **self.data,
        }


class EventSink(ABC):
    """Abstract destination for run events."""

    @abstractmethod
    def emit(self, event: RunEvent) -> None:
        """Deliver one event."""


class NullEventSink(EventSink):
    def emit(self, event: RunEvent) -> None:
        return None


class LoggingEventSink(EventSink):
    """Mirror log/status/thought events to a logger; frames are skipped."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("pathfinder.events")

    def emit(self, event: RunEvent) -> None:
        if event.type == "frame":
            return
        if event.type == "status":
            self.logger.info(f"[{event.run_id}] status={event.data.get('status')}")
        elif event.type == "thought":
            self.logger.info(f"[{event.run_id}] thought: {event.data.get('message', '')}")
        else:
            self.logger.info(f"[{event.run_id}] {event.data.get('message', '')}")


class JsonlEventSink(EventSink):
    """Append events as JSON lines. Frames are reduced to their size."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def emit(self, event: RunEvent) -> None:
        payload = event.to_dict()
        if event.type == "frame" and "data" in payload:
            payload["data"] = f"<{len(payload['data'])} base64 chars>"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload) + "\n")


class CollectingEventSink(EventSink):
    """Keep events in memory."""

    def __init__(self) -> None:
        self.events: List[RunEvent] = []

    def emit(self, event: RunEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[RunEvent]:
        return [e for e in self.events if e.type == event_type]


class FanOutEventSink(EventSink):
    def __init__(self, *sinks: EventSink):
        self.sinks = list(sinks)

    def emit(self, event: RunEvent) -> None:
        for sink in self.sinks:
            publish(sink, event)


def publish(sink: Optional[EventSink], event: RunEvent, logger: Optional[logging.Logger] = None) -> None:
    """Deliver ``event``; sink failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception as exc:
        (logger or logging.getLogger("pathfinder.events")).warning(
            f"Event sink {type(sink).__name__} failed for {event.type}: {exc}"
        )
