"""Outbound progress/token events and the sinks that carry them."""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Protocol

logger = logging.getLogger(__name__)

EVENT_STATUS = "status"
EVENT_TOKEN = "token"
EVENT_COMPLETE = "complete"
EVENT_ERROR = "error"
EVENT_TYPES = (EVENT_STATUS, EVENT_TOKEN, EVENT_COMPLETE, EVENT_ERROR)
TERMINAL_EVENT_TYPES = (EVENT_COMPLETE, EVENT_ERROR)


@dataclass(frozen=True)
class PipelineEvent:
    """One tagged outbound event."""

    type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type}")

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES


def format_sse(event: PipelineEvent) -> str:
    """Serialize an event as ``event: <type>\\ndata: <json>\\n\\n``."""
    return f"event: {event.type}\ndata: {json.dumps(event.payload, default=str)}\n\n"


def status_event(status: str, message: str, **extra: Any) -> PipelineEvent:
    payload = {"status": status, "message": message}
    payload.update({k: v for k, v in extra.items() if v is not None})
    return PipelineEvent(EVENT_STATUS, payload)


def token_event(token: str) -> PipelineEvent:
    return PipelineEvent(EVENT_TOKEN, {"token": token})


def complete_event(profile: Dict[str, Any], metadata: Dict[str, Any]) -> PipelineEvent:
    return PipelineEvent(EVENT_COMPLETE, {"profile": profile, "metadata": metadata})


def error_event(message: str) -> PipelineEvent:
    return PipelineEvent(EVENT_ERROR, {"error": message})


class EventSink(Protocol):
    """Destination for a session's events, consumed in emission order."""

    async def emit(self, event: PipelineEvent) -> None: ...

    async def close(self) -> None: ...


class QueueEventSink:
    """Single-slot queue between a running session and the HTTP response.

    ``emit`` waits until the previous event has been taken, so at most one
    event is in flight and order is preserved.
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
        self._closed = False

    async def emit(self, event: PipelineEvent) -> None:
        if self._closed:
            raise RuntimeError("Event sink is closed")
        await self._queue.put(event)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(self._CLOSED)

    async def events(self) -> AsyncIterator[PipelineEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class RecordingSink:
    """Collects events in memory (tests, offline runs)."""

    def __init__(self):
        self.events: List[PipelineEvent] = []
        self.closed = False

    async def emit(self, event: PipelineEvent) -> None:
        if self.closed:
            raise RuntimeError("Event sink is closed")
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True

    def of_type(self, event_type: str) -> List[PipelineEvent]:
        return [e for e in self.events if e.type == event_type]

    def tokens_text(self) -> str:
        return "".join(e.payload["token"] for e in self.of_type(EVENT_TOKEN))
