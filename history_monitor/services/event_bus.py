"""EventBus pushing monitor events to the UI over Server-Sent Events.

Events: new-record, auto-cleanup-tick, auto-cleanup-executed,
auto-cleanup-error, auto-cleanup-config-updated
"""

import contextlib
import json
import queue
import threading
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from datetime import datetime

NEW_RECORD = "new-record"
AUTO_CLEANUP_TICK = "auto-cleanup-tick"
AUTO_CLEANUP_EXECUTED = "auto-cleanup-executed"
AUTO_CLEANUP_ERROR = "auto-cleanup-error"
AUTO_CLEANUP_CONFIG_UPDATED = "auto-cleanup-config-updated"

# Ticks fire every second; replaying them to late subscribers is noise.
UNBUFFERED_EVENTS = frozenset({AUTO_CLEANUP_TICK})


@dataclass
class Event:
    """An event delivered to subscribers and SSE clients."""

    event_type: str
    data: dict
    timestamp: datetime = field(default_factory=datetime.now)
    id: str | None = None

    def to_sse(self) -> str:
        """Format the event as an SSE message.

        SSE format:
        event: <event_type>
        data: <json_data>
        id: <optional_id>

        """
        lines = [f"event: {self.event_type}", f"data: {json.dumps(self.data)}"]
        if self.id:
            lines.append(f"id: {self.id}")
        lines.append("")
        return "\n".join(lines) + "\n"


class EventBus:
    """Fan-out of monitor events to in-process callbacks and SSE streams.

    Callbacks run on the emitting thread (tailer observer or scheduler
    timer), in emission order. A failing callback never affects others.
    """

    def __init__(self, buffer_size: int = 100, queue_size: int = 500):
        """Initialize the EventBus.

        Args:
            buffer_size: Recent events replayed to new SSE subscribers.
            queue_size: Per-client queue bound; clients that fall this far
                behind are dropped.
        """
        self._buffer_size = buffer_size
        self._queue_size = queue_size
        self._event_buffer: list[Event] = []
        self._subscribers: dict[str, list[Callable[[Event], None]]] = {}
        self._sse_queues: list[queue.Queue] = []
        self._lock = threading.Lock()
        self._event_counter = 0

    def subscribe(self, event_type: str, callback: Callable[[Event], None]) -> None:
        """Subscribe to an event type, or "*" for all events."""
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Callable[[Event], None]) -> None:
        with self._lock:
            if event_type in self._subscribers:
                self._subscribers[event_type] = [
                    cb for cb in self._subscribers[event_type] if cb != callback
                ]

    def emit(self, event_type: str, data: dict) -> Event:
        """Emit an event to all subscribers and SSE clients.

        Args:
            event_type: One of the module-level event names.
            data: JSON-serializable payload.

        Returns:
            The created Event.
        """
        with self._lock:
            self._event_counter += 1
            event = Event(event_type=event_type, data=data, id=str(self._event_counter))

            if event_type not in UNBUFFERED_EVENTS:
                self._event_buffer.append(event)
                if len(self._event_buffer) > self._buffer_size:
                    self._event_buffer = self._event_buffer[-self._buffer_size :]

            callbacks = list(self._subscribers.get(event_type, []))
            callbacks += self._subscribers.get("*", [])

            dead_queues = []
            for q in self._sse_queues:
                try:
                    q.put_nowait(event)
                except queue.Full:
                    dead_queues.append(q)
            for q in dead_queues:
                self._sse_queues.remove(q)

        for callback in callbacks:
            with contextlib.suppress(Exception):
                callback(event)

        return event

    def get_sse_stream(
        self,
        include_buffer: bool = True,
        timeout: float = 30.0,
    ) -> Generator[str, None, None]:
        """Yield SSE-formatted events as they occur.

        Args:
            include_buffer: Send buffered events first.
            timeout: Seconds without events before a keep-alive comment.
        """
        event_queue: queue.Queue = queue.Queue(maxsize=self._queue_size)

        with self._lock:
            self._sse_queues.append(event_queue)
            backlog = list(self._event_buffer) if include_buffer else []

        try:
            for event in backlog:
                yield event.to_sse()
            while True:
                try:
                    event = event_queue.get(timeout=timeout)
                    yield event.to_sse()
                except queue.Empty:
                    yield ": keep-alive\n\n"
        finally:
            with self._lock:
                if event_queue in self._sse_queues:
                    self._sse_queues.remove(event_queue)

    def get_buffered_events(self, event_type: str | None = None) -> list[Event]:
        """Get buffered events, optionally of one type."""
        with self._lock:
            events = self._event_buffer.copy()
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events

    @property
    def subscriber_count(self) -> int:
        """Number of connected SSE clients."""
        with self._lock:
            return len(self._sse_queues)


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global EventBus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global EventBus (for testing)."""
    global _event_bus
    _event_bus = None
