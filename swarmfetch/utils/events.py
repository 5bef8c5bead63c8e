"""Observability events for swarmfetch.

Components report what happened (peer added, block verified, flow-control
violation...) as typed events on an :class:`EventBus`. Events are recorded in
a replay buffer as soon as they are emitted and delivered to registered
handlers by a processing task once the bus is started.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from swarmfetch.utils.logging_config import get_logger


class EventPriority(Enum):
    """Event priority levels."""

    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class EventType(Enum):
    """Built-in event types."""

    # Session
    SESSION_STATE_CHANGED = "session_state_changed"
    DOWNLOAD_COMPLETE = "download_complete"
    DOWNLOAD_FAILED = "download_failed"

    # Peers
    PEER_ADDED = "peer_added"
    HANDSHAKE_REJECTED = "handshake_rejected"

    # Discovery
    DHT_PEER_FOUND = "dht_peer_found"
    DHT_QUERY_COMPLETE = "dht_query_complete"
    DHT_ERROR = "dht_error"

    # Metadata
    METADATA_REQUESTED = "metadata_requested"
    METADATA_READY = "metadata_ready"
    METADATA_WARNING = "metadata_warning"
    METADATA_ERROR = "metadata_error"

    # Chunks and blocks
    CHUNK_REQUESTED = "chunk_requested"
    CHUNK_RECEIVED = "chunk_received"
    CHUNK_REQUEST_FAILED = "chunk_request_failed"
    FLOW_CONTROL_VIOLATION = "flow_control_violation"
    BLOCK_VERIFIED = "block_verified"
    BLOCK_VERIFICATION_FAILED = "block_verification_failed"


@dataclass
class Event:
    """Base event class."""

    event_type: str = ""
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    priority: EventPriority = EventPriority.NORMAL
    source: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "event_id": self.event_id,
            "priority": self.priority.value,
            "source": self.source,
            "data": self.data,
        }

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def make_event(
    event_type: EventType,
    source: str | None = None,
    priority: EventPriority = EventPriority.NORMAL,
    **data: Any,
) -> Event:
    """Build an event of the given type with keyword data."""
    return Event(
        event_type=event_type.value,
        priority=priority,
        source=source,
        data=data,
    )


class EventHandler(ABC):
    """Base class for event handlers."""

    def __init__(self, name: str):
        """Initialize event handler."""
        self.name = name
        self.logger = get_logger(f"event_handler.{name}")

    @abstractmethod
    async def handle(self, event: Event) -> None:
        """Handle an event."""

    def can_handle(self, _event: Event) -> bool:
        """Check if this handler can handle the event."""
        return True


class CallbackHandler(EventHandler):
    """Adapts a plain callable into an event handler."""

    def __init__(self, name: str, callback: Callable[[Event], Any]):
        """Initialize callback handler."""
        super().__init__(name)
        self.callback = callback

    async def handle(self, event: Event) -> None:
        """Invoke the callback, awaiting it when it returns a coroutine."""
        result = self.callback(event)
        if asyncio.iscoroutine(result):
            await result


class EventBus:
    """Event bus for managing events and handlers."""

    def __init__(self, max_queue_size: int = 10000, max_replay_events: int = 1000):
        """Initialize event bus.

        Args:
            max_queue_size: Maximum size of event queue
            max_replay_events: Number of recent events kept for replay

        """
        self.max_queue_size = max_queue_size
        self.handlers: dict[str, list[EventHandler]] = {}
        self.event_queue: asyncio.Queue[Event] | None = None
        self.replay_buffer: list[Event] = []
        self.max_replay_events = max_replay_events
        self.running = False
        self.logger = get_logger(__name__)
        self._task: asyncio.Task | None = None

        self.stats = {
            "events_emitted": 0,
            "events_processed": 0,
            "events_dropped": 0,
            "handlers_registered": 0,
        }

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for an event type ("*" matches every type)."""
        self.handlers.setdefault(event_type, []).append(handler)
        self.stats["handlers_registered"] += 1
        self.logger.debug(
            "Registered handler '%s' for event type '%s'",
            handler.name,
            event_type,
        )

    def unregister_handler(self, event_type: str, handler: EventHandler) -> None:
        """Unregister an event handler."""
        with contextlib.suppress(KeyError, ValueError):
            self.handlers[event_type].remove(handler)

    def emit(self, event: Event) -> None:
        """Record an event and queue it for delivery.

        Never blocks: when the queue is full the event is dropped (it stays in
        the replay buffer).
        """
        self.stats["events_emitted"] += 1
        if self.max_replay_events:
            self.replay_buffer.append(event)
            if len(self.replay_buffer) > self.max_replay_events:
                self.replay_buffer.pop(0)

        if not self.running or self.event_queue is None:
            return

        try:
            self.event_queue.put_nowait(event)
        except asyncio.QueueFull:
            self.stats["events_dropped"] += 1
            self.logger.warning(
                "Event queue full, dropping event: %s",
                event.event_type,
            )

    async def start(self) -> None:
        """Start delivering events to handlers."""
        if self.running:
            return
        self.event_queue = asyncio.Queue(maxsize=self.max_queue_size)
        self.running = True
        self._task = asyncio.create_task(self._process_events())
        self.logger.debug("Event bus started")

    async def stop(self) -> None:
        """Stop the event bus."""
        if not self.running:
            return
        self.running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        self.logger.debug("Event bus stopped")

    async def _process_events(self) -> None:
        """Process events from the queue."""
        assert self.event_queue is not None
        while self.running:
            event = await self.event_queue.get()
            await self._handle_event(event)
            self.stats["events_processed"] += 1

    async def _handle_event(self, event: Event) -> None:
        """Deliver one event to every matching handler."""
        handlers = self.handlers.get(event.event_type, []) + self.handlers.get("*", [])
        tasks = [
            asyncio.create_task(self._handle_with_handler(event, handler))
            for handler in handlers
            if handler.can_handle(event)
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _handle_with_handler(self, event: Event, handler: EventHandler) -> None:
        """Handle event with a specific handler."""
        try:
            await handler.handle(event)
        except Exception:
            self.logger.exception(
                "Handler '%s' failed for event '%s'",
                handler.name,
                event.event_type,
            )

    def get_replay_events(
        self,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Get events from replay buffer, optionally filtered by type."""
        events = self.replay_buffer
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events[-limit:] if limit > 0 else list(events)

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics."""
        return {
            "running": self.running,
            "queue_size": self.event_queue.qsize() if self.event_queue else 0,
            "replay_buffer_size": len(self.replay_buffer),
            **self.stats,
        }
