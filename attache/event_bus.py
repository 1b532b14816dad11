"""
EventBus - observer list carrying every user-visible state change.

Architecture:
    bus.emit() → Event → listeners[]
      ├── DebugLogListener  → Python logger (file + console)
      ├── EventBroadcaster  → SSE subscribers (api/streaming.py)
      └── tests             → plain callables collecting events

Any number of listeners can subscribe; none of them can clobber another.
Listeners run synchronously inside ``emit()`` on the event loop thread, so
they must not block. A failing listener is logged and skipped.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional


# ---- Event type constants ----

# Main conversation transcript
MESSAGE_APPENDED = "message_appended"
CONTEXT_REPLACED = "context_replaced"

# Main conversation streaming
STREAM_START = "stream_start"
STREAM_CHUNK = "stream_chunk"
STREAM_END = "stream_end"
TOOL_CALL = "tool_call"

# Agent lifecycle
AGENT_STARTED = "agent_started"
AGENT_RESUMED = "agent_resumed"
AGENT_MESSAGE = "agent_message"
AGENT_COMPLETED = "agent_completed"
AGENT_REMOVED = "agent_removed"

# Compaction
COMPACTION_START = "compaction_start"
COMPACTION_COMPLETE = "compaction_complete"

# Queue
QUEUE_CHANGED = "queue_changed"

# Errors
ERROR = "error"          # user-visible failure of an interaction
ERROR_LOG = "error_log"  # detailed log record from log_error()

# Events forwarded to transport clients (everything except raw log records)
CLIENT_EVENTS = frozenset({
    MESSAGE_APPENDED, CONTEXT_REPLACED,
    STREAM_START, STREAM_CHUNK, STREAM_END, TOOL_CALL,
    AGENT_STARTED, AGENT_RESUMED, AGENT_MESSAGE, AGENT_COMPLETED, AGENT_REMOVED,
    COMPACTION_START, COMPACTION_COMPLETE,
    QUEUE_CHANGED,
    ERROR,
})

MAIN = "main"

_logger = logging.getLogger("attache")


@dataclass(frozen=True)
class Event:
    """A single structured event.

    Fields:
        id: Process-unique event ID (e.g. "evt_0001").
        type: Event type constant (e.g. "agent_started").
        ts: ISO 8601 timestamp (UTC, millisecond precision).
        agent: Origin - an agent id, or "main" for the main conversation.
        level: Log level (debug/info/warning/error).
        summary: Short human-readable one-liner.
        data: Structured machine-readable payload.
    """
    id: str
    type: str
    ts: str
    agent: str
    level: str
    summary: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "ts": self.ts,
            "agent": self.agent,
            "level": self.level,
            "summary": self.summary,
            "data": self.data,
        }


Listener = Callable[[Event], None]


class EventBus:
    """Process-wide event bus with synchronous listener dispatch.

    Constructed once at startup and injected into the directory, runtime
    and coordinator. Only touched from the event loop thread.
    """

    def __init__(self, max_events: int = 5000):
        self._events: deque[Event] = deque(maxlen=max_events)
        self._listeners: list[Listener] = []
        self._next_event_id: int = 0

    def emit(
        self,
        type: str,
        *,
        agent: str = MAIN,
        level: str = "debug",
        summary: str = "",
        data: Optional[dict] = None,
    ) -> Event:
        """Create, store, and dispatch an Event.

        Args:
            type: Event type constant (e.g. AGENT_STARTED).
            agent: Origin agent id, or "main".
            level: Log level (debug/info/warning/error).
            summary: Short one-liner.
            data: Structured payload.

        Returns:
            The created Event.
        """
        self._next_event_id += 1
        event = Event(
            id=f"evt_{self._next_event_id:04d}",
            type=type,
            ts=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            agent=agent,
            level=level,
            summary=summary or type,
            data=data or {},
        )
        self._events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # Never let a listener break the emitter
                _logger.exception("Event listener %r failed on %s", listener, event.type)
        return event

    def subscribe(self, listener: Listener) -> None:
        """Register a listener called synchronously on each emit()."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove a previously registered listener."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def get_events(
        self,
        *,
        types: Optional[set[str]] = None,
        agent: Optional[str] = None,
        since_index: int = 0,
    ) -> list[Event]:
        """Return stored events, optionally filtered by type and origin."""
        events = list(self._events)[since_index:]
        return [
            e for e in events
            if (not types or e.type in types) and (agent is None or e.agent == agent)
        ]

    def clear(self) -> None:
        """Remove all stored events."""
        self._events.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def __len__(self) -> int:
        return len(self._events)


# ---- Listeners ----

class DebugLogListener:
    """Writes every Event to the Python logger at the event's level.

    Chunk events are skipped; they would flood the log one token at a time.
    """

    _LEVEL_MAP = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    _SKIP = frozenset({STREAM_CHUNK})

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def __call__(self, event: Event) -> None:
        if event.type in self._SKIP:
            return
        level = self._LEVEL_MAP.get(event.level, logging.DEBUG)
        tag = "error" if event.type in (ERROR, ERROR_LOG) else event.type
        prefix = f"[{event.agent}] " if event.agent != MAIN else ""
        self._logger.log(level, f"{prefix}{event.summary}", extra={"log_tag": tag})
