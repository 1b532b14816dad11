"""SSE fan-out: event bus → per-client asyncio queues."""

import asyncio
from typing import Iterable

from attache.event_bus import CLIENT_EVENTS, EventBus, Event
from attache.logging import get_logger

logger = get_logger()


class EventBroadcaster:
    """Broadcasts client-facing bus events to every connected SSE subscriber.

    Usage:
        broadcaster = EventBroadcaster(bus)
        queue = broadcaster.subscribe(initial=snapshot_events)
        # In async endpoint:
        while (event := await queue.get()) is not None:
            yield event

    The bus dispatches synchronously on the event loop thread, so the
    queues are fed with ``put_nowait`` directly.
    """

    def __init__(self, bus: EventBus, max_queue: int = 1000):
        self._bus = bus
        self._max_queue = max_queue
        self._subscribers: list[asyncio.Queue[dict | None]] = []
        bus.subscribe(self._on_event)

    def _on_event(self, event: Event) -> None:
        if event.type not in CLIENT_EVENTS:
            return
        payload = event.to_dict()
        for q in list(self._subscribers):
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("SSE subscriber queue full, dropping %s", event.type)

    def subscribe(self, initial: Iterable[dict] = ()) -> asyncio.Queue[dict | None]:
        """Create a subscriber queue, pre-filled with *initial* events."""
        q: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=self._max_queue)
        for event in initial:
            q.put_nowait(event)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def close(self) -> None:
        """Signal all subscribers to stop and detach from the bus."""
        for q in self._subscribers:
            try:
                q.put_nowait(None)
            except asyncio.QueueFull:
                pass
        self._subscribers.clear()
        self._bus.unsubscribe(self._on_event)
