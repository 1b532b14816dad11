import asyncio

from api.streaming import EventBroadcaster
from attache.event_bus import AGENT_STARTED, ERROR_LOG, STREAM_CHUNK, EventBus


def test_emit_records_and_dispatches():
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)
    event = bus.emit(AGENT_STARTED, agent="agent_1", data={"task": "t"})
    assert seen == [event]
    assert event.id == "evt_0001"
    assert event.summary == AGENT_STARTED
    assert event.to_dict()["data"] == {"task": "t"}
    assert bus.get_events(agent="agent_1") == [event]
    assert bus.get_events(types={STREAM_CHUNK}) == []


def test_every_listener_is_called_even_when_one_fails():
    bus = EventBus()
    seen_a, seen_b = [], []

    def broken(event):
        raise ValueError("listener bug")

    bus.subscribe(seen_a.append)
    bus.subscribe(broken)
    bus.subscribe(seen_b.append)
    bus.emit(AGENT_STARTED)
    assert len(seen_a) == len(seen_b) == 1

    bus.unsubscribe(broken)
    bus.unsubscribe(broken)
    assert bus.listener_count == 2


def test_history_is_bounded():
    bus = EventBus(max_events=3)
    for _ in range(5):
        bus.emit(STREAM_CHUNK)
    assert len(bus) == 3
    bus.clear()
    assert len(bus) == 0


async def test_broadcaster_filters_and_fans_out():
    bus = EventBus()
    broadcaster = EventBroadcaster(bus)
    first = broadcaster.subscribe(initial=[{"type": "queue_changed"}])
    second = broadcaster.subscribe()

    bus.emit(ERROR_LOG, level="error")  # not client-facing
    bus.emit(AGENT_STARTED, agent="agent_1")

    assert (await first.get())["type"] == "queue_changed"
    assert (await first.get())["type"] == AGENT_STARTED
    assert (await second.get())["agent"] == "agent_1"
    assert second.empty()

    broadcaster.unsubscribe(second)
    broadcaster.close()
    assert await asyncio.wait_for(first.get(), 1) is None
    assert broadcaster.subscriber_count == 0
    assert bus.listener_count == 0
