from __future__ import annotations

import asyncio
import json

from ksef_gui.application.events import EventHub


def test_publish_reaches_every_subscriber_in_order():
    async def scenario():
        hub = EventHub()
        first = await hub.subscribe()
        second = await hub.subscribe()
        await hub.publish("item-started", {"index": 0})
        await hub.publish("item-done", {"index": 0})
        return [await first.__anext__(), await first.__anext__()], second.drain()

    received, drained = asyncio.run(scenario())

    assert [json.loads(message) for message in received] == [
        {"type": "item-started", "data": {"index": 0}},
        {"type": "item-done", "data": {"index": 0}},
    ]
    assert drained == received


def test_late_subscriber_gets_no_replay():
    async def scenario():
        hub = EventHub()
        await hub.publish("job-done", {"count": 1})
        late = await hub.subscribe()
        return late.drain()

    assert asyncio.run(scenario()) == []


def test_stalled_subscriber_is_dropped_without_affecting_others():
    async def scenario():
        hub = EventHub()
        stalled = await hub.subscribe(maxsize=1)
        healthy = await hub.subscribe()
        await hub.publish("a")
        await hub.publish("b")
        return hub, stalled, healthy

    hub, stalled, healthy = asyncio.run(scenario())

    assert hub.subscriber_count == 1
    assert stalled.closed
    assert [json.loads(message)["type"] for message in healthy.drain()] == ["a", "b"]


def test_closed_subscriber_is_dropped_on_next_publish():
    async def scenario():
        hub = EventHub()
        subscription = await hub.subscribe()
        subscription.close()
        await hub.publish("ping")
        return hub.subscriber_count

    assert asyncio.run(scenario()) == 0


def test_unsubscribe_is_idempotent_and_ends_iteration():
    async def scenario():
        hub = EventHub()
        subscription = await hub.subscribe()
        await subscription.aclose()
        await hub.unsubscribe(subscription)
        return [message async for message in subscription], hub.subscriber_count

    messages, count = asyncio.run(scenario())

    assert messages == []
    assert count == 0


def test_close_ends_open_streams():
    async def scenario():
        hub = EventHub()
        subscription = await hub.subscribe()

        async def consume():
            return [message async for message in subscription]

        consumer = asyncio.create_task(consume())
        await hub.publish("item-started", {"index": 1})
        await asyncio.sleep(0)
        await hub.close()
        return await asyncio.wait_for(consumer, timeout=1), hub.subscriber_count

    messages, count = asyncio.run(scenario())

    assert len(messages) == 1
    assert count == 0
