import asyncio
import json

import fakeredis
import fakeredis.aioredis
import pytest
import redis.exceptions

from orderdesk.app.events import ALL, ORDER_ITEMS, ORDERS, ChangeEvent, ChangeNotifier
from orderdesk.app.routes_orders_sse import format_event, order_change_stream


@pytest.mark.anyio
async def test_topic_fan_out():
    notifier = ChangeNotifier()
    orders = notifier.subscribe(ORDERS)
    items = notifier.subscribe(ORDER_ITEMS)
    everything = notifier.subscribe(ALL)

    await notifier.publish(ORDERS, "insert", "o-1", status="pending", order_number="ORD-1")
    await notifier.publish(ORDER_ITEMS, "insert", "o-1")

    assert (await orders.get(timeout=1)).order_number == "ORD-1"
    assert await orders.get(timeout=0.01) is None
    assert (await items.get(timeout=1)).topic == ORDER_ITEMS
    seqs = [(await everything.get(timeout=1)).seq for _ in range(2)]
    assert seqs == sorted(seqs)


@pytest.mark.anyio
async def test_unknown_topics_rejected():
    notifier = ChangeNotifier()
    with pytest.raises(ValueError):
        notifier.subscribe("menu")
    with pytest.raises(ValueError):
        await notifier.publish(ALL, "insert", "o-1")


@pytest.mark.anyio
async def test_overflow_replaced_by_resync():
    notifier = ChangeNotifier(maxsize=2)
    sub = notifier.subscribe(ALL)
    for i in range(3):
        await notifier.publish(ORDERS, "update", f"o-{i}")

    event = await sub.get(timeout=1)
    assert event.kind == "resync"
    assert sub.overflows == 1
    assert await sub.get(timeout=0.01) is None


@pytest.mark.anyio
async def test_close_ends_iteration_and_unsubscribes():
    notifier = ChangeNotifier()
    async with notifier.subscribe(ORDERS) as sub:
        assert notifier.subscriber_count == 1
        await notifier.publish(ORDERS, "update", "o-1")
        received = []
        async for event in sub:
            received.append(event.order_id)
            sub.close()
    assert received == ["o-1"]
    assert notifier.subscriber_count == 0
    assert await sub.get(timeout=0.01) is None
    sub.close()


def test_event_roundtrip_ignores_unknown_keys():
    event = ChangeEvent.from_dict(
        {"topic": ORDERS, "kind": "update", "order_id": "o-1", "extra": True}
    )
    assert event.order_id == "o-1"
    assert event.as_dict()["kind"] == "update"


@pytest.mark.anyio
async def test_relay_between_processes():
    server = fakeredis.FakeServer()
    sender = ChangeNotifier(fakeredis.aioredis.FakeRedis(server=server))
    receiver = ChangeNotifier(fakeredis.aioredis.FakeRedis(server=server))
    sub = receiver.subscribe(ORDERS)
    relay = asyncio.create_task(receiver.relay(poll_timeout=0.05))
    own = asyncio.create_task(sender.relay(poll_timeout=0.05))
    try:
        await asyncio.sleep(0.1)
        mine = sender.subscribe(ORDERS)
        await sender.publish(ORDERS, "insert", "o-9", status="pending")
        event = await sub.get(timeout=2)
        assert (event.order_id, event.origin) == ("o-9", sender.origin)
        # the sender's own relay does not deliver its event a second time
        assert (await mine.get(timeout=1)).order_id == "o-9"
        await asyncio.sleep(0.2)
        assert await mine.get(timeout=0.01) is None
    finally:
        for task in (relay, own):
            task.cancel()
        await asyncio.gather(relay, own, return_exceptions=True)


@pytest.mark.anyio
async def test_sse_stream_frames():
    notifier = ChangeNotifier()
    stream = order_change_stream(notifier, keepalive=0.01)

    first = await stream.__anext__()
    assert first.startswith("event: order_change\n")
    assert '"kind": "resync"' in first
    assert await stream.__anext__() == ":keepalive\n\n"

    await notifier.publish(ORDERS, "update", "o-1", status="ready")
    frame = await stream.__anext__()
    data = json.loads(frame.split("data: ", 1)[1])
    assert data["order_id"] == "o-1"
    assert data["status"] == "ready"

    await stream.aclose()
    assert notifier.subscriber_count == 0


def test_format_event():
    event = ChangeEvent(topic=ORDERS, kind="insert", order_id="o-1", seq=7)
    frame = format_event(event)
    assert frame.startswith("event: order_change\nid: 7\ndata: {")
    assert frame.endswith("\n\n")


class DroppingRedis:
    """Redis whose first pub/sub connection dies after one poll."""

    def __init__(self, client):
        self.client = client
        self.connections = 0

    def pubsub(self):
        self.connections += 1
        pubsub = self.client.pubsub()
        if self.connections == 1:
            receive = pubsub.get_message
            polls = 0

            async def get_message(**kwargs):
                nonlocal polls
                polls += 1
                if polls > 1:
                    raise redis.exceptions.ConnectionError("connection reset by peer")
                return await receive(**kwargs)

            pubsub.get_message = get_message
        return pubsub

    async def publish(self, channel, data):
        return await self.client.publish(channel, data)


@pytest.mark.anyio
async def test_relay_recovers_from_dropped_connection():
    server = fakeredis.FakeServer()
    sender = ChangeNotifier(fakeredis.aioredis.FakeRedis(server=server))
    flaky = DroppingRedis(fakeredis.aioredis.FakeRedis(server=server))
    receiver = ChangeNotifier(flaky)
    everything = receiver.subscribe(ALL)
    items = receiver.subscribe(ORDER_ITEMS)
    relay = asyncio.create_task(receiver.relay(poll_timeout=0.05, backoff=0.05))
    try:
        resync = await everything.get(timeout=2)
        assert resync.kind == "resync"
        assert (await items.get(timeout=1)).kind == "resync"
        assert flaky.connections == 2

        await sender.publish(ORDERS, "update", "o-3", status="ready")
        event = await everything.get(timeout=2)
        assert (event.order_id, event.status) == ("o-3", "ready")
        assert not relay.done()
    finally:
        relay.cancel()
        with pytest.raises(asyncio.CancelledError):
            await relay
