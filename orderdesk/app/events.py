# events.py

"""Order change notifications.

Every committed mutation to an order or its line items is published as a
:class:`ChangeEvent`. Subscribers receive events on a bounded queue and are
expected to re-fetch the affected order rather than trust the payload.

Delivery is at-least-once: when a subscriber falls behind and its buffer
fills up, the backlog is discarded and replaced by a single ``resync`` event
telling it to reload everything it shows.

When Redis is available each event is also published on ``rt:orders`` and
:meth:`ChangeNotifier.relay` forwards events from other processes to the
local subscribers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Set

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .utils.clock import utcnow

CHANNEL = "rt:orders"
ORDERS = "orders"
ORDER_ITEMS = "order_items"
ALL = "*"
TOPICS = (ORDERS, ORDER_ITEMS, ALL)
DEFAULT_BUFFER = 256

logger = logging.getLogger("orderdesk.events")


@dataclass(frozen=True)
class ChangeEvent:
    """Notification that an order or its items changed."""

    topic: str
    kind: str
    order_id: Optional[str] = None
    status: Optional[str] = None
    order_number: Optional[str] = None
    seq: int = 0
    ts: str = ""
    origin: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})


class Subscription:
    """A subscriber's view of the event stream.

    Iterate with ``async for`` or poll with :meth:`get`. Iteration ends once
    :meth:`close` is called; closing is idempotent.
    """

    def __init__(self, notifier: "ChangeNotifier", topic: str, maxsize: int) -> None:
        self.topic = topic
        self._notifier = notifier
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.overflows = 0

    def _drain(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return

    def offer(self, event: ChangeEvent) -> None:
        """Enqueue ``event`` without blocking the publisher."""
        if self.closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.overflows += 1
            self._drain()
            logger.warning(
                "subscriber on %s overflowed; sending resync", self.topic
            )
            self._queue.put_nowait(self._notifier.resync_event(self.topic))

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Return the next event, or ``None`` on timeout or once closed."""
        if self.closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._notifier._unsubscribe(self)
        self._drain()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.close()


class ChangeNotifier:
    """Fan out :class:`ChangeEvent` objects to local and remote subscribers."""

    def __init__(
        self,
        redis: Redis | None = None,
        channel: str = CHANNEL,
        maxsize: int = DEFAULT_BUFFER,
    ) -> None:
        self.redis = redis
        self.channel = channel
        self.maxsize = maxsize
        self.origin = uuid.uuid4().hex
        self._subs: Dict[str, Set[Subscription]] = defaultdict(set)
        self._seq = 0

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def subscribe(self, topic: str = ALL) -> Subscription:
        """Register interest in ``topic`` (``orders``, ``order_items`` or ``*``)."""
        if topic not in TOPICS:
            raise ValueError(f"unknown topic {topic!r}")
        sub = Subscription(self, topic, self.maxsize)
        self._subs[topic].add(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        self._subs[sub.topic].discard(sub)

    @property
    def subscriber_count(self) -> int:
        return sum(len(s) for s in self._subs.values())

    def resync_event(self, topic: str) -> ChangeEvent:
        return ChangeEvent(
            topic=ORDERS if topic == ALL else topic,
            kind="resync",
            seq=self._next_seq(),
            ts=utcnow().isoformat(),
            origin=self.origin,
        )

    def dispatch(self, event: ChangeEvent) -> None:
        """Deliver ``event`` to every local subscriber of its topic."""
        for topic in (event.topic, ALL):
            for sub in list(self._subs.get(topic, ())):
                sub.offer(event)

    async def publish(
        self,
        topic: str,
        kind: str,
        order_id: str | None,
        *,
        status: str | None = None,
        order_number: str | None = None,
    ) -> ChangeEvent:
        """Publish a change locally and, when configured, to Redis."""
        if topic not in (ORDERS, ORDER_ITEMS):
            raise ValueError(f"cannot publish to topic {topic!r}")
        event = ChangeEvent(
            topic=topic,
            kind=kind,
            order_id=order_id,
            status=status,
            order_number=order_number,
            seq=self._next_seq(),
            ts=utcnow().isoformat(),
            origin=self.origin,
        )
        self.dispatch(event)
        if self.redis is not None:
            try:
                await self.redis.publish(self.channel, json.dumps(event.as_dict()))
            except RedisError as exc:
                logger.warning("change event not relayed order=%s: %s", order_id, exc)
        logger.debug("published %s/%s order=%s", topic, kind, order_id)
        return event

    def resync_all(self) -> None:
        """Tell every local subscriber to reload what it shows."""
        for topic, subs in list(self._subs.items()):
            if not subs:
                continue
            event = self.resync_event(topic)
            for sub in list(subs):
                sub.offer(event)

    def _forward(self, message: Dict[str, Any]) -> None:
        data = message["data"]
        if isinstance(data, bytes):
            data = data.decode()
        try:
            event = ChangeEvent.from_dict(json.loads(data))
        except (ValueError, TypeError) as exc:
            logger.warning("dropping malformed change event: %s", exc)
            return
        if event.origin == self.origin:
            return
        self.dispatch(
            ChangeEvent(
                topic=event.topic,
                kind=event.kind,
                order_id=event.order_id,
                status=event.status,
                order_number=event.order_number,
                seq=self._next_seq(),
                ts=event.ts,
                origin=event.origin,
            )
        )

    async def relay(
        self,
        poll_timeout: float = 1.0,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        """Forward events published by other processes until cancelled.

        A Redis failure drops the subscription, which is re-established after
        an exponential backoff. Events published while disconnected are lost,
        so local subscribers get a ``resync`` once the relay is back.
        """
        if self.redis is None:
            return
        delay = backoff
        reconnecting = False
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                if reconnecting:
                    logger.info("change relay resubscribed to %s", self.channel)
                    self.resync_all()
                    reconnecting = False
                    delay = backoff
                while True:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=poll_timeout
                    )
                    if message is not None:
                        self._forward(message)
            except RedisError as exc:
                logger.warning(
                    "change relay lost %s: %r; retrying in %.1fs", self.channel, exc, delay
                )
                reconnecting = True
            finally:
                await self._close_pubsub(pubsub)
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_backoff)

    async def _close_pubsub(self, pubsub) -> None:
        try:
            await pubsub.unsubscribe(self.channel)
        except RedisError as exc:
            logger.debug("change relay unsubscribe failed: %r", exc)
        finally:
            await pubsub.aclose()


__all__ = [
    "ALL",
    "CHANNEL",
    "ORDERS",
    "ORDER_ITEMS",
    "TOPICS",
    "ChangeEvent",
    "ChangeNotifier",
    "Subscription",
]
