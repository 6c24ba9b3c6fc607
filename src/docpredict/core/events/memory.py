"""
In-memory event bus implementation.

Manifesto:
    A single-process deployment needs a broadcast fabric that never blocks a
    publisher and never drops an event for a subscriber that was already
    listening. Each subscription owns an unbounded asyncio queue; publishing
    is a ``put_nowait`` per subscriber.

Semantics:
    - subscribers see only events published after they subscribed
    - ``register_topic`` is idempotent and returns the same channel
    - ``remove_topic`` closes the channel; every subscription's iteration ends
    - a missing topic raises :class:`TopicNotFoundError` unless the bus
      auto-creates topics, in which case it is recreated empty

Tags:
    events, in-memory, asyncio, pubsub, broadcast

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import uuid

from docpredict.core.errors import EventBusError, TopicNotFoundError
from docpredict.core.events import Event, EventHandler
from docpredict.core.logging import get_logger

__all__ = ["Channel", "InMemoryEventBus", "Subscription"]

log = get_logger("docpredict.events")

_CLOSED = object()


class Subscription:
    """One receiver on a channel.

    Iterate with ``async for event in subscription`` or pull with
    :meth:`get`; both end once the subscription or its channel is closed.
    """

    def __init__(self, channel: Channel) -> None:
        self.id = f"sub_{uuid.uuid4().hex[:12]}"
        self.topic = channel.name
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._handling = False
        self._task: asyncio.Task | None = None

    def _deliver(self, item: object) -> None:
        self._queue.put_nowait(item)

    async def get(self) -> Event | None:
        """Next event, or ``None`` once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            return None
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Event:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def task(self) -> asyncio.Task | None:
        """Background pump started by :meth:`InMemoryEventBus.listen`."""
        return self._task

    def pending(self) -> bool:
        """True while events are queued or a listener handler is running."""
        return not self._queue.empty() or self._handling

    def unsubscribe(self) -> None:
        self._channel.detach(self)


class Channel:
    """Broadcast channel for a single topic."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscriptions: dict[str, Subscription] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription:
        if self._closed:
            raise EventBusError(f"Topic is closed: {self.name}")
        subscription = Subscription(self)
        self._subscriptions[subscription.id] = subscription
        return subscription

    def publish(self, event: Event) -> int:
        if self._closed:
            raise EventBusError(f"Topic is closed: {self.name}")
        receivers = list(self._subscriptions.values())
        for subscription in receivers:
            subscription._deliver(event)
        return len(receivers)

    def detach(self, subscription: Subscription) -> None:
        if self._subscriptions.pop(subscription.id, None) is not None:
            subscription._deliver(_CLOSED)

    def close(self) -> None:
        self._closed = True
        for subscription in list(self._subscriptions.values()):
            self.detach(subscription)


class InMemoryEventBus:
    """In-process topic bus for single-node deployments.

    Example::

        bus = InMemoryEventBus()

        async def on_document(event: Event) -> None:
            print(event.action, event.target.id)

        await bus.listen(DOCUMENT_EVENTS, on_document)
        await bus.publish(DOCUMENT_EVENTS, Event(EventAction.ADD, doc, DOCUMENT_EVENTS))
    """

    def __init__(self, auto_create_topics: bool = True) -> None:
        self.auto_create_topics = auto_create_topics
        self._channels: dict[str, Channel] = {}
        self._listeners: set[asyncio.Task] = set()
        self._closed = False

    def list_topics(self) -> list[str]:
        return list(self._channels)

    def register_topic(self, name: str) -> Channel:
        channel = self._channels.get(name)
        if channel is None:
            channel = Channel(name)
            self._channels[name] = channel
            log.debug("event_topic_registered", topic=name)
        return channel

    def remove_topic(self, name: str) -> None:
        channel = self._channels.pop(name, None)
        if channel is not None:
            channel.close()
            log.debug("event_topic_removed", topic=name)

    def _channel(self, topic: str) -> Channel:
        if self._closed:
            raise EventBusError("Event bus is closed")
        channel = self._channels.get(topic)
        if channel is None:
            if not self.auto_create_topics:
                raise TopicNotFoundError(topic)
            channel = self.register_topic(topic)
        return channel

    def subscribe(self, topic: str) -> Subscription:
        return self._channel(topic).subscribe()

    async def listen(self, topic: str, handler: EventHandler) -> Subscription:
        """Run ``handler`` for every event on ``topic`` until it is closed.

        Handler exceptions are logged and do not stop delivery.
        """
        subscription = self.subscribe(topic)

        async def pump() -> None:
            async for event in subscription:
                subscription._handling = True
                try:
                    await handler(event)
                except Exception as e:
                    log.warning(
                        "event_handler_error",
                        subscription_id=subscription.id,
                        topic=topic,
                        action=event.action.value,
                        error=str(e),
                    )
                finally:
                    subscription._handling = False

        task = asyncio.create_task(pump(), name=f"listen:{topic}:{subscription.id}")
        subscription._task = task
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)
        return subscription

    async def publish(self, topic: str, event: Event) -> int:
        delivered = self._channel(topic).publish(event)
        log.debug(
            "event_published",
            topic=topic,
            action=event.action.value,
            event_id=event.event_id,
            delivered=delivered,
        )
        return delivered

    async def close(self) -> None:
        """Close every topic and wait for listener tasks to finish."""
        self._closed = True
        for name in list(self._channels):
            self.remove_topic(name)
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)

    @property
    def subscription_count(self) -> int:
        return sum(channel.subscriber_count for channel in self._channels.values())
