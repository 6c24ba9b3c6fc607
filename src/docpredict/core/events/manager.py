"""Typed publisher for one topic."""

from __future__ import annotations

from typing import Generic, TypeVar

from docpredict.core.events import Event, EventAction, EventBus
from docpredict.core.events.memory import Subscription

T = TypeVar("T")

__all__ = ["EventManager"]


class EventManager(Generic[T]):
    """Publishes add/update/delete events about ``T`` on a single topic.

    Every method returns the target so callers can publish inline::

        document = await documents.add(await repository.insert_document(doc))
    """

    def __init__(self, bus: EventBus, topic: str) -> None:
        self.bus = bus
        self.topic = topic
        bus.register_topic(topic)

    async def next(self, action: EventAction, target: T) -> T:
        await self.bus.publish(self.topic, Event(action=action, target=target, topic=self.topic))
        return target

    async def add(self, target: T) -> T:
        return await self.next(EventAction.ADD, target)

    async def update(self, target: T) -> T:
        return await self.next(EventAction.UPDATE, target)

    async def delete(self, target: T) -> T:
        return await self.next(EventAction.DELETE, target)

    def observe(self) -> Subscription:
        return self.bus.subscribe(self.topic)
