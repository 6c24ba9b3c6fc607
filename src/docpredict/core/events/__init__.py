"""Event system tying ingestion, orchestration and consumers together.

Why This Package Exists
-----------------------
Document ingestion must not know about the orchestrator, and the
orchestrator must not know who watches its progress. Both publish
:class:`Event` records on named topics; anything interested subscribes.

Two topics carry all traffic:

* ``DocumentEvents`` -- a document was added, updated or deleted
* ``PredictionEvents`` -- a prediction run finished

Usage::

    from docpredict.core.events import DOCUMENT_EVENTS, EventAction
    from docpredict.core.events.manager import EventManager
    from docpredict.core.events.memory import InMemoryEventBus

    bus = InMemoryEventBus()
    documents = EventManager(bus, DOCUMENT_EVENTS)

    subscription = documents.observe()
    await documents.add(document)
    event = await subscription.get()
    assert event.action is EventAction.ADD

Modules
-------
memory      InMemoryEventBus -- per-topic broadcast channels over asyncio queues
manager     EventManager -- typed add/update/delete publisher for one topic
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from docpredict.core.events.memory import Channel, Subscription

__all__ = [
    "DOCUMENT_EVENTS",
    "PREDICTION_EVENTS",
    "Event",
    "EventAction",
    "EventBus",
    "EventHandler",
]

DOCUMENT_EVENTS = "DocumentEvents"
PREDICTION_EVENTS = "PredictionEvents"


class EventAction(str, Enum):
    ADD = "Add"
    UPDATE = "Update"
    DELETE = "Delete"


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Event:
    """Transient notification about a document or prediction.

    Attributes:
        action: What happened to the target
        target: The Document or Prediction concerned
        topic: Topic the event was published on
        event_id: Unique event identifier
        timestamp: When the event was created (UTC)
    """

    action: EventAction
    target: Any
    topic: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ── Type Aliases ─────────────────────────────────────────────────────────

EventHandler = Callable[[Event], Awaitable[None]]


# ── EventBus Protocol ────────────────────────────────────────────────────


@runtime_checkable
class EventBus(Protocol):
    """Protocol for topic-based event bus implementations."""

    def list_topics(self) -> list[str]:
        ...

    def register_topic(self, name: str) -> Channel:
        """Create the topic if needed and return its channel."""
        ...

    def remove_topic(self, name: str) -> None:
        """Close the topic, ending every subscription on it."""
        ...

    def subscribe(self, topic: str) -> Subscription:
        """Receive every event published on ``topic`` from now on."""
        ...

    async def listen(self, topic: str, handler: EventHandler) -> Subscription:
        """Subscribe and feed each event to ``handler`` in a background task."""
        ...

    async def publish(self, topic: str, event: Event) -> int:
        """Deliver ``event`` to current subscribers; returns the delivery count."""
        ...

    async def close(self) -> None:
        ...
