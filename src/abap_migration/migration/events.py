"""
Event broker for broadcasting project updates.

Observers subscribe per project and receive ``Event`` objects through a
bounded queue. Publishing never blocks: a subscriber whose queue is full
misses the event.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

EVENT_TYPES = ("activity", "sub_object_update", "project_status", "discovery_complete")


@dataclass(frozen=True)
class Event:
    """One published event."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "payload": self.payload}


class Subscription:
    """Handle returned by :meth:`EventBroker.subscribe`."""

    def __init__(self, broker: "EventBroker", project_id: str, queue: asyncio.Queue):
        self._broker = broker
        self.project_id = project_id
        self.queue = queue

    async def get(self) -> Event:
        return await self.queue.get()

    def close(self) -> None:
        self._broker.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[Event]:
        while True:
            yield await self.queue.get()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class EventBroker:
    """
    In-process publish/subscribe keyed by project id.

    One broker is created per process and passed by reference to the
    orchestrator and to every observer.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscriptions: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def subscribe(self, project_id: str) -> Subscription:
        """
        Subscribe to updates for a project.

        Args:
            project_id: Project to observe

        Returns:
            Subscription whose queue receives the project's events
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscriptions[project_id].add(queue)
        logger.debug(
            "event_subscriber_added",
            project_id=project_id,
            subscribers=len(self._subscriptions[project_id]),
        )
        return Subscription(self, project_id, queue)

    def unsubscribe(self, subscription: Subscription) -> None:
        queues = self._subscriptions.get(subscription.project_id)
        if queues is None:
            return
        queues.discard(subscription.queue)
        if not queues:
            del self._subscriptions[subscription.project_id]
        logger.debug("event_subscriber_removed", project_id=subscription.project_id)

    def publish(self, project_id: str, event_type: str, payload: dict[str, Any]) -> int:
        """
        Publish an event to every subscriber of a project.

        Args:
            project_id: Project the event belongs to
            event_type: One of EVENT_TYPES
            payload: Event payload

        Returns:
            Number of subscribers the event was delivered to
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")

        subscribers = list(self._subscriptions.get(project_id, ()))
        if not subscribers:
            return 0

        event = Event(event_type, payload)
        delivered = 0
        for queue in subscribers:
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("event_queue_full", project_id=project_id, event_type=event_type)
        return delivered

    def subscriber_count(self, project_id: str) -> int:
        return len(self._subscriptions.get(project_id, ()))
