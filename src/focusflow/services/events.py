"""In-process event bus for change and reminder notifications."""

import asyncio
from dataclasses import dataclass

from focusflow.infrastructure.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DataChanged:
    """A write succeeded. Best effort, may be delivered more than once."""

    entity: str  # "project" | "task" | "subtask" | "focus_session" | "settings" | "all"
    action: str  # "created" | "updated" | "deleted" | "reordered" | "imported" ...
    id: str | None = None


@dataclass(frozen=True)
class ReminderDue:
    """A task's reminder fired."""

    task_id: str
    title: str
    deadline: int | None


Event = DataChanged | ReminderDue


class EventBus:
    """Fan-out of events to subscriber queues.

    Publishing never blocks: a subscriber whose queue is full misses the
    event (logged).
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue[Event]] = []

    def subscribe(self) -> "asyncio.Queue[Event]":
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[Event]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Event) -> int:
        """Deliver ``event`` to every subscriber.

        Returns:
            Number of subscribers that received it
        """
        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("event_dropped", event_type=type(event).__name__)
        return delivered
