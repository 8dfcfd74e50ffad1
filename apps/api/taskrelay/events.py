"""In-process event hub for pushing state changes to WebSocket clients."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


class Subscription:
    """
    A subscriber's queue. Iterate it to receive events; close() to detach.

    When ``task_id`` is set only events about that task (or about no task in
    particular) are yielded. It may be changed while iterating.
    """

    def __init__(self, hub: "EventHub", queue: asyncio.Queue, task_id: Optional[str] = None):
        self._hub = hub
        self._queue = queue
        self.task_id = task_id

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        while True:
            event = await self._queue.get()
            if self.task_id is None or event.get("taskId") in (None, self.task_id):
                return event

    def close(self) -> None:
        self._hub._detach(self._queue)


class EventHub:
    """
    Fan-out of delegation events to subscribers.

    Delivery is best-effort: the durable record is the progress update log,
    events only tell clients to look again.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: List[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event_type: str, data: Dict[str, Any], task_id: Optional[str] = None) -> None:
        """
        Publish an event to all subscribers.

        Args:
            event_type: e.g. "task-created", "assignment-processed", "task-progress"
            data: JSON-serializable payload
            task_id: External task id the event concerns, if any
        """
        event = {
            "type": event_type,
            "taskId": task_id,
            "data": data,
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(f"Dropping {event_type} event for a slow subscriber")

    def subscribe(self, task_id: Optional[str] = None) -> Subscription:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(queue)
        return Subscription(self, queue, task_id)

    def _detach(self, queue: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass
