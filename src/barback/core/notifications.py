"""Owner notification hub: bounded history plus fan-out to live subscribers.

History is a newest-first ring of at most ``capacity`` events; anything
pushed past the end is gone for good. Each subscriber gets its own bounded
queue and delivery task, so publish() never waits on a subscriber and a
slow or failing callback only affects itself. When a subscriber's queue is
full the event is dropped for that subscriber alone.
"""

import asyncio
import copy
import inspect
import itertools
import os
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from barback.core.logging import get_logger
from barback.utils.datetime import Clock, now_utc

logger = get_logger(__name__)

NOTIFICATION_CAPACITY = int(os.getenv("NOTIFICATION_CAPACITY", "100"))
SUBSCRIBER_BUFFER_SIZE = int(os.getenv("NOTIFICATION_SUBSCRIBER_BUFFER", "256"))

Subscriber = Callable[["NotificationEvent"], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class NotificationEvent:
    id: str
    kind: str
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    title: str = ""
    message: str = ""
    priority: str = "medium"
    read: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class _Subscription:
    """One registered callback with its own buffer and delivery task."""

    def __init__(self, subscription_id: int, callback: Subscriber, buffer_size: int):
        self.id = subscription_id
        self.callback = callback
        self.queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=buffer_size)
        self.task = asyncio.get_running_loop().create_task(
            self._deliver(), name=f"notification-subscriber:{subscription_id}"
        )

    def offer(self, event: NotificationEvent) -> bool:
        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            logger.warning(
                "notifications.subscriber_overflow",
                subscription_id=self.id,
                event_id=event.id,
            )
            return False

    async def _deliver(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                result = self.callback(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "notifications.subscriber_failed",
                    subscription_id=self.id,
                    event_id=event.id,
                )
            finally:
                self.queue.task_done()

    def cancel(self) -> None:
        self.task.cancel()


class NotificationHub:
    """Owns the event ring and the subscriber registry."""

    def __init__(
        self,
        capacity: int = NOTIFICATION_CAPACITY,
        subscriber_buffer_size: int = SUBSCRIBER_BUFFER_SIZE,
        clock: Clock = now_utc,
    ):
        if capacity < 1:
            raise ValueError(f"Capacity must be >= 1: {capacity}")
        self.capacity = capacity
        self._buffer_size = subscriber_buffer_size
        self._clock = clock
        # newest at index 0
        self._events: deque[NotificationEvent] = deque()
        self._read_ids: set[str] = set()
        self._unread = 0
        self._subscriptions: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    def publish(
        self,
        kind: str,
        payload: Optional[dict[str, Any]] = None,
        *,
        title: str = "",
        message: str = "",
        priority: str = "medium",
    ) -> NotificationEvent:
        """Record an event and hand it to every current subscriber."""
        event = NotificationEvent(
            id=str(uuid.uuid4()),
            kind=kind,
            created_at=self._clock(),
            payload=copy.deepcopy(payload) if payload else {},
            title=title,
            message=message,
            priority=priority,
        )

        self._events.appendleft(event)
        self._unread += 1
        while len(self._events) > self.capacity:
            evicted = self._events.pop()
            if evicted.id in self._read_ids:
                self._read_ids.discard(evicted.id)
            else:
                self._unread -= 1

        for subscription in list(self._subscriptions.values()):
            subscription.offer(event)

        logger.info(
            "notifications.published",
            event_id=event.id,
            kind=kind,
            subscribers=len(self._subscriptions),
        )
        return event

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for events published from now on.

        Must be called from inside a running event loop. Returns an
        idempotent unsubscribe function.
        """
        subscription = _Subscription(next(self._ids), callback, self._buffer_size)
        self._subscriptions[subscription.id] = subscription
        logger.debug("notifications.subscribed", subscription_id=subscription.id)

        def unsubscribe() -> None:
            removed = self._subscriptions.pop(subscription.id, None)
            if removed is not None:
                removed.cancel()
                logger.debug("notifications.unsubscribed", subscription_id=subscription.id)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def list(self, limit: int = 20, unread_only: bool = False) -> list[NotificationEvent]:
        """Newest-first events with their current read flag."""
        result: list[NotificationEvent] = []
        if limit <= 0:
            return result
        for event in self._events:
            read = event.id in self._read_ids
            if unread_only and read:
                continue
            result.append(replace(event, read=True) if read else event)
            if len(result) >= limit:
                break
        return result

    def mark_read(self, event_id: str) -> bool:
        """Mark one retained event read. False if unknown or evicted."""
        if event_id in self._read_ids:
            return True
        if not any(event.id == event_id for event in self._events):
            return False
        self._read_ids.add(event_id)
        self._unread -= 1
        return True

    def mark_all_read(self) -> int:
        """Mark every retained event read. Returns the number of retained events."""
        self._read_ids = {event.id for event in self._events}
        self._unread = 0
        return len(self._events)

    def unread_count(self) -> int:
        return self._unread

    async def flush(self) -> None:
        """Wait until every subscriber has processed everything queued so far."""
        await asyncio.gather(
            *(subscription.queue.join() for subscription in list(self._subscriptions.values()))
        )

    async def close(self) -> None:
        """Stop all delivery tasks."""
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.cancel()
        if subscriptions:
            await asyncio.gather(*(s.task for s in subscriptions), return_exceptions=True)
