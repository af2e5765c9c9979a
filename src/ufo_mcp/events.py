"""Event fan-out for shadow state changes.

Publishing never blocks: every subscriber owns a bounded queue and events are
dropped for subscribers that fall behind. State mutations publish while
holding the state lock, so a slow consumer must not be able to stall them.
"""

import asyncio
import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 10


class EventType:
    EFFECT_STARTED = "effect_started"
    EFFECT_STOPPED = "effect_stopped"
    EFFECT_COMPLETED = "effect_completed"
    EFFECT_RESUMED = "effect_resumed"
    DIM_CHANGED = "dim_changed"
    RING_UPDATE = "ring_update"
    BUTTON_PRESS = "button_press"
    RAW_EXECUTED = "raw_executed"
    PROGRESS = "progress"


@dataclass
class Event:
    """A state change notification."""
    type: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "type": self.type,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
        if self.data:
            result["data"] = self.data
        return result

    def to_sse_data(self) -> str:
        """Server-Sent Events frame."""
        return "data: " + json.dumps(self.to_dict(), default=str) + "\n\n"


class Subscriber:
    """One listener with its own bounded queue."""

    def __init__(self, subscriber_id: str, maxsize: int = SUBSCRIBER_QUEUE_SIZE):
        self.id = subscriber_id
        self.queue: "queue.Queue[Optional[Event]]" = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def offer(self, event: Event) -> bool:
        if self.closed:
            return False
        try:
            self.queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None on timeout / after close."""
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True
        try:
            # Wake a blocked reader
            self.queue.put_nowait(None)
        except queue.Full:
            pass


class AsyncSubscriber(Subscriber):
    """Subscriber read from an event loop without holding a thread.

    Publishers may run on any thread; events are handed to the loop with
    ``call_soon_threadsafe`` and queued there.
    """

    def __init__(self, subscriber_id: str, loop: asyncio.AbstractEventLoop,
                 maxsize: int = SUBSCRIBER_QUEUE_SIZE):
        super().__init__(subscriber_id, maxsize)
        self._loop = loop
        self._events: "asyncio.Queue[Optional[Event]]" = asyncio.Queue(maxsize=maxsize)

    def offer(self, event: Event) -> bool:
        if self.closed:
            return False
        try:
            self._loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # Loop already closed
            self.closed = True
            return False
        return True

    def _put(self, event: Event):
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Dropped %s event for subscriber %s", event.type, self.id)

    async def get_async(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None on timeout / after close."""
        if self.closed and self._events.empty():
            return None
        try:
            return await asyncio.wait_for(self._events.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Non-blocking read from the loop thread; ``timeout`` is ignored."""
        try:
            return self._events.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self):
        self.closed = True
        try:
            self._loop.call_soon_threadsafe(self._wake)
        except RuntimeError:
            # Loop closed, no reader left to wake
            pass

    def _wake(self):
        try:
            self._events.put_nowait(None)
        except asyncio.QueueFull:
            pass


class Broadcaster:
    """Distributes events to all current subscribers."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Subscriber] = {}
        self._queue_size = queue_size
        self._closed = False

    def subscribe(self, subscriber_id: str) -> Subscriber:
        """Add a subscriber. An existing subscriber with the same id is replaced."""
        return self._add(Subscriber(subscriber_id, maxsize=self._queue_size))

    def subscribe_async(self, subscriber_id: str, loop: asyncio.AbstractEventLoop) -> AsyncSubscriber:
        """Like subscribe, for a reader awaiting ``get_async`` on ``loop``."""
        return self._add(AsyncSubscriber(subscriber_id, loop, maxsize=self._queue_size))

    def _add(self, sub):
        with self._lock:
            existing = self._subscribers.pop(sub.id, None)
            if existing is not None:
                existing.close()
            self._subscribers[sub.id] = sub
            return sub

    def unsubscribe(self, subscriber_id: str):
        with self._lock:
            sub = self._subscribers.pop(subscriber_id, None)
        if sub is not None:
            sub.close()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event):
        """Best-effort delivery; never blocks the caller."""
        if self._closed:
            return
        event.timestamp = datetime.now(timezone.utc)
        with self._lock:
            subscribers = list(self._subscribers.values())
        for sub in subscribers:
            if not sub.offer(event):
                logger.debug("Dropped %s event for subscriber %s", event.type, sub.id)

    def publish_effect_started(self, effect_name: str, duration: int, **extra: Any):
        self.publish(Event(EventType.EFFECT_STARTED, dict(extra, effect=effect_name, duration=duration)))

    def publish_effect_stopped(self, effect_name: str, reason: str, **extra: Any):
        self.publish(Event(EventType.EFFECT_STOPPED, dict(extra, effect=effect_name, reason=reason)))

    def publish_effect_resumed(self, effect_name: str, **extra: Any):
        self.publish(Event(EventType.EFFECT_RESUMED, dict(extra, effect=effect_name)))

    def publish_effect_completed(self, effect_name: str, **extra: Any):
        self.publish(Event(EventType.EFFECT_COMPLETED, dict(extra, effect=effect_name)))

    def publish_progress(self, effect_name: str, elapsed: int, total: int):
        self.publish(Event(EventType.PROGRESS, {
            "effect": effect_name,
            "elapsed": elapsed,
            "total": total,
        }))

    def publish_dim_changed(self, new_level: int):
        self.publish(Event(EventType.DIM_CHANGED, {"level": new_level}))

    def publish_raw_executed(self, query: str, result: str):
        self.publish(Event(EventType.RAW_EXECUTED, {
            "query": query,
            "result": result,
        }))

    def publish_ring_update(self, ring: str, data: Dict[str, Any]):
        payload = {"ring": ring}
        payload.update(data)
        self.publish(Event(EventType.RING_UPDATE, payload))

    def publish_button_press(self):
        self.publish(Event(EventType.BUTTON_PRESS))

    def close(self):
        with self._lock:
            self._closed = True
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subscribers:
            sub.close()
