"""
Chat event fan-out.

Events are not stored here (ChatService keeps history). Each connected
client holds a Subscription with a bounded queue; publish() never blocks,
and a subscriber whose queue is full is dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

Event = Tuple[str, Any]


class Subscription:
    """One subscriber's inbox."""

    def __init__(self, broadcaster: "ChatBroadcaster", maxsize: int):
        self.id = uuid.uuid4().hex
        self._broadcaster = broadcaster
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def offer(self, event: Event) -> bool:
        """Non-blocking put. Returns False if the inbox is full."""
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or None on timeout or once closed and drained."""
        if self.closed and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()

    def unsubscribe(self) -> None:
        self._broadcaster.unsubscribe(self)


class ChatBroadcaster:
    """Delivers chat events to every current subscriber."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, Subscription] = {}

    def subscribe(self, maxsize: int = 100) -> Subscription:
        subscription = Subscription(self, maxsize)
        with self._lock:
            self._subscribers[subscription.id] = subscription
        logger.debug(f"[CHAT] Subscriber {subscription.id} added")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(subscription.id, None)
        subscription.close()

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: str, data: Any) -> int:
        """
        Deliver an event to all subscribers without blocking.

        Args:
            event: Event name ("message", "error", ...)
            data: JSON-serializable payload

        Returns:
            Number of subscribers the event was delivered to
        """
        with self._lock:
            subscribers = list(self._subscribers.values())

        delivered = 0
        slow = []
        for subscription in subscribers:
            if subscription.offer((event, data)):
                delivered += 1
            else:
                slow.append(subscription)

        for subscription in slow:
            logger.warning(f"[CHAT] Dropping slow subscriber {subscription.id} (queue full)")
            self.unsubscribe(subscription)
        return delivered

    def close_all(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscription in subscribers:
            subscription.close()
