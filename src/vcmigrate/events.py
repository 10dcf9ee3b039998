"""In-process change notifications.

Philosophy:
- Best-effort delivery: a failing subscriber is logged and skipped
- Synchronous: publish() returns once every subscriber has been called
- No back-pressure, no persistence

Public API (the "studs"):
    EventChannel: Typed publish/subscribe channel
    InventoryUpdatedEvent: A snapshot replaced the cache entry for a vCenter
    ConnectionClosedEvent: A connection was disconnected
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from vcmigrate.models.inventory import InventorySnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class InventoryUpdatedEvent:
    """Published after a snapshot is stored in the inventory cache."""

    vcenter_name: str
    snapshot: InventorySnapshot


@dataclass(frozen=True)
class ConnectionClosedEvent:
    """Published after a connection is torn down."""

    connection_key: str
    server_address: str


class EventChannel(Generic[T]):
    """Publish/subscribe channel for one event type.

    Example:
        >>> channel: EventChannel[str] = EventChannel("greetings")
        >>> unsubscribe = channel.subscribe(print)
        >>> channel.publish("hello")
        hello
        1
        >>> unsubscribe()
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback.

        Returns:
            Function that removes the subscription (safe to call twice)
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: T) -> int:
        """Deliver an event to every current subscriber.

        Returns:
            Number of subscribers that handled the event without raising
        """
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"Subscriber to '{self.name}' failed: {e}")
        return delivered


__all__ = ["ConnectionClosedEvent", "EventChannel", "InventoryUpdatedEvent"]
