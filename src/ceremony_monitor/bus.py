from __future__ import annotations

import queue
from abc import ABC, abstractmethod
from threading import Lock

from ceremony_monitor.errors import PublishError
from ceremony_monitor.events import CeremonyEvent


class EventBus(ABC):
    @abstractmethod
    def publish(self, event: CeremonyEvent) -> None:
        """Deliver one event to every subscriber, in call order."""


class Subscription:
    def __init__(self, bus: InMemoryEventBus) -> None:
        self._bus = bus
        self._queue: queue.Queue[CeremonyEvent] = queue.Queue()

    def deliver(self, event: CeremonyEvent) -> None:
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> CeremonyEvent:
        return self._queue.get(timeout=timeout)

    def drain(self) -> list[CeremonyEvent]:
        events: list[CeremonyEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def close(self) -> None:
        self._bus.unsubscribe(self)


class InMemoryEventBus(EventBus):
    """Multi-producer, multi-consumer bus; every subscriber gets every event."""

    def __init__(self) -> None:
        self._subscribers: list[Subscription] = []
        self._lock = Lock()
        self._closed = False

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def publish(self, event: CeremonyEvent) -> None:
        with self._lock:
            if self._closed:
                raise PublishError(f"Cannot publish {event.event}: bus is closed")
            for subscription in self._subscribers:
                subscription.deliver(event)

    def close(self) -> None:
        with self._lock:
            self._closed = True
