"""In-process event bus.

Two delivery paths share one bus instance:

* legacy listeners declare a set of event-type tags and receive
  ``(event_type, user, payload)`` for every matching publish;
* domain subscribers declare the domain event classes they handle and are
  reached through one channel per class.

Delivery is sequential in registration order and fail-fast: the first
listener that raises stops delivery and the error reaches the publisher.
Registration replaces an immutable tuple under a lock, so a publish in
flight keeps iterating the snapshot it started with.
"""

from __future__ import annotations

import threading
from collections.abc import Collection
from typing import Any, Protocol

import structlog

from gamify.errors import EventBusError
from gamify.events.types import DomainEvent, EventType, UserRef

logger = structlog.get_logger()


class EventListener(Protocol):
    interested_event_types: Collection[str] | None

    async def on_event(self, event_type: str, user: UserRef, payload: dict[str, Any]) -> None: ...


class DomainEventSubscriber(Protocol):
    interested_in: tuple[type[DomainEvent], ...]

    async def handle(self, event: DomainEvent) -> None: ...


def _tag(event_type: str | EventType) -> str:
    return event_type.value if isinstance(event_type, EventType) else event_type


class EventBus:
    """Synchronous publish/subscribe bus, constructed once and passed around."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: tuple[EventListener, ...] = ()
        self._channels: dict[type[DomainEvent], tuple[DomainEventSubscriber, ...]] = {}

    # -- legacy path ---------------------------------------------------------

    def register(self, listener: EventListener) -> None:
        """Register a legacy listener. Registering twice is a no-op."""
        if not callable(getattr(listener, "on_event", None)):
            raise EventBusError(f"Listener must define on_event(), got {type(listener).__name__}")
        if isinstance(getattr(listener, "interested_event_types", None), str):
            raise EventBusError(
                f"Listener {type(listener).__name__} must declare a collection of event types, not a string"
            )
        with self._lock:
            if listener in self._listeners:
                return
            self._listeners = (*self._listeners, listener)
        logger.debug("listener_registered", listener=type(listener).__name__)

    def unregister(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners = tuple(existing for existing in self._listeners if existing is not listener)

    @property
    def listeners(self) -> tuple[EventListener, ...]:
        return self._listeners

    async def publish(self, event_type: str | EventType, user: UserRef, payload: dict[str, Any]) -> None:
        """Deliver a legacy event to every listener interested in ``event_type``."""
        tag = _tag(event_type)
        snapshot = self._listeners
        delivered = 0
        for listener in snapshot:
            interests = getattr(listener, "interested_event_types", None)
            if not interests:
                continue
            if tag not in {_tag(t) for t in interests}:
                continue
            await listener.on_event(tag, user, payload)
            delivered += 1
        logger.debug("event_published", event_type=tag, user_id=user.id, delivered=delivered)

    # -- domain path ---------------------------------------------------------

    def subscribe(self, subscriber: DomainEventSubscriber) -> None:
        """Add ``subscriber`` to the channel of every event class it declares."""
        if not callable(getattr(subscriber, "handle", None)):
            raise EventBusError(f"Subscriber must define handle(), got {type(subscriber).__name__}")
        if not getattr(subscriber, "interested_in", None):
            raise EventBusError(f"Subscriber {type(subscriber).__name__} declares no event classes")
        with self._lock:
            channels = dict(self._channels)
            for event_class in subscriber.interested_in:
                current = channels.get(event_class, ())
                if subscriber not in current:
                    channels[event_class] = (*current, subscriber)
            self._channels = channels
        logger.debug(
            "subscriber_registered",
            subscriber=type(subscriber).__name__,
            events=[cls.__name__ for cls in subscriber.interested_in],
        )

    def unsubscribe(self, subscriber: DomainEventSubscriber) -> None:
        with self._lock:
            self._channels = {
                event_class: tuple(s for s in subs if s is not subscriber)
                for event_class, subs in self._channels.items()
            }

    def subscribers_for(self, event_class: type[DomainEvent]) -> tuple[DomainEventSubscriber, ...]:
        return self._channels.get(event_class, ())

    async def publish_event(self, event: DomainEvent) -> None:
        """Deliver a domain event to its channel, then forward the legacy payload."""
        for subscriber in self._channels.get(type(event), ()):
            await subscriber.handle(event)
        await self.publish(event.event_type, event.user, event.legacy_payload())
