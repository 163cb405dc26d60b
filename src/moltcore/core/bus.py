"""Typed in-process event bus.

Event types are declared once at import time with a pydantic model for their
properties. A ``Bus`` instance delivers published events to its subscribers.

Example:
    class UserCreatedProps(BaseModel):
        user_id: str

    UserCreated = BusEvent.define("user.created", UserCreatedProps)

    bus = Bus()
    unsubscribe = bus.subscribe(UserCreated, lambda payload: print(payload.properties))
    await bus.publish(UserCreated, UserCreatedProps(user_id="123"))
    unsubscribe()
"""

import inspect
import traceback
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)

_log: Optional[Any] = None


def _get_log():
    # util.log imports core, so the logger is resolved on first use.
    global _log
    if _log is None:
        from ..util.log import Log
        _log = Log.create({"service": "bus"})
    return _log


WILDCARD = "*"


class UnknownEventError(LookupError):
    """Raised when publishing an event type that was never defined."""


class BusEvent(Generic[T]):
    """Event definition: a unique type string plus its properties model."""

    def __init__(self, event_type: str, properties_type: type[T]):
        self.type = event_type
        self.properties_type = properties_type

    @staticmethod
    def define(event_type: str, properties_type: type[T]) -> "BusEvent[T]":
        """Declare an event type and add it to the definition registry."""
        existing = _registry.get(event_type)
        if existing is not None and existing.properties_type is not properties_type:
            raise ValueError(f"Event type {event_type!r} is already defined with another schema")
        event = BusEvent(event_type, properties_type)
        _registry[event_type] = event
        return event

    def __repr__(self) -> str:
        return f"BusEvent({self.type!r})"


_registry: Dict[str, BusEvent] = {}


def registered(event_type: str) -> Optional[BusEvent]:
    """Look up a defined event by type string."""
    return _registry.get(event_type)


class EventPayload(BaseModel):
    """What subscribers receive: the event type and its dumped properties."""

    type: str
    properties: Dict[str, Any]


SubscriptionCallback = Callable[[EventPayload], Union[None, Awaitable[None]]]


class _Subscription:
    __slots__ = ("event_type", "callback")

    def __init__(self, event_type: str, callback: SubscriptionCallback):
        self.event_type = event_type
        self.callback = callback


class Bus:
    """Publish/subscribe hub.

    Handlers run in registration order, regardless of whether they were
    registered for a specific type or for every event, and coroutine
    handlers are awaited before ``publish`` returns. A failing handler is
    logged and does not prevent delivery to the rest.
    """

    def __init__(self) -> None:
        self._subscriptions: List[_Subscription] = []

    async def publish(self, event: BusEvent[T], properties: Union[T, Dict[str, Any]]) -> None:
        if event.type not in _registry:
            raise UnknownEventError(f"Event type {event.type!r} is not registered")

        if isinstance(properties, dict):
            properties = event.properties_type.model_validate(properties)
        elif not isinstance(properties, event.properties_type):
            raise TypeError(f"Properties must be instance of {event.properties_type.__name__}")

        payload = EventPayload(type=event.type, properties=properties.model_dump())

        targets = [
            sub for sub in self._subscriptions
            if sub.event_type == event.type or sub.event_type == WILDCARD
        ]
        for sub in targets:
            try:
                result = sub.callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                _get_log().error("subscription callback failed", {
                    "error": str(e),
                    "type": event.type,
                    "traceback": traceback.format_exc(),
                })

    def subscribe(self, event: BusEvent[T], callback: SubscriptionCallback) -> Callable[[], None]:
        """Subscribe to one event type. Returns an unsubscribe function."""
        return self._add(event.type, callback)

    def subscribe_all(self, callback: SubscriptionCallback) -> Callable[[], None]:
        """Subscribe to every event type. Returns an unsubscribe function."""
        return self._add(WILDCARD, callback)

    def once(
        self,
        event: BusEvent[T],
        callback: Callable[[EventPayload], Union[None, bool, Awaitable[Any]]],
    ) -> Callable[[], None]:
        """Subscribe until ``callback`` returns True (or ``"done"``)."""

        async def wrapper(payload: EventPayload) -> None:
            result = callback(payload)
            if inspect.isawaitable(result):
                result = await result
            if result is True or result == "done":
                unsubscribe()

        unsubscribe = self._add(event.type, wrapper)
        return unsubscribe

    def _add(self, event_type: str, callback: SubscriptionCallback) -> Callable[[], None]:
        sub = _Subscription(event_type, callback)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            try:
                self._subscriptions.remove(sub)
            except ValueError:
                pass

        return unsubscribe

    def subscriber_count(self, event: Optional[BusEvent] = None) -> int:
        if event is None:
            return len(self._subscriptions)
        return sum(1 for sub in self._subscriptions if sub.event_type == event.type)

    def clear(self) -> None:
        self._subscriptions.clear()
