"""Event bus for model notifications.

A small synchronous, type-keyed bus. The engine emits StateChanged,
ChildrenChanged, ItemChanged and EngineError on it; hosts (tree UI, CLI
formatters, tests) subscribe to the event types they care about.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations."""

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> Callable[[], None]:
        """Subscribe a handler to an event type. Returns an unsubscribe callable."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers of its type."""
        ...


class EventBus:
    """Synchronous event bus for model notifications.

    Handlers run in subscription order, inside emit(). Handler exceptions
    propagate to the emitter: handlers are host code, and a broken handler
    should fail loudly rather than leave a display silently stale.

    Example:
        bus = EventBus()
        bus.subscribe(StateChanged, lambda e: print(f"{e.node}: {e.new_value}"))
        bus.emit(StateChanged(node=NodeID("egypt"), old_value=False, new_value=True))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> Callable[[], None]:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance

        Returns:
            Callable that removes this subscription. Calling it twice is a no-op.
        """
        handlers = self._subscribers.setdefault(event_type, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers of its exact type.

        Events with no subscribers are silently ignored.
        """
        # Copy: a handler may unsubscribe itself while we iterate
        for handler in list(self._subscribers.get(type(event), [])):
            handler(event)

    def subscriber_count(self, event_type: type) -> int:
        """Number of handlers subscribed to an event type."""
        return len(self._subscribers.get(event_type, []))
