"""Event dispatch shared by the bundled store adapters."""

from collections.abc import Iterable

from checktree.contracts import StoreEvent, StoreEventHandler


class StoreEventDispatcher:
    """Subscription list plus ordered, awaited dispatch.

    Handlers are awaited one after another in subscription order, so when
    a store mutation coroutine returns, every subscriber has finished
    reacting to it.
    """

    def __init__(self) -> None:
        self._handlers: list[StoreEventHandler] = []

    def subscribe(self, handler: StoreEventHandler) -> None:
        self._handlers.append(handler)

    async def _fire(self, events: Iterable[StoreEvent]) -> None:
        for event in events:
            for handler in list(self._handlers):
                await handler(event)
