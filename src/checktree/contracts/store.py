"""Protocol definitions for the backing item store.

The engine only ever talks to the store through these protocols. Every data
operation is a coroutine and may raise StoreIOError (request failed) or
StoreAccessError (request rejected).

Edges are not owned by the engine. The store is the sole source of truth for
the parent-reference relation and may change it between any two awaits.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from checktree.contracts.events import StoreEvent
from checktree.contracts.types import NodeID

type StoreEventHandler = Callable[[StoreEvent], Awaitable[None]]
"""Async callback receiving store events."""

type ItemQuery = Mapping[str, Any]
"""Attribute/value pairs an item must match exactly."""


@runtime_checkable
class ItemStoreProtocol(Protocol):
    """Narrow async access contract the engine requires from a store.

    Event contract:
        subscribe() registers handlers that the store awaits, in subscription
        order, after each mutation it performs. ItemDeleted events MUST carry
        the pre-deletion parent snapshot in former_parents; the engine cannot
        recover the parents of a deleted item any other way.
    """

    @property
    def identifier_attribute(self) -> str:
        """Name of the attribute holding item identity (immutable)."""
        ...

    @property
    def label_attribute(self) -> str:
        """Name of the attribute holding the item label."""
        ...

    async def contains(self, item: NodeID) -> bool:
        """Whether the store knows this item."""
        ...

    async def read_attribute(self, item: NodeID, name: str) -> Any | None:
        """Read one attribute. Returns None when the attribute is absent."""
        ...

    async def write_attribute(self, item: NodeID, name: str, value: Any) -> bool:
        """Write one attribute, creating it if absent.

        Returns:
            True if the stored value changed
        """
        ...

    async def fetch_children(self, item: NodeID) -> list[NodeID]:
        """Children of an item, in store order (may be empty)."""
        ...

    async def fetch_parents(self, item: NodeID) -> list[NodeID]:
        """Parents of an item. Empty means "implicit root parent"."""
        ...

    async def query_top_level(self, query: ItemQuery | None) -> list[NodeID]:
        """Top-level items matching the query (all top-level items for None)."""
        ...

    async def may_have_children(self, item: NodeID) -> bool:
        """Whether the item is capable of having children."""
        ...

    def subscribe(self, handler: StoreEventHandler) -> None:
        """Register an async handler for store events."""
        ...


@runtime_checkable
class MutableItemStoreProtocol(ItemStoreProtocol, Protocol):
    """Store that also supports the CRUD pass-throughs of the model."""

    async def fetch_items(self, query: ItemQuery) -> list[NodeID]:
        """All items (top-level or nested) matching the query."""
        ...

    async def new_item(self, attributes: Mapping[str, Any], parent: NodeID | None = None) -> NodeID:
        """Create an item, optionally as a child of parent."""
        ...

    async def delete_item(self, item: NodeID) -> None:
        """Delete an item and every reference to it."""
        ...

    async def add_reference(self, child: NodeID, parent: NodeID) -> bool:
        """Link child under parent. Returns False if already linked."""
        ...

    async def remove_reference(self, child: NodeID, parent: NodeID) -> bool:
        """Unlink child from parent. Returns False if it was not linked."""
        ...

    async def attach_to_root(self, item: NodeID) -> None:
        """Make item a top-level item."""
        ...

    async def detach_from_root(self, item: NodeID) -> None:
        """Remove item from the top level (the item itself survives)."""
        ...
