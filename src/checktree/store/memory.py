# src/checktree/store/memory.py
"""In-memory item store loaded from item-file data.

Children attributes hold lists of child identities; a reverse map of parent
references is maintained alongside so parent lookups are cheap. Mutations
fire store events after the data has been updated.
"""

import copy
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Self

import structlog

from checktree.contracts import (
    AttributeName,
    ItemAttributeChanged,
    ItemCreated,
    ItemDeleted,
    ItemQuery,
    NodeID,
    StoreAccessError,
    StoreEvent,
    TopLevelMembershipChanged,
)
from checktree.store.base import StoreEventDispatcher
from checktree.store.itemfile import ItemFile, ItemRecord, parse_item_data, read_item_file, render_item_data

logger = structlog.get_logger(__name__)


class InMemoryItemStore(StoreEventDispatcher):
    """Mutable item store held entirely in memory.

    Implements MutableItemStoreProtocol. Every coroutine completes without
    suspending on I/O; they are coroutines to honor the store contract.

    Example:
        store = InMemoryItemStore.from_data({"items": [{"id": "a", "children": []}]})
        assert await store.may_have_children(NodeID("a"))
    """

    def __init__(
        self,
        *,
        identifier: str = "id",
        label: str = "name",
        children_attrs: Sequence[str] = ("children",),
    ) -> None:
        super().__init__()
        if not children_attrs:
            raise ValueError("children_attrs must name at least one attribute")
        self._identifier = identifier
        self._label = label
        self._children_attrs = tuple(children_attrs)
        self._items: dict[NodeID, dict[str, Any]] = {}
        # child -> ordered set of parents (dict keys keep insertion order)
        self._parents: dict[NodeID, dict[NodeID, None]] = {}
        self._top_level: list[NodeID] = []

    @classmethod
    def from_data(cls, data: Mapping[str, Any], *, children_attrs: Sequence[str] = ("children",)) -> Self:
        """Build a store from item-file data."""
        item_file = parse_item_data(data, children_attrs=children_attrs)
        store = cls(identifier=item_file.identifier, label=item_file.label, children_attrs=children_attrs)
        store.load(item_file)
        return store

    @classmethod
    def from_file(cls, path: Path, *, children_attrs: Sequence[str] = ("children",)) -> Self:
        """Build a store from a JSON or YAML item file."""
        return cls.from_data(read_item_file(path), children_attrs=children_attrs)

    def load(self, item_file: ItemFile) -> None:
        """Replace the store contents. Fires no events."""
        self._items = {}
        self._parents = {}
        for record in item_file.records:
            attributes = copy.deepcopy(record.attributes)
            for attr, children in record.children.items():
                attributes[attr] = list(children)
            self._items[record.item_id] = attributes
        for item_id in self._items:
            for child in self._children_of(item_id):
                self._parents.setdefault(child, {})[item_id] = None
        self._top_level = list(item_file.top_level)
        logger.debug("Item store loaded", items=len(self._items), top_level=len(self._top_level))

    def to_data(self) -> dict[str, Any]:
        """Current contents as item-file data."""
        records = [
            ItemRecord(
                item_id=item_id,
                attributes={k: copy.deepcopy(v) for k, v in attributes.items() if k not in self._children_attrs},
                children={attr: list(attributes[attr]) for attr in self._children_attrs if attr in attributes},
            )
            for item_id, attributes in self._items.items()
        ]
        item_file = ItemFile(identifier=self._identifier, label=self._label, records=records, top_level=list(self._top_level))
        return render_item_data(item_file)

    async def export_data(self) -> dict[str, Any]:
        return self.to_data()

    # === ItemStoreProtocol ===

    @property
    def identifier_attribute(self) -> str:
        return self._identifier

    @property
    def label_attribute(self) -> str:
        return self._label

    async def contains(self, item: NodeID) -> bool:
        return item in self._items

    async def read_attribute(self, item: NodeID, name: str) -> Any | None:
        return copy.deepcopy(self._item(item, name).get(name))

    async def write_attribute(self, item: NodeID, name: str, value: Any) -> bool:
        attributes = self._item(item, name)
        if name == self._identifier:
            raise StoreAccessError(item, name, "identifier attribute can not be changed")
        value = copy.deepcopy(value)
        if name in self._children_attrs:
            value = self._checked_children(item, name, value)
        if name in attributes and attributes[name] == value:
            return False

        old_value = attributes.get(name)
        attributes[name] = value
        if name in self._children_attrs:
            for child in old_value or []:
                if not self._holds(item, child):
                    self._parents[child].pop(item, None)
            for child in value:
                self._parents.setdefault(child, {})[item] = None
        await self._fire([ItemAttributeChanged(item, AttributeName(name), old_value, copy.deepcopy(value))])
        return True

    async def fetch_children(self, item: NodeID) -> list[NodeID]:
        self._item(item, self._children_attrs[0])
        return self._children_of(item)

    async def fetch_parents(self, item: NodeID) -> list[NodeID]:
        self._item(item, self._identifier)
        return list(self._parents.get(item, {}))

    async def query_top_level(self, query: ItemQuery | None) -> list[NodeID]:
        return [item for item in self._top_level if self._matches(item, query)]

    async def may_have_children(self, item: NodeID) -> bool:
        attributes = self._item(item, self._children_attrs[0])
        return any(attr in attributes for attr in self._children_attrs)

    # === MutableItemStoreProtocol ===

    async def fetch_items(self, query: ItemQuery) -> list[NodeID]:
        return [item for item in self._items if self._matches(item, query)]

    async def new_item(self, attributes: Mapping[str, Any], parent: NodeID | None = None) -> NodeID:
        if self._identifier not in attributes:
            raise StoreAccessError("<new>", self._identifier, "new item has no identity")
        item_id = NodeID(str(attributes[self._identifier]))
        if item_id in self._items:
            raise StoreAccessError(item_id, self._identifier, "an item with this identity already exists")
        attr = self._children_attrs[0]
        if parent is not None:
            self._item(parent, attr)

        new_attributes = copy.deepcopy(dict(attributes))
        for children_attr in self._children_attrs:
            if children_attr in new_attributes:
                new_attributes[children_attr] = self._checked_children(item_id, children_attr, new_attributes[children_attr])
        self._items[item_id] = new_attributes
        for child in self._children_of(item_id):
            self._parents.setdefault(child, {})[item_id] = None

        events: list[StoreEvent] = []
        if parent is None:
            self._top_level.append(item_id)
            events.append(ItemCreated(item_id))
        else:
            events.append(self._append_child(parent, item_id, attr))
            events.append(ItemCreated(item_id, parent, AttributeName(attr)))
        await self._fire(events)
        return item_id

    async def delete_item(self, item: NodeID) -> None:
        self._item(item, self._identifier)
        former_parents = tuple(self._parents.get(item, {}))
        events: list[StoreEvent] = []
        for parent in former_parents:
            parent_attributes = self._items[parent]
            for attr in self._children_attrs:
                children = parent_attributes.get(attr)
                if children and item in children:
                    remaining = [child for child in children if child != item]
                    parent_attributes[attr] = remaining
                    events.append(ItemAttributeChanged(parent, AttributeName(attr), children, list(remaining)))
        for child in self._children_of(item):
            self._parents[child].pop(item, None)
        self._parents.pop(item, None)
        if item in self._top_level:
            self._top_level.remove(item)
        del self._items[item]
        events.append(ItemDeleted(item, former_parents))
        await self._fire(events)

    async def add_reference(self, child: NodeID, parent: NodeID, attribute: str | None = None) -> bool:
        attr = attribute or self._children_attrs[0]
        self._item(child, attr)
        parent_attributes = self._item(parent, attr)
        if child in parent_attributes.get(attr, []):
            return False
        await self._fire([self._append_child(parent, child, attr)])
        return True

    async def remove_reference(self, child: NodeID, parent: NodeID, attribute: str | None = None) -> bool:
        attr = attribute or self._children_attrs[0]
        self._item(child, attr)
        parent_attributes = self._item(parent, attr)
        children = parent_attributes.get(attr) or []
        if child not in children:
            return False
        remaining = [c for c in children if c != child]
        parent_attributes[attr] = remaining
        if not self._holds(parent, child):
            self._parents[child].pop(parent, None)
        await self._fire([ItemAttributeChanged(parent, AttributeName(attr), children, list(remaining))])
        return True

    async def attach_to_root(self, item: NodeID) -> None:
        self._item(item, self._identifier)
        if item in self._top_level:
            return
        self._top_level.append(item)
        await self._fire([TopLevelMembershipChanged(item, attached=True)])

    async def detach_from_root(self, item: NodeID) -> None:
        self._item(item, self._identifier)
        if item not in self._top_level:
            return
        self._top_level.remove(item)
        await self._fire([TopLevelMembershipChanged(item, attached=False)])

    # === Helpers ===

    def _item(self, item: NodeID, attribute: str) -> dict[str, Any]:
        try:
            return self._items[item]
        except KeyError:
            raise StoreAccessError(item, attribute, "no such item") from None

    def _children_of(self, item: NodeID) -> list[NodeID]:
        attributes = self._items[item]
        children: dict[NodeID, None] = {}
        for attr in self._children_attrs:
            for child in attributes.get(attr) or []:
                children[child] = None
        return list(children)

    def _holds(self, parent: NodeID, child: NodeID) -> bool:
        """Whether any children attribute of parent still lists child."""
        return child in self._children_of(parent)

    def _checked_children(self, item: NodeID, attr: str, value: Any) -> list[NodeID]:
        if not isinstance(value, list):
            raise StoreAccessError(item, attr, "children attribute must be a list of identities")
        children = [NodeID(str(child)) for child in value]
        unknown = [child for child in children if child not in self._items and child != item]
        if unknown:
            raise StoreAccessError(item, attr, f"unknown child identities {unknown}")
        return children

    def _append_child(self, parent: NodeID, child: NodeID, attr: str) -> ItemAttributeChanged:
        parent_attributes = self._items[parent]
        old_children = list(parent_attributes.get(attr) or [])
        parent_attributes[attr] = [*old_children, child]
        self._parents.setdefault(child, {})[parent] = None
        return ItemAttributeChanged(parent, AttributeName(attr), old_children, [*old_children, child])

    def _matches(self, item: NodeID, query: ItemQuery | None) -> bool:
        if not query:
            return True
        attributes = self._items[item]
        return all(attributes.get(key) == value for key, value in query.items())
