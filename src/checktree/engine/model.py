"""CheckedTreeModel: the public face of the checked-state engine.

Hosts (a tree widget, the CLI, tests) talk to this class only. It composes
the propagator, climber, validator and reactor over one store and exposes
them through the HierarchyModel capability interface plus CRUD
pass-throughs to the store.
"""

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from checktree.contracts import (
    ChildrenChanged,
    EngineError,
    InvalidNodeError,
    ItemChanged,
    ItemQuery,
    ItemStoreProtocol,
    MutableItemStoreProtocol,
    NodeID,
    StateChanged,
    StateValue,
    StoreAccessError,
    StoreError,
)
from checktree.core.config import ModelSettings
from checktree.core.events import EventBus
from checktree.engine.access import StateAccess
from checktree.engine.climber import UpwardClimber
from checktree.engine.propagation import DownwardPropagator
from checktree.engine.reactor import MutationReactor
from checktree.engine.state import normalize_state
from checktree.engine.validator import ConsistencyValidator

logger = structlog.get_logger(__name__)

type AttributeReader = Callable[[NodeID, str], Awaitable[Any]]
type AttributeWriter = Callable[[NodeID, str, Any], Awaitable[None]]


class HierarchyModel(Protocol):
    """Capability interface a tree host needs from a model."""

    def get_root(self) -> NodeID: ...

    async def get_state(self, node: NodeID) -> StateValue | None: ...

    async def set_state(self, node: NodeID, value: Any) -> None: ...

    async def get_children(self, node: NodeID) -> list[NodeID]: ...

    async def get_parents(self, node: NodeID) -> list[NodeID]: ...

    async def get_identity(self, node: NodeID) -> NodeID: ...

    async def get_label(self, node: NodeID) -> str | None: ...


@dataclass(frozen=True, slots=True)
class AttributeAccessor:
    """Reader/writer pair serving one attribute name in get()/set()."""

    read: AttributeReader
    write: AttributeWriter


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Outcome of check()/uncheck().

    Attributes:
        matches: Items matching the query that carry a checked state
        updates: Matches whose state actually differed and was set
    """

    matches: int
    updates: int


class CheckedTreeModel:
    """Tri-state checked model over an asynchronous item store.

    Example:
        store = InMemoryItemStore.from_data(data)
        model = CheckedTreeModel(store, ModelSettings())
        await model.initialize()
        await model.set_state(NodeID("egypt"), True)
        assert await model.get_state(NodeID("africa")) == MIXED
    """

    def __init__(
        self,
        store: ItemStoreProtocol,
        settings: ModelSettings | None = None,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._settings = settings or ModelSettings()
        self._store = store
        self.event_bus = event_bus or EventBus()
        self._access = StateAccess(store, self._settings, self.event_bus)
        self._climber = UpwardClimber(self._access)
        self._propagator = DownwardPropagator(self._access, self._climber)
        self._validator = ConsistencyValidator(self._access, self._climber)
        self._reactor = MutationReactor(self._access, self._climber)
        store.subscribe(self._reactor.handle)

        # Explicit get()/set() dispatch; anything unlisted is a plain store attribute
        self._accessors: dict[str, AttributeAccessor] = {
            self._settings.checked_attr: AttributeAccessor(self._read_checked, self._write_checked),
            "label": AttributeAccessor(self._read_label, self._write_passthrough),
        }
        self._passthrough = AttributeAccessor(self._read_passthrough, self._write_passthrough)

    @property
    def settings(self) -> ModelSettings:
        return self._settings

    @property
    def store(self) -> ItemStoreProtocol:
        return self._store

    async def initialize(self) -> None:
        """Fetch the top level and run the startup validation pass."""
        await self.get_children(self.get_root())
        await self.validate_all()

    # === Notifications ===

    def on_state_changed(self, callback: Callable[[StateChanged], None]) -> Callable[[], None]:
        return self.event_bus.subscribe(StateChanged, callback)

    def on_children_changed(self, callback: Callable[[ChildrenChanged], None]) -> Callable[[], None]:
        return self.event_bus.subscribe(ChildrenChanged, callback)

    def on_item_changed(self, callback: Callable[[ItemChanged], None]) -> Callable[[], None]:
        return self.event_bus.subscribe(ItemChanged, callback)

    def on_error(self, callback: Callable[[EngineError], None]) -> Callable[[], None]:
        return self.event_bus.subscribe(EngineError, callback)

    # === Checked state ===

    async def get_state(self, node: NodeID) -> StateValue | None:
        """Current state of a node, without side effects.

        Items without a stored state read as the default state when
        create_for_all is on, otherwise as None. The root reads as None
        unless root_participates is on.
        """
        await self._require_item(node)
        return await self._access.effective_state(node)

    async def set_state(self, node: NodeID, value: Any) -> None:
        """Set a node's state and keep the tree consistent.

        In strict mode the value is pushed down to every leaf of the node's
        subtree and each changed leaf reconciles its ancestors. Otherwise
        only the node itself is written.

        Raises:
            InvalidStateError: value is not True, False or MIXED
            InvalidNodeError: node is neither the root nor a store item
        """
        # Rejects anything that is not a state before touching the store
        normalize_state(value, multi_state=True, may_have_children=True)
        await self._require_item(node)
        logger.debug("Setting checked state", node=node, state=str(value), strict=self._settings.strict)
        if self._settings.strict:
            await self._propagator.set_subtree_state(node, value)
        else:
            try:
                await self._access.try_write(node, value, create=True)
            except StoreError as exc:
                self._access.report(exc, node=node, operation="set_state")

    async def validate_all(self) -> None:
        """Repair every stored state that breaks the aggregation rule."""
        await self._validator.validate_subtree(self.get_root())

    async def check(self, query: ItemQuery | str) -> CheckResult:
        """Check every item matching the query. A string query is an identity."""
        return await self._check_or_uncheck(query, True)

    async def uncheck(self, query: ItemQuery | str) -> CheckResult:
        """Uncheck every item matching the query. A string query is an identity."""
        return await self._check_or_uncheck(query, False)

    async def _check_or_uncheck(self, query: ItemQuery | str, new_state: bool) -> CheckResult:
        store = self._mutable_store("check")
        if isinstance(query, str):
            query = {store.identifier_attribute: query}
        matches = 0
        updates = 0
        for item in await store.fetch_items(query):
            try:
                current = await self._access.read_state(item)
            except StoreError as exc:
                self._access.report(exc, node=item, operation="check")
                continue
            # Only items that carry a checked state take part
            if current is None:
                continue
            matches += 1
            if current != new_state:
                await self.set_state(item, new_state)
                updates += 1
        return CheckResult(matches=matches, updates=updates)

    # === Structure and identity ===

    def get_root(self) -> NodeID:
        return self._access.root

    async def is_item(self, node: Any) -> bool:
        if not isinstance(node, str):
            return False
        return node == self._access.root or await self._store.contains(NodeID(node))

    async def may_have_children(self, node: NodeID) -> bool:
        await self._require_item(node)
        return await self._access.may_have_children(node)

    async def get_children(self, node: NodeID) -> list[NodeID]:
        """Children of a node, fetched fresh from the store."""
        await self._require_item(node)
        children = await self._access.children(node)
        if node == self._access.root:
            self._reactor.record_top_level(children)
        return children

    async def get_parents(self, node: NodeID) -> list[NodeID]:
        """Parents of a node; items without stored parents report the root."""
        await self._require_item(node)
        return await self._access.parents(node)

    async def get_identity(self, node: NodeID) -> NodeID:
        await self._require_item(node)
        if node == self._access.root:
            return node
        identity = await self._store.read_attribute(node, self._store.identifier_attribute)
        return NodeID(identity) if identity is not None else node

    async def get_label(self, node: NodeID) -> str | None:
        await self._require_item(node)
        return await self._read_label(node, "label")

    # === Generic attribute access ===

    async def get(self, node: NodeID, attribute: str) -> Any:
        """Read any attribute; the checked attribute goes through get_state()."""
        await self._require_item(node)
        accessor = self._accessors.get(attribute, self._passthrough)
        return await accessor.read(node, attribute)

    async def set(self, node: NodeID, attribute: str, value: Any) -> None:
        """Write any attribute; the checked attribute goes through set_state().

        Raises:
            StoreAccessError: attribute is the identifier, or node is the root
        """
        await self._require_item(node)
        accessor = self._accessors.get(attribute, self._passthrough)
        await accessor.write(node, attribute, value)

    async def _read_checked(self, node: NodeID, attribute: str) -> StateValue | None:
        return await self._access.effective_state(node)

    async def _write_checked(self, node: NodeID, attribute: str, value: Any) -> None:
        await self.set_state(node, value)

    async def _read_label(self, node: NodeID, attribute: str) -> str | None:
        if node == self._access.root:
            return self._settings.root_label
        label = await self._store.read_attribute(node, self._store.label_attribute)
        return None if label is None else str(label)

    async def _read_passthrough(self, node: NodeID, attribute: str) -> Any:
        if node == self._access.root:
            root_attributes = {
                self._store.identifier_attribute: self._access.root,
                self._store.label_attribute: self._settings.root_label,
            }
            return root_attributes.get(attribute)
        return await self._store.read_attribute(node, attribute)

    async def _write_passthrough(self, node: NodeID, attribute: str, value: Any) -> None:
        if attribute == "label":
            attribute = self._store.label_attribute
        if node == self._access.root:
            raise StoreAccessError(node, attribute, "the root item is not stored")
        if attribute == self._store.identifier_attribute:
            raise StoreAccessError(node, attribute, "identifier attribute can not be changed")
        await self._store.write_attribute(node, attribute, value)

    # === CRUD pass-throughs (reactions arrive as store events) ===

    async def new_item(self, attributes: Mapping[str, Any], parent: NodeID | None = None) -> NodeID:
        """Create an item under parent (top level for None or the root).

        When an item with the same identity already exists, that item is
        linked under parent (or attached to the top level) instead and the
        given attributes are ignored.
        """
        store = self._mutable_store("new_item")
        if parent is not None:
            await self._require_item(parent)
        if parent == self._access.root:
            parent = None
        identity = attributes.get(store.identifier_attribute)
        if identity is not None and await store.contains(NodeID(str(identity))):
            existing = NodeID(str(identity))
            if parent is None:
                await store.attach_to_root(existing)
            else:
                await self.add_reference(existing, parent)
            return existing
        return await store.new_item(attributes, parent)

    async def new_reference_item(self, attributes: Mapping[str, Any], parent: NodeID | None = None) -> NodeID:
        """Create an item under parent that is a top-level item as well."""
        item = await self.new_item(attributes, parent)
        await self._mutable_store("new_reference_item").attach_to_root(item)
        return item

    async def delete_item(self, node: NodeID) -> None:
        await self._require_stored_item(node)
        await self._mutable_store("delete_item").delete_item(node)

    async def attach_to_root(self, node: NodeID) -> None:
        await self._require_stored_item(node)
        await self._mutable_store("attach_to_root").attach_to_root(node)

    async def detach_from_root(self, node: NodeID) -> None:
        await self._require_stored_item(node)
        await self._mutable_store("detach_from_root").detach_from_root(node)

    async def add_reference(self, child: NodeID, parent: NodeID) -> None:
        """Link child under parent and reconcile the child's ancestors."""
        await self._require_stored_item(child)
        await self._require_stored_item(parent)
        if await self._mutable_store("add_reference").add_reference(child, parent):
            await self._climber.reconcile_ancestors(child)

    async def remove_reference(self, child: NodeID, parent: NodeID) -> None:
        """Unlink child from parent and re-aggregate the parent from what is left."""
        await self._require_stored_item(child)
        await self._require_stored_item(parent)
        if await self._mutable_store("remove_reference").remove_reference(child, parent):
            remaining = await self._access.children(parent)
            if remaining:
                await self._climber.reconcile_ancestors(remaining[0])

    # === Helpers ===

    async def _require_item(self, node: Any) -> None:
        if not await self.is_item(node):
            raise InvalidNodeError(node)

    async def _require_stored_item(self, node: Any) -> None:
        if node == self._access.root or not await self.is_item(node):
            raise InvalidNodeError(node)

    def _mutable_store(self, operation: str) -> MutableItemStoreProtocol:
        if not isinstance(self._store, MutableItemStoreProtocol):
            raise TypeError(f"{operation}() needs a store implementing MutableItemStoreProtocol, got {type(self._store).__name__}")
        return self._store
