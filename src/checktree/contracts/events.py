"""Domain events crossing the store/engine/caller boundaries.

Two families live here:

- Store events are fired by the backing store after it mutates data. The
  engine's MutationReactor subscribes to them.
- Model notifications are emitted by the engine on its EventBus and consumed
  by whatever hosts the model (tree UI, CLI formatters, tests).
"""

from dataclasses import dataclass
from typing import Any

from checktree.contracts.enums import StateValue
from checktree.contracts.types import AttributeName, NodeID

# =============================================================================
# Store events
# =============================================================================


@dataclass(frozen=True, slots=True)
class ItemCreated:
    """Fired after a new item was added to the store.

    Attributes:
        item: Identity of the new item
        parent: Parent it was created under, None for a top-level item
        attribute: Children attribute of the parent it was linked through
    """

    item: NodeID
    parent: NodeID | None = None
    attribute: AttributeName | None = None


@dataclass(frozen=True, slots=True)
class ItemDeleted:
    """Fired after an item was removed from the store.

    By the time this fires the live parent references are gone.
    former_parents is the store's snapshot of the parents the item had
    immediately before deletion; an empty tuple means it had none and was
    implicitly a child of the root.
    """

    item: NodeID
    former_parents: tuple[NodeID, ...] = ()


@dataclass(frozen=True, slots=True)
class ItemAttributeChanged:
    """Fired after one attribute of an item changed value."""

    item: NodeID
    attribute: AttributeName
    old_value: Any
    new_value: Any


@dataclass(frozen=True, slots=True)
class TopLevelMembershipChanged:
    """Fired after an item was attached to or detached from the top level."""

    item: NodeID
    attached: bool


type StoreEvent = ItemCreated | ItemDeleted | ItemAttributeChanged | TopLevelMembershipChanged

# =============================================================================
# Model notifications
# =============================================================================


@dataclass(frozen=True, slots=True)
class StateChanged:
    """The checked state of a node changed."""

    node: NodeID
    old_value: StateValue | None
    new_value: StateValue | None


@dataclass(frozen=True, slots=True)
class ChildrenChanged:
    """The set of children of a node changed."""

    node: NodeID
    children: tuple[NodeID, ...]


@dataclass(frozen=True, slots=True)
class ItemChanged:
    """A non-state attribute of a node changed.

    The store's label attribute is reported as "label".
    """

    node: NodeID
    attribute: str
    new_value: Any


@dataclass(frozen=True, slots=True)
class EngineError:
    """A store operation failed during propagation, climbing or validation.

    Only the branch that hit the failure was abandoned.

    Attributes:
        error: The exception raised by the store (or the cycle guard)
        node: Node being processed when it failed
        operation: Engine operation in progress (e.g., "set_subtree_state")
    """

    error: Exception
    node: NodeID | None
    operation: str
