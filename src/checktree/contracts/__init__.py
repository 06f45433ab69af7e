"""Shared contracts: types, state values, events, errors and store protocols.

Leaf package. Nothing here imports from checktree.core, checktree.engine or
checktree.store.
"""

from checktree.contracts.enums import (
    MIXED,
    NO_OPINION,
    CheckedState,
    NoOpinion,
    StateValue,
    Verdict,
)
from checktree.contracts.errors import (
    CheckTreeError,
    HierarchyCycleError,
    InvalidNodeError,
    InvalidStateError,
    StoreAccessError,
    StoreError,
    StoreIOError,
)
from checktree.contracts.events import (
    ChildrenChanged,
    EngineError,
    ItemAttributeChanged,
    ItemChanged,
    ItemCreated,
    ItemDeleted,
    StateChanged,
    StoreEvent,
    TopLevelMembershipChanged,
)
from checktree.contracts.store import (
    ItemQuery,
    ItemStoreProtocol,
    MutableItemStoreProtocol,
    StoreEventHandler,
)
from checktree.contracts.types import AttributeName, NodeID

__all__ = [
    "MIXED",
    "NO_OPINION",
    "AttributeName",
    "CheckTreeError",
    "CheckedState",
    "ChildrenChanged",
    "EngineError",
    "HierarchyCycleError",
    "InvalidNodeError",
    "InvalidStateError",
    "ItemAttributeChanged",
    "ItemChanged",
    "ItemCreated",
    "ItemDeleted",
    "ItemQuery",
    "ItemStoreProtocol",
    "MutableItemStoreProtocol",
    "NoOpinion",
    "NodeID",
    "StateChanged",
    "StateValue",
    "StoreAccessError",
    "StoreError",
    "StoreEvent",
    "StoreEventHandler",
    "StoreIOError",
    "TopLevelMembershipChanged",
    "Verdict",
]
