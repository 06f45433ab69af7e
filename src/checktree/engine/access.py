"""Checked-state access shared by the propagation components.

StateAccess is the single place that knows where a node's state lives: in
the backing store for real items, in memory for the fabricated root. It also
owns the error channel the recursive components report store failures to.
"""

from typing import Any

import structlog

from checktree.contracts import (
    CheckedState,
    EngineError,
    InvalidStateError,
    ItemStoreProtocol,
    NodeID,
    StateChanged,
    StateValue,
    StoreAccessError,
)
from checktree.core.config import ModelSettings
from checktree.core.events import EventBus
from checktree.engine.state import normalize_state, stored_state

logger = structlog.get_logger(__name__)


def _to_stored(state: StateValue) -> bool | str:
    """Plain value written to the store ("mixed" rather than the enum member)."""
    if isinstance(state, CheckedState):
        return state.value
    return state


class StateAccess:
    """Reads and writes checked states and walks edges, one store call at a time.

    Holds no edge data between calls: every children/parents lookup goes to
    the store. The only state held here is the root's checked state, which
    exists nowhere else.
    """

    def __init__(self, store: ItemStoreProtocol, settings: ModelSettings, event_bus: EventBus) -> None:
        self.store = store
        self.settings = settings
        self.event_bus = event_bus
        self.root = NodeID(settings.root_id)
        self._root_state: StateValue | None = None
        if settings.root_participates:
            self._root_state = normalize_state(
                settings.default_state,
                multi_state=settings.multi_state,
                may_have_children=True,
            )

    # === Structure ===

    async def may_have_children(self, node: NodeID) -> bool:
        if node == self.root:
            return True
        return await self.store.may_have_children(node)

    async def children(self, node: NodeID) -> list[NodeID]:
        """Children of a node. The root's children are the top-level query result."""
        if node == self.root:
            return await self.store.query_top_level(self.settings.query)
        return await self.store.fetch_children(node)

    async def parents(self, node: NodeID) -> list[NodeID]:
        """Parents of a node; an item with no stored parents belongs to the root."""
        if node == self.root:
            return []
        parents = await self.store.fetch_parents(node)
        return parents or [self.root]

    # === State ===

    async def read_state(self, node: NodeID) -> StateValue | None:
        """Stored state of a node, None when undefined."""
        if node == self.root:
            return self._root_state
        raw = await self.store.read_attribute(node, self.settings.checked_attr)
        try:
            return stored_state(raw)
        except InvalidStateError:
            raise StoreAccessError(node, self.settings.checked_attr, f"holds invalid checked state {raw!r}") from None

    async def effective_state(self, node: NodeID) -> StateValue | None:
        """State as callers see it: a missing state reads as the default when create_for_all is on.

        Never writes.
        """
        state = await self.read_state(node)
        if state is None and node != self.root and self.settings.create_for_all:
            return normalize_state(
                self.settings.default_state,
                multi_state=self.settings.multi_state,
                may_have_children=await self.may_have_children(node),
            )
        return state

    async def try_write(self, node: NodeID, state: Any, *, create: bool) -> bool:
        """Write a normalized state if it differs from the stored one.

        Args:
            node: Node to update
            state: Candidate state (normalized here)
            create: Whether a node without any stored state may receive one

        Returns:
            True if the stored value changed
        """
        target = normalize_state(
            state,
            multi_state=self.settings.multi_state,
            may_have_children=await self.may_have_children(node),
        )
        if node == self.root:
            return self._write_root(target)

        current = await self.read_state(node)
        if current is None and not create:
            return False
        if current == target:
            return False
        return await self.store.write_attribute(node, self.settings.checked_attr, _to_stored(target))

    def _write_root(self, target: StateValue) -> bool:
        # The root is not a store item, so no store event announces the change
        if not self.settings.root_participates or self._root_state == target:
            return False
        old_value = self._root_state
        self._root_state = target
        self.event_bus.emit(StateChanged(node=self.root, old_value=old_value, new_value=target))
        return True

    # === Error channel ===

    def report(self, error: Exception, *, node: NodeID | None, operation: str) -> None:
        """Report a failure that abandoned one branch of a recursive operation."""
        logger.warning(
            "Checked-state branch abandoned",
            operation=operation,
            node=node,
            error_type=type(error).__name__,
            error=str(error),
        )
        self.event_bus.emit(EngineError(error=error, node=node, operation=operation))
