"""Upward reconciliation of ancestor states.

After a node's state changes, every parent is re-aggregated from a fresh
read of all its children. A parent that changes is climbed from in turn;
a parent that stays the same (or has no opinion) ends that path.
"""

import asyncio
from collections.abc import Sequence

import structlog

from checktree.contracts import NO_OPINION, HierarchyCycleError, NodeID, StoreError
from checktree.engine.access import StateAccess
from checktree.engine.state import aggregate

logger = structlog.get_logger(__name__)


class UpwardClimber:
    """Recompute ancestors bottom-up until nothing changes.

    Multiple parents are reconciled concurrently; each parent is its own
    branch, so a store failure on one parent does not stop the others.
    Cycle guard: every climb carries the path it came from and refuses to
    revisit a node already on it. A node reachable through two different
    paths (a diamond) is still reconciled once per path.
    """

    def __init__(self, access: StateAccess) -> None:
        self._access = access

    async def reconcile_ancestors(self, node: NodeID, *, parents: Sequence[NodeID] | None = None) -> None:
        """Bring every ancestor of node in line with its children.

        Args:
            node: Node whose state (or membership) changed
            parents: Parent snapshot to use instead of asking the store.
                Needed after deletion, when the live references are gone.
                An empty snapshot means the node belonged to the root.
        """
        if not self._access.settings.strict:
            return
        await self._climb(node, (), parents)

    async def _climb(self, node: NodeID, path: tuple[NodeID, ...], parents: Sequence[NodeID] | None) -> None:
        path = (*path, node)
        if parents is None:
            try:
                parents = await self._access.parents(node)
            except StoreError as exc:
                self._access.report(exc, node=node, operation="reconcile_ancestors")
                return
        elif not parents:
            parents = [self._access.root]

        branches = []
        for parent in parents:
            if parent in path:
                cycle = [*path[path.index(parent) :], parent]
                self._access.report(HierarchyCycleError(list(cycle)), node=node, operation="reconcile_ancestors")
                continue
            branches.append(self._reconcile_parent(parent, path))
        await asyncio.gather(*branches)

    async def _reconcile_parent(self, parent: NodeID, path: tuple[NodeID, ...]) -> None:
        access = self._access
        if parent == access.root and not access.settings.root_participates:
            return
        try:
            children = await access.children(parent)
            states = [await access.effective_state(child) for child in children]
            verdict = aggregate(states)
            if verdict is NO_OPINION:
                return
            changed = await access.try_write(parent, verdict, create=access.settings.create_for_all)
        except StoreError as exc:
            access.report(exc, node=parent, operation="reconcile_ancestors")
            return

        if changed:
            logger.debug("Ancestor state updated", node=parent, state=str(verdict))
            await self._climb(parent, path, None)
