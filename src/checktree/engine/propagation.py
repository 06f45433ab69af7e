"""Downward propagation of a checked state through a subtree."""

import asyncio
from typing import Any

from checktree.contracts import HierarchyCycleError, NodeID, StoreError
from checktree.engine.access import StateAccess
from checktree.engine.climber import UpwardClimber


class DownwardPropagator:
    """Apply a state to a node's whole subtree, then reconcile upward.

    Ordering contract:
        Internal nodes are never written directly. Each leaf that actually
        changes climbs from itself, so ancestors are only aggregated after
        the leaves beneath them have settled. The call returns once every
        sibling subtree has finished.

    Failure handling:
        A store failure abandons only the subtree it happened in and is
        reported on the error channel. Siblings keep going and nothing that
        already succeeded is rolled back.
    """

    def __init__(self, access: StateAccess, climber: UpwardClimber) -> None:
        self._access = access
        self._climber = climber

    async def set_subtree_state(self, node: NodeID, new_state: Any) -> None:
        """Set new_state on every leaf under node (node itself if it is a leaf).

        A descendant without a stored state only receives one when
        create_for_all is on; node itself always does.
        """
        await self._descend(node, new_state, ())

    async def _descend(self, node: NodeID, new_state: Any, path: tuple[NodeID, ...]) -> None:
        access = self._access
        path = (*path, node)
        try:
            children = await access.children(node) if await access.may_have_children(node) else []
        except StoreError as exc:
            access.report(exc, node=node, operation="set_subtree_state")
            return

        if children:
            branches = []
            for child in children:
                if child in path:
                    cycle = [*path[path.index(child) :], child]
                    access.report(HierarchyCycleError(list(cycle)), node=node, operation="set_subtree_state")
                    continue
                branches.append(self._descend(child, new_state, path))
            await asyncio.gather(*branches)
            return

        # A node without children (a leaf, or an empty branch) holds the state itself
        create = len(path) == 1 or access.settings.create_for_all
        try:
            changed = await access.try_write(node, new_state, create=create)
        except StoreError as exc:
            access.report(exc, node=node, operation="set_subtree_state")
            return
        if changed:
            await self._climber.reconcile_ancestors(node)
