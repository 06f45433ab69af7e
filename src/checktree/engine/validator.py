"""Whole-tree consistency validation.

Stored data may disagree with the aggregation rule (hand-edited files,
partial failures, external writers). Validation descends to the lowest
branches and climbs once from each, which revisits every ancestor.
"""

import asyncio

import structlog

from checktree.contracts import HierarchyCycleError, NodeID, StoreError
from checktree.engine.access import StateAccess
from checktree.engine.climber import UpwardClimber

logger = structlog.get_logger(__name__)


class ConsistencyValidator:
    """Repair stored states that violate the parent/child invariant.

    A branch is "lowest" when none of its children can have children. One
    representative leaf per lowest branch is enough: the climb fans out to
    all parents, and every parent re-reads all of its children.
    """

    def __init__(self, access: StateAccess, climber: UpwardClimber) -> None:
        self._access = access
        self._climber = climber

    async def validate_subtree(self, node: NodeID | None = None) -> None:
        """Validate the subtree under node (the whole tree by default).

        No-op unless strict mode is enabled.
        """
        if not self._access.settings.strict:
            return
        start = node if node is not None else self._access.root
        logger.debug("Validating checked states", node=start)
        await self._validate(start, ())

    async def _validate(self, node: NodeID, path: tuple[NodeID, ...]) -> None:
        access = self._access
        path = (*path, node)
        try:
            children = await access.children(node)
        except StoreError as exc:
            access.report(exc, node=node, operation="validate_subtree")
            return

        has_grandchild = False
        one_child: NodeID | None = None
        branches = []
        for child in children:
            if child in path:
                cycle = [*path[path.index(child) :], child]
                access.report(HierarchyCycleError(list(cycle)), node=node, operation="validate_subtree")
                continue
            try:
                branch = await access.may_have_children(child)
            except StoreError as exc:
                access.report(exc, node=child, operation="validate_subtree")
                continue
            if branch:
                has_grandchild = True
                branches.append(self._validate(child, path))
            else:
                one_child = child
        await asyncio.gather(*branches)

        if not has_grandchild and one_child is not None:
            await self._climber.reconcile_ancestors(one_child)
