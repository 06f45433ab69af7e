"""Reactions to mutation events fired by the backing store.

Only state changes funneled through the propagator and climber cascade.
An external write to the checked attribute is trusted as-is and merely
relayed to listeners.
"""

import structlog

from checktree.contracts import (
    ChildrenChanged,
    InvalidStateError,
    ItemAttributeChanged,
    ItemChanged,
    ItemCreated,
    ItemDeleted,
    NodeID,
    StateChanged,
    StoreError,
    StoreEvent,
    TopLevelMembershipChanged,
)
from checktree.engine.access import StateAccess
from checktree.engine.climber import UpwardClimber
from checktree.engine.state import stored_state

logger = structlog.get_logger(__name__)


class MutationReactor:
    """Map store events onto climbs and model notifications.

    Keeps the last observed top-level identity list, and nothing else, so
    membership changes can be diffed and only announced when they matter.
    """

    def __init__(self, access: StateAccess, climber: UpwardClimber) -> None:
        self._access = access
        self._climber = climber
        self._top_level: tuple[NodeID, ...] | None = None

    @property
    def top_level(self) -> tuple[NodeID, ...] | None:
        """Top-level identities as of the last query (None before the first)."""
        return self._top_level

    def record_top_level(self, children: list[NodeID]) -> None:
        """Remember the root's children as just fetched by a caller."""
        self._top_level = tuple(children)

    async def handle(self, event: StoreEvent) -> None:
        """Store event handler; register with ``store.subscribe``."""
        match event:
            case ItemCreated():
                await self._on_created(event)
            case ItemDeleted():
                await self._on_deleted(event)
            case ItemAttributeChanged():
                await self._on_attribute_changed(event)
            case TopLevelMembershipChanged():
                await self._on_membership_changed(event)

    async def _on_created(self, event: ItemCreated) -> None:
        if event.parent is None:
            await self.requery_top_level()
        await self._climber.reconcile_ancestors(event.item)

    async def _on_deleted(self, event: ItemDeleted) -> None:
        if self._top_level is not None and event.item in self._top_level:
            await self.requery_top_level()
        await self._climber.reconcile_ancestors(event.item, parents=event.former_parents)

    async def _on_attribute_changed(self, event: ItemAttributeChanged) -> None:
        access = self._access
        settings = access.settings
        if event.attribute in settings.children_attrs:
            try:
                children = await access.children(event.item)
            except StoreError as exc:
                access.report(exc, node=event.item, operation="children_changed")
                return
            access.event_bus.emit(ChildrenChanged(node=event.item, children=tuple(children)))
            return

        if event.attribute == settings.checked_attr:
            try:
                old_value = stored_state(event.old_value)
                new_value = stored_state(event.new_value)
            except InvalidStateError as exc:
                access.report(exc, node=event.item, operation="state_changed")
                return
            access.event_bus.emit(StateChanged(node=event.item, old_value=old_value, new_value=new_value))
            return

        if event.attribute in settings.query_attrs:
            await self.requery_top_level()
        attribute = "label" if event.attribute == access.store.label_attribute else event.attribute
        access.event_bus.emit(ItemChanged(node=event.item, attribute=attribute, new_value=event.new_value))

    async def _on_membership_changed(self, event: TopLevelMembershipChanged) -> None:
        if event.attached or (self._top_level is not None and event.item in self._top_level):
            await self.requery_top_level()

    async def requery_top_level(self) -> None:
        """Re-run the top-level query and announce a changed root membership."""
        access = self._access
        try:
            new_children = tuple(await access.children(access.root))
        except StoreError as exc:
            access.report(exc, node=access.root, operation="requery_top_level")
            return
        old_children = self._top_level or ()
        self._top_level = new_children
        if old_children != new_children:
            logger.debug("Top-level membership changed", old_count=len(old_children), new_count=len(new_children))
            access.event_bus.emit(ChildrenChanged(node=access.root, children=new_children))
