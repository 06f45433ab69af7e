# src/checktree/store/sql.py
"""SQLAlchemy-backed item store.

Items and their parent/child edges live in two tables (see schema.py).
SQLAlchemy calls are blocking, so each store operation runs in a worker
thread via asyncio.to_thread; events are fired back on the event loop after
the transaction has committed.
"""

import asyncio
import contextlib
import json
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Self

import structlog
from sqlalchemy import Connection, Row, create_engine, delete, event, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from checktree.contracts import (
    AttributeName,
    ItemAttributeChanged,
    ItemCreated,
    ItemDeleted,
    ItemQuery,
    NodeID,
    StoreAccessError,
    StoreEvent,
    StoreIOError,
    TopLevelMembershipChanged,
)
from checktree.store.base import StoreEventDispatcher
from checktree.store.itemfile import ItemFile, ItemRecord, parse_item_data, render_item_data
from checktree.store.schema import item_edges_table, items_table, metadata, store_meta_table

logger = structlog.get_logger(__name__)

type _Mutation = tuple[Any, list[StoreEvent]]


class SQLItemStore(StoreEventDispatcher):
    """Mutable item store persisted through SQLAlchemy Core.

    Implements MutableItemStoreProtocol. Database failures surface as
    StoreIOError; rejected requests (unknown items, identifier writes) as
    StoreAccessError.

    Example:
        store = SQLItemStore.from_data(data, url="sqlite:///./tree.db")
        await store.write_attribute(NodeID("egypt"), "checked", True)
        store.close()
    """

    def __init__(
        self,
        url: str = "sqlite:///:memory:",
        *,
        identifier: str = "id",
        label: str = "name",
        children_attrs: Sequence[str] = ("children",),
    ) -> None:
        super().__init__()
        if not children_attrs:
            raise ValueError("children_attrs must name at least one attribute")
        self.url = url
        self._children_attrs = tuple(children_attrs)
        self._engine: Engine = self._create_engine(url)
        # A StaticPool hands every worker thread the same DBAPI connection
        self._serial: threading.Lock | None = threading.Lock() if isinstance(self._engine.pool, StaticPool) else None
        metadata.create_all(self._engine)
        self._identifier, self._label = self._init_meta(identifier, label)

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if not url.startswith("sqlite"):
            return create_engine(url, echo=False)
        # Worker threads share connections; an in-memory database must stay on one
        pool_args: dict[str, Any] = {"poolclass": StaticPool} if ":memory:" in url or url == "sqlite://" else {}
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False}, **pool_args)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection: object, connection_record: object) -> None:
            cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        return engine

    def _init_meta(self, identifier: str, label: str) -> tuple[str, str]:
        """Adopt attribute names already stored in the database, else record ours."""
        with self._engine.begin() as conn:
            stored = {row.key: row.value for row in conn.execute(select(store_meta_table))}
            if not stored:
                conn.execute(
                    insert(store_meta_table),
                    [{"key": "identifier", "value": identifier}, {"key": "label", "value": label}],
                )
                return identifier, label
        return stored["identifier"], stored["label"]

    @classmethod
    def from_data(
        cls,
        data: Mapping[str, Any],
        *,
        url: str = "sqlite:///:memory:",
        children_attrs: Sequence[str] = ("children",),
    ) -> Self:
        """Build a store from item-file data, replacing the database contents."""
        item_file = parse_item_data(data, children_attrs=children_attrs)
        store = cls(url, identifier=item_file.identifier, label=item_file.label, children_attrs=children_attrs)
        store.load(item_file)
        return store

    def load(self, item_file: ItemFile) -> None:
        """Replace the database contents. Fires no events."""
        top_positions = {item_id: position for position, item_id in enumerate(item_file.top_level)}
        with self._serialized(), self._engine.begin() as conn:
            conn.execute(delete(item_edges_table))
            conn.execute(delete(items_table))
            conn.execute(delete(store_meta_table))
            conn.execute(
                insert(store_meta_table),
                [{"key": "identifier", "value": item_file.identifier}, {"key": "label", "value": item_file.label}],
            )
            if item_file.records:
                conn.execute(
                    insert(items_table),
                    [
                        {
                            "item_id": record.item_id,
                            "attributes_json": json.dumps(record.attributes),
                            "children_attrs_json": json.dumps(list(record.children)),
                            "top_level_position": top_positions.get(record.item_id),
                            "ordinal": ordinal,
                        }
                        for ordinal, record in enumerate(item_file.records)
                    ],
                )
            for record in item_file.records:
                for attr, children in record.children.items():
                    self._set_edge_children(conn, record.item_id, attr, children)
        self._identifier = item_file.identifier
        self._label = item_file.label
        logger.debug("Item store loaded", url=self.url, items=len(item_file.records))

    async def export_data(self) -> dict[str, Any]:
        """Current contents as item-file data."""
        return await self._run("export_data", None, self._export_data)

    def close(self) -> None:
        """Dispose of the connection pool."""
        self._engine.dispose()

    # === ItemStoreProtocol ===

    @property
    def identifier_attribute(self) -> str:
        return self._identifier

    @property
    def label_attribute(self) -> str:
        return self._label

    async def contains(self, item: NodeID) -> bool:
        return await self._run("contains", item, self._contains, item)

    async def read_attribute(self, item: NodeID, name: str) -> Any | None:
        return await self._run("read_attribute", item, self._read_attribute, item, name)

    async def write_attribute(self, item: NodeID, name: str, value: Any) -> bool:
        changed, events = await self._run("write_attribute", item, self._write_attribute, item, name, value)
        await self._fire(events)
        return bool(changed)

    async def fetch_children(self, item: NodeID) -> list[NodeID]:
        return await self._run("fetch_children", item, self._fetch_children, item)

    async def fetch_parents(self, item: NodeID) -> list[NodeID]:
        return await self._run("fetch_parents", item, self._fetch_parents, item)

    async def query_top_level(self, query: ItemQuery | None) -> list[NodeID]:
        return await self._run("query_top_level", None, self._query_top_level, query)

    async def may_have_children(self, item: NodeID) -> bool:
        return await self._run("may_have_children", item, self._may_have_children, item)

    # === MutableItemStoreProtocol ===

    async def fetch_items(self, query: ItemQuery) -> list[NodeID]:
        return await self._run("fetch_items", None, self._fetch_items, query)

    async def new_item(self, attributes: Mapping[str, Any], parent: NodeID | None = None) -> NodeID:
        item_id, events = await self._run("new_item", parent, self._new_item, dict(attributes), parent)
        await self._fire(events)
        return NodeID(item_id)

    async def delete_item(self, item: NodeID) -> None:
        _, events = await self._run("delete_item", item, self._delete_item, item)
        await self._fire(events)

    async def add_reference(self, child: NodeID, parent: NodeID, attribute: str | None = None) -> bool:
        attr = attribute or self._children_attrs[0]
        changed, events = await self._run("add_reference", child, self._add_reference, child, parent, attr)
        await self._fire(events)
        return bool(changed)

    async def remove_reference(self, child: NodeID, parent: NodeID, attribute: str | None = None) -> bool:
        attr = attribute or self._children_attrs[0]
        changed, events = await self._run("remove_reference", child, self._remove_reference, child, parent, attr)
        await self._fire(events)
        return bool(changed)

    async def attach_to_root(self, item: NodeID) -> None:
        _, events = await self._run("attach_to_root", item, self._set_top_level, item, True)
        await self._fire(events)

    async def detach_from_root(self, item: NodeID) -> None:
        _, events = await self._run("detach_from_root", item, self._set_top_level, item, False)
        await self._fire(events)

    # === Worker-thread implementations ===

    async def _run(self, operation: str, node: NodeID | None, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(self._call, fn, *args)
        except SQLAlchemyError as exc:
            raise StoreIOError(operation, node, str(exc)) from exc

    def _serialized(self) -> contextlib.AbstractContextManager[Any]:
        return self._serial if self._serial is not None else contextlib.nullcontext()

    def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._serialized():
            return fn(*args)

    def _contains(self, item: NodeID) -> bool:
        with self._engine.connect() as conn:
            return conn.execute(select(items_table.c.item_id).where(items_table.c.item_id == item)).first() is not None

    def _read_attribute(self, item: NodeID, name: str) -> Any | None:
        with self._engine.connect() as conn:
            row = self._row(conn, item, name)
            if name in self._children_attrs:
                if name not in json.loads(row.children_attrs_json):
                    return None
                return self._edge_children(conn, item, name)
            return json.loads(row.attributes_json).get(name)

    def _write_attribute(self, item: NodeID, name: str, value: Any) -> _Mutation:
        with self._engine.begin() as conn:
            row = self._row(conn, item, name)
            if name == self._identifier:
                raise StoreAccessError(item, name, "identifier attribute can not be changed")

            if name in self._children_attrs:
                children = self._checked_children(conn, item, name, value)
                carried = json.loads(row.children_attrs_json)
                old_children = self._edge_children(conn, item, name) if name in carried else None
                if old_children == children:
                    return False, []
                self._set_edge_children(conn, item, name, children)
                if name not in carried:
                    self._update_row(conn, item, children_attrs_json=json.dumps([*carried, name]))
                return True, [ItemAttributeChanged(item, AttributeName(name), old_children, children)]

            attributes = json.loads(row.attributes_json)
            if name in attributes and attributes[name] == value:
                return False, []
            old_value = attributes.get(name)
            attributes[name] = value
            self._update_row(conn, item, attributes_json=json.dumps(attributes))
            return True, [ItemAttributeChanged(item, AttributeName(name), old_value, value)]

    def _fetch_children(self, item: NodeID) -> list[NodeID]:
        with self._engine.connect() as conn:
            self._row(conn, item, self._children_attrs[0])
            children: dict[NodeID, None] = {}
            for attr in self._children_attrs:
                for child in self._edge_children(conn, item, attr):
                    children[child] = None
            return list(children)

    def _fetch_parents(self, item: NodeID) -> list[NodeID]:
        with self._engine.connect() as conn:
            self._row(conn, item, self._identifier)
            return self._parent_ids(conn, item)

    def _query_top_level(self, query: ItemQuery | None) -> list[NodeID]:
        with self._engine.connect() as conn:
            rows = conn.execute(
                select(items_table)
                .where(items_table.c.top_level_position.is_not(None))
                .order_by(items_table.c.top_level_position)
            ).all()
        return [NodeID(row.item_id) for row in rows if _matches(row, query)]

    def _may_have_children(self, item: NodeID) -> bool:
        with self._engine.connect() as conn:
            row = self._row(conn, item, self._children_attrs[0])
            return bool(json.loads(row.children_attrs_json))

    def _fetch_items(self, query: ItemQuery) -> list[NodeID]:
        with self._engine.connect() as conn:
            rows = conn.execute(select(items_table).order_by(items_table.c.ordinal)).all()
        return [NodeID(row.item_id) for row in rows if _matches(row, query)]

    def _new_item(self, attributes: dict[str, Any], parent: NodeID | None) -> _Mutation:
        if self._identifier not in attributes:
            raise StoreAccessError("<new>", self._identifier, "new item has no identity")
        item_id = NodeID(str(attributes[self._identifier]))
        attr = self._children_attrs[0]
        with self._engine.begin() as conn:
            if conn.execute(select(items_table.c.item_id).where(items_table.c.item_id == item_id)).first() is not None:
                raise StoreAccessError(item_id, self._identifier, "an item with this identity already exists")
            if parent is not None:
                self._row(conn, parent, attr)

            carried = [children_attr for children_attr in self._children_attrs if children_attr in attributes]
            plain = {k: v for k, v in attributes.items() if k not in self._children_attrs}
            next_ordinal = conn.execute(select(func.coalesce(func.max(items_table.c.ordinal), -1))).scalar_one() + 1
            top_level_position = self._next_top_level_position(conn) if parent is None else None
            conn.execute(
                insert(items_table).values(
                    item_id=item_id,
                    attributes_json=json.dumps(plain),
                    children_attrs_json=json.dumps(carried),
                    top_level_position=top_level_position,
                    ordinal=next_ordinal,
                )
            )
            for children_attr in carried:
                children = self._checked_children(conn, item_id, children_attr, attributes[children_attr])
                self._set_edge_children(conn, item_id, children_attr, children)

            events: list[StoreEvent] = []
            if parent is None:
                events.append(ItemCreated(item_id))
            else:
                events.append(self._append_child(conn, parent, item_id, attr))
                events.append(ItemCreated(item_id, parent, AttributeName(attr)))
        return item_id, events

    def _delete_item(self, item: NodeID) -> _Mutation:
        with self._engine.begin() as conn:
            self._row(conn, item, self._identifier)
            former_parents = self._parent_ids(conn, item)
            events: list[StoreEvent] = []
            for parent in former_parents:
                for attr in self._children_attrs:
                    children = self._edge_children(conn, parent, attr)
                    if item in children:
                        remaining = [child for child in children if child != item]
                        self._set_edge_children(conn, parent, attr, remaining)
                        events.append(ItemAttributeChanged(parent, AttributeName(attr), children, remaining))
            conn.execute(delete(item_edges_table).where(item_edges_table.c.parent_id == item))
            conn.execute(delete(item_edges_table).where(item_edges_table.c.child_id == item))
            conn.execute(delete(items_table).where(items_table.c.item_id == item))
        events.append(ItemDeleted(item, tuple(former_parents)))
        return None, events

    def _add_reference(self, child: NodeID, parent: NodeID, attr: str) -> _Mutation:
        with self._engine.begin() as conn:
            self._row(conn, child, attr)
            self._row(conn, parent, attr)
            if child in self._edge_children(conn, parent, attr):
                return False, []
            return True, [self._append_child(conn, parent, child, attr)]

    def _remove_reference(self, child: NodeID, parent: NodeID, attr: str) -> _Mutation:
        with self._engine.begin() as conn:
            self._row(conn, child, attr)
            self._row(conn, parent, attr)
            children = self._edge_children(conn, parent, attr)
            if child not in children:
                return False, []
            remaining = [c for c in children if c != child]
            self._set_edge_children(conn, parent, attr, remaining)
            return True, [ItemAttributeChanged(parent, AttributeName(attr), children, remaining)]

    def _set_top_level(self, item: NodeID, attached: bool) -> _Mutation:
        with self._engine.begin() as conn:
            row = self._row(conn, item, self._identifier)
            if (row.top_level_position is not None) == attached:
                return None, []
            position = self._next_top_level_position(conn) if attached else None
            self._update_row(conn, item, top_level_position=position)
        return None, [TopLevelMembershipChanged(item, attached=attached)]

    def _export_data(self) -> dict[str, Any]:
        with self._engine.connect() as conn:
            rows = conn.execute(select(items_table).order_by(items_table.c.ordinal)).all()
            records = [
                ItemRecord(
                    item_id=NodeID(row.item_id),
                    attributes=json.loads(row.attributes_json),
                    children={attr: self._edge_children(conn, row.item_id, attr) for attr in json.loads(row.children_attrs_json)},
                )
                for row in rows
            ]
        top_level = [
            NodeID(row.item_id)
            for row in sorted((r for r in rows if r.top_level_position is not None), key=lambda r: r.top_level_position)
        ]
        return render_item_data(ItemFile(identifier=self._identifier, label=self._label, records=records, top_level=top_level))

    # === Connection-level helpers ===

    def _row(self, conn: Connection, item: NodeID, attribute: str) -> Row[Any]:
        row = conn.execute(select(items_table).where(items_table.c.item_id == item)).first()
        if row is None:
            raise StoreAccessError(item, attribute, "no such item")
        return row

    def _update_row(self, conn: Connection, item: NodeID, **values: Any) -> None:
        conn.execute(update(items_table).where(items_table.c.item_id == item).values(**values))

    def _edge_children(self, conn: Connection, item: NodeID, attr: str) -> list[NodeID]:
        rows = conn.execute(
            select(item_edges_table.c.child_id)
            .where(item_edges_table.c.parent_id == item, item_edges_table.c.attribute == attr)
            .order_by(item_edges_table.c.position)
        ).all()
        return [NodeID(row.child_id) for row in rows]

    def _set_edge_children(self, conn: Connection, item: NodeID, attr: str, children: list[NodeID]) -> None:
        conn.execute(
            delete(item_edges_table).where(item_edges_table.c.parent_id == item, item_edges_table.c.attribute == attr)
        )
        if children:
            conn.execute(
                insert(item_edges_table),
                [
                    {"parent_id": item, "attribute": attr, "child_id": child, "position": position}
                    for position, child in enumerate(dict.fromkeys(children))
                ],
            )

    def _append_child(self, conn: Connection, parent: NodeID, child: NodeID, attr: str) -> ItemAttributeChanged:
        carried = json.loads(self._row(conn, parent, attr).children_attrs_json)
        old_children = self._edge_children(conn, parent, attr)
        conn.execute(
            insert(item_edges_table).values(parent_id=parent, attribute=attr, child_id=child, position=len(old_children))
        )
        if attr not in carried:
            self._update_row(conn, parent, children_attrs_json=json.dumps([*carried, attr]))
        return ItemAttributeChanged(parent, AttributeName(attr), old_children, [*old_children, child])

    def _parent_ids(self, conn: Connection, item: NodeID) -> list[NodeID]:
        rows = conn.execute(
            select(item_edges_table.c.parent_id)
            .select_from(item_edges_table.join(items_table, items_table.c.item_id == item_edges_table.c.parent_id))
            .where(item_edges_table.c.child_id == item)
            .order_by(items_table.c.ordinal)
        ).all()
        return list(dict.fromkeys(NodeID(row.parent_id) for row in rows))

    def _checked_children(self, conn: Connection, item: NodeID, attr: str, value: Any) -> list[NodeID]:
        if not isinstance(value, list):
            raise StoreAccessError(item, attr, "children attribute must be a list of identities")
        children = [NodeID(str(child)) for child in value]
        if not children:
            return children
        known = {row.item_id for row in conn.execute(select(items_table.c.item_id).where(items_table.c.item_id.in_(children)))}
        unknown = [child for child in children if child not in known]
        if unknown:
            raise StoreAccessError(item, attr, f"unknown child identities {unknown}")
        return children

    def _next_top_level_position(self, conn: Connection) -> int:
        return int(conn.execute(select(func.coalesce(func.max(items_table.c.top_level_position), -1))).scalar_one()) + 1


def _matches(row: Row[Any], query: ItemQuery | None) -> bool:
    if not query:
        return True
    attributes = json.loads(row.attributes_json)
    return all(attributes.get(key) == value for key, value in query.items())
