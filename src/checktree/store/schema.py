"""SQLAlchemy table definitions for the SQL item store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

metadata = MetaData()

ITEM_ID_LENGTH = 255

# Store-wide settings carried with the data (identifier/label attribute names)
store_meta_table = Table(
    "store_meta",
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", Text, nullable=False),
)

items_table = Table(
    "items",
    metadata,
    Column("item_id", String(ITEM_ID_LENGTH), primary_key=True),
    # Plain attributes (identifier included, children excluded) as a JSON object
    Column("attributes_json", Text, nullable=False),
    # Children attributes this item carries, as a JSON list; empty = a leaf
    Column("children_attrs_json", Text, nullable=False),
    # Position among top-level items; NULL = not top-level
    Column("top_level_position", Integer),
    # Creation order, used for stable listing and export
    Column("ordinal", Integer, nullable=False),
)

item_edges_table = Table(
    "item_edges",
    metadata,
    Column("parent_id", String(ITEM_ID_LENGTH), ForeignKey("items.item_id"), nullable=False),
    Column("attribute", String(64), nullable=False),
    Column("child_id", String(ITEM_ID_LENGTH), ForeignKey("items.item_id"), nullable=False),
    Column("position", Integer, nullable=False),
    PrimaryKeyConstraint("parent_id", "attribute", "child_id"),
)

Index("ix_item_edges_child", item_edges_table.c.child_id)
Index("ix_items_top_level", items_table.c.top_level_position)
