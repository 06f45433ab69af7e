# src/checktree/store/itemfile.py
"""Item-file format shared by the store adapters.

An item file is a JSON or YAML mapping:

    identifier: id          # attribute holding item identity (default "id")
    label: name             # attribute holding the label (default "name")
    items:                  # the top-level items
      - id: africa
        name: Africa
        checked: false
        children:           # nested items or references
          - id: egypt
            name: Egypt
          - _reference: kenya
    detached:               # optional: items that are neither top-level nor nested
      - id: kenya
        name: Kenya

Items listed directly under ``items`` are top-level. A child entry is either
a nested item (defined exactly once in the whole file) or
``{"_reference": "<identity>"}``, which is how an item gets several parents.
"""

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from checktree.contracts import NodeID

REFERENCE_KEY = "_reference"


class ItemFileError(ValueError):
    """Raised when item data does not follow the item-file format."""

    pass


@dataclass(frozen=True, slots=True)
class ItemRecord:
    """One item as read from an item file.

    Attributes:
        item_id: Item identity
        attributes: Plain attributes, identifier included, children excluded
        children: Children attribute -> child identities. A key is present
            exactly when the item carries that attribute, even if empty.
    """

    item_id: NodeID
    attributes: dict[str, Any]
    children: dict[str, list[NodeID]]


@dataclass(frozen=True, slots=True)
class ItemFile:
    """Parsed item file: every item once, in document order."""

    identifier: str
    label: str
    records: list[ItemRecord]
    top_level: list[NodeID]


def parse_item_data(data: Mapping[str, Any], *, children_attrs: Sequence[str]) -> ItemFile:
    """Parse item-file data into records.

    Raises:
        ItemFileError: Missing identities, duplicates, dangling references,
            or structurally invalid entries
    """
    identifier = str(data.get("identifier", "id"))
    label = str(data.get("label", "name"))
    items = data.get("items")
    if not isinstance(items, list):
        raise ItemFileError("item data must contain an 'items' list")
    detached = data.get("detached", [])
    if not isinstance(detached, list):
        raise ItemFileError("'detached' must be a list")

    records: dict[NodeID, ItemRecord] = {}

    def visit(raw: Any, where: str) -> NodeID:
        if not isinstance(raw, Mapping):
            raise ItemFileError(f"{where}: expected a mapping, got {type(raw).__name__}")
        if REFERENCE_KEY in raw:
            return NodeID(str(raw[REFERENCE_KEY]))
        if identifier not in raw:
            raise ItemFileError(f"{where}: item has no '{identifier}' attribute")
        item_id = NodeID(str(raw[identifier]))
        if item_id in records:
            raise ItemFileError(f"{where}: duplicate item identity '{item_id}'")
        record = ItemRecord(
            item_id=item_id,
            attributes={k: v for k, v in raw.items() if k not in children_attrs},
            children={},
        )
        records[item_id] = record
        for attr in children_attrs:
            if attr not in raw:
                continue
            value = raw[attr]
            if not isinstance(value, list):
                raise ItemFileError(f"{where}.{attr}: expected a list")
            record.children[attr] = [visit(child, f"{where}.{attr}[{i}]") for i, child in enumerate(value)]
        return item_id

    top_level = [visit(raw, f"items[{i}]") for i, raw in enumerate(items)]
    for i, raw in enumerate(detached):
        visit(raw, f"detached[{i}]")

    for record in records.values():
        for attr, children in record.children.items():
            for child in children:
                if child not in records:
                    raise ItemFileError(f"item '{record.item_id}' {attr}: unknown reference '{child}'")
    for item_id in top_level:
        if item_id not in records:
            raise ItemFileError(f"items: unknown reference '{item_id}'")
    if len(set(top_level)) != len(top_level):
        raise ItemFileError("items: an item is listed at the top level more than once")

    return ItemFile(identifier=identifier, label=label, records=list(records.values()), top_level=top_level)


def render_item_data(item_file: ItemFile) -> dict[str, Any]:
    """Render records back into item-file data.

    Each item is written in full once: top-level items under ``items``,
    others nested under the first parent that reaches them, and anything
    unreachable under ``detached``. Every other occurrence is a reference.
    """
    by_id = {record.item_id: record for record in item_file.records}
    top_level = set(item_file.top_level)
    emitted: set[NodeID] = set()

    def full(item_id: NodeID) -> dict[str, Any]:
        emitted.add(item_id)
        record = by_id[item_id]
        out = dict(record.attributes)
        for attr, children in record.children.items():
            out[attr] = [nested(child) for child in children]
        return out

    def nested(item_id: NodeID) -> dict[str, Any]:
        if item_id in emitted or item_id in top_level:
            return {REFERENCE_KEY: item_id}
        return full(item_id)

    data: dict[str, Any] = {
        "identifier": item_file.identifier,
        "label": item_file.label,
        "items": [full(item_id) for item_id in item_file.top_level],
    }
    detached = [full(record.item_id) for record in item_file.records if record.item_id not in emitted]
    if detached:
        data["detached"] = detached
    return data


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def read_item_file(path: Path) -> dict[str, Any]:
    """Load raw item data from a JSON or YAML file (chosen by suffix).

    Raises:
        FileNotFoundError: path does not exist
        ItemFileError: the document is not a mapping
    """
    text = path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) if _is_yaml(path) else json.loads(text)
    if not isinstance(data, dict):
        raise ItemFileError(f"{path}: item file must contain a mapping at the top level")
    return data


def write_item_file(path: Path, data: Mapping[str, Any]) -> None:
    """Write item data as JSON or YAML (chosen by suffix)."""
    if _is_yaml(path):
        text = yaml.safe_dump(dict(data), sort_keys=False, allow_unicode=True)
    else:
        text = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    path.write_text(text, encoding="utf-8")
