"""Item store adapters and the settings-driven factory."""

from checktree.core.config import ModelSettings, StoreSettings
from checktree.store.itemfile import (
    REFERENCE_KEY,
    ItemFile,
    ItemFileError,
    ItemRecord,
    parse_item_data,
    read_item_file,
    render_item_data,
    write_item_file,
)
from checktree.store.memory import InMemoryItemStore
from checktree.store.sql import SQLItemStore


def create_store(store_settings: StoreSettings, model_settings: ModelSettings) -> InMemoryItemStore | SQLItemStore:
    """Build the configured store, loading ``data_file`` when one is set.

    A sqlite store without a data file keeps whatever the database holds.

    Raises:
        FileNotFoundError: data_file does not exist
        ItemFileError: data_file is not a valid item file
    """
    children_attrs = model_settings.children_attrs
    item_file = None
    if store_settings.data_file is not None:
        item_file = parse_item_data(read_item_file(store_settings.data_file), children_attrs=children_attrs)

    if store_settings.backend == "sqlite":
        sql_store = SQLItemStore(store_settings.url, children_attrs=children_attrs)
        if item_file is not None:
            sql_store.load(item_file)
        return sql_store

    if item_file is None:
        return InMemoryItemStore(children_attrs=children_attrs)
    memory_store = InMemoryItemStore(
        identifier=item_file.identifier, label=item_file.label, children_attrs=children_attrs
    )
    memory_store.load(item_file)
    return memory_store


__all__ = [
    "REFERENCE_KEY",
    "InMemoryItemStore",
    "ItemFile",
    "ItemFileError",
    "ItemRecord",
    "SQLItemStore",
    "create_store",
    "parse_item_data",
    "read_item_file",
    "render_item_data",
    "write_item_file",
]
