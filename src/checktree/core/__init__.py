# src/checktree/core/__init__.py
"""Core infrastructure: configuration, logging, event bus, hierarchy snapshots."""

from checktree.core.config import (
    CheckTreeSettings,
    LoggingSettings,
    ModelSettings,
    StoreSettings,
    load_settings,
    resolve_config,
)
from checktree.core.events import EventBus, EventBusProtocol
from checktree.core.hierarchy import ensure_acyclic, find_cycle, snapshot_hierarchy
from checktree.core.logging import configure_logging, get_logger

__all__ = [
    "CheckTreeSettings",
    "EventBus",
    "EventBusProtocol",
    "LoggingSettings",
    "ModelSettings",
    "StoreSettings",
    "configure_logging",
    "ensure_acyclic",
    "find_cycle",
    "get_logger",
    "load_settings",
    "resolve_config",
    "snapshot_hierarchy",
]
