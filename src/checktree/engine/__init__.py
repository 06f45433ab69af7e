"""Checked-state engine: normalization, aggregation, propagation, climbing,
validation and store-event reactions, composed by CheckedTreeModel."""

from checktree.engine.access import StateAccess
from checktree.engine.climber import UpwardClimber
from checktree.engine.model import (
    AttributeAccessor,
    CheckedTreeModel,
    CheckResult,
    HierarchyModel,
)
from checktree.engine.propagation import DownwardPropagator
from checktree.engine.reactor import MutationReactor
from checktree.engine.state import aggregate, normalize_state, parse_state, stored_state
from checktree.engine.validator import ConsistencyValidator

__all__ = [
    "AttributeAccessor",
    "CheckResult",
    "CheckedTreeModel",
    "ConsistencyValidator",
    "DownwardPropagator",
    "HierarchyModel",
    "MutationReactor",
    "StateAccess",
    "UpwardClimber",
    "aggregate",
    "normalize_state",
    "parse_state",
    "stored_state",
]
