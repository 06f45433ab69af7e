"""Semantic type aliases for compile-time type safety.

NewType creates distinct types that mypy treats as incompatible,
preventing accidental misuse of semantically different string values.
"""

from typing import NewType

NodeID = NewType("NodeID", str)
"""Opaque item identity in the backing store (e.g., 'egypt'), or the root id."""

AttributeName = NewType("AttributeName", str)
"""Name of a store item attribute (e.g., 'checked', 'children')."""
