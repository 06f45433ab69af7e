"""Exceptions raised across the engine and store boundaries.

Store adapters raise StoreError subclasses. The engine catches those per
recursion branch and reports them; everything else is a bug and propagates.
"""

from typing import Any


class CheckTreeError(Exception):
    """Base class for all checktree errors."""

    pass


class InvalidStateError(CheckTreeError, ValueError):
    """Raised when a candidate checked state is not True, False or MIXED."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f"Invalid checked state: {value!r} (expected True, False or 'mixed')")


class InvalidNodeError(CheckTreeError, LookupError):
    """Raised when an operation targets something that is not a known item."""

    def __init__(self, node: Any) -> None:
        self.node = node
        super().__init__(f"Not a valid store item: {node!r}")


class StoreError(CheckTreeError):
    """Base class for failures at the backing store boundary."""

    pass


class StoreAccessError(StoreError):
    """Raised when the store rejects a read or write.

    Attributes:
        node: Item the access was attempted on
        attribute: Attribute name involved
        reason: Human-readable rejection reason
    """

    def __init__(self, node: str, attribute: str, reason: str) -> None:
        self.node = node
        self.attribute = attribute
        self.reason = reason
        super().__init__(f"Access to '{attribute}' of item '{node}' rejected: {reason}")


class StoreIOError(StoreError):
    """Raised when a fetch or write request fails at the store boundary.

    Attributes:
        operation: Store operation that failed (e.g., "fetch_children")
        node: Item the request was about, if any
        cause: Underlying exception message
    """

    def __init__(self, operation: str, node: str | None, cause: str) -> None:
        self.operation = operation
        self.node = node
        self.cause = cause
        target = f" for item '{node}'" if node is not None else ""
        super().__init__(f"Store request '{operation}' failed{target}: {cause}")


class HierarchyCycleError(CheckTreeError):
    """Raised or reported when the parent relation contains a cycle.

    Attributes:
        path: Node identities forming the cycle, first node repeated last
    """

    def __init__(self, path: list[str]) -> None:
        self.path = path
        super().__init__(f"Hierarchy contains a cycle: {' -> '.join(path)}")
