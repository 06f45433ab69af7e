"""Checked-state normalization and aggregation.

Both functions are pure. aggregate() is the only place the "disagreement
yields mixed" policy is encoded.
"""

from collections.abc import Iterable
from typing import Any

from checktree.contracts import MIXED, NO_OPINION, InvalidStateError, StateValue, Verdict

_TRUE_WORDS = frozenset({"true", "checked", "yes", "on", "1"})
_FALSE_WORDS = frozenset({"false", "unchecked", "no", "off", "0"})


def normalize_state(candidate: Any, *, multi_state: bool, may_have_children: bool) -> StateValue:
    """Normalize a candidate checked state before it is stored.

    Booleans pass through. MIXED is kept only for items that can have
    children while multi-state is enabled; anywhere else it is coerced to
    True (a leaf cannot be partially checked).

    Raises:
        InvalidStateError: candidate is neither a bool nor MIXED
    """
    if isinstance(candidate, bool):
        return candidate
    if isinstance(candidate, str) and candidate == MIXED:
        if multi_state and may_have_children:
            return MIXED
        return True
    raise InvalidStateError(candidate)


def stored_state(raw: Any) -> StateValue | None:
    """Interpret a raw stored attribute value as a checked state.

    None means the item has no state. The string "mixed" read back from a
    JSON/YAML store becomes MIXED.

    Raises:
        InvalidStateError: the store holds something that is not a state
    """
    if raw is None or isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw == MIXED:
        return MIXED
    raise InvalidStateError(raw)


def parse_state(text: str) -> StateValue:
    """Parse user-facing text (CLI arguments, config values) into a state.

    Accepts true/false/mixed plus the usual synonyms, case-insensitively.

    Raises:
        InvalidStateError: text names no known state
    """
    word = text.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    if word in (MIXED, "partial", "indeterminate"):
        return MIXED
    raise InvalidStateError(text)


def aggregate(child_states: Iterable[StateValue | None]) -> Verdict:
    """Compute a parent's state from its children's states.

    Undefined (None) children are ignored. If no child has a defined state
    the verdict is NO_OPINION and the parent must be left as it is.
    Otherwise all-True gives True, all-False gives False, and anything else
    (disagreement, or any MIXED child) gives MIXED.
    """
    has_true = False
    has_false = False
    for state in child_states:
        if state is None:
            continue
        if state == MIXED:
            return MIXED
        if state:
            has_true = True
        else:
            has_false = True
    if has_true and has_false:
        return MIXED
    if has_true:
        return True
    if has_false:
        return False
    return NO_OPINION
