"""Checked-state values and verdicts shared across subsystem boundaries.

A checked state is either a plain bool or MIXED. ``None`` stands for
"undefined": no state has ever been established for the item. Undefined is
never the same thing as False.
"""

from enum import Enum, StrEnum


class CheckedState(StrEnum):
    """Non-boolean checked state.

    Stored in the backing store as the string "mixed", so a value read back
    from a JSON or YAML data file compares equal to MIXED.
    """

    MIXED = "mixed"


class NoOpinion(Enum):
    """Aggregator verdict for a parent with no defined-state children.

    The parent's current state must be left untouched.
    """

    NO_OPINION = "no_opinion"


MIXED = CheckedState.MIXED
NO_OPINION = NoOpinion.NO_OPINION

type StateValue = bool | CheckedState
"""A defined checked state: True, False or MIXED."""

type Verdict = StateValue | NoOpinion
"""Result of aggregating a parent's children."""
