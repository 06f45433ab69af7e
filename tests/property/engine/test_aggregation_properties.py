# tests/property/engine/test_aggregation_properties.py
"""Property-based tests for checked-state aggregation and normalization.

These are the two pure functions every propagation step relies on:
- aggregate(): a parent's state from its children's states
- normalize_state(): what may actually be stored on a given node
"""

from hypothesis import assume, given
from hypothesis import strategies as st

from checktree.contracts import MIXED, NO_OPINION, InvalidStateError
from checktree.engine.state import aggregate, normalize_state
from tests.property.settings import DETERMINISM_SETTINGS, QUICK_SETTINGS

defined_states = st.sampled_from([True, False, MIXED])
child_states = st.lists(st.one_of(defined_states, st.none()), max_size=20)


class TestAggregateProperties:
    """aggregate() against an independent statement of the rule."""

    @given(states=child_states)
    @DETERMINISM_SETTINGS
    def test_verdict_follows_defined_children(self, states: list) -> None:
        """True iff all defined are True, False iff all defined are False, else MIXED."""
        defined = [s for s in states if s is not None]
        assume(defined)

        verdict = aggregate(states)

        if all(s is True for s in defined):
            assert verdict is True
        elif all(s is False for s in defined):
            assert verdict is False
        else:
            assert verdict == MIXED

    @given(count=st.integers(min_value=0, max_value=20))
    @QUICK_SETTINGS
    def test_only_undefined_children_is_no_opinion(self, count: int) -> None:
        """No defined child state means no opinion, never a state."""
        assert aggregate([None] * count) is NO_OPINION

    @given(states=child_states)
    @DETERMINISM_SETTINGS
    def test_order_does_not_matter(self, states: list) -> None:
        """Sibling order never changes the verdict."""
        assert aggregate(states) == aggregate(list(reversed(states)))

    @given(states=child_states, extra=st.lists(st.none(), max_size=5))
    @DETERMINISM_SETTINGS
    def test_undefined_children_are_ignored(self, states: list, extra: list) -> None:
        """Adding undefined siblings never changes the verdict."""
        assert aggregate(states + extra) == aggregate(states)

    @given(states=child_states)
    @DETERMINISM_SETTINGS
    def test_mixed_child_forces_mixed(self, states: list) -> None:
        """A partially checked child makes the parent partially checked."""
        assert aggregate([*states, MIXED]) == MIXED


class TestNormalizeProperties:
    """normalize_state() never lets a leaf hold MIXED."""

    @given(value=st.booleans(), multi_state=st.booleans(), branch=st.booleans())
    @QUICK_SETTINGS
    def test_booleans_pass_through(self, value: bool, multi_state: bool, branch: bool) -> None:
        assert normalize_state(value, multi_state=multi_state, may_have_children=branch) is value

    @given(multi_state=st.booleans(), branch=st.booleans())
    @QUICK_SETTINGS
    def test_mixed_kept_only_on_multi_state_branches(self, multi_state: bool, branch: bool) -> None:
        result = normalize_state(MIXED, multi_state=multi_state, may_have_children=branch)

        if multi_state and branch:
            assert result == MIXED
        else:
            assert result is True

    @given(
        value=st.one_of(
            st.integers(),
            st.floats(allow_nan=False),
            st.text().filter(lambda s: s != "mixed"),
            st.none(),
            st.lists(st.booleans(), max_size=2),
        )
    )
    @QUICK_SETTINGS
    def test_non_states_rejected(self, value: object) -> None:
        # bool is an int subclass; only real booleans are states
        assume(not isinstance(value, bool))
        try:
            normalize_state(value, multi_state=True, may_have_children=True)
        except InvalidStateError as exc:
            assert exc.value is value
        else:
            raise AssertionError(f"{value!r} was accepted as a state")
