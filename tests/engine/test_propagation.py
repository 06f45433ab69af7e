# tests/engine/test_propagation.py
"""Tests for downward propagation through set_state()."""

from collections.abc import Callable
from typing import Any

import pytest

from checktree.contracts import MIXED, EngineError, NodeID, StoreIOError
from checktree.engine import CheckedTreeModel
from checktree.store import InMemoryItemStore, parse_item_data


class CountingStore(InMemoryItemStore):
    """In-memory store recording every write request."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.writes: list[tuple[str, str, Any]] = []

    async def write_attribute(self, item: NodeID, name: str, value: Any) -> bool:
        self.writes.append((item, name, value))
        return await super().write_attribute(item, name, value)


class FailingWriteStore(InMemoryItemStore):
    """In-memory store whose writes to selected items fail at the I/O boundary."""

    def __init__(self, *, failing: set[str], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.failing = failing

    async def write_attribute(self, item: NodeID, name: str, value: Any) -> bool:
        if item in self.failing:
            raise StoreIOError("write_attribute", item, "connection reset")
        return await super().write_attribute(item, name, value)


async def _states(model: CheckedTreeModel, *nodes: str) -> dict[str, Any]:
    return {node: await model.get_state(NodeID(node)) for node in nodes}


class TestSetStateIdempotence:
    """Repeating a set_state() call writes nothing the second time."""

    @pytest.mark.asyncio
    async def test_non_strict_single_write(self, countries_data: dict, make_model: Callable[..., CheckedTreeModel]) -> None:
        store = CountingStore.from_data(countries_data)
        model = make_model(store, strict=False)

        await model.set_state(NodeID("egypt"), True)
        assert store.writes == [("egypt", "checked", True)]

        await model.set_state(NodeID("egypt"), True)
        assert store.writes == [("egypt", "checked", True)]

    @pytest.mark.asyncio
    async def test_strict_repeat_writes_nothing(self, countries_data: dict, make_model: Callable[..., CheckedTreeModel]) -> None:
        store = CountingStore.from_data(countries_data)
        model = make_model(store)
        await model.initialize()

        await model.set_state(NodeID("egypt"), True)
        egypt_writes = [w for w in store.writes if w[0] == "egypt"]
        assert egypt_writes == [("egypt", "checked", True)]

        store.writes.clear()
        await model.set_state(NodeID("egypt"), True)
        assert store.writes == []


class TestDownwardPropagation:
    """set_state() pushes the state to every leaf of the subtree."""

    @pytest.mark.asyncio
    async def test_every_descendant_leaf_receives_state(self, countries_store: InMemoryItemStore, make_model: Callable[..., CheckedTreeModel]) -> None:
        model = make_model(countries_store)
        await model.initialize()

        await model.set_state(NodeID("africa"), True)

        states = await _states(model, "egypt", "nairobi", "mombasa", "sudan", "kenya", "africa")
        assert all(state is True for state in states.values())
        # Other subtrees untouched
        assert await model.get_state(NodeID("europe")) is False

    @pytest.mark.asyncio
    async def test_internal_nodes_follow_their_leaves(self, countries_store: InMemoryItemStore, make_model: Callable[..., CheckedTreeModel]) -> None:
        """Kenya is set through its cities; Africa becomes partially checked."""
        model = make_model(countries_store)
        await model.initialize()

        await model.set_state(NodeID("kenya"), True)

        assert await _states(model, "nairobi", "mombasa", "kenya") == {"nairobi": True, "mombasa": True, "kenya": True}
        assert await model.get_state(NodeID("africa")) == MIXED

    @pytest.mark.asyncio
    async def test_unchecking_subtree(self, countries_store: InMemoryItemStore, make_model: Callable[..., CheckedTreeModel]) -> None:
        model = make_model(countries_store)
        await model.initialize()
        await model.set_state(NodeID("africa"), True)

        await model.set_state(NodeID("kenya"), False)

        assert await _states(model, "nairobi", "mombasa", "kenya") == {"nairobi": False, "mombasa": False, "kenya": False}
        assert await model.get_state(NodeID("africa")) == MIXED

    @pytest.mark.asyncio
    async def test_mixed_on_leaf_stored_as_true(self, countries_store: InMemoryItemStore, make_model: Callable[..., CheckedTreeModel]) -> None:
        model = make_model(countries_store)
        await model.initialize()

        await model.set_state(NodeID("egypt"), MIXED)

        assert await countries_store.read_attribute(NodeID("egypt"), "checked") is True

    @pytest.mark.asyncio
    async def test_mixed_pushed_to_leaves_checks_them(self, countries_store: InMemoryItemStore, make_model: Callable[..., CheckedTreeModel]) -> None:
        """MIXED normalizes to True on every leaf, so the branch ends up checked."""
        model = make_model(countries_store)
        await model.initialize()

        await model.set_state(NodeID("kenya"), "mixed")

        assert await _states(model, "nairobi", "mombasa", "kenya") == {"nairobi": True, "mombasa": True, "kenya": True}

    @pytest.mark.asyncio
    async def test_empty_branch_holds_state_itself(self, countries_data: dict, make_model: Callable[..., CheckedTreeModel]) -> None:
        countries_data["items"].append({"id": "antarctica", "name": "Antarctica", "children": []})
        store = InMemoryItemStore.from_data(countries_data)
        model = make_model(store)
        await model.initialize()

        await model.set_state(NodeID("antarctica"), True)

        assert await store.read_attribute(NodeID("antarctica"), "checked") is True

    @pytest.mark.asyncio
    async def test_explicit_leaf_write_creates_state(self, make_model: Callable[..., CheckedTreeModel]) -> None:
        """The node passed to set_state() receives a state even when create_for_all is off."""
        store = InMemoryItemStore.from_data({"items": [{"id": "p", "children": [{"id": "a"}]}]})
        model = make_model(store, create_for_all=False)

        await model.set_state(NodeID("a"), True)

        assert await store.read_attribute(NodeID("a"), "checked") is True

    @pytest.mark.asyncio
    async def test_stateless_descendants_left_without_state(self, make_model: Callable[..., CheckedTreeModel]) -> None:
        """With create_for_all off, only leaves that already carry a state follow the parent."""
        store = InMemoryItemStore.from_data(
            {"items": [{"id": "p", "children": [{"id": "a", "checked": False}, {"id": "nobox"}]}]}
        )
        model = make_model(store, create_for_all=False)

        await model.set_state(NodeID("p"), True)

        assert await store.read_attribute(NodeID("a"), "checked") is True
        assert await store.read_attribute(NodeID("nobox"), "checked") is None
        assert await model.get_state(NodeID("nobox")) is None

    @pytest.mark.asyncio
    async def test_stateless_descendants_created_with_create_for_all(self, make_model: Callable[..., CheckedTreeModel]) -> None:
        store = InMemoryItemStore.from_data({"items": [{"id": "p", "children": [{"id": "a"}, {"id": "b"}]}]})
        model = make_model(store, create_for_all=True)

        await model.set_state(NodeID("p"), True)

        assert await store.read_attribute(NodeID("a"), "checked") is True
        assert await store.read_attribute(NodeID("b"), "checked") is True

    @pytest.mark.asyncio
    async def test_state_changes_announced(self, countries_store: InMemoryItemStore, make_model: Callable[..., CheckedTreeModel]) -> None:
        model = make_model(countries_store)
        await model.initialize()
        changed: list[str] = []
        model.on_state_changed(lambda event: changed.append(event.node))

        await model.set_state(NodeID("kenya"), True)

        assert set(changed) == {"nairobi", "mombasa", "kenya", "africa"}


class TestPropagationFailures:
    """A failing store write abandons only its own branch."""

    @pytest.mark.asyncio
    async def test_sibling_subtrees_complete(self, countries_data: dict, make_model: Callable[..., CheckedTreeModel]) -> None:
        store = FailingWriteStore(failing={"nairobi"})
        store.load(parse_item_data(countries_data, children_attrs=["children"]))
        model = make_model(store)
        errors: list[EngineError] = []
        model.on_error(errors.append)

        await model.set_state(NodeID("africa"), True)

        states = await _states(model, "egypt", "nairobi", "mombasa", "sudan", "kenya", "africa")
        assert states == {
            "egypt": True,
            "nairobi": False,
            "mombasa": True,
            "sudan": True,
            "kenya": MIXED,
            "africa": MIXED,
        }
        assert len(errors) == 1
        assert errors[0].node == "nairobi"
        assert errors[0].operation == "set_subtree_state"
        assert isinstance(errors[0].error, StoreIOError)

    @pytest.mark.asyncio
    async def test_retry_after_failure_repairs(self, countries_data: dict, make_model: Callable[..., CheckedTreeModel]) -> None:
        store = FailingWriteStore(failing={"nairobi"})
        store.load(parse_item_data(countries_data, children_attrs=["children"]))
        model = make_model(store)
        await model.set_state(NodeID("africa"), True)

        store.failing.clear()
        await model.set_state(NodeID("africa"), True)

        assert await model.get_state(NodeID("africa")) is True


def _wide_tree(branches: int, leaves: int) -> dict[str, Any]:
    return {
        "items": [
            {
                "id": f"b{b}",
                "checked": False,
                "children": [{"id": f"b{b}_l{leaf}", "checked": False} for leaf in range(leaves)],
            }
            for b in range(branches)
        ]
    }


class TestPropagationAcrossBackends:
    """Concurrent fan-out gives the same result on every bundled store."""

    @pytest.mark.asyncio
    async def test_root_state_reaches_every_leaf(
        self, store_from_data: Callable[[dict[str, Any]], Any], make_model: Callable[..., CheckedTreeModel]
    ) -> None:
        model = make_model(store_from_data(_wide_tree(10, 10)))
        errors: list[EngineError] = []
        model.on_error(errors.append)
        await model.initialize()

        await model.set_state(model.get_root(), True)

        assert errors == []
        for b in range(10):
            assert await model.get_state(NodeID(f"b{b}")) is True
            assert all([await model.get_state(NodeID(f"b{b}_l{leaf}")) is True for leaf in range(10)])

    @pytest.mark.asyncio
    async def test_branch_state_mixes_parent(
        self,
        countries_data: dict,
        store_from_data: Callable[[dict[str, Any]], Any],
        make_model: Callable[..., CheckedTreeModel],
    ) -> None:
        model = make_model(store_from_data(countries_data))
        errors: list[EngineError] = []
        model.on_error(errors.append)
        await model.initialize()

        await model.set_state(NodeID("kenya"), True)

        assert errors == []
        assert await _states(model, "nairobi", "mombasa", "kenya", "egypt", "africa", "europe") == {
            "nairobi": True,
            "mombasa": True,
            "kenya": True,
            "egypt": False,
            "africa": MIXED,
            "europe": False,
        }
