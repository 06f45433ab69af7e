# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/

Sample data:
    ``countries_data`` is a small geography tree used across the engine,
    store and CLI tests. Every item starts unchecked:

        Africa
            Egypt
            Kenya
                Nairobi
                Mombasa
            Sudan
        Europe
            Germany
            France
"""

import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from checktree.core.config import ModelSettings
from checktree.engine import CheckedTreeModel
from checktree.store import InMemoryItemStore, SQLItemStore, write_item_file

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


def _item(item_id: str, name: str, kind: str, children: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    item: dict[str, Any] = {"id": item_id, "name": name, "type": kind, "checked": False}
    if children is not None:
        item["children"] = children
    return item


@pytest.fixture
def countries_data() -> dict[str, Any]:
    """Fresh copy of the sample geography tree."""
    return {
        "identifier": "id",
        "label": "name",
        "items": [
            _item(
                "africa",
                "Africa",
                "continent",
                [
                    _item("egypt", "Egypt", "country"),
                    _item(
                        "kenya",
                        "Kenya",
                        "country",
                        [_item("nairobi", "Nairobi", "city"), _item("mombasa", "Mombasa", "city")],
                    ),
                    _item("sudan", "Sudan", "country"),
                ],
            ),
            _item(
                "europe",
                "Europe",
                "continent",
                [_item("germany", "Germany", "country"), _item("france", "France", "country")],
            ),
        ],
    }


@pytest.fixture
def countries_store(countries_data: dict[str, Any]) -> InMemoryItemStore:
    return InMemoryItemStore.from_data(countries_data)


@pytest.fixture
def countries_file(tmp_path: Path, countries_data: dict[str, Any]) -> Path:
    path = tmp_path / "countries.json"
    write_item_file(path, countries_data)
    return path


@pytest.fixture
def make_model() -> Callable[..., CheckedTreeModel]:
    """Factory: make_model(store, **model_settings) -> CheckedTreeModel (not initialized)."""

    def factory(store: Any, **overrides: Any) -> CheckedTreeModel:
        return CheckedTreeModel(store, ModelSettings(**overrides))

    return factory


@pytest.fixture(params=["memory", "sqlite"])
def store_from_data(request: pytest.FixtureRequest) -> Iterator[Callable[[dict[str, Any]], Any]]:
    """Factory building a store of each bundled backend from item-file data.

    The sqlite variant uses the default in-memory URL, where every worker
    thread shares one connection.
    """
    opened: list[SQLItemStore] = []

    def factory(data: dict[str, Any]) -> Any:
        if request.param == "memory":
            return InMemoryItemStore.from_data(data)
        store = SQLItemStore.from_data(data)
        opened.append(store)
        return store

    yield factory
    for store in opened:
        store.close()

