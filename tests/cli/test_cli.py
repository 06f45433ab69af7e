"""Tests for the checktree CLI."""

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from checktree.cli import app

# Stderr output is combined with stdout in result.output
runner = CliRunner()


def _write(path: Path, data: dict[str, Any]) -> Path:
    path.write_text(json.dumps(data))
    return path


@pytest.fixture
def inconsistent_file(tmp_path: Path) -> Path:
    """A parent stored as checked above two unchecked children."""
    return _write(
        tmp_path / "inconsistent.json",
        {
            "items": [
                {
                    "id": "p",
                    "name": "P",
                    "checked": True,
                    "children": [
                        {"id": "a", "name": "A", "checked": False},
                        {"id": "b", "name": "B", "checked": False},
                    ],
                }
            ]
        },
    )


@pytest.fixture
def cyclic_file(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "cyclic.json",
        {"items": [{"id": "a", "name": "A", "children": [{"id": "b", "name": "B", "children": [{"_reference": "a"}]}]}]},
    )


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "checktree" in result.output.lower()

    def test_help_flag(self) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for command in ("show", "set", "validate", "check-graph", "config"):
            assert command in result.output

    def test_missing_env_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--env-file", str(tmp_path / "missing.env"), "show"])

        assert result.exit_code == 1
        assert ".env file not found" in result.output


class TestShowCommand:
    """show prints the hierarchy with state marks."""

    def test_renders_tree(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "show", str(countries_file)])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines[0] == "ROOT"
        assert "    [ ] Africa  (africa)" in lines
        assert "            [ ] Nairobi  (nairobi)" in lines

    def test_missing_data_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "show", str(tmp_path / "missing.json")])

        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_memory_backend_without_data(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "show"])

        assert result.exit_code == 1
        assert "needs an item file" in result.output

    def test_invalid_item_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path / "bad.json", {"items": [{"id": "a", "children": [{"_reference": "ghost"}]}]})

        result = runner.invoke(app, ["--no-dotenv", "show", str(path)])

        assert result.exit_code == 1
        assert "ghost" in result.output


class TestSetCommand:
    """set applies a state and propagates it."""

    def test_set_reports_changes(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "set", "egypt", "true", "--data-file", str(countries_file)])

        assert result.exit_code == 0, result.output
        assert "Set egypt to [x]; 2 state(s) changed" in result.output
        assert "africa: [ ] -> [-]" in result.output

    def test_set_without_write_leaves_file(self, countries_file: Path) -> None:
        before = countries_file.read_text()

        runner.invoke(app, ["--no-dotenv", "set", "egypt", "true", "--data-file", str(countries_file)])

        assert countries_file.read_text() == before

    def test_set_write_persists(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "set", "kenya", "yes", "-d", str(countries_file), "--write"])

        assert result.exit_code == 0, result.output
        assert f"Wrote {countries_file}" in result.output
        data = json.loads(countries_file.read_text())
        africa = data["items"][0]
        assert africa["checked"] == "mixed"
        kenya = africa["children"][1]
        assert kenya["checked"] is True
        assert [child["checked"] for child in kenya["children"]] == [True, True]

        shown = runner.invoke(app, ["--no-dotenv", "show", str(countries_file)])
        assert "    [-] Africa  (africa)" in shown.output.splitlines()

    def test_invalid_state(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "set", "egypt", "maybe", "-d", str(countries_file)])

        assert result.exit_code == 1
        assert "Invalid State" in result.output

    def test_unknown_item(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "set", "atlantis", "true", "-d", str(countries_file)])

        assert result.exit_code == 1
        assert "atlantis" in result.output


class TestValidateCommand:
    """validate repairs stored states."""

    def test_consistent_tree(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", str(countries_file)])

        assert result.exit_code == 0, result.output
        assert "All states consistent" in result.output

    def test_repairs_inconsistent_parent(self, inconsistent_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", str(inconsistent_file)])

        assert result.exit_code == 0, result.output
        assert "Repaired 1 state(s):" in result.output
        assert "p: [x] -> [ ]" in result.output

    def test_write_persists_repair(self, inconsistent_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", str(inconsistent_file), "--write"])

        assert result.exit_code == 0, result.output
        data = json.loads(inconsistent_file.read_text())
        assert data["items"][0]["checked"] is False

    def test_cycle_is_rejected(self, cyclic_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "validate", str(cyclic_file)])

        assert result.exit_code == 1
        assert "a -> b -> a" in result.output


class TestCheckGraphCommand:
    """check-graph reports structure and cycles."""

    def test_acyclic(self, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "check-graph", str(countries_file)])

        assert result.exit_code == 0, result.output
        assert "Items: 9, edges: 9" in result.output
        assert "No cycles found" in result.output

    def test_reports_multi_parent_items(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path / "shared.json",
            {"items": [{"id": "x", "children": [{"id": "s"}]}, {"id": "y", "children": [{"_reference": "s"}]}]},
        )

        result = runner.invoke(app, ["--no-dotenv", "check-graph", str(path)])

        assert result.exit_code == 0, result.output
        assert "Items with several parents: s" in result.output

    def test_cycle(self, cyclic_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "check-graph", str(cyclic_file)])

        assert result.exit_code == 1
        assert "a -> b -> a" in result.output


class TestSettingsFile:
    """Commands driven by a settings file."""

    def test_sqlite_store_keeps_state_between_runs(self, tmp_path: Path, countries_file: Path) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text(f"store:\n  backend: sqlite\n  url: sqlite:///{tmp_path / 'tree.db'}\n")

        loaded = runner.invoke(app, ["--no-dotenv", "set", "egypt", "true", "-s", str(settings), "-d", str(countries_file)])
        assert loaded.exit_code == 0, loaded.output

        result = runner.invoke(app, ["--no-dotenv", "show", "-s", str(settings)])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert "    [-] Africa  (africa)" in lines
        assert "        [x] Egypt  (egypt)" in lines

    def test_missing_settings_file(self, tmp_path: Path, countries_file: Path) -> None:
        result = runner.invoke(app, ["--no-dotenv", "show", str(countries_file), "-s", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1
        assert "Settings file does not exist" in result.output

    def test_invalid_settings(self, tmp_path: Path, countries_file: Path) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("store:\n  backend: postgres\n")

        result = runner.invoke(app, ["--no-dotenv", "show", str(countries_file), "-s", str(settings)])

        assert result.exit_code == 1
        assert "Configuration Validation Failed" in result.output


class TestConfigCommand:
    """config prints the effective settings."""

    def test_defaults_as_yaml(self) -> None:
        result = runner.invoke(app, ["--no-dotenv", "config"])

        assert result.exit_code == 0, result.output
        assert "strict: true" in result.output
        assert "backend: memory" in result.output

    def test_file_and_environment_as_json(self, tmp_path: Path) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("model:\n  default_state: mixed\nstore:\n  backend: sqlite\n")

        result = runner.invoke(
            app,
            ["--no-dotenv", "config", "-s", str(settings), "--json"],
            env={"CHECKTREE_MODEL__STRICT": "false"},
        )

        assert result.exit_code == 0, result.output
        resolved = json.loads(result.stdout)
        assert resolved["model"]["default_state"] == "mixed"
        assert resolved["model"]["strict"] is False
        assert resolved["store"]["backend"] == "sqlite"
