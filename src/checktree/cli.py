"""checktree command-line interface.

Loads an item store from settings (or a data file given on the command
line), runs the checked-state engine over it and optionally writes the
result back.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
import yaml
from pydantic import ValidationError

from checktree import __version__
from checktree.contracts import MIXED, CheckTreeError, EngineError, NodeID, StateChanged, StateValue
from checktree.core.config import CheckTreeSettings, load_settings, resolve_config
from checktree.core.hierarchy import find_cycle, snapshot_hierarchy
from checktree.engine import CheckedTreeModel, parse_state
from checktree.store import InMemoryItemStore, ItemFileError, SQLItemStore, create_store, write_item_file

__all__ = ["app"]

app = typer.Typer(
    name="checktree",
    help="checktree: tri-state checked-state propagation over item hierarchies.",
    no_args_is_help=True,
)

_STATE_MARKS: dict[Any, str] = {True: "[x]", False: "[ ]", MIXED: "[-]", None: "[?]"}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"checktree version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables (CHECKTREE_* overrides) from a .env file.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """checktree: tri-state checked-state propagation over item hierarchies."""
    from checktree.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "WARNING")
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _format_error(title: str, message: str, hint: str | None = None, details: list[str] | None = None) -> None:
    """Display a formatted error panel on stderr."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    content = Text()
    content.append(message, style="white")
    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")
    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    Console(stderr=True).print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", padding=(0, 1)))


def _load(ctx: typer.Context, settings_path: Path | None, data_file: Path | None) -> CheckTreeSettings:
    """Resolve settings from the optional file plus command-line overrides."""
    try:
        settings = load_settings(settings_path.expanduser()) if settings_path is not None else CheckTreeSettings()
    except FileNotFoundError:
        _format_error("File Not Found", f"Settings file does not exist: {settings_path}")
        raise typer.Exit(1) from None
    except ValidationError as e:
        details = [f"{'.'.join(str(x) for x in error['loc'])}: {error['msg']}" for error in e.errors()]
        _format_error(
            "Configuration Validation Failed",
            f"Invalid settings in {settings_path}",
            hint="Check field names, types, and allowed values.",
            details=details,
        )
        raise typer.Exit(1) from None

    if data_file is not None:
        settings = settings.model_copy(update={"store": settings.store.model_copy(update={"data_file": data_file})})

    obj = ctx.obj or {}
    if settings_path is not None and not obj.get("verbose"):
        from checktree.core.logging import configure_logging

        configure_logging(json_output=obj.get("json_logs") or settings.logging.json_output, level=settings.logging.level)
    return settings


def _open_store(settings: CheckTreeSettings) -> InMemoryItemStore | SQLItemStore:
    if settings.store.backend == "memory" and settings.store.data_file is None:
        _format_error(
            "No Data",
            "The memory backend needs an item file.",
            hint="Pass DATA_FILE or set store.data_file in the settings file.",
        )
        raise typer.Exit(1)
    try:
        return create_store(settings.store, settings.model)
    except FileNotFoundError:
        _format_error("File Not Found", f"Item file does not exist: {settings.store.data_file}")
        raise typer.Exit(1) from None
    except (ItemFileError, ValueError, yaml.YAMLError) as e:
        _format_error("Invalid Item File", str(e), hint="Check identities, references and children lists.")
        raise typer.Exit(1) from None


def _close(store: InMemoryItemStore | SQLItemStore) -> None:
    if isinstance(store, SQLItemStore):
        store.close()


async def _write_back(store: InMemoryItemStore | SQLItemStore, settings: CheckTreeSettings) -> Path:
    path = settings.store.data_file
    if path is None:
        raise CheckTreeError("--write needs an item file to write to")
    write_item_file(path, await store.export_data())
    return path


def _mark(state: StateValue | None) -> str:
    return _STATE_MARKS[state]


async def _render_tree(model: CheckedTreeModel) -> list[str]:
    """Indented tree lines, one per node occurrence, root first."""
    lines: list[str] = []

    async def visit(node: NodeID, depth: int, path: frozenset[NodeID]) -> None:
        label = await model.get_label(node)
        if node == model.get_root() and not model.settings.root_participates:
            lines.append(str(label))
            for child in await model.get_children(node):
                await visit(child, depth + 1, path | {node})
            return
        state = await model.get_state(node)
        suffix = "" if node == model.get_root() else f"  ({await model.get_identity(node)})"
        if node in path:
            lines.append(f"{'    ' * depth}{_mark(state)} {label}{suffix}  <cycle>")
            return
        lines.append(f"{'    ' * depth}{_mark(state)} {label}{suffix}")
        for child in await model.get_children(node):
            await visit(child, depth + 1, path | {node})

    await visit(model.get_root(), 0, frozenset())
    return lines


def _collect(model: CheckedTreeModel) -> tuple[list[StateChanged], list[EngineError]]:
    changes: list[StateChanged] = []
    errors: list[EngineError] = []
    model.on_state_changed(changes.append)
    model.on_error(errors.append)
    return changes, errors


def _report(changes: list[StateChanged], errors: list[EngineError]) -> None:
    for change in changes:
        typer.echo(f"  {change.node}: {_mark(change.old_value)} -> {_mark(change.new_value)}")
    for error in errors:
        typer.secho(f"  {error.operation} failed at {error.node}: {error.error}", fg=typer.colors.RED, err=True)


_SETTINGS_OPTION = typer.Option(None, "--settings", "-s", help="Path to settings YAML file.")
_DATA_FILE_ARGUMENT = typer.Argument(None, help="JSON or YAML item file (overrides store.data_file).")


@app.command()
def show(
    ctx: typer.Context,
    data_file: Path | None = _DATA_FILE_ARGUMENT,
    settings_path: Path | None = _SETTINGS_OPTION,
) -> None:
    """Print the hierarchy with each node's checked state."""
    settings = _load(ctx, settings_path, data_file)
    store = _open_store(settings)

    async def _show() -> list[str]:
        model = CheckedTreeModel(store, settings.model)
        return await _render_tree(model)

    try:
        for line in asyncio.run(_show()):
            typer.echo(line)
    except CheckTreeError as e:
        _format_error("Store Error", str(e))
        raise typer.Exit(1) from None
    finally:
        _close(store)


@app.command("set")
def set_command(
    ctx: typer.Context,
    item: str = typer.Argument(..., help="Identity of the item to set."),
    state: str = typer.Argument(..., help="New state: true, false or mixed (synonyms accepted)."),
    data_file: Path | None = typer.Option(None, "--data-file", "-d", help="Item file (overrides store.data_file)."),
    settings_path: Path | None = _SETTINGS_OPTION,
    write: bool = typer.Option(False, "--write", "-w", help="Write the result back to the item file."),
) -> None:
    """Set one item's state and propagate it through the hierarchy."""
    settings = _load(ctx, settings_path, data_file)
    try:
        new_state = parse_state(state)
    except CheckTreeError as e:
        _format_error("Invalid State", str(e), hint="Use true, false or mixed.")
        raise typer.Exit(1) from None
    store = _open_store(settings)

    async def _set() -> tuple[list[StateChanged], list[EngineError], Path | None]:
        model = CheckedTreeModel(store, settings.model)
        await model.initialize()
        changes, errors = _collect(model)
        await model.set_state(NodeID(item), new_state)
        written = await _write_back(store, settings) if write else None
        return changes, errors, written

    try:
        changes, errors, written = asyncio.run(_set())
    except CheckTreeError as e:
        _format_error("Set Failed", str(e))
        raise typer.Exit(1) from None
    finally:
        _close(store)

    typer.echo(f"Set {item} to {_mark(new_state)}; {len(changes)} state(s) changed")
    _report(changes, errors)
    if written is not None:
        typer.echo(f"Wrote {written}")
    if errors:
        raise typer.Exit(1)


@app.command()
def validate(
    ctx: typer.Context,
    data_file: Path | None = _DATA_FILE_ARGUMENT,
    settings_path: Path | None = _SETTINGS_OPTION,
    write: bool = typer.Option(False, "--write", "-w", help="Write repaired states back to the item file."),
) -> None:
    """Repair every stored state that disagrees with its children."""
    settings = _load(ctx, settings_path, data_file)
    store = _open_store(settings)

    async def _validate() -> tuple[list[NodeID] | None, list[StateChanged], list[EngineError], Path | None]:
        graph = await snapshot_hierarchy(store, root_id=NodeID(settings.model.root_id), query=settings.model.query)
        cycle = find_cycle(graph)
        if cycle is not None:
            return cycle, [], [], None
        model = CheckedTreeModel(store, settings.model)
        changes, errors = _collect(model)
        await model.initialize()
        written = await _write_back(store, settings) if write else None
        return None, changes, errors, written

    try:
        cycle, changes, errors, written = asyncio.run(_validate())
    except CheckTreeError as e:
        _format_error("Validation Failed", str(e))
        raise typer.Exit(1) from None
    finally:
        _close(store)

    if cycle is not None:
        _format_error("Hierarchy Cycle", " -> ".join(cycle), hint="Remove one of the references on the cycle.")
        raise typer.Exit(1)
    if changes:
        typer.echo(f"Repaired {len(changes)} state(s):")
    else:
        typer.echo("All states consistent")
    _report(changes, errors)
    if written is not None:
        typer.echo(f"Wrote {written}")
    if errors:
        raise typer.Exit(1)


@app.command("check-graph")
def check_graph(
    ctx: typer.Context,
    data_file: Path | None = _DATA_FILE_ARGUMENT,
    settings_path: Path | None = _SETTINGS_OPTION,
) -> None:
    """Report hierarchy size and fail if the parent relation has a cycle."""
    settings = _load(ctx, settings_path, data_file)
    store = _open_store(settings)
    try:
        graph = asyncio.run(
            snapshot_hierarchy(store, root_id=NodeID(settings.model.root_id), query=settings.model.query)
        )
    except CheckTreeError as e:
        _format_error("Store Error", str(e))
        raise typer.Exit(1) from None
    finally:
        _close(store)

    # The root is fabricated, so it is not counted as an item
    multi_parent = sorted(node for node in graph.nodes if graph.in_degree(node) > 1)
    typer.echo(f"Items: {graph.number_of_nodes() - 1}, edges: {graph.number_of_edges()}")
    if multi_parent:
        typer.echo(f"Items with several parents: {', '.join(multi_parent)}")
    cycle = find_cycle(graph)
    if cycle is not None:
        _format_error("Hierarchy Cycle", " -> ".join(cycle), hint="Remove one of the references on the cycle.")
        raise typer.Exit(1)
    typer.echo("No cycles found")


@app.command("config")
def show_config(
    ctx: typer.Context,
    settings_path: Path | None = _SETTINGS_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Print JSON instead of YAML."),
) -> None:
    """Print the effective settings: file values, environment overrides and defaults."""
    resolved = resolve_config(_load(ctx, settings_path, None))
    if json_output:
        typer.echo(json.dumps(resolved, indent=2))
    else:
        typer.echo(yaml.safe_dump(resolved, sort_keys=False).rstrip())
