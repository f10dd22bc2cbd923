"""Command-line interface for mailforest.

Loads threads from the configured index backend into a ThreadSet and shows
them in the terminal.

Usage:
    python -m mailforest validate-config
    python -m mailforest search "tag:inbox" --limit 50
    python -m mailforest show thread:0000000000001234 --expanded
    python -m mailforest dump "from:ann"
    python -m mailforest tag "subject:budget" --add todo --remove inbox
"""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console

from mailforest.config import validate_config_file
from mailforest.core.errors import (
    BackendContractError,
    BackendError,
    ConfigLoadError,
    ConfigValidationError,
    QueryError,
)
from mailforest.core.logging import configure_logging, get_logger, set_correlation_id
from mailforest.display import DisplayState, ThreadSummary, render_index
from mailforest.engine.record import Record

if TYPE_CHECKING:
    from mailforest.backend.base import IndexBackend
    from mailforest.config_schema import AppConfig
    from mailforest.engine.threadset import ThreadSet

console = Console()
logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Config and backend shared by the commands that load threads."""

    config: AppConfig
    backend: IndexBackend


def _init_cli_deps(debug: bool) -> CLIDeps:
    """Load config, configure logging and build the backend.

    Prints an actionable error and exits 1 on failure.
    """
    from mailforest.backend import create_backend
    from mailforest.config import get_config

    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Run [cyan]python -m mailforest validate-config[/cyan] for details."
        )
        sys.exit(1)

    configure_logging(
        log_level="DEBUG" if debug else config.logging.level,
        json_output=config.logging.json_output,
    )

    try:
        backend = create_backend(config.backend)
    except BackendError as e:
        console.print(f"[red]Backend error:[/red] {e}")
        sys.exit(1)

    return CLIDeps(config=config, backend=backend)


def _new_forest(deps: CLIDeps) -> ThreadSet:
    from mailforest.engine.threadset import ThreadSet

    return ThreadSet(
        page_size=deps.config.threading.page_size,
        group_by_subject=deps.config.threading.group_by_subject,
    )


def _load_query(deps: CLIDeps, query: str, limit: int | None) -> ThreadSet:
    """Search and load up to ``limit`` threads, exiting 1 on backend errors."""
    forest = _new_forest(deps)
    set_correlation_id(str(uuid.uuid4()))
    try:
        forest.load_n_threads(deps.backend, limit or deps.config.threading.default_limit, query)
    except QueryError as e:
        console.print(f"[red]Query error:[/red] {e}")
        sys.exit(1)
    except BackendContractError as e:
        console.print(f"[red]Backend returned unexpected data:[/red] {e}")
        sys.exit(1)
    except BackendError as e:
        console.print(f"[red]Backend error:[/red] {e}")
        sys.exit(1)
    finally:
        set_correlation_id(None)
    return forest


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """mailforest - incremental email threading over a mail index."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes schema validation.
    Reports specific errors for invalid fields.
    """
    configure_logging(log_level="WARNING", json_output=False)
    console.print(f"Validating config: [cyan]{config_path or 'config/config.yaml'}[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("search")
@click.argument("query")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Threads to load")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int | None) -> None:
    """List the threads matching QUERY, newest first."""
    deps = _init_cli_deps(ctx.obj["debug"])
    forest = _load_query(deps, query, limit)

    if not forest.size:
        console.print(f"No threads match [cyan]{query}[/cyan]")
        return
    console.print(
        render_index(
            forest.threads,
            snippet_length=deps.config.display.snippet_length,
            max_participants=deps.config.display.max_participants,
            title=f"{forest.size} threads, {forest.num_messages} messages",
        )
    )


@cli.command("show")
@click.argument("thread_id")
@click.option(
    "--expanded", "state", flag_value=DisplayState.EXPANDED.value, help="Show every message"
)
@click.option(
    "--collapsed", "state", flag_value=DisplayState.COLLAPSED.value, help="Show the title only"
)
@click.pass_context
def show(ctx: click.Context, thread_id: str, state: str | None) -> None:
    """Show one thread's reply tree."""
    deps = _init_cli_deps(ctx.obj["debug"])
    forest = _new_forest(deps)

    set_correlation_id(str(uuid.uuid4()))
    try:
        forest.load_thread_ids(deps.backend, [thread_id])
    except BackendError as e:
        console.print(f"[red]Backend error:[/red] {e}")
        sys.exit(1)
    finally:
        set_correlation_id(None)

    thread = forest.get_thread(thread_id)
    if thread is None:
        console.print(f"[red]Thread not found:[/red] {thread_id}")
        sys.exit(1)

    summary = ThreadSummary(
        thread,
        initial_state=DisplayState(state or deps.config.display.initial_display_state),
        fake_root=deps.config.threading.fake_root,
    )
    console.print(summary.render())


@cli.command("dump")
@click.argument("query")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Threads to load")
@click.pass_context
def dump(ctx: click.Context, query: str, limit: int | None) -> None:
    """Print the raw container forest for QUERY (debugging aid)."""
    deps = _init_cli_deps(ctx.obj["debug"])
    forest = _load_query(deps, query, limit)
    forest.dump(sys.stdout)


@cli.command("tag")
@click.argument("query")
@click.option("--add", "add_labels", multiple=True, help="Label to add (repeatable)")
@click.option("--remove", "remove_labels", multiple=True, help="Label to remove (repeatable)")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Threads to load")
@click.pass_context
def tag(
    ctx: click.Context,
    query: str,
    add_labels: tuple[str, ...],
    remove_labels: tuple[str, ...],
    limit: int | None,
) -> None:
    """Add or remove labels on every message of the threads matching QUERY."""
    if not add_labels and not remove_labels:
        raise click.UsageError("Give at least one --add or --remove label")

    deps = _init_cli_deps(ctx.obj["debug"])
    forest = _load_query(deps, query, limit)

    records = []
    for thread in forest.threads:
        for label in add_labels:
            thread.apply_label(label)
        for label in remove_labels:
            thread.remove_label(label)
        records.extend(m for m, _, _ in thread.walk() if isinstance(m, Record))

    try:
        saved = deps.backend.save_labels(records)
    except BackendError as e:
        console.print(f"[red]Backend error:[/red] {e}")
        sys.exit(1)

    logger.info("Labels updated", threads=forest.size, messages=saved)
    console.print(f"Updated labels on [cyan]{saved}[/cyan] messages in {forest.size} threads")


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
