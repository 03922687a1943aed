import logging
import tomllib
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from anvil._env import Environment
from anvil._errors import AnvilError
from anvil._intent import Verb
from anvil._io import export_to_toml, load_snapshot_from_toml
from anvil._shell import execute_line, run_script

from .config import AnvilConfig, get_config
from .render import render_graph, render_outcome, render_variables

app = typer.Typer()

logger = logging.getLogger(__name__)
# Console for stderr (info/errors)
err_console = Console(stderr=True)
# Console for stdout (results)
out_console = Console()

_EXIT_WORDS = frozenset({"exit", "quit"})


@app.callback()
def callback(
    *,
    verbose: bool = typer.Option(default=False, help="Enable verbose output"),
) -> None:
    """Anvil: reactive variables with transactions."""
    log_level = logging.DEBUG if verbose else logging.INFO

    # Configure rich logging handler to output to stderr
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=err_console,
                show_time=False,
                show_path=verbose,
                rich_tracebacks=True,
            ),
        ],
    )


def _load_config() -> AnvilConfig:
    try:
        return get_config()
    except AnvilError as e:
        err_console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e


def _resolve_state(state: Path | None, config: AnvilConfig) -> Path | None:
    return state if state is not None else config.state


def _open_environment(state: Path | None, config: AnvilConfig) -> Environment:
    """Create an environment, starting from the snapshot file if it exists."""
    env = Environment(history_limit=config.history_limit)
    if state is None or not state.exists():
        return env

    err_console.print(f"[cyan]Loading state from:[/cyan] {state}")
    try:
        env.restore(load_snapshot_from_toml(state))
    except (tomllib.TOMLDecodeError, ValidationError, AnvilError) as e:
        err_console.print(f"[red]Error: Cannot load {state}: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    return env


def _save_environment(env: Environment, state: Path) -> None:
    if env.in_transaction:
        err_console.print("[yellow]Warning: an active transaction is not saved; only the live state is.[/yellow]")
    export_to_toml(env.snapshot(), state)
    err_console.print(f"[cyan]Saved state to:[/cyan] {state}")


StateOption = Annotated[
    Path | None,
    typer.Option("-s", "--state", help="Snapshot TOML file to start from (default: [tool.anvil].state)"),
]


@app.command()
def run(
    script: Annotated[
        Path,
        typer.Argument(help="Path to a script of anvil commands"),
    ],
    *,
    state: StateOption = None,
    save: Annotated[
        bool,
        typer.Option("--save", help="Write the resulting state back to the snapshot file"),
    ] = False,
) -> None:
    """Run a script, stopping at the first failing command."""
    config = _load_config()
    state = _resolve_state(state, config)

    if not script.exists():
        err_console.print(f"[red]Error: Script not found: {script}[/red]")
        raise typer.Exit(code=1)

    env = _open_environment(state, config)
    err_console.print(f"[cyan]Running:[/cyan] {script}")
    err_console.print()

    result = run_script(env, script.read_text().splitlines())
    for number, outcome in result.outcomes:
        out_console.print(f"[dim]{number:>4}[/dim] ", end="")
        render_outcome(outcome, out_console)

    err_console.print()
    if not result.success:
        err_console.print(f"[red]✗ Script stopped at line {result.failed_line}[/red]")
        raise typer.Exit(code=1)

    if save:
        if state is None:
            err_console.print("[red]Error: --save needs --state or [tool.anvil].state[/red]")
            raise typer.Exit(code=1)
        _save_environment(env, state)

    err_console.print("[green]✓ Script complete[/green]")


@app.command()
def shell(
    *,
    state: StateOption = None,
) -> None:
    """Start an interactive shell. Type 'help' for commands, 'exit' to leave."""
    config = _load_config()
    state = _resolve_state(state, config)
    env = _open_environment(state, config)

    while True:
        prompt = "anvil*> " if env.in_transaction else "anvil> "
        try:
            line = typer.prompt(prompt, default="", show_default=False, prompt_suffix="")
        except typer.Abort:
            break
        command = line.strip()
        if command.lower() in _EXIT_WORDS:
            break
        if command.lower() == "help":
            _print_help()
            continue
        outcome = execute_line(env, line)
        if outcome is not None:
            render_outcome(outcome, out_console)

    if state is not None and typer.confirm(f"Save state to {state}?", default=False):
        _save_environment(env, state)


def _print_help() -> None:
    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Command", style="bold")
    table.add_column("Description")
    table.add_row("set NAME [: TYPE] = EXPR [~+N|~-N]", "Assign a value or an expression")
    table.add_row("ensure NAME [: TYPE] = EXPR [~+N|~-N]", "Assign unless already equal")
    table.add_row("freeze NAME", "Make a variable constant")
    table.add_row("show [NAME]", "List variables")
    table.add_row("craft [LABEL]", "Open a transaction")
    table.add_row("anneal [N]", "Apply the next N pending changes")
    table.add_row("history [N]", "List finished transactions")
    table.add_row("propagations [N]", "List recent propagation passes")
    table.add_row("what-if NAME = EXPR[, ...]", "Preview assignments without applying them")
    for verb, doc in Verb.describe().items():
        table.add_row(verb, doc)
    out_console.print(table)


@app.command()
def show(
    *,
    state: StateOption = None,
) -> None:
    """Show the variables stored in a snapshot file."""
    config = _load_config()
    env = _open_environment(_resolve_state(state, config), config)
    render_variables(env.variables(), out_console)


@app.command()
def graph(
    *,
    state: StateOption = None,
    dot: Annotated[
        bool,
        typer.Option("--dot", help="Print Graphviz DOT text instead of a tree"),
    ] = False,
) -> None:
    """Show the dependency graph of a snapshot file."""
    config = _load_config()
    env = _open_environment(_resolve_state(state, config), config)
    if dot:
        out_console.print(env.graph_dot(), markup=False, highlight=False, end="")
        return
    render_graph(env, out_console)


def main() -> None:
    app()
