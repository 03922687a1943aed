"""Rich rendering utilities for the anvil commands."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from anvil._propagation import PropagationEvent, PropagationReport
from anvil._store import Variable, VariableSource
from anvil._transaction import ForgeResult, TemperEntry, Transaction, TransactionState, TransactionSummary
from anvil._values import format_value

if TYPE_CHECKING:
    from rich.console import Console

    from anvil._env import Environment
    from anvil._shell import CommandOutcome
    from anvil._values import Value


def render_variables(variables: list[Variable], console: Console) -> None:
    """Render variables as a Rich table.

    Args:
        variables: Variables to render, in display order.
        console: Rich Console to output to.

    """
    if not variables:
        console.print("[dim]No variables[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Value")
    table.add_column("Type", style="dim")
    table.add_column("Source")
    table.add_column("Expression", style="dim")
    table.add_column("Updates", justify="right")

    for variable in variables:
        name = escape(variable.name)
        if variable.is_constant:
            name += " [yellow](frozen)[/yellow]"
        expression = variable.expression or ""
        if variable.reaction is not None:
            expression = f"{expression} {variable.reaction}"
        style = _get_source_style(variable.source)
        table.add_row(
            name,
            escape(format_value(variable.value)),
            variable.declared_type or "",
            f"[{style}]{variable.source}[/{style}]",
            escape(expression),
            str(variable.update_count),
        )

    console.print(table)


def render_graph(env: Environment, console: Console) -> None:
    """Render each variable with its direct dependents as a Rich tree.

    Edges carrying a reaction policy show its current counter.
    """
    graph = env.graph
    if len(graph) == 0:
        console.print("[dim]No variables[/dim]")
        return

    tree = Tree("[bold]Dependencies[/bold]")
    for name in graph.topological_order():
        node = tree.add(f"[bold]{escape(name)}[/bold]")
        for dependent in graph.dependents(name):
            edge = graph.edge(name, dependent)
            label = f"→ {escape(dependent)}"
            if edge is not None and edge.policy is not None:
                label += f" [yellow]{edge.policy}[/yellow]"
            node.add(label)
    console.print(tree)


def render_report(report: PropagationReport, console: Console) -> None:
    """Render the dependents touched by a propagation pass."""
    for name in report.updated:
        console.print(f"  [green]↻[/green] {escape(name)}")
    for name in report.skipped:
        console.print(f"  [yellow]⏸[/yellow] {escape(name)} [dim](gated)[/dim]")
    for failure in report.failed:
        console.print(f"  [red]✗[/red] {escape(failure.name)}: {escape(failure.message)}")
    for name in report.blocked:
        console.print(f"  [dim]- {escape(name)} (not reached)[/dim]")


def _display(value: Value | None) -> str:
    return "[dim]<none>[/dim]" if value is None else escape(format_value(value))


def render_temper(entries: list[TemperEntry], console: Console) -> None:
    """Render a forge preview as a Rich table."""
    if not entries:
        console.print("[dim]Nothing pending[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Current")
    table.add_column("After forge")
    table.add_column("Note")

    for entry in entries:
        if entry.error is not None:
            after = "[red]✗[/red]"
            note = f"[red]{escape(entry.error)}[/red]"
        else:
            after = _display(entry.new_value)
            note = "[dim]propagated[/dim]" if entry.propagated else ""
            if not entry.changed:
                note = (note + " [dim]unchanged[/dim]").strip()
        table.add_row(escape(entry.name), _display(entry.old_value), after, note)

    console.print(table)


def render_summary(summary: TransactionSummary, console: Console) -> None:
    """Render the output of ``inspect``."""
    label = f" [bold]{escape(summary.label)}[/bold]" if summary.label else ""
    console.print(f"[cyan]Transaction:[/cyan] {summary.id}{label}")
    console.print(f"[cyan]State:[/cyan]       {summary.state}")
    console.print(f"[cyan]Elapsed:[/cyan]     {summary.elapsed.total_seconds():.1f}s")
    console.print(f"[cyan]Pending:[/cyan]     {summary.pending_count}")
    if summary.annealed:
        console.print(f"[cyan]Annealed:[/cyan]    {escape(', '.join(summary.annealed))}")

    if not summary.changes:
        return
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Current")
    table.add_column("Staged")
    table.add_column("Reads", style="dim")

    for change in summary.changes:
        name = escape(change.name)
        if change.created:
            name += " [green](new)[/green]"
        staged = escape(change.staged)
        if change.kind != "set":
            staged = f"[dim]{change.kind}[/dim] {staged}"
        table.add_row(name, _display(change.old_value), staged, escape(", ".join(change.dependencies)))

    console.print(table)


def render_history(transactions: list[Transaction], console: Console) -> None:
    """Render finished transactions as a Rich table."""
    if not transactions:
        console.print("[dim]No finished transactions[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Id", style="dim")
    table.add_column("Label")
    table.add_column("State")
    table.add_column("Finished")
    table.add_column("Failure")

    for tx in transactions:
        style = _get_state_style(tx.state)
        table.add_row(
            str(tx.id)[:8],
            escape(tx.label or ""),
            f"[{style}]{tx.state}[/{style}]",
            tx.modified_at.strftime("%Y-%m-%d %H:%M:%S"),
            escape(str(tx.failure)) if tx.failure else "",
        )

    console.print(table)


def render_propagations(events: list[PropagationEvent], console: Console) -> None:
    """Render recorded propagation passes, one line each."""
    if not events:
        console.print("[dim]No propagations[/dim]")
        return
    for event in events:
        console.print(f"  {escape(str(event))}")


def render_outcome(outcome: CommandOutcome, console: Console) -> None:
    """Print the message of a shell command, then its payload if it has one."""
    if outcome.success:
        console.print(f"[green]✓[/green] {escape(outcome.message)}")
    else:
        console.print(f"[red]✗ {escape(outcome.message)}[/red]")

    match outcome.payload:
        case PropagationReport() as report:
            render_report(report, console)
        case ForgeResult(report=PropagationReport() as report):
            render_report(report, console)
        case TransactionSummary() as summary:
            render_summary(summary, console)
        case [Variable(), *_] as variables:
            render_variables(list(variables), console)
        case [TemperEntry(), *_] as entries:
            render_temper(list(entries), console)
        case [Transaction(), *_] as transactions:
            render_history(list(transactions), console)
        case [PropagationEvent(), *_] as events:
            render_propagations(list(events), console)
        case dict() as adjacency:
            for name, dependents in adjacency.items():
                arrow = ", ".join(escape(d) for d in dependents) if dependents else "[dim]-[/dim]"
                console.print(f"  {escape(name)} → {arrow}")
        case _:
            pass


def _get_source_style(source: VariableSource) -> str:
    """Get Rich style string for a variable source.

    Args:
        source: The VariableSource.

    Returns:
        Rich style string.

    """
    match source:
        case VariableSource.DIRECT:
            return "blue"
        case VariableSource.COMPUTED:
            return "green"
        case VariableSource.PROPAGATED:
            return "magenta"


def _get_state_style(state: TransactionState) -> str:
    match state:
        case TransactionState.ACTIVE:
            return "cyan"
        case TransactionState.COMMITTED:
            return "green"
        case TransactionState.ABORTED:
            return "red"
