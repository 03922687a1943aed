"""Execution of parsed intents against an environment.

Every command produces a :class:`CommandOutcome`; errors raised by the
environment are caught here and reported in the outcome so that the shell
can keep running and a script can stop cleanly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ._errors import AnvilError
from ._expr import Expression
from ._intent import (
    Anneal,
    Assign,
    Craft,
    Freeze,
    History,
    Propagations,
    Show,
    Simple,
    Verb,
    WhatIf,
    parse_intent,
)
from ._transaction import ChangeKind
from ._values import format_value

if TYPE_CHECKING:
    from ._env import Environment
    from ._intent import Intent
    from ._propagation import PropagationReport
    from ._transaction import AnnealResult, ForgeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Result of one command.

    Attributes:
        success: False if the command failed or left a failure behind
            (a propagation failure, a failed anneal or forge).
        message: One-line human-readable summary.
        payload: Structured result for richer rendering (a report, a list of
            variables, temper entries, ...), or None.
        error: The exception that made the command fail, if any.

    """

    success: bool
    message: str
    payload: Any = None
    error: AnvilError | None = field(default=None, compare=False)


def _describe_report(report: PropagationReport) -> str:
    parts = []
    if report.updated:
        parts.append(f"updated {', '.join(report.updated)}")
    if report.skipped:
        parts.append(f"skipped {', '.join(report.skipped)}")
    if report.failed:
        parts.append(f"failed {'; '.join(str(f) for f in report.failed)}")
    if report.blocked:
        parts.append(f"blocked {', '.join(report.blocked)}")
    return f" ({'; '.join(parts)})" if parts else ""


def _rhs_value(env: Environment, rhs: str) -> Any:
    # A right-hand side that reads no variable is evaluated once and stored as a literal.
    if env.references(rhs):
        return Expression(rhs)
    return env.evaluate(rhs)


def _assign(env: Environment, intent: Assign) -> CommandOutcome:
    rhs = _rhs_value(env, intent.rhs)
    assign = env.set if intent.kind is ChangeKind.SET else env.ensure
    report = assign(intent.name, rhs, reaction=intent.reaction, declared_type=intent.declared_type)

    if report is None:
        return CommandOutcome(True, f"Staged {intent.kind} {intent.name} = {intent.rhs}")
    if not report.sources:
        return CommandOutcome(True, f"{intent.name} unchanged", report)
    value = format_value(env.get(intent.name))
    return CommandOutcome(report.success, f"{intent.name} = {value}{_describe_report(report)}", report)


def _anneal_outcome(verb: str, result: AnnealResult) -> CommandOutcome:
    applied = ", ".join(result.applied) if result.applied else "nothing"
    message = f"{verb.capitalize()}ed {applied} ({result.remaining} pending)"
    if result.failure is not None:
        message = f"{message}; failed at {result.failure}"
    return CommandOutcome(result.success, message, result)


def _forge_outcome(result: ForgeResult) -> CommandOutcome:
    if result.failure is not None:
        return CommandOutcome(False, f"Forge failed at {result.failure}; rolled back", result, result.failure.error)
    report = _describe_report(result.report) if result.report is not None else ""
    return CommandOutcome(True, f"Forged {len(result.applied)} change(s){report}", result)


def _simple(env: Environment, verb: Verb) -> CommandOutcome:
    match verb:
        case Verb.GRAPH:
            return CommandOutcome(True, f"{len(env.graph)} node(s)", env.dump_graph())
        case Verb.TEMPER:
            entries = env.temper()
            return CommandOutcome(True, f"{len(entries)} variable(s) affected", entries)
        case Verb.INSPECT:
            summary = env.inspect()
            return CommandOutcome(True, f"{summary.pending_count} pending change(s)", summary)
        case Verb.QUENCH:
            return _anneal_outcome("quench", env.quench())
        case Verb.FORGE:
            return _forge_outcome(env.forge())
        case Verb.SMELT:
            tx = env.smelt()
            return CommandOutcome(True, f"Smelted {tx}", tx)
        case Verb.STATUS:
            return CommandOutcome(True, env.transaction_status(), env.transaction)


def execute_intent(env: Environment, intent: Intent) -> CommandOutcome:
    """Run one parsed command.

    Errors from the environment are reported in the outcome, never raised.
    """
    try:
        match intent:
            case Assign():
                return _assign(env, intent)
            case Freeze(name=name):
                env.freeze(name)
                return CommandOutcome(True, f"Froze {name}")
            case Show(name=None):
                variables = env.variables()
                return CommandOutcome(True, f"{len(variables)} variable(s)", variables)
            case Show(name=name):
                variable = env.variable(name)
                return CommandOutcome(True, f"{name} = {format_value(variable.value)}", [variable])
            case Craft(label=label):
                tx = env.craft(label)
                return CommandOutcome(True, f"Crafted {tx}", tx)
            case Anneal(steps=steps):
                return _anneal_outcome("anneal", env.anneal(steps))
            case History(limit=limit):
                entries = env.transaction_history(limit)
                return CommandOutcome(True, f"{len(entries)} finished transaction(s)", entries)
            case Propagations(limit=limit):
                events = env.propagation_history(limit)
                return CommandOutcome(True, f"{len(events)} propagation(s)", events)
            case WhatIf(assignments=assignments):
                scenario = {a.name: _rhs_value(env, a.rhs) for a in assignments}
                entries = env.what_if(scenario)
                return CommandOutcome(True, f"What-if: {len(entries)} variable(s) affected", entries)
            case Simple(verb=verb):
                return _simple(env, verb)
    except AnvilError as e:
        logger.debug("Command failed: %s", e)
        return CommandOutcome(False, str(e), error=e)


def execute_line(env: Environment, line: str) -> CommandOutcome | None:
    """Parse and run one line. Returns None for blank and comment lines."""
    try:
        intent = parse_intent(line)
    except AnvilError as e:
        return CommandOutcome(False, str(e), error=e)
    if intent is None:
        return None
    return execute_intent(env, intent)


@dataclass(frozen=True, slots=True)
class ScriptResult:
    """Outcome of running a script.

    Attributes:
        outcomes: ``(line_number, outcome)`` for every executed command.
        failed_line: Line number of the command that stopped the script.

    """

    outcomes: tuple[tuple[int, CommandOutcome], ...] = ()
    failed_line: int | None = None

    @property
    def success(self) -> bool:
        return self.failed_line is None


def run_script(env: Environment, lines: Iterable[str]) -> ScriptResult:
    """Execute lines in order, stopping at the first failing command."""
    outcomes: list[tuple[int, CommandOutcome]] = []
    for number, line in enumerate(lines, start=1):
        outcome = execute_line(env, line)
        if outcome is None:
            continue
        outcomes.append((number, outcome))
        if not outcome.success:
            logger.debug("Script stopped at line %d: %s", number, outcome.message)
            return ScriptResult(outcomes=tuple(outcomes), failed_line=number)
    return ScriptResult(outcomes=tuple(outcomes))
