"""Store, graph and propagation wired together, plus the ways to mutate them.

:class:`State` is the part of an environment that a transaction snapshots,
restores and previews. It knows nothing about transactions itself.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ._errors import AnvilError, ConstantViolation
from ._expr import Expression
from ._graph import DependencyGraph, topological_sort
from ._propagation import Definition, Failure, PropagationEngine, PropagationReport
from ._store import StoreSnapshot, VariableSource, VariableStore
from ._transaction._types import ChangeKind, PendingChange
from ._values import values_equal

if TYPE_CHECKING:
    from ._expr import ExpressionEvaluator
    from ._policy import ReactionPolicy
    from ._values import Value

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Point-in-time copy of an environment.

    Attributes:
        store: The variables.
        gates: The reaction policy of every edge, with its current counter.
            Topology is not stored; it is rebuilt from the expressions.

    """

    store: StoreSnapshot = field(default_factory=StoreSnapshot)
    gates: Mapping[tuple[str, str], ReactionPolicy | None] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.store

    def __len__(self) -> int:
        return len(self.store)

    def values(self) -> dict[str, Value]:
        """Map variable names to their values."""
        return self.store.values()


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Result of applying several changes as one batch.

    Attributes:
        applied: Names written (literals) or redefined (expressions).
        unchanged: ``ensure`` changes that were already satisfied.
        report: The propagation pass, or None if a step failed before it.
        failure: First failing step or recomputation.

    """

    applied: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    report: PropagationReport | None = None
    failure: Failure | None = None


def _order_expressions(changes: Sequence[PendingChange], references: Mapping[str, frozenset[str]]) -> list[PendingChange]:
    """Order expression changes so that batch-internal references come first.

    A cycle inside the batch leaves the staging order unchanged; registering
    the edges then reports the cycle with its path.
    """
    by_name = {c.name: c for c in changes}
    position = {c.name: i for i, c in enumerate(changes)}
    successors: dict[str, list[str]] = {name: [] for name in by_name}
    for change in changes:
        for ref in references[change.name]:
            if ref in by_name and ref != change.name:
                successors[ref].append(change.name)
    try:
        order = topological_sort(successors, rank=position.__getitem__)
    except ValueError:
        return list(changes)
    return [by_name[name] for name in order]


class State:
    """A store and its dependency graph, kept consistent with each other."""

    def __init__(self, evaluator: ExpressionEvaluator, snapshot: Snapshot | None = None) -> None:
        self.evaluator = evaluator
        self.store = VariableStore()
        self.graph = DependencyGraph()
        self.propagation = PropagationEngine(self.store, self.graph, evaluator)
        if snapshot is not None:
            self.restore(snapshot)

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        return Snapshot(store=self.store.snapshot(), gates=self.graph.gate_state())

    def restore(self, snapshot: Snapshot) -> None:
        """Replace the store and rebuild the graph from the restored expressions."""
        self.store.restore(snapshot.store)
        self.graph.clear()
        for variable in self.store:
            self.graph.add_node(variable.name)
        for variable in self.store:
            if variable.expression is not None:
                refs = self.evaluator.extract_references(variable.expression)
                self.graph.register(variable.name, refs, variable.reaction)
        self.graph.restore_gate_state(snapshot.gates)
        logger.debug("Restored %d variable(s)", len(self.store))

    def carry_over(self, snapshot: Snapshot, names: Iterable[str], gate_targets: Iterable[str]) -> Snapshot:
        """Copy part of the live state onto ``snapshot``.

        The live records of ``names`` and the counters of every edge into
        ``gate_targets`` replace their counterparts; the rest of ``snapshot``
        is kept as it was.
        """
        variables = dict(snapshot.store.variables)
        for name in names:
            variable = self.store.get(name)
            if variable is not None:
                variables[name] = variable
        targets = set(gate_targets)
        gates = {edge: policy for edge, policy in snapshot.gates.items() if edge[1] not in targets}
        gates.update((edge, policy) for edge, policy in self.graph.gate_state().items() if edge[1] in targets)
        return Snapshot(store=StoreSnapshot(variables=variables), gates=gates)

    def fork(self) -> State:
        """Independent copy for dry runs."""
        return State(self.evaluator, self.snapshot())

    def value_of(self, name: str) -> Value | None:
        variable = self.store.get(name)
        return variable.value if variable is not None else None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def is_satisfied(self, change: PendingChange) -> bool:
        """Whether the variable already holds exactly what ``change`` assigns."""
        variable = self.store.get(change.name)
        if variable is None:
            return False
        if change.declared_type is not None and variable.declared_type is not change.declared_type:
            return False
        match change.value:
            case Expression(source=source):
                return variable.expression == source and variable.reaction == change.reaction
            case value:
                return variable.expression is None and values_equal(variable.value, value)

    def apply(self, change: PendingChange) -> PropagationReport:
        """Apply one change to the live store and propagate it.

        Returns:
            The propagation report. An ``ensure`` that is already satisfied
            returns an empty report.

        Raises:
            ConstantViolation: If the variable is frozen.
            CycleDetected: If the expression would close a cycle.
            EvalError: If the expression cannot be evaluated.
            TypeMismatch: If the value conflicts with the declared type.

        """
        if change.kind is ChangeKind.ENSURE and self.is_satisfied(change):
            logger.debug("%s already satisfied", change.name)
            return PropagationReport()

        match change.value:
            case Expression(source=source):
                self._require_mutable(change.name)
                refs = self.evaluator.extract_references(source)
                self.graph.check(change.name, refs)
                value = self.evaluator.evaluate(source, self.store.lookup())
                self.store.commit(
                    change.name,
                    value,
                    source=VariableSource.COMPUTED,
                    expression=source,
                    declared_type=change.declared_type,
                    reaction=change.reaction,
                )
                self.graph.register(change.name, refs, change.reaction)
            case _:
                self._write_literal(change)

        return self.propagation.propagate(change.name)

    def apply_batch(self, changes: Sequence[PendingChange]) -> BatchOutcome:
        """Apply changes as one batch, without rolling anything back.

        Literals are written first in the given order, then the incoming
        edges of every redefined variable are replaced, so that cycles are
        checked against the edge set being committed. A single propagation
        pass then evaluates the redefined variables and the rest of the
        affected graph in topological order.
        The caller restores a snapshot if the outcome carries a failure.
        """
        literals = [c for c in changes if not c.is_expression]
        expressions = [c for c in changes if c.is_expression]

        applied: list[str] = []
        unchanged: list[str] = []
        sources: list[str] = []
        definitions: dict[str, Definition] = {}
        current = ""
        try:
            for change in literals:
                current = change.name
                if change.kind is ChangeKind.ENSURE and self.is_satisfied(change):
                    unchanged.append(change.name)
                    continue
                self._write_literal(change)
                applied.append(change.name)
                sources.append(change.name)

            references = {
                c.name: self.evaluator.extract_references(str(c.value)) for c in expressions
            }
            redefinitions: list[PendingChange] = []
            for change in expressions:
                current = change.name
                if change.kind is ChangeKind.ENSURE and self.is_satisfied(change):
                    unchanged.append(change.name)
                    continue
                self._require_mutable(change.name)
                redefinitions.append(change)

            # Cycles are judged against the final edge set, so the old incoming
            # edges of every redefined variable go before any new edge is added.
            for change in redefinitions:
                self.graph.register(change.name, ())
            for change in _order_expressions(redefinitions, references):
                current = change.name
                self.graph.register(change.name, references[change.name], change.reaction)
                definitions[change.name] = Definition(
                    expression=str(change.value),
                    declared_type=change.declared_type,
                    reaction=change.reaction,
                )
                applied.append(change.name)
        except AnvilError as e:
            logger.debug("Batch step %s failed: %s", current, e)
            return BatchOutcome(
                applied=tuple(applied),
                unchanged=tuple(unchanged),
                failure=Failure.from_error(current, e),
            )

        logger.debug("Batch plan: literals %s, expressions %s", sources, list(definitions))
        report = self.propagation.propagate_many(sources, definitions)
        return BatchOutcome(
            applied=tuple(applied),
            unchanged=tuple(unchanged),
            report=report,
            failure=report.failed[0] if report.failed else None,
        )

    def _require_mutable(self, name: str) -> None:
        variable = self.store.get(name)
        if variable is not None and variable.is_constant:
            raise ConstantViolation(name)

    def _write_literal(self, change: PendingChange) -> None:
        self.store.commit(
            change.name,
            change.value,  # type: ignore[arg-type]
            source=VariableSource.DIRECT,
            declared_type=change.declared_type,
        )
        self.graph.register(change.name, ())
