"""The environment: the single entry point to variables, graph and transactions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ._errors import TransactionStateError
from ._expr import Expression, SimpleEvaluator
from ._policy import ReactionPolicy
from ._state import Snapshot, State
from ._transaction import DEFAULT_HISTORY_LIMIT, ChangeKind, PendingChange, TransactionEngine
from ._types import TypeTag, parse_type_tag
from ._values import freeze_value

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ._expr import ExpressionEvaluator
    from ._graph import DependencyGraph
    from ._propagation import PropagationEvent, PropagationReport
    from ._store import Variable
    from ._transaction import (
        AnnealResult,
        ForgeResult,
        TemperEntry,
        Transaction,
        TransactionSummary,
    )
    from ._values import Value

logger = logging.getLogger(__name__)


class Environment:
    """A reactive variable environment with transactional mutation.

    Assignments outside a transaction are applied immediately and propagated
    to every dependent. Inside a transaction (after :meth:`craft`) they are
    staged and applied by :meth:`anneal`, :meth:`quench` or :meth:`forge`.

    Example:
        >>> env = Environment()
        >>> env.set("price", 10)  # doctest: +ELLIPSIS
        PropagationReport(...)
        >>> env.set("total", Expression("price * 2"))  # doctest: +ELLIPSIS
        PropagationReport(...)
        >>> env.set("price", 21)  # doctest: +ELLIPSIS
        PropagationReport(sources=('price',), updated=('total',), ...)
        >>> env.get("total")
        42

    """

    def __init__(
        self,
        evaluator: ExpressionEvaluator | None = None,
        *,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        snapshot: Snapshot | None = None,
    ) -> None:
        self._state = State(evaluator or SimpleEvaluator(), snapshot)
        self._transactions = TransactionEngine(self._state, history_limit)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get(self, name: str) -> Value:
        """Current value of a variable.

        Raises:
            UnknownVariable: If no such variable exists.

        """
        return self._state.store.require(name).value

    def variable(self, name: str) -> Variable:
        """Full record of a variable.

        Raises:
            UnknownVariable: If no such variable exists.

        """
        return self._state.store.require(name)

    def variables(self) -> list[Variable]:
        """All variables in creation order."""
        return list(self._state.store)

    def evaluate(self, expression: str) -> Value:
        """Evaluate an expression against the current values without storing it."""
        return self._state.evaluator.evaluate(expression, self._state.store.lookup())

    def references(self, expression: str) -> frozenset[str]:
        """Variables an expression reads."""
        return self._state.evaluator.extract_references(expression)

    @property
    def graph(self) -> DependencyGraph:
        """The dependency graph. Treat as read-only."""
        return self._state.graph

    def dump_graph(self) -> dict[str, list[str]]:
        """Each variable mapped to its direct dependents."""
        return self._state.graph.dump()

    def graph_dot(self) -> str:
        """The dependency graph in Graphviz DOT syntax."""
        labels = {}
        for variable in self._state.store:
            if variable.expression is not None:
                labels[variable.name] = f"{variable.name} = {variable.expression}"
        constants = [v.name for v in self._state.store if v.is_constant]
        return self._state.graph.to_dot(labels=labels, constants=constants)

    def __contains__(self, name: object) -> bool:
        return name in self._state.store

    def __len__(self) -> int:
        return len(self._state.store)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def set(
        self,
        name: str,
        value: Any,
        *,
        reaction: ReactionPolicy | str | None = None,
        declared_type: TypeTag | str | None = None,
    ) -> PropagationReport | None:
        """Assign a literal value or an :class:`Expression` to ``name``.

        Args:
            name: Variable to create or update.
            value: A plain value (lists and dicts are frozen) or an Expression.
            reaction: Policy for every incoming edge of an expression, either
                a :class:`ReactionPolicy` or the ``~+N`` / ``~-N`` notation.
            declared_type: Type annotation, a :class:`TypeTag` or its name.

        Returns:
            The propagation report, or None when the change was staged in the
            active transaction.

        Raises:
            ConstantViolation: If the variable is frozen.
            CycleDetected: If the expression would close a cycle.
            EvalError: If the expression cannot be evaluated.
            TypeMismatch: If the value conflicts with the declared type.

        """
        return self._submit(self._change(name, value, ChangeKind.SET, reaction, declared_type))

    def ensure(
        self,
        name: str,
        value: Any,
        *,
        reaction: ReactionPolicy | str | None = None,
        declared_type: TypeTag | str | None = None,
    ) -> PropagationReport | None:
        """Like :meth:`set`, but a no-op when ``name`` already holds exactly ``value``.

        An ensure that changes nothing returns an empty report (no sources).
        """
        return self._submit(self._change(name, value, ChangeKind.ENSURE, reaction, declared_type))

    def freeze(self, name: str) -> Variable:
        """Make a variable constant.

        Raises:
            UnknownVariable: If no such variable exists.

        """
        variable = self._state.store.freeze(name)
        logger.debug("Froze %s", name)
        return variable

    def _change(
        self,
        name: str,
        value: Any,
        kind: ChangeKind,
        reaction: ReactionPolicy | str | None,
        declared_type: TypeTag | str | None,
    ) -> PendingChange:
        if isinstance(reaction, str):
            reaction = ReactionPolicy.parse(reaction)
        if isinstance(declared_type, str):
            declared_type = parse_type_tag(declared_type)
        if not isinstance(value, Expression):
            value = freeze_value(value)
            # Literals have no incoming edges to gate.
            reaction = None
        return PendingChange(name=name, value=value, kind=kind, declared_type=declared_type, reaction=reaction)

    def _submit(self, change: PendingChange) -> PropagationReport | None:
        if self._transactions.active is not None:
            self._transactions.stage(change)
            return None
        return self._state.apply(change)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        """Copy the variables and the reaction gate counters."""
        return self._state.snapshot()

    def restore(self, snapshot: Snapshot) -> None:
        """Replace the whole environment with ``snapshot``.

        Raises:
            TransactionStateError: If a transaction is active.

        """
        if self._transactions.active is not None:
            msg = "Cannot restore a snapshot while a transaction is active"
            raise TransactionStateError(msg)
        self._state.restore(snapshot)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def transaction(self) -> Transaction | None:
        """The active transaction, if any."""
        return self._transactions.active

    @property
    def in_transaction(self) -> bool:
        return self._transactions.active is not None

    def craft(self, label: str | None = None) -> Transaction:
        """Open a transaction; later assignments are staged."""
        return self._transactions.craft(label)

    def temper(self) -> list[TemperEntry]:
        """Preview what forging would change."""
        return self._transactions.temper()

    def inspect(self) -> TransactionSummary:
        """Describe the active transaction."""
        return self._transactions.inspect()

    def anneal(self, steps: int = 1) -> AnnealResult:
        """Apply the next ``steps`` staged changes."""
        return self._transactions.anneal(steps)

    def quench(self) -> AnnealResult:
        """Apply every staged change one by one."""
        return self._transactions.quench()

    def forge(self) -> ForgeResult:
        """Apply every staged change atomically and close the transaction."""
        return self._transactions.forge()

    def smelt(self) -> Transaction:
        """Discard the transaction and restore its snapshot."""
        return self._transactions.smelt()

    def transaction_status(self) -> str:
        return self._transactions.status()

    def transaction_history(self, limit: int | None = None) -> list[Transaction]:
        """Finished transactions, most recent last."""
        return self._transactions.history(limit)

    def what_if(self, scenario: Mapping[str, Any]) -> list[TemperEntry]:
        """Preview a set of assignments without applying or staging them.

        Values are taken as :meth:`set` takes them. Inside a transaction the
        scenario is layered on top of the staged changes.

        Example:
            >>> env = Environment()
            >>> _ = env.set("x", 1)
            >>> _ = env.set("y", Expression("x * 2"))
            >>> [(e.name, e.new_value) for e in env.what_if({"x": 5})]
            [('x', 5), ('y', 10)]
            >>> env.get("y")
            2

        """
        changes = [self._change(name, value, ChangeKind.SET, None, None) for name, value in scenario.items()]
        return self._transactions.what_if(changes)

    # ------------------------------------------------------------------
    # Propagation history
    # ------------------------------------------------------------------

    def propagation_history(self, limit: int | None = None) -> list[PropagationEvent]:
        """Recent propagation passes, most recent last."""
        return self._state.propagation.history(limit)
