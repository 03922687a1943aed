"""Propagation engine: recompute dependents after a change."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ._errors import AnvilError, ConstantViolation, EvalError, TypeMismatch
from ._store import VariableSource

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from ._expr import ExpressionEvaluator
    from ._graph import DependencyGraph, Edge
    from ._policy import ReactionPolicy
    from ._store import VariableStore
    from ._types import TypeTag

logger = logging.getLogger(__name__)

DEFAULT_PROPAGATION_HISTORY_LIMIT = 1000


@dataclass(frozen=True, slots=True)
class Definition:
    """A new defining expression for a variable, applied during a pass."""

    expression: str
    declared_type: TypeTag | None = None
    reaction: ReactionPolicy | None = None


@dataclass(frozen=True, slots=True)
class Failure:
    """A variable that could not be (re)computed.

    Two failures compare equal when they name the same variable and carry the
    same message; the exception object itself is kept for callers that need
    its type.
    """

    name: str
    message: str
    error: AnvilError = field(compare=False, repr=False)

    @classmethod
    def from_error(cls, name: str, error: AnvilError) -> Failure:
        return cls(name=name, message=str(error), error=error)

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


@dataclass(frozen=True, slots=True)
class PropagationReport:
    """Outcome of one propagation pass.

    Attributes:
        sources: Variables whose change started the pass.
        updated: Dependents recomputed, in evaluation order.
        skipped: Dependents whose every triggering edge was gated closed.
        failed: Dependents whose recomputation failed; they keep their value
            and nothing downstream of them is recomputed through them.
        blocked: Dependents not reached because every upstream path was
            skipped or failed.

    """

    sources: tuple[str, ...] = ()
    updated: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    failed: tuple[Failure, ...] = ()
    blocked: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        """Check if the pass completed without failures."""
        return len(self.failed) == 0

    @property
    def failed_names(self) -> tuple[str, ...]:
        """Names of the failed dependents."""
        return tuple(f.name for f in self.failed)


@dataclass(frozen=True, slots=True)
class PropagationEvent:
    """One propagation pass as recorded in the engine's history.

    Attributes:
        sources: Variables that started the pass, redefined ones included.
        report: What the pass did.
        timestamp: When the pass finished.

    """

    sources: tuple[str, ...]
    report: PropagationReport
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def affected_count(self) -> int:
        """Dependents the pass recomputed or tried to."""
        return len(self.report.updated) + len(self.report.failed)

    def __str__(self) -> str:
        return f"{self.timestamp:%H:%M:%S}: {', '.join(self.sources)} (affected: {self.affected_count})"


def _admit(edges: list[Edge]) -> bool:
    """Run every triggering edge through its gate; open if any edge is open."""
    is_open = False
    for edge in edges:
        if edge.policy is None:
            is_open = True
            continue
        admitted, edge.policy = edge.policy.admit()
        logger.debug(
            "Gate %s -> %s %s (now %s)",
            edge.source,
            edge.target,
            "open" if admitted else "closed",
            edge.policy,
        )
        is_open = is_open or admitted
    return is_open


class PropagationEngine:
    """Recomputes dependents in topological order, honoring reaction gates.

    Every pass is appended to a bounded history, oldest first. Passes that a
    failed forge later rolled back stay in the history.
    """

    def __init__(
        self,
        store: VariableStore,
        graph: DependencyGraph,
        evaluator: ExpressionEvaluator,
        history_limit: int = DEFAULT_PROPAGATION_HISTORY_LIMIT,
    ) -> None:
        self._store = store
        self._graph = graph
        self._evaluator = evaluator
        self._history: deque[PropagationEvent] = deque(maxlen=history_limit)

    def history(self, limit: int | None = None) -> list[PropagationEvent]:
        """Recorded passes, most recent last."""
        events = list(self._history)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def propagate(self, changed: str) -> PropagationReport:
        """Recompute everything affected by a change to ``changed``."""
        return self.propagate_many([changed])

    def propagate_many(
        self,
        sources: Iterable[str],
        definitions: Mapping[str, Definition] | None = None,
    ) -> PropagationReport:
        """Run one pass for several changed variables at once.

        Every source counts as already updated: dependents are recomputed at
        most once, after all of their changed upstreams.

        Args:
            sources: Variables whose values were already written.
            definitions: Variables to evaluate with a new expression during the
                pass. Their incoming edges must already be registered. They are
                evaluated in topological position and are never gated.

        """
        source_list = list(dict.fromkeys(sources))
        redefined = dict(definitions or {})
        order = self._graph.closure_of(source_list, extra=redefined)
        logger.debug("Propagating from %s through %s", source_list, order)

        touched = set(source_list)
        updated: list[str] = []
        skipped: list[str] = []
        failed: list[Failure] = []
        blocked: list[str] = []

        for name in order:
            definition = redefined.get(name)
            if definition is None:
                triggering = [e for e in self._graph.incoming(name) if e.source in touched]
                if not triggering:
                    blocked.append(name)
                    continue
                if not _admit(triggering):
                    skipped.append(name)
                    continue
                variable = self._store.get(name)
                if variable is None or variable.expression is None:
                    blocked.append(name)
                    continue
                expression = variable.expression
            else:
                expression = definition.expression

            try:
                value = self._evaluator.evaluate(expression, self._store.lookup())
                if definition is None:
                    self._store.commit(name, value, source=VariableSource.PROPAGATED, keep_definition=True)
                else:
                    self._store.commit(
                        name,
                        value,
                        source=VariableSource.COMPUTED,
                        expression=definition.expression,
                        declared_type=definition.declared_type,
                        reaction=definition.reaction,
                    )
            except (EvalError, TypeMismatch, ConstantViolation) as e:
                logger.debug("Recomputing %s failed: %s", name, e)
                failed.append(Failure.from_error(name, e))
                continue

            touched.add(name)
            updated.append(name)

        report = PropagationReport(
            sources=tuple(source_list),
            updated=tuple(updated),
            skipped=tuple(skipped),
            failed=tuple(failed),
            blocked=tuple(blocked),
        )
        self._history.append(PropagationEvent(sources=(*source_list, *redefined), report=report))
        return report
