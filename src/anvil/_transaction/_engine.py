"""Transaction engine: staging, preview, incremental and atomic commit."""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING

from anvil._errors import AnvilError, ConstantViolation, TransactionStateError
from anvil._propagation import Failure, PropagationReport

from ._types import (
    AnnealResult,
    ChangeSummary,
    ForgeResult,
    PendingChange,
    TemperEntry,
    Transaction,
    TransactionState,
    TransactionSummary,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from anvil._state import State

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 1000


class TransactionEngine:
    """Drives the lifecycle of at most one active transaction.

    Finished transactions are kept in a bounded log, oldest first.
    """

    def __init__(self, state: State, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            msg = f"history_limit must be positive, got {history_limit}"
            raise ValueError(msg)
        self._state = state
        self._active: Transaction | None = None
        self._log: deque[Transaction] = deque(maxlen=history_limit)

    @property
    def active(self) -> Transaction | None:
        return self._active

    def history(self, limit: int | None = None) -> list[Transaction]:
        """Finished transactions, most recent last."""
        entries = list(self._log)
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def status(self) -> str:
        if self._active is None:
            return "No active transaction"
        tx = self._active
        return f"Active {tx}: {len(tx.pending_changes)} pending change(s)"

    def _require_active(self) -> Transaction:
        if self._active is None:
            msg = "No active transaction"
            raise TransactionStateError(msg)
        return self._active

    def _finish(self, tx: Transaction, state: TransactionState) -> None:
        tx.state = state
        tx.touch()
        self._log.append(tx)
        self._active = None
        logger.debug("Finished %s", tx)

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    def craft(self, label: str | None = None) -> Transaction:
        """Open a transaction over a snapshot of the current state.

        Raises:
            TransactionStateError: If a transaction is already active.

        """
        if self._active is not None:
            msg = f"Transaction already active: {self._active}"
            raise TransactionStateError(msg)
        tx = Transaction(snapshot=self._state.snapshot(), label=label)
        self._active = tx
        logger.debug("Crafted %s", tx)
        return tx

    def stage(self, change: PendingChange) -> Transaction:
        """Append a change to the active transaction without touching the store.

        Raises:
            TransactionStateError: If no transaction is active.
            ConstantViolation: If the variable is frozen.
            EvalError: If an expression cannot be parsed.

        """
        tx = self._require_active()
        variable = self._state.store.get(change.name)
        if variable is not None and variable.is_constant:
            raise ConstantViolation(change.name)
        if change.is_expression:
            self._state.evaluator.extract_references(str(change.value))
        if variable is None:
            tx.created_variables.add(change.name)
        tx.pending_changes.append(change)
        tx.touch()
        logger.debug("Staged %s = %s", change.name, change.describe())
        return tx

    def temper(self) -> list[TemperEntry]:
        """Preview the pending batch on a scratch copy of the state.

        Returns one entry per staged variable (last staging wins), followed by
        the dependents propagation would reach. Nothing live is modified.
        """
        tx = self._require_active()
        return self._preview(tx.planned_changes())

    def what_if(self, changes: Sequence[PendingChange]) -> list[TemperEntry]:
        """Preview hypothetical changes without staging them.

        Inside a transaction the changes are layered on top of the pending
        batch; otherwise they are previewed against the live state alone.
        """
        plan: list[PendingChange] = []
        if self._active is not None:
            plan.extend(self._active.pending_changes)
        plan.extend(changes)
        last: dict[str, PendingChange] = {}
        for change in plan:
            last.pop(change.name, None)
            last[change.name] = change
        return self._preview(list(last.values()))

    def _preview(self, plan: list[PendingChange]) -> list[TemperEntry]:
        scratch = self._state.fork()
        outcome = scratch.apply_batch(plan)

        errors: dict[str, str] = {}
        if outcome.report is not None:
            errors.update((f.name, f.message) for f in outcome.report.failed)
        elif outcome.failure is not None:
            errors[outcome.failure.name] = outcome.failure.message
            stopped = f"Not evaluated: batch stopped at '{outcome.failure.name}'"
            reached = set(outcome.unchanged)
            reached.update(c.name for c in plan if not c.is_expression and c.name in outcome.applied)
            for change in plan:
                if change.name not in reached:
                    errors.setdefault(change.name, stopped)

        entries: list[TemperEntry] = []
        staged = {c.name for c in plan}
        for change in plan:
            error = errors.get(change.name)
            entries.append(
                TemperEntry(
                    name=change.name,
                    old_value=self._state.value_of(change.name),
                    new_value=None if error else scratch.value_of(change.name),
                    error=error,
                )
            )
        if outcome.report is not None:
            for name in outcome.report.updated:
                if name not in staged:
                    entries.append(
                        TemperEntry(
                            name=name,
                            old_value=self._state.value_of(name),
                            new_value=scratch.value_of(name),
                            propagated=True,
                        )
                    )
            for failure in outcome.report.failed:
                if failure.name not in staged:
                    entries.append(
                        TemperEntry(
                            name=failure.name,
                            old_value=self._state.value_of(failure.name),
                            new_value=None,
                            propagated=True,
                            error=failure.message,
                        )
                    )
        return entries

    def inspect(self) -> TransactionSummary:
        """Describe the active transaction."""
        tx = self._require_active()
        changes = []
        for change in tx.planned_changes():
            refs: tuple[str, ...] = ()
            if change.is_expression:
                refs = tuple(sorted(self._state.evaluator.extract_references(str(change.value))))
            changes.append(
                ChangeSummary(
                    name=change.name,
                    old_value=self._state.value_of(change.name),
                    staged=change.describe(),
                    kind=change.kind,
                    dependencies=refs,
                    created=change.name in tx.created_variables,
                )
            )
        return TransactionSummary(
            id=tx.id,
            label=tx.label,
            state=tx.state,
            elapsed=tx.elapsed,
            pending_count=len(tx.pending_changes),
            changes=tuple(changes),
            created_variables=tuple(sorted(tx.created_variables)),
            annealed=tuple(tx.annealed),
        )

    def anneal(self, steps: int = 1) -> AnnealResult:
        """Apply the next ``steps`` pending changes to the live state.

        Each change is applied and propagated on its own. The variable and the
        dependents it updated are then written through to the transaction
        snapshot, so a later smelt keeps them; nothing else is. Application
        stops at the first failure. A change that could not be applied stays
        pending. A change whose propagation failed stays applied.

        Raises:
            TransactionStateError: If no transaction is active.
            ValueError: If ``steps`` is not positive.

        """
        if steps < 1:
            msg = f"anneal steps must be positive, got {steps}"
            raise ValueError(msg)
        return self._anneal(steps)

    def quench(self) -> AnnealResult:
        """Anneal every remaining change, stopping at the first failure."""
        tx = self._require_active()
        return self._anneal(len(tx.pending_changes))

    def _anneal(self, steps: int) -> AnnealResult:
        tx = self._require_active()
        applied: list[str] = []
        reports: list[PropagationReport] = []
        failure: Failure | None = None

        while tx.pending_changes and len(applied) < steps:
            change = tx.pending_changes[0]
            try:
                report = self._state.apply(change)
            except AnvilError as e:
                failure = Failure.from_error(change.name, e)
                logger.debug("Anneal of %s failed: %s", change.name, e)
                break

            tx.pending_changes.pop(0)
            tx.created_variables.discard(change.name)
            tx.annealed.append(change.name)
            # Only what this change wrote survives a later smelt.
            written = [change.name, *report.updated]
            tx.snapshot = self._state.carry_over(
                tx.snapshot,
                written,
                [*written, *report.skipped, *report.failed_names],
            )
            applied.append(change.name)
            reports.append(report)
            if not report.success:
                failure = report.failed[0]
                break

        tx.touch()
        return AnnealResult(
            applied=tuple(applied),
            reports=tuple(reports),
            failure=failure,
            remaining=len(tx.pending_changes),
        )

    def forge(self) -> ForgeResult:
        """Apply every pending change atomically.

        On failure the state is restored to what it was just before the
        forge and the transaction is aborted; changes annealed earlier stay.

        Raises:
            TransactionStateError: If no transaction is active.

        """
        tx = self._require_active()
        before = self._state.snapshot()
        outcome = self._state.apply_batch(tx.planned_changes())

        if outcome.failure is not None:
            self._state.restore(before)
            tx.failure = outcome.failure
            logger.debug("Forge failed at %s; rolled back", outcome.failure)
            self._finish(tx, TransactionState.ABORTED)
            return ForgeResult(transaction=tx, report=outcome.report, failure=outcome.failure)

        tx.pending_changes.clear()
        self._finish(tx, TransactionState.COMMITTED)
        return ForgeResult(transaction=tx, applied=outcome.applied, report=outcome.report)

    def smelt(self) -> Transaction:
        """Discard pending changes and restore the transaction snapshot.

        Raises:
            TransactionStateError: If no transaction is active.

        """
        tx = self._require_active()
        self._state.restore(tx.snapshot)
        tx.pending_changes.clear()
        self._finish(tx, TransactionState.ABORTED)
        return tx
