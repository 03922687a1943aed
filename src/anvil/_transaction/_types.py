"""Transaction records and the result types of the transaction verbs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from anvil._expr import Expression
from anvil._str_enum_with_doc import StrEnumWithDoc
from anvil._values import format_value, values_equal

if TYPE_CHECKING:
    from anvil._state import Snapshot
    from anvil._policy import ReactionPolicy
    from anvil._propagation import Failure, PropagationReport
    from anvil._types import TypeTag
    from anvil._values import Value


class TransactionState(StrEnumWithDoc):
    """Lifecycle state of a transaction."""

    ACTIVE = "active", "Accepting staged changes."
    COMMITTED = "committed", "Forged successfully."
    ABORTED = "aborted", "Smelted, or rolled back by a failed forge."


class ChangeKind(StrEnumWithDoc):
    """Verb a pending change was staged with."""

    SET = "set", "Always assign."
    ENSURE = "ensure", "Assign only if the variable does not already hold it."


@dataclass(frozen=True, slots=True)
class PendingChange:
    """A staged assignment.

    Attributes:
        name: Target variable.
        value: Literal value, or an :class:`Expression` to evaluate.
        kind: ``set`` or ``ensure``.
        declared_type: Optional type annotation.
        reaction: Policy for the incoming edges of an expression.

    """

    name: str
    value: Value | Expression
    kind: ChangeKind = ChangeKind.SET
    declared_type: TypeTag | None = None
    reaction: ReactionPolicy | None = None

    @property
    def is_expression(self) -> bool:
        return isinstance(self.value, Expression)

    def describe(self) -> str:
        """Render the right-hand side the way it would be typed in the shell."""
        match self.value:
            case Expression(source=source):
                text = source
            case _:
                text = format_value(self.value)
        if self.reaction is not None:
            text = f"{text} {self.reaction}"
        return text


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class Transaction:
    """A batch of staged changes against a snapshot of the environment.

    Attributes:
        snapshot: Environment state at craft time, updated by every annealed
            change.
        label: Optional human-readable label.
        id: Unique identifier.
        state: Lifecycle state.
        pending_changes: Changes not yet applied, in staging order.
        created_variables: Names staged that did not exist in the store.
        annealed: Names applied incrementally, in application order.
        failure: The failure that aborted a forge, if any.

    """

    snapshot: Snapshot
    label: str | None = None
    id: UUID = field(default_factory=uuid4)
    state: TransactionState = TransactionState.ACTIVE
    pending_changes: list[PendingChange] = field(default_factory=list)
    created_variables: set[str] = field(default_factory=set)
    annealed: list[str] = field(default_factory=list)
    failure: Failure | None = None
    created_at: datetime = field(default_factory=_now)
    modified_at: datetime = field(default_factory=_now)

    @property
    def elapsed(self) -> timedelta:
        """Time since the transaction was crafted."""
        return _now() - self.created_at

    def touch(self) -> None:
        self.modified_at = _now()

    def planned_changes(self) -> list[PendingChange]:
        """Pending changes with the last staged change per name winning.

        The result keeps the position of each name's last staging.
        """
        last: dict[str, PendingChange] = {}
        for change in self.pending_changes:
            last.pop(change.name, None)
            last[change.name] = change
        return list(last.values())

    def __str__(self) -> str:
        label = f" '{self.label}'" if self.label else ""
        return f"transaction {str(self.id)[:8]}{label} ({self.state})"


@dataclass(frozen=True, slots=True)
class TemperEntry:
    """Preview of one variable affected by the pending batch.

    Attributes:
        name: Variable name.
        old_value: Current live value, or None if the variable does not exist.
        new_value: Value it would have after forging, or None on error.
        propagated: True for dependents reached by propagation rather than
            staged directly.
        error: Why the variable could not be computed, if it could not.

    """

    name: str
    old_value: Value | None
    new_value: Value | None
    propagated: bool = False
    error: str | None = None

    @property
    def changed(self) -> bool:
        if self.error is not None:
            return False
        if self.old_value is None or self.new_value is None:
            return self.old_value is not self.new_value
        return not values_equal(self.old_value, self.new_value)


@dataclass(frozen=True, slots=True)
class ChangeSummary:
    """Per-variable diff line of :class:`TransactionSummary`."""

    name: str
    old_value: Value | None
    staged: str
    kind: ChangeKind
    dependencies: tuple[str, ...] = ()
    created: bool = False


@dataclass(frozen=True, slots=True)
class TransactionSummary:
    """Read-only view of the active transaction returned by ``inspect``."""

    id: UUID
    label: str | None
    state: TransactionState
    elapsed: timedelta
    pending_count: int
    changes: tuple[ChangeSummary, ...]
    created_variables: tuple[str, ...]
    annealed: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AnnealResult:
    """Outcome of ``anneal`` or ``quench``.

    Attributes:
        applied: Names applied, in order.
        reports: Propagation report of each applied change.
        failure: The change that could not be applied (it stays pending).
        remaining: Number of changes still pending.

    """

    applied: tuple[str, ...] = ()
    reports: tuple[PropagationReport, ...] = ()
    failure: Failure | None = None
    remaining: int = 0

    @property
    def success(self) -> bool:
        return self.failure is None


@dataclass(frozen=True, slots=True)
class ForgeResult:
    """Outcome of ``forge``.

    Attributes:
        transaction: The finished transaction.
        applied: Staged names written, in application order. Empty on failure.
        report: Propagation report of the commit pass.
        failure: The step that made the batch fail; the environment was
            restored to its pre-forge state.

    """

    transaction: Transaction
    applied: tuple[str, ...] = ()
    report: PropagationReport | None = None
    failure: Failure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None
