"""Variable store: name to current value plus provenance metadata."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ._errors import ConstantViolation, TypeMismatch, UnknownVariable
from ._str_enum_with_doc import StrEnumWithDoc
from ._types import TypeTag, check_type

if TYPE_CHECKING:
    from ._policy import ReactionPolicy
    from ._values import Value

logger = logging.getLogger(__name__)


class VariableSource(StrEnumWithDoc):
    """How a variable obtained its current value."""

    DIRECT = "direct", "Last set by an explicit literal assignment."
    COMPUTED = "computed", "Last set by evaluating its own expression."
    PROPAGATED = "propagated", "Last set because an upstream dependency changed."


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class Variable:
    """A named value in the environment.

    Variables are immutable records: every mutation replaces the record in
    the store, so a snapshot can share records with the live store.

    Attributes:
        name: Unique name.
        value: Current materialized value.
        declared_type: Type annotation, fixed by the first typed declaration.
        is_constant: True once frozen.
        source: Provenance of the current value.
        expression: Defining expression for computed variables.
        reaction: Policy the variable's incoming edges were declared with.
        last_updated: Time of the last successful mutation.
        update_count: Number of successful mutations since creation.

    """

    name: str
    value: Value
    declared_type: TypeTag | None = None
    is_constant: bool = False
    source: VariableSource = VariableSource.DIRECT
    expression: str | None = None
    reaction: ReactionPolicy | None = None
    last_updated: datetime = field(default_factory=_now)
    update_count: int = 0

    @property
    def is_computed(self) -> bool:
        """Whether the variable is defined by an expression."""
        return self.expression is not None


@dataclass(frozen=True, slots=True)
class StoreSnapshot:
    """Point-in-time copy of a variable store.

    Attributes:
        variables: Variables in insertion order.

    """

    variables: Mapping[str, Variable] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.variables

    def __len__(self) -> int:
        return len(self.variables)

    def get(self, name: str) -> Variable | None:
        """Get a variable by name, or None."""
        return self.variables.get(name)

    def values(self) -> dict[str, Value]:
        """Map variable names to their values."""
        return {name: var.value for name, var in self.variables.items()}


class _ValueLookup(Mapping[str, "Value"]):
    """Read-only name-to-value view handed to the expression evaluator."""

    def __init__(self, variables: Mapping[str, Variable]) -> None:
        self._variables = variables

    def __getitem__(self, name: str) -> Value:
        return self._variables[name].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)


class VariableStore:
    """Mutable mapping from variable name to :class:`Variable`.

    All writes go through :meth:`commit`, which enforces the constant flag and
    the declared type before replacing anything.
    """

    def __init__(self, snapshot: StoreSnapshot | None = None) -> None:
        self._variables: dict[str, Variable] = dict(snapshot.variables) if snapshot else {}

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def __len__(self) -> int:
        return len(self._variables)

    def __iter__(self) -> Iterator[Variable]:
        return iter(self._variables.values())

    def names(self) -> list[str]:
        """Variable names in creation order."""
        return list(self._variables)

    def get(self, name: str) -> Variable | None:
        """Get a variable by name, or None."""
        return self._variables.get(name)

    def require(self, name: str) -> Variable:
        """Get a variable by name.

        Raises:
            UnknownVariable: If no such variable exists.

        """
        try:
            return self._variables[name]
        except KeyError:
            raise UnknownVariable(name) from None

    def lookup(self) -> Mapping[str, Value]:
        """Live read-only view of the current values, for evaluation."""
        return _ValueLookup(self._variables)

    def commit(  # noqa: PLR0913
        self,
        name: str,
        value: Value,
        *,
        source: VariableSource,
        expression: str | None = None,
        declared_type: TypeTag | None = None,
        reaction: ReactionPolicy | None = None,
        keep_definition: bool = False,
    ) -> Variable:
        """Write a value into the store.

        Args:
            name: Variable to create or update.
            value: New value.
            source: Provenance recorded on the variable.
            expression: New defining expression (ignored when ``keep_definition``).
            declared_type: Type annotation; only allowed to match or introduce
                the variable's declared type.
            reaction: New reaction policy (ignored when ``keep_definition``).
            keep_definition: Keep the current expression and reaction policy
                (used when propagation recomputes a variable).

        Returns:
            The stored variable record.

        Raises:
            ConstantViolation: If the variable is frozen.
            TypeMismatch: If the value or the annotation conflicts with the
                declared type. The store is left unchanged.

        """
        current = self._variables.get(name)
        if current is not None and current.is_constant:
            raise ConstantViolation(name)

        effective_type = current.declared_type if current is not None else None
        if declared_type is not None:
            if effective_type is not None and effective_type is not declared_type:
                raise TypeMismatch(name, effective_type.value, declared_type.value)
            effective_type = declared_type
        stored_value = check_type(name, effective_type, value)

        if current is None:
            variable = Variable(
                name=name,
                value=stored_value,
                declared_type=effective_type,
                source=source,
                expression=expression,
                reaction=reaction,
            )
            logger.debug("Created %s (%s)", name, source)
        else:
            variable = replace(
                current,
                value=stored_value,
                declared_type=effective_type,
                source=source,
                expression=current.expression if keep_definition else expression,
                reaction=current.reaction if keep_definition else reaction,
                last_updated=_now(),
                update_count=current.update_count + 1,
            )
            logger.debug("Updated %s (%s, #%d)", name, source, variable.update_count)
        self._variables[name] = variable
        return variable

    def freeze(self, name: str) -> Variable:
        """Mark a variable constant.

        Raises:
            UnknownVariable: If no such variable exists.

        """
        variable = replace(self.require(name), is_constant=True)
        self._variables[name] = variable
        return variable

    def remove(self, name: str) -> Variable | None:
        """Drop a variable, returning its last record if it existed."""
        return self._variables.pop(name, None)

    def snapshot(self) -> StoreSnapshot:
        """Copy the store. Records are immutable, so the copy is shallow."""
        return StoreSnapshot(variables=dict(self._variables))

    def restore(self, snapshot: StoreSnapshot) -> None:
        """Replace the whole store with the contents of ``snapshot``."""
        self._variables = dict(snapshot.variables)
