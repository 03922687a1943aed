"""Snapshot files: checkpoint an environment to TOML and load it back.

Layout::

    version = 1

    [variables.price]
    value = 10
    source = "direct"
    updated = 2026-01-01T00:00:00Z
    update_count = 0

    [variables.total]
    value = 20
    source = "computed"
    expression = "price * 2"
    reaction = "~+3"

    [[gates]]
    source = "price"
    target = "total"
    policy = "~+2"

Variables keep their file order, which becomes their creation order. Only
edges with a reaction policy are listed under ``gates``; the edges themselves
are rebuilt from the expressions.
"""

import logging
import tomllib
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Self

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ._errors import TypeMismatch
from ._policy import ReactionPolicy
from ._state import Snapshot
from ._store import StoreSnapshot, Variable, VariableSource
from ._types import TypeTag, check_type
from ._values import Value, freeze_value, thaw_value

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT_VERSION = 1


def _parse_policy(value: str | None) -> str | None:
    if value is not None:
        ReactionPolicy.parse(value)
    return value


class VariableRecord(BaseModel):
    """One ``[variables.NAME]`` table."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    value: Any
    source: VariableSource = VariableSource.DIRECT
    constant: bool = False
    declared_type: TypeTag | None = Field(default=None, alias="type")
    expression: str | None = None
    reaction: str | None = None
    updated: datetime | None = None
    update_count: int = Field(default=0, ge=0)

    @field_validator("value")
    @classmethod
    def _check_value(cls, value: Any) -> Value:
        try:
            return freeze_value(value)
        except (TypeError, OverflowError) as e:
            raise ValueError(str(e)) from e

    @field_validator("reaction")
    @classmethod
    def _check_reaction(cls, value: str | None) -> str | None:
        return _parse_policy(value)

    @classmethod
    def from_variable(cls, variable: Variable) -> "VariableRecord":
        return cls(
            value=variable.value,
            source=variable.source,
            constant=variable.is_constant,
            declared_type=variable.declared_type,
            expression=variable.expression,
            reaction=str(variable.reaction) if variable.reaction is not None else None,
            updated=variable.last_updated,
            update_count=variable.update_count,
        )

    def to_variable(self, name: str) -> Variable:
        return Variable(
            name=name,
            value=self.value,
            declared_type=self.declared_type,
            is_constant=self.constant,
            source=self.source,
            expression=self.expression,
            reaction=ReactionPolicy.parse(self.reaction) if self.reaction is not None else None,
            last_updated=self.updated or datetime.now(UTC),
            update_count=self.update_count,
        )


class GateRecord(BaseModel):
    """One ``[[gates]]`` entry."""

    model_config = ConfigDict(extra="forbid")

    source: str
    target: str
    policy: str

    @field_validator("policy")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        _parse_policy(value)
        return value


class SnapshotFile(BaseModel):
    """Whole snapshot file."""

    model_config = ConfigDict(extra="forbid")

    version: int = SNAPSHOT_FORMAT_VERSION
    variables: dict[str, VariableRecord] = Field(default_factory=dict)
    gates: list[GateRecord] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        if value != SNAPSHOT_FORMAT_VERSION:
            msg = f"Unsupported snapshot version {value}, expected {SNAPSHOT_FORMAT_VERSION}"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _check_declared_types(self) -> Self:
        """Reject values their declared type does not accept; widen ints for float variables."""
        for name, record in self.variables.items():
            try:
                record.value = check_type(name, record.declared_type, record.value)
            except TypeMismatch as e:
                raise ValueError(str(e)) from e
        return self


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    """Convert a snapshot to plain TOML-ready data.

    This is a pure function; ``None`` fields are left out since TOML has no null.
    """
    variables: dict[str, Any] = {}
    for name, variable in snapshot.store.variables.items():
        record = VariableRecord.from_variable(variable).model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude={"value", "updated"},
        )
        # Values and timestamps are TOML-native; keep them out of JSON mode.
        variables[name] = {"value": thaw_value(variable.value), **record, "updated": variable.last_updated}
    gates = [
        {"source": source, "target": target, "policy": str(policy)}
        for (source, target), policy in snapshot.gates.items()
        if policy is not None
    ]
    data: dict[str, Any] = {"version": SNAPSHOT_FORMAT_VERSION, "variables": variables}
    if gates:
        data["gates"] = gates
    return data


def dict_to_snapshot(contents: Mapping[str, Any]) -> Snapshot:
    """Validate parsed TOML contents and build a snapshot.

    Raises:
        pydantic.ValidationError: If the contents do not describe a snapshot.

    """
    parsed = SnapshotFile.model_validate(contents)
    variables = {name: record.to_variable(name) for name, record in parsed.variables.items()}
    gates = {(g.source, g.target): ReactionPolicy.parse(g.policy) for g in parsed.gates}
    return Snapshot(store=StoreSnapshot(variables=variables), gates=gates)


def export_to_toml(snapshot: Snapshot, output_path: Path | str) -> None:
    """Write a snapshot to a TOML file.

    Args:
        snapshot: Snapshot taken with ``Environment.snapshot()``.
        output_path: Destination file; overwritten if it exists.

    """
    output_path = Path(output_path)
    with output_path.open("wb") as f:
        tomli_w.dump(snapshot_to_dict(snapshot), f)

    logger.debug(f"Exported {len(snapshot)} variable(s) to {output_path}")


def load_snapshot_from_toml(input_path: Path | str) -> Snapshot:
    """Load a snapshot written by :func:`export_to_toml`.

    Raises:
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        pydantic.ValidationError: If the file does not describe a snapshot.

    """
    input_path = Path(input_path)
    with input_path.open("rb") as f:
        toml_contents = tomllib.load(f)

    snapshot = dict_to_snapshot(toml_contents)
    logger.debug(f"Loaded {len(snapshot)} variable(s) from {input_path}")
    return snapshot
