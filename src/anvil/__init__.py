"""Reactive variable environment with transactional mutation."""

__all__ = [
    "AnnealResult",
    "AnvilError",
    "ConfigError",
    "ConstantViolation",
    "CycleDetected",
    "DependencyGraph",
    "Environment",
    "EvalError",
    "Expression",
    "ExpressionEvaluator",
    "ForgeResult",
    "IntentError",
    "PolicyKind",
    "PropagationEngine",
    "PropagationEvent",
    "PropagationReport",
    "ReactionPolicy",
    "SimpleEvaluator",
    "Snapshot",
    "TemperEntry",
    "Transaction",
    "TransactionState",
    "TransactionStateError",
    "TransactionSummary",
    "TypeMismatch",
    "TypeTag",
    "UndefinedVariable",
    "UnknownVariable",
    "Variable",
    "VariableSource",
    "VariableStore",
    "execute_intent",
    "export_to_toml",
    "load_snapshot_from_toml",
    "parse_intent",
    "run_script",
]

from ._env import Environment
from ._errors import (
    AnvilError,
    ConfigError,
    ConstantViolation,
    CycleDetected,
    EvalError,
    IntentError,
    TransactionStateError,
    TypeMismatch,
    UndefinedVariable,
    UnknownVariable,
)
from ._expr import Expression, ExpressionEvaluator, SimpleEvaluator
from ._graph import DependencyGraph
from ._intent import parse_intent
from ._io import export_to_toml, load_snapshot_from_toml
from ._policy import PolicyKind, ReactionPolicy
from ._propagation import PropagationEngine, PropagationEvent, PropagationReport
from ._shell import execute_intent, run_script
from ._state import Snapshot
from ._store import Variable, VariableSource, VariableStore
from ._transaction import (
    AnnealResult,
    ForgeResult,
    TemperEntry,
    Transaction,
    TransactionState,
    TransactionSummary,
)
from ._types import TypeTag
