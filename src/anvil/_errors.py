"""Exception hierarchy for anvil."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class AnvilError(Exception):
    """Base class for all errors raised by anvil."""


class CycleDetected(AnvilError):
    """Raised when a definition would introduce a circular dependency."""

    def __init__(self, path: Sequence[str]) -> None:
        self.path = tuple(path)
        super().__init__(f"Circular dependency: {' -> '.join(self.path)}")


class TypeMismatch(AnvilError):
    """Raised when a typed variable rejects a value of another kind."""

    def __init__(self, name: str, expected: str, actual: str) -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(f"Variable '{name}' is declared {expected}, got {actual}")


class ConstantViolation(AnvilError):
    """Raised when a frozen variable is mutated."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Variable '{name}' is frozen")


class EvalError(AnvilError):
    """Raised by the expression evaluator."""


class UndefinedVariable(EvalError):
    """Raised when an expression references a variable that does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Variable not found: {name}")


class UnknownVariable(AnvilError):
    """Raised when an operation targets a variable that does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Variable '{name}' not found")


class TransactionStateError(AnvilError):
    """Raised when a transaction verb is used in the wrong state."""


class IntentError(AnvilError):
    """Raised when a shell command cannot be parsed."""


class ConfigError(AnvilError):
    """Error in anvil configuration."""
