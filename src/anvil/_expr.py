"""Expression evaluation.

The engines only talk to an :class:`ExpressionEvaluator`. :class:`SimpleEvaluator`
is the default implementation: it parses a small, Python-flavoured expression
subset with :mod:`ast` and evaluates it against a read-only mapping of
variable values. It never mutates the mapping it is given.
"""

from __future__ import annotations

import ast
import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from types import MappingProxyType
from typing import Protocol

from ._errors import EvalError, UndefinedVariable
from ._values import Value, ValueKind, check_int_range, format_value, kind_of, values_equal

logger = logging.getLogger(__name__)

_BOOL_NAMES: dict[str, bool] = {"true": True, "false": False, "True": True, "False": False}


@dataclass(frozen=True, slots=True)
class Expression:
    """Marks an assignment right-hand side as an expression to evaluate.

    Plain values passed to ``Environment.set`` are stored literally; wrap
    the text in ``Expression`` to define a computed variable.

    Example:
        >>> env.set("total", Expression("price * quantity"))  # doctest: +SKIP

    """

    source: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", self.source.strip())

    def __str__(self) -> str:
        return self.source


class ExpressionEvaluator(Protocol):
    """Interface the propagation and transaction engines require."""

    def evaluate(self, expression: str, variables: Mapping[str, Value]) -> Value:
        """Evaluate ``expression`` against ``variables``.

        Raises:
            EvalError: If the expression cannot be evaluated.

        """
        ...

    def extract_references(self, expression: str) -> frozenset[str]:
        """Return the names of the variables ``expression`` reads.

        Raises:
            EvalError: If the expression cannot be parsed.

        """
        ...


# =============================================================================
# Builtin functions
# =============================================================================


@dataclass(frozen=True, slots=True)
class Builtin:
    """A function callable from expressions."""

    name: str
    min_args: int
    max_args: int | None
    fn: Callable[..., Value]


def _expect(name: str, value: Value, *kinds: ValueKind) -> None:
    kind = kind_of(value)
    if kind not in kinds:
        expected = " or ".join(k.value for k in kinds)
        msg = f"{name}() expects {expected}, got {kind.value}"
        raise EvalError(msg)


def _len(value: Value) -> Value:
    _expect("len", value, ValueKind.STRING, ValueKind.LIST, ValueKind.DICT)
    return len(value)  # type: ignore[arg-type]


def _upper(value: Value) -> Value:
    _expect("upper", value, ValueKind.STRING)
    return value.upper()  # type: ignore[union-attr]


def _lower(value: Value) -> Value:
    _expect("lower", value, ValueKind.STRING)
    return value.lower()  # type: ignore[union-attr]


def _trim(value: Value) -> Value:
    _expect("trim", value, ValueKind.STRING)
    return value.strip()  # type: ignore[union-attr]


def _str(value: Value) -> Value:
    return format_value(value, quote_strings=False)


def _int(value: Value) -> Value:
    match value:
        case bool():
            msg = "int() does not accept bool"
            raise EvalError(msg)
        case int():
            return value
        case float():
            if not math.isfinite(value):
                msg = f"Cannot convert {value} to int"
                raise EvalError(msg)
            return _checked(int(value))
        case str():
            try:
                return _checked(int(value.strip()))
            except ValueError:
                msg = f"Cannot convert '{value}' to int"
                raise EvalError(msg) from None
        case _:
            msg = f"int() does not accept {kind_of(value).value}"
            raise EvalError(msg)


def _float(value: Value) -> Value:
    match value:
        case bool():
            msg = "float() does not accept bool"
            raise EvalError(msg)
        case int() | float():
            return float(value)
        case str():
            try:
                return float(value.strip())
            except ValueError:
                msg = f"Cannot convert '{value}' to float"
                raise EvalError(msg) from None
        case _:
            msg = f"float() does not accept {kind_of(value).value}"
            raise EvalError(msg)


def _abs(value: Value) -> Value:
    _expect("abs", value, ValueKind.INT, ValueKind.FLOAT)
    return abs(value)  # type: ignore[arg-type]


def _round(value: Value, digits: Value = 0) -> Value:
    _expect("round", value, ValueKind.INT, ValueKind.FLOAT)
    _expect("round", digits, ValueKind.INT)
    if digits == 0:
        return _checked(round(value))  # type: ignore[arg-type]
    return float(round(value, digits))  # type: ignore[arg-type, call-overload]


def _numbers(name: str, args: tuple[Value, ...]) -> list[int | float]:
    if len(args) == 1 and isinstance(args[0], tuple):
        args = args[0]
    if not args:
        msg = f"{name}() of an empty list"
        raise EvalError(msg)
    for arg in args:
        _expect(name, arg, ValueKind.INT, ValueKind.FLOAT)
    return list(args)  # type: ignore[arg-type]


def _min(*args: Value) -> Value:
    return min(_numbers("min", args))


def _max(*args: Value) -> Value:
    return max(_numbers("max", args))


def _sum(value: Value) -> Value:
    _expect("sum", value, ValueKind.LIST)
    if not value:
        return 0
    total = sum(_numbers("sum", (value,)))
    return _checked(total) if isinstance(total, int) else total


def _count(value: Value, pattern: Value) -> Value:
    _expect("count", pattern, ValueKind.STRING)
    match value:
        case str():
            return value.count(pattern)  # type: ignore[arg-type]
        case tuple():
            return sum(1 for item in value if values_equal(item, pattern))
        case _:
            msg = f"Cannot count in type: {kind_of(value).value}"
            raise EvalError(msg)


def _keys(value: Value) -> Value:
    _expect("keys", value, ValueKind.DICT)
    return tuple(value)  # type: ignore[arg-type]


def _values(value: Value) -> Value:
    _expect("values", value, ValueKind.DICT)
    return tuple(value.values())  # type: ignore[union-attr]


def _now() -> Value:
    return datetime.now(UTC).isoformat(timespec="seconds")


BUILTINS: dict[str, Builtin] = {
    b.name: b
    for b in (
        Builtin("len", 1, 1, _len),
        Builtin("upper", 1, 1, _upper),
        Builtin("lower", 1, 1, _lower),
        Builtin("trim", 1, 1, _trim),
        Builtin("str", 1, 1, _str),
        Builtin("int", 1, 1, _int),
        Builtin("float", 1, 1, _float),
        Builtin("abs", 1, 1, _abs),
        Builtin("round", 1, 2, _round),
        Builtin("min", 1, None, _min),
        Builtin("max", 1, None, _max),
        Builtin("sum", 1, 1, _sum),
        Builtin("count", 2, 2, _count),
        Builtin("keys", 1, 1, _keys),
        Builtin("values", 1, 1, _values),
        Builtin("now", 0, 0, _now),
    )
}


# =============================================================================
# Parsing
# =============================================================================


def _checked(number: int) -> int:
    try:
        return check_int_range(number)
    except OverflowError as e:
        raise EvalError(str(e)) from None


@lru_cache(maxsize=1024)
def parse_expression(expression: str) -> ast.expr:
    """Parse expression text into an AST node.

    Raises:
        EvalError: If the text is empty or not a valid expression.

    """
    text = expression.strip()
    if not text:
        msg = "Empty expression"
        raise EvalError(msg)
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as e:
        msg = f"Invalid expression '{text}': {e.msg}"
        raise EvalError(msg) from None
    return tree.body


def _collect_references(node: ast.AST, found: set[str]) -> None:
    match node:
        case ast.Name(id=name):
            if name not in _BOOL_NAMES:
                found.add(name)
        case ast.Call(func=ast.Name(), args=args):
            # The callee is a builtin, not a variable.
            for arg in args:
                _collect_references(arg, found)
        case _:
            for child in ast.iter_child_nodes(node):
                _collect_references(child, found)


# =============================================================================
# Evaluation
# =============================================================================


def _is_number(value: Value) -> bool:
    return kind_of(value) in (ValueKind.INT, ValueKind.FLOAT)


def _numeric_result(result: int | float) -> Value:
    if isinstance(result, int):
        return _checked(result)
    return result


def _add(left: Value, right: Value) -> Value:
    if _is_number(left) and _is_number(right):
        return _numeric_result(left + right)  # type: ignore[operator]
    match left, right:
        case str(), str():
            return left + right
        case tuple(), tuple():
            return left + right
    msg = f"Cannot add {kind_of(left).value} and {kind_of(right).value}"
    raise EvalError(msg)


def _arithmetic(op: ast.operator, left: Value, right: Value) -> Value:  # noqa: C901
    if isinstance(op, ast.Add):
        return _add(left, right)
    if not (_is_number(left) and _is_number(right)):
        msg = (
            f"Unsupported operand types for {type(op).__name__.lower()}: "
            f"{kind_of(left).value} and {kind_of(right).value}"
        )
        raise EvalError(msg)
    a: int | float = left  # type: ignore[assignment]
    b: int | float = right  # type: ignore[assignment]
    match op:
        case ast.Sub():
            return _numeric_result(a - b)
        case ast.Mult():
            return _numeric_result(a * b)
        case ast.Div():
            if b == 0:
                msg = "Division by zero"
                raise EvalError(msg)
            return a / b
        case ast.FloorDiv():
            if b == 0:
                msg = "Division by zero"
                raise EvalError(msg)
            return _numeric_result(a // b)
        case ast.Mod():
            if b == 0:
                msg = "Modulo by zero"
                raise EvalError(msg)
            return _numeric_result(a % b)
        case ast.Pow():
            # Refuse to materialize huge integers before the range check.
            if isinstance(a, int) and isinstance(b, int) and b > 0 and abs(a) > 1 and b * math.log2(abs(a)) > 64:
                msg = f"Result of {a} ** {b} does not fit in 64 bits"
                raise EvalError(msg)
            try:
                return _numeric_result(a**b)
            except (OverflowError, ZeroDivisionError) as e:
                raise EvalError(str(e)) from None
        case _:
            msg = f"Unsupported operator: {type(op).__name__}"
            raise EvalError(msg)


def _compare(op: ast.cmpop, left: Value, right: Value) -> bool:  # noqa: C901, PLR0911
    match op:
        case ast.Eq():
            return values_equal(left, right)
        case ast.NotEq():
            return not values_equal(left, right)
        case ast.In() | ast.NotIn():
            match right:
                case str():
                    if not isinstance(left, str):
                        msg = "'in <string>' requires a string on the left"
                        raise EvalError(msg)
                    found = left in right
                case tuple():
                    found = any(values_equal(left, item) for item in right)
                case Mapping():
                    found = isinstance(left, str) and left in right
                case _:
                    msg = f"Cannot test membership in {kind_of(right).value}"
                    raise EvalError(msg)
            return found if isinstance(op, ast.In) else not found
    orderable = (_is_number(left) and _is_number(right)) or (isinstance(left, str) and isinstance(right, str))
    if not orderable:
        msg = f"Cannot compare {kind_of(left).value} and {kind_of(right).value}"
        raise EvalError(msg)
    match op:
        case ast.Lt():
            return left < right  # type: ignore[operator]
        case ast.LtE():
            return left <= right  # type: ignore[operator]
        case ast.Gt():
            return left > right  # type: ignore[operator]
        case ast.GtE():
            return left >= right  # type: ignore[operator]
        case _:
            msg = f"Unsupported comparison: {type(op).__name__}"
            raise EvalError(msg)


def _require_bool(value: Value, context: str) -> bool:
    if not isinstance(value, bool):
        msg = f"{context} requires bool, got {kind_of(value).value}"
        raise EvalError(msg)
    return value


def _subscript(container: Value, index: Value) -> Value:
    match container:
        case tuple():
            if not isinstance(index, int) or isinstance(index, bool):
                msg = "List index must be an integer"
                raise EvalError(msg)
            try:
                return container[index]
            except IndexError:
                msg = f"Index {index} out of bounds for list of length {len(container)}"
                raise EvalError(msg) from None
        case Mapping():
            if not isinstance(index, str):
                msg = "Dictionary key must be a string"
                raise EvalError(msg)
            try:
                return container[index]
            except KeyError:
                msg = f"Key '{index}' not found"
                raise EvalError(msg) from None
        case str():
            return _subscript(tuple(container), index)
        case _:
            msg = f"Cannot index into {kind_of(container).value}"
            raise EvalError(msg)


class _Evaluation:
    """Evaluates one parsed expression against a variable mapping."""

    def __init__(self, variables: Mapping[str, Value]) -> None:
        self._variables = variables

    def eval(self, node: ast.AST) -> Value:  # noqa: C901, PLR0911, PLR0912
        match node:
            case ast.Constant(value=bool() | int() | float() | str() as value):
                if isinstance(value, int) and not isinstance(value, bool):
                    return _checked(value)
                return value
            case ast.Name(id=name):
                if name in _BOOL_NAMES:
                    return _BOOL_NAMES[name]
                try:
                    return self._variables[name]
                except KeyError:
                    raise UndefinedVariable(name) from None
            case ast.List(elts=elts) | ast.Tuple(elts=elts):
                return tuple(self.eval(elt) for elt in elts)
            case ast.Dict(keys=keys, values=values):
                result: dict[str, Value] = {}
                for key_node, value_node in zip(keys, values, strict=True):
                    if key_node is None:
                        msg = "Dictionary unpacking is not supported"
                        raise EvalError(msg)
                    key = self.eval(key_node)
                    if not isinstance(key, str):
                        msg = "Dictionary keys must be strings"
                        raise EvalError(msg)
                    result[key] = self.eval(value_node)
                return MappingProxyType(result)
            case ast.BinOp(left=left, op=op, right=right):
                return _arithmetic(op, self.eval(left), self.eval(right))
            case ast.UnaryOp(op=ast.Not(), operand=operand):
                return not _require_bool(self.eval(operand), "not")
            case ast.UnaryOp(op=ast.USub() | ast.UAdd() as op, operand=operand):
                value = self.eval(operand)
                if not _is_number(value):
                    msg = f"Unary operator requires a number, got {kind_of(value).value}"
                    raise EvalError(msg)
                return _numeric_result(-value if isinstance(op, ast.USub) else value)  # type: ignore[operator]
            case ast.BoolOp(op=op, values=operands):
                is_and = isinstance(op, ast.And)
                context = "and" if is_and else "or"
                for operand in operands:
                    if _require_bool(self.eval(operand), context) is not is_and:
                        return not is_and
                return is_and
            case ast.Compare(left=left, ops=ops, comparators=comparators):
                current = self.eval(left)
                for op, comparator in zip(ops, comparators, strict=True):
                    right = self.eval(comparator)
                    if not _compare(op, current, right):
                        return False
                    current = right
                return True
            case ast.IfExp(test=test, body=body, orelse=orelse):
                if _require_bool(self.eval(test), "conditional"):
                    return self.eval(body)
                return self.eval(orelse)
            case ast.Subscript(value=container, slice=index):
                return _subscript(self.eval(container), self.eval(index))
            case ast.Call(func=ast.Name(id=fname), args=args, keywords=[]):
                return self._call(fname, [self.eval(arg) for arg in args])
            case ast.JoinedStr(values=parts):
                return "".join(self._format_part(part) for part in parts)
            case _:
                msg = f"Unsupported syntax: {type(node).__name__}"
                raise EvalError(msg)

    def _format_part(self, node: ast.AST) -> str:
        match node:
            case ast.Constant(value=str() as text):
                return text
            case ast.FormattedValue(value=inner, format_spec=None):
                return format_value(self.eval(inner), quote_strings=False)
            case _:
                msg = "Format specifications are not supported in interpolated strings"
                raise EvalError(msg)

    @staticmethod
    def _call(name: str, args: list[Value]) -> Value:
        builtin = BUILTINS.get(name)
        if builtin is None:
            msg = f"Unknown function: {name}"
            raise EvalError(msg)
        too_many = builtin.max_args is not None and len(args) > builtin.max_args
        if len(args) < builtin.min_args or too_many:
            msg = f"Wrong number of arguments for {name}(): {len(args)}"
            raise EvalError(msg)
        return builtin.fn(*args)


class SimpleEvaluator:
    """Default :class:`ExpressionEvaluator`.

    Example:
        >>> SimpleEvaluator().evaluate("a * 2 + 1", {"a": 20})
        41
        >>> sorted(SimpleEvaluator().extract_references("len(items) + offset"))
        ['items', 'offset']

    """

    def evaluate(self, expression: str, variables: Mapping[str, Value]) -> Value:
        """Evaluate ``expression`` against ``variables``."""
        node = parse_expression(expression)
        return _Evaluation(variables).eval(node)

    def extract_references(self, expression: str) -> frozenset[str]:
        """Return the variable names ``expression`` reads."""
        found: set[str] = set()
        _collect_references(parse_expression(expression), found)
        return frozenset(found)
