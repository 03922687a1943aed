"""Runtime value model.

A value is one of text, 64-bit integer, 64-bit float, boolean, an ordered
sequence of values or a mapping from text keys to values. Values are
immutable: sequences are stored as tuples and mappings as read-only
``MappingProxyType`` views over an insertion-ordered dict.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from ._str_enum_with_doc import StrEnumWithDoc

type Value = str | int | float | bool | tuple[Value, ...] | Mapping[str, Value]

INT_MIN = -(2**63)
INT_MAX = 2**63 - 1


class ValueKind(StrEnumWithDoc):
    """Closed set of value variants."""

    STRING = "string", "Text value."
    INT = "int", "Signed 64-bit integer."
    FLOAT = "float", "64-bit floating point number."
    BOOL = "bool", "Boolean."
    LIST = "list", "Ordered sequence of values."
    DICT = "dict", "Mapping from text keys to values."


_NUMERIC = frozenset({ValueKind.INT, ValueKind.FLOAT})


def kind_of(value: Value) -> ValueKind:
    """Classify a value.

    Raises:
        TypeError: If the object is not a valid value.

    """
    match value:
        case bool():
            return ValueKind.BOOL
        case int():
            return ValueKind.INT
        case float():
            return ValueKind.FLOAT
        case str():
            return ValueKind.STRING
        case tuple():
            return ValueKind.LIST
        case Mapping():
            return ValueKind.DICT
        case _:
            msg = f"Not a value: {value!r} ({type(value).__name__})"
            raise TypeError(msg)


def check_int_range(number: int) -> int:
    """Return ``number`` if it fits in a signed 64-bit integer.

    Raises:
        OverflowError: If the integer is out of range.

    """
    if not INT_MIN <= number <= INT_MAX:
        msg = f"Integer {number} does not fit in 64 bits"
        raise OverflowError(msg)
    return number


def freeze_value(obj: Any) -> Value:
    """Convert a plain Python object into an immutable value.

    Lists and tuples become tuples, dicts become read-only mappings. Nested
    containers are converted recursively.

    Raises:
        TypeError: If the object (or something nested in it) has no value
            representation, or a mapping has a non-text key.
        OverflowError: If an integer does not fit in 64 bits.

    Example:
        >>> freeze_value([1, {"a": 2}])
        (1, mappingproxy({'a': 2}))

    """
    match obj:
        case bool() | str():
            return obj
        case int():
            return check_int_range(obj)
        case float():
            return obj
        case list() | tuple():
            return tuple(freeze_value(item) for item in obj)
        case Mapping():
            frozen: dict[str, Value] = {}
            for key, item in obj.items():
                if not isinstance(key, str):
                    msg = f"Mapping keys must be text, got {type(key).__name__}"
                    raise TypeError(msg)
                frozen[key] = freeze_value(item)
            return MappingProxyType(frozen)
        case _:
            msg = f"Cannot use {type(obj).__name__} as a value"
            raise TypeError(msg)


def thaw_value(value: Value) -> Any:
    """Convert a value back into plain lists and dicts (for serialization)."""
    match value:
        case tuple():
            return [thaw_value(item) for item in value]
        case Mapping():
            return {key: thaw_value(item) for key, item in value.items()}
        case _:
            return value


def _format_float(number: float) -> str:
    if math.isnan(number) or math.isinf(number):
        return str(number)
    text = repr(number)
    if "." in text and "e" not in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_value(value: Value, *, quote_strings: bool = True) -> str:
    """Render a value for display.

    Strings are quoted unless ``quote_strings`` is false (only the top level
    is affected; nested strings are always quoted). Floats drop a trailing
    ``.0``.

    Example:
        >>> format_value((1, 2.50, "x", True))
        '[1, 2.5, "x", true]'

    """
    match value:
        case str():
            return f'"{value}"' if quote_strings else value
        case bool():
            return "true" if value else "false"
        case int():
            return str(value)
        case float():
            return _format_float(value)
        case tuple():
            return "[" + ", ".join(format_value(item) for item in value) + "]"
        case Mapping():
            pairs = (f'"{key}": {format_value(item)}' for key, item in value.items())
            return "{" + ", ".join(pairs) + "}"
        case _:
            msg = f"Not a value: {value!r}"
            raise TypeError(msg)


def values_equal(left: Value, right: Value) -> bool:
    """Compare two values structurally, without treating ``True`` as ``1``.

    Integers and floats compare numerically.
    """
    left_kind, right_kind = kind_of(left), kind_of(right)
    if left_kind != right_kind and not {left_kind, right_kind} <= _NUMERIC:
        return False
    match left, right:
        case tuple(), tuple():
            return len(left) == len(right) and all(
                values_equal(a, b) for a, b in zip(left, right, strict=True)
            )
        case Mapping(), Mapping():
            return left.keys() == right.keys() and all(values_equal(left[key], right[key]) for key in left)
        case _:
            return left == right
