"""Declared variable types and the default type checker."""

from __future__ import annotations

from ._errors import TypeMismatch
from ._str_enum_with_doc import StrEnumWithDoc
from ._values import Value, ValueKind, kind_of


class TypeTag(StrEnumWithDoc):
    """Type annotation a variable can be declared with."""

    STRING = "string", "Accepts text values."
    INT = "int", "Accepts integers."
    FLOAT = "float", "Accepts floats; integers are widened."
    BOOL = "bool", "Accepts booleans."
    LIST = "list", "Accepts lists."
    DICT = "dict", "Accepts mappings."


_ALIASES: dict[str, TypeTag] = {
    "string": TypeTag.STRING,
    "str": TypeTag.STRING,
    "int": TypeTag.INT,
    "integer": TypeTag.INT,
    "float": TypeTag.FLOAT,
    "double": TypeTag.FLOAT,
    "bool": TypeTag.BOOL,
    "boolean": TypeTag.BOOL,
    "list": TypeTag.LIST,
    "dict": TypeTag.DICT,
    "dictionary": TypeTag.DICT,
}

_ACCEPTED: dict[TypeTag, frozenset[ValueKind]] = {
    TypeTag.STRING: frozenset({ValueKind.STRING}),
    TypeTag.INT: frozenset({ValueKind.INT}),
    TypeTag.FLOAT: frozenset({ValueKind.FLOAT, ValueKind.INT}),
    TypeTag.BOOL: frozenset({ValueKind.BOOL}),
    TypeTag.LIST: frozenset({ValueKind.LIST}),
    TypeTag.DICT: frozenset({ValueKind.DICT}),
}


def parse_type_tag(text: str) -> TypeTag:
    """Parse a type annotation such as ``int`` or ``dictionary``.

    Raises:
        ValueError: If the name is not a known type.

    """
    try:
        return _ALIASES[text.strip().lower()]
    except KeyError:
        msg = f"Unknown type '{text}'. Expected one of: {', '.join(sorted(_ALIASES))}"
        raise ValueError(msg) from None


def check_type(name: str, declared_type: TypeTag | None, value: Value) -> Value:
    """Check ``value`` against the declared type of variable ``name``.

    Returns the value to store, which differs from the input only when an
    integer is widened for a float-typed variable.

    Raises:
        TypeMismatch: If the value kind is not accepted by the declared type.

    """
    if declared_type is None:
        return value
    kind = kind_of(value)
    if kind not in _ACCEPTED[declared_type]:
        raise TypeMismatch(name, declared_type.value, kind.value)
    if declared_type is TypeTag.FLOAT and kind is ValueKind.INT:
        return float(value)  # type: ignore[arg-type]
    return value
