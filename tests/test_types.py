"""Tests for type tags and the default type checker."""

import pytest

from anvil import TypeMismatch, TypeTag
from anvil._types import check_type, parse_type_tag
from anvil._values import freeze_value


class TestParseTypeTag:
    """Tests for parse_type_tag."""

    @pytest.mark.parametrize(
        ("text", "tag"),
        [
            ("int", TypeTag.INT),
            ("integer", TypeTag.INT),
            ("double", TypeTag.FLOAT),
            ("boolean", TypeTag.BOOL),
            ("str", TypeTag.STRING),
            ("Dictionary", TypeTag.DICT),
            (" list ", TypeTag.LIST),
        ],
    )
    def test_aliases(self, text: str, tag: TypeTag) -> None:
        assert parse_type_tag(text) is tag

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown type 'decimal'"):
            parse_type_tag("decimal")


class TestCheckType:
    """Tests for check_type."""

    def test_untyped_accepts_anything(self) -> None:
        assert check_type("x", None, "text") == "text"

    def test_int_widened_to_float(self) -> None:
        result = check_type("x", TypeTag.FLOAT, 3)
        assert result == 3.0
        assert isinstance(result, float)

    def test_float_rejected_for_int(self) -> None:
        with pytest.raises(TypeMismatch) as exc_info:
            check_type("x", TypeTag.INT, 1.5)
        assert exc_info.value.name == "x"
        assert exc_info.value.expected == "int"
        assert exc_info.value.actual == "float"

    def test_bool_is_never_a_number(self) -> None:
        with pytest.raises(TypeMismatch):
            check_type("flag", TypeTag.INT, True)
        with pytest.raises(TypeMismatch):
            check_type("flag", TypeTag.FLOAT, False)

    def test_containers(self) -> None:
        assert check_type("xs", TypeTag.LIST, (1, 2)) == (1, 2)
        assert check_type("d", TypeTag.DICT, freeze_value({"a": 1}))["a"] == 1  # type: ignore[index]
        with pytest.raises(TypeMismatch):
            check_type("xs", TypeTag.LIST, "not a list")
