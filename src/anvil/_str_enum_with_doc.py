"""String enums whose members carry a one-line description."""

from enum import StrEnum
from typing import Self


class StrEnumWithDoc(StrEnum):
    """String enum whose members are declared as ``NAME = value, description``.

    Used for the small closed vocabularies of the engine (value kinds,
    variable sources, transaction states, shell verbs) so that the CLI can
    print a description next to each member.
    """

    def __new__(cls, value: str, doc: str = "") -> Self:
        member = str.__new__(cls, value)
        member._value_ = value
        member.__doc__ = doc
        return member

    @classmethod
    def describe(cls) -> dict[str, str]:
        """Map each member value to its description."""
        return {member.value: member.__doc__ or "" for member in cls}
