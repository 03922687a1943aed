"""Line-oriented intent language used by the shell and by scripts.

One command per line; ``#`` starts a comment and blank lines are ignored::

    set NAME [: TYPE] = EXPR [~+N | ~-N]
    ensure NAME [: TYPE] = EXPR [~+N | ~-N]
    freeze NAME
    show [NAME]
    graph
    craft [LABEL] | temper | inspect | anneal [N] | quench | forge | smelt
    status | history [N] | propagations [N]
    what-if NAME = EXPR[, NAME = EXPR ...]
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ._errors import IntentError
from ._policy import ReactionPolicy
from ._str_enum_with_doc import StrEnumWithDoc
from ._transaction import ChangeKind
from ._types import TypeTag, parse_type_tag

_NAME = r"[A-Za-z_][A-Za-z0-9_]*"
_ASSIGN_RE = re.compile(
    rf"^(?P<name>{_NAME})\s*(?::\s*(?P<type>\w+)\s*)?=(?P<rhs>.*?)\s*(?P<policy>~[+-]\d+)?\s*$",
)
_NAME_RE = re.compile(rf"^{_NAME}$")


class Verb(StrEnumWithDoc):
    """Commands that take no argument."""

    GRAPH = "graph", "Print the dependency graph."
    TEMPER = "temper", "Preview the pending batch."
    INSPECT = "inspect", "Describe the active transaction."
    QUENCH = "quench", "Apply every pending change one by one."
    FORGE = "forge", "Apply every pending change atomically."
    SMELT = "smelt", "Discard the active transaction."
    STATUS = "status", "Show whether a transaction is active."


@dataclass(frozen=True, slots=True)
class Assign:
    """``set`` or ``ensure``. ``rhs`` is the unparsed right-hand side."""

    kind: ChangeKind
    name: str
    rhs: str
    declared_type: TypeTag | None = None
    reaction: ReactionPolicy | None = None


@dataclass(frozen=True, slots=True)
class Freeze:
    name: str


@dataclass(frozen=True, slots=True)
class Show:
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Craft:
    label: str | None = None


@dataclass(frozen=True, slots=True)
class Anneal:
    steps: int = 1


@dataclass(frozen=True, slots=True)
class History:
    limit: int | None = None


@dataclass(frozen=True, slots=True)
class Propagations:
    limit: int | None = None


@dataclass(frozen=True, slots=True)
class WhatIf:
    """A hypothetical batch of ``set`` assignments to preview."""

    assignments: tuple[Assign, ...]


@dataclass(frozen=True, slots=True)
class Simple:
    verb: Verb


type Intent = Assign | Freeze | Show | Craft | Anneal | History | Propagations | WhatIf | Simple


def _strip_comment(line: str) -> str:
    """Drop a trailing ``#`` comment that is not inside a string literal."""
    quote: str | None = None
    for i, char in enumerate(line):
        if quote is not None:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "#":
            return line[:i]
    return line


def _parse_assign(kind: ChangeKind, rest: str) -> Assign:
    match = _ASSIGN_RE.match(rest)
    if match is None or not match["rhs"].strip():
        msg = f"Expected '{kind} NAME [: TYPE] = EXPR [~+N|~-N]', got '{kind} {rest}'"
        raise IntentError(msg)
    try:
        declared_type = parse_type_tag(match["type"]) if match["type"] else None
        reaction = ReactionPolicy.parse(match["policy"]) if match["policy"] else None
    except ValueError as e:
        raise IntentError(str(e)) from e
    return Assign(
        kind=kind,
        name=match["name"],
        rhs=match["rhs"].strip(),
        declared_type=declared_type,
        reaction=reaction,
    )


def _split_top_level(text: str) -> list[str]:
    """Split on commas outside brackets and string literals."""
    parts: list[str] = []
    depth = 0
    quote: str | None = None
    start = 0
    for i, char in enumerate(text):
        if quote is not None:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}":
            depth -= 1
        elif char == "," and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return [part.strip() for part in parts]


def _parse_what_if(rest: str) -> WhatIf:
    if not rest:
        msg = "'what-if' expects NAME = EXPR[, ...]"
        raise IntentError(msg)
    assignments = []
    for part in _split_top_level(rest):
        assign = _parse_assign(ChangeKind.SET, part)
        if assign.declared_type is not None or assign.reaction is not None:
            msg = f"'what-if' takes plain NAME = EXPR assignments, got '{part}'"
            raise IntentError(msg)
        assignments.append(assign)
    return WhatIf(tuple(assignments))


def _parse_count(verb: str, text: str) -> int:
    try:
        count = int(text)
    except ValueError:
        msg = f"'{verb}' expects a positive integer, got '{text}'"
        raise IntentError(msg) from None
    if count < 1:
        msg = f"'{verb}' expects a positive integer, got '{text}'"
        raise IntentError(msg)
    return count


def _require_name(verb: str, text: str) -> str:
    if not _NAME_RE.match(text):
        msg = f"'{verb}' expects a variable name, got '{text}'"
        raise IntentError(msg)
    return text


def parse_intent(line: str) -> Intent | None:  # noqa: C901, PLR0911
    """Parse one line of the intent language.

    Returns:
        The parsed intent, or None for a blank or comment-only line.

    Raises:
        IntentError: If the line is not a valid command.

    Example:
        >>> parse_intent("set total: float = price * qty ~+2")
        Assign(kind=<ChangeKind.SET: 'set'>, name='total', rhs='price * qty', declared_type=<TypeTag.FLOAT: 'float'>, reaction=ReactionPolicy(kind=<PolicyKind.LIMIT: 'limit'>, remaining=2))

    """  # noqa: E501
    text = _strip_comment(line).strip()
    if not text:
        return None
    verb, _, rest = text.partition(" ")
    verb = verb.lower()
    rest = rest.strip()

    match verb:
        case "set":
            return _parse_assign(ChangeKind.SET, rest)
        case "ensure":
            return _parse_assign(ChangeKind.ENSURE, rest)
        case "freeze":
            return Freeze(_require_name(verb, rest))
        case "show":
            return Show(_require_name(verb, rest) if rest else None)
        case "craft":
            return Craft(rest or None)
        case "anneal":
            return Anneal(_parse_count(verb, rest) if rest else 1)
        case "history":
            return History(_parse_count(verb, rest) if rest else None)
        case "propagations":
            return Propagations(_parse_count(verb, rest) if rest else None)
        case "what-if":
            return _parse_what_if(rest)
        case _:
            pass

    try:
        simple = Verb(verb)
    except ValueError:
        msg = f"Unknown command '{verb}'"
        raise IntentError(msg) from None
    if rest:
        msg = f"'{verb}' takes no arguments"
        raise IntentError(msg)
    return Simple(simple)
