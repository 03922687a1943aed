"""Per-edge reaction policies (limit / delay gating)."""

from __future__ import annotations

import re
from dataclasses import dataclass

from ._str_enum_with_doc import StrEnumWithDoc


class PolicyKind(StrEnumWithDoc):
    """How an edge gates propagation events."""

    LIMIT = "limit", "React to at most N upstream changes, then stop."
    DELAY = "delay", "Ignore the first N upstream changes, then react."


_SUFFIX_RE = re.compile(r"^~([+-])(\d+)$")


@dataclass(frozen=True, slots=True)
class ReactionPolicy:
    """Gate attached to a dependency edge.

    Policies are immutable; consuming a propagation event produces a new
    policy with the counter decremented.

    Attributes:
        kind: Limit or delay.
        remaining: Reactions left (limit) or events still to skip (delay).

    """

    kind: PolicyKind
    remaining: int

    def __post_init__(self) -> None:
        if self.remaining < 0:
            msg = f"Reaction counter must be non-negative, got {self.remaining}"
            raise ValueError(msg)

    @classmethod
    def limit(cls, count: int) -> ReactionPolicy:
        """React to at most ``count`` upstream changes."""
        return cls(PolicyKind.LIMIT, count)

    @classmethod
    def delay(cls, count: int) -> ReactionPolicy:
        """Skip the first ``count`` upstream changes."""
        return cls(PolicyKind.DELAY, count)

    @classmethod
    def parse(cls, text: str) -> ReactionPolicy:
        """Parse the shell suffix notation: ``~+N`` (limit) or ``~-N`` (delay).

        Raises:
            ValueError: If the text is not a valid suffix.

        Example:
            >>> ReactionPolicy.parse("~+3")
            ReactionPolicy(kind=<PolicyKind.LIMIT: 'limit'>, remaining=3)

        """
        match = _SUFFIX_RE.match(text.strip())
        if match is None:
            msg = f"Invalid reaction policy '{text}'. Expected ~+N or ~-N"
            raise ValueError(msg)
        sign, count = match.groups()
        return cls.limit(int(count)) if sign == "+" else cls.delay(int(count))

    def admit(self) -> tuple[bool, ReactionPolicy]:
        """Consume one propagation event.

        Returns:
            ``(open, next_policy)``: whether the event passes the gate, and
            the policy to store on the edge afterwards.

        """
        match self.kind:
            case PolicyKind.LIMIT:
                if self.remaining == 0:
                    return False, self
                return True, ReactionPolicy(self.kind, self.remaining - 1)
            case PolicyKind.DELAY:
                if self.remaining == 0:
                    return True, self
                return False, ReactionPolicy(self.kind, self.remaining - 1)

    def __str__(self) -> str:
        sign = "+" if self.kind is PolicyKind.LIMIT else "-"
        return f"~{sign}{self.remaining}"
