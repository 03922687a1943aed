"""Dependency graph between variables."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from anvil._errors import CycleDetected

from ._algorithms import topological_sort

if TYPE_CHECKING:
    from anvil._policy import ReactionPolicy

logger = logging.getLogger(__name__)

type GateState = dict[tuple[str, str], ReactionPolicy | None]


@dataclass(slots=True)
class Edge:
    """A directed ``source -> target`` edge meaning "target reads source".

    The same record is reachable from both adjacency maps, so updating
    ``policy`` is visible in either direction.

    Attributes:
        source: The variable being read.
        target: The dependent variable.
        policy: Reaction gate, or None for "always react".

    """

    source: str
    target: str
    policy: ReactionPolicy | None = None


class DependencyGraph:
    """A directed acyclic graph of "depends on" relationships between variables.

    The graph represents:
    - predecessors[b] = {a} means "b depends on a" (b's expression reads a)
    - successors[a] = {b} means "a is depended on by b"

    Nodes remember the order in which they were first registered; every
    ordering the graph returns uses it to break ties, so results do not
    depend on hash order.
    """

    def __init__(self) -> None:
        self._predecessors: dict[str, dict[str, Edge]] = {}
        self._successors: dict[str, dict[str, Edge]] = {}
        self._rank: dict[str, int] = {}
        self._counter = itertools.count()

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def add_node(self, name: str) -> None:
        """Ensure ``name`` is a node (no-op if it already is)."""
        if name not in self._rank:
            self._rank[name] = next(self._counter)
            self._predecessors[name] = {}
            self._successors[name] = {}

    @property
    def nodes(self) -> list[str]:
        """All nodes, in registration order."""
        return sorted(self._rank, key=self._rank.__getitem__)

    def rank(self, name: str) -> int:
        """Registration index of a node, used as the tie-breaker.

        Unknown names sort after every registered node.
        """
        return self._rank.get(name, len(self._rank))

    def check(self, name: str, references: Iterable[str]) -> None:
        """Check that ``name`` may read ``references`` without creating a cycle.

        Raises:
            CycleDetected: With the offending path, e.g. ``a -> b -> a``.

        """
        for ref in self._sorted(set(references)):
            if ref == name:
                raise CycleDetected([name, name])
            path = self._find_path(name, ref)
            if path is not None:
                raise CycleDetected([*path, name])

    def register(
        self,
        name: str,
        references: Iterable[str],
        policy: ReactionPolicy | None = None,
        edge_policies: Mapping[str, ReactionPolicy | None] | None = None,
    ) -> None:
        """Replace the incoming edges of ``name``.

        Args:
            name: The dependent variable.
            references: Variables its expression reads. An empty collection
                turns ``name`` into a plain source.
            policy: Reaction policy for every new incoming edge.
            edge_policies: Per-source overrides of ``policy``.

        Raises:
            CycleDetected: If the new edges would close a cycle. The graph is
                left unchanged.

        """
        refs = set(references)
        self.check(name, refs)

        self.add_node(name)
        for source in list(self._predecessors[name]):
            del self._successors[source][name]
        self._predecessors[name] = {}

        overrides = edge_policies or {}
        for source in self._sorted(refs):
            self.add_node(source)
            edge = Edge(source=source, target=name, policy=overrides.get(source, policy))
            self._predecessors[name][source] = edge
            self._successors[source][name] = edge
        logger.debug("Registered %s <- %s", name, sorted(refs))

    def remove(self, name: str) -> None:
        """Delete a node and its edges in both directions."""
        if name not in self._rank:
            return
        for source in self._predecessors.pop(name):
            del self._successors[source][name]
        for target in self._successors.pop(name):
            del self._predecessors[target][name]
        del self._rank[name]
        logger.debug("Removed %s from graph", name)

    def clear(self) -> None:
        """Remove every node and edge."""
        self._predecessors.clear()
        self._successors.clear()
        self._rank.clear()
        self._counter = itertools.count()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def dependencies(self, name: str) -> list[str]:
        """Direct dependencies of a node (what it reads)."""
        return self._sorted(self._predecessors.get(name, {}))

    def dependents(self, name: str) -> list[str]:
        """Direct dependents of a node (what reads it)."""
        return self._sorted(self._successors.get(name, {}))

    def incoming(self, name: str) -> list[Edge]:
        """Edges into ``name``, ordered by source registration."""
        edges = self._predecessors.get(name, {})
        return [edges[source] for source in self._sorted(edges)]

    def edge(self, source: str, target: str) -> Edge | None:
        """Get the edge ``source -> target``, or None."""
        return self._successors.get(source, {}).get(target)

    def edges(self) -> list[Edge]:
        """All edges, grouped by target in registration order."""
        return [edge for target in self.nodes for edge in self.incoming(target)]

    def edge_set(self) -> frozenset[tuple[str, str]]:
        """The edge set as ``(source, target)`` pairs, for structural comparison."""
        return frozenset((e.source, e.target) for e in self.edges())

    def ancestors(self, name: str) -> frozenset[str]:
        """All transitive dependencies of a node."""
        visited: set[str] = set()
        stack = list(self._predecessors.get(name, {}))
        while stack:
            current = stack.pop()
            if current not in visited:
                visited.add(current)
                stack.extend(self._predecessors.get(current, {}))
        return frozenset(visited)

    def descendants(self, name: str) -> frozenset[str]:
        """All transitive dependents of a node."""
        visited: set[str] = set()
        stack = list(self._successors.get(name, {}))
        while stack:
            current = stack.pop()
            if current not in visited:
                visited.add(current)
                stack.extend(self._successors.get(current, {}))
        return frozenset(visited)

    def dependents_of(self, name: str) -> list[str]:
        """Everything transitively affected by a change to ``name``.

        Returns:
            The closure in topological order; independent variables are
            ordered by registration.

        """
        return self.closure_of([name])

    def closure_of(self, sources: Iterable[str], extra: Iterable[str] = ()) -> list[str]:
        """Topologically ordered dependents of several changed variables.

        The sources themselves are excluded from the result.

        Args:
            sources: Changed variables.
            extra: Variables to include in the ordering even when no source
                reaches them (redefined variables in a batch).

        """
        source_set = set(sources)
        extra_set = set(extra)
        affected: set[str] = set(extra_set)
        for name in source_set | extra_set:
            affected |= self.descendants(name)
        affected -= source_set - extra_set
        return self._order_subset(affected)

    def topological_order(self) -> list[str]:
        """All nodes, dependencies before dependents.

        Raises:
            ValueError: If the graph contains a cycle.

        """
        return self._order_subset(set(self._rank))

    def has_cycle(self) -> bool:
        """Check if the graph contains a cycle."""
        try:
            self.topological_order()
        except ValueError:
            return True
        return False

    # ------------------------------------------------------------------
    # Reaction gates
    # ------------------------------------------------------------------

    def set_policy(self, source: str, target: str, policy: ReactionPolicy | None) -> None:
        """Replace the policy on an existing edge.

        Raises:
            KeyError: If the edge does not exist.

        """
        edge = self.edge(source, target)
        if edge is None:
            msg = f"No edge {source} -> {target}"
            raise KeyError(msg)
        edge.policy = policy

    def gate_state(self) -> GateState:
        """Copy the current policy of every edge."""
        return {(e.source, e.target): e.policy for e in self.edges()}

    def restore_gate_state(self, state: Mapping[tuple[str, str], ReactionPolicy | None]) -> None:
        """Put back policies saved by :meth:`gate_state` on edges that still exist."""
        for (source, target), policy in state.items():
            edge = self.edge(source, target)
            if edge is not None:
                edge.policy = policy

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def dump(self) -> dict[str, list[str]]:
        """Adjacency description: each node mapped to its direct dependents."""
        return {name: self.dependents(name) for name in self.nodes}

    def to_dot(self, labels: Mapping[str, str] | None = None, constants: Iterable[str] = ()) -> str:
        """Render the graph in Graphviz DOT syntax.

        Args:
            labels: Optional node labels (defaults to the node name).
            constants: Nodes drawn filled (frozen variables).

        """
        frozen = set(constants)
        lines = ["digraph Dependencies {", "  rankdir=LR;", "  node [shape=box];", ""]
        for name in self.nodes:
            label = (labels or {}).get(name, name).replace('"', '\\"')
            style = "filled, fillcolor=lightgray" if name in frozen else "solid"
            lines.append(f'  "{name}" [label="{label}", style={style}];')
        lines.append("")
        for edge in self.edges():
            attrs = f' [label="{edge.policy}"]' if edge.policy is not None else ""
            lines.append(f'  "{edge.source}" -> "{edge.target}"{attrs};')
        lines.append("}")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _sorted(self, names: Iterable[str]) -> list[str]:
        return sorted(names, key=lambda n: (self.rank(n), n))

    def _order_subset(self, subset: set[str]) -> list[str]:
        successors = {n: [t for t in self._successors.get(n, {}) if t in subset] for n in subset}
        return topological_sort(successors, rank=self.rank)

    def _find_path(self, start: str, end: str) -> list[str] | None:
        """Find a path ``start -> ... -> end`` following successor edges."""
        parents: dict[str, str | None] = {start: None}
        stack = [start]
        while stack:
            current = stack.pop()
            if current == end:
                path = [current]
                while (parent := parents[path[-1]]) is not None:
                    path.append(parent)
                return path[::-1]
            for successor in self._sorted(self._successors.get(current, {})):
                if successor not in parents:
                    parents[successor] = current
                    stack.append(successor)
        return None

    def __len__(self) -> int:
        """Return the number of nodes in the graph."""
        return len(self._rank)

    def __contains__(self, node: object) -> bool:
        """Check if a node is in the graph."""
        return node in self._rank
