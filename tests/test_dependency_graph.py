"""Tests for DependencyGraph and graph algorithms."""

import pytest

from anvil import CycleDetected, ReactionPolicy
from anvil._graph import DependencyGraph, topological_sort


def _chain() -> DependencyGraph:
    # a <- b <- c
    graph = DependencyGraph()
    graph.add_node("a")
    graph.register("b", ["a"])
    graph.register("c", ["b"])
    return graph


def _diamond() -> DependencyGraph:
    # a <- b, a <- c, {b, c} <- d
    graph = DependencyGraph()
    graph.add_node("a")
    graph.register("b", ["a"])
    graph.register("c", ["a"])
    graph.register("d", ["b", "c"])
    return graph


class TestTopologicalSort:
    """Tests for the topological_sort algorithm."""

    def test_empty_graph(self) -> None:
        assert topological_sort({}) == []

    def test_linear_chain(self) -> None:
        # a -> b -> c (c depends on b, b depends on a)
        assert topological_sort({"a": ["b"], "b": ["c"], "c": []}) == ["a", "b", "c"]

    def test_diamond_dependency(self) -> None:
        result = topological_sort({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []})
        assert result[0] == "a"
        assert result[-1] == "d"

    def test_rank_breaks_ties(self) -> None:
        rank = {"x": 2, "y": 0, "z": 1}
        assert topological_sort({"x": [], "y": [], "z": []}, rank=rank.__getitem__) == ["y", "z", "x"]

    def test_rank_never_overrides_dependencies(self) -> None:
        rank = {"a": 5, "b": 0}
        assert topological_sort({"a": ["b"], "b": []}, rank=rank.__getitem__) == ["a", "b"]

    def test_cycle_detection(self) -> None:
        with pytest.raises(ValueError, match="Cycle"):
            topological_sort({"a": ["b"], "b": ["a"]})

    def test_self_loop_detection(self) -> None:
        with pytest.raises(ValueError, match="Cycle"):
            topological_sort({"a": ["a"]})

    def test_works_with_tuples(self) -> None:
        assert topological_sort({("a", 1): [("b", 2)], ("b", 2): []}) == [("a", 1), ("b", 2)]


class TestDependencyGraphRegister:
    """Tests for registering and removing edges."""

    def test_register_creates_edges_both_ways(self) -> None:
        graph = _chain()
        assert graph.dependencies("b") == ["a"]
        assert graph.dependents("a") == ["b"]

    def test_register_replaces_old_edges(self) -> None:
        graph = _chain()
        graph.add_node("x")
        graph.register("c", ["x"])
        assert graph.dependencies("c") == ["x"]
        assert graph.dependents("b") == []
        assert graph.dependents("x") == ["c"]

    def test_register_with_no_references_makes_a_source(self) -> None:
        graph = _chain()
        graph.register("b", [])
        assert graph.dependencies("b") == []
        assert graph.dependents("a") == []

    def test_remove_deletes_edges_in_both_directions(self) -> None:
        graph = _chain()
        graph.remove("b")
        assert "b" not in graph
        assert graph.dependents("a") == []
        assert graph.dependencies("c") == []

    def test_policy_is_stored_on_each_edge(self) -> None:
        graph = DependencyGraph()
        graph.add_node("a")
        graph.add_node("b")
        graph.register("c", ["a", "b"], ReactionPolicy.limit(2), {"b": None})
        assert graph.edge("a", "c").policy == ReactionPolicy.limit(2)
        assert graph.edge("b", "c").policy is None


class TestDependencyGraphCycles:
    """Cycles are rejected and leave the graph untouched."""

    def test_direct_cycle(self) -> None:
        graph = _chain()
        before = graph.edge_set()

        with pytest.raises(CycleDetected) as exc_info:
            graph.register("a", ["c"])

        assert exc_info.value.path == ("a", "b", "c", "a")
        assert graph.edge_set() == before

    def test_self_reference(self) -> None:
        graph = _chain()
        with pytest.raises(CycleDetected, match="b -> b"):
            graph.register("b", ["b"])

    def test_check_is_a_dry_run(self) -> None:
        graph = _chain()
        graph.check("x", ["c"])
        assert "x" not in graph
        with pytest.raises(CycleDetected):
            graph.check("a", ["c"])

    def test_failed_register_keeps_previous_edges(self) -> None:
        graph = _diamond()
        before = graph.edge_set()
        with pytest.raises(CycleDetected):
            graph.register("b", ["a", "d"])
        assert graph.edge_set() == before
        assert not graph.has_cycle()


class TestDependencyGraphOrdering:
    """Tests for the closure and topological order queries."""

    def test_dependents_of_chain(self) -> None:
        assert _chain().dependents_of("a") == ["b", "c"]

    def test_dependents_of_excludes_source(self) -> None:
        assert "b" not in _chain().dependents_of("b")

    def test_diamond_lists_join_once_after_both_branches(self) -> None:
        order = _diamond().dependents_of("a")
        assert order == ["b", "c", "d"]

    def test_ties_follow_registration_order(self) -> None:
        graph = DependencyGraph()
        graph.add_node("root")
        graph.register("zeta", ["root"])
        graph.register("alpha", ["root"])
        assert graph.dependents_of("root") == ["zeta", "alpha"]

    def test_rank_is_registration_index(self) -> None:
        graph = _chain()
        assert [graph.rank(n) for n in ["a", "b", "c"]] == [0, 1, 2]
        assert graph.rank("unknown") == len(graph)
        assert graph.dependencies("c") == ["b"]

    def test_closure_of_several_sources(self) -> None:
        graph = _diamond()
        assert graph.closure_of(["b", "c"]) == ["d"]

    def test_closure_with_extra_includes_unreached(self) -> None:
        graph = _chain()
        graph.add_node("lonely")
        assert graph.closure_of(["a"], extra=["lonely"]) == ["b", "c", "lonely"]

    def test_ancestors_and_descendants(self) -> None:
        graph = _diamond()
        assert graph.ancestors("d") == frozenset({"a", "b", "c"})
        assert graph.descendants("a") == frozenset({"b", "c", "d"})

    def test_topological_order_covers_all_nodes(self) -> None:
        assert _diamond().topological_order() == ["a", "b", "c", "d"]


class TestDependencyGraphGates:
    """Tests for gate checkpoints and export."""

    def test_gate_state_round_trip(self) -> None:
        graph = DependencyGraph()
        graph.add_node("a")
        graph.register("b", ["a"], ReactionPolicy.limit(3))
        saved = graph.gate_state()

        graph.set_policy("a", "b", ReactionPolicy.limit(0))
        graph.restore_gate_state(saved)

        assert graph.edge("a", "b").policy == ReactionPolicy.limit(3)

    def test_set_policy_on_missing_edge(self) -> None:
        with pytest.raises(KeyError):
            _chain().set_policy("a", "c", None)

    def test_dump(self) -> None:
        assert _chain().dump() == {"a": ["b"], "b": ["c"], "c": []}

    def test_to_dot(self) -> None:
        graph = DependencyGraph()
        graph.add_node("a")
        graph.register("b", ["a"], ReactionPolicy.delay(1))

        dot = graph.to_dot(labels={"b": "b = a"}, constants=["a"])

        assert dot.startswith("digraph Dependencies {")
        assert '"a" [label="a", style=filled, fillcolor=lightgray];' in dot
        assert '"a" -> "b" [label="~-1"];' in dot
