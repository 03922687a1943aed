"""Tests for transactions: craft, temper, inspect, anneal, quench, forge and smelt."""

import pytest

from anvil import (
    ConstantViolation,
    CycleDetected,
    Environment,
    EvalError,
    Expression,
    ReactionPolicy,
    TransactionState,
    TransactionStateError,
)


@pytest.fixture
def env() -> Environment:
    env = Environment()
    env.set("price", 10)
    env.set("qty", 3)
    env.set("total", Expression("price * qty"))
    return env


class TestCraft:
    """Opening a transaction and staging changes."""

    def test_staging_leaves_store_untouched(self, env: Environment) -> None:
        env.craft("restock")
        result = env.set("price", 20)
        env.set("discount", 5)

        assert result is None
        assert env.get("price") == 10
        assert "discount" not in env
        assert len(env.transaction.pending_changes) == 2  # type: ignore[union-attr]

    def test_craft_while_active_rejected(self, env: Environment) -> None:
        env.craft()
        with pytest.raises(TransactionStateError, match="already active"):
            env.craft()

    def test_staging_frozen_variable_rejected(self, env: Environment) -> None:
        env.freeze("qty")
        env.craft()
        with pytest.raises(ConstantViolation):
            env.set("qty", 4)
        assert env.transaction.pending_changes == []  # type: ignore[union-attr]

    def test_staging_checks_expression_syntax(self, env: Environment) -> None:
        env.craft()
        with pytest.raises(EvalError, match="Invalid expression"):
            env.set("total", Expression("price *"))

    def test_status(self, env: Environment) -> None:
        assert env.transaction_status() == "No active transaction"
        env.craft("label")
        env.set("price", 1)
        status = env.transaction_status()
        assert status.startswith("Active transaction ")
        assert "'label' (active): 1 pending change(s)" in status

    @pytest.mark.parametrize("verb", ["temper", "inspect", "anneal", "quench", "forge", "smelt"])
    def test_verbs_require_active_transaction(self, env: Environment, verb: str) -> None:
        with pytest.raises(TransactionStateError, match="No active transaction"):
            getattr(env, verb)()


class TestTemper:
    """Previewing the pending batch."""

    def test_preview_includes_propagated_dependents(self, env: Environment) -> None:
        env.craft()
        env.set("price", 20)

        entries = env.temper()

        assert [(e.name, e.old_value, e.new_value, e.propagated) for e in entries] == [
            ("price", 10, 20, False),
            ("total", 30, 60, True),
        ]
        assert all(e.changed for e in entries)
        assert env.get("total") == 30

    def test_preview_reports_errors(self, env: Environment) -> None:
        env.craft()
        env.set("total", Expression('price + "oops"'))

        [entry] = env.temper()

        assert entry.new_value is None
        assert entry.error is not None
        assert "Cannot add" in entry.error
        assert not entry.changed

    def test_preview_of_new_variable(self, env: Environment) -> None:
        env.craft()
        env.set("tax", Expression("total / 10"))

        [entry] = env.temper()

        assert entry.old_value is None
        assert entry.new_value == 3.0
        assert "tax" not in env

    def test_preview_stopped_by_cycle(self) -> None:
        env = Environment()
        env.craft()
        env.set("x", Expression("y + 1"))
        env.set("y", Expression("x + 1"))

        entries = {e.name: e.error for e in env.temper()}

        assert entries["y"] is not None
        assert entries["y"].startswith("Circular dependency")
        assert entries["x"] == "Not evaluated: batch stopped at 'y'"
        assert "x" not in env.graph


class TestInspect:
    """Describing the active transaction."""

    def test_summary(self, env: Environment) -> None:
        env.craft("pricing")
        env.set("price", 12)
        env.set("tax", Expression("total * 0.2"), reaction="~+1")
        env.set("price", 15)

        summary = env.inspect()

        assert summary.label == "pricing"
        assert summary.state is TransactionState.ACTIVE
        assert summary.pending_count == 3
        assert [c.name for c in summary.changes] == ["tax", "price"]
        assert summary.changes[0].staged == "total * 0.2 ~+1"
        assert summary.changes[0].dependencies == ("total",)
        assert summary.changes[0].created
        assert summary.changes[1].old_value == 10
        assert summary.changes[1].staged == "15"
        assert summary.created_variables == ("tax",)


class TestAnneal:
    """Incremental, non-atomic application."""

    def test_annealed_change_survives_smelt(self) -> None:
        env = Environment()
        env.craft()
        env.set("a", 1)
        env.set("b", 2)

        result = env.anneal(1)
        env.smelt()

        assert result.applied == ("a",)
        assert result.remaining == 1
        assert env.get("a") == 1
        assert "b" not in env

    def test_anneal_propagates(self, env: Environment) -> None:
        env.craft()
        env.set("qty", 4)

        result = env.anneal()

        assert result.success
        assert result.reports[0].updated == ("total",)
        assert env.get("total") == 40
        assert env.inspect().annealed == ("qty",)

    def test_quench_stops_at_failure(self) -> None:
        env = Environment()
        env.craft()
        env.set("a", 1)
        env.set("b", Expression("a / 0"))
        env.set("c", 3)

        result = env.quench()

        assert result.applied == ("a",)
        assert result.failure is not None
        assert result.failure.name == "b"
        assert result.remaining == 2
        assert env.get("a") == 1
        assert "b" not in env
        assert [c.name for c in env.transaction.pending_changes] == ["b", "c"]  # type: ignore[union-attr]

    def test_propagation_failure_keeps_change_applied(self) -> None:
        env = Environment()
        env.set("x", 2)
        env.set("inverse", Expression("10 / x"))
        env.craft()
        env.set("x", 0)
        env.set("y", 1)

        result = env.quench()

        assert result.applied == ("x",)
        assert result.failure is not None
        assert result.failure.name == "inverse"
        assert result.remaining == 1
        assert env.get("x") == 0

    def test_steps_must_be_positive(self, env: Environment) -> None:
        env.craft()
        with pytest.raises(ValueError, match="positive"):
            env.anneal(0)


class TestForge:
    """Atomic commit."""

    def test_forge_commits_everything(self, env: Environment) -> None:
        tx = env.craft()
        env.set("price", 20)
        env.set("qty", 2)

        result = env.forge()

        assert result.success
        assert result.applied == ("price", "qty")
        assert result.report is not None
        assert result.report.updated == ("total",)
        assert env.get("total") == 40
        assert tx.state is TransactionState.COMMITTED
        assert not env.in_transaction

    def test_failure_restores_previous_state(self, env: Environment) -> None:
        before = env.snapshot()
        env.craft()
        env.set("a", 1)
        env.set("b", Expression('a + "oops"'))

        result = env.forge()

        assert not result.success
        assert result.failure is not None
        assert result.failure.name == "b"
        assert isinstance(result.failure.error, EvalError)
        assert env.snapshot().values() == before.values()
        assert "a" not in env
        assert "a" not in env.graph
        assert result.transaction.state is TransactionState.ABORTED
        assert not env.in_transaction

    def test_failure_in_dependent_rolls_back(self, env: Environment) -> None:
        env.set("inverse", Expression("100 / qty"))
        env.craft()
        env.set("price", 1)
        env.set("qty", 0)

        result = env.forge()

        assert result.failure is not None
        assert result.failure.name == "inverse"
        assert env.get("price") == 10
        assert env.get("total") == 30

    def test_expressions_see_staged_values(self) -> None:
        env = Environment()
        env.craft()
        env.set("doubled", Expression("base * 2"))
        env.set("base", Expression("seed + 1"))
        env.set("seed", 4)

        result = env.forge()

        assert result.success
        assert env.get("base") == 5
        assert env.get("doubled") == 10
        assert env.graph.dependencies("doubled") == ["base"]

    def test_last_staged_change_wins(self, env: Environment) -> None:
        env.craft()
        env.set("price", 1)
        env.set("price", 2)

        result = env.forge()

        assert result.applied == ("price",)
        assert env.get("price") == 2
        assert env.variable("price").update_count == 1

    def test_cycle_inside_batch(self) -> None:
        env = Environment()
        env.craft()
        env.set("x", Expression("y + 1"))
        env.set("y", Expression("x + 1"))

        result = env.forge()

        assert result.failure is not None
        assert isinstance(result.failure.error, CycleDetected)
        assert len(env) == 0
        assert len(env.graph) == 0

    @pytest.mark.parametrize("staging", [("a", "b"), ("b", "a")])
    def test_rewiring_through_old_edges_is_not_a_cycle(self, staging: tuple[str, str]) -> None:
        env = Environment()
        env.set("x", 1)
        env.set("a", 0)
        env.set("b", Expression("a + 1"))
        env.set("c", Expression("b"))
        definitions = {"a": Expression("c"), "b": Expression("5 + x")}
        env.craft()
        for name in staging:
            env.set(name, definitions[name])

        preview = {e.name: e for e in env.temper()}
        result = env.forge()

        assert preview["a"].error is None
        assert preview["a"].new_value == 6
        assert result.success
        assert env.get("b") == 6
        assert env.get("c") == 6
        assert env.get("a") == 6
        assert env.graph.dependencies("a") == ["c"]
        assert env.graph.dependents("a") == []

    def test_satisfied_ensure_is_skipped(self, env: Environment) -> None:
        env.craft()
        env.ensure("price", 10)
        env.set("qty", 4)

        result = env.forge()

        assert result.applied == ("qty",)
        assert env.variable("price").update_count == 0

    def test_annealed_changes_survive_failed_forge(self) -> None:
        env = Environment()
        env.craft()
        env.set("a", 1)
        env.anneal()
        env.set("b", Expression("a / 0"))

        result = env.forge()

        assert not result.success
        assert env.get("a") == 1
        assert "b" not in env


class TestSmelt:
    """Discarding a transaction."""

    def test_smelt_discards_staged_changes(self, env: Environment) -> None:
        env.craft()
        env.set("price", 99)
        env.set("extra", 1)

        tx = env.smelt()

        assert tx.state is TransactionState.ABORTED
        assert env.get("price") == 10
        assert "extra" not in env
        assert not env.in_transaction

    def test_smelt_undoes_freeze(self, env: Environment) -> None:
        env.craft()
        env.freeze("price")
        env.smelt()
        assert not env.variable("price").is_constant

    def test_smelt_undoes_freeze_after_anneal(self, env: Environment) -> None:
        env.craft()
        env.freeze("price")
        env.set("extra", 2)
        env.anneal()

        env.smelt()

        assert not env.variable("price").is_constant
        assert env.get("extra") == 2

    def test_anneal_keeps_propagated_values_and_counters(self) -> None:
        env = Environment()
        env.set("a", 1)
        env.set("b", Expression("a * 10"), reaction="~+2")
        env.set("other", 0)
        env.craft()
        env.set("a", 2)
        env.set("other", 5)
        env.anneal()

        env.smelt()

        assert env.get("a") == 2
        assert env.get("b") == 20
        assert env.get("other") == 0
        assert env.graph.edge("a", "b").policy == ReactionPolicy.limit(1)  # type: ignore[union-attr]


class TestHistory:
    """The bounded log of finished transactions."""

    def test_log_is_bounded(self) -> None:
        env = Environment(history_limit=2)
        for label in ["one", "two", "three"]:
            env.craft(label)
            env.smelt()

        assert [tx.label for tx in env.transaction_history()] == ["two", "three"]
        assert [tx.label for tx in env.transaction_history(1)] == ["three"]

    def test_history_records_outcome(self, env: Environment) -> None:
        env.craft("ok")
        env.set("price", 1)
        env.forge()
        env.craft("bad")
        env.set("price", Expression("1 / 0"))
        env.forge()

        states = [tx.state for tx in env.transaction_history()]
        assert states == [TransactionState.COMMITTED, TransactionState.ABORTED]
        assert env.transaction_history()[-1].failure is not None

    def test_limit_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="history_limit"):
            Environment(history_limit=0)


class TestWhatIf:
    """Previewing hypothetical assignments."""

    def test_preview_outside_transaction(self, env: Environment) -> None:
        entries = env.what_if({"price": 20})

        assert [(e.name, e.old_value, e.new_value, e.propagated) for e in entries] == [
            ("price", 10, 20, False),
            ("total", 30, 60, True),
        ]
        assert env.get("price") == 10
        assert env.get("total") == 30
        assert not env.in_transaction

    def test_expression_values_stay_expressions(self, env: Environment) -> None:
        entries = {e.name: e.new_value for e in env.what_if({"qty": Expression("price")})}

        assert entries == {"qty": 10, "total": 100}
        assert env.variable("qty").expression is None

    def test_layered_on_pending_batch(self, env: Environment) -> None:
        env.craft()
        env.set("price", 20)

        entries = {e.name: e.new_value for e in env.what_if({"qty": 2})}

        assert entries == {"price": 20, "qty": 2, "total": 40}
        assert len(env.transaction.pending_changes) == 1  # type: ignore[union-attr]

    def test_scenario_overrides_staged_change(self, env: Environment) -> None:
        env.craft()
        env.set("price", 20)

        entries = {e.name: e.new_value for e in env.what_if({"price": 5})}

        assert entries == {"price": 5, "total": 15}

    def test_errors_are_reported(self, env: Environment) -> None:
        [entry] = env.what_if({"total": Expression('price + "oops"')})

        assert entry.error is not None
        assert "Cannot add" in entry.error
        assert env.get("total") == 30

    def test_frozen_variable(self, env: Environment) -> None:
        env.freeze("price")

        [entry] = env.what_if({"price": 1})

        assert entry.error == "Variable 'price' is frozen"

    def test_leaves_propagation_history_alone(self, env: Environment) -> None:
        before = len(env.propagation_history())
        env.what_if({"price": 1})
        assert len(env.propagation_history()) == before
