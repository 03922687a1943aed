"""Tests for executing intents and scripts."""

import pytest

from anvil import Environment, PropagationReport, run_script
from anvil._shell import execute_line


@pytest.fixture
def env() -> Environment:
    return Environment()


class TestExecuteLine:
    """Tests for single commands."""

    def test_set_and_propagate(self, env: Environment) -> None:
        execute_line(env, "set price = 10")
        execute_line(env, "set total = price * 2")

        outcome = execute_line(env, "set price = 20")

        assert outcome is not None
        assert outcome.success
        assert outcome.message == "price = 20 (updated total)"
        assert isinstance(outcome.payload, PropagationReport)

    def test_constant_rhs_is_stored_as_literal(self, env: Environment) -> None:
        execute_line(env, "set items = [1, 2] + [3]")
        variable = env.variable("items")
        assert variable.value == (1, 2, 3)
        assert variable.expression is None

    def test_reference_rhs_is_stored_as_expression(self, env: Environment) -> None:
        execute_line(env, "set a = 1")
        execute_line(env, "set b: float = a / 4 ~+1")
        variable = env.variable("b")
        assert variable.expression == "a / 4"
        assert variable.declared_type == "float"
        assert str(variable.reaction) == "~+1"

    def test_ensure_unchanged(self, env: Environment) -> None:
        execute_line(env, "set a = 1")
        outcome = execute_line(env, "ensure a = 1")
        assert outcome is not None
        assert outcome.message == "a unchanged"

    def test_errors_become_failed_outcomes(self, env: Environment) -> None:
        outcome = execute_line(env, "set b = missing + 1")
        assert outcome is not None
        assert not outcome.success
        assert outcome.message == "Variable not found: missing"
        assert outcome.error is not None

    def test_parse_errors_become_failed_outcomes(self, env: Environment) -> None:
        outcome = execute_line(env, "explode")
        assert outcome is not None
        assert not outcome.success
        assert "Unknown command" in outcome.message

    def test_blank_line(self, env: Environment) -> None:
        assert execute_line(env, "  # nothing here") is None

    def test_propagation_failure_is_not_success(self, env: Environment) -> None:
        execute_line(env, "set a = 1")
        execute_line(env, "set inverse = 1 / a")
        outcome = execute_line(env, "set a = 0")
        assert outcome is not None
        assert not outcome.success
        assert "failed inverse" in outcome.message

    def test_show(self, env: Environment) -> None:
        execute_line(env, 'set name = "anvil"')
        outcome = execute_line(env, "show name")
        assert outcome is not None
        assert outcome.message == 'name = "anvil"'
        assert [v.name for v in outcome.payload] == ["name"]


class TestTransactionsFromShell:
    """Transaction verbs through the intent language."""

    def test_staged_then_forged(self, env: Environment) -> None:
        execute_line(env, "craft batch")
        staged = execute_line(env, "set a = 1")
        forged = execute_line(env, "forge")

        assert staged is not None
        assert staged.message == "Staged set a = 1"
        assert forged is not None
        assert forged.success
        assert forged.message == "Forged 1 change(s)"
        assert env.get("a") == 1

    def test_forge_failure_rolls_back(self, env: Environment) -> None:
        execute_line(env, "craft")
        execute_line(env, "set a = 1")
        execute_line(env, 'set b = a + "oops"')

        outcome = execute_line(env, "forge")

        assert outcome is not None
        assert not outcome.success
        assert outcome.message.startswith("Forge failed at b: ")
        assert outcome.message.endswith("; rolled back")
        assert "a" not in env

    def test_anneal_and_quench_messages(self, env: Environment) -> None:
        execute_line(env, "craft")
        for line in ["set a = 1", "set b = 2", "set c = 3"]:
            execute_line(env, line)

        annealed = execute_line(env, "anneal")
        quenched = execute_line(env, "quench")

        assert annealed is not None
        assert annealed.message == "Annealed a (2 pending)"
        assert quenched is not None
        assert quenched.message == "Quenched b, c (0 pending)"

    def test_verb_without_transaction(self, env: Environment) -> None:
        outcome = execute_line(env, "smelt")
        assert outcome is not None
        assert not outcome.success
        assert outcome.message == "No active transaction"


class TestRunScript:
    """Tests for run_script."""

    def test_runs_every_line(self, env: Environment) -> None:
        script = [
            "# pricing",
            "set price = 10",
            "set qty = 3",
            "",
            "set total = price * qty",
            "set price = 20",
        ]

        result = run_script(env, script)

        assert result.success
        assert [number for number, _ in result.outcomes] == [2, 3, 5, 6]
        assert env.get("total") == 60

    def test_stops_at_first_failure(self, env: Environment) -> None:
        script = [
            "set a = 1",
            "set b = a / 0",
            "set c = 3",
        ]

        result = run_script(env, script)

        assert not result.success
        assert result.failed_line == 2
        assert len(result.outcomes) == 2
        assert "c" not in env


class TestPreviewCommands:
    """what-if and propagations through the intent language."""

    def test_what_if_leaves_environment_untouched(self, env: Environment) -> None:
        execute_line(env, "set price = 10")
        execute_line(env, "set total = price * 2")

        outcome = execute_line(env, "what-if price = 3, tax = total / 2")

        assert outcome is not None
        assert outcome.success
        assert outcome.message == "What-if: 3 variable(s) affected"
        assert [(e.name, e.new_value) for e in outcome.payload] == [("price", 3), ("tax", 3.0), ("total", 6)]
        assert env.get("total") == 20
        assert "tax" not in env

    def test_propagations(self, env: Environment) -> None:
        execute_line(env, "set a = 1")
        execute_line(env, "set b = a + 1")

        outcome = execute_line(env, "propagations 1")

        assert outcome is not None
        assert outcome.message == "1 propagation(s)"
        assert [e.sources for e in outcome.payload] == [("b",)]
