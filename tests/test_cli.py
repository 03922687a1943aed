"""Tests for the anvil command line."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from anvil import load_snapshot_from_toml
from anvil._cli.main import app

runner = CliRunner()

SCRIPT = """\
# pricing
set price = 10
set qty = 3
set total = price * qty ~+5
craft
set price = 20
forge
"""


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """An empty project directory with its own pyproject.toml."""
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "demo"\n\n[tool.anvil]\nstate = "state.toml"\n')
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write_script(project: Path, text: str = SCRIPT) -> Path:
    path = project / "script.anvil"
    path.write_text(text)
    return path


class TestRun:
    """Tests for the run command."""

    def test_runs_script(self, project: Path) -> None:
        script = _write_script(project)

        result = runner.invoke(app, ["run", str(script)])

        assert result.exit_code == 0
        assert "Forged 1 change(s)" in result.stdout
        assert not (project / "state.toml").exists()

    def test_save_uses_configured_state(self, project: Path) -> None:
        script = _write_script(project)

        result = runner.invoke(app, ["run", str(script), "--save"])

        assert result.exit_code == 0
        snapshot = load_snapshot_from_toml(project / "state.toml")
        assert snapshot.values()["total"] == 60

    def test_state_is_loaded_before_script(self, project: Path) -> None:
        runner.invoke(app, ["run", str(_write_script(project)), "--save"])
        followup = _write_script(project, "set qty = 1\n")

        result = runner.invoke(app, ["run", str(followup), "--save"])

        assert result.exit_code == 0
        assert load_snapshot_from_toml(project / "state.toml").values()["total"] == 20

    def test_failing_script_exits_nonzero(self, project: Path) -> None:
        script = _write_script(project, "set a = 1\nset b = a / 0\nset c = 2\n")

        result = runner.invoke(app, ["run", str(script), "--save"])

        assert result.exit_code == 1
        assert "Script stopped at line 2" in result.output
        assert not (project / "state.toml").exists()

    def test_missing_script(self, project: Path) -> None:
        result = runner.invoke(app, ["run", str(project / "nope.anvil")])

        assert result.exit_code == 1
        assert "Script not found" in result.output

    def test_invalid_config(self, project: Path) -> None:
        (project / "pyproject.toml").write_text("[tool.anvil]\nbogus = 1\n")
        script = _write_script(project)

        result = runner.invoke(app, ["run", str(script)])

        assert result.exit_code == 1
        assert "Unknown [tool.anvil] key(s): bogus" in result.output


class TestInspectionCommands:
    """Tests for show and graph."""

    @pytest.fixture
    def saved(self, project: Path) -> Path:
        runner.invoke(app, ["run", str(_write_script(project)), "--save"])
        return project / "state.toml"

    def test_show(self, saved: Path) -> None:
        result = runner.invoke(app, ["show"])

        assert result.exit_code == 0
        assert "total" in result.stdout
        assert "60" in result.stdout

    def test_graph_dot(self, saved: Path) -> None:
        result = runner.invoke(app, ["graph", "--dot", "--state", str(saved)])

        assert result.exit_code == 0
        assert "digraph Dependencies {" in result.stdout
        assert '"price" -> "total" [label="~+4"];' in result.stdout

    def test_graph_tree(self, saved: Path) -> None:
        result = runner.invoke(app, ["graph"])

        assert result.exit_code == 0
        assert "price" in result.stdout
        assert "total" in result.stdout

    def test_corrupt_state(self, project: Path) -> None:
        (project / "state.toml").write_text("version = 7\n")

        result = runner.invoke(app, ["show"])

        assert result.exit_code == 1
        assert "Cannot load" in result.output
