"""Configuration loading from pyproject.toml."""

import tomllib
from dataclasses import dataclass
from pathlib import Path

from anvil._errors import ConfigError
from anvil._transaction import DEFAULT_HISTORY_LIMIT


@dataclass(slots=True, frozen=True)
class AnvilConfig:
    """Configuration loaded from the ``[tool.anvil]`` table of pyproject.toml.

    All relative paths are resolved from the project root (directory containing pyproject.toml).

    Attributes:
        state: Snapshot file the CLI loads from and saves to by default.
        history_limit: Capacity of the finished-transaction log.
        project_root: Directory containing the pyproject.toml, if one was found.

    """

    state: Path | None = None
    history_limit: int = DEFAULT_HISTORY_LIMIT
    project_root: Path | None = None


def find_pyproject_toml(start_dir: Path | None = None) -> Path | None:
    """Find pyproject.toml by walking up from start_dir.

    Args:
        start_dir: Starting directory. Defaults to current working directory.

    Returns:
        Path to pyproject.toml if found, None otherwise.

    """
    current = (start_dir or Path.cwd()).resolve()
    while True:
        candidate = current / "pyproject.toml"
        if candidate.is_file():
            return candidate
        if current.parent == current:
            return None
        current = current.parent


def load_config(pyproject_path: Path) -> AnvilConfig:
    """Load and validate [tool.anvil] config from pyproject.toml.

    Raises:
        ConfigError: If the file is not valid TOML or a key has the wrong type.

    """
    project_root = pyproject_path.parent

    with pyproject_path.open("rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            msg = f"Invalid TOML in {pyproject_path}: {e}"
            raise ConfigError(msg) from e

    section = data.get("tool", {}).get("anvil", {})
    if not isinstance(section, dict):
        msg = "Invalid [tool.anvil]: expected a table"
        raise ConfigError(msg)

    unknown = sorted(set(section) - {"state", "history_limit"})
    if unknown:
        msg = f"Unknown [tool.anvil] key(s): {', '.join(unknown)}"
        raise ConfigError(msg)

    state: Path | None = None
    if "state" in section:
        state_value = section["state"]
        if not isinstance(state_value, str):
            msg = "Invalid [tool.anvil].state: expected string path"
            raise ConfigError(msg)
        state = Path(state_value)
        if not state.is_absolute():
            state = project_root / state

    history_limit = DEFAULT_HISTORY_LIMIT
    if "history_limit" in section:
        limit_value = section["history_limit"]
        # bool is an int subclass; reject it explicitly
        if isinstance(limit_value, bool) or not isinstance(limit_value, int) or limit_value < 1:
            msg = "Invalid [tool.anvil].history_limit: expected a positive integer"
            raise ConfigError(msg)
        history_limit = limit_value

    return AnvilConfig(state=state, history_limit=history_limit, project_root=project_root)


def get_config(start_dir: Path | None = None) -> AnvilConfig:
    """Get config from pyproject.toml in the start directory or its parents.

    Returns:
        AnvilConfig (defaults if there is no pyproject.toml or no [tool.anvil] table)

    """
    pyproject_path = find_pyproject_toml(start_dir)
    if pyproject_path is None:
        return AnvilConfig()
    return load_config(pyproject_path)
