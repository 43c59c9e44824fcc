from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_TOOLS_FILE = "tools.toml"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_GRACE_SECONDS = 2.0
TESTS_ENV_VAR = "TESTS"

_NAME_SEPARATORS = re.compile(r"[\s,]+")


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """One named external command of a suite.

    Example:
        ```python
        spec = CommandSpec("greet", ("python", "-c", "print('hi')"))
        ```
    """

    name: str
    argv: tuple[str, ...]
    stdin: bytes | None = None


def _read_tools_toml(path: Path) -> dict[str, Any]:
    """Read a tools file and return its raw tables.

    Example:
        ```python
        raw = _read_tools_toml(Path("tools.toml"))
        ```
    """
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid tools file {path}: {exc}") from exc
    for table in ("tools", "commands"):
        if not isinstance(raw.get(table, {}), dict):
            raise ValueError(f"'{table}' must be a TOML table")
    return raw


def _list_of_str(value: Any, field_name: str) -> list[str]:
    """Validate and normalize a list-of-strings field.

    Example:
        ```python
        names = _list_of_str(["greet", "fail"], "tests")
        ```
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"'{field_name}' must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"'{field_name}' must contain only strings")
        out.append(item)
    return out


def _non_negative(value: Any, field_name: str) -> float:
    """Validate a non-negative number of seconds.

    Example:
        ```python
        timeout = _non_negative(30, "timeout_seconds")
        ```
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{field_name}' must be a number")
    if value < 0:
        raise ValueError(f"'{field_name}' must not be negative")
    return float(value)


def _flag(value: Any, field_name: str) -> bool:
    """Validate a boolean field.

    Example:
        ```python
        color = _flag(True, "color")
        ```
    """
    if not isinstance(value, bool):
        raise ValueError(f"'{field_name}' must be true or false")
    return value


def _command_spec(name: str, raw: Any) -> CommandSpec:
    """Build a command from either an argv list or an inline table.

    Example:
        ```python
        spec = _command_spec("cat", {"argv": ["cat"], "stdin": "data"})
        ```
    """
    field_name = f"commands.{name}"
    stdin: bytes | None = None
    if isinstance(raw, dict):
        unknown = set(raw) - {"argv", "stdin"}
        if unknown:
            raise ValueError(f"'{field_name}' has unknown keys: {', '.join(sorted(unknown))}")
        stdin_raw = raw.get("stdin")
        if stdin_raw is not None:
            if not isinstance(stdin_raw, str):
                raise ValueError(f"'{field_name}.stdin' must be a string")
            stdin = stdin_raw.encode("utf-8")
        argv = _list_of_str(raw.get("argv"), f"{field_name}.argv")
    else:
        argv = _list_of_str(raw, field_name)
    if not argv:
        raise ValueError(f"'{field_name}' must name a program to run")
    return CommandSpec(name, tuple(argv), stdin)


def split_names(text: str) -> list[str]:
    """Split a whitespace- or comma-separated list of command names.

    Example:
        ```python
        split_names("greet, fail")  # ["greet", "fail"]
        ```
    """
    return [name for name in _NAME_SEPARATORS.split(text) if name]


@dataclass(slots=True)
class SuiteConfig:
    """Commands and run options loaded from a tools file.

    Example:
        ```python
        config = SuiteConfig.from_file("tools.toml")
        ```
    """

    commands: dict[str, CommandSpec] = field(default_factory=dict)
    tests: list[str] = field(default_factory=list)
    color: bool = True
    async_: bool = False
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    grace_seconds: float = DEFAULT_GRACE_SECONDS
    config_path: str | None = None

    @classmethod
    def from_file(cls, config_path: str | Path, *, required: bool = True) -> "SuiteConfig":
        """Create a config from a TOML tools file.

        A missing file is an error unless ``required`` is False, in which
        case built-in defaults are returned.

        Example:
            ```python
            config = SuiteConfig.from_file("tools.toml", required=False)
            ```
        """
        path = Path(config_path)
        if not path.exists():
            if required:
                raise ValueError(f"Tools file not found: {path}")
            return cls()
        raw = _read_tools_toml(path)
        tools = raw.get("tools", {})
        commands = {
            str(name): _command_spec(str(name), value)
            for name, value in raw.get("commands", {}).items()
        }
        return cls(
            commands=commands,
            tests=_list_of_str(tools.get("tests", []), "tools.tests"),
            color=_flag(tools.get("color", True), "tools.color"),
            async_=_flag(tools.get("async", False), "tools.async"),
            timeout_seconds=_non_negative(
                tools.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS), "tools.timeout_seconds"
            ),
            grace_seconds=_non_negative(
                tools.get("grace_seconds", DEFAULT_GRACE_SECONDS), "tools.grace_seconds"
            ),
            config_path=str(path),
        )

    def select(self, names: list[str], environ: dict[str, str] | None = None) -> list[str]:
        """Choose which command names to run.

        Order of precedence: explicit names, the TESTS environment variable,
        the ``tests`` list of the tools file, then every configured command.

        Example:
            ```python
            selected = config.select([], environ={"TESTS": "greet"})
            ```
        """
        env_names = split_names((environ or {}).get(TESTS_ENV_VAR, ""))
        selected = names or env_names or self.tests or list(self.commands)
        # A name runs once, at its first position.
        return list(dict.fromkeys(selected))
