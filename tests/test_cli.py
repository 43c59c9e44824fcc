from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from conftest import PY
from plr import cli


def _tools(tmp_path: Path, commands: dict[str, str], tests: list[str] | None = None) -> Path:
    lines = ["[tools]", "color = false", "timeout_seconds = 20"]
    if tests is not None:
        lines.append(f"tests = {json.dumps(tests)}")
    lines.append("[commands]")
    for name, script in commands.items():
        lines.append(f"{name} = [{json.dumps(PY)}, \"-c\", {json.dumps(script)}]")
    path = tmp_path / "tools.toml"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TESTS", raising=False)


def test_cli_passing_commands_exit_zero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _tools(tmp_path, {"greet": "print('hi')"})
    code = cli.main(["--tools", str(path)])
    err = capsys.readouterr().err
    assert code == 0
    assert "There are 0 errors" in err


def test_cli_reports_diagnostics_per_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _tools(
        tmp_path,
        {
            "greet": "print('hi')",
            "fail": "import sys; print('broken', file=sys.stderr); sys.exit(2)",
        },
    )
    code = cli.main(["--tools", str(path), "--async"])
    err = capsys.readouterr().err
    assert code == 1
    assert "fail" in err and "broken" in err
    assert "exited with code 2" in err
    assert "There are 2 errors" in err


def test_cli_report_lines_keep_tab_and_never_wrap(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    long_line = "x" * 150
    script = f"import sys; print('broken', file=sys.stderr); print('{long_line}', file=sys.stderr)"
    path = _tools(tmp_path, {"fail": script})
    code = cli.main(["--tools", str(path)])
    err = capsys.readouterr().err
    assert code == 1
    assert err.splitlines() == [
        "fail\tbroken",
        f"fail\t{long_line}",
        "There are 2 errors",
    ]


def test_cli_unknown_name_is_an_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _tools(tmp_path, {"greet": "print('hi')"})
    code = cli.main(["--tools", str(path), "nope"])
    err = capsys.readouterr().err
    assert code == 1
    assert "Cannot find nope" in err


def test_cli_environment_selection(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    path = _tools(tmp_path, {"greet": "print('hi')", "fail": "raise SystemExit(1)"})
    monkeypatch.setenv("TESTS", "greet")
    code = cli.main(["--tools", str(path)])
    assert code == 0
    assert "There are 0 errors" in capsys.readouterr().err


def test_cli_print_lists_selection_without_running(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _tools(tmp_path, {"greet": "print('hi')", "fail": "raise SystemExit(1)"}, tests=["fail"])
    code = cli.main(["--tools", str(path), "--print"])
    err = capsys.readouterr().err
    assert code == 0
    assert "Selected Commands" in err
    assert "fail" in err
    assert "There are" not in err


def test_cli_no_commands_prints_help(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.chdir(tmp_path)
    code = cli.main([])
    captured = capsys.readouterr()
    assert code == 0
    assert "No commands were found" in captured.err
    assert "Quick Examples:" in captured.out


def test_cli_missing_tools_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--tools", str(tmp_path / "absent.toml")])
    assert code == 2
    assert "Tools file not found" in capsys.readouterr().err


def test_cli_rejects_negative_timeout(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = _tools(tmp_path, {"greet": "print('hi')"})
    code = cli.main(["--tools", str(path), "--timeout-seconds", "-1"])
    assert code == 2
    assert "must not be negative" in capsys.readouterr().err


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "plr --print" in output
    assert "TESTS environment variable" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    output = capsys.readouterr().out
    assert output == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "proc-lifecycle suite runner" in help_text


def test_cli_load_config_applies_overrides(tmp_path: Path) -> None:
    path = _tools(tmp_path, {"greet": "print('hi')"})
    args = cli.build_parser().parse_args(["--tools", str(path), "--color", "-a", "--timeout-seconds", "3"])
    config = cli.load_config(args)
    assert config.color is True
    assert config.async_ is True
    assert config.timeout_seconds == 3.0
