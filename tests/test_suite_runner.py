from __future__ import annotations

import signal
import sys
import time

import pytest

from conftest import PY
from proc_lifecycle import ExitedNormally, TerminatedBySignal, spawn
from proc_lifecycle.suite import CommandSpec, SuiteConfig, run_command, run_suite, wait_with_timeout

IGNORE_SIGINT = (
    "import signal, time\n"
    "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
    "time.sleep(30)\n"
)

IGNORE_SIGINT_AND_SIGTERM = (
    "import signal, time\n"
    "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "time.sleep(30)\n"
)

SPAWN_LINGERING_GRANDCHILD = (
    "import subprocess, sys, time\n"
    "subprocess.Popen([sys.executable, \"-c\", \"import time; time.sleep(8)\"])\n"
    "print(\"started\", flush=True)\n"
    "time.sleep(30)\n"
)


def _config(**commands: CommandSpec) -> SuiteConfig:
    return SuiteConfig(commands=dict(commands), timeout_seconds=20, grace_seconds=1)


def _python(name: str, script: str, stdin: bytes | None = None) -> CommandSpec:
    return CommandSpec(name, (PY, "-c", script), stdin)


def test_successful_command_has_no_diagnostics() -> None:
    report = run_command(_python("greet", "print('hi')"), timeout_seconds=20, grace_seconds=1)
    assert report.ok
    assert report.outcome == ExitedNormally(0)
    assert report.stdout.strip() == b"hi"


def test_stderr_lines_and_exit_code_become_diagnostics() -> None:
    script = "import sys; print('boom', file=sys.stderr); print('', file=sys.stderr); sys.exit(3)"
    report = run_command(_python("fail", script), timeout_seconds=20, grace_seconds=1)
    assert report.diagnostics == ["boom", "exited with code 3"]
    assert not report.timed_out


def test_stdin_payload_is_fed_to_the_command() -> None:
    script = "import sys; sys.stdout.write(sys.stdin.read().upper())"
    report = run_command(_python("upper", script, b"shout"), timeout_seconds=20, grace_seconds=1)
    assert report.stdout == b"SHOUT"
    assert report.ok


def test_launch_failure_is_reported_not_raised() -> None:
    spec = CommandSpec("ghost", ("/nonexistent/ghost-program",))
    report = run_command(spec, timeout_seconds=20, grace_seconds=1)
    assert report.outcome is None
    assert len(report.diagnostics) == 1
    assert report.diagnostics[0].startswith("cannot launch:")


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_timeout_interrupts_then_kills() -> None:
    report = run_command(_python("stuck", IGNORE_SIGINT), timeout_seconds=1.5, grace_seconds=0.3)
    assert report.timed_out
    assert report.outcome == TerminatedBySignal(15)
    assert report.diagnostics == ["timed out after 1.5s", "terminated by SIGTERM"]


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
def test_timeout_escalates_to_sigkill_when_sigterm_is_ignored() -> None:
    started = time.monotonic()
    report = run_command(_python("stubborn", IGNORE_SIGINT_AND_SIGTERM), timeout_seconds=1.5, grace_seconds=0.3)
    assert time.monotonic() - started < 5
    assert report.timed_out
    assert report.outcome == TerminatedBySignal(signal.SIGKILL)
    assert report.diagnostics == ["timed out after 1.5s", "terminated by SIGKILL"]


def test_timeout_bounds_output_held_open_by_a_grandchild() -> None:
    started = time.monotonic()
    report = run_command(_python("parent", SPAWN_LINGERING_GRANDCHILD), timeout_seconds=1.5, grace_seconds=0.3)
    assert time.monotonic() - started < 5
    assert report.timed_out
    assert report.stdout.strip() == b"started"


def test_zero_timeout_waits_without_limit() -> None:
    with spawn([PY, "-c", "import time; time.sleep(0.2)"]) as proc:
        outcome, timed_out = wait_with_timeout(proc.handle, 0, 1)
    assert outcome == ExitedNormally(0)
    assert not timed_out


def test_unknown_names_are_reported_in_selection_order() -> None:
    config = _config(greet=_python("greet", "print('hi')"))
    config.config_path = "ci/tools.toml"
    suite = run_suite(config, ["missing", "greet"])
    assert [report.name for report in suite.reports] == ["missing", "greet"]
    assert suite.reports[0].diagnostics == ["Cannot find missing in ci/tools.toml"]
    assert suite.error_count == 1
    assert not suite.ok


@pytest.mark.parametrize("async_", [False, True])
def test_suite_preserves_order_and_counts_errors(async_: bool) -> None:
    config = _config(
        slow=_python("slow", "import time; time.sleep(0.3)"),
        fail=_python("fail", "import sys; print('bad', file=sys.stderr); sys.exit(1)"),
        fast=_python("fast", "print('ok')"),
    )
    suite = run_suite(config, ["slow", "fail", "fast"], async_=async_)
    assert [report.name for report in suite.reports] == ["slow", "fail", "fast"]
    assert suite.reports[1].diagnostics == ["bad", "exited with code 1"]
    assert suite.error_count == 2


def test_suite_uses_environment_selection() -> None:
    config = _config(a=_python("a", "pass"), b=_python("b", "pass"))
    suite = run_suite(config, environ={"TESTS": "b"})
    assert [report.name for report in suite.reports] == ["b"]
    assert suite.ok
