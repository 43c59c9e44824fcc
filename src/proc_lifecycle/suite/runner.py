from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Mapping

from ..errors import LaunchFailed, SignalError
from ..outcome import ExitOutcome
from ..process import kill, poll, quit, spawn, wait
from ..types import ProcessHandle
from .config import DEFAULT_TOOLS_FILE, CommandSpec, SuiteConfig

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"
POLL_INTERVAL_SECONDS = 0.05
READ_CHUNK_SIZE = 65536


@dataclass(slots=True)
class CommandReport:
    """Result of running one named command.

    Example:
        ```python
        report = CommandReport("greet", ExitedNormally(0), stdout=b"hi\\n")
        ```
    """

    name: str
    outcome: ExitOutcome | None
    stdout: bytes = b""
    diagnostics: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        """Return True when the command produced no diagnostics.

        Example:
            ```python
            if not report.ok:
                print(report.diagnostics)
            ```
        """
        return not self.diagnostics


@dataclass(slots=True)
class SuiteReport:
    """Reports for every selected command, in selection order.

    Example:
        ```python
        suite = SuiteReport([report])
        ```
    """

    reports: list[CommandReport]

    @property
    def error_count(self) -> int:
        """Return the total number of diagnostic lines.

        Example:
            ```python
            print(f"There are {suite.error_count} errors")
            ```
        """
        return sum(len(report.diagnostics) for report in self.reports)

    @property
    def ok(self) -> bool:
        """Return True when no command reported a diagnostic.

        Example:
            ```python
            raise SystemExit(0 if suite.ok else 1)
            ```
        """
        return self.error_count == 0


class _Pump:
    """Move bytes between a child stream and memory on a background thread.

    The pump owns its stream and closes it when done, so an abandoned pump
    never races the caller for the descriptor.

    Example:
        ```python
        pump = _Pump.reader(proc.stdout)
        data = pump.join(timeout=2)
        ```
    """

    def __init__(self, target: Callable[[list[bytes]], None], name: str) -> None:
        """Start the thread running ``target``.

        Example:
            ```python
            pump = _Pump(lambda chunks: None, "noop")
            ```
        """
        self._chunks: list[bytes] = []
        self._thread = threading.Thread(target=target, args=(self._chunks,), name=name, daemon=True)
        self._thread.start()

    @classmethod
    def reader(cls, stream: BinaryIO) -> "_Pump":
        """Read a stream chunk by chunk until end-of-file.

        Example:
            ```python
            pump = _Pump.reader(proc.stderr)
            ```
        """

        def _drain(chunks: list[bytes]) -> None:
            """Collect raw chunks, then close the stream.

            Example:
                ```python
                _drain([])
                ```
            """
            fd = stream.fileno()
            try:
                while True:
                    chunk = os.read(fd, READ_CHUNK_SIZE)
                    if not chunk:
                        return
                    chunks.append(chunk)
            except OSError as exc:
                logger.debug(f"Stopped reading child output: {exc}")
            finally:
                stream.close()

        return cls(_drain, "plr-read")

    @classmethod
    def writer(cls, stream: BinaryIO, payload: bytes | None) -> "_Pump":
        """Write an optional payload, then close the stream to signal EOF.

        Example:
            ```python
            pump = _Pump.writer(proc.stdin, b"input")
            ```
        """

        def _feed(chunks: list[bytes]) -> None:
            """Write the payload and close stdin.

            Example:
                ```python
                _feed([])
                ```
            """
            try:
                if payload:
                    stream.write(payload)
                stream.close()
            except BrokenPipeError:
                logger.debug("Child closed stdin before reading all input")

        return cls(_feed, "plr-write")

    def join(self, timeout: float | None = None) -> bytes:
        """Wait for the thread and return what it collected so far.

        A pump still running after ``timeout`` is left to finish on its own.

        Example:
            ```python
            data = pump.join(timeout=2)
            ```
        """
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning(f"{self._thread.name} still open after {timeout:g}s; keeping partial data")
        return b"".join(self._chunks)


def _request_stop(request: Callable[[ProcessHandle], None], handle: ProcessHandle) -> None:
    """Send quit or kill, treating a vanished process as already stopped.

    Example:
        ```python
        _request_stop(kill, proc.handle)
        ```
    """
    try:
        request(handle)
    except SignalError as exc:
        if not exc.not_found:
            logger.warning(str(exc))


def _poll_until(handle: ProcessHandle, deadline: float) -> ExitOutcome | None:
    """Poll the child until it exits or the deadline passes.

    Example:
        ```python
        outcome = _poll_until(handle, time.monotonic() + 5)
        ```
    """
    while True:
        outcome = poll(handle)
        if outcome is not None or time.monotonic() >= deadline:
            return outcome
        time.sleep(POLL_INTERVAL_SECONDS)


def _force_kill(handle: ProcessHandle) -> None:
    """Send SIGKILL to a POSIX child that outlived both quit and kill.

    Example:
        ```python
        _force_kill(proc.handle)
        ```
    """
    logger.warning(f"pid={handle.pid} survived SIGTERM; sending SIGKILL")
    try:
        os.kill(handle.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug(f"pid={handle.pid} exited before SIGKILL")


def wait_with_timeout(
    handle: ProcessHandle,
    timeout_seconds: float,
    grace_seconds: float,
) -> tuple[ExitOutcome, bool]:
    """Wait for the child, interrupting and then killing it on timeout.

    Each stop request gets ``grace_seconds`` to take effect. On POSIX a child
    still running after SIGTERM is sent SIGKILL. Returns the outcome and
    whether the timeout fired. A timeout of zero waits without limit.

    Example:
        ```python
        outcome, timed_out = wait_with_timeout(proc.handle, 10, 2)
        ```
    """
    if timeout_seconds <= 0:
        return wait(handle), False
    outcome = _poll_until(handle, time.monotonic() + timeout_seconds)
    if outcome is not None:
        return outcome, False

    logger.debug(f"Interrupting pid={handle.pid} after {timeout_seconds:g}s")
    _request_stop(quit, handle)
    outcome = _poll_until(handle, time.monotonic() + grace_seconds)
    if outcome is not None:
        return outcome, True

    logger.debug(f"Killing pid={handle.pid} after {grace_seconds:g}s grace")
    _request_stop(kill, handle)
    outcome = _poll_until(handle, time.monotonic() + grace_seconds)
    if outcome is not None:
        return outcome, True

    # TerminateProcess has already ended a Windows child.
    if not IS_WINDOWS:
        _force_kill(handle)
    return wait(handle), True


def _join_pumps(pumps: list[_Pump], timeout_seconds: float | None) -> list[bytes]:
    """Join every pump against one shared deadline.

    Example:
        ```python
        stdout, stderr = _join_pumps([out_pump, err_pump], 2)
        ```
    """
    if timeout_seconds is None:
        return [pump.join() for pump in pumps]
    deadline = time.monotonic() + timeout_seconds
    return [pump.join(max(0.0, deadline - time.monotonic())) for pump in pumps]


def _stderr_lines(data: bytes) -> list[str]:
    """Split captured stderr into non-empty diagnostic lines.

    Example:
        ```python
        lines = _stderr_lines(b"warning: x\\n\\n")  # ["warning: x"]
        ```
    """
    text = data.decode("utf-8", errors="replace")
    return [line.rstrip() for line in text.splitlines() if line.strip()]


def run_command(spec: CommandSpec, *, timeout_seconds: float, grace_seconds: float) -> CommandReport:
    """Run one command to completion and collect its diagnostics.

    When a timeout is set, output still held open by descendants of the
    command is read for at most ``grace_seconds`` after the command exits.

    Example:
        ```python
        report = run_command(spec, timeout_seconds=10, grace_seconds=1)
        ```
    """
    try:
        proc = spawn(spec.argv)
    except LaunchFailed as exc:
        return CommandReport(spec.name, None, diagnostics=[f"cannot launch: {exc}"])

    logger.debug(f"Running {spec.name} as pid={proc.pid}")
    # Each pump closes its own stream.
    in_pump = _Pump.writer(proc.stdin, spec.stdin)
    out_pump = _Pump.reader(proc.stdout)
    err_pump = _Pump.reader(proc.stderr)
    outcome, timed_out = wait_with_timeout(proc.handle, timeout_seconds, grace_seconds)
    drain_seconds = grace_seconds if timeout_seconds > 0 else None
    _, stdout, stderr = _join_pumps([in_pump, out_pump, err_pump], drain_seconds)

    diagnostics = _stderr_lines(stderr)
    if timed_out:
        diagnostics.append(f"timed out after {timeout_seconds:g}s")
    if not outcome.success:
        diagnostics.append(outcome.describe())
    return CommandReport(spec.name, outcome, stdout, diagnostics, timed_out)


def run_suite(
    config: SuiteConfig,
    names: list[str] | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    async_: bool | None = None,
) -> SuiteReport:
    """Run the selected commands serially or concurrently.

    Unknown names become diagnostics instead of being run. The report order
    always follows the selection order.

    Example:
        ```python
        suite = run_suite(SuiteConfig.from_file("tools.toml"), ["greet"])
        ```
    """
    selected = config.select(list(names or []), dict(environ or {}))
    source = config.config_path or DEFAULT_TOOLS_FILE
    reports: list[CommandReport | None] = [None] * len(selected)
    pending: list[tuple[int, CommandSpec]] = []
    for index, name in enumerate(selected):
        spec = config.commands.get(name)
        if spec is None:
            reports[index] = CommandReport(name, None, diagnostics=[f"Cannot find {name} in {source}"])
        else:
            pending.append((index, spec))

    def _run(spec: CommandSpec) -> CommandReport:
        """Run one command with the suite's timeouts.

        Example:
            ```python
            report = _run(spec)
            ```
        """
        return run_command(
            spec,
            timeout_seconds=config.timeout_seconds,
            grace_seconds=config.grace_seconds,
        )

    concurrent = config.async_ if async_ is None else async_
    if concurrent and pending:
        with ThreadPoolExecutor(max_workers=len(pending), thread_name_prefix="plr") as pool:
            results = list(pool.map(_run, [spec for _, spec in pending]))
    else:
        results = [_run(spec) for _, spec in pending]

    for (index, _), report in zip(pending, results):
        reports[index] = report
    return SuiteReport([report for report in reports if report is not None])
