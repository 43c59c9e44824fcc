from __future__ import annotations

import fcntl
import logging
import os
import signal
from typing import Never, Sequence

from ..errors import LaunchFailed, SignalError
from ..outcome import ExitedNormally, ExitOutcome, Stopped, TerminatedBySignal, WaitAnomaly
from ..pipes import PipeTriple, close_fd, open_parent_streams
from ..types import ProcessHandle, ProcessState, SpawnedProcess

logger = logging.getLogger(__name__)

# Status used by a forked child that could not exec, as shells do.
EXEC_FAILURE_STATUS = 127


def decode_wait_status(status: int) -> ExitOutcome:
    """Decode a raw waitpid status into an exit outcome.

    Example:
        ```python
        outcome = decode_wait_status(3 << 8)  # ExitedNormally(3)
        ```
    """
    if os.WIFEXITED(status):
        return ExitedNormally(os.WEXITSTATUS(status))
    if os.WIFSTOPPED(status):
        return Stopped(os.WSTOPSIG(status))
    if os.WIFSIGNALED(status):
        return TerminatedBySignal(os.WTERMSIG(status))
    return WaitAnomaly(status, "unrecognised wait status")


def _encode_failure(step: str, errno: int) -> bytes:
    """Serialize a child-side failure for the error-report pipe.

    Example:
        ```python
        payload = _encode_failure("exec", 2)  # b"exec:2"
        ```
    """
    return f"{step}:{errno}".encode("ascii")


def _decode_failure(payload: bytes) -> tuple[str, int]:
    """Parse a failure report written by a forked child.

    Example:
        ```python
        step, errno = _decode_failure(b"exec:2")
        ```
    """
    step, _, number = payload.decode("ascii", "replace").partition(":")
    try:
        return step or "exec", int(number)
    except ValueError:
        return step or "exec", 0


def _exec_child(argv: tuple[str, ...], child_fds: tuple[int, int, int], owned_fds: list[int], err_w: int) -> Never:
    """Rewire fds 0-2 to the pipes and exec; runs only in the forked child.

    Never returns and never runs parent cleanup code. Any failure is written
    to the close-on-exec error pipe before exiting with EXEC_FAILURE_STATUS.

    Example:
        ```python
        if pid == 0:
            _exec_child(argv, triple.child_fds(), triple.all_fds(), err_w)
        ```
    """
    step = "dup2"
    try:
        # Move sources out of 0-2 first so no dup2 clobbers a pending source.
        sources = [
            fcntl.fcntl(fd, fcntl.F_DUPFD_CLOEXEC, 3) if fd <= 2 else fd
            for fd in child_fds
        ]
        for target, fd in enumerate(sources):
            os.dup2(fd, target)
        step = "close"
        for fd in sorted(set(owned_fds) | set(sources)):
            if fd > 2 and fd != err_w:
                os.close(fd)
        step = "exec"
        os.execvp(argv[0], list(argv))
    except Exception as exc:
        try:
            os.write(err_w, _encode_failure(step, getattr(exc, "errno", None) or 0))
        except OSError:
            pass  # parent sees a bare EOF and the exit status instead
    finally:
        os._exit(EXEC_FAILURE_STATUS)


def _read_report(fd: int) -> bytes:
    """Read the error-report pipe until every writer has closed it.

    Example:
        ```python
        report = _read_report(err_r)
        ```
    """
    chunks: list[bytes] = []
    while True:
        chunk = os.read(fd, 256)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _reap_failed_child(pid: int) -> None:
    """Collect a child that failed before exec so it never lingers as a zombie.

    Example:
        ```python
        _reap_failed_child(pid)
        ```
    """
    while True:
        try:
            os.waitpid(pid, 0)
            return
        except InterruptedError:
            continue
        except ChildProcessError as exc:
            logger.warning(f"Could not reap failed child pid={pid}: {exc}")
            return


def _has_exited(pid: int) -> bool:
    """Report whether a child has exited without reaping it.

    kill() succeeds on a zombie, so an exited but unwaited child is detected
    here with WNOWAIT. Platforms without waitid (macOS) report False.

    Example:
        ```python
        if _has_exited(handle.pid):
            raise SignalError(handle.pid, "SIGTERM", not_found=True)
        ```
    """
    if not hasattr(os, "waitid"):
        return False
    try:
        result = os.waitid(os.P_PID, pid, os.WEXITED | os.WNOHANG | os.WNOWAIT)
    except ChildProcessError:
        return True
    return result is not None


class PosixBackend:
    """fork/exec/signal implementation of the process lifecycle.

    Example:
        ```python
        backend = PosixBackend()
        proc = backend.spawn(["echo", "hi"])
        ```
    """

    def spawn(self, argv: Sequence[str]) -> SpawnedProcess:
        """Fork a child wired to a fresh pipe triple and exec argv in it.

        Example:
            ```python
            proc = backend.spawn(["cat"])
            ```
        """
        args = tuple(argv)
        triple = PipeTriple.allocate(args)
        try:
            err_r, err_w = os.pipe()
        except OSError as exc:
            triple.close()
            raise LaunchFailed(args, step="pipe", errno=exc.errno, reason=exc.strerror) from exc

        try:
            pid = os.fork()
        except OSError as exc:
            triple.close()
            close_fd(err_r, "error pipe read end")
            close_fd(err_w, "error pipe write end")
            raise LaunchFailed(args, step="fork", errno=exc.errno, reason=exc.strerror) from exc

        if pid == 0:
            _exec_child(args, triple.child_fds(), triple.all_fds(), err_w)

        triple.close_child_side()
        close_fd(err_w, "error pipe write end")
        try:
            report = _read_report(err_r)
        except OSError as exc:
            report = _encode_failure("exec", exc.errno or 0)
        finally:
            close_fd(err_r, "error pipe read end")

        if report:
            _reap_failed_child(pid)
            triple.close()
            step, errno = _decode_failure(report)
            reason = os.strerror(errno) if errno else "child exited before exec"
            raise LaunchFailed(args, step=step, errno=errno or None, reason=reason)

        handle = ProcessHandle(pid=pid, argv=args)
        try:
            stdin, stdout, stderr = open_parent_streams(*triple.detach_parent_side())
        except OSError as exc:
            self._abandon(handle)
            raise LaunchFailed(args, step="fdopen", errno=exc.errno, reason=exc.strerror) from exc

        logger.debug(f"Started subprocess pid={pid} argv={args[0]}")
        return SpawnedProcess(handle, stdin, stdout, stderr)

    def kill(self, handle: ProcessHandle) -> None:
        """Send SIGTERM to the child.

        Example:
            ```python
            backend.kill(proc.handle)
            ```
        """
        self._send(handle, signal.SIGTERM)

    def quit(self, handle: ProcessHandle) -> None:
        """Send SIGINT to the child.

        Example:
            ```python
            backend.quit(proc.handle)
            ```
        """
        self._send(handle, signal.SIGINT)

    def wait(self, handle: ProcessHandle) -> ExitOutcome:
        """Block in waitpid until this child exits, then decode its status.

        Example:
            ```python
            outcome = backend.wait(proc.handle)
            ```
        """
        outcome = self._waitpid(handle, 0)
        assert outcome is not None
        return outcome

    def poll(self, handle: ProcessHandle) -> ExitOutcome | None:
        """Check with WNOHANG whether the child has exited.

        Example:
            ```python
            outcome = backend.poll(proc.handle)
            ```
        """
        return self._waitpid(handle, os.WNOHANG)

    def _waitpid(self, handle: ProcessHandle, options: int) -> ExitOutcome | None:
        """Wait on exactly this child, retrying after interrupted calls.

        Example:
            ```python
            outcome = backend._waitpid(handle, os.WNOHANG)
            ```
        """
        handle.ensure_not_reaped()
        while True:
            try:
                pid, status = os.waitpid(handle.pid, options)
            except InterruptedError:
                continue
            except ChildProcessError as exc:
                handle.state = ProcessState.REAPED
                logger.warning(f"waitpid failed for pid={handle.pid}: {exc}")
                return WaitAnomaly(None, f"no such child: {exc.strerror}")
            if pid == 0 and options & os.WNOHANG:
                return None
            if pid == handle.pid:
                break

        handle.state = ProcessState.REAPED
        outcome = decode_wait_status(status)
        logger.debug(f"Subprocess completed pid={handle.pid} outcome={outcome}")
        return outcome

    def _send(self, handle: ProcessHandle, signum: signal.Signals) -> None:
        """Deliver one signal, mapping OS errors onto SignalError.

        Example:
            ```python
            backend._send(handle, signal.SIGTERM)
            ```
        """
        if handle.reaped or _has_exited(handle.pid):
            raise SignalError(handle.pid, signum.name, not_found=True)
        try:
            os.kill(handle.pid, signum)
        except ProcessLookupError as exc:
            raise SignalError(handle.pid, signum.name, not_found=True) from exc
        except OSError as exc:
            raise SignalError(handle.pid, signum.name, reason=exc.strerror) from exc
        handle.state = ProcessState.SIGNALED
        logger.debug(f"Sent {signum.name} to pid={handle.pid}")

    def _abandon(self, handle: ProcessHandle) -> None:
        """Kill and reap a child whose parent streams could not be opened.

        Example:
            ```python
            backend._abandon(handle)
            ```
        """
        try:
            os.kill(handle.pid, signal.SIGKILL)
        except OSError as exc:
            logger.warning(f"Failed to kill abandoned child pid={handle.pid}: {exc}")
        _reap_failed_child(handle.pid)
        handle.state = ProcessState.REAPED
