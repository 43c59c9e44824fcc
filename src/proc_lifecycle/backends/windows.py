from __future__ import annotations

import _winapi
import logging
import msvcrt
import os
import subprocess
from typing import Sequence

from ..errors import LaunchFailed, SignalError
from ..outcome import ExitedNormally, ExitOutcome, WaitAnomaly
from ..pipes import PipeTriple, open_parent_streams
from ..types import ProcessHandle, ProcessState, SpawnedProcess

logger = logging.getLogger(__name__)

# TerminateProcess exit code, so a killed child reads like a clean POSIX exit.
KILL_EXIT_CODE = 0


def _close_handle(handle: int, what: str) -> None:
    """Close a Win32 handle, logging instead of raising on failure.

    Example:
        ```python
        _close_handle(thread_handle, "thread handle")
        ```
    """
    try:
        _winapi.CloseHandle(handle)
    except OSError as exc:
        logger.warning(f"Failed to close {what} handle={handle}: {exc}")


def _inheritable_copy(fd: int) -> int:
    """Duplicate the OS handle behind a CRT descriptor as inheritable.

    Example:
        ```python
        child_stdin = _inheritable_copy(triple.stdin.read_fd)
        ```
    """
    current = _winapi.GetCurrentProcess()
    return _winapi.DuplicateHandle(
        current,
        msvcrt.get_osfhandle(fd),
        current,
        0,
        True,
        _winapi.DUPLICATE_SAME_ACCESS,
    )


def _startup_info(stdin: int, stdout: int, stderr: int) -> subprocess.STARTUPINFO:
    """Describe the child's standard handles and hide any window it opens.

    Only the three listed handles are inherited by the child.

    Example:
        ```python
        info = _startup_info(child_in, child_out, child_err)
        ```
    """
    return subprocess.STARTUPINFO(
        dwFlags=subprocess.STARTF_USESTDHANDLES | subprocess.STARTF_USESHOWWINDOW,
        hStdInput=stdin,
        hStdOutput=stdout,
        hStdError=stderr,
        wShowWindow=subprocess.SW_HIDE,
        lpAttributeList={"handle_list": [stdin, stdout, stderr]},
    )


def _still_running(native: int) -> bool:
    """Return True while the process object is not yet signaled.

    Example:
        ```python
        alive = _still_running(handle.native)
        ```
    """
    return _winapi.WaitForSingleObject(native, 0) == _winapi.WAIT_TIMEOUT


class WindowsBackend:
    """CreateProcess/TerminateProcess implementation of the process lifecycle.

    Example:
        ```python
        backend = WindowsBackend()
        proc = backend.spawn(["cmd", "/c", "echo", "hi"])
        ```
    """

    def spawn(self, argv: Sequence[str]) -> SpawnedProcess:
        """Create a detached, windowless child wired to a fresh pipe triple.

        Example:
            ```python
            proc = backend.spawn(["python", "-V"])
            ```
        """
        args = tuple(argv)
        triple = PipeTriple.allocate(args)
        inherited: list[int] = []
        step = "SetHandleInformation"
        try:
            for fd in triple.parent_fds():
                os.set_inheritable(fd, False)
            step = "DuplicateHandle"
            for fd in triple.child_fds():
                inherited.append(_inheritable_copy(fd))
            step = "CreateProcess"
            process_handle, thread_handle, pid, _ = _winapi.CreateProcess(
                None,
                subprocess.list2cmdline(args),
                None,
                None,
                True,
                subprocess.DETACHED_PROCESS,
                None,
                None,
                _startup_info(*inherited),
            )
        except OSError as exc:
            triple.close()
            raise LaunchFailed(args, step=step, errno=exc.errno, reason=exc.strerror) from exc
        finally:
            for inheritable in inherited:
                _close_handle(inheritable, "inherited pipe")

        _close_handle(thread_handle, "thread")
        triple.close_child_side()
        handle = ProcessHandle(pid=pid, argv=args, native=process_handle)
        try:
            stdin, stdout, stderr = open_parent_streams(*triple.detach_parent_side())
        except OSError as exc:
            self._abandon(handle)
            raise LaunchFailed(args, step="open_osfhandle", errno=exc.errno, reason=exc.strerror) from exc

        logger.debug(f"Started subprocess pid={pid} argv={args[0]}")
        return SpawnedProcess(handle, stdin, stdout, stderr)

    def kill(self, handle: ProcessHandle) -> None:
        """Terminate the child immediately with exit code 0.

        Example:
            ```python
            backend.kill(proc.handle)
            ```
        """
        if handle.reaped:
            raise SignalError(handle.pid, "TerminateProcess", not_found=True)
        try:
            _winapi.TerminateProcess(handle.native, KILL_EXIT_CODE)
        except PermissionError as exc:
            # ERROR_ACCESS_DENIED is also what an already-exited process reports
            if _winapi.GetExitCodeProcess(handle.native) != _winapi.STILL_ACTIVE:
                raise SignalError(handle.pid, "TerminateProcess", not_found=True) from exc
            raise SignalError(handle.pid, "TerminateProcess", reason=exc.strerror) from exc
        except OSError as exc:
            raise SignalError(handle.pid, "TerminateProcess", reason=exc.strerror) from exc
        handle.state = ProcessState.SIGNALED
        logger.debug(f"Terminated pid={handle.pid}")

    def quit(self, handle: ProcessHandle) -> None:
        """Accept an interrupt request; a detached child has no channel for it.

        The call only verifies that the process still exists.

        Example:
            ```python
            backend.quit(proc.handle)
            ```
        """
        if handle.reaped:
            raise SignalError(handle.pid, "interrupt", not_found=True)
        try:
            running = _still_running(handle.native)
        except OSError as exc:
            raise SignalError(handle.pid, "interrupt", reason=exc.strerror) from exc
        if not running:
            raise SignalError(handle.pid, "interrupt", not_found=True)
        logger.debug(f"No interrupt channel for detached pid={handle.pid}; request ignored")

    def wait(self, handle: ProcessHandle) -> ExitOutcome:
        """Block on the process handle, then report its exit code.

        Example:
            ```python
            outcome = backend.wait(proc.handle)
            ```
        """
        handle.ensure_not_reaped()
        try:
            _winapi.WaitForSingleObject(handle.native, _winapi.INFINITE)
        except OSError as exc:
            return self._wait_failed(handle, exc)
        return self._collect(handle)

    def poll(self, handle: ProcessHandle) -> ExitOutcome | None:
        """Return the outcome if the process object is signaled, else None.

        Example:
            ```python
            outcome = backend.poll(proc.handle)
            ```
        """
        handle.ensure_not_reaped()
        try:
            if _still_running(handle.native):
                return None
        except OSError as exc:
            return self._wait_failed(handle, exc)
        return self._collect(handle)

    def _collect(self, handle: ProcessHandle) -> ExitOutcome:
        """Read the exit code of an exited process and release its handle.

        Example:
            ```python
            outcome = backend._collect(handle)
            ```
        """
        try:
            code = _winapi.GetExitCodeProcess(handle.native)
        except OSError as exc:
            outcome: ExitOutcome = WaitAnomaly(None, f"GetExitCodeProcess: {exc.strerror}")
        else:
            outcome = ExitedNormally(code)
        _close_handle(handle.native, "process")
        handle.state = ProcessState.REAPED
        logger.debug(f"Subprocess completed pid={handle.pid} outcome={outcome}")
        return outcome

    def _wait_failed(self, handle: ProcessHandle, exc: OSError) -> ExitOutcome:
        """Release a process handle whose wait failed and report the anomaly.

        Example:
            ```python
            outcome = backend._wait_failed(handle, exc)
            ```
        """
        logger.warning(f"WaitForSingleObject failed for pid={handle.pid}: {exc}")
        _close_handle(handle.native, "process")
        handle.state = ProcessState.REAPED
        return WaitAnomaly(None, f"WaitForSingleObject: {exc.strerror}")

    def _abandon(self, handle: ProcessHandle) -> None:
        """Terminate and release a child whose parent streams could not be opened.

        Example:
            ```python
            backend._abandon(handle)
            ```
        """
        try:
            _winapi.TerminateProcess(handle.native, KILL_EXIT_CODE)
        except OSError as exc:
            logger.warning(f"Failed to terminate abandoned child pid={handle.pid}: {exc}")
        _close_handle(handle.native, "process")
        handle.state = ProcessState.REAPED
