from __future__ import annotations

from typing import Sequence


class ProcLifecycleError(RuntimeError):
    """Base class for recoverable process lifecycle failures.

    Example:
        ```python
        try:
            spawn(["missing-binary"])
        except ProcLifecycleError as exc:
            print(exc)
        ```
    """


class LaunchFailed(ProcLifecycleError):
    """Raised when no child process could be started.

    Example:
        ```python
        err = LaunchFailed(["missing-binary"], step="exec", errno=2)
        ```
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        step: str,
        errno: int | None = None,
        reason: str | None = None,
    ) -> None:
        """Record the argument vector and the step that failed.

        Example:
            ```python
            err = LaunchFailed(["tool"], step="pipe", reason="Too many open files")
            ```
        """
        self.argv = tuple(argv)
        self.step = step
        self.errno = errno
        self.reason = reason
        program = self.argv[0] if self.argv else "<empty>"
        detail = reason or "unknown error"
        super().__init__(f"Failed to launch '{program}' during {step}: {detail}")


class SignalError(ProcLifecycleError):
    """Raised when a termination or interrupt request cannot be delivered.

    Example:
        ```python
        err = SignalError(1234, "SIGTERM", not_found=True)
        ```
    """

    def __init__(
        self,
        pid: int,
        signal_name: str,
        *,
        not_found: bool = False,
        reason: str | None = None,
    ) -> None:
        """Record the target pid and whether it no longer exists.

        Example:
            ```python
            err = SignalError(1234, "SIGINT", reason="Operation not permitted")
            ```
        """
        self.pid = pid
        self.signal_name = signal_name
        self.not_found = not_found
        self.reason = reason
        if not_found:
            detail = "process not found"
        else:
            detail = reason or "unknown error"
        super().__init__(f"Failed to send {signal_name} to pid={pid}: {detail}")
