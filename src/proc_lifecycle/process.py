"""Public process lifecycle operations: spawn, kill, quit, wait and poll.

The platform backend is chosen once, when this module is imported. Callers
never branch on the operating system.
"""

from __future__ import annotations

import sys
from typing import Sequence

from .backends.base import ProcessBackend
from .outcome import ExitOutcome
from .types import ProcessHandle, SpawnedProcess

if sys.platform == "win32":
    from .backends.windows import WindowsBackend as _PlatformBackend
else:
    from .backends.posix import PosixBackend as _PlatformBackend

BACKEND: ProcessBackend = _PlatformBackend()


def _normalize_argv(argv: Sequence[str]) -> tuple[str, ...]:
    """Validate an argument vector and freeze it into a tuple.

    Example:
        ```python
        args = _normalize_argv(["echo", "hi"])
        ```
    """
    if isinstance(argv, (str, bytes)):
        raise TypeError("argv must be a sequence of strings, not a single string")
    args = tuple(argv)
    if not args:
        raise ValueError("argv must contain at least the program to run")
    for item in args:
        if not isinstance(item, str):
            raise TypeError(f"argv items must be str, got {type(item).__name__}")
        if "\0" in item:
            raise ValueError("argv items must not contain NUL characters")
    return args


def spawn(argv: Sequence[str]) -> SpawnedProcess:
    """Start argv with stdin, stdout and stderr connected to new pipes.

    Raises LaunchFailed if no process could be started; in that case no
    descriptor or child process is left behind.

    Example:
        ```python
        proc = spawn(["python", "-c", "print('hello')"])
        output = proc.stdout.read()
        outcome = wait(proc.handle)
        ```
    """
    return BACKEND.spawn(_normalize_argv(argv))


def kill(handle: ProcessHandle) -> None:
    """Forcefully terminate the child without waiting for it.

    Raises SignalError, with ``not_found`` set when the child is gone.

    Example:
        ```python
        kill(proc.handle)
        outcome = wait(proc.handle)
        ```
    """
    BACKEND.kill(handle)


def quit(handle: ProcessHandle) -> None:
    """Ask the child to interrupt itself; a no-op where no channel exists.

    Example:
        ```python
        quit(proc.handle)
        ```
    """
    BACKEND.quit(handle)


def wait(handle: ProcessHandle) -> ExitOutcome:
    """Block until the child exits and return its decoded outcome.

    May be called once per handle; a second call raises ValueError.

    Example:
        ```python
        outcome = wait(proc.handle)
        ```
    """
    return BACKEND.wait(handle)


def poll(handle: ProcessHandle) -> ExitOutcome | None:
    """Return the child's outcome if it has exited, otherwise None.

    Example:
        ```python
        while (outcome := poll(proc.handle)) is None:
            time.sleep(0.1)
        ```
    """
    return BACKEND.poll(handle)
