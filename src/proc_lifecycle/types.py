from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, BinaryIO

logger = logging.getLogger(__name__)


class ProcessState(enum.Enum):
    """Lifecycle state recorded on a process handle.

    Example:
        ```python
        assert handle.state is ProcessState.RUNNING
        ```
    """

    RUNNING = "running"
    SIGNALED = "signaled"
    REAPED = "reaped"


@dataclass(slots=True, eq=False)
class ProcessHandle:
    """Opaque reference to one spawned child, valid until it is reaped.

    Example:
        ```python
        handle = ProcessHandle(pid=1234, argv=("sleep", "1"))
        ```
    """

    pid: int
    argv: tuple[str, ...]
    state: ProcessState = ProcessState.RUNNING
    native: Any = field(default=None, repr=False)

    @property
    def reaped(self) -> bool:
        """Return True once a wait has collected the exit status.

        Example:
            ```python
            if not handle.reaped:
                wait(handle)
            ```
        """
        return self.state is ProcessState.REAPED

    def ensure_not_reaped(self) -> None:
        """Reject operations on a handle whose child was already collected.

        Example:
            ```python
            handle.ensure_not_reaped()
            ```
        """
        if self.reaped:
            raise ValueError(f"Process pid={self.pid} has already been reaped")


@dataclass(slots=True)
class SpawnedProcess:
    """A started child together with the three stream ends kept by the parent.

    Closing the streams never kills or reaps the child.

    Example:
        ```python
        with spawn(["cat"]) as proc:
            proc.stdin.write(b"hi")
            proc.stdin.close()
            data = proc.stdout.read()
        outcome = wait(proc.handle)
        ```
    """

    handle: ProcessHandle
    stdin: BinaryIO
    stdout: BinaryIO
    stderr: BinaryIO

    @property
    def pid(self) -> int:
        """Return the child's process identifier.

        Example:
            ```python
            print(proc.pid)
            ```
        """
        return self.handle.pid

    def close_streams(self) -> None:
        """Close every parent-side stream that is still open.

        Example:
            ```python
            proc.close_streams()
            ```
        """
        for stream in (self.stdin, self.stdout, self.stderr):
            if stream.closed:
                continue
            try:
                stream.close()
            except OSError as exc:
                # stdin may report a broken pipe on flush if the child is gone
                logger.debug(f"Ignoring error closing stream of pid={self.pid}: {exc}")

    def __enter__(self) -> "SpawnedProcess":
        """Return self for use in a with-block.

        Example:
            ```python
            with spawn(["true"]) as proc:
                pass
            ```
        """
        return self

    def __exit__(self, *exc_info: object) -> None:
        """Close the streams when leaving a with-block.

        Example:
            ```python
            proc.__exit__(None, None, None)
            ```
        """
        self.close_streams()
