from __future__ import annotations

from typing import Protocol, Sequence

from ..outcome import ExitOutcome
from ..types import ProcessHandle, SpawnedProcess


class ProcessBackend(Protocol):
    def spawn(self, argv: Sequence[str]) -> SpawnedProcess:
        """Start a child with all three standard streams redirected to pipes.

        Example:
            ```python
            proc = backend.spawn(["python", "-c", "print('hi')"])
            ```
        """
        ...

    def kill(self, handle: ProcessHandle) -> None:
        """Request forceful termination of the child.

        Example:
            ```python
            backend.kill(proc.handle)
            ```
        """
        ...

    def quit(self, handle: ProcessHandle) -> None:
        """Request cooperative interruption of the child.

        Example:
            ```python
            backend.quit(proc.handle)
            ```
        """
        ...

    def wait(self, handle: ProcessHandle) -> ExitOutcome:
        """Block until the child exits and return its decoded outcome.

        Example:
            ```python
            outcome = backend.wait(proc.handle)
            ```
        """
        ...

    def poll(self, handle: ProcessHandle) -> ExitOutcome | None:
        """Return the outcome if the child has exited, otherwise None.

        Example:
            ```python
            outcome = backend.poll(proc.handle)
            ```
        """
        ...
