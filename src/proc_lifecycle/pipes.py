from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import BinaryIO, Sequence

from .errors import LaunchFailed

logger = logging.getLogger(__name__)

CLOSED = -1


def close_fd(fd: int, what: str) -> None:
    """Close a descriptor, logging instead of raising on failure.

    Used on cleanup paths where leaking one descriptor is preferable to
    aborting the caller.

    Example:
        ```python
        close_fd(fd, "stdout read end")
        ```
    """
    if fd == CLOSED:
        return
    try:
        os.close(fd)
    except OSError as exc:
        logger.warning(f"Failed to close {what} fd={fd}: {exc}")


def _open_pipe() -> tuple[int, int]:
    """Create one OS pipe and return its (read, write) descriptors.

    Example:
        ```python
        r, w = _open_pipe()
        ```
    """
    return os.pipe()


@dataclass(slots=True)
class PipeEndpoint:
    """One unidirectional byte channel with a read end and a write end.

    Example:
        ```python
        endpoint = PipeEndpoint.open()
        os.write(endpoint.write_fd, b"x")
        ```
    """

    read_fd: int
    write_fd: int

    @classmethod
    def open(cls) -> "PipeEndpoint":
        """Allocate a new pipe; descriptors are created non-inheritable.

        Example:
            ```python
            endpoint = PipeEndpoint.open()
            ```
        """
        read_fd, write_fd = _open_pipe()
        return cls(read_fd, write_fd)

    def detach_read(self) -> int:
        """Give up ownership of the read end and return it.

        Example:
            ```python
            fd = endpoint.detach_read()
            ```
        """
        fd, self.read_fd = self.read_fd, CLOSED
        return fd

    def detach_write(self) -> int:
        """Give up ownership of the write end and return it.

        Example:
            ```python
            fd = endpoint.detach_write()
            ```
        """
        fd, self.write_fd = self.write_fd, CLOSED
        return fd

    def close_read(self) -> None:
        """Close the read end if this endpoint still owns it.

        Example:
            ```python
            endpoint.close_read()
            ```
        """
        close_fd(self.detach_read(), "pipe read end")

    def close_write(self) -> None:
        """Close the write end if this endpoint still owns it.

        Example:
            ```python
            endpoint.close_write()
            ```
        """
        close_fd(self.detach_write(), "pipe write end")

    def close(self) -> None:
        """Close both ends; calling it again is harmless.

        Example:
            ```python
            endpoint.close()
            ```
        """
        self.close_read()
        self.close_write()


@dataclass(slots=True)
class PipeTriple:
    """The stdin, stdout and stderr pipes of one prospective child.

    The parent keeps the stdin write end and the stdout/stderr read ends;
    the child receives the opposite ends.

    Example:
        ```python
        triple = PipeTriple.allocate(["cat"])
        child_in, child_out, child_err = triple.child_fds()
        ```
    """

    stdin: PipeEndpoint
    stdout: PipeEndpoint
    stderr: PipeEndpoint

    @classmethod
    def allocate(cls, argv: Sequence[str]) -> "PipeTriple":
        """Allocate all three pipes or none of them.

        Raises LaunchFailed after releasing any pipe already created.

        Example:
            ```python
            triple = PipeTriple.allocate(["python", "-V"])
            ```
        """
        created: list[PipeEndpoint] = []
        try:
            for _ in range(3):
                created.append(PipeEndpoint.open())
        except OSError as exc:
            for endpoint in created:
                endpoint.close()
            raise LaunchFailed(argv, step="pipe", errno=exc.errno, reason=exc.strerror) from exc
        return cls(*created)

    def endpoints(self) -> tuple[PipeEndpoint, PipeEndpoint, PipeEndpoint]:
        """Return the endpoints in standard stream order.

        Example:
            ```python
            stdin, stdout, stderr = triple.endpoints()
            ```
        """
        return self.stdin, self.stdout, self.stderr

    def child_fds(self) -> tuple[int, int, int]:
        """Return the descriptors destined for the child's fds 0, 1 and 2.

        Example:
            ```python
            child_in, child_out, child_err = triple.child_fds()
            ```
        """
        return self.stdin.read_fd, self.stdout.write_fd, self.stderr.write_fd

    def parent_fds(self) -> tuple[int, int, int]:
        """Return the descriptors the parent keeps after launch.

        Example:
            ```python
            to_child, from_out, from_err = triple.parent_fds()
            ```
        """
        return self.stdin.write_fd, self.stdout.read_fd, self.stderr.read_fd

    def all_fds(self) -> list[int]:
        """Return every descriptor still owned by the triple.

        Example:
            ```python
            fds = triple.all_fds()
            ```
        """
        fds: list[int] = []
        for endpoint in self.endpoints():
            fds.extend(fd for fd in (endpoint.read_fd, endpoint.write_fd) if fd != CLOSED)
        return fds

    def close_child_side(self) -> None:
        """Close the ends handed to the child, in the parent process.

        Example:
            ```python
            triple.close_child_side()
            ```
        """
        self.stdin.close_read()
        self.stdout.close_write()
        self.stderr.close_write()

    def detach_parent_side(self) -> tuple[int, int, int]:
        """Transfer ownership of the parent ends to the caller.

        Example:
            ```python
            to_child, from_out, from_err = triple.detach_parent_side()
            ```
        """
        return (
            self.stdin.detach_write(),
            self.stdout.detach_read(),
            self.stderr.detach_read(),
        )

    def close(self) -> None:
        """Close every descriptor the triple still owns.

        Example:
            ```python
            triple.close()
            ```
        """
        for endpoint in self.endpoints():
            endpoint.close()


def open_parent_streams(
    stdin_fd: int,
    stdout_fd: int,
    stderr_fd: int,
) -> tuple[BinaryIO, BinaryIO, BinaryIO]:
    """Wrap the parent-side descriptors in binary file objects.

    On failure every descriptor not yet wrapped is closed before re-raising.

    Example:
        ```python
        stdin, stdout, stderr = open_parent_streams(*triple.detach_parent_side())
        ```
    """
    streams: list[BinaryIO] = []
    pending = [(stdin_fd, "wb"), (stdout_fd, "rb"), (stderr_fd, "rb")]
    try:
        while pending:
            fd, mode = pending[0]
            streams.append(os.fdopen(fd, mode))
            pending.pop(0)
    except OSError:
        for stream in streams:
            stream.close()
        for fd, _ in pending:
            close_fd(fd, "parent stream")
        raise
    return streams[0], streams[1], streams[2]
