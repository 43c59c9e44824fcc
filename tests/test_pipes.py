from __future__ import annotations

import errno
import logging
import os

import pytest

from proc_lifecycle import LaunchFailed
from proc_lifecycle import pipes
from proc_lifecycle.pipes import CLOSED, PipeEndpoint, PipeTriple, close_fd


def _is_closed(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return True
    return False


def test_triple_allocates_three_independent_pipes() -> None:
    triple = PipeTriple.allocate(["tool"])
    try:
        fds = triple.all_fds()
        assert len(fds) == 6
        assert len(set(fds)) == 6
        for endpoint in triple.endpoints():
            os.write(endpoint.write_fd, b"x")
            assert os.read(endpoint.read_fd, 1) == b"x"
    finally:
        triple.close()
    assert all(_is_closed(fd) for fd in fds)


def test_triple_sides_are_opposite_ends() -> None:
    triple = PipeTriple.allocate(["tool"])
    try:
        child_in, child_out, child_err = triple.child_fds()
        to_child, from_out, from_err = triple.parent_fds()
        assert (child_in, to_child) == (triple.stdin.read_fd, triple.stdin.write_fd)
        assert (child_out, from_out) == (triple.stdout.write_fd, triple.stdout.read_fd)
        assert (child_err, from_err) == (triple.stderr.write_fd, triple.stderr.read_fd)
    finally:
        triple.close()


def test_allocation_failure_releases_partial_pipes(monkeypatch: pytest.MonkeyPatch) -> None:
    created: list[int] = []
    real_pipe = os.pipe

    def _flaky_pipe() -> tuple[int, int]:
        if len(created) == 4:
            raise OSError(errno.EMFILE, "Too many open files")
        r, w = real_pipe()
        created.extend((r, w))
        return r, w

    monkeypatch.setattr(pipes, "_open_pipe", _flaky_pipe)
    with pytest.raises(LaunchFailed) as exc:
        PipeTriple.allocate(["tool", "--flag"])

    assert exc.value.step == "pipe"
    assert exc.value.errno == errno.EMFILE
    assert exc.value.argv == ("tool", "--flag")
    assert len(created) == 4
    assert all(_is_closed(fd) for fd in created)


def test_endpoint_close_is_idempotent() -> None:
    endpoint = PipeEndpoint.open()
    endpoint.close()
    endpoint.close()
    assert endpoint.read_fd == CLOSED
    assert endpoint.write_fd == CLOSED


def test_detached_end_is_not_closed_by_endpoint() -> None:
    endpoint = PipeEndpoint.open()
    kept = endpoint.detach_write()
    endpoint.close()
    try:
        assert not _is_closed(kept)
    finally:
        os.close(kept)


def test_close_fd_logs_instead_of_raising(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="proc_lifecycle.pipes"):
        close_fd(987654, "test end")
    assert "Failed to close test end fd=987654" in caplog.text


def test_open_parent_streams_wraps_descriptors() -> None:
    triple = PipeTriple.allocate(["tool"])
    stdin, stdout, stderr = pipes.open_parent_streams(*triple.detach_parent_side())
    try:
        stdin.write(b"ping")
        stdin.flush()
        assert os.read(triple.stdin.read_fd, 4) == b"ping"
        os.write(triple.stdout.write_fd, b"pong")
        triple.stdout.close_write()
        assert stdout.read() == b"pong"
        assert stdin.writable() and not stdin.readable()
        assert stderr.readable() and not stderr.writable()
    finally:
        for stream in (stdin, stdout, stderr):
            stream.close()
        triple.close()
