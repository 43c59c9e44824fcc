from __future__ import annotations

import os
import sys

import pytest

PY = sys.executable


def open_fds() -> set[int] | None:
    """Return the descriptors open in this process where the OS exposes them."""
    for path in ("/proc/self/fd", "/dev/fd"):
        if os.path.isdir(path):
            return {int(name) for name in os.listdir(path)}
    return None


@pytest.fixture
def fd_snapshot():
    before = open_fds()
    if before is None:
        pytest.skip("descriptor listing unavailable on this platform")

    def _leaked() -> set[int]:
        after = open_fds() or set()
        return {fd for fd in after - before if _is_open(fd)}

    return _leaked


def _is_open(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True
