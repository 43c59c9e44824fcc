from __future__ import annotations

import signal as _signal
from dataclasses import dataclass
from typing import Union


def _signal_name(signum: int) -> str:
    """Return a readable signal name, falling back to the number.

    Example:
        ```python
        name = _signal_name(15)  # "SIGTERM"
        ```
    """
    try:
        return _signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


@dataclass(frozen=True, slots=True)
class ExitedNormally:
    """The process ran to completion and reported an exit code.

    Example:
        ```python
        outcome = ExitedNormally(0)
        ```
    """

    code: int

    @property
    def success(self) -> bool:
        """Return True only for a zero exit code.

        Example:
            ```python
            assert ExitedNormally(0).success
            ```
        """
        return self.code == 0

    def describe(self) -> str:
        """Return a one-line description of the outcome.

        Example:
            ```python
            ExitedNormally(3).describe()  # "exited with code 3"
            ```
        """
        return f"exited with code {self.code}"


@dataclass(frozen=True, slots=True)
class TerminatedBySignal:
    """The process was ended by a signal.

    Example:
        ```python
        outcome = TerminatedBySignal(15)
        ```
    """

    signal: int

    @property
    def success(self) -> bool:
        """A signaled process never counts as a success.

        Example:
            ```python
            assert not TerminatedBySignal(9).success
            ```
        """
        return False

    def describe(self) -> str:
        """Return a one-line description of the outcome.

        Example:
            ```python
            TerminatedBySignal(15).describe()  # "terminated by SIGTERM"
            ```
        """
        return f"terminated by {_signal_name(self.signal)}"


@dataclass(frozen=True, slots=True)
class Stopped:
    """The process was suspended rather than ended.

    Example:
        ```python
        outcome = Stopped(19)
        ```
    """

    signal: int

    @property
    def success(self) -> bool:
        """A stopped process never counts as a success.

        Example:
            ```python
            assert not Stopped(19).success
            ```
        """
        return False

    def describe(self) -> str:
        """Return a one-line description of the outcome.

        Example:
            ```python
            Stopped(19).describe()  # "stopped by SIGSTOP"
            ```
        """
        return f"stopped by {_signal_name(self.signal)}"


@dataclass(frozen=True, slots=True)
class WaitAnomaly:
    """The wait returned a status the decoder could not classify.

    Example:
        ```python
        outcome = WaitAnomaly(raw_status=-1, detail="no such child")
        ```
    """

    raw_status: int | None
    detail: str = ""

    @property
    def success(self) -> bool:
        """An anomaly never counts as a success.

        Example:
            ```python
            assert not WaitAnomaly(None).success
            ```
        """
        return False

    def describe(self) -> str:
        """Return a one-line description of the outcome.

        Example:
            ```python
            WaitAnomaly(1234, "unknown status").describe()
            ```
        """
        text = f"unexpected wait status {self.raw_status}"
        if self.detail:
            text = f"{text} ({self.detail})"
        return text


ExitOutcome = Union[ExitedNormally, TerminatedBySignal, Stopped, WaitAnomaly]
