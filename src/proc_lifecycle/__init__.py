from .errors import LaunchFailed, ProcLifecycleError, SignalError
from .outcome import ExitedNormally, ExitOutcome, Stopped, TerminatedBySignal, WaitAnomaly
from .process import kill, poll, quit, spawn, wait
from .suite import CommandReport, SuiteConfig, SuiteReport, run_suite
from .types import ProcessHandle, ProcessState, SpawnedProcess

__all__ = [
    "CommandReport",
    "ExitOutcome",
    "ExitedNormally",
    "LaunchFailed",
    "ProcLifecycleError",
    "ProcessHandle",
    "ProcessState",
    "SignalError",
    "SpawnedProcess",
    "Stopped",
    "SuiteConfig",
    "SuiteReport",
    "TerminatedBySignal",
    "WaitAnomaly",
    "kill",
    "poll",
    "quit",
    "run_suite",
    "spawn",
    "wait",
]
