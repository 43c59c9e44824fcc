from .config import CommandSpec, SuiteConfig
from .runner import CommandReport, SuiteReport, run_command, run_suite, wait_with_timeout

__all__ = [
    "CommandReport",
    "CommandSpec",
    "SuiteConfig",
    "SuiteReport",
    "run_command",
    "run_suite",
    "wait_with_timeout",
]
