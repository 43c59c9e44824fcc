from __future__ import annotations

import argparse
import logging
import os
from functools import partial
from typing import Any, Never, Sequence

from rich.color import ColorSystem
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from proc_lifecycle.suite import SuiteConfig, SuiteReport, run_suite
from proc_lifecycle.suite.config import DEFAULT_TOOLS_FILE, TESTS_ENV_VAR

_CONSOLE = Console(stderr=True)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="plr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)

    def print_help(self, file: Any | None = None) -> None:
        """Render help text to the target stream.

        Example:
            ```python
            parser.print_help()
            ```
        """
        super().print_help(file=file)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser for running command suites.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="plr",
        description=(
            "proc-lifecycle suite runner\n"
            "Run named commands from a tools file and report every line\n"
            "they write to stderr, plus any abnormal exit, as an error."
        ),
        epilog=(
            "Commands are selected in order from:\n"
            "  1. Free command line arguments\n"
            f"  2. The {TESTS_ENV_VAR} environment variable\n"
            f"  3. The tests list in {DEFAULT_TOOLS_FILE}\n"
            "  4. Every command in the tools file\n\n"
            "Quick Examples:\n"
            "  plr\n"
            "  plr greet fail --async\n"
            "  plr --tools ci/tools.toml --timeout-seconds 5\n"
            "  plr --print"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "names",
        nargs="*",
        metavar="NAME",
        help="Command names to run (default: see selection order below).",
    )
    parser.add_argument(
        "-p",
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the selected commands then quit.",
    )
    parser.add_argument(
        "-c",
        "--color",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Print using color codes (default: tools file, else on).",
    )
    parser.add_argument(
        "-a",
        "--async",
        dest="async_",
        action="store_const",
        const=True,
        default=None,
        help="Run commands concurrently, one thread per command.",
    )
    parser.add_argument(
        "-t",
        "--tools",
        help=f"Use this tools file instead of {DEFAULT_TOOLS_FILE}.",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        help="Interrupt, then kill, commands running longer than this (0 disables).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log process lifecycle events.",
    )
    return parser


def load_config(args: argparse.Namespace) -> SuiteConfig:
    """Load the tools file named on the command line, or the default one.

    Example:
        ```python
        config = load_config(args)
        ```
    """
    if args.tools:
        config = SuiteConfig.from_file(args.tools)
    else:
        config = SuiteConfig.from_file(DEFAULT_TOOLS_FILE, required=False)
    if args.color is not None:
        config.color = args.color
    if args.async_ is not None:
        config.async_ = args.async_
    if args.timeout_seconds is not None:
        if args.timeout_seconds < 0:
            raise ValueError("--timeout-seconds must not be negative")
        config.timeout_seconds = args.timeout_seconds
    return config


def _configure_logging(verbose: bool) -> None:
    """Route library logging through Rich when verbose output is requested.

    Example:
        ```python
        _configure_logging(True)
        ```
    """
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=_CONSOLE, show_path=False)],
        force=True,
    )


def _print_selection(config: SuiteConfig, names: list[str], console: Console) -> None:
    """Render the selected commands in a rich table.

    Example:
        ```python
        _print_selection(config, ["greet"], console)
        ```
    """
    table = Table(title="Selected Commands")
    table.add_column("Name", style="cyan")
    table.add_column("Command")
    for name in names:
        spec = config.commands.get(name)
        command = " ".join(spec.argv) if spec else "<not found>"
        table.add_row(name, Text(command))
    console.print(table)


def _write_line(console: Console, text: str, style: str) -> None:
    """Write one report line verbatim, bypassing Rich's tab expansion and wrapping.

    Example:
        ```python
        _write_line(console, "fail\\tbroken", "yellow")
        ```
    """
    if style and console.is_terminal and not console.no_color:
        text = Style.parse(style).render(text, color_system=ColorSystem.STANDARD)
    console.file.write(f"{text}\n")


def _print_report(suite: SuiteReport, console: Console, color: bool) -> None:
    """Print every diagnostic as ``name<TAB>line`` followed by the error count.

    Example:
        ```python
        _print_report(suite, console, color=True)
        ```
    """
    line_style = "yellow" if color else ""
    for report in suite.reports:
        for line in report.diagnostics:
            _write_line(console, f"{report.name}\t{line}", line_style)
    count = suite.error_count
    summary_style = ("magenta" if count else "cyan") if color else ""
    _write_line(console, f"There are {count} errors", summary_style)
    console.file.flush()


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `plr` CLI command handler.

    Example:
        ```python
        code = main(["--tools", "tools.toml", "greet"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    try:
        config = load_config(args)
    except ValueError as exc:
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {exc}", border_style="red"))
        return 2

    console = Console(stderr=True, no_color=not config.color, highlight=False)
    names = config.select(args.names, dict(os.environ))

    if args.print_only:
        _print_selection(config, names, console)
        return 0

    if not names:
        console.print(Panel.fit("No commands were found", style="bold yellow"))
        parser.print_help()
        return 0

    suite = run_suite(config, names)
    _print_report(suite, console, config.color)
    return 0 if suite.ok else 1
