"""Output formatting utilities.

Provides TTY-aware console output for cgmctl:
- stdout console: readings, tables and status
- stderr console: notifications raised while watching
- JSON error output for scripting (--json-errors)

When stdout is redirected, output is plain text without colors.
"""

import json
import sys
from typing import Any, Optional

from rich.console import Console

from ..core.exceptions import ExitCode, format_json_error

_stdout_is_tty = sys.stdout.isatty()
_stderr_is_tty = sys.stderr.isatty()

console = Console(
    force_terminal=_stdout_is_tty,
    no_color=not _stdout_is_tty,
)

stderr_console = Console(
    stderr=True,
    force_terminal=_stderr_is_tty,
    no_color=not _stderr_is_tty,
)

# Rich style per DisplayColor value
COLOR_STYLES = {
    "low": "bold red",
    "high": "bold yellow",
    "normal": "bold green",
    "stale": "dim",
}


def print_error(message: str) -> None:
    """Print error message."""
    console.print(f"[red]Error: {message}[/red]")


def handle_error(
    exc: Exception,
    json_errors: bool = False,
    context: Optional[dict[str, Any]] = None,
) -> int:
    """Report an exception in the requested format.

    Returns:
        Exit code to use for ctx.exit()
    """
    if json_errors:
        print(format_json_error(exc, context))
    else:
        print_error(str(exc))

    if hasattr(exc, "exit_code"):
        return exc.exit_code
    return ExitCode.GENERAL_ERROR


def print_json(data: Any) -> None:
    """Print data as formatted JSON on stdout."""
    console.print_json(json.dumps(data, indent=2, default=str))
