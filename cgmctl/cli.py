#!/usr/bin/env python3
"""
cgmctl - Continuous Glucose Monitor Control

Fetches glucose readings from Nightscout or LibreLink Up and shows the
latest value, trend, delta and time in range.

Usage:
    cgmctl current
    cgmctl history --hours 3
    cgmctl status
    cgmctl watch

For more information: cgmctl --help
"""

from pathlib import Path
from typing import Optional

import click

from . import __version__
from .commands.credentials import set_password
from .commands.readings import current, history
from .commands.status import providers, status
from .commands.watch import watch
from .core.logging import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="cgmctl")
@click.option("-v", "--verbose", count=True, help="Increase verbosity (-v, -vv, -vvv)")
@click.option("-q", "--quiet", is_flag=True, help="Suppress output except errors")
@click.option("--json-errors", is_flag=True, help="Output errors as JSON")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
    help="Config file (default: $CGMCTL_CONFIG or ~/.config/cgmctl/config.yaml)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: int,
    quiet: bool,
    json_errors: bool,
    config_path: Optional[Path],
) -> None:
    """cgmctl - Continuous Glucose Monitor Control

    Reads CGM data from a Nightscout site or a LibreLink Up account.

    \b
    Commands:
      current    Latest reading
      history    Recent readings with time in range
      status     Configuration and last cached reading
      providers  Available data providers
      watch      Poll continuously with alerts
      set-password  Store the LibreLink password in the keychain

    \b
    Verbosity:
      -v       INFO level (fetches, config reloads)
      -vv      DEBUG level (requests, scheduling)
      -vvv     TRACE level (response payloads)
      -q       Quiet mode (errors only)

    \b
    Examples:
      cgmctl current
      cgmctl --config ./cgm.yaml history --hours 3
      cgmctl --json-errors current 2>&1 | jq .error
    """
    ctx.ensure_object(dict)
    ctx.obj["verbosity"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["json_errors"] = json_errors
    ctx.obj["config_path"] = config_path
    setup_logging(verbose, quiet)


cli.add_command(current)
cli.add_command(history)
cli.add_command(status)
cli.add_command(providers)
cli.add_command(watch)
cli.add_command(set_password)


if __name__ == "__main__":
    cli()
