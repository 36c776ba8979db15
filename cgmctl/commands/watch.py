"""
cgmctl watch - Poll the provider continuously.

Runs the poller with the durable cache, alert notifications and config
file watching, printing one status line per display update.

Usage:
    cgmctl watch
    cgmctl watch --duration 600
    cgmctl -v watch --json
"""

import asyncio
import json
import logging
from typing import Optional

import click

from ..core.alerts import Notification
from ..core.config import Config, ConfigWatcher
from ..core.display import DisplaySnapshot, DisplayStatus
from ..core.poller import Poller
from ..core.secrets import KeyringSecretStore
from ..core.timers import LoopTimers
from ..utils.output import COLOR_STYLES, console, stderr_console
from .utils import load_context_config, run_async

logger = logging.getLogger("cgmctl.commands.watch")


@click.command("watch")
@click.option("--duration", type=float, default=None,
              help="Stop after this many seconds (default: run until interrupted)")
@click.option("--json", "json_output", is_flag=True, help="One JSON object per update")
@click.option("--no-watch-config", is_flag=True, help="Ignore changes to the config file")
@click.pass_context
def watch(
    ctx: click.Context,
    duration: Optional[float],
    json_output: bool,
    no_watch_config: bool,
) -> None:
    """Poll the configured provider and print updates.

    \b
    Schedule:
      current reading  every 60s (at most every 30s)
      history          every historyFetchInterval minutes
      failures         retried after 5s, 10s, 20s, then paused 5 minutes
    """
    config = load_context_config(ctx)
    try:
        run_async(_watch_async(config, duration, json_output, not no_watch_config))
    except KeyboardInterrupt:
        logger.debug("Interrupted")


def render_snapshot(snapshot: DisplaySnapshot, json_output: bool = False) -> None:
    if json_output:
        console.print(json.dumps(snapshot.to_dict()), soft_wrap=True, highlight=False)
        return

    if snapshot.status is DisplayStatus.NO_CONFIG:
        console.print("[yellow]No Config[/yellow] - set the provider settings in config.yaml")
        return
    if snapshot.status is DisplayStatus.ERROR:
        console.print("[red]ERR[/red] - no data from provider")
        return
    if snapshot.status is DisplayStatus.WAITING:
        console.print("[dim]Waiting for first reading...[/dim]")
        return

    style = COLOR_STYLES.get(snapshot.color.value, "")
    parts = [f"[{style}]{snapshot.label}[/{style}] {snapshot.units.value}"]
    if snapshot.delta_text:
        parts.append(snapshot.delta_text)
    if snapshot.time_in_range is not None:
        parts.append(f"TIR {snapshot.time_in_range}% ({snapshot.window_hours:g}h)")
    parts.append(snapshot.time_ago)
    console.print("  ".join(parts))


def render_notification(notification: Notification) -> None:
    stderr_console.print(f"[bold]{notification.title}[/bold]: {notification.body}")


async def _watch_async(
    config: Config,
    duration: Optional[float],
    json_output: bool,
    watch_config: bool,
) -> None:
    timers = LoopTimers()
    poller = Poller(
        config,
        timers=timers,
        secrets=KeyringSecretStore(),
        on_update=lambda snapshot: render_snapshot(snapshot, json_output),
        on_notify=render_notification,
    )
    watcher = None
    if watch_config and config.source_path is not None:
        watcher = ConfigWatcher(config.source_path, poller.notify_config_changed, timers)

    poller.start()
    if watcher is not None:
        watcher.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        if watcher is not None:
            watcher.stop()
        await poller.stop()
