"""
cgmctl current / cgmctl history - One-shot provider fetches.

Usage:
    cgmctl current
    cgmctl current --json
    cgmctl history --hours 3
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import click
from rich.table import Table

from ..core import analytics
from ..core.cache import DurableCache
from ..core.display import PollerContext, build_snapshot
from ..core.exceptions import FetchError
from ..utils.output import COLOR_STYLES, console, handle_error, print_json
from .utils import build_provider, load_context_config, run_async

logger = logging.getLogger("cgmctl.commands.readings")


@click.command("current")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.option("--no-cache", is_flag=True, help="Do not update the last-known reading cache")
@click.pass_context
def current(ctx: click.Context, json_output: bool, no_cache: bool) -> None:
    """Fetch and show the latest glucose reading."""
    config = load_context_config(ctx)
    try:
        reading = run_async(_fetch_async(config, "current"))
    except FetchError as e:
        ctx.exit(handle_error(e, ctx.obj.get("json_errors", False), {"command": "current"}))
        return

    now = datetime.now(timezone.utc)
    if not no_cache:
        DurableCache().save(reading=reading, now=now)

    snapshot = build_snapshot(
        PollerContext(reading=reading, window_hours=config.graph_hours),
        provider=config.provider,
        configured=True,
        units=config.units,
        thresholds=config.thresholds,
        stale_minutes=config.stale_minutes,
        now=now,
    )

    if json_output:
        print_json(snapshot.to_dict())
        return

    style = COLOR_STYLES.get(snapshot.color.value, "")
    console.print(f"[{style}]{snapshot.label}[/{style}] {config.units.value}")
    console.print(f"  Updated: {snapshot.time_ago}")
    console.print(f"  Source:  {config.provider}")


@click.command("history")
@click.option("--hours", type=float, default=None,
              help="Window to show (default: graphHours from config)")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.option("--no-cache", is_flag=True, help="Do not update the history cache")
@click.pass_context
def history(
    ctx: click.Context, hours: Optional[float], json_output: bool, no_cache: bool
) -> None:
    """Fetch recent history and show readings with summary metrics."""
    config = load_context_config(ctx)
    window = hours if hours is not None else config.graph_hours
    if window <= 0:
        raise click.BadParameter("must be positive", param_hint="--hours")

    try:
        raw = run_async(_fetch_async(config, "history"))
    except FetchError as e:
        ctx.exit(handle_error(e, ctx.obj.get("json_errors", False), {"command": "history"}))
        return

    now = datetime.now(timezone.utc)
    if not no_cache:
        DurableCache().save(history=raw, now=now)

    entries = analytics.window_history(raw, window, now)
    units = config.units
    tir = analytics.time_in_range(entries, config.thresholds)
    delta = analytics.compute_delta(raw)
    trend = analytics.compute_trend(None, raw)

    if json_output:
        print_json({
            "provider": config.provider,
            "units": units.value,
            "hours": window,
            "time_in_range": tir,
            "delta": analytics.format_delta(delta, units) or None,
            "trend": trend.value if trend else None,
            "entries": [r.to_dict() for r in entries],
        })
        return

    table = Table(title=f"Last {window:g}h ({len(entries)} readings)")
    table.add_column("Time")
    table.add_column(f"Glucose ({units.value})", justify="right")
    table.add_column("Direction")
    for reading in reversed(entries):
        state = config.thresholds.classify(reading.value).value
        style = COLOR_STYLES.get(state, "")
        table.add_row(
            reading.timestamp.astimezone().strftime("%H:%M"),
            f"[{style}]{analytics.format_value(reading.value, units)}[/{style}]",
            reading.direction.value,
        )
    console.print(table)

    tir_text = f"{tir}%" if tir is not None else "--"
    console.print(f"  Time in range: {tir_text}")
    if delta is not None:
        console.print(f"  Delta:         {analytics.format_delta(delta, units)}")
    if trend is not None:
        console.print(f"  Trend:         {trend.value}")


async def _fetch_async(config, kind: str):
    provider = build_provider(config)
    try:
        provider.ensure_configured()
        if kind == "current":
            return await provider.fetch_current()
        return await provider.fetch_history()
    finally:
        await provider.destroy()
