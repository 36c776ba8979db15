"""
cgmctl status / cgmctl providers - Show configuration and last known data.

Usage:
    cgmctl status
    cgmctl status --json
    cgmctl providers
"""

from datetime import datetime, timezone

import click
from rich.table import Table

from .. import __version__
from ..core.analytics import window_history
from ..core.cache import DurableCache
from ..core.display import PollerContext, build_snapshot
from ..core.logging import mask_email
from ..core.secrets import KeyringSecretStore
from ..providers import get_provider, list_providers
from ..utils.output import COLOR_STYLES, console, print_json
from .utils import load_context_config


@click.command("status")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def status(ctx: click.Context, json_output: bool) -> None:
    """Show provider configuration and the last cached reading.

    Reads only local state; no network request is made.
    """
    config = load_context_config(ctx)
    provider = get_provider(config.provider, config, secrets=KeyringSecretStore())
    cache = DurableCache()
    entry = cache.load()

    context = PollerContext(window_hours=config.graph_hours)
    if entry is not None:
        context.reading = entry.reading
        context.raw_history = entry.history or []
    now = datetime.now(timezone.utc)
    context.history = window_history(context.raw_history, context.window_hours, now)

    snapshot = build_snapshot(
        context,
        provider=provider.name,
        configured=provider.is_configured(),
        units=config.units,
        thresholds=config.thresholds,
        stale_minutes=config.stale_minutes,
        now=now,
    )

    if json_output:
        print_json({
            "version": __version__,
            "config_path": str(config.source_path) if config.source_path else None,
            "cache_path": str(cache.path),
            "provider": provider.get_info(),
            "missing_config": provider.missing_config(),
            "snapshot": snapshot.to_dict(),
        })
        return

    console.print(f"\n[bold]cgmctl v{__version__}[/bold]")
    console.print("─" * 35)
    console.print(f"  Config:       {config.source_path}")
    console.print(f"  Cache:        {cache.path}")
    console.print(f"  Provider:     {provider.name}")
    if provider.name == "librelink":
        email = (config.get("librelink") or {}).get("email")
        console.print(f"  Account:      {mask_email(email)} ({config.get('librelink.region')})")

    if provider.is_configured():
        console.print("  Configured:   [green]✓[/green]")
    else:
        missing = ", ".join(provider.missing_config())
        console.print(f"  Configured:   [red]✗[/red] missing {missing}")

    thresholds = config.thresholds
    console.print(
        f"  Range:        {thresholds.low:g}-{thresholds.high:g} mg/dL, units {config.units.value}"
    )

    style = COLOR_STYLES.get(snapshot.color.value, "")
    console.print(f"  Last reading: [{style}]{snapshot.label}[/{style}] ({snapshot.time_ago})")
    if snapshot.delta_text:
        console.print(f"  Delta:        {snapshot.delta_text}")
    if snapshot.time_in_range is not None:
        console.print(
            f"  In range:     {snapshot.time_in_range}% of last {snapshot.window_hours:g}h"
        )
    console.print()


@click.command("providers")
@click.option("--json", "json_output", is_flag=True, help="JSON output")
@click.pass_context
def providers(ctx: click.Context, json_output: bool) -> None:
    """List available providers and whether each is configured."""
    config = load_context_config(ctx)
    infos = []
    for name in sorted(list_providers()):
        provider = get_provider(name, config, secrets=KeyringSecretStore())
        info = provider.get_info()
        info["active"] = name == config.provider
        infos.append(info)

    if json_output:
        print_json({"providers": infos})
        return

    table = Table(title="Providers")
    table.add_column("Name")
    table.add_column("Active")
    table.add_column("Configured")
    table.add_column("Required config")
    for info in infos:
        table.add_row(
            info["name"],
            "●" if info["active"] else "",
            "[green]✓[/green]" if info["configured"] else "[red]✗[/red]",
            ", ".join(info["required_config"]),
        )
    console.print(table)
